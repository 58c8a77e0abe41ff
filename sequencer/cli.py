"""
Command-line entry points.

  generate-sequences         every model × every material, fill gaps only
  generate-single-sequence   --model ID --material NAME [--job-id ID]
  check-sequences            inventory / quality report of the output tree

Each ``main_*`` returns a process exit code. Progress lines
(``Frame N/M``) go to stdout so a parent process can follow along; logs go
to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from sequencer_shared.logging import configure_logging

from .config import SequencerSettings, build_pipeline_config
from .core.blender_backend import BlenderRenderBackend
from .core.generator import SequenceGenerator
from .core.inventory import format_report, scan_sequences
from .core.render_backend import RenderBackend
from .errors import InvalidSequenceRequest, RenderBackendUnavailable

logger = logging.getLogger("sequencer.cli")


def build_backend(settings: SequencerSettings) -> BlenderRenderBackend:
    return BlenderRenderBackend(
        blender_executable=settings.blender_executable,
        resolution=settings.resolution,
        startup_timeout=settings.blender_startup_timeout_seconds,
        frame_timeout=settings.frame_timeout_seconds or None,
    )


def build_generator(
    settings: SequencerSettings,
    backend: RenderBackend | None = None,
) -> SequenceGenerator:
    config = build_pipeline_config(settings)
    return SequenceGenerator(config, backend or build_backend(settings))


def _parse(parser: argparse.ArgumentParser, argv: list[str] | None) -> argparse.Namespace | int:
    try:
        return parser.parse_args(argv)
    except SystemExit as e:
        return 1 if e.code else 0


def _print_progress(stage: str, pct: int) -> None:
    print(f"{stage} ({pct}%)", flush=True)


# ---------------------------------------------------------------------------
# generate-sequences
# ---------------------------------------------------------------------------

async def _run_batch(generator: SequenceGenerator) -> None:
    await generator.backend.preflight()
    report = await generator.run_all(progress_callback=_print_progress)
    print(
        f"Done: {len(report.sequences)} sequences, {report.rendered} frames rendered, "
        f"{report.skipped} skipped, {len(report.failed_sequences)} sequences failed "
        f"in {report.elapsed:.1f}s"
    )
    for seq in report.failed_sequences:
        print(f"  FAILED {seq.sequence}: {seq.error}")


def main_batch(
    argv: list[str] | None = None,
    *,
    settings: SequencerSettings | None = None,
    backend: RenderBackend | None = None,
) -> int:
    parser = argparse.ArgumentParser(
        prog="generate-sequences",
        description="Render 360° image sequences for every model and material",
    )
    args = _parse(parser, argv)
    if isinstance(args, int):
        return args

    settings = settings or SequencerSettings()
    configure_logging(settings.log_level)
    generator = build_generator(settings, backend)

    try:
        asyncio.run(_run_batch(generator))
    except RenderBackendUnavailable as e:
        logger.error("Fatal: %s", e)
        return 1
    return 0


# ---------------------------------------------------------------------------
# generate-single-sequence
# ---------------------------------------------------------------------------

async def _run_single(
    generator: SequenceGenerator,
    model_id: str,
    material_name: str,
    job_id: str | None,
) -> None:
    model = generator.find_model(model_id)
    material = generator.find_material(material_name)
    await generator.backend.preflight()

    def _progress(stage: str, pct: int) -> None:
        print(f"{stage}", flush=True)

    report = await generator.run_sequence(model, material, progress_callback=_progress, job_id=job_id)
    print(
        f"Completed {report.sequence}: {report.rendered} rendered, {report.skipped} skipped, "
        f"{report.failed} failed, {report.placeholders} placeholders"
    )


def main_single(
    argv: list[str] | None = None,
    *,
    settings: SequencerSettings | None = None,
    backend: RenderBackend | None = None,
) -> int:
    parser = argparse.ArgumentParser(
        prog="generate-single-sequence",
        description="Render one model in one material (36 frames)",
    )
    parser.add_argument("--model", required=True, help="Model id (file name without .glb)")
    parser.add_argument("--material", required=True, help="Material preset name")
    parser.add_argument("--job-id", default=None, help="Correlation id echoed in log lines")
    args = _parse(parser, argv)
    if isinstance(args, int):
        return args

    settings = settings or SequencerSettings()
    configure_logging(settings.log_level)
    generator = build_generator(settings, backend)

    # Validate before touching the filesystem or starting a renderer
    try:
        generator.find_material(args.material)
        generator.find_model(args.model)
    except InvalidSequenceRequest as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        asyncio.run(_run_single(generator, args.model, args.material, args.job_id))
    except RenderBackendUnavailable as e:
        logger.error("Fatal: %s", e)
        return 1
    except Exception:
        logger.exception("Sequence generation failed")
        return 1
    return 0


# ---------------------------------------------------------------------------
# check-sequences
# ---------------------------------------------------------------------------

def main_check(
    argv: list[str] | None = None,
    *,
    settings: SequencerSettings | None = None,
) -> int:
    parser = argparse.ArgumentParser(
        prog="check-sequences",
        description="Report frame/format completeness of generated sequences",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = _parse(parser, argv)
    if isinstance(args, int):
        return args

    settings = settings or SequencerSettings()
    configure_logging(settings.log_level)
    config = build_pipeline_config(settings)
    summaries = scan_sequences(config)

    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in summaries], indent=2))
    else:
        print(format_report(summaries))
    return 0 if all(s.complete for s in summaries) else 1
