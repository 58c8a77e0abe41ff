"""
Sequence generator.

Walks models × materials × angles, renders each missing frame through a
render session and hands it to the encoder:

    for model in discovered models:
        for material in presets (declaration order):
            open one render session
            for frame 0..frame_count-1 (angle = frame × step):
                skip if already done
                render → encode  (failures isolated to the frame)
                renderer died → placeholder, restart the session
            close the session (always)
            write manifest.json

Everything runs one frame at a time; the renderer session is not safe for
concurrent submissions.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from sequencer_shared.files import write_atomic

from ..config import PipelineConfig
from ..errors import InvalidSequenceRequest, RenderBackendUnavailable, RenderSessionError
from ..schemas import BatchReport, MaterialPreset, SequenceManifest, SequenceReport
from .encoder import MultiFormatEncoder
from .layout import MANIFEST_NAME, frame_done, sequence_dir, sequence_name
from .render_backend import RenderBackend, RenderSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

# Renderer crashes tolerated per sequence before the rest is filled with placeholders
MAX_SESSION_RESTARTS = 3


@dataclass(frozen=True)
class ModelSource:
    name: str
    path: Path

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass(frozen=True)
class RenderJob:
    model: ModelSource
    material: MaterialPreset
    frame_index: int
    angle_degrees: float
    output_dir: Path


class SequenceGenerator:
    def __init__(
        self,
        config: PipelineConfig,
        backend: RenderBackend,
        encoder: MultiFormatEncoder | None = None,
    ):
        self.config = config
        self.backend = backend
        self.encoder = encoder or MultiFormatEncoder(config.formats, config.resolution)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def discover_models(self) -> list[ModelSource]:
        models_dir = self.config.models_dir
        if not models_dir.is_dir():
            logger.warning("Models directory missing: %s", models_dir)
            return []
        ext = self.config.model_extension.lower()
        return [
            ModelSource(name=p.stem, path=p)
            for p in sorted(models_dir.iterdir(), key=lambda p: p.name)
            if p.is_file() and p.suffix.lower() == ext
        ]

    def find_model(self, model_id: str) -> ModelSource:
        path = self.config.models_dir / f"{model_id}{self.config.model_extension}"
        if not path.is_file():
            raise InvalidSequenceRequest(f"Model file not found: {path}")
        return ModelSource(name=model_id, path=path)

    def find_material(self, name: str) -> MaterialPreset:
        try:
            return self.config.material(name)
        except KeyError:
            known = ", ".join(self.config.material_names)
            raise InvalidSequenceRequest(f"Unknown material '{name}' (known: {known})")

    def iter_jobs(self, model: ModelSource, material: MaterialPreset) -> Iterator[RenderJob]:
        out_dir = sequence_dir(self.config.output_dir, model.name, material.name)
        for index in range(self.config.frame_count):
            yield RenderJob(
                model=model,
                material=material,
                frame_index=index,
                angle_degrees=index * self.config.angle_step,
                output_dir=out_dir,
            )

    def is_frame_done(self, job: RenderJob) -> bool:
        return frame_done(
            job.output_dir,
            job.frame_index,
            self.config.format_extensions,
            self.config.skip_policy,
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def run_all(self, progress_callback: ProgressCallback | None = None) -> BatchReport:
        models = self.discover_models()
        logger.info(
            "Batch start: %d models × %d materials × %d frames",
            len(models), len(self.config.materials), self.config.frame_count,
        )
        return await self.run_batch(models, list(self.config.materials), progress_callback)

    async def run_models(
        self,
        model_ids: list[str],
        material_names: list[str] | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> BatchReport:
        models = [self.find_model(m) for m in model_ids]
        materials = (
            [self.find_material(m) for m in material_names]
            if material_names
            else list(self.config.materials)
        )
        return await self.run_batch(models, materials, progress_callback)

    async def run_batch(
        self,
        models: list[ModelSource],
        materials: list[MaterialPreset],
        progress_callback: ProgressCallback | None = None,
    ) -> BatchReport:
        t0 = time.time()
        report = BatchReport()
        total = len(models) * len(materials)
        done = 0

        for model in models:
            for material in materials:
                name = sequence_name(model.name, material.name)
                try:
                    seq = await self.run_sequence(model, material)
                except RenderBackendUnavailable:
                    raise
                except Exception as e:
                    logger.exception("Sequence %s failed", name)
                    seq = SequenceReport(
                        sequence=name,
                        model=model.name,
                        material=material.name,
                        output_dir=str(sequence_dir(self.config.output_dir, model.name, material.name)),
                        error=str(e) or type(e).__name__,
                    )
                report.sequences.append(seq)
                done += 1
                if progress_callback:
                    progress_callback(f"Sequence {done}/{total} {name}", int(done * 100 / total))

        report.elapsed = round(time.time() - t0, 2)
        logger.info(
            "Batch done in %.1fs: %d sequences, %d rendered, %d skipped, %d failed sequences",
            report.elapsed, len(report.sequences), report.rendered, report.skipped,
            len(report.failed_sequences),
        )
        return report

    # ------------------------------------------------------------------
    # One sequence
    # ------------------------------------------------------------------

    async def run_sequence(
        self,
        model: ModelSource,
        material: MaterialPreset,
        progress_callback: ProgressCallback | None = None,
        job_id: str | None = None,
    ) -> SequenceReport:
        t0 = time.time()
        name = sequence_name(model.name, material.name)
        out_dir = sequence_dir(self.config.output_dir, model.name, material.name)
        tag = f"[{job_id}] " if job_id else ""
        report = SequenceReport(
            sequence=name, model=model.name, material=material.name, output_dir=str(out_dir)
        )
        jobs = list(self.iter_jobs(model, material))
        total = len(jobs)

        if all(self.is_frame_done(job) for job in jobs):
            report.skipped = total
            logger.info("%s%s: all %d frames exist", tag, name, total)
            if not (out_dir / MANIFEST_NAME).is_file():
                self.write_manifest(model, material, out_dir, [])
            report.elapsed = round(time.time() - t0, 2)
            return report

        model_bytes = model.read_bytes()
        placeholders: list[int] = []
        skipped: set[int] = set()
        logger.info("%sStarting %s (%s)", tag, name, self.backend.name)

        session: RenderSession | None = await self.backend.open_session()
        try:
            for job in jobs:
                idx = job.frame_index
                logger.info("%sFrame %d/%d %s @ %.0f°", tag, idx + 1, total, name, job.angle_degrees)
                if progress_callback:
                    progress_callback(f"Frame {idx + 1}/{total}", int((idx + 1) * 100 / total))

                if self.is_frame_done(job):
                    logger.info("%s%s frame %d exists, skipping", tag, name, idx)
                    report.skipped += 1
                    skipped.add(idx)
                    continue

                if session is None:
                    await self._fill_placeholder(out_dir, idx, report, placeholders)
                    continue

                try:
                    frame = await session.render_frame(model_bytes, material, job.angle_degrees)
                except RenderBackendUnavailable:
                    raise
                except RenderSessionError as e:
                    logger.error("%s%s frame %d: renderer died: %s", tag, name, idx, e)
                    await self._fill_placeholder(out_dir, idx, report, placeholders)
                    dead, session = session, None
                    await dead.close()
                    session = await self._restart_session(report, tag, name)
                    continue
                except Exception as e:
                    logger.error("%s%s frame %d render failed: %s", tag, name, idx, e)
                    await self._fill_placeholder(out_dir, idx, report, placeholders)
                    continue

                encoded = await self.encoder.encode_frame(frame, out_dir, idx)
                if encoded.placeholder:
                    report.failed += 1
                    report.placeholders += 1
                    placeholders.append(idx)
                else:
                    report.rendered += 1
        finally:
            if session is not None:
                await session.close()

        self.write_manifest(model, material, out_dir, placeholders, skipped)
        report.elapsed = round(time.time() - t0, 2)
        logger.info(
            "%s%s done in %.1fs: %d rendered, %d skipped, %d failed, %d placeholders, %d restarts",
            tag, name, report.elapsed, report.rendered, report.skipped, report.failed,
            report.placeholders, report.restarts,
        )
        return report

    async def _restart_session(self, report: SequenceReport, tag: str, name: str) -> RenderSession | None:
        """Replace a dead session; ``None`` once the restart budget is spent."""
        if report.restarts >= MAX_SESSION_RESTARTS:
            logger.error(
                "%s%s: renderer restart limit (%d) reached, remaining frames get placeholders",
                tag, name, MAX_SESSION_RESTARTS,
            )
            return None
        report.restarts += 1
        try:
            return await self.backend.open_session()
        except RenderSessionError as e:
            logger.error(
                "%s%s: renderer restart failed: %s, remaining frames get placeholders", tag, name, e
            )
            return None

    async def _fill_placeholder(
        self,
        out_dir: Path,
        frame_index: int,
        report: SequenceReport,
        placeholders: list[int],
    ) -> None:
        report.failed += 1
        encoded = await self.encoder.write_placeholders(out_dir, frame_index)
        if encoded.written:
            report.placeholders += 1
            placeholders.append(frame_index)

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def write_manifest(
        self,
        model: ModelSource,
        material: MaterialPreset,
        out_dir: Path,
        new_placeholders: list[int],
        skipped: set[int] | None = None,
    ) -> Path:
        """
        (Re)write ``manifest.json``.

        An earlier placeholder entry survives only for frames this run
        skipped; a frame that was rendered again is no longer a placeholder.
        """
        path = out_dir / MANIFEST_NAME
        previous = load_manifest(path)
        carried = {
            i for i in (previous.placeholder_frames if previous else [])
            if skipped is None or i in skipped
        }

        manifest = SequenceManifest(
            model=model.name,
            material=material.name,
            material_properties=material,
            frame_count=self.config.frame_count,
            rotation_increment=self.config.angle_step,
            formats=self.config.format_extensions,
            resolution=self.config.resolution,
            placeholder_frames=sorted(carried | set(new_placeholders)),
            generated_at=datetime.now(timezone.utc),
        )
        out_dir.mkdir(parents=True, exist_ok=True)
        return write_atomic(path, manifest.model_dump_json(indent=2).encode("utf-8"))


def load_manifest(path: Path) -> SequenceManifest | None:
    if not path.is_file():
        return None
    try:
        return SequenceManifest.model_validate(json.loads(path.read_text()))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable manifest %s: %s", path, e)
        return None
