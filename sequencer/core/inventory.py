"""
Inventory of the asset tree.

Scans the output tree and reports, per sequence directory, which frames
exist in which formats, what is missing, which frames are still grey
placeholders, and how much disk the sequence takes. Also lists, stores and
deletes the source models the sequences are rendered from.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from sequencer_shared.files import ensure_dir

from ..config import PipelineConfig
from ..errors import InvalidSequenceRequest
from ..schemas import ModelInfo, SequenceSummary
from .generator import load_manifest
from .layout import MANIFEST_NAME, sequence_dir

logger = logging.getLogger(__name__)

_FRAME_FILE_RE = re.compile(r"^(\d+)\.([a-z0-9]+)$")
_MODEL_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")
_UPLOAD_CHUNK = 1024 * 1024


def summarize_sequence(seq_dir: Path, config: PipelineConfig) -> SequenceSummary:
    summary = SequenceSummary(name=seq_dir.name)
    wanted = config.format_extensions
    frames_by_format: dict[str, set[int]] = {ext: set() for ext in wanted}
    seen_frames: set[int] = set()
    formats_seen: set[str] = set()

    for entry in sorted(seq_dir.iterdir(), key=lambda p: p.name):
        if not entry.is_file() or entry.name == MANIFEST_NAME or entry.name.startswith("."):
            continue
        match = _FRAME_FILE_RE.match(entry.name)
        if not match:
            summary.unexpected_files.append(entry.name)
            continue
        index, ext = int(match.group(1)), match.group(2)
        if ext not in frames_by_format or index >= config.frame_count:
            summary.unexpected_files.append(entry.name)
            continue
        frames_by_format[ext].add(index)
        seen_frames.add(index)
        formats_seen.add(ext)
        summary.total_size += entry.stat().st_size

    summary.frame_count = len(seen_frames)
    summary.formats = [ext for ext in wanted if ext in formats_seen]
    expected = set(range(config.frame_count))
    for ext, present in frames_by_format.items():
        missing = sorted(expected - present)
        if missing:
            summary.missing_frames[ext] = missing
            summary.issues.append(f"{ext}: missing frames {_compact(missing)}")

    manifest = load_manifest(seq_dir / MANIFEST_NAME)
    if manifest is None:
        summary.issues.append("missing or invalid manifest.json")
    else:
        summary.placeholder_frames = list(manifest.placeholder_frames)
        if manifest.placeholder_frames:
            summary.issues.append(
                f"placeholder frames {_compact(manifest.placeholder_frames)}"
            )
    if summary.unexpected_files:
        summary.issues.append(f"{len(summary.unexpected_files)} unexpected files")

    summary.last_modified = datetime.fromtimestamp(seq_dir.stat().st_mtime, tz=timezone.utc)
    return summary


def scan_sequences(config: PipelineConfig) -> list[SequenceSummary]:
    root = config.output_dir
    if not root.is_dir():
        return []
    return [
        summarize_sequence(d, config)
        for d in sorted(root.iterdir(), key=lambda p: p.name)
        if d.is_dir()
    ]


def _model_info(path: Path, config: PipelineConfig) -> ModelInfo:
    stat = path.stat()
    return ModelInfo(
        id=path.stem,
        file_name=path.name,
        size=stat.st_size,
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        has_sequences=any(
            sequence_dir(config.output_dir, path.stem, m).is_dir()
            for m in config.material_names
        ),
    )


def list_models(config: PipelineConfig) -> list[ModelInfo]:
    models_dir = config.models_dir
    if not models_dir.is_dir():
        return []
    ext = config.model_extension.lower()
    return [
        _model_info(path, config)
        for path in sorted(models_dir.iterdir(), key=lambda p: p.name)
        if path.is_file() and path.suffix.lower() == ext
    ]


def check_model_id(model_id: str) -> str:
    if not _MODEL_ID_RE.fullmatch(model_id or ""):
        raise InvalidSequenceRequest(f"Invalid model id: {model_id!r}")
    return model_id


def store_model(
    config: PipelineConfig,
    filename: str,
    stream: BinaryIO,
    max_bytes: int,
) -> ModelInfo:
    """
    Copy an uploaded model into ``models_dir`` as ``{id}.glb``.

    Raises ``InvalidSequenceRequest`` for a wrong extension, a bad id or an
    oversized file, and ``FileExistsError`` when the model is already there.
    Nothing is left behind on failure.
    """
    ext = config.model_extension
    name = Path(filename or "").name
    if not name.lower().endswith(ext.lower()):
        raise InvalidSequenceRequest(f"Only {ext} files are supported")
    model_id = check_model_id(name[: -len(ext)])

    dest = ensure_dir(config.models_dir) / f"{model_id}{ext}"
    if dest.exists():
        raise FileExistsError(f"Model already exists: {dest.name}")

    tmp = dest.with_name(f".{dest.name}.partial")
    size = 0
    try:
        with tmp.open("wb") as fh:
            for chunk in iter(lambda: stream.read(_UPLOAD_CHUNK), b""):
                size += len(chunk)
                if size > max_bytes:
                    raise InvalidSequenceRequest(
                        f"File size must be at most {_human_bytes(max_bytes)}"
                    )
                fh.write(chunk)
        if dest.exists():
            raise FileExistsError(f"Model already exists: {dest.name}")
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()

    logger.info("Model stored: %s (%d bytes)", dest, size)
    return _model_info(dest, config)


def delete_model(config: PipelineConfig, model_id: str) -> list[str]:
    """Remove a model file and its sequence directories; returns the removed sequences."""
    path = config.models_dir / f"{check_model_id(model_id)}{config.model_extension}"
    if not path.is_file():
        raise FileNotFoundError(f"Model not found: {model_id}")

    path.unlink()
    removed = []
    for material in config.material_names:
        seq = sequence_dir(config.output_dir, model_id, material)
        if seq.is_dir():
            shutil.rmtree(seq)
            removed.append(seq.name)
    logger.info("Model deleted: %s (sequences removed: %s)", model_id, ", ".join(removed) or "-")
    return removed


def format_report(summaries: list[SequenceSummary]) -> str:
    lines = []
    for s in summaries:
        status = "OK " if s.complete else "BAD"
        lines.append(
            f"{status} {s.name}: {s.frame_count} frames, "
            f"formats={','.join(s.formats) or '-'}, {_human_bytes(s.total_size)}"
        )
        for issue in s.issues:
            lines.append(f"      - {issue}")
    complete = sum(1 for s in summaries if s.complete)
    lines.append(f"{complete}/{len(summaries)} sequences complete")
    return "\n".join(lines)


def _compact(indices: list[int], limit: int = 8) -> str:
    shown = ", ".join(str(i) for i in indices[:limit])
    if len(indices) > limit:
        shown += f", … (+{len(indices) - limit})"
    return shown


def _human_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} GB"
