"""
On-disk layout of generated sequences.

    {output_root}/{model}-{material}/{frame_index}.{avif|webp|png}

The storefront viewer builds these paths by convention, so nothing here may
change shape.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from ..schemas import SkipPolicy

MANIFEST_NAME = "manifest.json"


def sequence_name(model_name: str, material_name: str) -> str:
    return f"{model_name}-{material_name}"


def sequence_dir(output_root: Path, model_name: str, material_name: str) -> Path:
    return output_root / sequence_name(model_name, material_name)


def frame_path(directory: Path, frame_index: int, extension: str) -> Path:
    return directory / f"{frame_index}.{extension}"


def existing_formats(directory: Path, frame_index: int, extensions: Iterable[str]) -> list[str]:
    return [ext for ext in extensions if frame_path(directory, frame_index, ext).is_file()]


def frame_done(
    directory: Path,
    frame_index: int,
    extensions: Iterable[str],
    policy: SkipPolicy = "any",
) -> bool:
    """
    Whether a frame needs no further work.

    ``any``: one encoded file is enough (fast resume, may strand a missing
    format). ``all``: every configured format must be present.
    """
    extensions = list(extensions)
    present = existing_formats(directory, frame_index, extensions)
    if policy == "all":
        return len(present) == len(extensions)
    return bool(present)
