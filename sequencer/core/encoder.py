"""
Multi-format frame encoder.

Takes one lossless PNG snapshot from the renderer and writes it once per
configured output format. Formats are independent: an existing file is left
alone, and a format that fails to encode does not stop the others. If
nothing at all could be written for a frame, flat grey placeholders are
written instead so the viewer never hits a hole in the sequence.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from ..schemas import OutputFormat
from .layout import frame_path

logger = logging.getLogger(__name__)

PLACEHOLDER_COLOR = (220, 220, 220)


@dataclass
class EncodedFrame:
    frame_index: int
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    placeholder: bool = False

    @property
    def complete(self) -> bool:
        return not self.failed


def _save_image(image: Image.Image, target: Path, fmt: OutputFormat) -> None:
    tmp = target.with_name(f".{target.name}.partial")
    try:
        with tmp.open("wb") as fh:
            image.save(fh, format=fmt.pillow_format, **fmt.save_options())
        os.replace(tmp, target)
    finally:
        if tmp.exists():
            tmp.unlink()


class MultiFormatEncoder:
    def __init__(self, formats: tuple[OutputFormat, ...], resolution: int = 1024):
        if not formats:
            raise ValueError("at least one output format is required")
        self.formats = formats
        self.resolution = resolution

    # ------------------------------------------------------------------
    # Blocking work (runs in the default executor)
    # ------------------------------------------------------------------

    def encode_frame_sync(self, frame: bytes, output_dir: Path, frame_index: int) -> EncodedFrame:
        result = EncodedFrame(frame_index=frame_index)
        output_dir.mkdir(parents=True, exist_ok=True)

        pending = []
        for fmt in self.formats:
            if frame_path(output_dir, frame_index, fmt.extension).is_file():
                result.skipped.append(fmt.extension)
            else:
                pending.append(fmt)
        if not pending:
            return result

        try:
            image = Image.open(io.BytesIO(frame))
            image.load()
        except Exception as e:
            logger.error("Frame %d: undecodable render output: %s", frame_index, e)
            for fmt in pending:
                result.failed[fmt.extension] = f"decode: {e}"
            image = None

        if image is not None:
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA")
            for fmt in pending:
                target = frame_path(output_dir, frame_index, fmt.extension)
                try:
                    _save_image(image, target, fmt)
                except Exception as e:
                    logger.error("Frame %d: %s encode failed: %s", frame_index, fmt.extension, e)
                    result.failed[fmt.extension] = str(e)
                    continue
                result.written.append(fmt.extension)

        if not result.written and not result.skipped:
            self.write_placeholders_sync(output_dir, frame_index, result)
        return result

    def write_placeholders_sync(
        self,
        output_dir: Path,
        frame_index: int,
        result: EncodedFrame | None = None,
    ) -> EncodedFrame:
        result = result or EncodedFrame(frame_index=frame_index)
        output_dir.mkdir(parents=True, exist_ok=True)
        result.placeholder = True

        image = Image.new("RGB", (self.resolution, self.resolution), PLACEHOLDER_COLOR)
        for fmt in self.formats:
            target = frame_path(output_dir, frame_index, fmt.extension)
            if target.is_file():
                continue
            try:
                _save_image(image, target, fmt)
            except Exception as e:
                logger.error("Frame %d: placeholder %s failed: %s", frame_index, fmt.extension, e)
                result.failed[fmt.extension] = f"placeholder: {e}"
                continue
            result.failed.pop(fmt.extension, None)
            result.written.append(fmt.extension)

        logger.warning("Frame %d: wrote placeholder images", frame_index)
        return result

    # ------------------------------------------------------------------
    # Async API used by the generator
    # ------------------------------------------------------------------

    async def encode_frame(self, frame: bytes, output_dir: Path, frame_index: int) -> EncodedFrame:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.encode_frame_sync, frame, output_dir, frame_index
        )

    async def write_placeholders(self, output_dir: Path, frame_index: int) -> EncodedFrame:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.write_placeholders_sync, output_dir, frame_index
        )
