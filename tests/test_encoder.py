"""Tests for sequencer/core/encoder.py"""
from __future__ import annotations

import asyncio

from PIL import Image

from conftest import SUPPORTED_EXTENSIONS, SUPPORTED_FORMATS, TEST_RESOLUTION, png_bytes
from sequencer.core.encoder import PLACEHOLDER_COLOR, MultiFormatEncoder
from sequencer.schemas import OutputFormat


def _encoder(formats=SUPPORTED_FORMATS) -> MultiFormatEncoder:
    return MultiFormatEncoder(formats, TEST_RESOLUTION)


def test_writes_every_format(tmp_path):
    result = _encoder().encode_frame_sync(png_bytes(), tmp_path, 0)

    assert result.written == SUPPORTED_EXTENSIONS
    assert result.complete
    assert not result.placeholder
    for ext in SUPPORTED_EXTENSIONS:
        with Image.open(tmp_path / f"0.{ext}") as img:
            assert img.size == (TEST_RESOLUTION, TEST_RESOLUTION)


def test_png_keeps_transparency(tmp_path):
    _encoder().encode_frame_sync(png_bytes((10, 20, 30, 0)), tmp_path, 3)
    with Image.open(tmp_path / "3.png") as img:
        assert img.mode == "RGBA"
        assert img.getpixel((0, 0))[3] == 0


def test_existing_format_left_alone(tmp_path):
    (tmp_path / "4.png").write_bytes(b"keep me")
    result = _encoder().encode_frame_sync(png_bytes(), tmp_path, 4)

    assert result.skipped == ["png"]
    assert "png" not in result.written
    assert (tmp_path / "4.png").read_bytes() == b"keep me"
    assert (tmp_path / "4.webp").is_file()


def test_failing_format_does_not_block_others(tmp_path):
    bogus = OutputFormat(extension="bogus", pillow_format="NOPE")
    result = _encoder((bogus, *SUPPORTED_FORMATS)).encode_frame_sync(png_bytes(), tmp_path, 5)

    assert "bogus" in result.failed
    assert result.written == SUPPORTED_EXTENSIONS
    assert not result.placeholder
    assert not (tmp_path / "5.bogus").exists()


def test_undecodable_frame_becomes_placeholder(tmp_path):
    result = _encoder().encode_frame_sync(b"definitely not a png", tmp_path, 6)

    assert result.placeholder
    assert result.complete
    assert sorted(result.written) == sorted(SUPPORTED_EXTENSIONS)
    with Image.open(tmp_path / "6.png") as img:
        assert img.convert("RGB").getpixel((0, 0)) == PLACEHOLDER_COLOR


def test_placeholders_fill_only_missing_formats(tmp_path):
    (tmp_path / "7.webp").write_bytes(b"already here")
    result = _encoder().write_placeholders_sync(tmp_path, 7)

    assert "webp" not in result.written
    assert (tmp_path / "7.webp").read_bytes() == b"already here"
    assert (tmp_path / "7.png").is_file()


def test_no_partial_files_left_behind(tmp_path):
    bogus = OutputFormat(extension="bogus", pillow_format="NOPE")
    encoder = _encoder((*SUPPORTED_FORMATS, bogus))
    encoder.encode_frame_sync(png_bytes(), tmp_path, 0)
    encoder.encode_frame_sync(b"garbage", tmp_path, 1)

    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".partial")] == []


def test_async_wrappers(tmp_path):
    encoder = _encoder()

    async def _go():
        a = await encoder.encode_frame(png_bytes(), tmp_path, 8)
        b = await encoder.write_placeholders(tmp_path, 9)
        return a, b

    encoded, placeholder = asyncio.run(_go())
    assert encoded.written == SUPPORTED_EXTENSIONS
    assert placeholder.placeholder
    assert (tmp_path / "9.png").is_file()
