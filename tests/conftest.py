"""Shared fixtures: an in-memory render backend and a throwaway asset tree."""
from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image, features

from sequencer.config import DEFAULT_OUTPUT_FORMATS, PipelineConfig, SequencerSettings
from sequencer.core.render_backend import RenderBackend, RenderSession
from sequencer.errors import FrameRenderError, RenderBackendUnavailable, RenderSessionError

# Pillow builds without libavif can still run everything except AVIF output
HAS_AVIF = features.check("avif")
SUPPORTED_FORMATS = tuple(
    f for f in DEFAULT_OUTPUT_FORMATS if f.extension != "avif" or HAS_AVIF
)
SUPPORTED_EXTENSIONS = [f.extension for f in SUPPORTED_FORMATS]

MODEL_ID = "ring-luxury-001"
TEST_RESOLUTION = 32


def png_bytes(color=(200, 120, 90, 255), size: int = TEST_RESOLUTION) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (size, size), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeSession(RenderSession):
    def __init__(self, backend: "FakeRenderBackend"):
        self.backend = backend
        self.closed = False

    async def render_frame(self, model, material, angle_degrees):
        if self.closed:
            raise RenderSessionError("session closed")
        self.backend.calls.append((material.name, angle_degrees))
        if angle_degrees in self.backend.crash_angles:
            self.backend.crash_angles.discard(angle_degrees)
            self.closed = True
            self.backend.closed += 1
            raise RenderSessionError("renderer exited unexpectedly (code=-11)")
        if angle_degrees in self.backend.fail_angles:
            raise FrameRenderError("injected render failure")
        if angle_degrees in self.backend.garbage_angles:
            return b"not an image"
        return png_bytes()

    async def close(self):
        if not self.closed:
            self.closed = True
            self.backend.closed += 1


class FakeRenderBackend(RenderBackend):
    name = "fake"

    def __init__(
        self,
        fail_angles=(),
        garbage_angles=(),
        unavailable: bool = False,
        failing_opens=(),
        crash_angles=(),
    ):
        self.fail_angles = set(fail_angles)
        self.garbage_angles = set(garbage_angles)
        self.unavailable = unavailable
        self.failing_opens = set(failing_opens)
        # each crash angle kills the session rendering it, once
        self.crash_angles = set(crash_angles)
        self.calls: list[tuple[str, float]] = []
        self.sessions: list[FakeSession] = []
        self.closed = 0
        self.preflights = 0

    async def preflight(self):
        self.preflights += 1
        if self.unavailable:
            raise RenderBackendUnavailable("fake renderer missing")

    async def open_session(self):
        if self.unavailable:
            raise RenderBackendUnavailable("fake renderer missing")
        # failing_opens holds the 0-based indices of open attempts that crash
        if len(self.sessions) in self.failing_opens:
            self.sessions.append(None)
            raise RenderSessionError("renderer crashed during startup")
        session = FakeSession(self)
        self.sessions.append(session)
        return session

    @property
    def opened(self) -> int:
        return sum(1 for s in self.sessions if s is not None)


@pytest.fixture
def asset_tree(tmp_path: Path) -> tuple[Path, Path]:
    models = tmp_path / "models"
    output = tmp_path / "3d-sequences"
    models.mkdir()
    (models / f"{MODEL_ID}.glb").write_bytes(b"glTF\x02\x00\x00\x00fake")
    return models, output


@pytest.fixture
def config(asset_tree) -> PipelineConfig:
    models, output = asset_tree
    return PipelineConfig(
        models_dir=models,
        output_dir=output,
        resolution=TEST_RESOLUTION,
        formats=SUPPORTED_FORMATS,
    )


@pytest.fixture
def settings(asset_tree, tmp_path: Path) -> SequencerSettings:
    models, output = asset_tree
    return SequencerSettings(
        models_dir=models,
        output_dir=output,
        resolution=128,
        blender_executable=tmp_path / "no-blender-here",
    )
