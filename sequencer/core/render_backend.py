"""
Render backend interface.

A backend hands out sessions; a session owns one renderer process for the
lifetime of a single (model, material) sequence and turns
``(model bytes, material, angle)`` into one lossless PNG frame.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..schemas import MaterialPreset


class RenderSession(ABC):
    @abstractmethod
    async def render_frame(
        self,
        model: bytes,
        material: MaterialPreset,
        angle_degrees: float,
    ) -> bytes:
        """Return PNG bytes, or raise ``FrameRenderError`` / ``RenderSessionError``."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the session down. Safe to call more than once."""

    async def __aenter__(self) -> "RenderSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class RenderBackend(ABC):
    name: str = "backend"

    async def preflight(self) -> None:
        """Raise ``RenderBackendUnavailable`` if sessions can never start."""
        return None

    @abstractmethod
    async def open_session(self) -> RenderSession:
        """Start an isolated renderer and wait until it accepts frames."""
