from __future__ import annotations


class SequencerError(Exception):
    """Base class for sequence generation failures."""


class RenderBackendUnavailable(SequencerError):
    """The renderer process cannot be started at all. Fatal for the run."""


class RenderSessionError(SequencerError):
    """A render session broke (failed to start, or its process died)."""


class FrameRenderError(SequencerError):
    """A single frame could not be rendered; the session is still usable."""


class InvalidSequenceRequest(SequencerError):
    """Unknown material, missing model file, or other bad input."""
