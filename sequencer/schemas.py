from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


SkipPolicy = Literal["any", "all"]


class GenerationJobStatus(str, Enum):
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


# ---------------------------------------------------------------------------
# Static configuration records
# ---------------------------------------------------------------------------

class MaterialPreset(BaseModel):
    """Named metal finish applied to every mesh of a model."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    metallic: float = Field(ge=0.0, le=1.0)
    roughness: float = Field(ge=0.0, le=1.0)
    base_color: tuple[float, float, float]

    @model_validator(mode="after")
    def _check_color(self) -> "MaterialPreset":
        if any(c < 0.0 or c > 1.0 for c in self.base_color):
            raise ValueError(f"base_color components must be in [0, 1]: {self.base_color}")
        return self


class OutputFormat(BaseModel):
    """One encoded image format and its fixed Pillow save options."""

    model_config = ConfigDict(frozen=True)

    extension: str
    pillow_format: str
    quality: int | None = Field(default=None, ge=0, le=100)
    speed: int | None = None
    method: int | None = None
    compress_level: int | None = Field(default=None, ge=0, le=9)
    optimize: bool | None = None

    def save_options(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"extension", "pillow_format"})


# ---------------------------------------------------------------------------
# Generation results
# ---------------------------------------------------------------------------

class SequenceReport(BaseModel):
    sequence: str
    model: str
    material: str
    output_dir: str
    rendered: int = 0
    skipped: int = 0
    failed: int = 0
    placeholders: int = 0
    restarts: int = 0
    error: str | None = None
    elapsed: float = 0.0


class BatchReport(BaseModel):
    sequences: list[SequenceReport] = Field(default_factory=list)
    elapsed: float = 0.0

    @property
    def failed_sequences(self) -> list[SequenceReport]:
        return [s for s in self.sequences if s.error is not None]

    @property
    def rendered(self) -> int:
        return sum(s.rendered for s in self.sequences)

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.sequences)


class SequenceManifest(BaseModel):
    model: str
    material: str
    material_properties: MaterialPreset
    frame_count: int
    rotation_increment: float
    formats: list[str]
    resolution: int
    placeholder_frames: list[int] = Field(default_factory=list)
    generated_at: datetime
    generator: str = "sequencer"


class SequenceSummary(BaseModel):
    name: str
    frame_count: int = 0
    formats: list[str] = Field(default_factory=list)
    missing_frames: dict[str, list[int]] = Field(default_factory=dict)
    unexpected_files: list[str] = Field(default_factory=list)
    placeholder_frames: list[int] = Field(default_factory=list)
    total_size: int = 0
    last_modified: datetime | None = None
    issues: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.issues


class ModelInfo(BaseModel):
    id: str
    file_name: str
    size: int
    last_modified: datetime
    has_sequences: bool = False


# ---------------------------------------------------------------------------
# Job service
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    """Input for a generation job: model ids × materials (default: all)."""

    model_ids: list[str] = Field(min_length=1)
    materials: list[str] | None = None

    request_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class JobRecordView(BaseModel):
    id: str
    status: GenerationJobStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    progress: int = 0
    detail: str = ""

    request_summary: dict[str, Any] = Field(default_factory=dict)
    result: BatchReport | None = None
    error: dict[str, Any] | None = None


class AsyncJobAccepted(BaseModel):
    job_id: str
    status: GenerationJobStatus = GenerationJobStatus.queued
    status_url: str
    result_url: str
