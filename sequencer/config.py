from __future__ import annotations

import os
import shutil
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .materials import MATERIAL_PRESETS, material_names
from .schemas import MaterialPreset, OutputFormat, SkipPolicy


SERVICE_ROOT = Path(__file__).resolve().parents[1]

load_dotenv(SERVICE_ROOT / ".env", override=False)

FRAME_COUNT = 36
MODEL_EXTENSION = ".glb"

DEFAULT_OUTPUT_FORMATS: tuple[OutputFormat, ...] = (
    OutputFormat(extension="avif", pillow_format="AVIF", quality=70, speed=6),
    OutputFormat(extension="webp", pillow_format="WEBP", quality=85, method=6),
    OutputFormat(extension="png", pillow_format="PNG", compress_level=9, optimize=True),
)


def _default_blender_executable() -> Path:
    candidates: list[str] = [
        os.getenv("SEQGEN_BLENDER_EXECUTABLE", "").strip(),
        os.getenv("BLENDER_PATH", "").strip(),
        os.getenv("BLENDER_EXEC", "").strip(),
        shutil.which("blender") or "",
        "/usr/bin/blender",
    ]
    for candidate in candidates:
        if not candidate:
            continue
        path = Path(candidate).expanduser()
        if path.exists():
            return path
    return Path("/usr/bin/blender")


class SequencerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SEQGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = "sequence-generator-service"
    host: str = "0.0.0.0"
    port: int = 8110
    log_level: str = "INFO"

    # Blender
    blender_executable: Path = Field(default_factory=_default_blender_executable)
    blender_startup_timeout_seconds: int = Field(default=120, ge=5, le=600)
    # 0 disables the per-frame timeout; a hung renderer then blocks the run
    frame_timeout_seconds: float = Field(default=0, ge=0, le=3600)

    # Asset tree
    models_dir: Path = Field(default_factory=lambda: SERVICE_ROOT / "public" / "models")
    output_dir: Path = Field(
        default_factory=lambda: SERVICE_ROOT / "public" / "images" / "products" / "3d-sequences"
    )
    resolution: int = Field(default=1024, ge=128, le=4096)
    skip_policy: SkipPolicy = "any"
    max_model_upload_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    # Job queue
    max_queue_size: int = Field(default=64, ge=1, le=10000)

    # Job lifecycle
    finished_job_ttl_seconds: int = Field(default=1800, ge=60, le=86400)
    cleanup_interval_seconds: int = Field(default=30, ge=5, le=3600)
    max_job_records: int = Field(default=2000, ge=100, le=200000)

    # Auth
    api_key: str | None = None

    @field_validator("blender_executable", "models_dir", "output_dir", mode="after")
    @classmethod
    def _resolve_path(cls, value: Path) -> Path:
        return value.expanduser().resolve()


class PipelineConfig(BaseModel):
    """Immutable run configuration handed to every pipeline component."""

    model_config = ConfigDict(frozen=True)

    models_dir: Path
    output_dir: Path
    model_extension: str = MODEL_EXTENSION
    frame_count: int = Field(default=FRAME_COUNT, ge=1, le=360)
    resolution: int = Field(default=1024, ge=1, le=4096)
    formats: tuple[OutputFormat, ...] = DEFAULT_OUTPUT_FORMATS
    materials: tuple[MaterialPreset, ...] = MATERIAL_PRESETS
    skip_policy: SkipPolicy = "any"

    @property
    def angle_step(self) -> float:
        return 360.0 / self.frame_count

    @property
    def format_extensions(self) -> list[str]:
        return [f.extension for f in self.formats]

    @property
    def material_names(self) -> list[str]:
        return material_names(self.materials)

    def material(self, name: str) -> MaterialPreset:
        for preset in self.materials:
            if preset.name == name:
                return preset
        raise KeyError(name)


def build_pipeline_config(settings: SequencerSettings) -> PipelineConfig:
    return PipelineConfig(
        models_dir=settings.models_dir,
        output_dir=settings.output_dir,
        resolution=settings.resolution,
        skip_policy=settings.skip_policy,
    )


settings = SequencerSettings()
