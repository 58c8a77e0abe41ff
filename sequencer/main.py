"""
Sequence Generator Service: FastAPI entry point.

Endpoints:
  GET  /health             Service health check
  GET  /materials          Material presets, in render order
  GET  /models             Model files available for generation
  POST /models             Upload a .glb model (multipart field "file")
  DELETE /models/{id}      Delete a model and its sequences
  GET  /sequences          Inventory of generated sequences
  GET  /jobs               All jobs with queue metrics
  POST /jobs               Queue a generation job (model ids × materials)
  GET  /jobs/{id}          Job status / progress
  GET  /jobs/{id}/result   Final result
  DELETE /jobs/{id}        Cancel a queued job
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from sequencer_shared.files import ensure_dir
from sequencer_shared.logging import configure_logging

from .cli import build_generator
from .config import SequencerSettings, settings as default_settings
from .core.generator import SequenceGenerator
from .core.inventory import delete_model, list_models, scan_sequences, store_model
from .errors import InvalidSequenceRequest
from .job_manager import GenerationJobManager
from .schemas import (
    AsyncJobAccepted,
    GenerationJobStatus,
    GenerationRequest,
    JobRecordView,
)

logger = logging.getLogger("sequencer.main")


def create_app(
    settings: SequencerSettings | None = None,
    generator: SequenceGenerator | None = None,
) -> FastAPI:
    settings = settings or default_settings
    generator = generator or build_generator(settings)
    config = generator.config
    jobs = GenerationJobManager(settings, generator)

    def _require_api_key(x_api_key: str | None) -> None:
        if settings.api_key and x_api_key != settings.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        ensure_dir(config.output_dir)
        await jobs.startup()
        yield
        await jobs.shutdown()

    app = FastAPI(
        title="Jewelry Sequence Generator Service",
        version="1.0.0",
        description=(
            "Renders 360° image sequences (36 frames × AVIF/WebP/PNG) of ring "
            "models in each metal finish using headless Blender, and reports "
            "on the generated asset tree."
        ),
        lifespan=lifespan,
    )
    app.state.jobs = jobs

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Health / catalog
    # -----------------------------------------------------------------------

    @app.get("/")
    async def root():
        return {
            "service": settings.service_name,
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": settings.service_name,
            "backend": generator.backend.name,
            "queue_size": jobs.queue.qsize(),
            "active_jobs": jobs.active_count(),
            "blender_exists": settings.blender_executable.exists(),
            "models_dir_exists": config.models_dir.is_dir(),
        }

    @app.get("/materials")
    async def materials():
        return {"materials": [m.model_dump() for m in config.materials]}

    @app.get("/models")
    async def models():
        return {"models": [m.model_dump(mode="json") for m in list_models(config)]}

    @app.post("/models")
    async def upload_model(
        file: UploadFile = File(...),
        x_api_key: str | None = Header(default=None),
    ):
        _require_api_key(x_api_key)
        try:
            info = store_model(config, file.filename, file.file, settings.max_model_upload_bytes)
        except InvalidSequenceRequest as e:
            raise HTTPException(status_code=400, detail=str(e))
        except FileExistsError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"success": True, "model": info.model_dump(mode="json")}

    @app.delete("/models/{model_id}")
    async def remove_model(model_id: str, x_api_key: str | None = Header(default=None)):
        _require_api_key(x_api_key)
        if jobs.uses_model(model_id):
            raise HTTPException(status_code=409, detail=f"Model {model_id} is used by an active job")
        try:
            removed = delete_model(config, model_id)
        except InvalidSequenceRequest as e:
            raise HTTPException(status_code=400, detail=str(e))
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail=f"Model not found: {model_id}")
        return {"success": True, "model_id": model_id, "removed_sequences": removed}

    @app.get("/sequences")
    async def sequences():
        return {"sequences": [s.model_dump(mode="json") for s in scan_sequences(config)]}

    # -----------------------------------------------------------------------
    # Jobs
    # -----------------------------------------------------------------------

    @app.get("/jobs")
    async def list_jobs(x_api_key: str | None = Header(default=None)):
        _require_api_key(x_api_key)
        return {
            "jobs": [r.as_view().model_dump(mode="json") for r in jobs.list_records()],
            "metrics": jobs.metrics(),
        }

    @app.post("/jobs", response_model=AsyncJobAccepted)
    async def enqueue_job(body: GenerationRequest, x_api_key: str | None = Header(default=None)):
        _require_api_key(x_api_key)
        try:
            record = await jobs.submit(body)
        except InvalidSequenceRequest as e:
            raise HTTPException(status_code=400, detail=str(e))
        except RuntimeError as e:
            raise HTTPException(status_code=429, detail=str(e))

        return AsyncJobAccepted(
            job_id=record.id,
            status=record.status,
            status_url=f"/jobs/{record.id}",
            result_url=f"/jobs/{record.id}/result",
        )

    @app.get("/jobs/{job_id}", response_model=JobRecordView)
    async def get_job(job_id: str, x_api_key: str | None = Header(default=None)):
        _require_api_key(x_api_key)
        try:
            record = await jobs.get(job_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
        return record.as_view()

    @app.get("/jobs/{job_id}/result")
    async def get_job_result(job_id: str, x_api_key: str | None = Header(default=None)):
        _require_api_key(x_api_key)
        try:
            record = await jobs.get(job_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

        if record.status == GenerationJobStatus.queued:
            return {"status": "queued", "progress": record.progress}
        if record.status == GenerationJobStatus.running:
            return {"status": "running", "progress": record.progress, "detail": record.detail}
        if record.status == GenerationJobStatus.cancelled:
            return {"status": "cancelled"}
        if record.status == GenerationJobStatus.failed:
            return {
                "status": "failed",
                "error": (record.error or {}).get("message", "unknown error"),
                "result": record.result.model_dump() if record.result else None,
            }
        return {
            "status": "succeeded",
            "result": record.result.model_dump() if record.result else None,
        }

    @app.delete("/jobs/{job_id}")
    async def cancel_job(job_id: str, x_api_key: str | None = Header(default=None)):
        _require_api_key(x_api_key)
        try:
            record = await jobs.cancel(job_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
        except RuntimeError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"success": True, "job_id": job_id, "status": record.status}

    return app


def run() -> None:
    import uvicorn

    configure_logging(default_settings.log_level)
    uvicorn.run(
        "sequencer.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
        reload=bool(int(os.getenv("UVICORN_RELOAD", "0"))),
    )


if __name__ == "__main__":
    run()
