"""
Async job manager for sequence generation.

Provides:
  - Bounded work queue drained by a single worker (the renderer is one
    heavyweight process per sequence; jobs never overlap)
  - Per-job progress tracking ("Frame N/M" granularity)
  - TTL-based cleanup of completed job records
  - submit / get / cancel / wait operations
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .config import SequencerSettings
from .core.generator import SequenceGenerator
from .errors import RenderBackendUnavailable
from .schemas import BatchReport, GenerationJobStatus, GenerationRequest, JobRecordView

logger = logging.getLogger(__name__)

_FINISHED = {
    GenerationJobStatus.succeeded,
    GenerationJobStatus.failed,
    GenerationJobStatus.cancelled,
}
_ACTIVE = {GenerationJobStatus.queued, GenerationJobStatus.running}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    id: str
    request: GenerationRequest
    status: GenerationJobStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    progress: int = 0
    detail: str = ""
    result: BatchReport | None = None
    error: dict[str, Any] | None = None
    done_event: asyncio.Event = field(default_factory=asyncio.Event)

    def as_view(self) -> JobRecordView:
        return JobRecordView(
            id=self.id,
            status=self.status,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            progress=self.progress,
            detail=self.detail,
            request_summary={
                "model_ids": self.request.model_ids,
                "materials": self.request.materials,
            },
            result=self.result,
            error=self.error,
        )


class GenerationJobManager:
    def __init__(self, settings: SequencerSettings, generator: SequenceGenerator):
        self.settings = settings
        self.generator = generator
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=settings.max_queue_size)
        self.jobs: dict[str, JobRecord] = {}
        self._worker: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    async def startup(self) -> None:
        self._worker = asyncio.create_task(self._worker_loop(), name="sequence-worker")
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="sequence-cleanup")
        logger.info("generation_job_manager_started backend=%s", self.generator.backend.name)

    async def shutdown(self) -> None:
        for task in (self._worker, self._cleanup_task):
            if task:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._worker = None
        self._cleanup_task = None

    def validate(self, request: GenerationRequest) -> None:
        """Raise ``InvalidSequenceRequest`` for unknown models or materials."""
        for model_id in request.model_ids:
            self.generator.find_model(model_id)
        for name in request.materials or []:
            self.generator.find_material(name)

    async def submit(self, request: GenerationRequest, job_id: str | None = None) -> JobRecord:
        self.validate(request)
        async with self._lock:
            if self.queue.full():
                raise RuntimeError("Job queue is full, retry later")

            _id = job_id or request.request_id or str(uuid.uuid4())
            if _id in self.jobs:
                raise RuntimeError(f"Duplicate job_id: {_id}")

            record = JobRecord(
                id=_id,
                request=request,
                status=GenerationJobStatus.queued,
                created_at=_utc_now(),
            )
            self.jobs[_id] = record
            self.queue.put_nowait(_id)
            return record

    async def wait_for_completion(self, job_id: str, timeout_seconds: float) -> JobRecord:
        record = await self.get(job_id)
        try:
            await asyncio.wait_for(record.done_event.wait(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            raise RuntimeError(f"Job '{job_id}' did not finish within {timeout_seconds}s")
        return await self.get(job_id)

    async def get(self, job_id: str) -> JobRecord:
        record = self.jobs.get(job_id)
        if not record:
            raise KeyError(f"Job not found: {job_id}")
        return record

    async def cancel(self, job_id: str) -> JobRecord:
        record = await self.get(job_id)
        if record.status == GenerationJobStatus.queued:
            record.status = GenerationJobStatus.cancelled
            record.finished_at = _utc_now()
            record.done_event.set()
            return record
        if record.status in _FINISHED:
            return record
        raise RuntimeError("Running jobs cannot be force-cancelled safely")

    def active_count(self) -> int:
        return sum(1 for x in self.jobs.values() if x.status in _ACTIVE)

    def list_records(self) -> list[JobRecord]:
        return sorted(self.jobs.values(), key=lambda r: r.created_at)

    def uses_model(self, model_id: str) -> bool:
        """Whether a queued or running job will read this model."""
        return any(
            model_id in x.request.model_ids
            for x in self.jobs.values()
            if x.status in _ACTIVE
        )

    def metrics(self) -> dict[str, int]:
        statuses = [x.status for x in self.jobs.values()]
        return {
            "total_jobs": len(statuses),
            "active_jobs": sum(1 for s in statuses if s in _ACTIVE),
            "queue_size": self.queue.qsize(),
            "completed_jobs": statuses.count(GenerationJobStatus.succeeded),
            "failed_jobs": statuses.count(GenerationJobStatus.failed),
        }

    def _make_progress_callback(self, record: JobRecord) -> Callable[[str, int], None]:
        def _cb(stage: str, pct: int) -> None:
            record.progress = pct
            record.detail = stage
        return _cb

    async def _run_job(self, record: JobRecord) -> None:
        record.status = GenerationJobStatus.running
        record.started_at = _utc_now()
        record.progress = 1
        record.detail = "Starting renderer..."

        try:
            result = await self.generator.run_models(
                record.request.model_ids,
                record.request.materials,
                progress_callback=self._make_progress_callback(record),
            )
            record.result = result
            record.progress = 100
            if result.failed_sequences:
                record.status = GenerationJobStatus.failed
                record.error = {
                    "message": f"{len(result.failed_sequences)} sequences failed",
                    "status_code": 500,
                }
                record.detail = "Some sequences failed"
            else:
                record.status = GenerationJobStatus.succeeded
                record.detail = f"Generated {len(result.sequences)} sequences"

        except RenderBackendUnavailable as exc:
            record.status = GenerationJobStatus.failed
            record.error = {"message": str(exc), "status_code": 503}
            record.progress = 100
            record.detail = "Renderer unavailable"
            logger.error("Job %s: renderer unavailable: %s", record.id, exc)

        except Exception as exc:
            record.status = GenerationJobStatus.failed
            record.error = {"message": str(exc), "status_code": 500}
            record.progress = 100
            record.detail = f"Error: {str(exc)[:200]}"
            logger.exception("Job %s failed", record.id)

        finally:
            record.finished_at = _utc_now()
            record.done_event.set()

    async def _worker_loop(self) -> None:
        while True:
            job_id = await self.queue.get()
            try:
                record = self.jobs.get(job_id)
                if not record or record.status == GenerationJobStatus.cancelled:
                    continue
                await self._run_job(record)
            finally:
                self.queue.task_done()

    def purge_finished(self, now: datetime | None = None) -> int:
        now = now or _utc_now()
        ttl = timedelta(seconds=self.settings.finished_job_ttl_seconds)
        before = len(self.jobs)

        expired = [
            jid
            for jid, job in self.jobs.items()
            if job.status in _FINISHED and job.finished_at and now - job.finished_at > ttl
        ]
        for jid in expired:
            self.jobs.pop(jid, None)

        completed_ids = [jid for jid, job in self.jobs.items() if job.status in _FINISHED]
        overflow = max(0, len(completed_ids) - self.settings.max_job_records)
        if overflow > 0:
            completed_sorted = sorted(
                completed_ids,
                key=lambda i: self.jobs[i].finished_at or self.jobs[i].created_at,
            )
            for jid in completed_sorted[:overflow]:
                self.jobs.pop(jid, None)
        return before - len(self.jobs)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            self.purge_finished()
