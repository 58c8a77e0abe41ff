"""Tests for sequencer/job_manager.py"""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import MODEL_ID, FakeRenderBackend
from sequencer.core.generator import SequenceGenerator
from sequencer.errors import InvalidSequenceRequest
from sequencer.job_manager import GenerationJobManager
from sequencer.schemas import GenerationJobStatus, GenerationRequest


def _manager(settings, config, backend=None) -> GenerationJobManager:
    return GenerationJobManager(settings, SequenceGenerator(config, backend or FakeRenderBackend()))


def _run_job(manager: GenerationJobManager, request: GenerationRequest):
    async def _go():
        await manager.startup()
        try:
            record = await manager.submit(request)
            return await manager.wait_for_completion(record.id, timeout_seconds=30)
        finally:
            await manager.shutdown()

    return asyncio.run(_go())


def test_job_succeeds(settings, config):
    manager = _manager(settings, config)
    record = _run_job(
        manager, GenerationRequest(model_ids=[MODEL_ID], materials=["rose-gold"], request_id="job-1")
    )

    assert record.id == "job-1"
    assert record.status == GenerationJobStatus.succeeded
    assert record.progress == 100
    assert record.result.rendered == 36
    assert record.started_at <= record.finished_at
    view = record.as_view()
    assert view.request_summary == {"model_ids": [MODEL_ID], "materials": ["rose-gold"]}


def test_job_with_failed_sequence(settings, config):
    manager = _manager(settings, config, FakeRenderBackend(failing_opens={0}))
    record = _run_job(manager, GenerationRequest(model_ids=[MODEL_ID], materials=["platinum"]))

    assert record.status == GenerationJobStatus.failed
    assert record.error["status_code"] == 500
    assert len(record.result.failed_sequences) == 1


def test_job_backend_unavailable(settings, config):
    manager = _manager(settings, config, FakeRenderBackend(unavailable=True))
    record = _run_job(manager, GenerationRequest(model_ids=[MODEL_ID]))

    assert record.status == GenerationJobStatus.failed
    assert record.error["status_code"] == 503
    assert record.detail == "Renderer unavailable"


def test_submit_validates_before_queueing(settings, config):
    manager = _manager(settings, config)

    async def _go():
        with pytest.raises(InvalidSequenceRequest):
            await manager.submit(GenerationRequest(model_ids=["ghost-ring"]))
        with pytest.raises(InvalidSequenceRequest):
            await manager.submit(GenerationRequest(model_ids=[MODEL_ID], materials=["tin"]))

    asyncio.run(_go())
    assert manager.jobs == {}


def test_queue_full_and_duplicates(settings, config):
    manager = _manager(settings.model_copy(update={"max_queue_size": 1}), config)

    async def _go():
        await manager.submit(GenerationRequest(model_ids=[MODEL_ID]), job_id="a")
        with pytest.raises(RuntimeError, match="full"):
            await manager.submit(GenerationRequest(model_ids=[MODEL_ID]), job_id="b")

    asyncio.run(_go())

    manager = _manager(settings, config)

    async def _dup():
        await manager.submit(GenerationRequest(model_ids=[MODEL_ID]), job_id="a")
        with pytest.raises(RuntimeError, match="Duplicate"):
            await manager.submit(GenerationRequest(model_ids=[MODEL_ID]), job_id="a")

    asyncio.run(_dup())


def test_cancel_queued_job(settings, config):
    manager = _manager(settings, config)

    async def _go():
        record = await manager.submit(GenerationRequest(model_ids=[MODEL_ID]))
        cancelled = await manager.cancel(record.id)
        with pytest.raises(KeyError):
            await manager.cancel("nope")
        return cancelled

    record = asyncio.run(_go())
    assert record.status == GenerationJobStatus.cancelled
    assert record.done_event.is_set()
    assert manager.active_count() == 0


def test_purge_finished(settings, config):
    manager = _manager(settings, config)
    record = _run_job(manager, GenerationRequest(model_ids=[MODEL_ID], materials=["platinum"]))

    assert manager.purge_finished(now=record.finished_at) == 0
    later = record.finished_at + timedelta(seconds=settings.finished_job_ttl_seconds + 1)
    assert manager.purge_finished(now=later) == 1
    assert manager.jobs == {}


def test_uses_model_tracks_active_jobs(settings, config):
    manager = _manager(settings, config)

    async def _go():
        record = await manager.submit(GenerationRequest(model_ids=[MODEL_ID]), job_id="a")
        queued = manager.uses_model(MODEL_ID), manager.uses_model("band-classic-002")
        await manager.cancel(record.id)
        return queued, manager.uses_model(MODEL_ID)

    (queued, other), after_cancel = asyncio.run(_go())
    assert queued is True
    assert other is False
    assert after_cancel is False


def test_metrics_and_listing(settings, config):
    manager = _manager(settings, config, FakeRenderBackend(failing_opens={0}))

    async def _go():
        await manager.startup()
        try:
            record = await manager.submit(
                GenerationRequest(model_ids=[MODEL_ID], materials=["platinum"])
            )
            await manager.wait_for_completion(record.id, timeout_seconds=30)
        finally:
            await manager.shutdown()
        await manager.submit(GenerationRequest(model_ids=[MODEL_ID]), job_id="waiting")
        return record

    failed = asyncio.run(_go())

    assert [r.id for r in manager.list_records()] == [failed.id, "waiting"]
    assert manager.metrics() == {
        "total_jobs": 2,
        "active_jobs": 1,
        "queue_size": 1,
        "completed_jobs": 0,
        "failed_jobs": 1,
    }
