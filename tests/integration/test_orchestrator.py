"""
Job orchestration tests: chunking, progress, fatal errors
"""

import asyncio

import pytest
from sqlalchemy import select

from catalog_sync.jobs import JobTracker
from catalog_sync.orchestrator import SyncOrchestrator, chunked, normalize_ids
from models.activity_log import ActivityLog
from models.base import JobStatus
from tests.fakes import make_product


def test_normalize_ids():
    assert normalize_ids([" 1", 2, "1", "", None, "3 ", "2"]) == ["1", "2", "3"]


def test_chunked():
    assert chunked(["1", "2", "3", "4", "5"], 2) == [["1", "2"], ["3", "4"], ["5"]]
    assert chunked([], 10) == []


@pytest.mark.asyncio
async def test_job_completes_with_summary(session_factory, reconciler, remote):
    remote.products["1"] = make_product()
    remote.products["2"] = make_product(name="Celeste")
    jobs = JobTracker(session_factory)
    job_id = await jobs.create(["1", "2", "3"])

    orchestrator = SyncOrchestrator(session_factory, reconciler, chunk_size=2)
    report = await orchestrator.run(job_id, ["1", "2", "3", "1"])

    assert report["status"] == "completed"
    summary = report["summary"]
    assert summary["total"] == 3
    assert summary["processed"] == 3
    assert summary["published"] == 2
    assert summary["skipped"] == 1
    assert summary["reasons"] == {"not_found": 1}
    assert [r["supplier_id"] for r in report["results"]] == ["1", "2", "3"]

    job = await jobs.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.processed_count == 3
    assert job.summary["published"] == 2
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_authentication_failure_fails_job_and_keeps_results(session_factory, reconciler, remote):
    remote.products["1"] = make_product()
    remote.products["2"] = make_product(name="Celeste")
    jobs = JobTracker(session_factory)
    job_id = await jobs.create(["1", "2"])

    orchestrator = SyncOrchestrator(session_factory, reconciler, chunk_size=1)
    await orchestrator.run(job_id, ["1"])

    remote.marketplace_status = 401
    job_id = await jobs.create(["1", "2"])
    report = await orchestrator.run(job_id, ["2", "1"])

    assert report["status"] == "failed"
    assert len(report["results"]) == 1
    assert report["results"][0]["reason"] == "fatal"

    job = await jobs.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_message
    assert len(job.results) == 1


@pytest.mark.asyncio
async def test_processing_config_is_applied_to_executors(session_factory, reconciler, executor, remote):
    remote.products["1"] = make_product()
    orchestrator = SyncOrchestrator(session_factory, reconciler, executors=[executor])
    await orchestrator.settings_store.save_processing_config({"max_retries": 2, "request_timeout_ms": 8000})

    job_id = await orchestrator.jobs.create(["1"])
    report = await orchestrator.run(job_id, ["1"])

    assert report["status"] == "completed"
    assert executor.policy.max_attempts == 2
    assert executor.policy.timeout_seconds == 8.0


@pytest.mark.asyncio
async def test_empty_job_completes(session_factory, reconciler):
    orchestrator = SyncOrchestrator(session_factory, reconciler)
    job_id = await orchestrator.jobs.create([])

    report = await orchestrator.run(job_id, [])

    assert report["status"] == "completed"
    assert report["summary"]["total"] == 0
    assert report["results"] == []


@pytest.mark.asyncio
async def test_timeouts_and_unexpected_errors_reach_the_activity_log(session_factory, reconciler, monkeypatch):
    reconcile = reconciler.reconcile

    async def misbehaving(unit, activity):
        if unit.supplier_id == "slow":
            await asyncio.sleep(5)
        if unit.supplier_id == "boom":
            raise RuntimeError("boom")
        return await reconcile(unit, activity)

    monkeypatch.setattr(reconciler, "reconcile", misbehaving)
    orchestrator = SyncOrchestrator(session_factory, reconciler, unit_timeout=0.1)
    job_id = await orchestrator.jobs.create(["slow", "boom"])

    report = await orchestrator.run(job_id, ["slow", "boom"])
    await orchestrator.drain_abandoned(timeout=0)

    assert [r["reason"] for r in report["results"]] == ["timeout", "unexpected"]
    async with session_factory() as session:
        rows = (await session.execute(
            select(ActivityLog).where(ActivityLog.job_id == job_id, ActivityLog.step == "error")
        )).scalars().all()

    logged = {row.supplier_id: row for row in rows}
    assert set(logged) == {"slow", "boom"}
    assert logged["slow"].details["reason"] == "timeout"
    assert logged["boom"].details["reason"] == "unexpected"
    assert logged["boom"].message == "boom"
    assert all(row.level == "error" for row in rows)


@pytest.mark.asyncio
async def test_abandoned_units_are_drained(session_factory, reconciler, monkeypatch):
    finished = []

    async def lingering(unit, activity):
        await asyncio.sleep(0.3)
        finished.append(unit.supplier_id)

    monkeypatch.setattr(reconciler, "reconcile", lingering)
    orchestrator = SyncOrchestrator(session_factory, reconciler, unit_timeout=0.05)
    job_id = await orchestrator.jobs.create(["1"])

    report = await orchestrator.run(job_id, ["1"])
    assert report["results"][0]["reason"] == "timeout"
    assert finished == []

    assert await orchestrator.drain_abandoned(timeout=2) == 0
    assert finished == ["1"]


@pytest.mark.asyncio
async def test_reservation_ttl_follows_processing_config(session_factory, reconciler, remote):
    orchestrator = SyncOrchestrator(session_factory, reconciler)
    await orchestrator.settings_store.save_processing_config({"max_retries": 10, "request_timeout_ms": 60000})

    job_id = await orchestrator.jobs.create([])
    await orchestrator.run(job_id, ["1"])

    config = await orchestrator.settings_store.load_processing_config()
    assert reconciler.reservation_ttl_seconds >= config.retry_policy().worst_case_seconds()
    assert reconciler.reservation_ttl_seconds > reconciler.options.reservation_ttl_seconds
