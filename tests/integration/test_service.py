"""
End-to-end service tests against the in-memory remote
"""

import asyncio

import pytest

from catalog_sync.reconciler import Reconciler
from catalog_sync.service import SyncService
from catalog_sync.settings_store import FX_RATE_KEY, MARKETPLACE_TOKENS_KEY
from core.config import settings
from models.base import JobStatus, JobType
from tests.fakes import MARKETPLACE_URL, SUPPLIER_URL, make_product


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(settings, "SUPPLIER_API_URL", SUPPLIER_URL)
    monkeypatch.setattr(settings, "MARKETPLACE_API_URL", MARKETPLACE_URL)
    monkeypatch.setattr(settings, "SUPPLIER_API_KEY", "supplier-key")
    monkeypatch.setattr(settings, "MARKETPLACE_ACCESS_TOKEN", "env-token")
    monkeypatch.setattr(settings, "MARKETPLACE_USER_ID", None)
    monkeypatch.setattr(settings, "FX_RATE", 1000.0)


@pytest.fixture
def service(session_factory, remote, reconciler_options, configured):
    return SyncService(session_factory, transport=remote.transport, options=reconciler_options)


@pytest.mark.asyncio
async def test_sync_publishes_products(service, remote):
    remote.products["1"] = make_product()

    report = await service.sync(["1"])

    assert report["status"] == "completed"
    assert report["summary"]["published"] == 1
    assert remote.calls_to("GET", "/users/me")
    job = await service.jobs.get(report["job_id"])
    assert job.status == JobStatus.COMPLETED
    assert job.job_type == JobType.MANUAL


@pytest.mark.asyncio
async def test_stored_credentials_and_rate_take_precedence(service, remote):
    await service.settings_store.put(MARKETPLACE_TOKENS_KEY, {"access_token": "stored", "user_id": 777})
    await service.settings_store.put(FX_RATE_KEY, {"rate": 2000.0})
    remote.products["1"] = make_product()

    report = await service.sync(["1"])

    assert report["results"][0]["price"] == 36990
    assert remote.calls_to("GET", "/users/me") == []


@pytest.mark.asyncio
async def test_missing_credentials_fail_job(service, monkeypatch, remote):
    monkeypatch.setattr(settings, "MARKETPLACE_ACCESS_TOKEN", None)

    job_id = await service.start_job(["1", "2"])
    report = await service.run_job(job_id, ["1", "2"])

    assert report["status"] == "failed"
    assert "marketplace access token" in report["summary"]["error"]
    assert remote.calls == []
    job = await service.jobs.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.total_count == 2


@pytest.mark.asyncio
async def test_start_job_normalizes_ids(service):
    job_id = await service.start_job([" 5", "5", 6, ""], JobType.SCHEDULED)

    job = await service.jobs.get(job_id)
    assert job.input_ids == ["5", "6"]
    assert job.job_type == JobType.SCHEDULED
    assert job.status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_http_client_outlives_abandoned_units(service, remote, monkeypatch):
    remote.products["1"] = make_product()
    fetched = []

    async def slow_reconcile(self, unit, activity):
        await asyncio.sleep(0.2)
        fetched.append(await self.supplier.fetch_product(unit.supplier_id))

    monkeypatch.setattr(Reconciler, "reconcile", slow_reconcile)
    monkeypatch.setattr(settings, "UNIT_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(settings, "ABANDONED_DRAIN_SECONDS", 2.0)

    report = await service.sync(["1"])

    assert report["results"][0]["reason"] == "timeout"
    assert [product.supplier_id for product in fetched] == ["1"]
