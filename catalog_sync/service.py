"""
Service wiring: builds the clients, the reconciler and the orchestrator
for a job and runs it.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.clients import MarketplaceClient, SupplierClient
from catalog_sync.executor import RequestExecutor, RetryContext
from catalog_sync.jobs import JobTracker
from catalog_sync.orchestrator import SyncOrchestrator, normalize_ids
from catalog_sync.reconciler import Reconciler, ReconcilerOptions
from catalog_sync.settings_store import SettingsStore
from catalog_sync.store import ReconciledProductStore
from core.config import settings
from core.database import async_session_maker
from core.exceptions import MissingCredentialsError
from models.base import JobType

logger = logging.getLogger(__name__)


def _log_retry(context: RetryContext):
    logger.info(
        f"Retrying {context.method} {context.url} "
        f"({context.classification}, attempt {context.attempt}/{context.max_attempts}, "
        f"wait {context.delay_seconds:.2f}s)"
    )


class SyncService:
    """
    Entry point used by the API, the scheduler and the CLI.

    Args:
        session_factory: Session factory (defaults to the application's)
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
        options: Reconciler options (defaults from settings)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_maker,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        options: Optional[ReconcilerOptions] = None
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.options = options
        self.jobs = JobTracker(session_factory)
        self.settings_store = SettingsStore(session_factory)

    async def start_job(self, supplier_ids: Iterable[Any], job_type: JobType = JobType.MANUAL) -> str:
        """Register a job for ``supplier_ids``; run it with ``run_job``."""
        return await self.jobs.create(normalize_ids(supplier_ids), job_type)

    async def run_job(self, job_id: str, supplier_ids: Iterable[Any]) -> Dict[str, Any]:
        """
        Run a registered job to completion.

        Missing credentials fail the job before any id is processed.
        """
        ids = normalize_ids(supplier_ids)
        token, user_id = await self.settings_store.marketplace_credentials()

        missing = []
        if not settings.SUPPLIER_API_KEY:
            missing.append("SUPPLIER_API_KEY")
        if not token:
            missing.append("marketplace access token")
        if missing:
            error = MissingCredentialsError(
                f"Missing credentials: {', '.join(missing)}", context={"missing": missing}
            )
            await self.jobs.fail(job_id, error.message, [], len(ids))
            return {"job_id": job_id, "status": "failed", "summary": {"error": error.message}, "results": []}

        async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
            supplier_executor = RequestExecutor(client, on_retry=_log_retry, service_name="supplier")
            marketplace_executor = RequestExecutor(client, on_retry=_log_retry, service_name="marketplace")

            reconciler = Reconciler(
                supplier=SupplierClient(supplier_executor, settings.SUPPLIER_API_URL, settings.SUPPLIER_API_KEY),
                marketplace=MarketplaceClient(
                    marketplace_executor, settings.MARKETPLACE_API_URL, token, user_id
                ),
                store=ReconciledProductStore(self.session_factory),
                rate_provider=self.settings_store.exchange_rate,
                options=self.options,
            )
            orchestrator = SyncOrchestrator(
                self.session_factory,
                reconciler,
                executors=[supplier_executor, marketplace_executor],
            )
            try:
                return await orchestrator.run(job_id, ids)
            finally:
                # Timed-out units may still be using the client
                await orchestrator.drain_abandoned(settings.ABANDONED_DRAIN_SECONDS)

    async def sync(self, supplier_ids: List[Any], job_type: JobType = JobType.MANUAL) -> Dict[str, Any]:
        """Create a job and run it in the foreground."""
        job_id = await self.start_job(supplier_ids, job_type)
        return await self.run_job(job_id, supplier_ids)
