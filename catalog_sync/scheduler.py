import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catalog_sync.service import SyncService
from catalog_sync.store import ReconciledProductStore
from core.config import settings
from models.base import JobType, ListingStatus

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, service: SyncService = None, interval_minutes: int = None):
        self.scheduler = AsyncIOScheduler()
        self.service = service or SyncService()
        self.interval_minutes = interval_minutes or settings.SCHEDULED_SYNC_MINUTES
        self.store = ReconciledProductStore(self.service.session_factory)

    async def run_sync_job(self):
        """Re-sync every supplier id that has an active or paused listing"""
        running = await self.service.jobs.find_running(JobType.SCHEDULED)
        if running is not None:
            logger.info(f"Scheduler: job {running.id} still running, skipping this tick")
            return

        ids = await self.store.supplier_ids_with_status([ListingStatus.ACTIVE, ListingStatus.PAUSED])
        if not ids:
            logger.info("Scheduler: no listed products to re-sync")
            return

        logger.info(f"Scheduler: starting re-sync of {len(ids)} ids")
        job_id = await self.service.start_job(ids, JobType.SCHEDULED)
        report = await self.service.run_job(job_id, ids)
        logger.info(f"Scheduler: job {job_id} finished with status {report['status']}")

    async def start(self):
        """Fail stalled jobs, then start the interval trigger"""
        await self.service.jobs.fail_stale(settings.STALE_JOB_MINUTES)

        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="catalog_sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")
