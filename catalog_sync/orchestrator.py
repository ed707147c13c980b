"""
Job orchestrator.

Splits the requested ids into sequential chunks, runs each chunk through
the batch scheduler and records progress after every chunk. The
processing config is reloaded before each chunk so changes made through
the API apply to running jobs.
"""

import functools
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.activity import ActivityLogger
from catalog_sync.batch import BatchResult, BatchScheduler, drain_tasks
from catalog_sync.executor import RequestExecutor
from catalog_sync.jobs import JobTracker, summarize
from catalog_sync.reconciler import JOB_FATAL_ERRORS, ProcessingUnit, Reconciler, UnitOutcome
from catalog_sync.settings_store import SettingsStore
from catalog_sync.store import ReconciledProductStore
from core.config import settings
from core.exceptions import SyncException, UnitTimeoutError
from models.base import ActivityLevel

logger = logging.getLogger(__name__)


def normalize_ids(supplier_ids: Iterable[Any]) -> List[str]:
    """Strings, trimmed, empty entries dropped, duplicates removed in order."""
    seen = set()
    result = []
    for raw in supplier_ids:
        if raw is None:
            continue
        sid = str(raw).strip()
        if sid and sid not in seen:
            seen.add(sid)
            result.append(sid)
    return result


def chunked(items: List[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class SyncOrchestrator:
    """
    Run one reconciliation job end to end.

    Args:
        session_factory: Session factory for the job, activity and settings stores
        reconciler: Per-id state machine
        executors: Request executors whose retry policy follows the
            processing config
        chunk_size: Ids per chunk
        unit_timeout: Seconds per unit
        chunk_timeout: Seconds per chunk
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        reconciler: Reconciler,
        executors: Optional[List[RequestExecutor]] = None,
        chunk_size: Optional[int] = None,
        unit_timeout: Optional[float] = None,
        chunk_timeout: Optional[float] = None
    ):
        self.session_factory = session_factory
        self.reconciler = reconciler
        self.executors = executors or []
        self.chunk_size = chunk_size or settings.SYNC_CHUNK_SIZE
        self.unit_timeout = unit_timeout if unit_timeout is not None else settings.UNIT_TIMEOUT_SECONDS
        self.chunk_timeout = chunk_timeout if chunk_timeout is not None else settings.CHUNK_TIMEOUT_SECONDS

        self.jobs = JobTracker(session_factory)
        self.settings_store = SettingsStore(session_factory)
        self.store: ReconciledProductStore = reconciler.store
        self._schedulers: List[BatchScheduler] = []

    async def run(self, job_id: str, supplier_ids: Iterable[Any]) -> Dict[str, Any]:
        """
        Process all ids for ``job_id``.

        Never raises: failures are recorded on the job, which keeps the
        results collected before the failure.

        Returns:
            Job report with ``status``, ``summary`` and ``results``
        """
        ids = normalize_ids(supplier_ids)
        total = len(ids)
        activity = ActivityLogger(self.session_factory, job_id)
        results: List[Dict[str, Any]] = []
        started = time.monotonic()

        await activity.log(f"Job started with {total} ids", ActivityLevel.INFO, step="job")

        try:
            chunks = chunked(ids, self.chunk_size)
            for number, chunk in enumerate(chunks, start=1):
                fatal = await self._run_chunk(job_id, chunk, number, len(chunks), activity, results)
                await self.jobs.update_progress(job_id, results, total)
                if fatal is not None:
                    raise fatal

            await self.jobs.complete(job_id, results, total)
            summary = summarize(results, total)
            await activity.log(
                f"Job completed in {time.monotonic() - started:.1f}s: {summary}",
                ActivityLevel.SUCCESS, step="job", details=summary
            )
            return {"job_id": job_id, "status": "completed", "summary": summary, "results": results}

        except Exception as e:
            message = e.message if isinstance(e, SyncException) else str(e)
            if not isinstance(e, SyncException):
                logger.exception(f"Job {job_id} crashed")
            await self.jobs.fail(job_id, message, results, total)
            await activity.log(f"Job failed: {message}", ActivityLevel.ERROR, step="job")
            summary = summarize(results, total)
            summary["error"] = message
            return {"job_id": job_id, "status": "failed", "summary": summary, "results": results}

    async def _apply_processing_config(self) -> BatchScheduler:
        config = await self.settings_store.load_processing_config()
        policy = config.retry_policy()
        for executor in self.executors:
            executor.policy = policy
        ttl = self.reconciler.fit_reservation_ttl(policy)
        logger.debug(f"Processing config: {config.to_dict()}, reservation TTL {ttl}s")
        scheduler = BatchScheduler(
            concurrency=config.concurrency,
            interval_ms=config.batch_interval_ms,
            unit_timeout=self.unit_timeout,
        )
        self._schedulers.append(scheduler)
        return scheduler

    async def drain_abandoned(self, timeout: Optional[float]) -> int:
        """
        Wait for units abandoned by this job's chunks to finish.

        Must run before the HTTP clients used by those units are closed.

        Returns:
            Number of units cancelled after ``timeout``
        """
        abandoned = set().union(*(scheduler.abandoned for scheduler in self._schedulers))
        return await drain_tasks(abandoned, timeout)

    async def _run_chunk(
        self,
        job_id: str,
        chunk: List[str],
        number: int,
        chunk_count: int,
        activity: ActivityLogger,
        results: List[Dict[str, Any]]
    ) -> Optional[Exception]:
        """
        Reconcile one chunk and append its outcomes to ``results``.

        Returns:
            The first job-fatal error raised by a unit, if any
        """
        scheduler = await self._apply_processing_config()

        existing = await self.store.load_for_ids(chunk)
        listed = sum(1 for records in existing.values() if records)
        await activity.log(
            f"Chunk {number}/{chunk_count}: {len(chunk)} ids, {listed} already listed",
            ActivityLevel.INFO, step="chunk"
        )

        units = [
            functools.partial(self.reconciler.reconcile, ProcessingUnit(sid, job_id), activity)
            for sid in chunk
        ]
        batch = await scheduler.run_with_timeout(units, self.chunk_timeout)

        fatal: Optional[Exception] = None
        for sid, slot in zip(chunk, batch):
            outcome = self._outcome_for(sid, slot)
            if isinstance(slot.error, JOB_FATAL_ERRORS):
                if fatal is None:
                    fatal = slot.error
            elif not slot.success:
                # The reconciler never got to log these
                await activity.log(
                    outcome.message or outcome.reason,
                    ActivityLevel.ERROR, supplier_id=sid, step="error", details=outcome.to_dict()
                )
            results.append(outcome.to_dict())
        return fatal

    @staticmethod
    def _outcome_for(supplier_id: str, slot: BatchResult) -> UnitOutcome:
        if slot.success:
            return slot.value

        error = slot.error
        if isinstance(error, UnitTimeoutError):
            return UnitOutcome(supplier_id, "error", reason="timeout", message=error.message)
        if isinstance(error, JOB_FATAL_ERRORS):
            return UnitOutcome(supplier_id, "error", reason="fatal", message=error.message)

        logger.error(f"[{supplier_id}] Unexpected error: {error!r}", exc_info=error)
        return UnitOutcome(supplier_id, "error", reason="unexpected", message=str(error))
