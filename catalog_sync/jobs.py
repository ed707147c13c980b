"""
Job registry and progress tracking.

Jobs are persisted in ``sync_jobs``: created as running, updated after
every chunk with the results collected so far, then completed or failed.
Failed jobs keep their partial results.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.base import JobStatus, JobType
from models.sync_job import SyncJob

logger = logging.getLogger(__name__)


def summarize(results: List[Dict[str, Any]], total: int) -> Dict[str, Any]:
    """Counts by outcome status plus a breakdown of skip/error reasons."""
    by_status = Counter(r.get("status") for r in results)
    reasons = Counter(
        r.get("reason") for r in results
        if r.get("status") in ("skipped", "error") and r.get("reason")
    )
    return {
        "total": total,
        "processed": len(results),
        "published": by_status.get("published", 0),
        "updated": by_status.get("updated", 0),
        "skipped": by_status.get("skipped", 0),
        "errors": by_status.get("error", 0),
        "reasons": dict(reasons),
    }


class JobTracker:
    """
    Persistent job registry.

    Args:
        session_factory: Session factory; each call uses its own session
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(self, input_ids: List[str], job_type: JobType = JobType.MANUAL) -> str:
        """Register a running job and return its id."""
        async with self.session_factory() as session:
            job = SyncJob(
                job_type=job_type,
                status=JobStatus.RUNNING,
                input_ids=list(input_ids),
                results=[],
                summary=summarize([], len(input_ids)),
                total_count=len(input_ids),
                processed_count=0,
                started_at=datetime.utcnow(),
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)

        logger.info(f"Job {job.id} created ({job_type.value}, {len(input_ids)} ids)")
        return job.id

    async def update_progress(self, job_id: str, results: List[Dict[str, Any]], total: int):
        async with self.session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id)
                .values(
                    results=list(results),
                    summary=summarize(results, total),
                    processed_count=len(results),
                    updated_at=datetime.utcnow(),
                )
            )
            await session.commit()

    async def complete(self, job_id: str, results: List[Dict[str, Any]], total: int):
        summary = summarize(results, total)
        await self._finish(job_id, JobStatus.COMPLETED, results, summary)
        logger.info(f"Job {job_id} completed: {summary}")

    async def fail(
        self,
        job_id: str,
        error: str,
        results: Optional[List[Dict[str, Any]]] = None,
        total: Optional[int] = None
    ):
        results = list(results or [])
        summary = summarize(results, total if total is not None else len(results))
        summary["error"] = error
        await self._finish(job_id, JobStatus.FAILED, results, summary, error_message=error)
        logger.error(f"Job {job_id} failed: {error}")

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        results: List[Dict[str, Any]],
        summary: Dict[str, Any],
        error_message: Optional[str] = None
    ):
        async with self.session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None:
                logger.warning(f"Job {job_id} not found while finishing")
                return
            job.status = status
            job.results = list(results)
            job.summary = summary
            job.processed_count = len(results)
            job.error_message = error_message
            job.completed_at = datetime.utcnow()
            job.duration_seconds = (job.completed_at - job.started_at).total_seconds()
            await session.commit()

    async def get(self, job_id: str) -> Optional[SyncJob]:
        async with self.session_factory() as session:
            return await session.get(SyncJob, job_id)

    async def find_running(self, job_type: Optional[JobType] = None) -> Optional[SyncJob]:
        """Most recent running job, optionally of one type."""
        stmt = select(SyncJob).where(SyncJob.status == JobStatus.RUNNING)
        if job_type is not None:
            stmt = stmt.where(SyncJob.job_type == job_type)
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(SyncJob.started_at.desc()).limit(1))
            return result.scalar_one_or_none()

    async def fail_stale(self, older_than_minutes: int) -> int:
        """Mark running jobs without progress for ``older_than_minutes`` as failed."""
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncJob)
                .where(SyncJob.status == JobStatus.RUNNING, SyncJob.updated_at < cutoff)
                .values(
                    status=JobStatus.FAILED,
                    error_message=f"Stalled: no progress for {older_than_minutes} minutes",
                    completed_at=datetime.utcnow(),
                )
            )
            await session.commit()

        if result.rowcount:
            logger.warning(f"Marked {result.rowcount} stalled job(s) as failed")
        return result.rowcount or 0
