"""
Activity-log sink.

Writes structured ActivityLog rows for pipeline steps and unit outcomes.
A failed write is logged and never interrupts the pipeline.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.activity_log import ActivityLog
from models.base import ActivityLevel

logger = logging.getLogger(__name__)

_LOG_METHODS = {
    ActivityLevel.INFO: logger.info,
    ActivityLevel.SUCCESS: logger.info,
    ActivityLevel.WARNING: logger.warning,
    ActivityLevel.ERROR: logger.error,
}


class ActivityLogger:
    """
    Append-only activity sink bound to one job.

    Args:
        session_factory: Session factory; each event uses its own session
        job_id: Job the events belong to
    """

    def __init__(self, session_factory: async_sessionmaker, job_id: Optional[str] = None):
        self.session_factory = session_factory
        self.job_id = job_id

    async def log(
        self,
        message: str,
        level: ActivityLevel = ActivityLevel.INFO,
        supplier_id: Optional[str] = None,
        step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        prefix = f"[{supplier_id}] " if supplier_id else ""
        _LOG_METHODS.get(level, logger.info)(f"{prefix}{step or 'event'}: {message}")

        try:
            async with self.session_factory() as session:
                session.add(ActivityLog(
                    job_id=self.job_id,
                    supplier_id=supplier_id,
                    level=level.value,
                    step=step,
                    message=message,
                    details=details,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Activity log write failed: {e}")
