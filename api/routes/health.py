"""
Health check endpoint with database and latest job status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db
from schemas.api import HealthCheckResponse, LatestJobInfo
from models.sync_job import SyncJob
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Status of the most recent sync job
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    latest_job = None
    if db_connected:
        try:
            result = await db.execute(select(SyncJob).order_by(SyncJob.started_at.desc()).limit(1))
            job = result.scalar_one_or_none()
            if job is not None:
                latest_job = LatestJobInfo.model_validate(job)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch latest job: {str(e)}")

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        latest_job=latest_job
    )
