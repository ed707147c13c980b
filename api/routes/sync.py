"""
Sync trigger, job status and processing config endpoints
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from api.dependencies import get_sync_service, verify_api_key
from catalog_sync.service import SyncService
from schemas.api import (
    ErrorResponse,
    JobResponse,
    ProcessingConfigSchema,
    ProcessingConfigUpdate,
    SyncAcceptedResponse,
    SyncRequest,
)
from models.base import JobType
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Sync"], dependencies=[Depends(verify_api_key)])


@router.post(
    "/sync",
    response_model=SyncAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def trigger_sync(
    payload: SyncRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service)
):
    """
    Start a reconciliation job for the given supplier ids.

    The job runs after the response is sent; poll ``GET /jobs/{jobId}``.
    """
    request_id = getattr(request.state, "request_id", "-")
    job_id = await service.start_job(payload.ids, JobType.MANUAL)
    background_tasks.add_task(service.run_job, job_id, payload.ids)

    logger.info(f"[{request_id}] POST /sync - job {job_id} accepted with {len(payload.ids)} ids")
    return SyncAcceptedResponse(job_id=job_id, total=len(payload.ids))


@router.get("/jobs/{job_id}", response_model=JobResponse, responses={404: {"model": ErrorResponse}})
async def get_job(job_id: str, service: SyncService = Depends(get_sync_service)):
    """Job status, summary and the results collected so far"""
    job = await service.jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return JobResponse.model_validate(job)


@router.get("/config/processing", response_model=ProcessingConfigSchema)
async def get_processing_config(service: SyncService = Depends(get_sync_service)):
    config = await service.settings_store.load_processing_config()
    return ProcessingConfigSchema(**config.to_dict())


@router.put("/config/processing", response_model=ProcessingConfigSchema)
async def update_processing_config(
    payload: ProcessingConfigUpdate,
    service: SyncService = Depends(get_sync_service)
):
    """
    Update the processing config.

    Values are clamped to their allowed ranges; running jobs pick the new
    values up at their next chunk.
    """
    config = await service.settings_store.save_processing_config(payload.model_dump(exclude_none=True))
    return ProcessingConfigSchema(**config.to_dict())
