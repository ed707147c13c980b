"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import JobStatus, JobType


# ============================================================================
# Health Check Schemas
# ============================================================================

class LatestJobInfo(BaseModel):
    """Most recent sync job, as reported by the health check"""
    id: str
    job_type: JobType
    status: JobStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processed_count: int = 0
    total_count: int = 0
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    latest_job: Optional[LatestJobInfo] = None

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.latest_job is not None and self.latest_job.status == "failed":
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "status": "healthy",
            "timestamp": "2024-01-15T10:30:00Z",
            "database_connected": True,
            "latest_job": {
                "id": "6f1c2d3e-0000-4000-8000-000000000000",
                "job_type": "scheduled",
                "status": "completed",
                "processed_count": 120,
                "total_count": 120
            }
        }
    })


# ============================================================================
# Sync Schemas
# ============================================================================

class SyncRequest(BaseModel):
    """Ids to reconcile"""
    ids: List[str] = Field(..., min_length=1, description="Supplier product ids")

    @field_validator("ids", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        if isinstance(v, list):
            return [str(item) for item in v if item is not None]
        return v

    @field_validator("ids")
    @classmethod
    def require_non_blank(cls, v):
        ids = [item.strip() for item in v if item.strip()]
        if not ids:
            raise ValueError("ids must contain at least one non-empty id")
        return ids


class SyncAcceptedResponse(BaseModel):
    """Returned by POST /sync; the job runs in the background"""
    job_id: str = Field(..., serialization_alias="jobId")
    status: str = "running"
    total: int


class JobResponse(BaseModel):
    """Job status with summary and per-id results"""
    id: str
    job_type: JobType
    status: JobStatus
    total_count: int
    processed_count: int
    summary: Dict[str, Any] = Field(default_factory=dict)
    results: List[Dict[str, Any]] = Field(default_factory=list)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# Processing Config Schemas
# ============================================================================

class ProcessingConfigSchema(BaseModel):
    """Hot-reloadable processing config (values are clamped on save)"""
    concurrency: int
    batch_interval_ms: int
    max_retries: int
    base_delay_ms: int
    request_timeout_ms: int


class ProcessingConfigUpdate(BaseModel):
    """Partial update of the processing config"""
    concurrency: Optional[int] = None
    batch_interval_ms: Optional[int] = None
    max_retries: Optional[int] = None
    base_delay_ms: Optional[int] = None
    request_timeout_ms: Optional[int] = None


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "Resource not found",
            "detail": "The requested job does not exist",
            "timestamp": "2024-01-15T10:30:00Z"
        }
    })
