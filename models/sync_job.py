from sqlalchemy import Column, String, Integer, Float, DateTime, Text, Index
from datetime import datetime
import uuid
from models.base import Base, JSONType, JobStatus, JobType, enum_column_type


class SyncJob(Base):
    """
    Tracks every reconciliation job.

    Purpose:
    - Job id handed back to callers of the trigger endpoint
    - Incremental progress (results + summary) persisted per chunk
    - Persistent "already running" guard for scheduled runs
    - Results are kept even when the job fails
    """
    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_type = Column(enum_column_type(JobType), nullable=False, default=JobType.MANUAL, index=True)
    status = Column(enum_column_type(JobStatus), nullable=False, default=JobStatus.RUNNING, index=True)

    # Input and output
    input_ids = Column(JSONType, nullable=False, default=list)
    results = Column(JSONType, nullable=False, default=list)
    summary = Column(JSONType, nullable=False, default=dict)

    # Progress
    total_count = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_sync_job_type_status", "job_type", "status"),
    )
