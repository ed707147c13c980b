from sqlalchemy import Column, String, Text, DateTime, Index
from datetime import datetime
from models.base import Base, BigIntegerPK, JSONType


class ActivityLog(Base):
    """
    Append-only structured log of reconciliation steps.

    One row per notable step or terminal outcome of a unit, so operators
    can follow what happened to a supplier id across jobs.
    """
    __tablename__ = "activity_logs"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    job_id = Column(String(36), nullable=True, index=True)
    supplier_id = Column(String(64), nullable=True, index=True)

    level = Column(String(16), nullable=False, default="info")
    step = Column(String(32), nullable=True)
    message = Column(Text, nullable=False)
    details = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_activity_job_created", "job_id", "created_at"),
    )
