"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (ListingStatus, JobStatus, ...)
    reconciled_product: Supplier id -> marketplace listing links and reservations
    sync_job: Reconciliation job registry with incremental progress
    activity_log: Append-only structured activity events
    system_setting: Key-value runtime settings (processing config, tokens, FX)

Database Schema:
    All models inherit from the Base declarative class. JSON columns map to
    JSONB on PostgreSQL and plain JSON on SQLite.

Usage:
    from models import ReconciledProduct, SyncJob
    from models.base import ListingStatus, JobStatus

Example:
    record = ReconciledProduct(
        supplier_id="12345",
        marketplace_id="MLC1234567",
        status=ListingStatus.ACTIVE,
        price=18990
    )
    session.add(record)
    await session.commit()
"""

from models.base import Base, ListingStatus, JobStatus, JobType, ActivityLevel
from models.reconciled_product import ReconciledProduct
from models.sync_job import SyncJob
from models.activity_log import ActivityLog
from models.system_setting import SystemSetting

__all__ = [
    "Base",
    "ListingStatus",
    "JobStatus",
    "JobType",
    "ActivityLevel",
    "ReconciledProduct",
    "SyncJob",
    "ActivityLog",
    "SystemSetting",
]
