from sqlalchemy import BigInteger, Integer, JSON, Enum
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")


def enum_column_type(enum_cls):
    """Store enum values (not member names) in a plain VARCHAR column."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32
    )


# ============================================================================
# ENUMS
# ============================================================================

class ListingStatus(str, enum.Enum):
    """Reconciled product record status"""
    PROCESSING = "processing"
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    CLOSED_DUPLICATE = "closed_duplicate"


class JobStatus(str, enum.Enum):
    """Sync job status"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, enum.Enum):
    """What triggered a sync job"""
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class ActivityLevel(str, enum.Enum):
    """Activity log severity"""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
