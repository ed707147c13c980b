"""
Database engine and session factory (SQLAlchemy async)
"""

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool sizing for PostgreSQL; other dialects keep their defaults."""
    if url.startswith("postgresql"):
        return {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_pre_ping": True,
        }
    return {}


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    return create_async_engine(url, echo=False, **_engine_options(url))


engine = build_engine()

# Every pipeline step opens its own short session from this factory;
# sessions are never shared between concurrent units.
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def create_tables(target: Optional[AsyncEngine] = None):
    """Create all tables registered on ``Base.metadata`` (idempotent)."""
    from models import Base

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def dispose_engine():
    await engine.dispose()
    logger.info("Database connections closed")
