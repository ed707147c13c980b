"""
FastAPI dependency providers
"""

from typing import AsyncGenerator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.service import SyncService
from core.config import settings
from core.database import async_session_maker

_sync_service = SyncService(async_session_maker)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session"""
    async with async_session_maker() as session:
        yield session


def get_sync_service() -> SyncService:
    """Shared sync service (overridden in tests)"""
    return _sync_service


async def verify_api_key(x_api_key: str = Header(None)):
    """Require ``X-API-Key`` when API_KEY is configured"""
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
