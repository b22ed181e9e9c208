"""FastAPI dependencies."""

from typing import AsyncIterator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from gpuwatch.config import settings
from gpuwatch.db.session import Database
from gpuwatch.queue.backend import JobQueue


def get_db_handle(request: Request) -> Database:
    return request.app.state.db


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


async def get_database(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency for database session."""
    async with request.app.state.db.session() as session:
        yield session


async def require_admin_api_key(
    x_admin_api_key: str = Header(..., alias="X-Admin-API-Key")
) -> None:
    """
    Dependency to require admin API key for protected endpoints.

    Raises:
        HTTPException: 503 if no key is configured, 403 if invalid
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured",
        )

    if x_admin_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key",
        )
