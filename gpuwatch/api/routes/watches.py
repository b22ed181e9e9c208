"""Watch subscription routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gpuwatch.api.deps import get_database
from gpuwatch.catalog.validation import WatchCreate
from gpuwatch.db.repository import Repository

router = APIRouter(prefix="/api/watches", tags=["watches"])


class WatchResponse(BaseModel):
    id: int
    email: str
    gpu_id: int
    target_price_usd: Optional[float]
    notify_in_stock: bool
    last_notified_at: Optional[datetime]
    created_at: datetime


@router.post("", response_model=WatchResponse, status_code=status.HTTP_201_CREATED)
async def upsert_watch(body: WatchCreate, db: AsyncSession = Depends(get_database)):
    """Create or update the watch for (email, gpu)."""
    repo = Repository(db)
    gpu = await repo.get_gpu(body.gpu_id)
    if gpu is None or not gpu.active:
        raise HTTPException(status_code=404, detail="GPU not found")

    watch = await repo.upsert_watch(
        email=body.email.lower(),
        gpu_id=body.gpu_id,
        target_price_usd=body.target_price_usd,
        notify_in_stock=body.notify_in_stock,
    )
    await db.commit()

    return WatchResponse(
        id=watch.id,
        email=watch.email,
        gpu_id=watch.gpu_id,
        target_price_usd=float(watch.target_price_usd) if watch.target_price_usd else None,
        notify_in_stock=watch.notify_in_stock,
        last_notified_at=watch.last_notified_at,
        created_at=watch.created_at,
    )
