"""Admin routes: catalog writes, link validation, manual ingestion."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gpuwatch.api.deps import get_database, get_db_handle, get_queue, require_admin_api_key
from gpuwatch.catalog.validation import validate_gpu_input
from gpuwatch.db.models import RetailerSource
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database
from gpuwatch.errors import CatalogValidationError
from gpuwatch.ingest.link_validator import validate_offer_links
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import ingest_job

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.post("/gpus", status_code=status.HTTP_201_CREATED)
async def create_gpu(
    data: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_database),
):
    """Validate and create a catalog entry."""
    try:
        gpu_in = validate_gpu_input(data)
    except CatalogValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})

    try:
        gpu = await Repository(db).create_gpu(gpu_in.model_dump())
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail={"errors": [{"field": "slug", "message": "slug already exists"}]},
        )

    logger.info(f"Created GPU {gpu.slug} ({gpu.id})")
    return {"id": gpu.id, "slug": gpu.slug}


@router.post("/gpus/{gpu_id}/deactivate")
async def deactivate_gpu(gpu_id: int, db: AsyncSession = Depends(get_database)):
    """Soft-delete: the GPU drops out of future ingestion runs."""
    if not await Repository(db).deactivate_gpu(gpu_id):
        raise HTTPException(status_code=404, detail="GPU not found")
    await db.commit()
    return {"id": gpu_id, "active": False}


@router.get("/validate-links")
async def validate_links(db: Database = Depends(get_db_handle)):
    return await validate_offer_links(db)


@router.post("/ingest/{source}", status_code=status.HTTP_202_ACCEPTED)
async def trigger_ingestion(
    source: str,
    gpu_id: Optional[int] = None,
    queue: JobQueue = Depends(get_queue),
):
    """Enqueue a one-off ingestion run."""
    try:
        RetailerSource(source)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown source: {source}")

    job = await queue.enqueue(ingest_job(source, gpu_id=gpu_id))
    if job is None:
        return {"enqueued": False, "reason": "ingestion already pending"}
    return {"enqueued": True, "job_id": job.id}
