"""Affiliate redirect with click tracking."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from gpuwatch.api.deps import get_db_handle
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database
from gpuwatch.observability import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["outbound"])


@router.get("/out/{slug}/{retailer}")
async def outbound_redirect(
    slug: str,
    retailer: str,
    request: Request,
    db: Database = Depends(get_db_handle),
):
    """Record the click, then redirect to the retailer (or the GPU page)."""
    async with db.session() as session:
        gpu, direct_url = await Repository(session).resolve_outbound_url(slug, retailer)
    if gpu is None:
        raise HTTPException(status_code=404, detail="GPU not found")

    try:
        async with db.session() as session:
            await Repository(session).record_outbound_click(
                gpu_id=gpu.id,
                retailer=retailer,
                ref_url=request.headers.get("referer"),
                user_agent=request.headers.get("user-agent"),
            )
            await session.commit()
    except Exception as e:
        # tracking never blocks the redirect
        capture_exception(e, component="outbound", slug=slug, retailer=retailer)

    return RedirectResponse(url=direct_url or f"/gpu/{slug}", status_code=307)
