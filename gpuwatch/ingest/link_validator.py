"""HEAD-check the direct URLs of live offers."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from gpuwatch.config import settings
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database
from gpuwatch.ingest.base import BOT_USER_AGENT

logger = logging.getLogger(__name__)


async def check_link(
    client: httpx.AsyncClient,
    gpu: str,
    retailer: str,
    url: str,
    timeout: float,
) -> dict:
    """HEAD one URL. Network errors are reported, never raised."""
    started = time.monotonic()
    result = {"gpu": gpu, "retailer": retailer, "url": url}
    try:
        response = await client.head(url, timeout=timeout, follow_redirects=True)
        result["http_status"] = response.status_code
        result["status"] = "ok" if response.status_code < 400 else "error"
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        result["http_status"] = None
        result["status"] = "error"
        result["error"] = str(e) or type(e).__name__
    result["latency_ms"] = int((time.monotonic() - started) * 1000)
    return result


async def validate_offer_links(
    db: Database,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> dict:
    """
    Check every active offer's direct URL concurrently.

    Returns:
        {"summary": {"total", "ok", "errors"}, "results": [...]}
    """
    timeout = timeout or settings.link_validation_timeout
    async with db.session() as session:
        links = await Repository(session).list_active_offer_links()

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(headers={"User-Agent": BOT_USER_AGENT})
    try:
        results = await asyncio.gather(
            *(check_link(client, gpu, retailer, url, timeout) for gpu, retailer, url in links)
        )
    finally:
        if owns_client:
            await client.aclose()

    ok = sum(1 for r in results if r["status"] == "ok")
    summary = {"total": len(results), "ok": ok, "errors": len(results) - ok}
    logger.info(f"Link validation: {summary['ok']}/{summary['total']} ok")
    return {"summary": summary, "results": list(results)}
