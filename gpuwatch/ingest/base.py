"""Base connector contract for retailer offer sources."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

import httpx

from gpuwatch.db.models import RetailerSource, StockStatus
from gpuwatch.ingest.rate_limiter import Limiter

logger = logging.getLogger(__name__)

BOT_USER_AGENT = "Mozilla/5.0 (compatible; GPUWatchBot/1.0; +https://gpuwatch.com/bot)"


@dataclass
class CatalogEntry:
    """Active catalog item handed to a connector."""

    id: int
    slug: str
    model: str
    retailer_sku: Optional[str] = None  # per-retailer override from sku_mappings


@dataclass
class NormalizedOffer:
    """Canonical offer shape produced by every connector."""

    gpu_id: int
    retailer: str
    sku: str
    price_usd: Decimal
    stock_status: StockStatus
    affiliate_url: str
    direct_url: str
    regular_price_usd: Optional[Decimal] = None
    sale_price_usd: Optional[Decimal] = None
    stock_quantity: Optional[int] = None
    observed_at: datetime = None

    def __post_init__(self):
        if self.observed_at is None:
            self.observed_at = datetime.utcnow()


@dataclass
class FetchOffersResult:
    """Offers plus per-item error strings from one connector call."""

    offers: list[NormalizedOffer] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def normalize_stock(raw: Union[str, bool, None]) -> StockStatus:
    """
    Map a retailer-specific stock value onto the five-value vocabulary.

    Booleans map directly; strings are matched by substring on the lowered
    value. Anything unrecognized is UNKNOWN.
    """
    if raw is True or raw == "true":
        return StockStatus.IN_STOCK
    if raw is False or raw == "false":
        return StockStatus.OUT_OF_STOCK
    if not raw:
        return StockStatus.UNKNOWN

    s = str(raw).lower()
    # "unavailable" contains "available", so check out-of-stock wording first
    if "unavailable" in s or "sold out" in s or "out of stock" in s or s == "out_of_stock":
        return StockStatus.OUT_OF_STOCK
    if "available" in s or "in stock" in s or s in ("instock", "in_stock"):
        return StockStatus.IN_STOCK
    if "preorder" in s or "pre-order" in s:
        return StockStatus.PREORDER
    if "limited" in s or "low stock" in s:
        return StockStatus.LIMITED
    return StockStatus.UNKNOWN


def parse_price(price_text: Optional[str]) -> Optional[Decimal]:
    """Parse a price like '$1,299.99' into a Decimal."""
    if not price_text:
        return None

    cleaned = price_text.replace("$", "").replace(",", "").strip()
    match = re.search(r'\d+(?:\.\d+)?', cleaned)
    if match:
        try:
            return Decimal(match.group())
        except InvalidOperation as exc:
            logger.debug("Failed to parse price: %s", price_text, exc_info=exc)
    return None


class RetailerConnector(ABC):
    """
    One retailer's offer source.

    Subclasses implement `lookup()` for a single catalog entry; the base
    class owns the batch loop, partial-failure handling and rate limiting.
    Each instance owns its own limiter and HTTP client.
    """

    retailer: RetailerSource
    label: str = ""

    def __init__(
        self,
        limiter: Limiter,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.limiter = limiter
        self.timeout = timeout
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch_offers(self, catalog: list[CatalogEntry]) -> FetchOffersResult:
        """
        Fetch offers for every catalog entry this retailer can look up.

        A failed lookup never aborts the batch: it becomes an error string
        and the loop moves on.

        Args:
            catalog: Active catalog entries in scope for this run

        Returns:
            FetchOffersResult with offers in catalog order
        """
        result = FetchOffersResult()
        label = self.label or self.retailer.value

        for entry in catalog:
            key = self.lookup_key(entry)
            if not key:
                continue

            await self.limiter.acquire()
            try:
                offer = await self.lookup(entry, key)
            except Exception as e:
                msg = str(e) or type(e).__name__
                result.errors.append(f"{label} error for {entry.slug}: {msg}")
                logger.warning("%s lookup failed for %s: %s", label, entry.slug, msg)
                continue

            if offer is None:
                result.errors.append(f"{label}: no results for {entry.slug}")
                continue

            result.offers.append(offer)

        logger.info(
            "%s fetched %d offers (%d errors) for %d catalog entries",
            label,
            len(result.offers),
            len(result.errors),
            len(catalog),
        )
        return result

    def lookup_key(self, entry: CatalogEntry) -> Optional[str]:
        """Search term / identifier for an entry, or None to skip it silently."""
        return entry.retailer_sku or entry.model

    @abstractmethod
    async def lookup(self, entry: CatalogEntry, key: str) -> Optional[NormalizedOffer]:
        """
        Look up one catalog entry.

        Returns:
            The offer, or None if the retailer has no matching listing

        Raises:
            Any exception for a failed lookup; the batch loop records it
        """
        pass

    def build_affiliate_url(self, gpu_slug: str) -> str:
        return f"/out/{gpu_slug}/{self.retailer.value}"

    def make_offer(self, entry: CatalogEntry, **fields) -> NormalizedOffer:
        """Build a NormalizedOffer with the retailer and affiliate URL filled in."""
        return NormalizedOffer(
            gpu_id=entry.id,
            retailer=self.retailer.value,
            affiliate_url=self.build_affiliate_url(entry.slug),
            **fields,
        )
