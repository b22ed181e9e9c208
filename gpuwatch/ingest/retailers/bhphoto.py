"""B&H Photo offers from the search results page."""

import logging
from typing import Optional
from urllib.parse import quote

import httpx
from selectolax.parser import HTMLParser

from gpuwatch.config import settings
from gpuwatch.db.models import RetailerSource
from gpuwatch.errors import ConnectorError
from gpuwatch.ingest.base import (
    BOT_USER_AGENT,
    CatalogEntry,
    NormalizedOffer,
    RetailerConnector,
    normalize_stock,
    parse_price,
)
from gpuwatch.ingest.rate_limiter import Limiter, PoliteDelay

logger = logging.getLogger(__name__)

BH_BASE_URL = "https://www.bhphotovideo.com"
SEARCH_URL = BH_BASE_URL + "/c/search?Ntt={term}&N=0&ci=16386"


def _text(card, selector: str) -> str:
    node = card.css_first(selector)
    return node.text(strip=True) if node else ""


def parse_search_page(html: str) -> Optional[dict]:
    """First product card: price, regular price, url, sku, availability."""
    tree = HTMLParser(html)
    card = tree.css_first('[data-selenium="miniProductPage"]')
    if card is None:
        return None

    price = parse_price(_text(card, '[data-selenium="price"]'))
    link = card.css_first('a[data-selenium="itemName"]')
    path = (link.attributes.get("href") or "") if link else ""
    if price is None or not path:
        return None

    sku = _text(card, '[data-selenium="itemId"]') or path.rstrip("/").split("/")[-1] or "unknown"
    return {
        "price": price,
        "regular_price": parse_price(_text(card, '[data-selenium="regularPrice"]')),
        "url": path if path.startswith("http") else f"{BH_BASE_URL}{path}",
        "sku": sku,
        "availability": _text(card, '[data-selenium="stockStatus"]') or "unknown",
    }


class BHPhotoConnector(RetailerConnector):
    """Scraped source; randomized polite delay between lookups."""

    retailer = RetailerSource.BH_PHOTO
    label = "B&H"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[Limiter] = None,
    ):
        super().__init__(
            limiter=limiter or PoliteDelay(settings.polite_delay_min, settings.polite_delay_max),
            timeout=settings.source_timeouts["bh_photo"],
            client=client,
        )

    async def lookup(self, entry: CatalogEntry, key: str) -> Optional[NormalizedOffer]:
        client = await self._get_client()
        response = await client.get(
            SEARCH_URL.format(term=quote(key)),
            headers={
                "User-Agent": BOT_USER_AGENT,
                "Accept": "text/html,application/xhtml+xml",
                "Accept-Language": "en-US,en;q=0.9",
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise ConnectorError(f"B&H HTTP {response.status_code}")

        result = parse_search_page(response.text)
        if result is None:
            return None

        return self.make_offer(
            entry,
            sku=result["sku"],
            price_usd=result["price"],
            regular_price_usd=result["regular_price"],
            stock_status=normalize_stock(result["availability"]),
            direct_url=result["url"],
        )
