"""Newegg offers via an Apify actor or the public search page."""

import logging
import re
from decimal import Decimal, InvalidOperation
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
)
from gpuwatch.ingest.rate_limiter import Limiter, PoliteDelay

logger = logging.getLogger(__name__)

APIFY_RUN_URL = "https://api.apify.com/v2/acts/dhruvil~newegg-scraper/run-sync-get-dataset-items"
SEARCH_URL = "https://www.newegg.com/p/pl?d={term}&N=100007708"
ITEM_ID_RE = re.compile(r"Item=(\w+)")


def parse_search_page(html: str) -> Optional[dict]:
    """
    Extract the first result card from a Newegg search page.

    Returns:
        Dict with price, url, in_stock, sku or None when nothing usable
    """
    tree = HTMLParser(html)
    card = tree.css_first(".item-cell")
    if card is None:
        return None

    dollars_node = card.css_first(".price-current strong")
    cents_node = card.css_first(".price-current sup")
    link_node = card.css_first("a.item-title")
    promo_node = card.css_first(".item-promo")

    dollars = dollars_node.text(strip=True).replace(",", "") if dollars_node else ""
    cents = cents_node.text(strip=True).lstrip(".") if cents_node else ""
    url = (link_node.attributes.get("href") or "") if link_node else ""
    promo = promo_node.text(strip=True).lower() if promo_node else ""

    try:
        price = Decimal(f"{dollars}.{cents or '00'}")
    except InvalidOperation:
        return None
    if not price or not url:
        return None

    match = ITEM_ID_RE.search(url)
    return {
        "price": price,
        "url": url,
        "in_stock": "out of stock" not in promo,
        "sku": match.group(1) if match else "unknown",
    }


class NeweggConnector(RetailerConnector):
    """Scraped source; randomized polite delay between lookups."""

    retailer = RetailerSource.NEWEGG
    label = "Newegg"

    def __init__(
        self,
        apify_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[Limiter] = None,
    ):
        super().__init__(
            limiter=limiter or PoliteDelay(settings.polite_delay_min, settings.polite_delay_max),
            timeout=settings.source_timeouts["newegg"],
            client=client,
        )
        self.apify_token = apify_token or None

    async def lookup(self, entry: CatalogEntry, key: str) -> Optional[NormalizedOffer]:
        if self.apify_token:
            result = await self._fetch_via_apify(key)
        else:
            result = await self._fetch_via_html(key)
        if result is None:
            return None

        return self.make_offer(
            entry,
            sku=result["sku"],
            price_usd=result["price"],
            stock_status=normalize_stock(result["in_stock"]),
            direct_url=result["url"],
        )

    async def _fetch_via_apify(self, term: str) -> Optional[dict]:
        client = await self._get_client()
        response = await client.post(
            APIFY_RUN_URL,
            json={"search": term, "maxItems": 3},
            headers={"Authorization": f"Bearer {self.apify_token}"},
            timeout=settings.source_timeouts["newegg_apify"],
        )
        if response.status_code >= 400:
            raise ConnectorError(f"Apify HTTP {response.status_code}")

        items = response.json()
        if not items:
            return None
        item = items[0]
        return {
            "price": Decimal(str(item["price"])),
            "url": item["url"],
            "in_stock": bool(item.get("inStock")),
            "sku": str(item.get("sku") or "unknown"),
        }

    async def _fetch_via_html(self, term: str) -> Optional[dict]:
        client = await self._get_client()
        response = await client.get(
            SEARCH_URL.format(term=quote(term)),
            headers={"User-Agent": BOT_USER_AGENT, "Accept": "text/html"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise ConnectorError(f"Newegg HTML fetch HTTP {response.status_code}")
        return parse_search_page(response.text)
