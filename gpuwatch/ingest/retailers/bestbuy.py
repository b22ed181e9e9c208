"""Best Buy offers via the Best Buy Products API."""

import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import httpx

from gpuwatch.config import settings
from gpuwatch.db.models import RetailerSource
from gpuwatch.errors import ConnectorError
from gpuwatch.ingest.base import CatalogEntry, NormalizedOffer, RetailerConnector, normalize_stock
from gpuwatch.ingest.rate_limiter import MinIntervalLimiter

logger = logging.getLogger(__name__)

BESTBUY_API_BASE = "https://api.bestbuy.com/v1"
VIDEO_CARD_CATEGORY = "abcat0505018"
SHOW_FIELDS = "sku,name,salePrice,regularPrice,onSale,onlineAvailability,inStoreAvailability,url,addToCartUrl"

# Search term per GPU slug; sku_mappings override these
SEARCH_TERMS = {
    "rtx-5090": "RTX 5090",
    "rtx-5080": "RTX 5080",
    "rtx-5070-ti": "RTX 5070 Ti",
    "rtx-5070": "RTX 5070",
    "rtx-5060-ti": "RTX 5060 Ti",
    "rtx-4090": "RTX 4090",
    "rtx-4080-super": "RTX 4080 SUPER",
    "rtx-4070-super": "RTX 4070 SUPER",
    "rx-9070-xt": "RX 9070 XT",
    "rx-9060-xt": "RX 9060 XT",
    "rx-7900-xtx": "RX 7900 XTX",
    "rx-7700-xt": "RX 7700 XT",
}


class BestBuyConnector(RetailerConnector):
    """Search the video card category and take the first product."""

    retailer = RetailerSource.BESTBUY
    label = "BestBuy"

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[MinIntervalLimiter] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(
            limiter=limiter or MinIntervalLimiter(0.125),
            timeout=timeout or settings.source_timeouts["bestbuy"],
            client=client,
        )
        self.api_key = api_key

    def lookup_key(self, entry: CatalogEntry) -> Optional[str]:
        return entry.retailer_sku or SEARCH_TERMS.get(entry.slug)

    async def lookup(self, entry: CatalogEntry, key: str) -> Optional[NormalizedOffer]:
        client = await self._get_client()
        url = f"{BESTBUY_API_BASE}/products(search={quote(key)}&categoryId={VIDEO_CARD_CATEGORY})"
        params = {
            "format": "json",
            "pageSize": 5,
            "show": SHOW_FIELDS,
            "apiKey": self.api_key,
        }

        response = await client.get(url, params=params, timeout=self.timeout)
        if response.status_code == 429:
            raise ConnectorError("BestBuy rate limit hit")
        if response.status_code >= 400:
            raise ConnectorError(f"BestBuy API HTTP {response.status_code}")

        products = response.json().get("products") or []
        if not products:
            return None

        product = products[0]
        in_stock = bool(product.get("onlineAvailability") or product.get("inStoreAvailability"))
        sale_price = Decimal(str(product["salePrice"]))
        regular_price = product.get("regularPrice")

        return self.make_offer(
            entry,
            sku=str(product["sku"]),
            price_usd=sale_price,
            regular_price_usd=Decimal(str(regular_price)) if regular_price is not None else None,
            sale_price_usd=sale_price if product.get("onSale") else None,
            stock_status=normalize_stock(in_stock),
            direct_url=product.get("url") or "",
        )
