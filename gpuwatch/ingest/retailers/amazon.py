"""Amazon offers via Product Advertising API 5.0 (GetItems)."""

import hashlib
import hmac
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

import httpx

from gpuwatch.config import settings
from gpuwatch.db.models import RetailerSource
from gpuwatch.errors import ConnectorError
from gpuwatch.ingest.base import CatalogEntry, NormalizedOffer, RetailerConnector, normalize_stock
from gpuwatch.ingest.rate_limiter import MinIntervalLimiter

logger = logging.getLogger(__name__)

PAAPI_SERVICE = "ProductAdvertisingAPI"
PAAPI_TARGET = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1.GetItems"
GETITEMS_PATH = "/paapi5/getitems"
GETITEMS_RESOURCES = [
    "Offers.Listings.Price",
    "Offers.Listings.SavingBasis",
    "Offers.Listings.Availability.Message",
]

# GPU slug -> ASIN; entries containing XXX are unverified and skipped
ASINS = {
    "rtx-5090": "B0CXXX5090",
    "rtx-5080": "B0CXXX5080",
    "rtx-5070-ti": "B0CXXX507T",
    "rtx-4090": "B09NYPD8H7",
    "rtx-4080-super": "B0CXXX408S",
    "rtx-4070-super": "B0CXXX407S",
    "rx-9070-xt": "B0CXXX9070",
    "rx-7900-xtx": "B0BRVSXLYH",
}


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def sign_paapi_request(
    access_key: str,
    secret_key: str,
    region: str,
    host: str,
    path: str,
    payload: str,
    now: Optional[datetime] = None,
) -> dict[str, str]:
    """
    Build AWS Signature V4 headers for a PA-API POST.

    Returns:
        Headers to send with the request, including Authorization
    """
    now = now or datetime.utcnow()
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")

    headers = {
        "content-encoding": "amz-1.0",
        "content-type": "application/json; charset=utf-8",
        "host": host,
        "x-amz-date": amz_date,
        "x-amz-target": PAAPI_TARGET,
    }
    signed_headers = ";".join(sorted(headers))
    canonical_headers = "".join(f"{k}:{headers[k]}\n" for k in sorted(headers))
    payload_hash = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    canonical_request = "\n".join(
        ["POST", path, "", canonical_headers, signed_headers, payload_hash]
    )

    scope = f"{date_stamp}/{region}/{PAAPI_SERVICE}/aws4_request"
    string_to_sign = "\n".join(
        [
            "AWS4-HMAC-SHA256",
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )

    k_date = _hmac(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, PAAPI_SERVICE)
    k_signing = _hmac(k_service, "aws4_request")
    signature = hmac.new(k_signing, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    headers["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return headers


class AmazonConnector(RetailerConnector):
    """Supplemental Amazon pricing by ASIN (1 req/sec API cap)."""

    retailer = RetailerSource.AMAZON
    label = "Amazon"

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        partner_tag: str,
        region: Optional[str] = None,
        host: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[MinIntervalLimiter] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(
            limiter=limiter or MinIntervalLimiter(1.1),
            timeout=timeout or settings.source_timeouts["amazon"],
            client=client,
        )
        self.access_key = access_key
        self.secret_key = secret_key
        self.partner_tag = partner_tag
        self.region = region or settings.amazon_region
        self.host = host or settings.amazon_host

    def lookup_key(self, entry: CatalogEntry) -> Optional[str]:
        asin = entry.retailer_sku or ASINS.get(entry.slug)
        if not asin or "XXX" in asin:
            return None
        return asin

    async def lookup(self, entry: CatalogEntry, key: str) -> Optional[NormalizedOffer]:
        listing = await self._get_listing(key)
        if listing is None:
            return None

        price = (listing.get("Price") or {}).get("Amount")
        if price is None:
            return None
        saving_basis = (listing.get("SavingBasis") or {}).get("Amount")
        availability = (listing.get("Availability") or {}).get("Message")

        return self.make_offer(
            entry,
            sku=key,
            price_usd=Decimal(str(price)),
            regular_price_usd=Decimal(str(saving_basis)) if saving_basis is not None else None,
            sale_price_usd=None,
            stock_status=normalize_stock(availability),
            direct_url=f"https://www.amazon.com/dp/{key}?tag={self.partner_tag}",
        )

    async def _get_listing(self, asin: str) -> Optional[dict]:
        """First offer listing for an ASIN, or None."""
        payload = json.dumps(
            {
                "ItemIds": [asin],
                "PartnerTag": self.partner_tag,
                "PartnerType": "Associates",
                "Marketplace": "www.amazon.com",
                "Resources": GETITEMS_RESOURCES,
            }
        )
        headers = sign_paapi_request(
            self.access_key,
            self.secret_key,
            self.region,
            self.host,
            GETITEMS_PATH,
            payload,
        )

        client = await self._get_client()
        response = await client.post(
            f"https://{self.host}{GETITEMS_PATH}",
            content=payload.encode("utf-8"),
            headers=headers,
            timeout=self.timeout,
        )
        if response.status_code == 429:
            raise ConnectorError("Amazon rate limit hit")

        data = response.json()
        if response.status_code >= 400:
            errors = data.get("Errors") or [{}]
            raise ConnectorError(
                f"PA-API HTTP {response.status_code}: {errors[0].get('Message', 'unknown error')}"
            )

        items = (data.get("ItemsResult") or {}).get("Items") or []
        if not items:
            return None
        listings = (items[0].get("Offers") or {}).get("Listings") or []
        return listings[0] if listings else None
