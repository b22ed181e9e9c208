"""Connector factory keyed on retailer source."""

import logging
from typing import Optional

import httpx

from gpuwatch.config import Settings, settings as default_settings
from gpuwatch.db.models import RetailerSource
from gpuwatch.errors import ConnectorConfigError
from gpuwatch.ingest.base import RetailerConnector
from gpuwatch.ingest.retailers.amazon import AmazonConnector
from gpuwatch.ingest.retailers.bestbuy import BestBuyConnector
from gpuwatch.ingest.retailers.bhphoto import BHPhotoConnector
from gpuwatch.ingest.retailers.newegg import NeweggConnector

logger = logging.getLogger(__name__)


def get_connector(
    source: str,
    config: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> RetailerConnector:
    """
    Build a fresh connector for a source.

    Args:
        source: RetailerSource value
        config: Settings to read credentials from
        client: Shared HTTP client (tests)

    Raises:
        ConnectorConfigError: Unknown source or missing credentials
    """
    config = config or default_settings
    try:
        retailer = RetailerSource(source)
    except ValueError:
        raise ConnectorConfigError(f"Unknown ingestion source: {source}") from None

    if retailer == RetailerSource.BESTBUY:
        if not config.bestbuy_api_key:
            raise ConnectorConfigError("BESTBUY_API_KEY not set")
        return BestBuyConnector(api_key=config.bestbuy_api_key, client=client)

    if retailer == RetailerSource.AMAZON:
        if not (config.amazon_access_key and config.amazon_secret_key and config.amazon_partner_tag):
            raise ConnectorConfigError("Amazon PA-API credentials not set")
        return AmazonConnector(
            access_key=config.amazon_access_key,
            secret_key=config.amazon_secret_key,
            partner_tag=config.amazon_partner_tag,
            region=config.amazon_region,
            host=config.amazon_host,
            client=client,
        )

    if retailer == RetailerSource.NEWEGG:
        return NeweggConnector(apify_token=config.apify_api_token, client=client)

    return BHPhotoConnector(client=client)
