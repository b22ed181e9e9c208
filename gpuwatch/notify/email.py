"""Transactional email through the Resend HTTP API."""

import logging
from typing import Optional

import httpx

from gpuwatch.config import settings
from gpuwatch.errors import NotificationError

logger = logging.getLogger(__name__)


class EmailSender:
    """Sends one message per call; raises NotificationError on any failure."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.from_address = from_address or settings.email_from
        self.api_url = api_url or settings.email_api_url
        self.timeout = timeout or settings.email_timeout_seconds
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send(self, to_email: str, subject: str, html: str, text: str) -> Optional[str]:
        """
        Send one email.

        Returns:
            Provider message id, if the provider returned one

        Raises:
            NotificationError: Missing API key, transport error or non-2xx response
        """
        if not self.api_key:
            raise NotificationError("RESEND_API_KEY is not set")

        client = await self._get_client()
        try:
            response = await client.post(
                self.api_url,
                json={
                    "from": self.from_address,
                    "to": [to_email],
                    "subject": subject,
                    "html": html,
                    "text": text,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"Email transport error: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(
                f"Email provider HTTP {response.status_code}: {response.text[:200]}"
            )

        message_id = response.json().get("id")
        logger.info(f"Sent email '{subject}' ({message_id})")
        return message_id
