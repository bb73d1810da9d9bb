"""
Resend transactional mail client.

Usage:
    from libs.common.emails.client import get_email_client

    client = get_email_client()
    result = await client.send(
        from_email="Tienda <ventas@example.com>",
        to_email="customer@example.com",
        subject="Confirmación de pedido AMG-0001",
        html_body="<p>...</p>",
        idempotency_key="order-confirmation/AMG-0001",
    )

The provider's ``Idempotency-Key`` header is the durable guard against
duplicate sends; a retried request with the same key is not delivered twice.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.errors import UpstreamError
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Attachment:
    filename: str
    content: str  # base64

    def to_api(self) -> dict:
        return {"filename": self.filename, "content": self.content}


class EmailProviderError(UpstreamError):
    """The mail provider refused or failed a send."""

    @property
    def rate_limited(self) -> bool:
        if self.status_code == 429:
            return True
        text = (self.message or "").lower()
        return "too many requests" in text or "rate limit" in text


class ResendClient:
    """HTTP client for the Resend ``/emails`` API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.base_url = (base_url or settings.RESEND_API_URL).rstrip("/")
        self.timeout = 30.0
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(
        self,
        from_email: str,
        to_email: str,
        subject: str,
        html_body: str,
        attachments: Optional[list[Attachment]] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """
        Send one email.

        Returns:
            The provider response (``{"id": ...}``).

        Raises:
            EmailProviderError on a non-2xx answer or a connection failure.
        """
        payload: dict[str, Any] = {
            "from": from_email,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        }
        if attachments:
            payload["attachments"] = [a.to_api() for a in attachments]

        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/emails", json=payload, headers=headers
                )
        except httpx.RequestError as e:
            logger.error(f"Failed to connect to Resend: {e}")
            raise EmailProviderError("Error enviando email") from e

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if not response.is_success:
            message = (
                data.get("message") or data.get("error") or "Resend error"
                if isinstance(data, dict)
                else "Resend error"
            )
            logger.error(f"Resend API returned {response.status_code}: {message}")
            raise EmailProviderError(str(message), response.status_code, data)

        return data if isinstance(data, dict) else {}


# Singleton instance
_client: Optional[ResendClient] = None


def get_email_client() -> ResendClient:
    """Get or create the singleton mail client."""
    global _client
    if _client is None:
        _client = ResendClient()
    return _client
