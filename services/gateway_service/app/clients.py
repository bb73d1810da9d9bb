"""HTTP clients for gateway to call microservices."""

from typing import Optional

import httpx
from libs.common.config import get_settings

settings = get_settings()


class ServiceClient:
    """Forwards raw requests to one microservice and hands back the raw response."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[dict] = None,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            return await client.request(
                method,
                f"{self.base_url}{path}",
                headers=headers or {},
                content=content,
            )


# Service client instances
store_client = ServiceClient(settings.STORE_SERVICE_URL)
payments_client = ServiceClient(settings.PAYMENTS_SERVICE_URL)
