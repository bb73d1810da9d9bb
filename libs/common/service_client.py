"""Async HTTP client for internal service-to-service calls.

The payments webhook never imports the store or communications services;
it reaches them through the helpers at the bottom of this module, each call
signed with a short-lived service-role JWT.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from libs.auth.dependencies import _service_role_jwt
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Default timeout for internal calls (seconds).
_DEFAULT_TIMEOUT = 10.0

# Rendering and uploading a receipt takes a few round trips to the backend.
_INVOICE_TIMEOUT = 30.0


async def internal_request(
    *,
    service_url: str,
    method: str,
    path: str,
    calling_service: str,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Make an authenticated internal service-to-service HTTP call.

    Args:
        service_url: Base URL of the target service (e.g. settings.STORE_SERVICE_URL).
        method: HTTP method.
        path: URL path on the target service (e.g. "/internal/invoices/generate").
        calling_service: Name of the calling service for the JWT "sub" claim.
        json: Optional JSON body.
        params: Optional query parameters.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests route calls to in-process apps).

    Raises:
        httpx.RequestError on connection failures.
    """
    url = f"{service_url}{path}"
    headers = {"Authorization": f"Bearer {_service_role_jwt(calling_service)}"}
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id
    headers["X-Caller-Service"] = calling_service

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.request(
            method,
            url,
            headers=headers,
            json=json,
            params=params,
        )
    return response


async def internal_post(
    *,
    service_url: str,
    path: str,
    calling_service: str,
    json: Any = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Convenience wrapper for POST requests."""
    return await internal_request(
        service_url=service_url,
        method="POST",
        path=path,
        calling_service=calling_service,
        json=json,
        timeout=timeout,
        transport=transport,
    )


# ---------------------------------------------------------------------------
# High-level helpers
# ---------------------------------------------------------------------------


async def generate_invoice_for_order(
    order_document_id: str,
    *,
    calling_service: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Ask the store service to create (or return) the receipt for a paid order.

    Returns {ok, alreadyExists, invoiceNumber, invoiceId, pdfUrl}.
    """
    settings = get_settings()
    resp = await internal_post(
        service_url=settings.STORE_SERVICE_URL,
        path="/internal/invoices/generate",
        calling_service=calling_service,
        json={"orderId": order_document_id},
        timeout=_INVOICE_TIMEOUT,
        transport=transport,
    )
    resp.raise_for_status()
    return resp.json()


async def send_order_confirmation_email(
    payload: dict,
    *,
    calling_service: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Ask the communications service to mail the order confirmation.

    A 202 (provider rate limit) counts as handled; returns the response body.
    """
    settings = get_settings()
    resp = await internal_post(
        service_url=settings.COMMUNICATIONS_SERVICE_URL,
        path="/email/order-confirmation",
        calling_service=calling_service,
        json=payload,
        timeout=_INVOICE_TIMEOUT,
        transport=transport,
    )
    resp.raise_for_status()
    return resp.json()
