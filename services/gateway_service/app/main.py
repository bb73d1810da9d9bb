"""FastAPI application entrypoint for the gateway service.

The gateway is the only public surface; it proxies ``/api/v1/...`` to the
store and payments services, which never sit behind each other.
"""

from __future__ import annotations

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded

from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import (
    PAYMENTS_LIMIT,
    STORE_LIMIT,
    limiter,
    rate_limit_exceeded_handler,
)
from services.gateway_service.app import clients

logger = get_logger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = get_settings()
    app = FastAPI(
        title="Storefront Gateway Service",
        version="0.1.0",
        description="Public API gateway for the storefront services.",
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple readiness endpoint."""
        return {"status": "ok"}

    # ==================================================================
    # STORE SERVICE PROXY
    # ==================================================================
    @app.api_route("/api/v1/store/{path:path}", methods=PROXY_METHODS)
    @limiter.limit(STORE_LIMIT)
    async def proxy_store(path: str, request: Request):
        """Proxy all /api/v1/store/* requests to store service."""
        return await proxy_request(clients.store_client, f"/store/{path}", request)

    # ==================================================================
    # PAYMENTS SERVICE PROXY
    # ==================================================================
    @app.api_route("/api/v1/payments/mp/webhook", methods=["GET", "POST"])
    @limiter.exempt
    async def proxy_payments_webhook(request: Request):
        """Provider notifications are never throttled; retries would pile up."""
        return await proxy_request(
            clients.payments_client, "/payments/mp/webhook", request
        )

    @app.api_route("/api/v1/payments/{path:path}", methods=PROXY_METHODS)
    @limiter.limit(PAYMENTS_LIMIT)
    async def proxy_payments(path: str, request: Request):
        """Proxy all /api/v1/payments/* requests to payments service."""
        return await proxy_request(
            clients.payments_client, f"/payments/{path}", request
        )

    return app


def _filter_service_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    """Strip hop-by-hop headers that FastAPI/starlette manages."""
    hop_by_hop = {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
        "content-encoding",
        "host",
        "content-type",
    }
    return [(k, v) for k, v in headers.items() if k.lower() not in hop_by_hop]


async def proxy_request(client: clients.ServiceClient, path: str, request: Request):
    """Forward the request as-is and relay the service's answer."""
    # Bodies go through as raw bytes; re-serializing would alter them.
    content_body = None
    if request.method in ("POST", "PATCH", "PUT"):
        content_body = await request.body() or None

    headers = {
        k: v
        for k, v in request.headers.items()
        if k.lower() not in ("content-length", "host")
    }

    if request.url.query:
        path = f"{path}?{request.url.query}"

    try:
        service_response = await client.request(
            request.method, path, headers=headers, content=content_body
        )
    except httpx.RequestError as e:
        logger.error("Service unavailable for %s: %s", path, e)
        raise HTTPException(status_code=503, detail=f"Service unavailable: {e}")

    forward_headers = dict(_filter_service_headers(service_response.headers))

    if service_response.status_code == 204:
        return Response(status_code=204, headers=forward_headers)

    content_type = service_response.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            return JSONResponse(
                content=service_response.json(),
                status_code=service_response.status_code,
                headers=forward_headers,
            )
        except ValueError:
            # Not valid JSON after all; relay the bytes
            pass

    return Response(
        content=service_response.content,
        status_code=service_response.status_code,
        media_type=content_type or None,
        headers=forward_headers,
    )


app = create_app()
