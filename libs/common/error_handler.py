"""Exception handlers that keep every error body in the ``{"error": ...}`` shape."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from libs.common.errors import InvoiceError, UpstreamError
from libs.common.logging import get_logger
from libs.common.stock import OutOfStockError

logger = get_logger(__name__)


def _error_body(detail) -> dict:
    # Routers may raise HTTPException(detail={"error": ..., ...}) for richer bodies
    if isinstance(detail, dict) and "error" in detail:
        return detail
    return {"error": detail}


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": exc.errors()},
    )


async def upstream_exception_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    logger.error(
        "Upstream error escaped router: %s",
        exc.message,
        extra={"extra_fields": {"upstream_status": exc.status_code}},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "details": exc.details},
    )


async def out_of_stock_handler(request: Request, exc: OutOfStockError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "error": "Sin stock suficiente",
            "code": exc.code,
            "problems": [p.to_dict() for p in exc.problems],
        },
    )


async def invoice_exception_handler(request: Request, exc: InvoiceError) -> JSONResponse:
    content = {"error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def add_exception_handlers(app: FastAPI) -> None:
    """Install the shared handlers on a service app."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(UpstreamError, upstream_exception_handler)
    app.add_exception_handler(OutOfStockError, out_of_stock_handler)
    app.add_exception_handler(InvoiceError, invoice_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
