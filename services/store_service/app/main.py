"""FastAPI application for the Store Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from services.store_service.routers import (
    cart_router,
    internal_router,
    invoices_router,
    orders_router,
    quotes_router,
)


def create_app() -> FastAPI:
    """Create and configure the Store Service FastAPI app."""
    app = FastAPI(
        title="Store Service",
        version="0.1.0",
        description="Storefront commerce: cart, quotes, orders and invoices.",
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "store"}

    # Public store routes
    app.include_router(cart_router, prefix="/store")
    app.include_router(quotes_router, prefix="/store")
    app.include_router(orders_router, prefix="/store")
    app.include_router(invoices_router, prefix="/store")

    # Service-to-service routes (service role JWT)
    app.include_router(internal_router)

    return app


app = create_app()
