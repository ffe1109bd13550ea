"""FastAPI application for the Storefront Service."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from libs.common.config import Settings, get_settings
from libs.common.errors import CoreError
from libs.common.logging import configure_logging
from libs.common.middleware import add_request_logging
from services.storefront_service.routers import (
    orders_router,
    payments_router,
    webhooks_router,
    withdrawals_router,
)
from services.storefront_service.routers._helpers import core_error_handler
from services.storefront_service.services.engine import StorefrontEngine


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[StorefrontEngine] = None,
) -> FastAPI:
    """Create and configure the Storefront Service FastAPI app."""
    settings = settings or get_settings()
    configure_logging(settings)
    engine = engine or StorefrontEngine.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.engine.close()

    app = FastAPI(
        title="Storefront Service",
        version="0.1.0",
        description="Multi-tenant storefront - pricing, orders, payments, payouts.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine

    add_request_logging(app)
    app.add_exception_handler(CoreError, core_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "storefront"}

    app.include_router(orders_router)
    app.include_router(payments_router)
    app.include_router(webhooks_router)
    app.include_router(withdrawals_router)

    return app
