"""Storefront service routers package."""

from services.storefront_service.routers.orders import router as orders_router
from services.storefront_service.routers.payments import router as payments_router
from services.storefront_service.routers.webhooks import router as webhooks_router
from services.storefront_service.routers.withdrawals import (
    router as withdrawals_router,
)

__all__ = [
    "orders_router",
    "payments_router",
    "webhooks_router",
    "withdrawals_router",
]
