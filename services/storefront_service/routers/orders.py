"""Orders router: cart totals, order creation, transitions and edits."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import get_optional_user, require_store_owner
from libs.auth.models import AuthUser
from pydantic import BaseModel, Field
from services.storefront_service.routers._helpers import actor_for, get_engine
from services.storefront_service.schemas import (
    CartTotal,
    CartTotalRequest,
    OrderCancellationRequest,
    OrderCreate,
    OrderResponse,
    OrderTransitionRequest,
    OrderUpdate,
)
from services.storefront_service.services.engine import StorefrontEngine

router = APIRouter(tags=["orders"])


class ShipmentRequest(BaseModel):
    pickup_date: str = Field(..., min_length=10, max_length=32)


@router.post("/stores/{store_id}/cart/total", response_model=CartTotal)
async def compute_cart_total(
    store_id: uuid.UUID,
    payload: CartTotalRequest,
    engine: StorefrontEngine = Depends(get_engine),
):
    """Price a cart without creating anything."""
    return await engine.compute_cart_total(
        payload.lines, payload.coupon_code, store_id=store_id
    )


@router.post(
    "/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED
)
async def create_order(
    payload: OrderCreate,
    engine: StorefrontEngine = Depends(get_engine),
):
    """Create an order and its checkout artifact (stored in payment_details)."""
    return await engine.create_order(payload)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.get_order(order_id)


@router.post("/orders/{order_id}/transition", response_model=OrderResponse)
async def transition_order(
    order_id: uuid.UUID,
    payload: OrderTransitionRequest,
    current_user: AuthUser = Depends(require_store_owner),
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.transition_order(
        order_id, payload.target, actor_for(current_user)
    )


@router.patch("/orders/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: uuid.UUID,
    payload: OrderUpdate,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.update_order(order_id, payload, actor_for(current_user))


@router.post("/orders/{order_id}/cancellation-request", response_model=OrderResponse)
async def request_cancellation(
    order_id: uuid.UUID,
    payload: OrderCancellationRequest,
    engine: StorefrontEngine = Depends(get_engine),
):
    """Notify the store owner; the order status is left unchanged."""
    return await engine.request_cancellation(order_id, payload.reason)


@router.post("/orders/{order_id}/confirmation-request", response_model=OrderResponse)
async def request_confirmation(
    order_id: uuid.UUID,
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.request_confirmation(order_id)


@router.post("/orders/{order_id}/shipment", response_model=OrderResponse)
async def create_shipment(
    order_id: uuid.UUID,
    payload: ShipmentRequest,
    current_user: AuthUser = Depends(require_store_owner),
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.create_shipment(
        order_id, payload.pickup_date, actor_for(current_user)
    )
