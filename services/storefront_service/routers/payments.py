"""Payments router: initiation and verification polls."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from services.storefront_service.models import PaymentFor
from services.storefront_service.routers._helpers import get_engine
from services.storefront_service.schemas import (
    CheckoutArtifact,
    InitiatePaymentRequest,
    ReconcileResult,
)
from services.storefront_service.services.engine import StorefrontEngine

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/initiate", response_model=CheckoutArtifact)
async def initiate_payment(
    payload: InitiatePaymentRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    engine: StorefrontEngine = Depends(get_engine),
):
    """
    Start a payment. Shoppers may pay orders anonymously; subscriptions and
    AI add-ons need a signed-in owner.
    """
    if payload.payment_for != PaymentFor.ORDER and current_user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in to pay for a plan",
        )
    return await engine.initiate_payment(
        payload.payment_for,
        payload.target_id,
        payload.channel,
        periods=payload.periods,
        meta=payload.meta,
    )


@router.post("/verify/{reference}", response_model=ReconcileResult)
async def verify_payment(
    reference: str,
    engine: StorefrontEngine = Depends(get_engine),
):
    """Poll the gateway for ``reference``; safe to call repeatedly."""
    return await engine.verify_payment(reference)
