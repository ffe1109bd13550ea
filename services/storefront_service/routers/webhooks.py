"""Paystack webhook handler."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.currency import kobo_to_naira
from libs.common.datetime_utils import parse_iso
from libs.common.errors import UnknownReferenceError, ValidationError
from libs.common.logging import get_logger
from services.storefront_service.paystack_client import verify_signature
from services.storefront_service.routers._helpers import get_engine
from services.storefront_service.services.engine import StorefrontEngine

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)

EVENT_STATUSES = {
    "charge.success": "success",
    "charge.failed": "failed",
}


@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    engine: StorefrontEngine = Depends(get_engine),
):
    """
    Paystack webhook endpoint (no auth; verified by x-paystack-signature).

    Always acknowledges once the signature checks out, including for unknown
    or already processed references, so Paystack stops retrying.
    """
    raw = await request.body()
    signature = request.headers.get("x-paystack-signature")
    secret = engine.settings.PAYSTACK_SECRET_KEY
    if not signature or not secret or not verify_signature(secret, raw, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    payload = json.loads(raw.decode("utf-8") or "{}")
    event = payload.get("event")
    data = payload.get("data") or {}
    reference = data.get("reference")
    gateway_status = EVENT_STATUSES.get(event)
    if not reference or gateway_status is None:
        return {"received": True}

    currency = str(data.get("currency") or engine.settings.CURRENCY).upper()
    if currency != engine.settings.CURRENCY.upper():
        logger.warning(
            "Webhook for %s ignored: %s payments are not accepted",
            reference,
            currency,
            extra={"extra_fields": {"reference": reference, "currency": currency}},
        )
        return {"received": True}

    try:
        result = await engine.reconcile_payment(
            reference,
            gateway_status,
            kobo_to_naira(int(data.get("amount") or 0)),
            parse_iso(data.get("paid_at")),
        )
    except UnknownReferenceError:
        logger.warning(
            "Webhook received for unknown payment reference: %s",
            reference,
            extra={"extra_fields": {"reference": reference, "event": event}},
        )
        return {"received": True}
    except ValidationError as e:
        logger.warning("Webhook for %s ignored: %s", reference, e.message)
        return {"received": True}

    if not result.applied:
        logger.info("Webhook for %s skipped - payment already processed", reference)
    return {"received": True}
