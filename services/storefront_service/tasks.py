"""Background reconciliation tasks for the storefront service."""

from __future__ import annotations

from datetime import timedelta

from libs.common.datetime_utils import utc_now
from libs.common.errors import CoreError
from libs.common.logging import get_logger
from services.storefront_service.models import GATEWAY_CHANNELS
from services.storefront_service.services.engine import StorefrontEngine

logger = get_logger(__name__)


async def reconcile_pending_transactions(engine: StorefrontEngine) -> int:
    """Verify stale pending gateway transactions. Returns how many were applied."""
    if engine.payments.gateway is None:
        logger.info("Payment gateway not configured; skipping reconciliation")
        return 0

    cutoff = utc_now() - timedelta(
        minutes=engine.settings.PENDING_RECONCILE_AFTER_MINUTES
    )
    async with engine.uow.read() as session:
        pending = await engine.ledger.list_stale_pending(
            session, cutoff, GATEWAY_CHANNELS, limit=200
        )
        references = [transaction.reference for transaction in pending]

    applied = 0
    for reference in references:
        try:
            result = await engine.verify_payment(reference)
        except CoreError as exc:
            logger.warning(
                "Pending transaction verify failed for %s: %s", reference, exc
            )
            continue
        if result.applied:
            applied += 1

    if references:
        logger.info(
            "Reconciled %d of %d pending transactions", applied, len(references)
        )
    return applied
