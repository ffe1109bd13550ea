"""Transaction ledger: pending entries and the idempotent terminal flip."""

import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.models import (
    PaymentChannel,
    PaymentFor,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

REFERENCE_PREFIX = "TX-"
REFERENCE_LENGTH = 11


def generate_reference() -> str:
    """Generate a reference like TX-4FQ8ZK2M1PA."""
    suffix = "".join(
        random.choices(string.ascii_uppercase + string.digits, k=REFERENCE_LENGTH)
    )
    return f"{REFERENCE_PREFIX}{suffix}"


class TransactionLedger:
    """
    Guard around ``pending -> successful | failed``.

    Every method runs in the caller's session, so ledger writes commit or
    roll back with the surrounding unit of work.
    """

    async def new_reference(self, session: AsyncSession) -> str:
        """Generate a reference not yet present in the ledger."""
        while True:
            reference = generate_reference()
            exists = await session.scalar(
                select(Transaction.id).where(Transaction.reference == reference)
            )
            if exists is None:
                return reference

    async def open_pending(
        self,
        session: AsyncSession,
        *,
        reference: str,
        amount: Decimal,
        payment_for: PaymentFor,
        payment_channel: PaymentChannel,
        target_id: uuid.UUID,
        store_id: Optional[uuid.UUID] = None,
        meta: Optional[dict] = None,
        transaction_type: TransactionType = TransactionType.PAYMENT,
    ) -> Transaction:
        transaction = Transaction(
            reference=reference,
            amount=amount,
            payment_for=payment_for,
            payment_channel=payment_channel,
            payment_status=TransactionStatus.PENDING,
            transaction_type=transaction_type,
            target_id=target_id,
            store_id=store_id,
            meta=meta or {},
        )
        session.add(transaction)
        await session.flush()
        logger.info(
            "Opened pending transaction %s for %s %s (%s)",
            reference,
            payment_for.value,
            target_id,
            payment_channel.value,
        )
        return transaction

    async def get(self, session: AsyncSession, reference: str) -> Optional[Transaction]:
        result = await session.execute(
            select(Transaction).where(Transaction.reference == reference)
        )
        return result.scalar_one_or_none()

    async def try_mark_processed(
        self,
        session: AsyncSession,
        reference: str,
        status: TransactionStatus,
        settled_amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        Flip ``reference`` from pending to ``status`` in one statement.

        Returns True only for the caller whose update matched the pending
        row. A concurrent caller sees zero rows and must not apply side
        effects.
        """
        if status == TransactionStatus.PENDING:
            raise ValueError("Target status must be terminal")

        values = {"payment_status": status, "updated_at": utc_now()}
        if settled_amount is not None:
            values["settled_amount"] = settled_amount
        if paid_at is not None:
            values["paid_at"] = paid_at

        result = await session.execute(
            update(Transaction)
            .where(
                Transaction.reference == reference,
                Transaction.payment_status == TransactionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if not won:
            logger.info("Transaction %s already terminal; skipping", reference)
        return won

    async def list_stale_pending(
        self,
        session: AsyncSession,
        older_than: datetime,
        channels: frozenset,
        limit: int = 100,
    ) -> list[Transaction]:
        """Pending transactions on ``channels`` created before ``older_than``."""
        result = await session.execute(
            select(Transaction)
            .where(
                Transaction.payment_status == TransactionStatus.PENDING,
                Transaction.payment_channel.in_(channels),
                Transaction.transaction_type == TransactionType.PAYMENT,
                Transaction.created_at < older_than,
            )
            .order_by(Transaction.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
