"""Store wallet. Every change is a single SQL-side increment."""

import uuid
from decimal import Decimal

from libs.common.currency import ZERO, round_money
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from libs.common.logging import get_logger
from services.storefront_service.models import Store
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class BalanceAccount:
    """Atomic credit/debit of ``Store.balance`` inside the caller's session."""

    @staticmethod
    def _amount(amount) -> Decimal:
        value = round_money(amount)
        if value <= ZERO:
            raise ValidationError("Amount must be greater than zero")
        return value

    async def get_balance(self, session: AsyncSession, store_id: uuid.UUID) -> Decimal:
        balance = await session.scalar(select(Store.balance).where(Store.id == store_id))
        if balance is None:
            raise NotFoundError("Store not found")
        return round_money(balance)

    async def credit(
        self, session: AsyncSession, store_id: uuid.UUID, amount: Decimal
    ) -> None:
        value = self._amount(amount)
        result = await session.execute(
            update(Store)
            .where(Store.id == store_id)
            .values(balance=Store.balance + value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("Store not found")
        logger.info("Credited store %s with %s", store_id, value)

    async def debit(
        self, session: AsyncSession, store_id: uuid.UUID, amount: Decimal
    ) -> None:
        """Debit ``amount``; fails without writing if the balance is short."""
        value = self._amount(amount)
        result = await session.execute(
            update(Store)
            .where(Store.id == store_id, Store.balance >= value)
            .values(balance=Store.balance - value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("Debited store %s by %s", store_id, value)
            return

        exists = await session.scalar(select(Store.id).where(Store.id == store_id))
        if exists is None:
            raise NotFoundError("Store not found")
        raise InsufficientBalanceError(
            "Insufficient balance", details={"requested": str(value)}
        )
