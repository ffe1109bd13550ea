"""Withdrawal queue: one pending payout request per store.

Requesting debits nothing. The balance is debited when an operator
approves the request, in the same unit of work that closes it.
"""

import uuid
from decimal import Decimal
from typing import Optional

from libs.common.config import Settings
from libs.common.currency import ZERO, round_money
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
    WithdrawalInProgressError,
)
from libs.common.logging import get_logger
from libs.db.session import TransactionalUnitOfWork
from services.storefront_service.models import (
    BankAccount,
    PasscodePurpose,
    PaymentChannel,
    PaymentFor,
    Store,
    TransactionStatus,
    TransactionType,
    WithdrawalRequest,
    WithdrawalStatus,
)
from services.storefront_service.services.balance import BalanceAccount
from services.storefront_service.services.ledger import TransactionLedger
from services.storefront_service.services.notifications import (
    NotificationDispatcher,
)
from services.storefront_service.services.passcodes import PasscodeManager
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class WithdrawalQueue:
    def __init__(
        self,
        settings: Settings,
        uow: TransactionalUnitOfWork,
        ledger: TransactionLedger,
        balance: BalanceAccount,
        passcodes: PasscodeManager,
        notifier: NotificationDispatcher,
    ):
        self.settings = settings
        self.uow = uow
        self.ledger = ledger
        self.balance = balance
        self.passcodes = passcodes
        self.notifier = notifier

    async def issue_passcode(
        self, email: str, purpose: PasscodePurpose = PasscodePurpose.WITHDRAWAL
    ) -> str:
        """Create a one-time passcode and email it. Returns the plain code."""
        async with self.uow.begin() as session:
            code = await self.passcodes.issue(session, email, purpose)
        self.notifier.passcode_issued(email, code, self.settings.OTP_TTL_MINUTES)
        return code

    async def _get_store(self, session: AsyncSession, store_id: uuid.UUID) -> Store:
        store = await session.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store not found")
        return store

    async def request_withdrawal(
        self,
        store_id: uuid.UUID,
        amount: Decimal,
        bank_account_id: uuid.UUID,
        otp: str,
    ) -> WithdrawalRequest:
        """
        Queue a payout request.

        Raises:
            ValidationError: bad amount, passcode or bank account
            InsufficientBalanceError: amount exceeds the current balance
            WithdrawalInProgressError: the store already has a pending request
        """
        value = round_money(amount)
        if value <= ZERO:
            raise ValidationError("Withdrawal amount must be greater than zero")

        async with self.uow.begin() as session:
            store = await self._get_store(session, store_id)

            bank_account = await session.get(BankAccount, bank_account_id)
            if bank_account is None or bank_account.store_id != store.id:
                raise ValidationError("Bank account not found for this store")

            await self.passcodes.consume(
                session, store.owner.email, PasscodePurpose.WITHDRAWAL, otp
            )

            pending = await session.scalar(
                select(WithdrawalRequest.id).where(
                    WithdrawalRequest.store_id == store.id,
                    WithdrawalRequest.status == WithdrawalStatus.PENDING,
                )
            )
            if pending is not None:
                raise WithdrawalInProgressError(
                    "A withdrawal request is already being processed"
                )

            if value > await self.balance.get_balance(session, store.id):
                raise InsufficientBalanceError("Insufficient balance")

            reference = await self.ledger.new_reference(session)
            request = WithdrawalRequest(
                id=uuid.uuid4(),
                store_id=store.id,
                amount=value,
                bank_snapshot=bank_account.snapshot(),
                status=WithdrawalStatus.PENDING,
                transaction_reference=reference,
            )
            session.add(request)
            try:
                await session.flush()
            except IntegrityError as e:
                raise WithdrawalInProgressError(
                    "A withdrawal request is already being processed"
                ) from e

            await self.ledger.open_pending(
                session,
                reference=reference,
                amount=value,
                payment_for=PaymentFor.WITHDRAWAL,
                payment_channel=PaymentChannel.WALLET_BALANCE,
                transaction_type=TransactionType.TRANSFER,
                target_id=request.id,
                store_id=store.id,
                meta={"bank": request.bank_snapshot},
            )
            owner_email = store.owner.email

        logger.info("Queued withdrawal %s of %s for store %s", reference, value, store_id)
        self.notifier.withdrawal_requested(owner_email, value)
        return request

    async def _close(
        self,
        request_id: uuid.UUID,
        status: WithdrawalStatus,
        reason: Optional[str] = None,
    ) -> WithdrawalRequest:
        async with self.uow.begin() as session:
            request = await session.get(WithdrawalRequest, request_id)
            if request is None:
                raise NotFoundError("Withdrawal request not found")

            values = {"status": status, "processed_at": utc_now()}
            if reason:
                values["rejection_reason"] = reason
            result = await session.execute(
                update(WithdrawalRequest)
                .where(
                    WithdrawalRequest.id == request_id,
                    WithdrawalRequest.status == WithdrawalStatus.PENDING,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    "Withdrawal request has already been processed",
                    code="WITHDRAWAL_FAILED",
                )

            if status == WithdrawalStatus.COMPLETED:
                await self.balance.debit(session, request.store_id, request.amount)
                ledger_status = TransactionStatus.SUCCESSFUL
            else:
                ledger_status = TransactionStatus.FAILED
            await self.ledger.try_mark_processed(
                session,
                request.transaction_reference,
                ledger_status,
                settled_amount=(
                    request.amount
                    if ledger_status == TransactionStatus.SUCCESSFUL
                    else None
                ),
                paid_at=values["processed_at"],
            )

            await session.refresh(request)
            store = await self._get_store(session, request.store_id)
            owner_email = store.owner.email

        self.notifier.withdrawal_processed(
            owner_email, request.amount, status == WithdrawalStatus.COMPLETED
        )
        return request

    async def approve_withdrawal(self, request_id: uuid.UUID) -> WithdrawalRequest:
        """Debit the store and complete the request in one commit."""
        return await self._close(request_id, WithdrawalStatus.COMPLETED)

    async def reject_withdrawal(
        self, request_id: uuid.UUID, reason: str
    ) -> WithdrawalRequest:
        return await self._close(request_id, WithdrawalStatus.REJECTED, reason)
