"""
Payment orchestration: channel choice, checkout artifacts, reconciliation.

Reconciliation is exactly-once per reference. The terminal flip is a
conditional UPDATE in the same unit of work as the side effects it guards
(order settlement, balance credit, plan extension), so a duplicate or
concurrent delivery finds no pending row and applies nothing.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Protocol

from libs.common.config import Settings
from libs.common.currency import ZERO, round_money
from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.errors import (
    ConflictError,
    IntegrationError,
    NotFoundError,
    NoPaymentOptionError,
    UnknownReferenceError,
    ValidationError,
)
from libs.common.logging import get_logger
from libs.db.session import TransactionalUnitOfWork
from services.storefront_service.models import (
    GATEWAY_CHANNELS,
    TERMINAL_ORDER_STATUSES,
    Account,
    BankAccount,
    IntegrationName,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    PaymentChannel,
    PaymentFor,
    PlanType,
    Store,
    StoreIntegration,
    Transaction,
    TransactionStatus,
)
from services.storefront_service.paystack_client import (
    SUCCESS_STATUSES,
    CheckoutLink,
    Customer,
    Verification,
    VirtualAccount,
)
from services.storefront_service.schemas import (
    CheckoutArtifact,
    ReconcileResult,
    VirtualAccountDetails,
)
from services.storefront_service.services.balance import BalanceAccount
from services.storefront_service.services.ledger import TransactionLedger
from services.storefront_service.services.notifications import (
    NotificationDispatcher,
)
from services.storefront_service.services.order_state import mark_completed
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

FAILED_STATUSES = frozenset({"failed", "reversed"})


class PaymentGatewayClient(Protocol):
    async def create_checkout_link(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        customer: Customer,
        metadata: dict = None,
    ) -> CheckoutLink: ...

    async def create_virtual_account(
        self, amount: Decimal, reference: str, customer: Customer
    ) -> VirtualAccount: ...

    async def verify_by_reference(self, reference: str) -> Verification: ...


@dataclass
class PaymentTarget:
    """The entity a payment settles: an order, an owner account or a store."""

    id: uuid.UUID
    amount: Decimal
    customer: Customer
    store_id: Optional[uuid.UUID] = None
    meta: dict = field(default_factory=dict)


class PaymentOrchestrator:
    def __init__(
        self,
        settings: Settings,
        uow: TransactionalUnitOfWork,
        ledger: TransactionLedger,
        balance: BalanceAccount,
        notifier: NotificationDispatcher,
        gateway: Optional[PaymentGatewayClient] = None,
    ):
        self.settings = settings
        self.uow = uow
        self.ledger = ledger
        self.balance = balance
        self.notifier = notifier
        self.gateway = gateway

    # =========================================================================
    # Target resolution
    # =========================================================================

    async def resolve_target(
        self,
        session: AsyncSession,
        payment_for: PaymentFor,
        target_id: uuid.UUID,
        periods: int = 1,
    ) -> PaymentTarget:
        """Load the target and compute what is owed on it."""
        if payment_for == PaymentFor.ORDER:
            order = await session.get(Order, target_id)
            if order is None:
                raise NotFoundError("Order not found")
            if order.order_status == OrderStatus.COMPLETED:
                raise ConflictError("Order is already paid", code="ORDER_ALREADY_PAID")
            if order.order_status in TERMINAL_ORDER_STATUSES:
                raise ConflictError(
                    "Order can no longer be paid", code="ORDER_UPDATE_FAILED"
                )
            return self.target_for_order(order)

        if payment_for == PaymentFor.SUBSCRIPTION:
            account = await session.get(Account, target_id)
            if account is None:
                raise NotFoundError("Account not found")
            return PaymentTarget(
                id=account.id,
                amount=round_money(self.settings.SUBSCRIPTION_FEE * periods),
                customer=Customer(
                    email=account.email,
                    name=account.full_name,
                    phone=account.phone_number,
                ),
                meta={"periods": periods},
            )

        if payment_for == PaymentFor.AI_ADDON:
            store = await session.get(Store, target_id)
            if store is None:
                raise NotFoundError("Store not found")
            return PaymentTarget(
                id=store.id,
                amount=round_money(self.settings.AI_ADDON_FEE),
                customer=Customer(email=store.owner.email, name=store.owner.full_name),
                store_id=store.id,
            )

        raise ValidationError(f"Cannot initiate a {payment_for.value} payment")

    @staticmethod
    def target_for_order(order: Order) -> PaymentTarget:
        details = order.customer_details or {}
        return PaymentTarget(
            id=order.id,
            amount=round_money(order.amount_left_to_pay),
            customer=Customer(
                email=details.get("email") or "",
                name=details.get("name"),
                phone=details.get("phone"),
            ),
            store_id=order.store_id,
            meta={"order_number": order.order_number},
        )

    # =========================================================================
    # Initiation
    # =========================================================================

    async def _select_channel(
        self,
        session: AsyncSession,
        target: PaymentTarget,
        payment_for: PaymentFor,
        preference: PaymentChannel,
    ) -> tuple[PaymentChannel, Optional[BankAccount]]:
        gateway_channel = (
            preference if preference in GATEWAY_CHANNELS else PaymentChannel.GATEWAY_CARD
        )

        if payment_for != PaymentFor.ORDER:
            # Platform billing always goes through the platform gateway
            if self.gateway is None:
                raise NoPaymentOptionError("Payment gateway is not configured")
            return gateway_channel, None

        connected = await session.scalar(
            select(StoreIntegration.id).where(
                StoreIntegration.store_id == target.store_id,
                StoreIntegration.name == IntegrationName.PAYSTACK,
                StoreIntegration.is_connected.is_(True),
            )
        )
        if connected is not None and self.gateway is not None:
            return gateway_channel, None

        result = await session.execute(
            select(BankAccount)
            .where(BankAccount.store_id == target.store_id)
            .order_by(BankAccount.is_default.desc(), BankAccount.created_at)
            .limit(1)
        )
        bank_account = result.scalar_one_or_none()
        if bank_account is not None:
            return PaymentChannel.WALLET_BALANCE, bank_account

        raise NoPaymentOptionError("This store has no payment option configured")

    async def initiate(
        self,
        target: PaymentTarget,
        payment_for: PaymentFor,
        channel_preference: PaymentChannel = PaymentChannel.GATEWAY_CARD,
        meta: Optional[dict] = None,
        session: Optional[AsyncSession] = None,
    ) -> CheckoutArtifact:
        """
        Create the checkout artifact and the pending ledger entry.

        With ``session`` the writes join the caller's unit of work (order
        creation); otherwise a unit of work is opened here. A gateway
        timeout propagates as a retryable ``IntegrationError`` and the
        enclosing unit of work rolls back.
        """
        if session is None:
            async with self.uow.begin() as own_session:
                return await self.initiate(
                    target, payment_for, channel_preference, meta, own_session
                )

        if target.amount <= ZERO:
            raise ValidationError("Nothing to pay on this target")
        if (
            channel_preference in GATEWAY_CHANNELS or payment_for != PaymentFor.ORDER
        ) and not target.customer.email:
            raise ValidationError("Customer email is required for online payment")

        channel, bank_account = await self._select_channel(
            session, target, payment_for, channel_preference
        )
        reference = await self.ledger.new_reference(session)

        artifact = CheckoutArtifact(
            reference=reference,
            amount=target.amount,
            channel=channel,
            payment_for=payment_for,
        )

        if channel == PaymentChannel.GATEWAY_CARD:
            link = await self.gateway.create_checkout_link(
                target.amount,
                self.settings.CURRENCY,
                reference,
                target.customer,
                metadata={"payment_for": payment_for.value, "target_id": str(target.id)},
            )
            artifact.checkout_link = link.link
        elif channel == PaymentChannel.GATEWAY_TRANSFER:
            account = await self.gateway.create_virtual_account(
                target.amount, reference, target.customer
            )
            artifact.virtual_account = VirtualAccountDetails(
                account_number=account.account_number,
                bank_name=account.bank_name,
                account_name=account.account_name,
                expires_at=account.expires_at,
            )
        else:
            artifact.bank_details = {**bank_account.snapshot(), "narration": reference}

        await self.ledger.open_pending(
            session,
            reference=reference,
            amount=target.amount,
            payment_for=payment_for,
            payment_channel=channel,
            target_id=target.id,
            store_id=target.store_id,
            meta={
                **target.meta,
                **(meta or {}),
                "artifact": artifact.model_dump(
                    mode="json", exclude={"reference", "amount"}
                ),
            },
        )

        if payment_for == PaymentFor.ORDER:
            order = await session.get(Order, target.id)
            order.payment_details = {
                **(order.payment_details or {}),
                **self.payment_details_for(artifact),
            }

        return artifact

    @staticmethod
    def payment_details_for(artifact: CheckoutArtifact) -> dict:
        """Channel metadata stored on the order."""
        details = {
            "payment_status": OrderPaymentStatus.PENDING.value,
            "payment_method": artifact.channel.value,
            "channel": artifact.channel.value,
            "reference": artifact.reference,
        }
        if artifact.checkout_link:
            details["payment_link"] = artifact.checkout_link
        if artifact.virtual_account:
            details["virtual_account"] = artifact.virtual_account.model_dump(
                mode="json"
            )
        if artifact.bank_details:
            details["bank_details"] = artifact.bank_details
        return details

    async def initiate_for(
        self,
        payment_for: PaymentFor,
        target_id: uuid.UUID,
        channel_preference: PaymentChannel = PaymentChannel.GATEWAY_CARD,
        periods: int = 1,
        meta: Optional[dict] = None,
    ) -> CheckoutArtifact:
        """Resolve the target by id, then initiate in one unit of work."""
        async with self.uow.begin() as session:
            target = await self.resolve_target(session, payment_for, target_id, periods)
            return await self.initiate(
                target, payment_for, channel_preference, meta, session
            )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile(
        self,
        reference: str,
        gateway_status: str,
        gateway_amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Apply a gateway outcome to ``reference`` at most once.

        Raises:
            UnknownReferenceError: no transaction carries ``reference``
        """
        succeeded = str(gateway_status).lower() in SUCCESS_STATUSES
        after_commit = []

        async with self.uow.begin() as session:
            transaction = await self.ledger.get(session, reference)
            if transaction is None:
                raise UnknownReferenceError(f"Unknown payment reference {reference}")
            if transaction.payment_for == PaymentFor.WITHDRAWAL:
                raise ValidationError("Withdrawals are settled by operator approval")
            if transaction.is_terminal:
                logger.info("Reconcile for %s skipped - already processed", reference)
                return ReconcileResult(
                    reference=reference,
                    applied=False,
                    payment_status=transaction.payment_status,
                )

            new_status = (
                TransactionStatus.SUCCESSFUL if succeeded else TransactionStatus.FAILED
            )
            amount = (
                round_money(gateway_amount)
                if gateway_amount is not None
                else round_money(transaction.amount)
            )
            won = await self.ledger.try_mark_processed(
                session,
                reference,
                new_status,
                settled_amount=amount if succeeded else None,
                paid_at=paid_at or (utc_now() if succeeded else None),
            )
            if not won:
                return ReconcileResult(
                    reference=reference,
                    applied=False,
                    payment_status=await self._current_status(session, reference),
                )

            partial = False
            if not succeeded:
                await self._fail_target(session, transaction)
            elif transaction.payment_for == PaymentFor.ORDER:
                partial = await self._settle_order(
                    session, transaction, amount, paid_at, after_commit
                )
            elif transaction.payment_for == PaymentFor.SUBSCRIPTION:
                await self._extend_subscription(
                    session, transaction, amount, paid_at, after_commit
                )
            elif transaction.payment_for == PaymentFor.AI_ADDON:
                await self._extend_ai_addon(session, transaction)

        logger.info(
            "Reconciled %s as %s (partial=%s)", reference, new_status.value, partial
        )
        for notify in after_commit:
            notify()

        return ReconcileResult(
            reference=reference,
            applied=True,
            payment_status=new_status,
            partial=partial,
        )

    async def _current_status(
        self, session: AsyncSession, reference: str
    ) -> TransactionStatus:
        status = await session.scalar(
            select(Transaction.payment_status).where(Transaction.reference == reference)
        )
        return TransactionStatus(status)

    async def _fail_target(self, session: AsyncSession, transaction: Transaction):
        if transaction.payment_for != PaymentFor.ORDER:
            return
        order = await session.get(Order, transaction.target_id)
        if order is None or order.order_status in TERMINAL_ORDER_STATUSES:
            return
        # Only the order's current payment attempt may flag it as failed
        if (order.payment_details or {}).get("reference") != transaction.reference:
            logger.info(
                "Failed payment %s is not the current attempt for order %s",
                transaction.reference,
                order.order_number,
            )
            return
        order.payment_details = {
            **(order.payment_details or {}),
            "payment_status": OrderPaymentStatus.FAILED.value,
        }

    async def _settle_order(
        self,
        session: AsyncSession,
        transaction: Transaction,
        amount: Decimal,
        paid_at: Optional[datetime],
        after_commit: list,
    ) -> bool:
        """Apply a settled amount to the order. Returns True for a part payment."""
        order = await session.get(Order, transaction.target_id, with_for_update=True)
        if order is None:
            raise NotFoundError(f"Order {transaction.target_id} not found")
        store = await session.get(Store, order.store_id)
        owner_email = store.owner.email if store and store.owner else None

        if order.order_status in TERMINAL_ORDER_STATUSES:
            # Money arrived for a closed order; it still belongs to the store
            logger.warning(
                "Payment %s settled for %s order %s",
                transaction.reference,
                order.order_status.value,
                order.order_number,
            )
            await self.balance.credit(session, order.store_id, amount)
            return False

        if amount < order.amount_left_to_pay:
            order.amount_left_to_pay = round_money(order.amount_left_to_pay - amount)
            order.amount_paid = round_money(order.amount_paid + amount)
            order.payment_details = {
                **(order.payment_details or {}),
                "last_payment_date": (paid_at or utc_now()).isoformat(),
            }
            after_commit.append(lambda: self.notifier.order_partially_paid(order))
            return True

        # Credit everything the order has settled, part payments included
        settled = round_money(order.amount_paid + amount)
        mark_completed(order, paid_at)
        await self.balance.credit(session, order.store_id, settled)
        after_commit.append(lambda: self.notifier.order_paid(order, owner_email))
        return False

    async def _extend_subscription(
        self,
        session: AsyncSession,
        transaction: Transaction,
        amount: Decimal,
        paid_at: Optional[datetime],
        after_commit: list,
    ) -> None:
        account = await session.get(Account, transaction.target_id)
        if account is None:
            raise NotFoundError(f"Account {transaction.target_id} not found")

        periods = int(amount // self.settings.SUBSCRIPTION_FEE)
        if periods < 1:
            logger.warning(
                "Subscription payment %s of %s covers no billing period",
                transaction.reference,
                amount,
            )
            return

        now = utc_now()
        current = ensure_aware(account.plan_expires_at) if account.plan_expires_at else None
        start = current if current and current > now else now
        account.plan_expires_at = start + timedelta(
            days=self.settings.SUBSCRIPTION_PERIOD_DAYS * periods
        )
        account.plan_type = PlanType.PREMIUM
        account.plan_amount_paid = amount
        account.plan_subscribed_at = paid_at or now

        email, name, expires_at = account.email, account.full_name, account.plan_expires_at
        after_commit.append(
            lambda: self.notifier.subscription_activated(email, name, expires_at)
        )

    async def _extend_ai_addon(
        self, session: AsyncSession, transaction: Transaction
    ) -> None:
        store = await session.get(Store, transaction.target_id)
        if store is None:
            raise NotFoundError(f"Store {transaction.target_id} not found")
        now = utc_now()
        current = (
            ensure_aware(store.ai_addon_expires_at) if store.ai_addon_expires_at else None
        )
        start = current if current and current > now else now
        store.ai_addon_expires_at = start + timedelta(days=self.settings.AI_ADDON_DAYS)

    # =========================================================================
    # Verification poll
    # =========================================================================

    async def verify(self, reference: str) -> ReconcileResult:
        """Ask the gateway for the outcome of ``reference`` and reconcile it."""
        async with self.uow.read() as session:
            transaction = await self.ledger.get(session, reference)
            if transaction is None:
                raise UnknownReferenceError(f"Unknown payment reference {reference}")
            status = transaction.payment_status
            channel = transaction.payment_channel

        if status != TransactionStatus.PENDING:
            return ReconcileResult(reference=reference, applied=False, payment_status=status)
        if channel not in GATEWAY_CHANNELS:
            raise ValidationError("Only gateway payments can be verified")
        if self.gateway is None:
            raise IntegrationError("Payment gateway is not configured")

        verification = await self.gateway.verify_by_reference(reference)
        if not verification.is_successful and verification.status not in FAILED_STATUSES:
            logger.info(
                "Transaction %s still %s at gateway", reference, verification.status
            )
            return ReconcileResult(
                reference=reference,
                applied=False,
                payment_status=TransactionStatus.PENDING,
            )

        return await self.reconcile(
            reference,
            verification.status,
            verification.settled_amount,
            verification.paid_at,
        )
