"""Wires the storefront components together behind one facade."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.config import Settings
from libs.common.emails.client import EmailClient
from libs.db.config import create_engine, create_session_factory
from libs.db.session import TransactionalUnitOfWork
from services.storefront_service.models import (
    OrderStatus,
    PasscodePurpose,
    PaymentChannel,
    PaymentFor,
)
from services.storefront_service.paystack_client import PaystackClient
from services.storefront_service.schemas import (
    CartLine,
    CartTotal,
    CheckoutArtifact,
    OrderCreate,
    OrderUpdate,
    ReconcileResult,
)
from services.storefront_service.sendbox_client import SendboxClient
from services.storefront_service.services.balance import BalanceAccount
from services.storefront_service.services.ledger import TransactionLedger
from services.storefront_service.services.notifications import (
    NotificationDispatcher,
    NotificationService,
)
from services.storefront_service.services.order_state import Actor
from services.storefront_service.services.orders import (
    DeliveryQuoteClient,
    OrderLifecycle,
)
from services.storefront_service.services.passcodes import PasscodeManager
from services.storefront_service.services.payments import (
    PaymentGatewayClient,
    PaymentOrchestrator,
)
from services.storefront_service.services.pricing import PricingEngine, SqlCatalog
from services.storefront_service.services.withdrawals import WithdrawalQueue
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


class StorefrontEngine:
    """
    The exposed operations of the storefront core.

    Collaborators are injected; ``from_settings`` builds the production ones.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: Optional[PaymentGatewayClient] = None,
        delivery: Optional[DeliveryQuoteClient] = None,
        notification_service: Optional[NotificationService] = None,
        db_engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings
        self.db_engine = db_engine
        self.uow = TransactionalUnitOfWork(session_factory)
        self.ledger = TransactionLedger()
        self.balance = BalanceAccount()
        self.notifier = NotificationDispatcher(notification_service)
        self.payments = PaymentOrchestrator(
            settings, self.uow, self.ledger, self.balance, self.notifier, gateway
        )
        self.orders = OrderLifecycle(
            settings, self.uow, self.payments, self.notifier, delivery
        )
        self.withdrawals = WithdrawalQueue(
            settings,
            self.uow,
            self.ledger,
            self.balance,
            PasscodeManager(settings),
            self.notifier,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorefrontEngine":
        db_engine = create_engine(settings)
        gateway = PaystackClient(settings) if settings.paystack_enabled else None
        delivery = (
            SendboxClient(settings) if settings.SENDBOX_ACCESS_TOKEN else None
        )
        return cls(
            settings,
            create_session_factory(db_engine),
            gateway=gateway,
            delivery=delivery,
            notification_service=EmailClient(settings),
            db_engine=db_engine,
        )

    async def close(self) -> None:
        await self.notifier.drain()
        if self.db_engine is not None:
            await self.db_engine.dispose()

    # --- Pricing ---

    async def compute_cart_total(
        self,
        lines: list[CartLine],
        coupon_code: Optional[str] = None,
        store_id: Optional[uuid.UUID] = None,
    ) -> CartTotal:
        async with self.uow.read() as session:
            return await PricingEngine(SqlCatalog(session)).compute_total(
                lines, coupon_code, store_id=store_id
            )

    # --- Orders ---

    async def create_order(self, payload: OrderCreate):
        return await self.orders.create(payload)

    async def get_order(self, order_id: uuid.UUID):
        return await self.orders.get(order_id)

    async def transition_order(
        self, order_id: uuid.UUID, target: OrderStatus, actor: Actor
    ):
        return await self.orders.transition(order_id, target, actor)

    async def update_order(self, order_id: uuid.UUID, changes: OrderUpdate, actor: Actor):
        return await self.orders.update(order_id, changes, actor)

    async def request_cancellation(self, order_id: uuid.UUID, reason: str):
        return await self.orders.request_cancellation(order_id, reason)

    async def request_confirmation(self, order_id: uuid.UUID):
        return await self.orders.request_confirmation(order_id)

    async def create_shipment(self, order_id: uuid.UUID, pickup_date: str, actor: Actor):
        return await self.orders.create_shipment(order_id, pickup_date, actor)

    # --- Payments ---

    async def initiate_payment(
        self,
        payment_for: PaymentFor,
        target_id: uuid.UUID,
        channel: PaymentChannel = PaymentChannel.GATEWAY_CARD,
        periods: int = 1,
        meta: Optional[dict] = None,
    ) -> CheckoutArtifact:
        return await self.payments.initiate_for(
            payment_for, target_id, channel, periods, meta
        )

    async def reconcile_payment(
        self,
        reference: str,
        gateway_status: str,
        gateway_amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> ReconcileResult:
        return await self.payments.reconcile(
            reference, gateway_status, gateway_amount, paid_at
        )

    async def verify_payment(self, reference: str) -> ReconcileResult:
        return await self.payments.verify(reference)

    # --- Withdrawals ---

    async def issue_passcode(
        self, email: str, purpose: PasscodePurpose = PasscodePurpose.WITHDRAWAL
    ) -> str:
        return await self.withdrawals.issue_passcode(email, purpose)

    async def request_withdrawal(
        self,
        store_id: uuid.UUID,
        amount: Decimal,
        bank_account_id: uuid.UUID,
        otp: str,
    ):
        return await self.withdrawals.request_withdrawal(
            store_id, amount, bank_account_id, otp
        )

    async def approve_withdrawal(self, request_id: uuid.UUID):
        return await self.withdrawals.approve_withdrawal(request_id)

    async def reject_withdrawal(self, request_id: uuid.UUID, reason: str):
        return await self.withdrawals.reject_withdrawal(request_id, reason)
