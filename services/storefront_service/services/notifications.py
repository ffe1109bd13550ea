"""Best-effort notifications, dispatched after the unit of work commits."""

import asyncio
from typing import Optional, Protocol

from libs.common.currency import format_naira
from libs.common.logging import get_logger
from services.storefront_service.models import Order, OrderStatus

logger = get_logger(__name__)


class NotificationService(Protocol):
    async def send(
        self, recipient: str, content: str, subject: Optional[str] = None
    ) -> bool: ...


class NotificationDispatcher:
    """
    Fire-and-forget delivery on detached tasks.

    Callers never await delivery and never see its failures; a failed send
    is logged. ``drain()`` waits for in-flight sends (shutdown, tests).
    """

    def __init__(self, service: Optional[NotificationService]):
        self.service = service
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, recipient: Optional[str], content: str, subject: str) -> None:
        if self.service is None or not recipient:
            return
        task = asyncio.create_task(self._deliver(recipient, content, subject))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, recipient: str, content: str, subject: str) -> None:
        try:
            delivered = await self.service.send(recipient, content, subject)
        except Exception as e:
            logger.error("Notification to %s failed: %s", recipient, e)
            return
        if delivered is False:
            logger.warning("Notification to %s was not accepted", recipient)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def order_created(self, order: Order, owner_email: Optional[str]) -> None:
        total = format_naira(order.total_amount)
        self.dispatch(
            order.customer_email,
            f"Thank you for your order {order.order_number}. Total: {total}.",
            "Order received",
        )
        self.dispatch(
            owner_email,
            f"You have a new order {order.order_number} for {total}.",
            "New order",
        )

    def order_status_changed(self, order: Order) -> None:
        self.dispatch(
            order.customer_email,
            f"Your order {order.order_number} is now {order.order_status.value}.",
            "Order update",
        )

    def order_paid(self, order: Order, owner_email: Optional[str]) -> None:
        self.dispatch(
            order.customer_email,
            f"We received full payment for order {order.order_number}.",
            "Payment received",
        )
        self.dispatch(
            owner_email,
            f"Order {order.order_number} has been paid "
            f"({format_naira(order.amount_paid)}).",
            "Order paid",
        )

    def order_partially_paid(self, order: Order) -> None:
        self.dispatch(
            order.customer_email,
            f"We received a part payment for order {order.order_number}. "
            f"Outstanding: {format_naira(order.amount_left_to_pay)}.",
            "Part payment received",
        )

    def cancellation_requested(
        self, order: Order, owner_email: Optional[str], reason: str
    ) -> None:
        self.dispatch(
            owner_email,
            f"The customer asked to cancel order {order.order_number}: {reason}",
            "Cancellation request",
        )

    def confirmation_requested(self, order: Order, owner_email: Optional[str]) -> None:
        self.dispatch(
            owner_email,
            f"The customer asked you to confirm order {order.order_number} "
            f"(status: {OrderStatus(order.order_status).value}).",
            "Confirmation request",
        )

    def subscription_activated(self, email: str, name: str, expires_at) -> None:
        self.dispatch(
            email,
            f"Hi {name}, your premium plan is active until {expires_at:%d %b %Y}.",
            "Subscription confirmed",
        )

    def passcode_issued(self, email: str, code: str, ttl_minutes: int) -> None:
        self.dispatch(
            email,
            f"Your one-time passcode is {code}. It expires in {ttl_minutes} minutes.",
            "Your one-time passcode",
        )

    def withdrawal_requested(self, email: Optional[str], amount) -> None:
        self.dispatch(
            email,
            f"Your withdrawal request of {format_naira(amount)} is being processed.",
            "Withdrawal requested",
        )

    def withdrawal_processed(self, email: Optional[str], amount, approved: bool) -> None:
        outcome = "completed" if approved else "rejected"
        self.dispatch(
            email,
            f"Your withdrawal of {format_naira(amount)} was {outcome}.",
            f"Withdrawal {outcome}",
        )
