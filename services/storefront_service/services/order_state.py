"""Order state machine rules, shared by the lifecycle and reconciliation."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from libs.common.currency import ZERO
from libs.common.datetime_utils import utc_now
from libs.common.errors import ConflictError
from services.storefront_service.models import (
    ORDER_TRANSITIONS,
    TERMINAL_ORDER_STATUSES,
    ActorRole,
    Order,
    OrderPaymentStatus,
    OrderStatus,
)

EDITABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


@dataclass
class Actor:
    """Who is acting on an order."""

    role: ActorRole
    store_id: Optional[uuid.UUID] = None
    email: Optional[str] = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=ActorRole.SYSTEM)


def check_transition(order: Order, target: OrderStatus) -> None:
    current = OrderStatus(order.order_status)
    if current == OrderStatus.COMPLETED and target == OrderStatus.COMPLETED:
        raise ConflictError(
            f"Order {order.order_number} is already paid", code="ORDER_ALREADY_PAID"
        )
    if current in TERMINAL_ORDER_STATUSES:
        raise ConflictError(
            f"Order {order.order_number} is {current.value} and cannot change",
            code="ORDER_UPDATE_FAILED",
        )
    if target not in ORDER_TRANSITIONS.get(current, frozenset()):
        raise ConflictError(
            f"Cannot move order from {current.value} to {target.value}",
            code="ORDER_UPDATE_FAILED",
        )


def mark_completed(order: Order, paid_at: Optional[datetime] = None) -> None:
    """Settle the order in full and move it to ``completed``."""
    order.order_status = OrderStatus.COMPLETED
    order.amount_paid = order.total_amount
    order.amount_left_to_pay = ZERO
    order.payment_details = {
        **(order.payment_details or {}),
        "payment_status": OrderPaymentStatus.PAID.value,
        "payment_date": (paid_at or utc_now()).isoformat(),
    }


def apply_transition(
    order: Order, target: OrderStatus, paid_at: Optional[datetime] = None
) -> OrderStatus:
    """Validate and apply ``target``; returns the previous status."""
    check_transition(order, target)
    previous = OrderStatus(order.order_status)
    if target == OrderStatus.COMPLETED:
        mark_completed(order, paid_at)
    else:
        order.order_status = target
    return previous
