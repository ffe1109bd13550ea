"""Order model.

Orders embed product-line snapshots, never live product references, so
``total_amount`` is fixed at creation and only reduced by reconciliation.
"""

import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.storefront_service.models.enums import OrderStatus, enum_values
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


def generate_order_number() -> str:
    """Generate a unique order number like ORD-A1B2C."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"ORD-{suffix}"


class Order(Base):
    """Customer orders."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, default=generate_order_number, nullable=False
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id"), index=True, nullable=False
    )

    # Line snapshots: [{product_id, name, size, color, quantity, unit_price,
    # line_total, is_digital, weight, dimensions}]
    products: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # {name, email, phone, shipping_address: {address, city, state, country, ...}}
    customer_details: Mapped[dict] = mapped_column(
        JSONType, default=dict, nullable=False
    )

    order_status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            name="order_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=OrderStatus.PENDING,
        nullable=False,
    )

    # {payment_status, payment_method, channel, reference, payment_link,
    #  virtual_account, bank_details, payment_date}
    payment_details: Mapped[dict] = mapped_column(
        JSONType, default=dict, nullable=False
    )

    # Money
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    amount_left_to_pay: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False
    )
    discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )

    # {method, cost, tracking_number, carrier, estimated_delivery_date}
    shipping_details: Mapped[dict] = mapped_column(
        JSONType, default=dict, nullable=False
    )

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_left_to_pay >= 0", name="ck_order_left_non_negative"),
        Index("ix_orders_store_id_status", "store_id", "order_status"),
    )

    @property
    def customer_email(self) -> Optional[str]:
        return (self.customer_details or {}).get("email")

    @property
    def payment_reference(self) -> Optional[str]:
        return (self.payment_details or {}).get("reference")

    def __repr__(self):
        return f"<Order {self.order_number} status={self.order_status.value}>"
