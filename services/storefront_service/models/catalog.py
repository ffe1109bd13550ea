"""Catalog models read by the pricing engine: products and coupons."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.storefront_service.models.enums import (
    CouponScope,
    CouponType,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Product(Base):
    """Store products."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    price_default: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # {"S": "500.00", "M": "700.00"}
    price_sizes: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    use_default_pricing: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    discount: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0"), nullable=False
    )

    # Inventory
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_digital: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Shipping
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    # {"length": 10, "width": 5, "height": 2}
    dimensions: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "discount >= 0 AND discount <= 100", name="ck_product_discount_range"
        ),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )

    def __repr__(self):
        return f"<Product {self.name} {self.price_default}>"


class Coupon(Base):
    """Discount coupons, scoped to the whole cart or to selected products."""

    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    code: Mapped[Optional[str]] = mapped_column(
        String(50), unique=True, index=True, nullable=True
    )

    applied_to: Mapped[CouponScope] = mapped_column(
        SAEnum(
            CouponScope,
            name="coupon_scope_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=CouponScope.CART,
        nullable=False,
    )
    # Product ids as strings; required when applied_to == products
    selected_products: Mapped[list] = mapped_column(
        JSONType, default=list, nullable=False
    )

    coupon_type: Mapped[CouponType] = mapped_column(
        SAEnum(
            CouponType,
            name="coupon_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    expiration_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    max_usage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_coupon_value_non_negative"),
    )

    def selects(self, product_id) -> bool:
        return str(product_id) in {str(p) for p in (self.selected_products or [])}

    def __repr__(self):
        return f"<Coupon {self.code} {self.coupon_type.value}={self.discount_value}>"
