"""Store, owner account, integrations and payout bank accounts."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.storefront_service.models.enums import (
    IntegrationName,
    PlanType,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Account(Base):
    """Store owner account; carries the premium plan window."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    plan_type: Mapped[PlanType] = mapped_column(
        SAEnum(
            PlanType,
            name="plan_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PlanType.FREE,
        nullable=False,
    )
    plan_amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    plan_subscribed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    plan_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Account {self.email}>"


class Store(Base):
    """A tenant storefront. ``balance`` is the store wallet."""

    __tablename__ = "stores"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    store_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )

    # Default dispatch address used as the shipping-quote origin
    origin_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    origin_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    ai_addon_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    owner = relationship("Account", lazy="joined")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_store_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Store {self.store_code} balance={self.balance}>"


class StoreIntegration(Base):
    """Third-party integrations a store has connected."""

    __tablename__ = "store_integrations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[IntegrationName] = mapped_column(
        SAEnum(
            IntegrationName,
            name="integration_name_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    is_connected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("store_id", "name", name="uq_store_integration_name"),
    )


class BankAccount(Base):
    """Payout destination registered by the store owner."""

    __tablename__ = "bank_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    account_number: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_code: Mapped[str] = mapped_column(String(20), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def snapshot(self) -> dict:
        """Copy stored on withdrawal requests and manual-transfer instructions."""
        return {
            "bank_account_id": str(self.id),
            "account_number": self.account_number,
            "account_name": self.account_name,
            "bank_code": self.bank_code,
            "bank_name": self.bank_name,
        }

    def __repr__(self):
        return f"<BankAccount {self.bank_name} ****{self.account_number[-4:]}>"
