"""Ledger models: transactions, withdrawal requests, one-time passcodes."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.storefront_service.models.enums import (
    PasscodePurpose,
    PaymentChannel,
    PaymentFor,
    TransactionStatus,
    TransactionType,
    WithdrawalStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column


class Transaction(Base):
    """Money movement ledger. ``reference`` is the idempotency key."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payment_for: Mapped[PaymentFor] = mapped_column(
        SAEnum(
            PaymentFor,
            name="payment_for_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    payment_channel: Mapped[PaymentChannel] = mapped_column(
        SAEnum(
            PaymentChannel,
            name="payment_channel_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    payment_status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(
            TransactionStatus,
            name="transaction_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        SAEnum(
            TransactionType,
            name="transaction_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TransactionType.PAYMENT,
        nullable=False,
    )

    # Order id, owner account id, store id or withdrawal request id
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    store_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("stores.id"), index=True, nullable=True
    )
    meta: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    settled_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        Index("ix_transactions_status_created", "payment_status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.payment_status != TransactionStatus.PENDING

    def __repr__(self):
        return (
            f"<Transaction {self.reference} {self.payment_for.value} "
            f"{self.payment_status.value}>"
        )


class WithdrawalRequest(Base):
    """Queued payout request. At most one pending request per store."""

    __tablename__ = "withdrawal_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    bank_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)

    status: Mapped[WithdrawalStatus] = mapped_column(
        SAEnum(
            WithdrawalStatus,
            name="withdrawal_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=WithdrawalStatus.PENDING,
        nullable=False,
    )
    transaction_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
        Index(
            "uq_withdrawal_pending_per_store",
            "store_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self):
        return f"<WithdrawalRequest {self.amount} {self.status.value}>"


class OneTimePasscode(Base):
    """Short-lived, single-use confirmation code. Only the hash is stored."""

    __tablename__ = "one_time_passcodes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    purpose: Mapped[PasscodePurpose] = mapped_column(
        SAEnum(
            PasscodePurpose,
            name="passcode_purpose_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<OneTimePasscode {self.email} {self.purpose.value}>"
