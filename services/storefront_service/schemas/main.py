import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import ensure_aware, utc_now
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from services.storefront_service.models import (
    CouponScope,
    CouponType,
    OrderStatus,
    PasscodePurpose,
    PaymentChannel,
    PaymentFor,
    TransactionStatus,
    WithdrawalStatus,
)

# --- Pricing Schemas ---


class CartLine(BaseModel):
    product_id: uuid.UUID
    size: Optional[str] = Field(default=None, max_length=20)
    color: Optional[str] = Field(default=None, max_length=50)
    quantity: int = Field(default=1, ge=1, le=1000)


class PricedLine(BaseModel):
    """Immutable product snapshot embedded in an order."""

    product_id: uuid.UUID
    name: str
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    base_price: Decimal
    unit_price: Decimal
    line_total: Decimal
    is_digital: bool = False
    weight: Optional[Decimal] = None
    dimensions: Optional[dict] = None


class CartTotal(BaseModel):
    total: Decimal
    discount: Decimal
    discount_pct: Decimal
    subtotal: Decimal  # Before any discount
    lines: list[PricedLine] = Field(default_factory=list)


class CartTotalRequest(BaseModel):
    lines: list[CartLine]
    coupon_code: Optional[str] = Field(default=None, max_length=50)


class CouponCreate(BaseModel):
    store_id: uuid.UUID
    code: Optional[str] = Field(default=None, min_length=2, max_length=50)
    applied_to: CouponScope = CouponScope.CART
    selected_products: list[uuid.UUID] = Field(default_factory=list)
    coupon_type: CouponType
    discount_value: Decimal = Field(..., gt=0)
    expiration_date: datetime
    max_usage: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_rules(self):
        if (
            self.coupon_type == CouponType.PERCENTAGE
            and self.discount_value > Decimal("100")
        ):
            raise ValueError("Percentage discount cannot exceed 100")
        if ensure_aware(self.expiration_date) <= utc_now():
            raise ValueError("Expiration date must be in the future")
        if self.applied_to == CouponScope.PRODUCTS and not self.selected_products:
            raise ValueError("A product coupon must select at least one product")
        return self


# --- Order Schemas ---


class ShippingAddress(BaseModel):
    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    postal_code: Optional[str] = Field(default=None, max_length=20)

    def is_complete(self) -> bool:
        return all([self.address, self.city, self.state, self.country])


class CustomerDetails(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    shipping_address: Optional[ShippingAddress] = None


class OrderCreate(BaseModel):
    store_id: uuid.UUID
    products: list[CartLine] = Field(default_factory=list)
    customer_details: CustomerDetails
    coupon_code: Optional[str] = Field(default=None, max_length=50)
    delivery_method: str = Field(
        default="pick_up", pattern="^(pick_up|waybill|sendbox)$"
    )
    payment_preference: PaymentChannel = PaymentChannel.GATEWAY_CARD
    note: Optional[str] = Field(default=None, max_length=1000)


class OrderUpdate(BaseModel):
    """Field edits. Customers may only send ``note`` and ``shipping_address``."""

    note: Optional[str] = Field(default=None, max_length=1000)
    shipping_address: Optional[ShippingAddress] = None
    payment_details: Optional[dict] = None
    shipping_details: Optional[dict] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    coupon_code: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class OrderTransitionRequest(BaseModel):
    target: OrderStatus


class OrderCancellationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class OrderResponse(BaseModel):
    id: uuid.UUID
    order_number: str
    store_id: uuid.UUID
    products: list[dict]
    customer_details: dict
    order_status: OrderStatus
    payment_details: dict
    total_amount: Decimal
    amount_paid: Decimal
    amount_left_to_pay: Decimal
    discount: Decimal
    shipping_details: dict
    coupon_code: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Payment Schemas ---


class VirtualAccountDetails(BaseModel):
    account_number: str
    bank_name: str
    account_name: Optional[str] = None
    expires_at: Optional[datetime] = None


class CheckoutArtifact(BaseModel):
    reference: str
    amount: Decimal
    channel: PaymentChannel
    payment_for: PaymentFor
    checkout_link: Optional[str] = None
    virtual_account: Optional[VirtualAccountDetails] = None
    bank_details: Optional[dict] = None  # Manual transfer instructions


class InitiatePaymentRequest(BaseModel):
    payment_for: PaymentFor
    target_id: uuid.UUID
    channel: PaymentChannel = PaymentChannel.GATEWAY_CARD
    periods: int = Field(default=1, ge=1, le=24)  # Subscription billing periods
    meta: Optional[dict] = None


class ReconcileResult(BaseModel):
    reference: str
    applied: bool  # False when the reference was already terminal
    payment_status: TransactionStatus
    partial: bool = False


class TransactionResponse(BaseModel):
    id: uuid.UUID
    reference: str
    amount: Decimal
    payment_for: PaymentFor
    payment_channel: PaymentChannel
    payment_status: TransactionStatus
    target_id: uuid.UUID
    store_id: Optional[uuid.UUID] = None
    settled_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Withdrawal Schemas ---


class WithdrawalCreate(BaseModel):
    amount: Decimal
    bank_account_id: uuid.UUID
    otp: str = Field(..., min_length=4, max_length=10)


class WithdrawalReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalResponse(BaseModel):
    id: uuid.UUID
    store_id: uuid.UUID
    amount: Decimal
    bank_snapshot: dict
    status: WithdrawalStatus
    transaction_reference: str
    rejection_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PasscodeRequest(BaseModel):
    email: EmailStr
    purpose: PasscodePurpose = PasscodePurpose.WITHDRAWAL
