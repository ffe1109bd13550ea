"""Storefront Service schemas package."""

from services.storefront_service.schemas.main import (
    CartLine,
    CartTotal,
    CartTotalRequest,
    CheckoutArtifact,
    CouponCreate,
    CustomerDetails,
    InitiatePaymentRequest,
    OrderCancellationRequest,
    OrderCreate,
    OrderResponse,
    OrderTransitionRequest,
    OrderUpdate,
    PasscodeRequest,
    PricedLine,
    ReconcileResult,
    ShippingAddress,
    TransactionResponse,
    VirtualAccountDetails,
    WithdrawalCreate,
    WithdrawalReject,
    WithdrawalResponse,
)

__all__ = [
    "CartLine",
    "CartTotal",
    "CartTotalRequest",
    "CheckoutArtifact",
    "CouponCreate",
    "CustomerDetails",
    "InitiatePaymentRequest",
    "OrderCancellationRequest",
    "OrderCreate",
    "OrderResponse",
    "OrderTransitionRequest",
    "OrderUpdate",
    "PasscodeRequest",
    "PricedLine",
    "ReconcileResult",
    "ShippingAddress",
    "TransactionResponse",
    "VirtualAccountDetails",
    "WithdrawalCreate",
    "WithdrawalReject",
    "WithdrawalResponse",
]
