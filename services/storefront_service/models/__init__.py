"""Storefront Service models package."""

from services.storefront_service.models.catalog import Coupon, Product
from services.storefront_service.models.commerce import Order
from services.storefront_service.models.enums import (
    GATEWAY_CHANNELS,
    ORDER_TRANSITIONS,
    TERMINAL_ORDER_STATUSES,
    ActorRole,
    CouponScope,
    CouponType,
    IntegrationName,
    OrderPaymentStatus,
    OrderStatus,
    PasscodePurpose,
    PaymentChannel,
    PaymentFor,
    PlanType,
    TransactionStatus,
    TransactionType,
    WithdrawalStatus,
)
from services.storefront_service.models.ledger import (
    OneTimePasscode,
    Transaction,
    WithdrawalRequest,
)
from services.storefront_service.models.store import (
    Account,
    BankAccount,
    Store,
    StoreIntegration,
)

__all__ = [
    "Account",
    "ActorRole",
    "BankAccount",
    "Coupon",
    "CouponScope",
    "CouponType",
    "GATEWAY_CHANNELS",
    "IntegrationName",
    "ORDER_TRANSITIONS",
    "OneTimePasscode",
    "Order",
    "OrderPaymentStatus",
    "OrderStatus",
    "PasscodePurpose",
    "PaymentChannel",
    "PaymentFor",
    "PlanType",
    "Product",
    "Store",
    "StoreIntegration",
    "TERMINAL_ORDER_STATUSES",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "WithdrawalRequest",
    "WithdrawalStatus",
]
