"""Enum definitions for storefront models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)

# Allowed forward moves; terminal states have no entry.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {
            OrderStatus.SHIPPED,
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        }
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED}),
}


class OrderPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class CouponScope(str, enum.Enum):
    CART = "cart"
    PRODUCTS = "products"


class CouponType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentFor(str, enum.Enum):
    ORDER = "order"
    SUBSCRIPTION = "subscription"
    AI_ADDON = "ai-addon"
    WITHDRAWAL = "withdrawal"


class PaymentChannel(str, enum.Enum):
    GATEWAY_CARD = "gateway-card"
    GATEWAY_TRANSFER = "gateway-transfer"
    WALLET_BALANCE = "wallet-balance"


GATEWAY_CHANNELS = frozenset(
    {PaymentChannel.GATEWAY_CARD, PaymentChannel.GATEWAY_TRANSFER}
)


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESSFUL = "successful"
    FAILED = "failed"


class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    TRANSFER = "transfer"


class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class IntegrationName(str, enum.Enum):
    PAYSTACK = "paystack"
    SENDBOX = "sendbox"


class PlanType(str, enum.Enum):
    FREE = "free"
    PREMIUM = "premium"


class PasscodePurpose(str, enum.Enum):
    WITHDRAWAL = "withdrawal"
    LOGIN = "login"
    VERIFY_EMAIL = "verify-email"


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    OWNER = "owner"
    SYSTEM = "system"
