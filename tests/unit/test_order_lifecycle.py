"""Unit tests for order creation, transitions and edits.

Tests call the storefront engine directly; no HTTP layer involved.
"""

import uuid
from decimal import Decimal

import pytest
from libs.common.errors import (
    ConflictError,
    IntegrationError,
    InvalidCouponError,
    NoPaymentOptionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from services.storefront_service.models import (
    ActorRole,
    Coupon,
    IntegrationName,
    Order,
    OrderStatus,
    PaymentChannel,
    Transaction,
    TransactionStatus,
)
from services.storefront_service.schemas import (
    CartLine,
    CustomerDetails,
    OrderCreate,
    OrderUpdate,
    ShippingAddress,
)
from services.storefront_service.services.order_state import Actor
from sqlalchemy import func, select
from tests.factories import (
    AccountFactory,
    BankAccountFactory,
    CouponFactory,
    OrderFactory,
    ProductFactory,
    StoreFactory,
    StoreIntegrationFactory,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_store(seed, paystack=True, bank=False, sendbox=False, **store_overrides):
    owner = AccountFactory.create()
    store = StoreFactory.create(owner_id=owner.id, **store_overrides)
    rows = [owner, store]
    if paystack:
        rows.append(StoreIntegrationFactory.create(store_id=store.id))
    if sendbox:
        rows.append(
            StoreIntegrationFactory.create(
                store_id=store.id, name=IntegrationName.SENDBOX
            )
        )
    if bank:
        rows.append(BankAccountFactory.create(store_id=store.id))
    await seed(*rows)
    return owner, store


def _customer(with_address=True, email="ada@example.com"):
    return CustomerDetails(
        name="Ada Customer",
        email=email,
        phone="+2348098765432",
        shipping_address=ShippingAddress(
            address="12 Allen Avenue", city="Ikeja", state="Lagos", country="Nigeria"
        )
        if with_address
        else None,
    )


def _order_request(store, product, **overrides):
    defaults = {
        "store_id": store.id,
        "products": [CartLine(product_id=product.id, quantity=2)],
        "customer_details": _customer(),
    }
    defaults.update(overrides)
    return OrderCreate(**defaults)


async def _count(storefront, model, *criteria):
    async with storefront.uow.read() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*criteria))


def _owner(store):
    return Actor(role=ActorRole.OWNER, store_id=store.id)


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_opens_checkout_and_pending_transaction(
    storefront, seed, gateway, emails
):
    owner, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id, price_default=Decimal("2500"))
    await seed(product)

    order = await storefront.create_order(_order_request(store, product))

    assert order.order_status == OrderStatus.PENDING
    assert order.total_amount == Decimal("5000.00")
    assert order.amount_left_to_pay == Decimal("5000.00")
    assert order.payment_details["payment_status"] == "pending"
    assert order.payment_details["channel"] == PaymentChannel.GATEWAY_CARD.value
    assert order.payment_details["payment_link"].endswith(order.payment_reference)
    assert gateway.checkouts[0]["amount"] == Decimal("5000.00")

    async with storefront.uow.read() as session:
        transaction = await storefront.ledger.get(session, order.payment_reference)
    assert transaction.payment_status == TransactionStatus.PENDING
    assert transaction.amount == Decimal("5000.00")
    assert transaction.target_id == order.id
    assert transaction.reference.startswith("TX-")
    assert len(transaction.reference) == 14

    await storefront.notifier.drain()
    assert emails.subjects_for("ada@example.com") == ["Order received"]
    assert emails.subjects_for(owner.email) == ["New order"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_with_transfer_preference_returns_virtual_account(
    storefront, seed
):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id)
    await seed(product)

    order = await storefront.create_order(
        _order_request(
            store, product, payment_preference=PaymentChannel.GATEWAY_TRANSFER
        )
    )

    assert order.payment_details["channel"] == "gateway-transfer"
    assert order.payment_details["virtual_account"]["account_number"] == "9900112233"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_falls_back_to_bank_transfer_instructions(storefront, seed):
    _, store = await _make_store(seed, paystack=False, bank=True)
    product = ProductFactory.create(store_id=store.id)
    await seed(product)

    order = await storefront.create_order(_order_request(store, product))

    details = order.payment_details
    assert details["channel"] == PaymentChannel.WALLET_BALANCE.value
    assert details["bank_details"]["account_number"] == "0123456789"
    assert details["bank_details"]["narration"] == details["reference"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_without_payment_option_persists_nothing(storefront, seed):
    _, store = await _make_store(seed, paystack=False, bank=False)
    product = ProductFactory.create(store_id=store.id)
    await seed(product)

    with pytest.raises(NoPaymentOptionError):
        await storefront.create_order(_order_request(store, product))

    assert await _count(storefront, Order, Order.store_id == store.id) == 0
    assert await _count(storefront, Transaction) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gateway_timeout_rolls_back_order_and_coupon(storefront, seed, gateway):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id)
    coupon = CouponFactory.create(store_id=store.id, max_usage=5)
    await seed(product, coupon)
    gateway.timeout()

    with pytest.raises(IntegrationError) as exc_info:
        await storefront.create_order(
            _order_request(store, product, coupon_code=coupon.code)
        )

    assert exc_info.value.retryable is True
    assert exc_info.value.code == "GATEWAY_TIMEOUT"
    assert await _count(storefront, Order) == 0
    assert await _count(storefront, Transaction) == 0
    async with storefront.uow.read() as session:
        stored = await session.get(Coupon, coupon.id)
    assert stored.usage_count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_redeems_coupon_once(storefront, seed, fetch):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id, price_default=Decimal("1000"))
    coupon = CouponFactory.create(
        store_id=store.id, discount_value=Decimal("20"), max_usage=1
    )
    await seed(product, coupon)

    order = await storefront.create_order(
        _order_request(store, product, coupon_code=coupon.code)
    )

    assert order.total_amount == Decimal("1600.00")
    assert order.discount == Decimal("400.00")
    assert (await fetch(Coupon, coupon.id)).usage_count == 1

    with pytest.raises(InvalidCouponError):
        await storefront.create_order(
            _order_request(store, product, coupon_code=coupon.code)
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fully_discounted_order_is_paid_without_transaction(storefront, seed):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id)
    coupon = CouponFactory.create(store_id=store.id, discount_value=Decimal("100"))
    await seed(product, coupon)

    order = await storefront.create_order(
        _order_request(store, product, coupon_code=coupon.code)
    )

    assert order.total_amount == Decimal("0.00")
    assert order.payment_details == {"payment_status": "paid", "payment_method": "free"}
    assert await _count(storefront, Transaction) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_cart_is_rejected(storefront, seed):
    _, store = await _make_store(seed)

    with pytest.raises(ValidationError):
        await storefront.create_order(
            OrderCreate(store_id=store.id, products=[], customer_details=_customer())
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_physical_order_requires_shipping_address(storefront, seed):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id)
    await seed(product)

    with pytest.raises(ValidationError) as exc_info:
        await storefront.create_order(
            _order_request(
                store, product, customer_details=_customer(with_address=False)
            )
        )

    assert exc_info.value.details["missing"] == ["shipping_address"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_digital_order_skips_address_checks(storefront, seed):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id, is_digital=True, stock=0)
    await seed(product)

    order = await storefront.create_order(
        _order_request(store, product, customer_details=_customer(with_address=False))
    )

    assert order.customer_details["shipping_address"] is None
    assert order.shipping_details == {}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_exceeding_stock_is_rejected(storefront, seed):
    _, store = await _make_store(seed)
    product = ProductFactory.create(store_id=store.id, stock=1)
    await seed(product)

    with pytest.raises(ValidationError):
        await storefront.create_order(_order_request(store, product))


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inactive_or_missing_store_is_rejected(storefront, seed):
    _, store = await _make_store(seed, is_active=False)
    product = ProductFactory.create(store_id=store.id)
    await seed(product)

    with pytest.raises(ValidationError):
        await storefront.create_order(_order_request(store, product))

    with pytest.raises(NotFoundError):
        await storefront.create_order(
            _order_request(store, product, store_id=uuid.uuid4())
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_sendbox_delivery_adds_quoted_fee(storefront, seed, delivery):
    _, store = await _make_store(seed, sendbox=True)
    product = ProductFactory.create(store_id=store.id, price_default=Decimal("1000"))
    await seed(product)

    order = await storefront.create_order(
        _order_request(store, product, delivery_method="sendbox")
    )

    assert order.total_amount == Decimal("3500.00")
    assert order.shipping_details["cost"] == "1500.00"
    assert order.shipping_details["carrier"] == "SENDBOX"
    assert delivery.quotes[0]["weight"] == Decimal("1.5")
    assert delivery.quotes[0]["origin"].state == "Lagos"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_sendbox_delivery_needs_connected_integration(storefront, seed):
    _, store = await _make_store(seed, sendbox=False)
    product = ProductFactory.create(store_id=store.id)
    await seed(product)

    with pytest.raises(ValidationError):
        await storefront.create_order(
            _order_request(store, product, delivery_method="sendbox")
        )


# ---------------------------------------------------------------------------
# transition
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_forward_transitions_to_completed_settle_amounts(
    storefront, seed, emails
):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id, total_amount="5000")
    await seed(order)

    for target in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.COMPLETED):
        order = await storefront.transition_order(order.id, target, _owner(store))

    assert order.order_status == OrderStatus.COMPLETED
    assert order.amount_paid == Decimal("5000.00")
    assert order.amount_left_to_pay == Decimal("0")
    assert order.payment_details["payment_status"] == "paid"

    await storefront.notifier.drain()
    assert emails.subjects_for(order.customer_email) == ["Order update"] * 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completing_twice_reports_already_paid(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id, order_status=OrderStatus.COMPLETED)
    await seed(order)

    with pytest.raises(ConflictError) as exc_info:
        await storefront.transition_order(order.id, OrderStatus.COMPLETED, _owner(store))

    assert exc_info.value.code == "ORDER_ALREADY_PAID"


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "source,target",
    [
        (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
        (OrderStatus.REFUNDED, OrderStatus.PENDING),
        (OrderStatus.COMPLETED, OrderStatus.REFUNDED),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
        (OrderStatus.PROCESSING, OrderStatus.PENDING),
    ],
)
async def test_disallowed_transitions_fail(storefront, seed, fetch, source, target):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id, order_status=source)
    await seed(order)

    with pytest.raises(ConflictError) as exc_info:
        await storefront.transition_order(order.id, target, _owner(store))

    assert exc_info.value.code == "ORDER_UPDATE_FAILED"
    assert (await fetch(Order, order.id)).order_status == source


@pytest.mark.asyncio
@pytest.mark.unit
async def test_owner_of_another_store_cannot_transition(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id)
    await seed(order)
    stranger = Actor(role=ActorRole.OWNER, store_id=uuid.uuid4())

    with pytest.raises(UnauthorizedError):
        await storefront.transition_order(order.id, OrderStatus.PROCESSING, stranger)


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_can_edit_note_and_address(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id)
    await seed(order)
    customer = Actor(role=ActorRole.CUSTOMER, email=order.customer_email)

    updated = await storefront.update_order(
        order.id,
        OrderUpdate(
            note="Leave at the gate",
            shipping_address=ShippingAddress(
                address="3 Marina", city="Lagos Island", state="Lagos", country="Nigeria"
            ),
        ),
        customer,
    )

    assert updated.note == "Leave at the gate"
    assert updated.customer_details["shipping_address"]["address"] == "3 Marina"
    assert updated.customer_details["name"] == "Ada Customer"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_cannot_edit_totals(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id)
    await seed(order)
    customer = Actor(role=ActorRole.CUSTOMER, email=order.customer_email)

    with pytest.raises(UnauthorizedError):
        await storefront.update_order(
            order.id, OrderUpdate(total_amount=Decimal("1")), customer
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_cannot_edit_someone_elses_order(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id)
    await seed(order)
    other = Actor(role=ActorRole.CUSTOMER, email="someone@example.com")

    with pytest.raises(UnauthorizedError):
        await storefront.update_order(order.id, OrderUpdate(note="hi"), other)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_cannot_be_changed_after_creation(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id)
    await seed(order)

    with pytest.raises(ValidationError):
        await storefront.update_order(
            order.id, OrderUpdate(coupon_code="LATE10"), _owner(store)
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_owner_total_edit_keeps_amount_invariant(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(
        store_id=store.id,
        total_amount="5000",
        amount_paid=Decimal("2000"),
        amount_left_to_pay=Decimal("3000"),
    )
    await seed(order)

    updated = await storefront.update_order(
        order.id, OrderUpdate(total_amount=Decimal("4500")), _owner(store)
    )
    assert updated.amount_left_to_pay == Decimal("2500.00")
    assert updated.amount_paid + updated.amount_left_to_pay == updated.total_amount

    with pytest.raises(ValidationError):
        await storefront.update_order(
            order.id, OrderUpdate(total_amount=Decimal("1000")), _owner(store)
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_cannot_edit_terminal_order(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id, order_status=OrderStatus.CANCELLED)
    await seed(order)
    customer = Actor(role=ActorRole.CUSTOMER, email=order.customer_email)

    with pytest.raises(ConflictError):
        await storefront.update_order(order.id, OrderUpdate(note="too late"), customer)


# ---------------------------------------------------------------------------
# Advisory requests and shipping
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancellation_request_notifies_owner_without_status_change(
    storefront, seed, fetch, emails
):
    owner, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id)
    await seed(order)

    await storefront.request_cancellation(order.id, "Ordered the wrong size")
    await storefront.request_confirmation(order.id)
    await storefront.notifier.drain()

    assert (await fetch(Order, order.id)).order_status == OrderStatus.PENDING
    assert emails.subjects_for(owner.email) == [
        "Cancellation request",
        "Confirmation request",
    ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancellation_request_on_closed_order_fails(storefront, seed):
    _, store = await _make_store(seed)
    order = OrderFactory.create(store_id=store.id, order_status=OrderStatus.COMPLETED)
    await seed(order)

    with pytest.raises(ConflictError):
        await storefront.request_cancellation(order.id, "Changed my mind")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_shipment_stores_tracking_number(storefront, seed, delivery):
    _, store = await _make_store(seed, sendbox=True)
    order = OrderFactory.create(
        store_id=store.id,
        shipping_details={"method": "sendbox", "cost": "1500.00"},
    )
    await seed(order)

    updated = await storefront.create_shipment(order.id, "2026-11-02", _owner(store))

    assert updated.shipping_details["tracking_number"] == "SB-TRACK-001"
    assert updated.shipping_details["cost"] == "1500.00"
    assert delivery.shipments[0]["pickup_date"] == "2026-11-02"
