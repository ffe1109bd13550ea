"""Unit tests for cart pricing.

Most tests run PricingEngine over an in-memory catalog; the last few go
through the storefront engine against the database.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from libs.common.errors import InvalidCouponError, ProductNotFoundError
from services.storefront_service.models import CouponScope, CouponType
from pydantic import ValidationError
from services.storefront_service.schemas import CartLine, CouponCreate
from services.storefront_service.services.pricing import PricingEngine
from tests.factories import (
    AccountFactory,
    CouponFactory,
    ProductFactory,
    StoreFactory,
)

STORE_ID = uuid.uuid4()


class InMemoryCatalog:
    def __init__(self, products=(), coupons=()):
        self.products = {p.id: p for p in products}
        self.coupons = {c.code: c for c in coupons}

    async def get_product(self, product_id):
        return self.products.get(product_id)

    async def get_coupon(self, code):
        return self.coupons.get(code)


def _engine(products=(), coupons=(), clock=None):
    catalog = InMemoryCatalog(products, coupons)
    if clock is None:
        return PricingEngine(catalog)
    return PricingEngine(catalog, clock=clock)


# ---------------------------------------------------------------------------
# Line pricing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_product_discount_applies_to_default_price():
    """A 10% product discount on a 1000 default price resolves to 900."""
    product = ProductFactory.create(
        store_id=STORE_ID, price_default=Decimal("1000"), discount=Decimal("10")
    )

    cart = await _engine([product]).compute_total([CartLine(product_id=product.id)])

    assert cart.total == Decimal("900.00")
    assert cart.discount == Decimal("100.00")
    assert cart.discount_pct == Decimal("10.00")
    assert cart.lines[0].base_price == Decimal("1000.00")
    assert cart.lines[0].unit_price == Decimal("900.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cart_coupon_stacks_on_discounted_price():
    """A cart-wide 20% coupon works off the already discounted 900."""
    product = ProductFactory.create(
        store_id=STORE_ID, price_default=Decimal("1000"), discount=Decimal("10")
    )
    coupon = CouponFactory.create(
        store_id=STORE_ID,
        code="CART20",
        coupon_type=CouponType.PERCENTAGE,
        discount_value=Decimal("20"),
    )

    cart = await _engine([product], [coupon]).compute_total(
        [CartLine(product_id=product.id)], coupon_code="CART20"
    )

    assert cart.total == Decimal("720.00")
    assert cart.discount == Decimal("280.00")
    assert cart.discount_pct == Decimal("28.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_size_price_used_when_uniform_pricing_disabled():
    product = ProductFactory.create(
        store_id=STORE_ID,
        price_default=Decimal("600"),
        price_sizes={"S": "500", "M": "700"},
        use_default_pricing=False,
    )

    cart = await _engine([product]).compute_total(
        [CartLine(product_id=product.id, size="M", quantity=2)]
    )

    assert cart.lines[0].base_price == Decimal("700.00")
    assert cart.total == Decimal("1400.00")
    assert cart.discount == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_size_falls_back_to_default_price():
    product = ProductFactory.create(
        store_id=STORE_ID,
        price_default=Decimal("600"),
        price_sizes={"S": "500"},
        use_default_pricing=False,
    )

    cart = await _engine([product]).compute_total(
        [CartLine(product_id=product.id, size="XL")]
    )

    assert cart.total == Decimal("600.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_product_coupon_only_touches_selected_products():
    selected = ProductFactory.create(store_id=STORE_ID, price_default=Decimal("1000"))
    other = ProductFactory.create(store_id=STORE_ID, price_default=Decimal("500"))
    coupon = CouponFactory.create(
        store_id=STORE_ID,
        code="ITEM200",
        applied_to=CouponScope.PRODUCTS,
        selected_products=[str(selected.id)],
        coupon_type=CouponType.FIXED,
        discount_value=Decimal("200"),
    )

    cart = await _engine([selected, other], [coupon]).compute_total(
        [CartLine(product_id=selected.id), CartLine(product_id=other.id)],
        coupon_code="ITEM200",
    )

    assert cart.lines[0].unit_price == Decimal("800.00")
    assert cart.lines[1].unit_price == Decimal("500.00")
    assert cart.total == Decimal("1300.00")


# ---------------------------------------------------------------------------
# Floors and edge cases
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_full_percentage_coupon_gives_zero_total():
    product = ProductFactory.create(store_id=STORE_ID, price_default=Decimal("2500"))
    coupon = CouponFactory.create(
        store_id=STORE_ID, code="FREE100", discount_value=Decimal("100")
    )

    cart = await _engine([product], [coupon]).compute_total(
        [CartLine(product_id=product.id)], coupon_code="FREE100"
    )

    assert cart.total == Decimal("0.00")
    assert cart.discount == Decimal("2500.00")
    assert cart.discount_pct == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fixed_coupon_larger_than_cart_floors_at_zero():
    product = ProductFactory.create(store_id=STORE_ID, price_default=Decimal("300"))
    coupon = CouponFactory.create(
        store_id=STORE_ID,
        code="BIGFIXED",
        coupon_type=CouponType.FIXED,
        discount_value=Decimal("1000"),
    )

    cart = await _engine([product], [coupon]).compute_total(
        [CartLine(product_id=product.id)], coupon_code="BIGFIXED"
    )

    assert cart.total == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_cart_prices_to_zero():
    cart = await _engine().compute_total([])

    assert cart.total == Decimal("0.00")
    assert cart.discount_pct == Decimal("0.00")
    assert cart.lines == []


# ---------------------------------------------------------------------------
# Coupon and product validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_coupon_is_rejected():
    product = ProductFactory.create(store_id=STORE_ID)
    coupon = CouponFactory.create(
        store_id=STORE_ID,
        code="OLD10",
        expiration_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    with pytest.raises(InvalidCouponError):
        await _engine([product], [coupon]).compute_total(
            [CartLine(product_id=product.id)], coupon_code="OLD10"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_expiry_uses_injected_clock():
    product = ProductFactory.create(store_id=STORE_ID)
    expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)
    coupon = CouponFactory.create(
        store_id=STORE_ID, code="TIMED", expiration_date=expiry
    )
    engine = _engine([product], [coupon], clock=lambda: expiry + timedelta(seconds=1))

    with pytest.raises(InvalidCouponError):
        await engine.compute_total([CartLine(product_id=product.id)], "TIMED")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_used_up_coupon_is_rejected():
    product = ProductFactory.create(store_id=STORE_ID)
    coupon = CouponFactory.create(
        store_id=STORE_ID, code="ONCE", max_usage=1, usage_count=1
    )

    with pytest.raises(InvalidCouponError):
        await _engine([product], [coupon]).compute_total(
            [CartLine(product_id=product.id)], coupon_code="ONCE"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_coupon_is_rejected():
    product = ProductFactory.create(store_id=STORE_ID)

    with pytest.raises(InvalidCouponError):
        await _engine([product]).compute_total(
            [CartLine(product_id=product.id)], coupon_code="NOPE"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_product_is_rejected():
    with pytest.raises(ProductNotFoundError):
        await _engine().compute_total([CartLine(product_id=uuid.uuid4())])


@pytest.mark.asyncio
@pytest.mark.unit
async def test_product_from_another_store_is_rejected():
    product = ProductFactory.create(store_id=uuid.uuid4())

    with pytest.raises(ProductNotFoundError):
        await _engine([product]).compute_total(
            [CartLine(product_id=product.id)], store_id=STORE_ID
        )


# ---------------------------------------------------------------------------
# Through the database
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_compute_cart_total_reads_catalog_from_database(storefront, seed):
    owner = AccountFactory.create()
    store = StoreFactory.create(owner_id=owner.id)
    product = ProductFactory.create(
        store_id=store.id, price_default=Decimal("1000"), discount=Decimal("10")
    )
    coupon = CouponFactory.create(store_id=store.id, discount_value=Decimal("20"))
    await seed(owner, store, product, coupon)

    cart = await storefront.compute_cart_total(
        [CartLine(product_id=product.id)], coupon.code, store_id=store.id
    )

    assert cart.total == Decimal("720.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_compute_cart_total_does_not_redeem_coupon(storefront, seed, fetch):
    from services.storefront_service.models import Coupon

    owner = AccountFactory.create()
    store = StoreFactory.create(owner_id=owner.id)
    product = ProductFactory.create(store_id=store.id)
    coupon = CouponFactory.create(store_id=store.id, max_usage=1)
    await seed(owner, store, product, coupon)

    await storefront.compute_cart_total([CartLine(product_id=product.id)], coupon.code)
    await storefront.compute_cart_total([CartLine(product_id=product.id)], coupon.code)

    stored = await fetch(Coupon, coupon.id)
    assert stored.usage_count == 0


# ---------------------------------------------------------------------------
# Coupon rules
# ---------------------------------------------------------------------------


def _coupon_payload(**overrides):
    payload = {
        "store_id": STORE_ID,
        "code": "SAVE10",
        "coupon_type": CouponType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "expiration_date": datetime.now(timezone.utc) + timedelta(days=7),
    }
    payload.update(overrides)
    return payload


@pytest.mark.unit
def test_valid_coupon_definition():
    coupon = CouponCreate(**_coupon_payload(discount_value=Decimal("100")))

    assert coupon.applied_to == CouponScope.CART
    assert coupon.discount_value == Decimal("100")


@pytest.mark.unit
def test_percentage_coupon_above_100_is_rejected():
    with pytest.raises(ValidationError, match="cannot exceed 100"):
        CouponCreate(**_coupon_payload(discount_value=Decimal("100.01")))


@pytest.mark.unit
def test_fixed_coupon_may_exceed_100():
    coupon = CouponCreate(
        **_coupon_payload(coupon_type=CouponType.FIXED, discount_value=Decimal("500"))
    )

    assert coupon.discount_value == Decimal("500")


@pytest.mark.unit
@pytest.mark.parametrize(
    "expiration_date",
    [
        datetime.now(timezone.utc) - timedelta(minutes=1),
        datetime.now(timezone.utc) - timedelta(days=30),
    ],
)
def test_coupon_must_expire_in_the_future(expiration_date):
    with pytest.raises(ValidationError, match="must be in the future"):
        CouponCreate(**_coupon_payload(expiration_date=expiration_date))


@pytest.mark.unit
def test_product_coupon_must_select_products():
    with pytest.raises(ValidationError, match="at least one product"):
        CouponCreate(**_coupon_payload(applied_to=CouponScope.PRODUCTS))

    coupon = CouponCreate(
        **_coupon_payload(
            applied_to=CouponScope.PRODUCTS, selected_products=[uuid.uuid4()]
        )
    )
    assert len(coupon.selected_products) == 1


@pytest.mark.unit
def test_non_positive_coupon_value_is_rejected():
    with pytest.raises(ValidationError):
        CouponCreate(**_coupon_payload(discount_value=Decimal("0")))
