"""Cart pricing.

Stacking order per line: size/default base price, then the product's own
discount, then an item-scoped coupon. A cart-scoped coupon makes one more
pass over the discounted subtotal. Every step works off the already
discounted price and is floored at zero.
"""

import uuid
from decimal import Decimal
from typing import Callable, Iterable, Optional, Protocol

from libs.common.currency import ZERO, round_money, to_decimal
from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.errors import InvalidCouponError, ProductNotFoundError
from services.storefront_service.models import Coupon, CouponScope, CouponType, Product
from services.storefront_service.schemas import CartLine, CartTotal, PricedLine
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

HUNDRED = Decimal("100")


class CatalogLookup(Protocol):
    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]: ...

    async def get_coupon(self, code: str) -> Optional[Coupon]: ...


class SqlCatalog:
    """Catalog lookups over an open session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        return await self.session.get(Product, product_id)

    async def get_coupon(self, code: str) -> Optional[Coupon]:
        result = await self.session.execute(select(Coupon).where(Coupon.code == code))
        return result.scalar_one_or_none()


def resolve_base_price(product: Product, size: Optional[str]) -> Decimal:
    if product.use_default_pricing or not size:
        return to_decimal(product.price_default)
    sized = (product.price_sizes or {}).get(size)
    if sized is None:
        return to_decimal(product.price_default)
    return to_decimal(sized)


def apply_coupon(price: Decimal, coupon: Coupon) -> Decimal:
    """Apply a coupon to ``price``; never returns a negative amount."""
    value = to_decimal(coupon.discount_value)
    if coupon.coupon_type == CouponType.PERCENTAGE:
        discounted = price - price * value / HUNDRED
    else:
        discounted = price - value
    return max(discounted, ZERO)


class PricingEngine:
    """Computes authoritative cart totals. Reads the catalog, writes nothing."""

    def __init__(
        self,
        catalog: CatalogLookup,
        clock: Callable = utc_now,
    ):
        self.catalog = catalog
        self.clock = clock

    async def load_coupon(
        self, code: str, store_id: Optional[uuid.UUID] = None
    ) -> Coupon:
        coupon = await self.catalog.get_coupon(code)
        if coupon is None or (store_id and coupon.store_id != store_id):
            raise InvalidCouponError(f"Coupon '{code}' does not exist")
        if self.clock() > ensure_aware(coupon.expiration_date):
            raise InvalidCouponError(f"Coupon '{code}' has expired")
        if coupon.max_usage is not None and coupon.usage_count >= coupon.max_usage:
            raise InvalidCouponError(f"Coupon '{code}' has reached its usage limit")
        return coupon

    async def compute_total(
        self,
        lines: Iterable[CartLine],
        coupon_code: Optional[str] = None,
        store_id: Optional[uuid.UUID] = None,
    ) -> CartTotal:
        """
        Price a cart.

        Args:
            lines: Requested product lines
            coupon_code: Optional coupon to apply
            store_id: When set, every product and the coupon must belong to it

        Raises:
            InvalidCouponError: unknown, expired or used-up coupon
            ProductNotFoundError: a line references an unknown product
        """
        coupon = await self.load_coupon(coupon_code, store_id) if coupon_code else None

        original_subtotal = ZERO
        subtotal = ZERO
        priced: list[PricedLine] = []

        for line in lines:
            product = await self.catalog.get_product(line.product_id)
            if product is None or (store_id and product.store_id != store_id):
                raise ProductNotFoundError(
                    f"Product {line.product_id} not found",
                    details={"product_id": str(line.product_id)},
                )

            base = resolve_base_price(product, line.size)
            product_discount = to_decimal(product.discount or 0)
            price = base - base * product_discount / HUNDRED

            if (
                coupon is not None
                and coupon.applied_to == CouponScope.PRODUCTS
                and coupon.selects(product.id)
            ):
                price = apply_coupon(price, coupon)

            line_total = price * line.quantity
            original_subtotal += base * line.quantity
            subtotal += line_total

            priced.append(
                PricedLine(
                    product_id=product.id,
                    name=product.name,
                    size=line.size,
                    color=line.color,
                    quantity=line.quantity,
                    base_price=round_money(base),
                    unit_price=round_money(price),
                    line_total=round_money(line_total),
                    is_digital=product.is_digital,
                    weight=product.weight,
                    dimensions=product.dimensions,
                )
            )

        if coupon is not None and coupon.applied_to == CouponScope.CART:
            subtotal = apply_coupon(subtotal, coupon)

        total = round_money(subtotal)
        discount = round_money(original_subtotal - total)
        if original_subtotal > ZERO:
            discount_pct = round_money(discount / original_subtotal * HUNDRED)
        else:
            discount_pct = round_money(ZERO)

        return CartTotal(
            total=total,
            discount=discount,
            discount_pct=discount_pct,
            subtotal=round_money(original_subtotal),
            lines=priced,
        )
