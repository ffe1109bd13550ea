"""
Order lifecycle: validation, pricing, persistence and status transitions.

``create`` runs pricing, the optional shipping quote, payment initiation and
both inserts (order and pending transaction) in one unit of work.
Notifications go out only after it commits.
"""

import uuid
from decimal import Decimal
from typing import Optional, Protocol

from libs.common.config import Settings
from libs.common.currency import ZERO, round_money, to_decimal
from libs.common.errors import (
    ConflictError,
    InvalidCouponError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from libs.common.logging import get_logger
from libs.db.session import TransactionalUnitOfWork
from services.storefront_service.models import (
    ActorRole,
    Coupon,
    IntegrationName,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    PaymentFor,
    Product,
    Store,
    StoreIntegration,
)
from services.storefront_service.schemas import (
    CartTotal,
    OrderCreate,
    OrderUpdate,
    PricedLine,
)
from services.storefront_service.sendbox_client import (
    Address,
    Shipment,
    ShippingQuote,
)
from services.storefront_service.services.notifications import (
    NotificationDispatcher,
)
from services.storefront_service.services.order_state import (
    EDITABLE_STATUSES,
    Actor,
    apply_transition,
)
from services.storefront_service.services.payments import PaymentOrchestrator
from services.storefront_service.services.pricing import PricingEngine, SqlCatalog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CUSTOMER_EDITABLE_FIELDS = frozenset({"note", "shipping_address"})
DEFAULT_WEIGHT = Decimal("2")
DEFAULT_DIMENSION = Decimal("1")


class DeliveryQuoteClient(Protocol):
    async def quote(
        self,
        origin: Address,
        destination: Address,
        weight: Decimal,
        dimensions: dict,
        declared_value: Decimal,
        items: list[dict],
    ) -> ShippingQuote: ...

    async def create_shipment(
        self,
        origin: Address,
        destination: Address,
        weight: Decimal,
        dimensions: dict,
        declared_value: Decimal,
        items: list[dict],
        pickup_date: str,
        package_type: str = "general",
    ) -> Shipment: ...


def package_measurements(lines: list[dict]) -> tuple[Decimal, dict]:
    """Summed weight and dimensions of physical lines, with fallbacks."""
    physical = [line for line in lines if not line.get("is_digital")]
    weight = sum((to_decimal(line.get("weight") or 0) for line in physical), ZERO)
    dimensions = {}
    for axis in ("length", "width", "height"):
        total = sum(
            (to_decimal((line.get("dimensions") or {}).get(axis) or 0) for line in physical),
            ZERO,
        )
        dimensions[axis] = total or DEFAULT_DIMENSION
    return weight or DEFAULT_WEIGHT, dimensions


def shipment_items(lines: list[dict]) -> list[dict]:
    return [
        {
            "name": line["name"],
            "quantity": line["quantity"],
            "value": float(to_decimal(line["unit_price"])),
        }
        for line in lines
        if not line.get("is_digital")
    ]


class OrderLifecycle:
    def __init__(
        self,
        settings: Settings,
        uow: TransactionalUnitOfWork,
        payments: PaymentOrchestrator,
        notifier: NotificationDispatcher,
        delivery: Optional[DeliveryQuoteClient] = None,
    ):
        self.settings = settings
        self.uow = uow
        self.payments = payments
        self.notifier = notifier
        self.delivery = delivery

    # =========================================================================
    # Creation
    # =========================================================================

    @staticmethod
    def _validate_contact(request: OrderCreate, cart: CartTotal) -> None:
        if all(line.is_digital for line in cart.lines):
            return
        customer = request.customer_details
        missing = []
        if not customer.email:
            missing.append("email")
        if not customer.phone:
            missing.append("phone")
        address = customer.shipping_address
        if address is None or not address.is_complete():
            missing.append("shipping_address")
        if missing:
            raise ValidationError(
                "Physical orders need a complete shipping address and contact",
                details={"missing": missing},
            )

    @staticmethod
    async def _check_stock(session: AsyncSession, lines: list[PricedLine]) -> None:
        requested: dict[uuid.UUID, int] = {}
        for line in lines:
            if not line.is_digital:
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        for product_id, quantity in requested.items():
            product = await session.get(Product, product_id)
            if product.stock < quantity:
                raise ValidationError(
                    f"Only {product.stock} of '{product.name}' left in stock",
                    details={"product_id": str(product_id)},
                )

    async def _quote_shipping(
        self,
        session: AsyncSession,
        store: Store,
        request: OrderCreate,
        lines: list[dict],
        declared_value: Decimal,
    ) -> ShippingQuote:
        connected = await session.scalar(
            select(StoreIntegration.id).where(
                StoreIntegration.store_id == store.id,
                StoreIntegration.name == IntegrationName.SENDBOX,
                StoreIntegration.is_connected.is_(True),
            )
        )
        if connected is None or self.delivery is None:
            raise ValidationError("Sendbox delivery is not available for this store")
        if not store.origin_state:
            raise ValidationError(
                "Store address is not available yet; contact the store"
            )

        customer = request.customer_details
        weight, dimensions = package_measurements(lines)
        return await self.delivery.quote(
            origin=Address(
                name=store.name,
                email=store.owner.email,
                phone=store.owner.phone_number,
                state=store.origin_state,
                city=store.origin_city,
            ),
            destination=Address(
                name=customer.name,
                email=customer.email,
                phone=customer.phone,
                state=customer.shipping_address.state,
                city=customer.shipping_address.city,
            ),
            weight=weight,
            dimensions=dimensions,
            declared_value=declared_value,
            items=shipment_items(lines),
        )

    @staticmethod
    async def _redeem_coupon(session: AsyncSession, code: str) -> None:
        result = await session.execute(
            update(Coupon)
            .where(
                Coupon.code == code,
                or_(Coupon.max_usage.is_(None), Coupon.usage_count < Coupon.max_usage),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidCouponError(f"Coupon '{code}' has reached its usage limit")

    async def create(self, request: OrderCreate) -> Order:
        """
        Validate, price and persist a new order with its pending transaction.

        Raises:
            ValidationError: empty cart, missing contact/address, stock
            ProductNotFoundError / InvalidCouponError: from pricing
            NoPaymentOptionError: the store cannot take payment
            IntegrationError: gateway or shipping provider failure
        """
        if not request.products:
            raise ValidationError("An order needs at least one product")

        async with self.uow.begin() as session:
            store = await session.get(Store, request.store_id)
            if store is None:
                raise NotFoundError("Store not found")
            if not store.is_active:
                raise ValidationError("This store is not accepting orders")

            pricing = PricingEngine(SqlCatalog(session))
            cart = await pricing.compute_total(
                request.products, request.coupon_code, store_id=store.id
            )
            self._validate_contact(request, cart)
            await self._check_stock(session, cart.lines)

            lines = [line.model_dump(mode="json") for line in cart.lines]
            has_physical = any(not line.is_digital for line in cart.lines)

            shipping_details = {}
            shipping_cost = ZERO
            if has_physical:
                shipping_details = {"method": request.delivery_method, "cost": "0.00"}
                if request.delivery_method == "sendbox":
                    quote = await self._quote_shipping(
                        session, store, request, lines, cart.total
                    )
                    shipping_cost = round_money(quote.fee)
                    shipping_details.update(
                        cost=str(shipping_cost),
                        carrier="SENDBOX",
                        eta_window=quote.eta_window,
                    )

            if request.coupon_code:
                await self._redeem_coupon(session, request.coupon_code)

            customer_details = request.customer_details.model_dump(mode="json")
            if not has_physical:
                customer_details["shipping_address"] = None

            total = round_money(cart.total + shipping_cost)
            order = Order(
                id=uuid.uuid4(),
                store_id=store.id,
                products=lines,
                customer_details=customer_details,
                order_status=OrderStatus.PENDING,
                payment_details={"payment_status": OrderPaymentStatus.PENDING.value},
                total_amount=total,
                amount_paid=ZERO,
                amount_left_to_pay=total,
                discount=cart.discount,
                shipping_details=shipping_details,
                coupon_code=request.coupon_code,
                note=request.note,
            )
            session.add(order)
            await session.flush()

            if total > ZERO:
                await self.payments.initiate(
                    self.payments.target_for_order(order),
                    PaymentFor.ORDER,
                    request.payment_preference,
                    meta={"order_number": order.order_number},
                    session=session,
                )
            else:
                order.payment_details = {
                    "payment_status": OrderPaymentStatus.PAID.value,
                    "payment_method": "free",
                }
            owner_email = store.owner.email

        logger.info(
            "Created order %s for store %s (total=%s)",
            order.order_number,
            store.id,
            order.total_amount,
        )
        self.notifier.order_created(order, owner_email)
        return order

    # =========================================================================
    # Reads and access checks
    # =========================================================================

    @staticmethod
    async def _load(session: AsyncSession, order_id: uuid.UUID) -> Order:
        order = await session.get(Order, order_id, with_for_update=True)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    def _authorize_owner(order: Order, actor: Actor) -> None:
        if actor.role == ActorRole.SYSTEM:
            return
        if actor.role != ActorRole.OWNER or actor.store_id != order.store_id:
            raise UnauthorizedError("You can only manage orders of your own store")

    @staticmethod
    def _authorize_customer(order: Order, actor: Actor) -> None:
        email = (actor.email or "").lower()
        if not email or email != (order.customer_email or "").lower():
            raise UnauthorizedError("You can only edit your own order")

    async def get(self, order_id: uuid.UUID) -> Order:
        async with self.uow.read() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            return order

    async def _owner_email(self, session: AsyncSession, store_id: uuid.UUID):
        store = await session.get(Store, store_id)
        return store.owner.email if store is not None and store.owner else None

    # =========================================================================
    # Transitions and edits
    # =========================================================================

    async def transition(
        self, order_id: uuid.UUID, target: OrderStatus, actor: Actor
    ) -> Order:
        """
        Move an order to ``target``.

        Raises:
            ConflictError: ORDER_ALREADY_PAID when re-entering completed,
                ORDER_UPDATE_FAILED from any other terminal state or for an
                undefined move
            UnauthorizedError: actor does not own the order's store
        """
        async with self.uow.begin() as session:
            order = await self._load(session, order_id)
            self._authorize_owner(order, actor)
            previous = apply_transition(order, target)

        logger.info(
            "Order %s moved %s -> %s",
            order.order_number,
            previous.value,
            order.order_status.value,
        )
        self.notifier.order_status_changed(order)
        return order

    async def update(
        self, order_id: uuid.UUID, changes: OrderUpdate, actor: Actor
    ) -> Order:
        """Apply field edits. Status changes go through ``transition``."""
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No changes supplied")
        if "coupon_code" in fields:
            raise ValidationError("The coupon of an order cannot be changed")

        async with self.uow.begin() as session:
            order = await self._load(session, order_id)

            if actor.role == ActorRole.CUSTOMER:
                self._authorize_customer(order, actor)
                restricted = set(fields) - CUSTOMER_EDITABLE_FIELDS
                if restricted:
                    raise UnauthorizedError(
                        "Customers cannot edit these fields",
                        details={"fields": sorted(restricted)},
                    )
                if order.order_status not in EDITABLE_STATUSES:
                    raise ConflictError(
                        "This order can no longer be edited",
                        code="ORDER_UPDATE_FAILED",
                    )
            else:
                self._authorize_owner(order, actor)
                if order.order_status not in EDITABLE_STATUSES | {OrderStatus.SHIPPED}:
                    raise ConflictError(
                        "This order can no longer be edited",
                        code="ORDER_UPDATE_FAILED",
                    )

            if "note" in fields:
                order.note = fields["note"]
            if "shipping_address" in fields:
                order.customer_details = {
                    **(order.customer_details or {}),
                    "shipping_address": changes.shipping_address.model_dump(mode="json")
                    if changes.shipping_address
                    else None,
                }
            if fields.get("payment_details") is not None:
                order.payment_details = {
                    **(order.payment_details or {}),
                    **fields["payment_details"],
                }
            if fields.get("shipping_details") is not None:
                order.shipping_details = {
                    **(order.shipping_details or {}),
                    **fields["shipping_details"],
                }
            if fields.get("total_amount") is not None:
                new_total = round_money(fields["total_amount"])
                if new_total < order.amount_paid:
                    raise ValidationError("Total cannot be less than the amount paid")
                order.total_amount = new_total
                order.amount_left_to_pay = round_money(new_total - order.amount_paid)

        return order

    # =========================================================================
    # Advisory requests
    # =========================================================================

    async def _advisory(self, order_id: uuid.UUID):
        async with self.uow.read() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            if order.order_status not in EDITABLE_STATUSES:
                raise ConflictError(
                    f"Order is already {order.order_status.value}",
                    code="ORDER_UPDATE_FAILED",
                )
            return order, await self._owner_email(session, order.store_id)

    async def request_cancellation(self, order_id: uuid.UUID, reason: str) -> Order:
        """Ask the store owner to cancel; the order status does not change."""
        order, owner_email = await self._advisory(order_id)
        self.notifier.cancellation_requested(order, owner_email, reason)
        return order

    async def request_confirmation(self, order_id: uuid.UUID) -> Order:
        """Ask the store owner to confirm; the order status does not change."""
        order, owner_email = await self._advisory(order_id)
        self.notifier.confirmation_requested(order, owner_email)
        return order

    # =========================================================================
    # Shipping
    # =========================================================================

    async def create_shipment(
        self, order_id: uuid.UUID, pickup_date: str, actor: Actor
    ) -> Order:
        """Book a Sendbox pickup and store the tracking number on the order."""
        if self.delivery is None:
            raise ValidationError("Sendbox delivery is not configured")

        async with self.uow.begin() as session:
            order = await self._load(session, order_id)
            self._authorize_owner(order, actor)
            if (order.shipping_details or {}).get("method") != "sendbox":
                raise ValidationError("Order does not use Sendbox delivery")
            if order.order_status not in EDITABLE_STATUSES:
                raise ConflictError(
                    "Only open orders can be shipped", code="ORDER_UPDATE_FAILED"
                )

            store = await session.get(Store, order.store_id)
            if not store.origin_state:
                raise ValidationError("Add a store address before creating a shipment")

            customer = order.customer_details or {}
            address = customer.get("shipping_address") or {}
            weight, dimensions = package_measurements(order.products)
            shipment = await self.delivery.create_shipment(
                origin=Address(
                    name=store.owner.full_name,
                    email=store.owner.email,
                    phone=store.owner.phone_number,
                    state=store.origin_state,
                    city=store.origin_city,
                ),
                destination=Address(
                    name=customer.get("name", ""),
                    email=customer.get("email"),
                    phone=customer.get("phone"),
                    state=address.get("state", ""),
                    city=address.get("city"),
                ),
                weight=weight,
                dimensions=dimensions,
                declared_value=order.total_amount,
                items=shipment_items(order.products),
                pickup_date=pickup_date,
            )
            order.shipping_details = {
                **(order.shipping_details or {}),
                "tracking_number": shipment.tracking_number,
                "carrier": shipment.carrier,
                "estimated_delivery_date": pickup_date,
            }

        return order
