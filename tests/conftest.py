import os
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from libs.common.config import Settings
from libs.db.base import Base
from libs.db.config import create_engine, create_session_factory
from services.storefront_service import models as _storefront_models  # noqa: F401
from services.storefront_service.paystack_client import (
    CheckoutLink,
    PaystackError,
    Verification,
    VirtualAccount,
)
from services.storefront_service.sendbox_client import Shipment, ShippingQuote
from services.storefront_service.services.engine import StorefrontEngine

TEST_JWT_SECRET = "test-jwt-secret"
TEST_PAYSTACK_SECRET = "sk_test_storefront"


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeGateway:
    """In-memory stand-in for the Paystack client."""

    def __init__(self):
        self.checkouts = []
        self.virtual_accounts = []
        self.verifications: dict[str, Verification] = {}
        self.fail_with: Optional[Exception] = None

    async def create_checkout_link(
        self, amount, currency, reference, customer, metadata=None
    ):
        if self.fail_with is not None:
            raise self.fail_with
        self.checkouts.append(
            {"amount": amount, "reference": reference, "email": customer.email}
        )
        return CheckoutLink(
            link=f"https://checkout.paystack.com/{reference}",
            access_code="access-code",
            reference=reference,
        )

    async def create_virtual_account(self, amount, reference, customer):
        if self.fail_with is not None:
            raise self.fail_with
        self.virtual_accounts.append({"amount": amount, "reference": reference})
        return VirtualAccount(
            account_number="9900112233",
            bank_name="Wema Bank",
            account_name="PAYSTACK CHECKOUT",
            expires_at=None,
        )

    async def verify_by_reference(self, reference):
        if self.fail_with is not None:
            raise self.fail_with
        return self.verifications.get(
            reference,
            Verification(
                reference=reference,
                status="ongoing",
                settled_amount=Decimal("0"),
                paid_at=None,
            ),
        )

    def timeout(self):
        self.fail_with = PaystackError("Paystack request timed out", retryable=True)


class FakeDelivery:
    def __init__(self, fee=Decimal("1500")):
        self.fee = fee
        self.quotes = []
        self.shipments = []

    async def quote(self, origin, destination, weight, dimensions, declared_value, items):
        self.quotes.append(
            {"origin": origin, "destination": destination, "weight": weight}
        )
        return ShippingQuote(fee=self.fee, eta_window="2-3 days")

    async def create_shipment(
        self,
        origin,
        destination,
        weight,
        dimensions,
        declared_value,
        items,
        pickup_date,
        package_type="general",
    ):
        self.shipments.append({"pickup_date": pickup_date, "items": items})
        return Shipment(tracking_number="SB-TRACK-001")


class FakeEmail:
    def __init__(self):
        self.sent = []

    async def send(self, recipient, content, subject=None):
        self.sent.append({"to": recipient, "subject": subject, "content": content})
        return True

    def subjects_for(self, recipient):
        return [m["subject"] for m in self.sent if m["to"] == recipient]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    database_url = os.environ.get(
        "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}"
    )
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL=database_url,
        JWT_SECRET=TEST_JWT_SECRET,
        PAYSTACK_SECRET_KEY=TEST_PAYSTACK_SECRET,
        SENDBOX_ACCESS_TOKEN=None,
    )


@pytest_asyncio.fixture
async def db_engine(settings):
    """Engine with a freshly created schema, dropped after the test."""
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def emails() -> FakeEmail:
    return FakeEmail()


@pytest_asyncio.fixture
async def storefront(settings, db_engine, gateway, delivery, emails):
    engine = StorefrontEngine(
        settings,
        create_session_factory(db_engine),
        gateway=gateway,
        delivery=delivery,
        notification_service=emails,
    )
    yield engine
    await engine.notifier.drain()


@pytest.fixture
def seed(storefront):
    """Insert rows in one committed unit of work."""

    async def _seed(*rows):
        async with storefront.uow.begin() as session:
            session.add_all(rows)
        return rows[0] if len(rows) == 1 else rows

    return _seed


@pytest.fixture
def fetch(storefront):
    """Load a row in a fresh read-only session."""

    async def _fetch(model, pk):
        async with storefront.uow.read() as session:
            return await session.get(model, pk)

    return _fetch


@pytest_asyncio.fixture
async def client(settings, storefront):
    from services.storefront_service.app.main import create_app

    app = create_app(settings=settings, engine=storefront)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


def _bearer(sub="user-1", email=None, role="authenticated", store_id=None) -> dict:
    claims = {"sub": sub, "role": role}
    if email:
        claims["email"] = email
    if store_id:
        claims["store_id"] = str(store_id)
    token = jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def bearer():
    """Build an Authorization header carrying a signed test token."""
    return _bearer
