"""
Paystack API client for checkout links, pay-with-transfer and verification.

Provides async methods for:
- Initializing a hosted checkout (card) transaction
- Requesting a short-lived virtual account (bank transfer charge)
- Verifying a transaction by reference
- Verifying webhook signatures

Amounts cross this boundary in Naira (``Decimal``); the client converts to
kobo for Paystack and back.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import Settings
from libs.common.currency import kobo_to_naira, naira_to_kobo
from libs.common.datetime_utils import parse_iso, utc_now
from libs.common.errors import IntegrationError
from libs.common.logging import get_logger

logger = get_logger(__name__)

SUCCESS_STATUSES = frozenset({"success", "successful"})


@dataclass
class Customer:
    """Payer identity sent to the gateway."""

    email: str
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class CheckoutLink:
    """Hosted checkout created by /transaction/initialize."""

    link: str
    access_code: Optional[str]
    reference: str


@dataclass
class VirtualAccount:
    """Temporary account the payer transfers into."""

    account_number: str
    bank_name: str
    account_name: Optional[str]
    expires_at: Optional[datetime]


@dataclass
class Verification:
    """Result of verifying a transaction by reference."""

    reference: str
    status: str  # success, failed, abandoned, ongoing, ...
    settled_amount: Decimal
    paid_at: Optional[datetime]

    @property
    def is_successful(self) -> bool:
        return self.status in SUCCESS_STATUSES


class PaystackError(IntegrationError):
    """Paystack API error.

    ``retryable`` is set for timeouts and transport failures; an answered
    request that Paystack rejected is not retryable.
    """

    def __init__(
        self,
        message: str,
        status_code: int = None,
        response_data: dict = None,
        retryable: bool = False,
    ):
        super().__init__(
            message,
            code="GATEWAY_TIMEOUT" if retryable else "GATEWAY_REJECTED",
            retryable=retryable,
            status_code=status_code,
            response_data=response_data,
        )


def verify_signature(secret_key: str, raw_body: bytes, signature: str) -> bool:
    """Check the ``x-paystack-signature`` HMAC-SHA512 header."""
    secret = (secret_key or "").encode("utf-8")
    digest = hmac.new(secret, raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(digest, signature)


class PaystackClient:
    """Async client for the Paystack Transaction and Charge APIs."""

    def __init__(self, settings: Settings, secret_key: str = None):
        self.secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        if not self.secret_key:
            raise ValueError("PAYSTACK_SECRET_KEY is required")
        self.base_url = settings.PAYSTACK_API_BASE_URL.rstrip("/")
        self.timeout = settings.PAYSTACK_TIMEOUT_SECONDS
        self.currency = settings.CURRENCY
        self.callback_url = settings.PAYSTACK_CALLBACK_URL
        self.virtual_account_ttl = timedelta(
            minutes=settings.VIRTUAL_ACCOUNT_TTL_MINUTES
        )
        self._headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to Paystack API."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    json=json_data,
                )
        except httpx.TimeoutException as e:
            logger.warning("Paystack %s %s timed out: %s", method, endpoint, e)
            raise PaystackError("Paystack request timed out", retryable=True) from e
        except httpx.TransportError as e:
            logger.warning("Paystack %s %s unreachable: %s", method, endpoint, e)
            raise PaystackError("Paystack is unreachable", retryable=True) from e

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if not response.is_success:
            logger.error("Paystack API error: %s - %s", response.status_code, data)
            raise PaystackError(
                message=data.get("message", "Unknown Paystack error"),
                status_code=response.status_code,
                response_data=data,
                retryable=response.status_code >= 500,
            )

        if not data.get("status"):
            raise PaystackError(
                message=data.get("message", "Paystack request failed"),
                response_data=data,
            )

        return data

    # =========================================================================
    # Checkout Methods
    # =========================================================================

    async def create_checkout_link(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        customer: Customer,
        metadata: dict = None,
    ) -> CheckoutLink:
        """
        Initialize a hosted checkout for card payment.

        Args:
            amount: Amount in Naira
            currency: ISO currency code
            reference: Our unique transaction reference
            customer: Payer identity

        Returns:
            CheckoutLink with the authorization URL
        """
        payload = {
            "email": customer.email,
            "amount": naira_to_kobo(amount),
            "currency": currency or self.currency,
            "reference": reference,
            "channels": ["card"],
            "metadata": {**(metadata or {}), "customer_name": customer.name},
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        data = await self._request("POST", "/transaction/initialize", json_data=payload)

        result = data.get("data", {})
        return CheckoutLink(
            link=result.get("authorization_url", ""),
            access_code=result.get("access_code"),
            reference=result.get("reference", reference),
        )

    async def create_virtual_account(
        self,
        amount: Decimal,
        reference: str,
        customer: Customer,
    ) -> VirtualAccount:
        """
        Request a temporary account for a pay-with-transfer charge.

        The account accepts exactly ``amount`` and expires after the
        configured TTL. Settlement arrives as a ``charge.success`` webhook.
        """
        expires_at = utc_now() + self.virtual_account_ttl
        data = await self._request(
            "POST",
            "/charge",
            json_data={
                "email": customer.email,
                "amount": naira_to_kobo(amount),
                "reference": reference,
                "bank_transfer": {
                    "account_expires_at": expires_at.isoformat(),
                },
            },
        )

        result = data.get("data", {})
        bank = result.get("bank") or {}
        return VirtualAccount(
            account_number=result.get("account_number", ""),
            bank_name=bank.get("name") or result.get("bank_name", ""),
            account_name=result.get("account_name"),
            expires_at=parse_iso(result.get("account_expires_at")) or expires_at,
        )

    # =========================================================================
    # Verification Methods
    # =========================================================================

    async def verify_by_reference(self, reference: str) -> Verification:
        """
        Verify a transaction's status.

        Returns:
            Verification with status, settled amount (Naira) and paid_at
        """
        data = await self._request("GET", f"/transaction/verify/{reference}")

        result = data.get("data", {})
        return Verification(
            reference=result.get("reference", reference),
            status=str(result.get("status", "")).lower(),
            settled_amount=kobo_to_naira(int(result.get("amount") or 0)),
            paid_at=parse_iso(result.get("paid_at")),
        )
