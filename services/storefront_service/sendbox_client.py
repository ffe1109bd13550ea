"""
Sendbox API client for shipping quotes and shipment creation.

Sendbox is Nigeria-only here: both origin and destination are sent with
country ``NG`` and the state doubles as the city.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import Settings
from libs.common.currency import to_decimal
from libs.common.errors import IntegrationError
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Address:
    """Pickup or delivery contact as Sendbox expects it."""

    name: str
    email: Optional[str]
    phone: Optional[str]
    state: str
    city: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            "first_name": self.name,
            "last_name": self.name,
            "name": "",
            "email": self.email,
            "phone": self.phone,
            "state": self.state,
            "city": self.city or self.state,
            "country": "NG",
        }


@dataclass
class ShippingQuote:
    fee: Decimal
    eta_window: Optional[str]


@dataclass
class Shipment:
    tracking_number: str
    carrier: str = "SENDBOX"


class SendboxError(IntegrationError):
    """Sendbox API error."""

    def __init__(
        self,
        message: str,
        status_code: int = None,
        response_data: dict = None,
        retryable: bool = False,
    ):
        super().__init__(
            message,
            code="SHIPPING_QUOTE_FAILED",
            retryable=retryable,
            status_code=status_code,
            response_data=response_data,
        )


class SendboxClient:
    """Async client for the Sendbox shipping API."""

    def __init__(self, settings: Settings, access_token: str = None):
        self.access_token = access_token or settings.SENDBOX_ACCESS_TOKEN
        if not self.access_token:
            raise ValueError("SENDBOX_ACCESS_TOKEN is required")
        self.base_url = settings.SENDBOX_API_URL.rstrip("/")
        self.timeout = settings.SENDBOX_TIMEOUT_SECONDS
        self.currency = settings.CURRENCY
        self.service_code = settings.DEFAULT_SHIPPING_METHOD

    async def _post(self, endpoint: str, payload: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}{endpoint}",
                    json=payload,
                    headers={
                        "Authorization": self.access_token,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            logger.warning("Sendbox %s timed out: %s", endpoint, e)
            raise SendboxError("Sendbox request timed out", retryable=True) from e
        except httpx.TransportError as e:
            logger.warning("Sendbox %s unreachable: %s", endpoint, e)
            raise SendboxError("Sendbox is unreachable", retryable=True) from e

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if not response.is_success:
            logger.error("Sendbox API error: %s - %s", response.status_code, data)
            raise SendboxError(
                message=data.get("message", "Sendbox request failed"),
                status_code=response.status_code,
                response_data=data,
                retryable=response.status_code >= 500,
            )
        return data

    def _shipment_payload(
        self,
        origin: Address,
        destination: Address,
        weight: Decimal,
        dimensions: dict,
        declared_value: Decimal,
        items: list[dict],
    ) -> dict:
        return {
            "origin": origin.to_payload(),
            "destination": destination.to_payload(),
            "weight": float(weight),
            "dimension": {
                "length": float(dimensions.get("length", 1)),
                "width": float(dimensions.get("width", 1)),
                "height": float(dimensions.get("height", 1)),
            },
            "region": "NG",
            "service_type": "international",
            "package_type": "general",
            "total_value": float(declared_value),
            "currency": self.currency,
            "channel_code": "api",
            "items": items,
            "service_code": self.service_code,
            "customs_option": "recipient",
        }

    async def quote(
        self,
        origin: Address,
        destination: Address,
        weight: Decimal,
        dimensions: dict,
        declared_value: Decimal,
        items: list[dict],
    ) -> ShippingQuote:
        """Price a dropoff shipment. Uses the selected rate, else the first."""
        payload = self._shipment_payload(
            origin, destination, weight, dimensions, declared_value, items
        )
        payload["incoming_option"] = "dropoff"

        data = await self._post("/shipping/shipment_delivery_quote", payload)

        rate = data.get("rate") or next(iter(data.get("rates") or []), None)
        if not rate or rate.get("fee") is None:
            raise SendboxError("Sendbox returned no shipping rate", response_data=data)

        return ShippingQuote(
            fee=to_decimal(rate["fee"]),
            eta_window=rate.get("delivery_window") or rate.get("delivery_eta_string"),
        )

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
    ) -> Shipment:
        """Book a pickup for a paid order."""
        payload = self._shipment_payload(
            origin, destination, weight, dimensions, declared_value, items
        )
        payload.update(
            incoming_option="pickup",
            package_type=package_type,
            pickup_date=pickup_date,
        )

        data = await self._post("/shipping/shipments", payload)
        return Shipment(tracking_number=data.get("tracking_code", ""))
