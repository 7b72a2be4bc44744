"""ShipEngine tracking API adapter."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, Field

from litestar_shipdesk.enums import (
    CarrierEventKind,
    ShipmentStatus,
    TrackingProvider,
    normalize_courier,
)
from litestar_shipdesk.exceptions import (
    MalformedWebhookError,
    UpstreamIntegrationError,
)
from litestar_shipdesk.sync import keyword_pattern
from litestar_shipdesk.types import (
    CarrierEvent,
    CarrierTrackingResult,
    WebhookBatch,
    WebhookUpdate,
)

logger = logging.getLogger(__name__)

PROVIDER = str(TrackingProvider.SHIPENGINE)

STATUS_CODES = {
    "AC": ShipmentStatus.PENDING,
    "NY": ShipmentStatus.PENDING,
    "IT": ShipmentStatus.IN_TRANSIT,
    "AT": ShipmentStatus.OUT_FOR_DELIVERY,
    "DE": ShipmentStatus.DELIVERED,
    "EX": ShipmentStatus.EXCEPTION,
    "UN": ShipmentStatus.EXCEPTION,
}

CARRIER_CODES = {
    "ups": "ups",
    "fedex": "fedex",
    "usps": "stamps_com",
    "dhl": "dhl_express",
    "ontrac": "ontrac",
    "lasership": "lasership",
    "amazon": "amazon_shipping",
}

CARRIER_COURIERS = {code: courier for courier, code in CARRIER_CODES.items()}

# Whole words, checked in order; first hit wins.
EVENT_KEYWORDS: tuple[tuple[tuple[str, ...], CarrierEventKind], ...] = (
    (
        ("undelivered", "undeliverable", "not delivered"),
        CarrierEventKind.EXCEPTION,
    ),
    (("pickup", "picked up", "collected"), CarrierEventKind.PICKUP),
    (("transit", "departed", "arrived"), CarrierEventKind.IN_TRANSIT),
    (
        ("out for delivery", "loaded for delivery"),
        CarrierEventKind.OUT_FOR_DELIVERY,
    ),
    (
        ("attempt", "attempted", "failed delivery"),
        CarrierEventKind.DELIVERY_ATTEMPT,
    ),
    (("delivered", "signed"), CarrierEventKind.DELIVERED),
    (
        ("exception", "delay", "delayed", "hold", "held"),
        CarrierEventKind.EXCEPTION,
    ),
    (
        ("cancelled", "canceled", "returned"),
        CarrierEventKind.CANCELLED,
    ),
)

EVENT_PATTERNS = tuple(
    (keyword_pattern(keywords), kind) for keywords, kind in EVENT_KEYWORDS
)


class ShipEngineSettings(BaseModel):
    api_key: str = Field(min_length=1)
    base_url: str = "https://api.shipengine.com"
    webhook_secret: str | None = None
    timeout: float = 10.0


def map_status_code(code: str | None) -> ShipmentStatus:
    return STATUS_CODES.get((code or "").upper(), ShipmentStatus.PENDING)


def map_courier_to_carrier_code(courier: str) -> str:
    key = "".join(courier.lower().split())
    return CARRIER_CODES.get(key, courier)


def map_carrier_code_to_courier(carrier_code: str) -> str:
    """Courier key as stored on shipments for a ShipEngine carrier code."""
    code = carrier_code.strip().lower()
    return CARRIER_COURIERS.get(code, normalize_courier(code))


def map_event_kind(code_or_description: str | None) -> CarrierEventKind:
    text = code_or_description or ""
    for pattern, kind in EVENT_PATTERNS:
        if pattern.search(text):
            return kind
    return CarrierEventKind.LOCATION_UPDATE


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid timestamp: {value!r}")
    return datetime.fromisoformat(value)


def _build_location(event: dict[str, Any]) -> str | None:
    parts = [
        event.get("city_locality"),
        event.get("state_province"),
        event.get("postal_code"),
        event.get("country_code"),
    ]
    joined = ", ".join(p for p in parts if p)
    return joined or None


def parse_event(event: dict[str, Any]) -> CarrierEvent:
    description = event.get("description") or ""
    return CarrierEvent(
        occurred_at=_parse_time(event.get("occurred_at")),
        description=description,
        kind=map_event_kind(event.get("event_code") or description),
        location=_build_location(event),
        raw={
            "carrier_occurred_at": event.get("carrier_occurred_at"),
            "event_code": event.get("event_code"),
            "signer": event.get("signer"),
            "company_name": event.get("company_name"),
        },
    )


class ShipEngineAdapter:
    """Tracking adapter backed by the ShipEngine REST API."""

    provider_name = PROVIDER

    def __init__(
        self,
        settings: ShipEngineSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    async def start_tracking(
        self, courier: str, tracking_number: str
    ) -> CarrierTrackingResult:
        if not tracking_number:
            raise UpstreamIntegrationError(
                "Courier tracking number is required for ShipEngine "
                "integration",
                PROVIDER,
            )
        data = await self._request(
            "POST",
            "/v1/tracking/start",
            json={
                "tracking_number": tracking_number,
                "carrier_code": map_courier_to_carrier_code(courier),
            },
        )
        return self._parse_tracking_response(data)

    async def get_tracking_updates(self, tracking_id: str) -> list[CarrierEvent]:
        data = await self._request("GET", f"/v1/tracking/{tracking_id}")
        return self._parse_tracking_response(data).events

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> bool:
        secret = self.settings.webhook_secret
        if not secret:
            logger.warning(
                "ShipEngine webhook secret not configured, "
                "skipping signature validation"
            )
            return True
        if not signature:
            return False
        received = signature.strip()
        if received.startswith("sha256="):
            received = received[len("sha256=") :]
        expected = hmac.new(
            secret.encode(), raw_body, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, received.lower())

    def parse_webhook_payload(self, payload: dict[str, Any]) -> WebhookBatch:
        try:
            data = payload["data"]
            tracking_number = str(data["tracking_number"])
            events = [parse_event(e) for e in data.get("events") or []]
            status_code = data.get("status_code")
            carrier_code = data.get("carrier_code")
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedWebhookError(
                f"Failed to parse ShipEngine webhook payload: {exc}",
                PROVIDER,
            ) from exc

        return WebhookBatch(
            updates=[
                WebhookUpdate(
                    tracking_number=tracking_number,
                    tracking_id=tracking_number,
                    courier=map_carrier_code_to_courier(str(carrier_code))
                    if carrier_code
                    else None,
                    status=map_status_code(status_code)
                    if status_code
                    else None,
                    events=events,
                )
            ],
            resource_type=payload.get("resource_type"),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=self.settings.timeout,
                transport=self._transport,
                headers={"API-Key": self.settings.api_key},
            ) as client:
                response = await client.request(method, path, json=json)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamIntegrationError(
                f"ShipEngine API error: {exc.response.status_code} "
                f"{exc.response.text}",
                PROVIDER,
                details={"status_code": exc.response.status_code},
            ) from exc
        except httpx.RequestError as exc:
            raise UpstreamIntegrationError(
                f"ShipEngine request failed: {exc}", PROVIDER
            ) from exc
        except ValueError as exc:
            raise UpstreamIntegrationError(
                "ShipEngine returned a non-JSON response", PROVIDER
            ) from exc

    def _parse_tracking_response(
        self, data: dict[str, Any]
    ) -> CarrierTrackingResult:
        try:
            estimated = data.get("estimated_delivery_date")
            actual = data.get("actual_delivery_date")
            return CarrierTrackingResult(
                tracking_id=str(data["tracking_number"]),
                tracking_number=str(data["tracking_number"]),
                status=map_status_code(data.get("status_code")),
                events=[parse_event(e) for e in data.get("events") or []],
                estimated_delivery=_parse_time(estimated) if estimated else None,
                actual_delivery=_parse_time(actual) if actual else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamIntegrationError(
                f"Unexpected ShipEngine response: {exc}", PROVIDER
            ) from exc
