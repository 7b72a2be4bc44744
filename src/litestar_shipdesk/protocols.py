"""Collaborator protocols for the shipment lifecycle engine."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from litestar import Request

from litestar_shipdesk.types import (
    CarrierEvent,
    CarrierTrackingResult,
    WebhookBatch,
)

__all__ = [
    "CallerResolver",
    "EventStore",
    "NotificationDispatcher",
    "RateLimitStore",
    "Shipment",
    "ShipmentEvent",
    "ShipmentRepository",
    "TrackingAdapter",
]


@runtime_checkable
class Shipment(Protocol):
    id: str
    tracking_code: str
    courier: str | None
    courier_tracking_number: str | None
    shipping_method: str | None
    status: str
    user_assignment_status: str
    tracking_assignment_status: str
    api_tracking_id: str | None
    api_provider: str | None
    last_api_sync: datetime | None
    api_sync_status: str | None
    api_sync_error: str | None
    needs_review: bool
    estimated_delivery: datetime | None
    actual_delivery: datetime | None
    customer_name: str | None
    customer_email: str | None
    created_at: datetime
    updated_at: datetime


@runtime_checkable
class ShipmentEvent(Protocol):
    id: str
    shipment_id: str
    event_type: str
    status: str | None
    description: str
    location: str | None
    source: str
    source_id: str | None
    event_time: datetime
    recorded_at: datetime
    event_metadata: dict[str, Any]


@runtime_checkable
class ShipmentRepository(Protocol):
    """Persistence for shipments.

    Lookups by id raise ``KeyError`` when the shipment does not exist.
    """

    async def get_by_id(self, shipment_id: str) -> Shipment: ...

    async def get_by_tracking_code(
        self, tracking_code: str
    ) -> Shipment | None: ...

    async def create(self, **fields: Any) -> Shipment: ...

    async def update(self, shipment_id: str, **fields: Any) -> Shipment: ...

    async def find_tracking_holder(
        self,
        courier: str,
        tracking_number: str,
        exclude_shipment_id: str | None = None,
    ) -> Shipment | None: ...

    async def assign_tracking(
        self,
        shipment_id: str,
        *,
        courier: str,
        tracking_number: str | None,
        shipping_method: str | None = None,
    ) -> Shipment:
        """Re-check the holder and write the assignment in one transaction.

        A changed number also clears ``api_tracking_id`` so the next sync
        registers the new number with the provider.

        Raises ``TrackingConflictError`` if another shipment holds the
        number by the time the row lock is taken.
        """
        ...

    async def reassign_tracking(
        self,
        from_shipment_id: str,
        to_shipment_id: str,
        *,
        courier: str,
        tracking_number: str,
        shipping_method: str | None = None,
    ) -> tuple[Shipment, Shipment]:
        """Clear the holder and assign the target in one transaction."""
        ...

    async def find_by_carrier_reference(
        self,
        *,
        tracking_id: str | None = None,
        tracking_number: str | None = None,
        courier: str | None = None,
    ) -> list[Shipment]:
        """Shipments matching either reference; scoped to ``courier`` if given."""
        ...

    async def list_existing_ids(self, shipment_ids: Iterable[str]) -> set[str]: ...

    async def list_due_for_sync(
        self,
        statuses: Sequence[str],
        synced_before: datetime,
        limit: int,
    ) -> list[Shipment]: ...

    async def list_with_tracking_numbers(self) -> list[Shipment]: ...


@runtime_checkable
class EventStore(Protocol):
    """Append-only storage for shipment events."""

    async def add(self, **fields: Any) -> ShipmentEvent: ...

    async def exists(
        self, shipment_id: str, source: str, event_time: datetime
    ) -> bool: ...

    async def list_for_shipment(
        self,
        shipment_id: str,
        *,
        sources: Sequence[str] | None = None,
        event_types: Sequence[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        descending: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[ShipmentEvent], int]:
        """Return one page of events and the total matching count."""
        ...


@runtime_checkable
class TrackingAdapter(Protocol):
    """Normalised interface over a carrier tracking API provider."""

    provider_name: str

    async def start_tracking(
        self, courier: str, tracking_number: str
    ) -> CarrierTrackingResult: ...

    async def get_tracking_updates(
        self, tracking_id: str
    ) -> list[CarrierEvent]: ...

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> bool: ...

    def parse_webhook_payload(self, payload: dict[str, Any]) -> WebhookBatch: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def notify(self, kind: str, shipment: Shipment, **context: Any) -> None: ...


@runtime_checkable
class RateLimitStore(Protocol):
    """Fixed-window counters keyed by caller."""

    async def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Count one hit; return the window's hit count and reset time."""
        ...


@runtime_checkable
class CallerResolver(Protocol):
    """Supplies the authenticated admin id for a request."""

    async def resolve(self, request: Request) -> str | None: ...
