"""Append-only, deduplicated shipment event history."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from litestar_shipdesk.enums import AUTOMATED_SOURCES, EventSource, EventType
from litestar_shipdesk.exceptions import (
    ShipmentNotFoundError,
    TrackingValidationError,
)
from litestar_shipdesk.protocols import (
    EventStore,
    Shipment,
    ShipmentEvent,
    ShipmentRepository,
)
from litestar_shipdesk.types import EventFilters, EventPage

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


def normalize_event_time(value: datetime | None = None) -> datetime:
    """Timezone-aware UTC, truncated to milliseconds. ``None`` means now."""
    if value is None:
        value = datetime.now(tz=UTC)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    else:
        value = value.astimezone(UTC)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


class EventLedger:
    """Records what happened to a shipment.

    Events from ``api_sync`` and ``webhook`` sources are idempotent on
    ``(shipment, source, event_time)``; replaying a carrier payload never
    adds history twice. Manual edits are always distinct facts.
    Appending never changes the shipment's status.
    """

    def __init__(
        self, events: EventStore, shipments: ShipmentRepository
    ) -> None:
        self._events = events
        self._shipments = shipments

    async def get_shipment(self, shipment_id: str) -> Shipment:
        try:
            return await self._shipments.get_by_id(shipment_id)
        except KeyError:
            raise ShipmentNotFoundError(shipment_id) from None

    async def is_duplicate(
        self, shipment_id: str, source: EventSource, event_time: datetime
    ) -> bool:
        if source not in AUTOMATED_SOURCES:
            return False
        return await self._events.exists(
            shipment_id, str(source), normalize_event_time(event_time)
        )

    async def add_event(
        self,
        shipment_id: str,
        event_type: EventType | str,
        description: str,
        source: EventSource | str,
        *,
        status: str | None = None,
        location: str | None = None,
        source_id: str | None = None,
        event_time: datetime | None = None,
        metadata: dict[str, Any] | None = None,
        deduplicate: bool = True,
    ) -> ShipmentEvent | None:
        """Append an event.

        Returns:
            The stored event, or ``None`` when it duplicates one already
            recorded from the same automated source at the same time.

        Raises:
            ShipmentNotFoundError: if the shipment does not exist.
        """
        await self.get_shipment(shipment_id)
        event_type = EventType(event_type)
        source = EventSource(source)
        event_time = normalize_event_time(event_time)

        if deduplicate and await self.is_duplicate(
            shipment_id, source, event_time
        ):
            logger.debug(
                "Skipping duplicate %s event for shipment %s at %s",
                source,
                shipment_id,
                event_time.isoformat(),
            )
            return None

        return await self._events.add(
            shipment_id=shipment_id,
            event_type=str(event_type),
            status=str(status) if status is not None else None,
            description=description,
            location=location,
            source=str(source),
            source_id=source_id,
            event_time=event_time,
            event_metadata=dict(metadata or {}),
        )

    async def add_manual_audit_event(
        self,
        shipment_id: str,
        action: str,
        admin_id: str,
        details: dict[str, Any] | None = None,
        event_time: datetime | None = None,
    ) -> ShipmentEvent | None:
        return await self.add_event(
            shipment_id,
            EventType.STATUS_CHANGE,
            f"Admin action: {action}",
            EventSource.MANUAL,
            source_id=admin_id,
            event_time=event_time,
            metadata={
                "audit_event": True,
                "action": action,
                "admin_id": admin_id,
                "details": details or {},
                "timestamp": datetime.now(tz=UTC).isoformat(),
            },
        )

    async def get_shipment_events(
        self,
        shipment_id: str,
        *,
        page: int = 1,
        per_page: int = 50,
        filters: EventFilters | None = None,
        sort_order: str = "asc",
    ) -> EventPage:
        if page < 1:
            raise TrackingValidationError(
                "page must be >= 1", details={"field": "page"}
            )
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise TrackingValidationError(
                f"per_page must be between 1 and {MAX_PER_PAGE}",
                details={"field": "per_page"},
            )
        if sort_order not in ("asc", "desc"):
            raise TrackingValidationError(
                "sort_order must be 'asc' or 'desc'",
                details={"field": "sort_order"},
            )
        await self.get_shipment(shipment_id)

        filters = filters or EventFilters()
        events, total = await self._events.list_for_shipment(
            shipment_id,
            sources=_as_strings(filters.sources),
            event_types=_as_strings(filters.event_types),
            start=normalize_event_time(filters.start) if filters.start else None,
            end=normalize_event_time(filters.end) if filters.end else None,
            descending=sort_order == "desc",
            offset=(page - 1) * per_page,
            limit=per_page,
        )
        return EventPage(
            events=events, total=total, page=page, per_page=per_page
        )

    async def get_all_events(self, shipment_id: str) -> list[ShipmentEvent]:
        """Full history in event-time order."""
        events, _ = await self._events.list_for_shipment(shipment_id)
        return events

    async def get_latest_event(
        self, shipment_id: str, source: EventSource | None = None
    ) -> ShipmentEvent | None:
        events, _ = await self._events.list_for_shipment(
            shipment_id,
            sources=[str(source)] if source else None,
            descending=True,
            limit=1,
        )
        return events[0] if events else None

    async def get_status_change_events(
        self, shipment_id: str
    ) -> list[ShipmentEvent]:
        """Status audit trail, newest first."""
        events, _ = await self._events.list_for_shipment(
            shipment_id,
            event_types=[str(EventType.STATUS_CHANGE)],
            descending=True,
        )
        return events


def _as_strings(values) -> list[str] | None:
    if not values:
        return None
    return [str(v) for v in values]
