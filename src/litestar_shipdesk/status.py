"""Shipment status transitions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from litestar_shipdesk.enums import (
    TERMINAL_STATUSES,
    EventSource,
    EventType,
    ShipmentStatus,
)
from litestar_shipdesk.exceptions import InvalidStatusTransitionError
from litestar_shipdesk.ledger import EventLedger, normalize_event_time
from litestar_shipdesk.notifications import (
    STATUS_CHANGED,
    dispatch_notification,
)
from litestar_shipdesk.protocols import (
    EventStore,
    NotificationDispatcher,
    Shipment,
    ShipmentRepository,
)
from litestar_shipdesk.types import BatchResult, StatusUpdate

logger = logging.getLogger(__name__)

ALL_SOURCES = frozenset(EventSource)
HUMAN_SOURCES = frozenset({EventSource.MANUAL, EventSource.USER_ACTION})

LIFECYCLE = (
    ShipmentStatus.PENDING,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
    ShipmentStatus.DELIVERED,
)

CONFLICT_WINDOW = timedelta(minutes=5)


def _build_policy() -> dict[tuple[ShipmentStatus, ShipmentStatus], frozenset]:
    policy: dict[tuple[ShipmentStatus, ShipmentStatus], frozenset] = {}
    for index, current in enumerate(LIFECYCLE[:-1]):
        for target in LIFECYCLE[index + 1 :]:
            policy[(current, target)] = ALL_SOURCES
        for target in LIFECYCLE[:index]:
            policy[(current, target)] = HUMAN_SOURCES
        policy[(current, ShipmentStatus.EXCEPTION)] = ALL_SOURCES
        policy[(current, ShipmentStatus.CANCELLED)] = ALL_SOURCES
    for target in (*LIFECYCLE, ShipmentStatus.CANCELLED):
        policy[(ShipmentStatus.EXCEPTION, target)] = ALL_SOURCES
    return policy


# (from, to) -> sources allowed to make the move without an override.
TRANSITION_POLICY = _build_policy()

# Moves out of a terminal state; manual source with explicit override only.
OVERRIDE_ONLY = frozenset(
    (terminal, target)
    for terminal in TERMINAL_STATUSES
    for target in ShipmentStatus
    if target != terminal
)


def is_transition_allowed(
    current: ShipmentStatus | str,
    new: ShipmentStatus | str,
    source: EventSource | str,
    *,
    override: bool = False,
) -> bool:
    current = ShipmentStatus(current)
    new = ShipmentStatus(new)
    source = EventSource(source)
    if current == new:
        return False
    if source in TRANSITION_POLICY.get((current, new), frozenset()):
        return True
    return (
        override
        and source == EventSource.MANUAL
        and (current, new) in OVERRIDE_ONLY
    )


def check_transition(
    current: ShipmentStatus | str,
    new: ShipmentStatus | str,
    source: EventSource | str,
    *,
    override: bool = False,
) -> None:
    """Raise ``InvalidStatusTransitionError`` if the move is not allowed."""
    if not is_transition_allowed(current, new, source, override=override):
        raise InvalidStatusTransitionError(
            str(ShipmentStatus(current)),
            str(ShipmentStatus(new)),
            str(EventSource(source)),
        )


class StatusMachine:
    """Validates and applies status changes.

    Every applied change is mirrored by a ``status_change`` event carrying
    the same source, source id and event time.
    """

    def __init__(
        self,
        shipments: ShipmentRepository,
        events: EventStore,
        ledger: EventLedger,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._shipments = shipments
        self._events = events
        self._ledger = ledger
        self._notifier = notifier

    async def update_status(
        self,
        shipment_id: str,
        new_status: ShipmentStatus | str,
        source: EventSource | str,
        source_id: str | None = None,
        notes: str | None = None,
        event_time: datetime | None = None,
        *,
        override: bool = False,
        location: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Shipment:
        shipment = await self._ledger.get_shipment(shipment_id)
        new_status = ShipmentStatus(new_status)
        source = EventSource(source)
        previous = ShipmentStatus(shipment.status)
        check_transition(previous, new_status, source, override=override)

        now = datetime.now(tz=UTC)
        event_time = normalize_event_time(event_time or now)

        if source in HUMAN_SOURCES:
            await self._detect_conflicts(shipment_id, new_status, source_id)

        fields: dict[str, Any] = {"status": str(new_status), "updated_at": now}
        if new_status == ShipmentStatus.DELIVERED:
            fields["actual_delivery"] = event_time
        updated = await self._shipments.update(shipment_id, **fields)

        await self._ledger.add_event(
            shipment_id,
            EventType.STATUS_CHANGE,
            notes or f"Status changed from {previous} to {new_status}",
            source,
            status=str(new_status),
            location=location,
            source_id=source_id,
            event_time=event_time,
            metadata={
                "previous_status": str(previous),
                "new_status": str(new_status),
                "override": override,
                **(metadata or {}),
            },
            deduplicate=False,
        )
        logger.info(
            "Shipment %s status %s -> %s (source: %s)",
            shipment_id,
            previous,
            new_status,
            source,
        )

        await dispatch_notification(
            self._notifier,
            STATUS_CHANGED,
            updated,
            previous_status=str(previous),
            status=str(new_status),
            location=location,
        )
        return updated

    async def apply_batch(
        self, shipment_id: str, updates: list[StatusUpdate]
    ) -> BatchResult:
        """Apply updates in event-time order.

        A rejected transition fails only that update; earlier ones stay
        applied.
        """
        result = BatchResult()
        ordered = sorted(
            updates, key=lambda u: normalize_event_time(u.event_time)
        )
        for update in ordered:
            try:
                await self.update_status(
                    shipment_id,
                    update.status,
                    update.source,
                    source_id=update.source_id,
                    notes=update.notes,
                    event_time=update.event_time,
                    location=update.location,
                    metadata=update.metadata,
                )
            except InvalidStatusTransitionError as exc:
                result.failed.append((update, str(exc)))
            else:
                result.applied.append(update)
        return result

    async def _detect_conflicts(
        self,
        shipment_id: str,
        new_status: ShipmentStatus,
        admin_id: str | None,
    ) -> None:
        since = datetime.now(tz=UTC) - CONFLICT_WINDOW

        automated, _ = await self._events.list_for_shipment(
            shipment_id,
            sources=[str(EventSource.API_SYNC), str(EventSource.WEBHOOK)],
            start=since,
            descending=True,
            limit=5,
        )
        latest = next((e for e in automated if e.status), None)
        if latest is not None and latest.status != new_status:
            logger.warning(
                "Status conflict on shipment %s: carrier reported %s, "
                "admin %s sets %s",
                shipment_id,
                latest.status,
                admin_id,
                new_status,
            )
            await self._record_conflict(
                shipment_id,
                admin_id,
                f"Manual status update conflict detected. Carrier recently "
                f"reported {latest.status}, admin is changing to {new_status}",
                {
                    "conflict_type": "api_manual_conflict",
                    "api_status": latest.status,
                    "manual_status": str(new_status),
                    "api_event_time": latest.event_time.isoformat(),
                    "api_event_id": latest.id,
                },
            )

        changes, _ = await self._events.list_for_shipment(
            shipment_id,
            event_types=[str(EventType.STATUS_CHANGE)],
            start=since,
            descending=True,
        )
        changes = [e for e in changes if e.status]
        if len(changes) >= 2:
            await self._record_conflict(
                shipment_id,
                admin_id,
                f"Rapid status changes detected. {len(changes)} changes "
                f"in last 5 minutes",
                {
                    "conflict_type": "rapid_status_changes",
                    "recent_changes_count": len(changes),
                    "recent_changes": [
                        {
                            "status": e.status,
                            "source": e.source,
                            "event_time": e.event_time.isoformat(),
                        }
                        for e in changes
                    ],
                },
            )

    async def _record_conflict(
        self,
        shipment_id: str,
        admin_id: str | None,
        description: str,
        metadata: dict[str, Any],
    ) -> None:
        await self._ledger.add_event(
            shipment_id,
            EventType.STATUS_CHANGE,
            description,
            EventSource.MANUAL,
            source_id=admin_id,
            metadata={"audit_event": True, **metadata},
        )
