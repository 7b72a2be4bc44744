"""Carrier tracking synchronisation: polling, webhooks and ingestion."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.enums import (
    ACTIVE_STATUSES,
    ApiSyncStatus,
    CarrierEventKind,
    EventSource,
    EventType,
    ShipmentStatus,
)
from litestar_shipdesk.exceptions import (
    InvalidStatusTransitionError,
    MalformedWebhookError,
    ShipmentNotFoundError,
    TrackingProviderNotConfiguredError,
    UpstreamIntegrationError,
    WebhookSignatureError,
)
from litestar_shipdesk.ledger import EventLedger, normalize_event_time
from litestar_shipdesk.protocols import ShipmentRepository, TrackingAdapter
from litestar_shipdesk.retry import retry_with_backoff
from litestar_shipdesk.status import StatusMachine
from litestar_shipdesk.types import (
    BatchSyncReport,
    CarrierEvent,
    IngestReport,
    SyncResult,
    WebhookOutcome,
)

logger = logging.getLogger(__name__)

KIND_STATUSES = {
    "pickup": ShipmentStatus.IN_TRANSIT,
    "picked_up": ShipmentStatus.IN_TRANSIT,
    "collected": ShipmentStatus.IN_TRANSIT,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "in-transit": ShipmentStatus.IN_TRANSIT,
    "transit": ShipmentStatus.IN_TRANSIT,
    "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "loaded_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "delivery": ShipmentStatus.DELIVERED,
    "exception": ShipmentStatus.EXCEPTION,
    "delay": ShipmentStatus.EXCEPTION,
    "hold": ShipmentStatus.EXCEPTION,
    "cancelled": ShipmentStatus.CANCELLED,
    "canceled": ShipmentStatus.CANCELLED,
    "returned": ShipmentStatus.CANCELLED,
}

# Fallback when the event kind alone says nothing. Whole words only;
# first hit wins, so negated delivery phrases come before "delivered".
DESCRIPTION_KEYWORDS: tuple[tuple[tuple[str, ...], ShipmentStatus], ...] = (
    (
        (
            "undelivered",
            "undeliverable",
            "not delivered",
            "failed delivery",
            "delivery attempt",
            "attempted delivery",
        ),
        ShipmentStatus.EXCEPTION,
    ),
    (("delivered", "signed for"), ShipmentStatus.DELIVERED),
    (
        (
            "out for delivery",
            "loaded for delivery",
            "on vehicle for delivery",
        ),
        ShipmentStatus.OUT_FOR_DELIVERY,
    ),
    (
        ("in transit", "departed", "arrived at", "picked up"),
        ShipmentStatus.IN_TRANSIT,
    ),
    (
        ("exception", "delay", "delayed", "hold", "held"),
        ShipmentStatus.EXCEPTION,
    ),
    (
        ("cancelled", "canceled", "returned to sender", "refused"),
        ShipmentStatus.CANCELLED,
    ),
)


def keyword_pattern(keywords: Sequence[str]) -> re.Pattern[str]:
    """Case-insensitive whole-word match for any of ``keywords``."""
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


DESCRIPTION_PATTERNS = tuple(
    (keyword_pattern(keywords), status)
    for keywords, status in DESCRIPTION_KEYWORDS
)

LEDGER_TYPES = {
    CarrierEventKind.DELIVERY_ATTEMPT: EventType.DELIVERY_ATTEMPT,
    CarrierEventKind.EXCEPTION: EventType.EXCEPTION,
}


def map_event_to_status(
    kind: str | None, description: str | None = None
) -> ShipmentStatus | None:
    """Shipment status implied by a carrier event, if any."""
    status = KIND_STATUSES.get((kind or "").lower())
    if status is not None:
        return status
    text = description or ""
    for pattern, candidate in DESCRIPTION_PATTERNS:
        if pattern.search(text):
            return candidate
    return None


class TrackingSynchronizer:
    """Pulls and receives carrier tracking events for shipments."""

    def __init__(
        self,
        shipments: ShipmentRepository,
        ledger: EventLedger,
        status_machine: StatusMachine,
        adapter: TrackingAdapter | None,
        config: ShipdeskConfig,
    ) -> None:
        self._shipments = shipments
        self._ledger = ledger
        self._status = status_machine
        self.adapter = adapter
        self._config = config

    @property
    def enabled(self) -> bool:
        return self.adapter is not None

    def _require_adapter(self) -> TrackingAdapter:
        if self.adapter is None:
            raise TrackingProviderNotConfiguredError()
        return self.adapter

    async def ingest_events(
        self,
        shipment_id: str,
        events: Sequence[CarrierEvent],
        source: EventSource,
        source_id: str | None = None,
        reported_status: ShipmentStatus | None = None,
    ) -> IngestReport:
        """Record carrier events, then apply the latest implied status.

        Events are processed in event-time order, so the outcome does not
        depend on arrival order. A status implied by an event older than the
        last applied status change is stale and ignored.
        """
        report = IngestReport()
        ordered = sorted(
            events, key=lambda e: normalize_event_time(e.occurred_at)
        )
        latest: tuple[ShipmentStatus, CarrierEvent | None] | None = None

        for event in ordered:
            status = map_event_to_status(event.kind, event.description)
            stored = await self._ledger.add_event(
                shipment_id,
                LEDGER_TYPES.get(event.kind, EventType.LOCATION_UPDATE),
                event.description,
                source,
                status=status,
                location=event.location,
                source_id=source_id,
                event_time=event.occurred_at,
                metadata={
                    "carrier_event_type": str(event.kind),
                    **{k: v for k, v in event.raw.items() if v is not None},
                },
            )
            if stored is None:
                report.duplicates += 1
                continue
            report.added += 1
            if status is not None:
                latest = (status, event)

        if latest is None and reported_status is not None and report.added:
            latest = (reported_status, ordered[-1] if ordered else None)

        if latest is not None:
            await self._apply_status(
                shipment_id, latest[0], latest[1], source, source_id, report
            )
        return report

    async def _apply_status(
        self,
        shipment_id: str,
        status: ShipmentStatus,
        event: CarrierEvent | None,
        source: EventSource,
        source_id: str | None,
        report: IngestReport,
    ) -> None:
        shipment = await self._ledger.get_shipment(shipment_id)
        if shipment.status == status:
            return
        event_time = normalize_event_time(event.occurred_at if event else None)
        if await self._is_stale(shipment_id, event_time):
            logger.info(
                "Ignoring stale %s status for shipment %s from %s",
                status,
                shipment_id,
                event_time.isoformat(),
            )
            return
        try:
            await self._status.update_status(
                shipment_id,
                status,
                source,
                source_id=source_id,
                notes=f"Carrier update: {event.description}"
                if event and event.description
                else None,
                event_time=event_time,
                location=event.location if event else None,
                metadata={
                    "carrier_event_type": str(event.kind)
                    if event
                    else None
                },
            )
        except InvalidStatusTransitionError as exc:
            logger.warning(
                "Rejected carrier status regression for shipment %s: %s",
                shipment_id,
                exc,
            )
            report.rejected.append(str(exc))
            await self._ledger.add_event(
                shipment_id,
                EventType.EXCEPTION,
                f"Carrier reported {status} while shipment is "
                f"{shipment.status}; update not applied",
                source,
                source_id=source_id,
                event_time=event_time,
                metadata={
                    "rejected_status": str(status),
                    "current_status": str(shipment.status),
                    "error_code": exc.code,
                },
                deduplicate=False,
            )
        else:
            report.status = status

    async def _is_stale(self, shipment_id: str, event_time: datetime) -> bool:
        for change in await self._ledger.get_status_change_events(shipment_id):
            if change.status:
                return normalize_event_time(change.event_time) > event_time
        return False

    async def sync_with_api(self, shipment_id: str) -> SyncResult:
        """Poll the carrier API for one shipment.

        Failures are recorded on the shipment for review and returned as an
        unsuccessful result.

        Raises:
            TrackingProviderNotConfiguredError: no adapter configured.
            ShipmentNotFoundError: unknown shipment.
        """
        adapter = self._require_adapter()
        shipment = await self._ledger.get_shipment(shipment_id)
        provider = adapter.provider_name
        retry_options: dict[str, Any] = {
            "max_attempts": self._config.sync_max_retries,
            "backoff_seconds": self._config.sync_backoff_seconds,
        }

        try:
            if not shipment.api_tracking_id:
                number = shipment.courier_tracking_number
                if not number:
                    raise UpstreamIntegrationError(
                        "Courier tracking number is required to start "
                        "carrier tracking",
                        provider,
                    )
                started = await retry_with_backoff(
                    lambda: adapter.start_tracking(
                        shipment.courier or "", number
                    ),
                    description=f"Start tracking for {shipment_id}",
                    **retry_options,
                )
                await self._shipments.update(
                    shipment_id,
                    api_tracking_id=started.tracking_id,
                    api_provider=provider,
                    estimated_delivery=started.estimated_delivery
                    or shipment.estimated_delivery,
                )
                events = started.events
                reported = started.status
            else:
                tracking_id = shipment.api_tracking_id
                events = await retry_with_backoff(
                    lambda: adapter.get_tracking_updates(tracking_id),
                    description=f"Tracking updates for {shipment_id}",
                    **retry_options,
                )
                reported = None
            report = await self.ingest_events(
                shipment_id,
                events,
                EventSource.API_SYNC,
                provider,
                reported_status=reported,
            )
        except UpstreamIntegrationError as exc:
            await self._record_failure(shipment_id, provider, str(exc))
            return SyncResult(
                shipment_id=shipment_id, success=False, error=str(exc)
            )

        await self._shipments.update(
            shipment_id,
            last_api_sync=datetime.now(tz=UTC),
            api_sync_status=str(ApiSyncStatus.SUCCESS),
            api_sync_error=None,
            needs_review=False,
        )
        logger.info(
            "Synced shipment %s: %d new events, %d duplicates",
            shipment_id,
            report.added,
            report.duplicates,
        )
        return SyncResult(
            shipment_id=shipment_id,
            success=True,
            events_added=report.added,
            status=report.status,
        )

    async def batch_sync(
        self,
        shipment_ids: Sequence[str] | None = None,
        max_concurrent: int | None = None,
    ) -> BatchSyncReport:
        """Sync the given shipments, or every shipment due for a sync."""
        self._require_adapter()
        if shipment_ids is None:
            cutoff = datetime.now(tz=UTC) - timedelta(
                seconds=self._config.sync_stale_after_seconds
            )
            due = await self._shipments.list_due_for_sync(
                [str(s) for s in ACTIVE_STATUSES],
                cutoff,
                self._config.sync_batch_limit,
            )
            shipment_ids = [s.id for s in due]

        size = max(1, max_concurrent or self._config.sync_max_concurrent)
        results: list[SyncResult] = []
        for start in range(0, len(shipment_ids), size):
            chunk = shipment_ids[start : start + size]
            results.extend(
                await asyncio.gather(*(self._sync_one(sid) for sid in chunk))
            )

        report = BatchSyncReport(results=results)
        logger.info(
            "Batch sync finished: %d succeeded, %d failed",
            report.successful,
            report.failed,
        )
        return report

    async def _sync_one(self, shipment_id: str) -> SyncResult:
        try:
            return await self.sync_with_api(shipment_id)
        except ShipmentNotFoundError as exc:
            return SyncResult(
                shipment_id=shipment_id, success=False, error=str(exc)
            )

    async def handle_webhook(
        self, raw_body: bytes, signature: str | None
    ) -> WebhookOutcome:
        """Verify, parse and ingest an inbound carrier webhook.

        Raises:
            TrackingProviderNotConfiguredError: no adapter configured.
            WebhookSignatureError: signature check failed; nothing written.
            MalformedWebhookError: body is not a valid provider payload.
        """
        adapter = self._require_adapter()
        provider = adapter.provider_name

        if not adapter.verify_webhook(raw_body, signature):
            logger.warning("Rejected %s webhook: invalid signature", provider)
            raise WebhookSignatureError("Invalid webhook signature", provider)

        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise MalformedWebhookError(
                "Invalid JSON payload", provider
            ) from exc
        if not isinstance(payload, dict):
            raise MalformedWebhookError(
                "Webhook payload must be a JSON object", provider
            )

        batch = adapter.parse_webhook_payload(payload)
        matched: list[str] = []
        added = 0
        for update in batch.updates:
            shipments = await self._shipments.find_by_carrier_reference(
                tracking_id=update.tracking_id,
                tracking_number=update.tracking_number,
                courier=update.courier,
            )
            if not shipments:
                logger.info(
                    "No shipment found for %s webhook tracking id %s",
                    provider,
                    update.tracking_id or update.tracking_number,
                )
                continue
            # Numbers are unique per courier only.
            if update.courier is None and len(shipments) > 1:
                logger.warning(
                    "Skipping %s webhook for %s: no carrier given and %d "
                    "shipments share the number",
                    provider,
                    update.tracking_number,
                    len(shipments),
                )
                continue
            for shipment in shipments:
                report = await self.ingest_events(
                    shipment.id,
                    update.events,
                    EventSource.WEBHOOK,
                    provider,
                    reported_status=update.status,
                )
                await self._shipments.update(
                    shipment.id,
                    last_api_sync=datetime.now(tz=UTC),
                    api_sync_status=str(ApiSyncStatus.SUCCESS),
                    api_sync_error=None,
                )
                await self._ledger.add_event(
                    shipment.id,
                    EventType.API_SYNC,
                    f"Webhook processed: {report.added} new events",
                    EventSource.WEBHOOK,
                    source_id=provider,
                    metadata={
                        "resource_type": batch.resource_type,
                        "events_added": report.added,
                        "duplicates": report.duplicates,
                        "rejected": report.rejected,
                    },
                    deduplicate=False,
                )
                matched.append(shipment.id)
                added += report.added

        return WebhookOutcome(shipment_ids=matched, events_added=added)

    async def _record_failure(
        self, shipment_id: str, provider: str, error: str
    ) -> None:
        logger.warning("Carrier sync failed for shipment %s: %s", shipment_id, error)
        await self._shipments.update(
            shipment_id,
            api_sync_status=str(ApiSyncStatus.FAILED),
            api_sync_error=error,
            needs_review=True,
        )
        await self._ledger.add_event(
            shipment_id,
            EventType.API_SYNC,
            "Carrier sync failed",
            EventSource.API_SYNC,
            source_id=provider,
            metadata={"sync_status": str(ApiSyncStatus.FAILED), "error": error},
            deduplicate=False,
        )
