"""Shipment lifecycle engine facade."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from litestar_shipdesk.codes import generate_internal_tracking_code
from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.enums import (
    EventSource,
    EventType,
    ShipmentStatus,
    TrackingAssignmentStatus,
    UserAssignmentStatus,
)
from litestar_shipdesk.exceptions import (
    PublicTrackingNotFoundError,
    TrackingValidationError,
)
from litestar_shipdesk.ledger import EventLedger
from litestar_shipdesk.protocols import (
    EventStore,
    NotificationDispatcher,
    Shipment,
    ShipmentRepository,
    TrackingAdapter,
)
from litestar_shipdesk.status import StatusMachine
from litestar_shipdesk.sync import TrackingSynchronizer
from litestar_shipdesk.tracking import TrackingResolver
from litestar_shipdesk.types import PublicTrackingView
from litestar_shipdesk.white_label import WhiteLabelFilter

logger = logging.getLogger(__name__)


class ShipmentLifecycleEngine:
    """Wires the ledger, status machine, resolver, sync and public filter."""

    def __init__(
        self,
        *,
        config: ShipdeskConfig,
        shipments: ShipmentRepository,
        events: EventStore,
        tracking_adapter: TrackingAdapter | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.config = config
        self.shipments = shipments
        self.ledger = EventLedger(events, shipments)
        self.status = StatusMachine(shipments, events, self.ledger, notifier)
        self.synchronizer = TrackingSynchronizer(
            shipments, self.ledger, self.status, tracking_adapter, config
        )
        self.tracking = TrackingResolver(
            shipments, self.ledger, notifier, self.synchronizer
        )
        self.white_label = WhiteLabelFilter(config.white_label_settings())

    async def get_shipment(self, shipment_id: str) -> Shipment:
        return await self.ledger.get_shipment(shipment_id)

    async def create_shipment(
        self,
        *,
        customer_name: str | None = None,
        customer_email: str | None = None,
        estimated_delivery: datetime | None = None,
        admin_id: str | None = None,
    ) -> Shipment:
        code = await generate_internal_tracking_code(self._is_code_taken)
        now = datetime.now(tz=UTC)
        shipment = await self.shipments.create(
            tracking_code=code,
            status=str(ShipmentStatus.PENDING),
            user_assignment_status=str(UserAssignmentStatus.UNASSIGNED),
            tracking_assignment_status=str(TrackingAssignmentStatus.UNASSIGNED),
            customer_name=customer_name,
            customer_email=customer_email,
            estimated_delivery=estimated_delivery,
            needs_review=False,
            created_at=now,
            updated_at=now,
        )
        await self.ledger.add_event(
            shipment.id,
            EventType.SHIPMENT_CREATED,
            "Shipment created",
            EventSource.MANUAL,
            status=str(ShipmentStatus.PENDING),
            source_id=admin_id,
            event_time=now,
        )
        logger.info("Created shipment %s (%s)", shipment.id, code)
        return shipment

    async def get_public_tracking(self, tracking_code: str) -> PublicTrackingView:
        """Carrier-free tracking view for unauthenticated callers."""
        lookup = self.white_label.validate_public_tracking_lookup(tracking_code)
        if not lookup.is_valid:
            raise TrackingValidationError(
                lookup.error or "Invalid tracking code",
                code="INVALID_TRACKING_CODE",
            )
        shipment = await self.shipments.get_by_tracking_code(lookup.normalized)
        if shipment is None:
            raise PublicTrackingNotFoundError()
        events = await self.ledger.get_all_events(shipment.id)
        return self.white_label.sanitize_shipment_for_public(shipment, events)

    async def _is_code_taken(self, code: str) -> bool:
        return await self.shipments.get_by_tracking_code(code) is not None
