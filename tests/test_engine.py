"""Lifecycle engine facade tests."""

from __future__ import annotations

import pytest

from litestar_shipdesk.codes import INTERNAL_CODE_RE
from litestar_shipdesk.engine import ShipmentLifecycleEngine
from litestar_shipdesk.enums import EventSource, EventType, ShipmentStatus
from litestar_shipdesk.exceptions import (
    PublicTrackingNotFoundError,
    ShipmentNotFoundError,
    TrackingValidationError,
)
from litestar_shipdesk.notifications import STATUS_CHANGED, TRACKING_ASSIGNED

from conftest import utc

UPS = "1Z999AA10123456784"


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, kind, shipment, **context) -> None:
        self.sent.append((kind, shipment.id, context))


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def notifying_engine(
    config, repository, event_store, notifier
) -> ShipmentLifecycleEngine:
    return ShipmentLifecycleEngine(
        config=config,
        shipments=repository,
        events=event_store,
        notifier=notifier,
    )


class TestCreateShipment:
    async def test_creates_pending_shipment(
        self, engine: ShipmentLifecycleEngine
    ) -> None:
        shipment = await engine.create_shipment(
            customer_name="Ada",
            estimated_delivery=utc(2026, 3, 4),
            admin_id="admin-1",
        )
        assert INTERNAL_CODE_RE.match(shipment.tracking_code)
        assert shipment.status == "pending"
        assert shipment.tracking_assignment_status == "unassigned"
        assert shipment.customer_name == "Ada"
        assert shipment.estimated_delivery == utc(2026, 3, 4)

    async def test_records_creation_event(
        self, engine: ShipmentLifecycleEngine, event_store
    ) -> None:
        shipment = await engine.create_shipment(admin_id="admin-1")
        [event] = event_store.items
        assert event.shipment_id == shipment.id
        assert event.event_type == EventType.SHIPMENT_CREATED
        assert event.status == "pending"
        assert event.source == EventSource.MANUAL
        assert event.source_id == "admin-1"

    async def test_codes_are_unique(
        self, engine: ShipmentLifecycleEngine
    ) -> None:
        codes = {
            (await engine.create_shipment()).tracking_code for _ in range(20)
        }
        assert len(codes) == 20

    async def test_get_shipment_not_found(
        self, engine: ShipmentLifecycleEngine
    ) -> None:
        with pytest.raises(ShipmentNotFoundError):
            await engine.get_shipment("missing")


class TestGetPublicTracking:
    async def test_invalid_code(self, engine: ShipmentLifecycleEngine) -> None:
        with pytest.raises(TrackingValidationError) as exc_info:
            await engine.get_public_tracking(UPS)
        assert exc_info.value.code == "INVALID_TRACKING_CODE"

    async def test_unknown_code(self, engine: ShipmentLifecycleEngine) -> None:
        with pytest.raises(PublicTrackingNotFoundError):
            await engine.get_public_tracking("SC000000001")

    async def test_view_is_carrier_free(
        self, engine: ShipmentLifecycleEngine
    ) -> None:
        shipment = await engine.create_shipment()
        await engine.tracking.assign_tracking(shipment.id, "ups", UPS)
        await engine.status.update_status(
            shipment.id,
            ShipmentStatus.IN_TRANSIT,
            EventSource.MANUAL,
            source_id="admin-1",
            notes=f"Handed to UPS, driver ID: XK4471Q, tracking number {UPS}",
        )

        view = await engine.get_public_tracking(shipment.tracking_code.lower())

        assert view.tracking_code == shipment.tracking_code
        assert view.status == "in-transit"
        assert view.carrier == "ShipCo Logistics"
        assert view.carrier_tracking_number == "Hidden"
        assert {e.event_type for e in view.events} <= {
            "shipment_created",
            "status_change",
        }
        for event in view.events:
            assert UPS not in event.description
            assert "XK4471Q" not in event.description
            assert "UPS" not in event.description


class TestNotifications:
    async def test_assignment_and_status_notify(
        self, notifying_engine: ShipmentLifecycleEngine, notifier
    ) -> None:
        shipment = await notifying_engine.create_shipment()
        await notifying_engine.tracking.assign_tracking(shipment.id, "ups", UPS)
        await notifying_engine.status.update_status(
            shipment.id, ShipmentStatus.IN_TRANSIT, EventSource.MANUAL
        )
        kinds = [kind for kind, _, _ in notifier.sent]
        assert kinds == [TRACKING_ASSIGNED, STATUS_CHANGED]
        assert notifier.sent[1][2]["previous_status"] == "pending"
        assert notifier.sent[1][2]["status"] == "in-transit"
