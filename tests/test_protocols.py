"""Tests for protocol definitions."""

from litestar_shipdesk.adapters.shipengine import (
    ShipEngineAdapter,
    ShipEngineSettings,
)
from litestar_shipdesk.dependencies import HeaderCallerResolver
from litestar_shipdesk.notifications import LoggingNotificationDispatcher
from litestar_shipdesk.protocols import (
    CallerResolver,
    EventStore,
    NotificationDispatcher,
    RateLimitStore,
    Shipment,
    ShipmentEvent,
    ShipmentRepository,
    TrackingAdapter,
)
from litestar_shipdesk.rate_limit import StoreRateLimitStore

from conftest import (
    DemoEvent,
    DemoShipment,
    FakeTrackingAdapter,
    InMemoryEventStore,
    InMemoryShipmentRepository,
    utc,
)


def test_repository_has_all_methods():
    """ShipmentRepository covers lookups, writes and sync scheduling."""
    method_names = [
        "get_by_id",
        "get_by_tracking_code",
        "create",
        "update",
        "find_tracking_holder",
        "assign_tracking",
        "reassign_tracking",
        "find_by_carrier_reference",
        "list_existing_ids",
        "list_due_for_sync",
        "list_with_tracking_numbers",
    ]
    for method_name in method_names:
        assert hasattr(ShipmentRepository, method_name), (
            f"ShipmentRepository missing method: {method_name}"
        )


def test_in_memory_implementations_conform():
    assert isinstance(InMemoryShipmentRepository(), ShipmentRepository)
    assert isinstance(InMemoryEventStore(), EventStore)
    assert isinstance(FakeTrackingAdapter(), TrackingAdapter)


def test_records_conform():
    assert isinstance(DemoShipment(id="s-1", tracking_code="SC1"), Shipment)
    event = DemoEvent(
        id="e-1",
        shipment_id="s-1",
        event_type="location_update",
        description="x",
        source="webhook",
        event_time=utc(2026, 1, 1),
    )
    assert isinstance(event, ShipmentEvent)


def test_bundled_implementations_conform():
    adapter = ShipEngineAdapter(ShipEngineSettings(api_key="k"))
    assert isinstance(adapter, TrackingAdapter)
    assert isinstance(StoreRateLimitStore(), RateLimitStore)
    assert isinstance(HeaderCallerResolver("x-admin"), CallerResolver)
    assert isinstance(LoggingNotificationDispatcher(), NotificationDispatcher)


def test_non_conforming_is_not_instance():
    """A class without resolve() does not satisfy CallerResolver."""

    class Invalid:
        pass

    assert not isinstance(Invalid(), CallerResolver)
    assert not isinstance(Invalid(), ShipmentRepository)
