"""Shipment lifecycle vocabulary."""

from __future__ import annotations

from enum import StrEnum


class ShipmentStatus(StrEnum):
    PENDING = "pending"
    IN_TRANSIT = "in-transit"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED}
)

# Shipments still moving; candidates for carrier polling.
ACTIVE_STATUSES = (
    ShipmentStatus.PENDING,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
)


class EventType(StrEnum):
    SHIPMENT_CREATED = "shipment_created"
    STATUS_CHANGE = "status_change"
    LOCATION_UPDATE = "location_update"
    DELIVERY_ATTEMPT = "delivery_attempt"
    EXCEPTION = "exception"
    API_SYNC = "api_sync"
    TRACKING_ASSIGNED = "tracking_assigned"


class EventSource(StrEnum):
    MANUAL = "manual"
    API_SYNC = "api_sync"
    WEBHOOK = "webhook"
    USER_ACTION = "user_action"


AUTOMATED_SOURCES = frozenset({EventSource.API_SYNC, EventSource.WEBHOOK})


class UserAssignmentStatus(StrEnum):
    UNASSIGNED = "unassigned"
    SIGNUP_SENT = "signup_sent"
    SIGNUP_COMPLETED = "signup_completed"
    ASSIGNED = "assigned"


class TrackingAssignmentStatus(StrEnum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"


class ApiSyncStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Carrier(StrEnum):
    UPS = "ups"
    FEDEX = "fedex"
    USPS = "usps"
    DHL = "dhl"
    CANADA_POST = "canada_post"
    PUROLATOR = "purolator"
    TNT = "tnt"
    ARAMEX = "aramex"


class ConflictAction(StrEnum):
    OVERRIDE = "override"
    SKIP = "skip"
    UPDATE_EXISTING = "update_existing"


class TrackingProvider(StrEnum):
    SHIPENGINE = "shipengine"


def normalize_courier(courier: str) -> str:
    """Canonical courier key: lower case, whitespace collapsed to ``_``."""
    return "_".join(courier.strip().lower().split())


class CarrierEventKind(StrEnum):
    """What a carrier scan means, before it is mapped to a status."""

    PICKUP = "pickup"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DELIVERY_ATTEMPT = "delivery_attempt"
    EXCEPTION = "exception"
    CANCELLED = "cancelled"
    LOCATION_UPDATE = "location_update"
