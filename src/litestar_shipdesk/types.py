"""Value objects passed between engine components."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from litestar_shipdesk.enums import (
    CarrierEventKind,
    ConflictAction,
    EventSource,
    EventType,
    ShipmentStatus,
)


@dataclass(frozen=True)
class ConflictDetails:
    """Which shipment already holds a tracking number."""

    shipment_id: str
    tracking_code: str
    courier: str
    tracking_number: str


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error: str | None = None
    conflict: ConflictDetails | None = None


@dataclass(frozen=True)
class ResolutionOption:
    action: ConflictAction
    label: str
    description: str
    risk: str
    recommended: bool = False


@dataclass(frozen=True)
class ResolutionSuggestions:
    has_conflict: bool
    options: list[ResolutionOption]
    conflict: ConflictDetails | None = None


@dataclass(frozen=True)
class ResolutionResult:
    success: bool
    action: ConflictAction
    message: str
    affected_shipments: list[str] = field(default_factory=list)
    sync_error: str | None = None


@dataclass(frozen=True)
class AssignmentResult:
    shipment: Any
    sync_error: str | None = None


@dataclass(frozen=True)
class BulkAssignment:
    shipment_id: str
    courier: str
    tracking_number: str | None = None
    shipping_method: str | None = None


@dataclass(frozen=True)
class BulkItemError:
    shipment_id: str
    error_type: str
    message: str
    courier: str
    tracking_number: str | None = None
    conflict: ConflictDetails | None = None


@dataclass(frozen=True)
class BulkValidationResult:
    errors: list[BulkItemError]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def grouped(self) -> dict[str, list[BulkItemError]]:
        """Errors keyed by category, in first-seen order."""
        groups: dict[str, list[BulkItemError]] = {}
        for error in self.errors:
            groups.setdefault(error.error_type, []).append(error)
        return groups


@dataclass(frozen=True)
class BulkItemResult:
    shipment_id: str
    success: bool
    error: str | None = None
    sync_error: str | None = None


@dataclass
class BulkAssignmentReport:
    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total_processed - self.successful

    @property
    def errors(self) -> list[BulkItemResult]:
        return [r for r in self.results if not r.success]

    @property
    def sync_errors(self) -> list[BulkItemResult]:
        return [r for r in self.results if r.success and r.sync_error]


@dataclass(frozen=True)
class EventFilters:
    sources: tuple[EventSource, ...] | None = None
    event_types: tuple[EventType, ...] | None = None
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True)
class EventPage:
    events: list[Any]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.per_page else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class StatusUpdate:
    status: ShipmentStatus
    source: EventSource
    event_time: datetime
    source_id: str | None = None
    notes: str | None = None
    location: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class BatchResult:
    applied: list[StatusUpdate] = field(default_factory=list)
    failed: list[tuple[StatusUpdate, str]] = field(default_factory=list)


@dataclass(frozen=True)
class CarrierEvent:
    """A single carrier scan, normalised by a tracking adapter."""

    occurred_at: datetime
    description: str
    kind: CarrierEventKind = CarrierEventKind.LOCATION_UPDATE
    location: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CarrierTrackingResult:
    tracking_id: str
    tracking_number: str
    status: ShipmentStatus | None = None
    events: list[CarrierEvent] = field(default_factory=list)
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None


@dataclass(frozen=True)
class WebhookUpdate:
    tracking_number: str
    tracking_id: str | None = None
    courier: str | None = None
    status: ShipmentStatus | None = None
    events: list[CarrierEvent] = field(default_factory=list)


@dataclass(frozen=True)
class WebhookBatch:
    updates: list[WebhookUpdate]
    resource_type: str | None = None


@dataclass
class IngestReport:
    added: int = 0
    duplicates: int = 0
    status: ShipmentStatus | None = None
    rejected: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SyncResult:
    shipment_id: str
    success: bool
    events_added: int = 0
    status: ShipmentStatus | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchSyncReport:
    results: list[SyncResult]

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful


@dataclass(frozen=True)
class WebhookOutcome:
    shipment_ids: list[str]
    events_added: int = 0

    @property
    def shipment_id(self) -> str | None:
        return self.shipment_ids[0] if self.shipment_ids else None


@dataclass(frozen=True)
class WhiteLabelSettings:
    brand_name: str = "ShipCo"
    hide_carrier_info: bool = True
    carrier_placeholder: str = "ShipCo Logistics"
    show_estimated_delivery: bool = True
    sanitize_locations: bool = True


@dataclass(frozen=True)
class PublicTrackingEvent:
    event_type: str
    status: str | None
    description: str
    location: str | None
    event_time: datetime


@dataclass(frozen=True)
class PublicTrackingView:
    tracking_code: str
    carrier: str | None
    carrier_tracking_number: str | None
    status: str
    estimated_delivery: datetime | None
    actual_delivery: datetime | None
    events: list[PublicTrackingEvent]


@dataclass(frozen=True)
class LookupValidation:
    is_valid: bool
    normalized: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float
    limit: int


@dataclass(frozen=True)
class DuplicateAssignment:
    courier: str
    tracking_number: str
    shipment_ids: list[str]


@dataclass(frozen=True)
class TrackingStats:
    total_assigned: int
    by_courier: dict[str, int]
    duplicates: list[DuplicateAssignment]
