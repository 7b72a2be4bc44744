"""Request/response schemas for HTTP endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from litestar_shipdesk.enums import ConflictAction, ShipmentStatus
from litestar_shipdesk.types import (
    BulkAssignment,
    BulkAssignmentReport,
    BulkItemResult,
    EventPage,
    PublicTrackingView,
    ResolutionResult,
    SyncResult,
    TrackingStats,
)


class CreateShipmentRequest(BaseModel):
    customer_name: str | None = None
    customer_email: str | None = None
    estimated_delivery: datetime | None = None


class ShipmentResponse(BaseModel):
    """Serialized shipment for admin callers."""

    id: str
    tracking_code: str
    status: str
    courier: str | None = None
    courier_tracking_number: str | None = None
    shipping_method: str | None = None
    user_assignment_status: str
    tracking_assignment_status: str
    api_tracking_id: str | None = None
    api_provider: str | None = None
    last_api_sync: datetime | None = None
    api_sync_status: str | None = None
    api_sync_error: str | None = None
    needs_review: bool = False
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_shipment(cls, shipment):
        return cls(
            id=str(shipment.id),
            tracking_code=shipment.tracking_code,
            status=str(shipment.status),
            courier=shipment.courier,
            courier_tracking_number=shipment.courier_tracking_number,
            shipping_method=shipment.shipping_method,
            user_assignment_status=str(shipment.user_assignment_status),
            tracking_assignment_status=str(
                shipment.tracking_assignment_status
            ),
            api_tracking_id=shipment.api_tracking_id,
            api_provider=shipment.api_provider,
            last_api_sync=shipment.last_api_sync,
            api_sync_status=shipment.api_sync_status,
            api_sync_error=shipment.api_sync_error,
            needs_review=bool(shipment.needs_review),
            estimated_delivery=shipment.estimated_delivery,
            actual_delivery=shipment.actual_delivery,
            customer_name=shipment.customer_name,
            customer_email=shipment.customer_email,
            created_at=shipment.created_at,
            updated_at=shipment.updated_at,
        )


class ShipmentEventResponse(BaseModel):
    id: str
    shipment_id: str
    event_type: str
    status: str | None = None
    description: str
    location: str | None = None
    source: str
    source_id: str | None = None
    event_time: datetime
    recorded_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event):
        return cls(
            id=str(event.id),
            shipment_id=str(event.shipment_id),
            event_type=str(event.event_type),
            status=event.status,
            description=event.description,
            location=event.location,
            source=str(event.source),
            source_id=event.source_id,
            event_time=event.event_time,
            recorded_at=event.recorded_at,
            metadata=dict(event.event_metadata or {}),
        )


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class EventPageResponse(BaseModel):
    events: list[ShipmentEventResponse]
    pagination: Pagination

    @classmethod
    def from_page(cls, page: EventPage):
        return cls(
            events=[ShipmentEventResponse.from_event(e) for e in page.events],
            pagination=Pagination(
                page=page.page,
                per_page=page.per_page,
                total=page.total,
                total_pages=page.total_pages,
                has_next=page.has_next,
                has_prev=page.has_prev,
            ),
        )


class StatusUpdateRequest(BaseModel):
    status: ShipmentStatus
    notes: str | None = None
    event_time: datetime | None = None
    location: str | None = None
    override: bool = False


class AssignTrackingRequest(BaseModel):
    courier: str = Field(min_length=1)
    tracking_number: str | None = None
    shipping_method: str | None = None


class AssignTrackingResponse(BaseModel):
    shipment: ShipmentResponse
    sync_error: str | None = None


class ResolutionChoice(BaseModel):
    action: ConflictAction
    reason: str | None = None


class ResolveConflictRequest(BaseModel):
    courier: str = Field(min_length=1)
    tracking_number: str = Field(min_length=1)
    shipping_method: str | None = None
    resolution: ResolutionChoice


class ResolutionResponse(BaseModel):
    success: bool
    action: str
    message: str
    affected_shipments: list[str]
    sync_error: str | None = None

    @classmethod
    def from_result(cls, result: ResolutionResult):
        return cls(
            success=result.success,
            action=str(result.action),
            message=result.message,
            affected_shipments=list(result.affected_shipments),
            sync_error=result.sync_error,
        )


class BulkAssignmentItem(BaseModel):
    shipment_id: str = Field(min_length=1)
    courier: str = Field(min_length=1)
    tracking_number: str | None = None
    shipping_method: str | None = None

    def to_assignment(self) -> BulkAssignment:
        return BulkAssignment(
            shipment_id=self.shipment_id,
            courier=self.courier,
            tracking_number=self.tracking_number,
            shipping_method=self.shipping_method,
        )


class BulkAssignRequest(BaseModel):
    assignments: list[BulkAssignmentItem] = Field(min_length=1, max_length=100)


class BulkItemResponse(BaseModel):
    shipment_id: str
    success: bool
    error: str | None = None
    sync_error: str | None = None

    @classmethod
    def from_result(cls, result: BulkItemResult):
        return cls(
            shipment_id=result.shipment_id,
            success=result.success,
            error=result.error,
            sync_error=result.sync_error,
        )


class BulkAssignResponse(BaseModel):
    total_processed: int
    successful: int
    failed: int
    errors: list[BulkItemResponse]
    sync_errors: list[BulkItemResponse]

    @classmethod
    def from_report(cls, report: BulkAssignmentReport):
        return cls(
            total_processed=report.total_processed,
            successful=report.successful,
            failed=report.failed,
            errors=[BulkItemResponse.from_result(r) for r in report.errors],
            sync_errors=[
                BulkItemResponse.from_result(r) for r in report.sync_errors
            ],
        )


class SyncResponse(BaseModel):
    shipment_id: str
    success: bool
    events_added: int = 0
    status: str | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, result: SyncResult):
        return cls(
            shipment_id=result.shipment_id,
            success=result.success,
            events_added=result.events_added,
            status=str(result.status) if result.status else None,
            error=result.error,
        )


class BatchSyncRequest(BaseModel):
    shipment_ids: list[str] | None = Field(default=None, max_length=100)


class BatchSyncResponse(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[SyncResponse]


class DuplicateAssignmentResponse(BaseModel):
    courier: str
    tracking_number: str
    shipment_ids: list[str]


class TrackingStatsResponse(BaseModel):
    total_assigned: int
    by_courier: dict[str, int]
    duplicates: list[DuplicateAssignmentResponse]

    @classmethod
    def from_stats(cls, stats: TrackingStats):
        return cls(
            total_assigned=stats.total_assigned,
            by_courier=dict(stats.by_courier),
            duplicates=[
                DuplicateAssignmentResponse(
                    courier=d.courier,
                    tracking_number=d.tracking_number,
                    shipment_ids=list(d.shipment_ids),
                )
                for d in stats.duplicates
            ],
        )


class PublicTrackingEventResponse(BaseModel):
    event_type: str
    status: str | None = None
    description: str
    location: str | None = None
    event_time: datetime


class PublicTrackingResponse(BaseModel):
    """Customer-facing tracking payload; never carries carrier data."""

    tracking_code: str
    display_code: str
    carrier: str | None = None
    carrier_tracking_number: str | None = None
    status: str
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    events: list[PublicTrackingEventResponse]

    @classmethod
    def from_view(cls, view: PublicTrackingView, display_code: str):
        return cls(
            tracking_code=view.tracking_code,
            display_code=display_code,
            carrier=view.carrier,
            carrier_tracking_number=view.carrier_tracking_number,
            status=view.status,
            estimated_delivery=view.estimated_delivery,
            actual_delivery=view.actual_delivery,
            events=[
                PublicTrackingEventResponse(
                    event_type=e.event_type,
                    status=e.status,
                    description=e.description,
                    location=e.location,
                    event_time=e.event_time,
                )
                for e in view.events
            ],
        )


class WebhookResponse(BaseModel):
    """Webhook handling response payload."""

    received: bool = True
    shipment_id: str | None = None
    shipment_ids: list[str] = Field(default_factory=list)
    events_added: int = 0
