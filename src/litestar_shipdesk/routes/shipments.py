"""Admin shipment endpoints."""

from __future__ import annotations

import logging
from typing import Annotated, ClassVar

from litestar import Controller, Response, get, post
from litestar.params import Dependency
from litestar.status_codes import HTTP_200_OK, HTTP_207_MULTI_STATUS

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.engine import ShipmentLifecycleEngine
from litestar_shipdesk.enums import EventSource, EventType
from litestar_shipdesk.schemas import (
    AssignTrackingRequest,
    AssignTrackingResponse,
    BatchSyncRequest,
    BatchSyncResponse,
    BulkAssignRequest,
    BulkAssignResponse,
    CreateShipmentRequest,
    EventPageResponse,
    ResolutionResponse,
    ResolveConflictRequest,
    ShipmentResponse,
    StatusUpdateRequest,
    SyncResponse,
    TrackingStatsResponse,
)
from litestar_shipdesk.types import EventFilters

logger = logging.getLogger(__name__)

Engine = Annotated[ShipmentLifecycleEngine, Dependency(skip_validation=True)]


class ShipmentController(Controller):
    """Shipment lifecycle endpoints for authenticated admins."""

    path = "/shipments"
    tags: ClassVar[list[str]] = ["shipments"]

    @get("/health")
    async def shipments_health(self, engine: Engine) -> dict[str, str]:
        """Healthcheck endpoint for shipment routes."""
        adapter = engine.synchronizer.adapter
        return {
            "status": "ok",
            "tracking_provider": adapter.provider_name if adapter else "none",
        }

    @post("/")
    async def create_shipment(
        self,
        data: CreateShipmentRequest,
        engine: Engine,
        admin_id: str,
    ) -> ShipmentResponse:
        """Create a pending shipment with a fresh internal tracking code."""
        shipment = await engine.create_shipment(
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            estimated_delivery=data.estimated_delivery,
            admin_id=admin_id,
        )
        return ShipmentResponse.from_shipment(shipment)

    @get("/tracking-validation/stats")
    async def tracking_stats(
        self, engine: Engine, admin_id: str
    ) -> TrackingStatsResponse:
        stats = await engine.tracking.get_tracking_number_stats()
        return TrackingStatsResponse.from_stats(stats)

    @post("/bulk-assign-tracking")
    async def bulk_assign_tracking(
        self,
        data: BulkAssignRequest,
        engine: Engine,
        config: Annotated[ShipdeskConfig, Dependency(skip_validation=True)],
        admin_id: str,
    ) -> Response[BulkAssignResponse]:
        """Assign tracking in bulk.

        The batch is validated as a whole before any write; items are then
        applied individually, so the response is 207 on partial success.
        """
        report = await engine.tracking.bulk_assign_tracking(
            [item.to_assignment() for item in data.assignments],
            admin_id,
            batch_size=config.bulk_batch_size,
        )
        return Response(
            content=BulkAssignResponse.from_report(report),
            status_code=HTTP_207_MULTI_STATUS if report.failed else HTTP_200_OK,
        )

    @post("/sync", status_code=HTTP_200_OK)
    async def batch_sync(
        self,
        data: BatchSyncRequest,
        engine: Engine,
        admin_id: str,
    ) -> BatchSyncResponse:
        """Sync the listed shipments, or every shipment due for a sync."""
        report = await engine.synchronizer.batch_sync(data.shipment_ids)
        return BatchSyncResponse(
            total=len(report.results),
            successful=report.successful,
            failed=report.failed,
            results=[SyncResponse.from_result(r) for r in report.results],
        )

    @get("/{shipment_id:str}")
    async def get_shipment(
        self, shipment_id: str, engine: Engine, admin_id: str
    ) -> ShipmentResponse:
        shipment = await engine.get_shipment(shipment_id)
        return ShipmentResponse.from_shipment(shipment)

    @get("/{shipment_id:str}/events")
    async def list_events(
        self,
        shipment_id: str,
        engine: Engine,
        admin_id: str,
        page: int = 1,
        per_page: int = 50,
        source: EventSource | None = None,
        event_type: EventType | None = None,
        sort_order: str = "asc",
    ) -> EventPageResponse:
        """Paginated event history, oldest first by default."""
        filters = EventFilters(
            sources=(source,) if source else None,
            event_types=(event_type,) if event_type else None,
        )
        result = await engine.ledger.get_shipment_events(
            shipment_id,
            page=page,
            per_page=per_page,
            filters=filters,
            sort_order=sort_order,
        )
        return EventPageResponse.from_page(result)

    @post("/{shipment_id:str}/status", status_code=HTTP_200_OK)
    async def update_status(
        self,
        shipment_id: str,
        data: StatusUpdateRequest,
        engine: Engine,
        admin_id: str,
    ) -> ShipmentResponse:
        shipment = await engine.status.update_status(
            shipment_id,
            data.status,
            EventSource.MANUAL,
            source_id=admin_id,
            notes=data.notes,
            event_time=data.event_time,
            override=data.override,
            location=data.location,
        )
        return ShipmentResponse.from_shipment(shipment)

    @post("/{shipment_id:str}/assign-tracking", status_code=HTTP_200_OK)
    async def assign_tracking(
        self,
        shipment_id: str,
        data: AssignTrackingRequest,
        engine: Engine,
        admin_id: str,
    ) -> AssignTrackingResponse:
        """Assign courier tracking; 409 with resolution options on conflict."""
        result = await engine.tracking.assign_tracking(
            shipment_id,
            data.courier,
            data.tracking_number,
            data.shipping_method,
            admin_id,
        )
        return AssignTrackingResponse(
            shipment=ShipmentResponse.from_shipment(result.shipment),
            sync_error=result.sync_error,
        )

    @post(
        "/{shipment_id:str}/assign-tracking/resolve-conflict",
        status_code=HTTP_200_OK,
    )
    async def resolve_conflict(
        self,
        shipment_id: str,
        data: ResolveConflictRequest,
        engine: Engine,
        admin_id: str,
    ) -> ResolutionResponse:
        result = await engine.tracking.resolve_tracking_conflict(
            data.courier,
            data.tracking_number,
            shipment_id,
            data.resolution.action,
            admin_id,
            shipping_method=data.shipping_method,
            reason=data.resolution.reason,
        )
        return ResolutionResponse.from_result(result)

    @post("/{shipment_id:str}/sync", status_code=HTTP_200_OK)
    async def sync_shipment(
        self, shipment_id: str, engine: Engine, admin_id: str
    ) -> SyncResponse:
        result = await engine.synchronizer.sync_with_api(shipment_id)
        return SyncResponse.from_result(result)
