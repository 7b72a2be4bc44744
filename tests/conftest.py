"""Shared fixtures for litestar-shipdesk tests."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest
from litestar import Litestar
from litestar.testing import TestClient

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.engine import ShipmentLifecycleEngine
from litestar_shipdesk.enums import CarrierEventKind, TrackingAssignmentStatus
from litestar_shipdesk.exceptions import (
    MalformedWebhookError,
    TrackingConflictError,
    UpstreamIntegrationError,
)
from litestar_shipdesk.plugin import create_shipdesk_router
from litestar_shipdesk.tracking import tracking_conflict_error
from litestar_shipdesk.types import (
    CarrierEvent,
    CarrierTrackingResult,
    WebhookBatch,
    WebhookUpdate,
)

ADMIN_HEADERS = {"x-shipdesk-admin-id": "admin-1"}


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


@dataclass
class DemoShipment:
    id: str
    tracking_code: str
    status: str = "pending"
    courier: str | None = None
    courier_tracking_number: str | None = None
    shipping_method: str | None = None
    user_assignment_status: str = "unassigned"
    tracking_assignment_status: str = "unassigned"
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
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class DemoEvent:
    id: str
    shipment_id: str
    event_type: str
    description: str
    source: str
    event_time: datetime
    status: str | None = None
    location: str | None = None
    source_id: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    event_metadata: dict[str, Any] = field(default_factory=dict)


class InMemoryShipmentRepository:
    def __init__(self) -> None:
        self.items: dict[str, DemoShipment] = {}
        self._counter = 0

    async def get_by_id(self, shipment_id: str) -> DemoShipment:
        return self.items[shipment_id]

    async def get_by_tracking_code(
        self, tracking_code: str
    ) -> DemoShipment | None:
        return next(
            (
                s
                for s in self.items.values()
                if s.tracking_code == tracking_code
            ),
            None,
        )

    async def create(self, **kwargs) -> DemoShipment:
        self._counter += 1
        shipment = DemoShipment(id=f"s-{self._counter}", **kwargs)
        self.items[shipment.id] = shipment
        return shipment

    async def update(self, shipment_id: str, **fields) -> DemoShipment:
        shipment = self.items[shipment_id]
        for key, value in fields.items():
            setattr(shipment, key, value)
        return shipment

    async def find_tracking_holder(
        self,
        courier: str,
        tracking_number: str,
        exclude_shipment_id: str | None = None,
    ) -> DemoShipment | None:
        for shipment in self.items.values():
            if shipment.id == exclude_shipment_id:
                continue
            if (
                shipment.courier == courier
                and shipment.courier_tracking_number == tracking_number
            ):
                return shipment
        return None

    async def assign_tracking(
        self,
        shipment_id: str,
        *,
        courier: str,
        tracking_number: str | None,
        shipping_method: str | None = None,
    ) -> DemoShipment:
        shipment = self.items[shipment_id]
        holder = (
            await self.find_tracking_holder(
                courier, tracking_number, shipment_id
            )
            if tracking_number
            else None
        )
        if holder is not None:
            raise tracking_conflict_error(holder, courier, tracking_number)
        if tracking_number != shipment.courier_tracking_number:
            shipment.api_tracking_id = None
        shipment.courier = courier
        shipment.courier_tracking_number = tracking_number
        if shipping_method is not None:
            shipment.shipping_method = shipping_method
        shipment.tracking_assignment_status = str(
            TrackingAssignmentStatus.ASSIGNED
            if tracking_number
            else TrackingAssignmentStatus.UNASSIGNED
        )
        return shipment

    async def reassign_tracking(
        self,
        from_shipment_id: str,
        to_shipment_id: str,
        *,
        courier: str,
        tracking_number: str,
        shipping_method: str | None = None,
    ) -> tuple[DemoShipment, DemoShipment]:
        previous = self.items[from_shipment_id]
        if to_shipment_id not in self.items:
            raise KeyError(to_shipment_id)
        if (
            previous.courier != courier
            or previous.courier_tracking_number != tracking_number
        ):
            holder = await self.find_tracking_holder(
                courier, tracking_number, to_shipment_id
            )
            if holder is not None:
                raise tracking_conflict_error(holder, courier, tracking_number)
            raise TrackingConflictError("Tracking number no longer held")
        previous.courier_tracking_number = None
        previous.api_tracking_id = None
        previous.tracking_assignment_status = str(
            TrackingAssignmentStatus.UNASSIGNED
        )
        target = await self.assign_tracking(
            to_shipment_id,
            courier=courier,
            tracking_number=tracking_number,
            shipping_method=shipping_method,
        )
        return previous, target

    async def find_by_carrier_reference(
        self,
        *,
        tracking_id: str | None = None,
        tracking_number: str | None = None,
        courier: str | None = None,
    ) -> list[DemoShipment]:
        return [
            s
            for s in self.items.values()
            if (courier is None or s.courier == courier)
            and (
                (tracking_id and s.api_tracking_id == tracking_id)
                or (
                    tracking_number
                    and s.courier_tracking_number == tracking_number
                )
            )
        ]

    async def list_existing_ids(self, shipment_ids) -> set[str]:
        return {sid for sid in shipment_ids if sid in self.items}

    async def list_due_for_sync(
        self, statuses, synced_before: datetime, limit: int
    ) -> list[DemoShipment]:
        due = [
            s
            for s in self.items.values()
            if s.status in statuses
            and s.courier_tracking_number
            and (s.last_api_sync is None or s.last_api_sync < synced_before)
        ]
        return due[:limit]

    async def list_with_tracking_numbers(self) -> list[DemoShipment]:
        return [s for s in self.items.values() if s.courier_tracking_number]


class InMemoryEventStore:
    def __init__(self) -> None:
        self.items: list[DemoEvent] = []

    async def add(self, **fields) -> DemoEvent:
        event = DemoEvent(id=str(uuid.uuid4()), **fields)
        self.items.append(event)
        return event

    async def exists(
        self, shipment_id: str, source: str, event_time: datetime
    ) -> bool:
        return any(
            e.shipment_id == shipment_id
            and e.source == source
            and e.event_time == event_time
            for e in self.items
        )

    async def list_for_shipment(
        self,
        shipment_id: str,
        *,
        sources=None,
        event_types=None,
        start=None,
        end=None,
        descending: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[DemoEvent], int]:
        events = [
            e
            for e in self.items
            if e.shipment_id == shipment_id
            and (not sources or e.source in sources)
            and (not event_types or e.event_type in event_types)
            and (start is None or e.event_time >= start)
            and (end is None or e.event_time <= end)
        ]
        # Stable sort keeps insertion order for equal event times.
        events.sort(key=lambda e: e.event_time, reverse=descending)
        total = len(events)
        page = events[offset:]
        if limit is not None:
            page = page[:limit]
        return page, total


class FakeTrackingAdapter:
    """Scripted carrier API; records calls for assertions."""

    provider_name = "fake"

    def __init__(self) -> None:
        self.started: list[tuple[str, str]] = []
        self.polled: list[str] = []
        self.start_result: CarrierTrackingResult | None = None
        self.updates: list[CarrierEvent] = []
        self.fail_with: Exception | None = None
        self.valid_signature = "good-signature"

    async def start_tracking(
        self, courier: str, tracking_number: str
    ) -> CarrierTrackingResult:
        self.started.append((courier, tracking_number))
        if self.fail_with is not None:
            raise self.fail_with
        return self.start_result or CarrierTrackingResult(
            tracking_id=f"trk-{tracking_number}",
            tracking_number=tracking_number,
        )

    async def get_tracking_updates(
        self, tracking_id: str
    ) -> list[CarrierEvent]:
        self.polled.append(tracking_id)
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.updates)

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> bool:
        return signature == self.valid_signature

    def parse_webhook_payload(self, payload: dict) -> WebhookBatch:
        try:
            data = payload["data"]
            events = [
                CarrierEvent(
                    occurred_at=datetime.fromisoformat(e["occurred_at"]),
                    description=e.get("description", ""),
                    kind=CarrierEventKind(e.get("kind", "location_update")),
                    location=e.get("location"),
                )
                for e in data.get("events", [])
            ]
            return WebhookBatch(
                updates=[
                    WebhookUpdate(
                        tracking_number=data["tracking_number"],
                        tracking_id=data.get("tracking_id"),
                        courier=data.get("courier"),
                        events=events,
                    )
                ]
            )
        except (KeyError, ValueError) as exc:
            raise MalformedWebhookError(str(exc), self.provider_name) from exc


def upstream_error(message: str = "carrier down") -> UpstreamIntegrationError:
    return UpstreamIntegrationError(message, "fake")


@pytest.fixture()
def config() -> ShipdeskConfig:
    return ShipdeskConfig(sync_backoff_seconds=0)


@pytest.fixture()
def repository() -> InMemoryShipmentRepository:
    return InMemoryShipmentRepository()


@pytest.fixture()
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture()
def adapter() -> FakeTrackingAdapter:
    return FakeTrackingAdapter()


@pytest.fixture()
def engine(
    config: ShipdeskConfig,
    repository: InMemoryShipmentRepository,
    event_store: InMemoryEventStore,
) -> ShipmentLifecycleEngine:
    return ShipmentLifecycleEngine(
        config=config, shipments=repository, events=event_store
    )


@pytest.fixture()
def tracked_engine(
    config: ShipdeskConfig,
    repository: InMemoryShipmentRepository,
    event_store: InMemoryEventStore,
    adapter: FakeTrackingAdapter,
) -> ShipmentLifecycleEngine:
    return ShipmentLifecycleEngine(
        config=config,
        shipments=repository,
        events=event_store,
        tracking_adapter=adapter,
    )


@pytest.fixture()
def test_app(
    config: ShipdeskConfig,
    repository: InMemoryShipmentRepository,
    event_store: InMemoryEventStore,
    adapter: FakeTrackingAdapter,
) -> Litestar:
    router = create_shipdesk_router(
        config=config,
        repository=repository,
        event_store=event_store,
        tracking_adapter=adapter,
    )
    return Litestar(route_handlers=[router])


@pytest.fixture()
def client(test_app: Litestar) -> Iterator[TestClient]:
    with TestClient(app=test_app) as tc:
        yield tc


# ---------------------------------------------------------------------------
# SQLAlchemy fixtures
# ---------------------------------------------------------------------------

from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from litestar_shipdesk.contrib.sqlalchemy.models import Base  # noqa: E402


@pytest.fixture()
async def async_engine():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def async_session_factory(async_engine):
    return async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
