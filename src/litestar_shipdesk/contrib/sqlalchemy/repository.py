"""SQLAlchemy 2.0 async repository and event store implementations."""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from litestar_shipdesk.contrib.sqlalchemy.models import (
    ShipmentEventModel,
    ShipmentModel,
)
from litestar_shipdesk.enums import TrackingAssignmentStatus
from litestar_shipdesk.exceptions import TrackingConflictError
from litestar_shipdesk.tracking import tracking_conflict_error


class SQLAlchemyShipmentRepository:
    """Shipment repository backed by SQLAlchemy async sessions.

    Implements the ShipmentRepository protocol.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, shipment_id: str) -> ShipmentModel:
        """Get a shipment by ID. Raises KeyError if not found."""
        async with self._session_factory() as session:
            result = await session.get(ShipmentModel, shipment_id)
            if result is None:
                raise KeyError(shipment_id)
            session.expunge(result)
            return result

    async def get_by_tracking_code(
        self, tracking_code: str
    ) -> ShipmentModel | None:
        async with self._session_factory() as session:
            stmt = select(ShipmentModel).where(
                ShipmentModel.tracking_code == tracking_code
            )
            result = (await session.execute(stmt)).scalar_one_or_none()
            if result is not None:
                session.expunge(result)
            return result

    async def create(self, **kwargs: Any) -> ShipmentModel:
        """Create a new shipment record."""
        async with self._session_factory() as session:
            shipment = ShipmentModel(**_as_strings(kwargs))
            session.add(shipment)
            await session.commit()
            await session.refresh(shipment)
            session.expunge(shipment)
            return shipment

    async def update(self, shipment_id: str, **fields: Any) -> ShipmentModel:
        """Update the given fields. Raises KeyError if not found."""
        async with self._session_factory() as session:
            shipment = await session.get(ShipmentModel, shipment_id)
            if shipment is None:
                raise KeyError(shipment_id)
            for key, value in _as_strings(fields).items():
                if hasattr(shipment, key):
                    setattr(shipment, key, value)
            await session.commit()
            await session.refresh(shipment)
            session.expunge(shipment)
            return shipment

    async def find_tracking_holder(
        self,
        courier: str,
        tracking_number: str,
        exclude_shipment_id: str | None = None,
    ) -> ShipmentModel | None:
        async with self._session_factory() as session:
            holder = await _find_holder(
                session, courier, tracking_number, exclude_shipment_id
            )
            if holder is not None:
                session.expunge(holder)
            return holder

    async def assign_tracking(
        self,
        shipment_id: str,
        *,
        courier: str,
        tracking_number: str | None,
        shipping_method: str | None = None,
    ) -> ShipmentModel:
        """Lock the row, re-check the holder and assign in one transaction."""
        async with self._session_factory() as session:
            async with session.begin():
                shipment = await _lock(session, shipment_id)
                if tracking_number:
                    holder = await _find_holder(
                        session,
                        courier,
                        tracking_number,
                        shipment_id,
                        for_update=True,
                    )
                    if holder is not None:
                        raise tracking_conflict_error(
                            holder, courier, tracking_number
                        )
                _apply_assignment(
                    shipment, courier, tracking_number, shipping_method
                )
            await session.refresh(shipment)
            session.expunge(shipment)
            return shipment

    async def reassign_tracking(
        self,
        from_shipment_id: str,
        to_shipment_id: str,
        *,
        courier: str,
        tracking_number: str,
        shipping_method: str | None = None,
    ) -> tuple[ShipmentModel, ShipmentModel]:
        """Move a tracking number between shipments in one transaction."""
        async with self._session_factory() as session:
            async with session.begin():
                previous = await _lock(session, from_shipment_id)
                target = await _lock(session, to_shipment_id)
                if (
                    previous.courier != courier
                    or previous.courier_tracking_number != tracking_number
                ):
                    # The holder changed since the conflict was read.
                    holder = await _find_holder(
                        session,
                        courier,
                        tracking_number,
                        to_shipment_id,
                        for_update=True,
                    )
                    if holder is not None:
                        raise tracking_conflict_error(
                            holder, courier, tracking_number
                        )
                    raise TrackingConflictError(
                        f"Tracking number {tracking_number} for {courier} "
                        f"is no longer assigned to shipment "
                        f"{previous.tracking_code}",
                    )
                previous.courier_tracking_number = None
                previous.tracking_assignment_status = str(
                    TrackingAssignmentStatus.UNASSIGNED
                )
                previous.api_tracking_id = None
                previous.updated_at = datetime.now(tz=UTC)
                # Flush first so the target never shares the number.
                await session.flush()
                _apply_assignment(
                    target, courier, tracking_number, shipping_method
                )
            for shipment in (previous, target):
                await session.refresh(shipment)
                session.expunge(shipment)
            return previous, target

    async def find_by_carrier_reference(
        self,
        *,
        tracking_id: str | None = None,
        tracking_number: str | None = None,
        courier: str | None = None,
    ) -> list[ShipmentModel]:
        clauses = []
        if tracking_id:
            clauses.append(ShipmentModel.api_tracking_id == tracking_id)
        if tracking_number:
            clauses.append(
                ShipmentModel.courier_tracking_number == tracking_number
            )
        if not clauses:
            return []
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentModel)
                .where(or_(*clauses))
                .order_by(ShipmentModel.created_at)
            )
            if courier is not None:
                stmt = stmt.where(ShipmentModel.courier == courier)
            return await _fetch_all(session, stmt)

    async def list_existing_ids(self, shipment_ids: Iterable[str]) -> set[str]:
        ids = list(shipment_ids)
        if not ids:
            return set()
        async with self._session_factory() as session:
            stmt = select(ShipmentModel.id).where(ShipmentModel.id.in_(ids))
            result = await session.execute(stmt)
            return set(result.scalars().all())

    async def list_due_for_sync(
        self,
        statuses: Sequence[str],
        synced_before: datetime,
        limit: int,
    ) -> list[ShipmentModel]:
        """Tracked shipments in the given statuses not synced since cutoff."""
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentModel)
                .where(
                    ShipmentModel.status.in_(list(statuses)),
                    ShipmentModel.courier_tracking_number.is_not(None),
                    or_(
                        ShipmentModel.last_api_sync.is_(None),
                        ShipmentModel.last_api_sync < synced_before,
                    ),
                )
                .order_by(
                    ShipmentModel.last_api_sync.is_not(None),
                    ShipmentModel.last_api_sync,
                )
                .limit(limit)
            )
            return await _fetch_all(session, stmt)

    async def list_with_tracking_numbers(self) -> list[ShipmentModel]:
        async with self._session_factory() as session:
            stmt = select(ShipmentModel).where(
                ShipmentModel.courier_tracking_number.is_not(None)
            )
            return await _fetch_all(session, stmt)


class SQLAlchemyEventStore:
    """Append-only event store backed by SQLAlchemy async sessions.

    Implements the EventStore protocol.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def add(self, **fields: Any) -> ShipmentEventModel:
        async with self._session_factory() as session:
            event = ShipmentEventModel(**fields)
            session.add(event)
            await session.commit()
            await session.refresh(event)
            session.expunge(event)
            return event

    async def exists(
        self, shipment_id: str, source: str, event_time: datetime
    ) -> bool:
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentEventModel.id)
                .where(
                    ShipmentEventModel.shipment_id == shipment_id,
                    ShipmentEventModel.source == source,
                    ShipmentEventModel.event_time == event_time,
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def list_for_shipment(
        self,
        shipment_id: str,
        *,
        sources: Sequence[str] | None = None,
        event_types: Sequence[str] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        descending: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[ShipmentEventModel], int]:
        conditions = [ShipmentEventModel.shipment_id == shipment_id]
        if sources:
            conditions.append(
                ShipmentEventModel.source.in_([str(s) for s in sources])
            )
        if event_types:
            conditions.append(
                ShipmentEventModel.event_type.in_(
                    [str(t) for t in event_types]
                )
            )
        if start is not None:
            conditions.append(ShipmentEventModel.event_time >= start)
        if end is not None:
            conditions.append(ShipmentEventModel.event_time <= end)

        if descending:
            order = (
                ShipmentEventModel.event_time.desc(),
                ShipmentEventModel.recorded_at.desc(),
            )
        else:
            order = (
                ShipmentEventModel.event_time.asc(),
                ShipmentEventModel.recorded_at.asc(),
            )

        async with self._session_factory() as session:
            count_stmt = (
                select(func.count())
                .select_from(ShipmentEventModel)
                .where(*conditions)
            )
            total = (await session.execute(count_stmt)).scalar_one()
            stmt = (
                select(ShipmentEventModel)
                .where(*conditions)
                .order_by(*order)
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return await _fetch_all(session, stmt), total


def _as_strings(fields: dict[str, Any]) -> dict[str, Any]:
    # Status enums are stored as plain strings.
    return {
        key: str(value) if key.endswith("status") and value is not None
        else value
        for key, value in fields.items()
    }


def _apply_assignment(
    shipment: ShipmentModel,
    courier: str,
    tracking_number: str | None,
    shipping_method: str | None,
) -> None:
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
    shipment.updated_at = datetime.now(tz=UTC)


async def _lock(session: AsyncSession, shipment_id: str) -> ShipmentModel:
    stmt = (
        select(ShipmentModel)
        .where(ShipmentModel.id == shipment_id)
        .with_for_update()
    )
    shipment = (await session.execute(stmt)).scalar_one_or_none()
    if shipment is None:
        raise KeyError(shipment_id)
    return shipment


async def _find_holder(
    session: AsyncSession,
    courier: str,
    tracking_number: str,
    exclude_shipment_id: str | None,
    *,
    for_update: bool = False,
) -> ShipmentModel | None:
    stmt = select(ShipmentModel).where(
        ShipmentModel.courier == courier,
        ShipmentModel.courier_tracking_number == tracking_number,
    )
    if exclude_shipment_id is not None:
        stmt = stmt.where(ShipmentModel.id != exclude_shipment_id)
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt.limit(1))).scalar_one_or_none()


async def _fetch_all(session: AsyncSession, stmt) -> list:
    result = await session.execute(stmt)
    items = list(result.scalars().all())
    for item in items:
        session.expunge(item)
    return items
