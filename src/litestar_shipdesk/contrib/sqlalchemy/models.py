"""SQLAlchemy 2.0 async models for shipments and their event ledger."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops tzinfo on the way out; values are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Base(DeclarativeBase):
    """Base class for all shipdesk models."""


class ShipmentModel(Base):
    """Shipment record implementing the Shipment protocol."""

    __tablename__ = "shipdesk_shipments"
    __table_args__ = (
        Index(
            "ix_shipdesk_shipments_courier_tracking",
            "courier",
            "courier_tracking_number",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    tracking_code: Mapped[str] = mapped_column(
        String(16), unique=True, index=True
    )
    courier: Mapped[str | None] = mapped_column(
        String(32), nullable=True, default=None
    )
    courier_tracking_number: Mapped[str | None] = mapped_column(
        String(64), nullable=True, default=None
    )
    shipping_method: Mapped[str | None] = mapped_column(
        String(64), nullable=True, default=None
    )
    status: Mapped[str] = mapped_column(
        String(32), index=True, default="pending"
    )
    user_assignment_status: Mapped[str] = mapped_column(
        String(32), default="unassigned"
    )
    tracking_assignment_status: Mapped[str] = mapped_column(
        String(32), default="unassigned"
    )
    api_tracking_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True, default=None
    )
    api_provider: Mapped[str | None] = mapped_column(
        String(32), nullable=True, default=None
    )
    last_api_sync: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, default=None
    )
    api_sync_status: Mapped[str | None] = mapped_column(
        String(16), nullable=True, default=None
    )
    api_sync_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, default=None
    )
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    estimated_delivery: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, default=None
    )
    actual_delivery: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, default=None
    )
    customer_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True, default=None
    )
    customer_email: Mapped[str | None] = mapped_column(
        String(255), nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        onupdate=_utcnow,
    )


class ShipmentEventModel(Base):
    """Append-only ledger entry implementing the ShipmentEvent protocol."""

    __tablename__ = "shipdesk_shipment_events"
    __table_args__ = (
        Index(
            "ix_shipdesk_events_shipment_time",
            "shipment_id",
            "event_time",
        ),
        Index(
            "ix_shipdesk_events_dedupe",
            "shipment_id",
            "source",
            "event_time",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    shipment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("shipdesk_shipments.id", ondelete="CASCADE"),
    )
    event_type: Mapped[str] = mapped_column(String(32))
    status: Mapped[str | None] = mapped_column(
        String(32), nullable=True, default=None
    )
    description: Mapped[str] = mapped_column(Text, default="")
    location: Mapped[str | None] = mapped_column(
        String(255), nullable=True, default=None
    )
    source: Mapped[str] = mapped_column(String(32))
    source_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, default=None
    )
    event_time: Mapped[datetime] = mapped_column(UTCDateTime)
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
    )
    # "metadata" is reserved on declarative classes.
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict
    )
