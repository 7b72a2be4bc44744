"""Litestar example app backed by SQLAlchemy on SQLite.

Run with ``uvicorn examples.app:app``. Admin requests identify themselves
with the ``x-shipdesk-admin-id`` header; carrier tracking is enabled by
setting ``SHIPDESK_TRACKING_PROVIDER=shipengine`` and
``SHIPDESK_TRACKING_PROVIDERS='{"shipengine": {"api_key": "..."}}'``.
"""

from __future__ import annotations

import logging
import os

from litestar import Litestar
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.contrib.sqlalchemy.models import Base
from litestar_shipdesk.contrib.sqlalchemy.repository import (
    SQLAlchemyEventStore,
    SQLAlchemyShipmentRepository,
)
from litestar_shipdesk.plugin import create_shipdesk_router

DATABASE_URL = os.environ.get(
    "SHIPDESK_DATABASE_URL", "sqlite+aiosqlite:///shipdesk.db"
)

engine = create_async_engine(DATABASE_URL)
session_factory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()


logging.basicConfig(level=logging.INFO)

app = Litestar(
    route_handlers=[
        create_shipdesk_router(
            config=ShipdeskConfig(),
            repository=SQLAlchemyShipmentRepository(session_factory),
            event_store=SQLAlchemyEventStore(session_factory),
        )
    ],
    on_startup=[create_tables],
    on_shutdown=[dispose_engine],
)
