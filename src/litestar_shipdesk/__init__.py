# src/litestar_shipdesk/__init__.py
"""Litestar shipment lifecycle engine with carrier tracking and white-label public views."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "CreateShipmentRequest",
    "EventStore",
    "InvalidStatusTransitionError",
    "PublicTrackingResponse",
    "ShipdeskConfig",
    "ShipmentLifecycleEngine",
    "ShipmentNotFoundError",
    "ShipmentRepository",
    "ShipmentResponse",
    "ShipmentStatus",
    "TrackingConflictError",
    "__version__",
    "create_shipdesk_router",
]

if TYPE_CHECKING:
    from litestar_shipdesk.config import ShipdeskConfig
    from litestar_shipdesk.engine import ShipmentLifecycleEngine
    from litestar_shipdesk.enums import ShipmentStatus
    from litestar_shipdesk.exceptions import (
        ConfigurationError,
        InvalidStatusTransitionError,
        ShipmentNotFoundError,
        TrackingConflictError,
    )
    from litestar_shipdesk.plugin import create_shipdesk_router
    from litestar_shipdesk.protocols import EventStore, ShipmentRepository
    from litestar_shipdesk.schemas import (
        CreateShipmentRequest,
        PublicTrackingResponse,
        ShipmentResponse,
    )


def __getattr__(name: str):
    # Lazy imports to avoid loading all submodules on package import.
    if name == "ShipdeskConfig":
        from litestar_shipdesk.config import ShipdeskConfig

        return ShipdeskConfig
    if name == "create_shipdesk_router":
        from litestar_shipdesk.plugin import create_shipdesk_router

        return create_shipdesk_router
    if name == "ShipmentLifecycleEngine":
        from litestar_shipdesk.engine import ShipmentLifecycleEngine

        return ShipmentLifecycleEngine
    if name == "ShipmentStatus":
        from litestar_shipdesk.enums import ShipmentStatus

        return ShipmentStatus
    if name in (
        "ConfigurationError",
        "InvalidStatusTransitionError",
        "ShipmentNotFoundError",
        "TrackingConflictError",
    ):
        from litestar_shipdesk import exceptions

        return getattr(exceptions, name)
    if name in ("EventStore", "ShipmentRepository"):
        from litestar_shipdesk import protocols

        return getattr(protocols, name)
    if name in (
        "CreateShipmentRequest",
        "PublicTrackingResponse",
        "ShipmentResponse",
    ):
        from litestar_shipdesk import schemas

        return getattr(schemas, name)
    raise AttributeError(
        f"module 'litestar_shipdesk' has no attribute {name!r}"
    )
