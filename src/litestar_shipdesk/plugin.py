"""Router factory for litestar-shipdesk."""

from __future__ import annotations

from litestar import Router
from litestar.di import Provide

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.dependencies import (
    HeaderCallerResolver,
    provide_admin_id,
)
from litestar_shipdesk.engine import ShipmentLifecycleEngine
from litestar_shipdesk.exceptions import EXCEPTION_HANDLERS
from litestar_shipdesk.notifications import LoggingNotificationDispatcher
from litestar_shipdesk.protocols import (
    CallerResolver,
    EventStore,
    NotificationDispatcher,
    ShipmentRepository,
    TrackingAdapter,
)
from litestar_shipdesk.rate_limit import RateLimiter
from litestar_shipdesk.registry import create_tracking_adapter
from litestar_shipdesk.routes.shipments import ShipmentController
from litestar_shipdesk.routes.tracking import PublicTrackingController
from litestar_shipdesk.routes.webhooks import WebhookController


def create_shipdesk_router(
    *,
    config: ShipdeskConfig,
    repository: ShipmentRepository,
    event_store: EventStore,
    tracking_adapter: TrackingAdapter | None = None,
    notifier: NotificationDispatcher | None = None,
    rate_limiter: RateLimiter | None = None,
    caller_resolver: CallerResolver | None = None,
) -> Router:
    """Create a configured Litestar router.

    Args:
        config: Engine configuration.
        repository: Shipment persistence backend.
        event_store: Append-only event persistence backend.
        tracking_adapter: Carrier tracking adapter. Built from
            ``config.tracking_provider`` if not provided.
        notifier: Notification sink. Logs notifications if not provided.
        rate_limiter: Limiter for public tracking lookups.
        caller_resolver: Resolves the admin id of a request. Reads
            ``config.caller_id_header`` if not provided.

    Returns:
        A Litestar Router with admin, public tracking and webhook endpoints.
    """
    adapter = (
        tracking_adapter
        if tracking_adapter is not None
        else create_tracking_adapter(config)
    )
    engine = ShipmentLifecycleEngine(
        config=config,
        shipments=repository,
        events=event_store,
        tracking_adapter=adapter,
        notifier=notifier or LoggingNotificationDispatcher(),
    )
    actual_rate_limiter = rate_limiter or RateLimiter(
        limit=config.public_rate_limit,
        window_seconds=config.public_rate_window_seconds,
    )
    actual_resolver = caller_resolver or HeaderCallerResolver(
        config.caller_id_header
    )

    return Router(
        path="/",
        route_handlers=[
            ShipmentController,
            PublicTrackingController,
            WebhookController,
        ],
        dependencies={
            "config": Provide(lambda: config, sync_to_thread=False),
            "engine": Provide(lambda: engine, sync_to_thread=False),
            "rate_limiter": Provide(
                lambda: actual_rate_limiter,
                sync_to_thread=False,
            ),
            "caller_resolver": Provide(
                lambda: actual_resolver,
                sync_to_thread=False,
            ),
            "admin_id": Provide(provide_admin_id),
        },
        exception_handlers=EXCEPTION_HANDLERS,
    )
