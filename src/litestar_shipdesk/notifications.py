"""Outbound notifications on assignment and status changes."""

from __future__ import annotations

import logging
from typing import Any

from litestar_shipdesk.protocols import NotificationDispatcher, Shipment

logger = logging.getLogger(__name__)

STATUS_CHANGED = "status_changed"
TRACKING_ASSIGNED = "tracking_assigned"


class LoggingNotificationDispatcher:
    """Default dispatcher; writes notifications to the log."""

    async def notify(
        self, kind: str, shipment: Shipment, **context: Any
    ) -> None:
        logger.info(
            "Notification %s for shipment %s: %s",
            kind,
            shipment.id,
            context,
        )


async def dispatch_notification(
    dispatcher: NotificationDispatcher | None,
    kind: str,
    shipment: Shipment,
    **context: Any,
) -> bool:
    """Send a notification; failures are logged, never raised.

    Returns whether the dispatcher accepted the notification.
    """
    if dispatcher is None:
        return False
    try:
        await dispatcher.notify(kind, shipment, **context)
    except Exception:
        logger.warning(
            "Failed to send %s notification for shipment %s",
            kind,
            shipment.id,
            exc_info=True,
        )
        return False
    return True
