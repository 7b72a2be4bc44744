"""Carrier webhook endpoints."""

from __future__ import annotations

import logging
from typing import Annotated, ClassVar

from litestar import Controller, Request, get, post
from litestar.params import Dependency
from litestar.status_codes import HTTP_200_OK

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.engine import ShipmentLifecycleEngine
from litestar_shipdesk.schemas import WebhookResponse

logger = logging.getLogger(__name__)


class WebhookController(Controller):
    """Inbound carrier tracking webhooks."""

    path = "/webhooks"
    tags: ClassVar[list[str]] = ["webhooks"]

    @get("/shipment-tracking")
    async def webhook_health(
        self,
        engine: Annotated[
            ShipmentLifecycleEngine, Dependency(skip_validation=True)
        ],
    ) -> dict[str, str]:
        adapter = engine.synchronizer.adapter
        return {
            "status": "ok",
            "provider": adapter.provider_name if adapter else "none",
        }

    @post("/shipment-tracking", status_code=HTTP_200_OK)
    async def receive_tracking_webhook(
        self,
        request: Request,
        engine: Annotated[
            ShipmentLifecycleEngine, Dependency(skip_validation=True)
        ],
        config: Annotated[ShipdeskConfig, Dependency(skip_validation=True)],
    ) -> WebhookResponse:
        """Ingest a carrier webhook.

        Answers 200 once the payload is verified and parsed, even when no
        shipment matches, so providers do not retry.
        """
        raw_body = await request.body()
        signature = next(
            (
                request.headers[name]
                for name in config.webhook_signature_headers
                if name in request.headers
            ),
            None,
        )
        outcome = await engine.synchronizer.handle_webhook(raw_body, signature)
        if outcome.shipment_id is None:
            logger.info("Webhook accepted with no matching shipment")
        return WebhookResponse(
            shipment_id=outcome.shipment_id,
            shipment_ids=outcome.shipment_ids,
            events_added=outcome.events_added,
        )
