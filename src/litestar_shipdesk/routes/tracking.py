"""Public tracking endpoint."""

from __future__ import annotations

import logging
import math
import time
from typing import Annotated, ClassVar

from litestar import Controller, Request, Response, get
from litestar.params import Dependency
from litestar.status_codes import HTTP_429_TOO_MANY_REQUESTS

from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.engine import ShipmentLifecycleEngine
from litestar_shipdesk.rate_limit import RateLimiter, client_key
from litestar_shipdesk.schemas import PublicTrackingResponse

logger = logging.getLogger(__name__)


class PublicTrackingController(Controller):
    """Unauthenticated, rate-limited, white-labelled tracking lookups."""

    path = "/tracking"
    tags: ClassVar[list[str]] = ["tracking"]

    @get("/{tracking_code:str}")
    async def get_tracking(
        self,
        tracking_code: str,
        request: Request,
        engine: Annotated[
            ShipmentLifecycleEngine, Dependency(skip_validation=True)
        ],
        rate_limiter: Annotated[RateLimiter, Dependency(skip_validation=True)],
        config: Annotated[ShipdeskConfig, Dependency(skip_validation=True)],
    ) -> Response:
        client = request.client.host if request.client else None
        decision = await rate_limiter.hit(client_key(request.headers, client))
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
        }
        if not decision.allowed:
            retry_after = max(1, math.ceil(decision.reset_at - time.time()))
            logger.info("Public tracking rate limit hit for %s", client)
            return Response(
                content={
                    "detail": "Too many requests, please try again later",
                    "code": "RATE_LIMITED",
                },
                status_code=HTTP_429_TOO_MANY_REQUESTS,
                headers={**headers, "Retry-After": str(retry_after)},
            )

        view = await engine.get_public_tracking(tracking_code)
        return Response(
            content=PublicTrackingResponse.from_view(
                view,
                engine.white_label.format_tracking_code_for_display(
                    view.tracking_code
                ),
            ),
            headers={
                **headers,
                "Cache-Control": f"public, max-age={config.public_cache_max_age}",
            },
        )
