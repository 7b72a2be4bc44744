"""Tracking provider registry."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from litestar_shipdesk.adapters.shipengine import (
    ShipEngineAdapter,
    ShipEngineSettings,
)
from litestar_shipdesk.config import ShipdeskConfig
from litestar_shipdesk.enums import TrackingProvider
from litestar_shipdesk.exceptions import ConfigurationError
from litestar_shipdesk.protocols import TrackingAdapter

logger = logging.getLogger(__name__)


def _shipengine(settings: dict[str, Any]) -> TrackingAdapter:
    return ShipEngineAdapter(ShipEngineSettings(**settings))


# Every supported provider must have an entry here.
ADAPTERS: dict[TrackingProvider, Callable[[dict[str, Any]], TrackingAdapter]] = {
    TrackingProvider.SHIPENGINE: _shipengine,
}


def create_tracking_adapter(config: ShipdeskConfig) -> TrackingAdapter | None:
    """Build the configured adapter, or ``None`` when no provider is set.

    Raises:
        ConfigurationError: unknown provider or invalid provider settings.
    """
    if not config.tracking_provider:
        return None
    try:
        provider = TrackingProvider(config.tracking_provider.lower())
    except ValueError:
        raise ConfigurationError(
            f"Unsupported tracking API provider: {config.tracking_provider}",
            details={"supported": [str(p) for p in TrackingProvider]},
        ) from None

    settings = config.provider_settings(str(provider))
    try:
        adapter = ADAPTERS[provider](settings)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid settings for tracking provider {provider}: {exc}"
        ) from exc
    logger.info("Tracking API provider configured: %s", provider)
    return adapter
