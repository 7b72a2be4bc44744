"""Litestar adapter configuration."""

from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from litestar_shipdesk.types import WhiteLabelSettings


class ShipdeskConfig(BaseSettings):
    """Runtime config for the shipment lifecycle engine.

    Reads from environment variables with SHIPDESK_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="SHIPDESK_")

    tracking_provider: str | None = None
    tracking_providers: dict[str, dict[str, Any]] = Field(
        default_factory=dict
    )

    # Carrier sync settings
    sync_max_retries: int = 3
    sync_backoff_seconds: float = 1.0
    sync_max_concurrent: int = 5
    sync_stale_after_seconds: int = 3600
    sync_batch_limit: int = 100

    bulk_batch_size: int = 10
    bulk_max_items: int = 100

    # Public tracking
    public_rate_limit: int = 10
    public_rate_window_seconds: int = 60
    public_cache_max_age: int = 300

    # White-label
    brand_name: str = "ShipCo"
    hide_carrier_info: bool = True
    carrier_placeholder: str = "ShipCo Logistics"
    show_estimated_delivery: bool = True
    sanitize_locations: bool = True

    caller_id_header: str = "x-shipdesk-admin-id"
    # Checked in order; providers disagree on the name.
    webhook_signature_headers: list[str] = Field(
        default_factory=lambda: [
            "x-shipengine-signature",
            "x-signature",
            "signature",
        ]
    )

    def provider_settings(self, provider: str) -> dict[str, Any]:
        return dict(self.tracking_providers.get(provider, {}))

    def white_label_settings(self) -> WhiteLabelSettings:
        return WhiteLabelSettings(
            brand_name=self.brand_name,
            hide_carrier_info=self.hide_carrier_info,
            carrier_placeholder=self.carrier_placeholder,
            show_estimated_delivery=self.show_estimated_delivery,
            sanitize_locations=self.sanitize_locations,
        )
