"""Carrier-free public view of a shipment.

Everything served to unauthenticated callers passes through
:class:`WhiteLabelFilter`. The filter is pure: it never touches storage.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from litestar_shipdesk.codes import (
    format_for_display,
    is_carrier_tracking_number,
    normalize_internal_tracking_code,
    validate_internal_tracking_code_format,
)
from litestar_shipdesk.enums import EventType
from litestar_shipdesk.exceptions import WhiteLabelViolationError
from litestar_shipdesk.ledger import normalize_event_time
from litestar_shipdesk.protocols import Shipment, ShipmentEvent
from litestar_shipdesk.types import (
    LookupValidation,
    PublicTrackingEvent,
    PublicTrackingView,
    WhiteLabelSettings,
)

PUBLIC_EVENT_TYPES = frozenset(
    {
        EventType.SHIPMENT_CREATED,
        EventType.STATUS_CHANGE,
        EventType.LOCATION_UPDATE,
        EventType.DELIVERY_ATTEMPT,
    }
)

GENERIC_DESCRIPTIONS = {
    EventType.SHIPMENT_CREATED: "Shipment information received",
    EventType.STATUS_CHANGE: "Package status updated",
    EventType.LOCATION_UPDATE: "Package location updated",
    EventType.DELIVERY_ATTEMPT: "Delivery attempted",
    EventType.EXCEPTION: "Package status updated",
    EventType.API_SYNC: "Tracking information updated",
}
DEFAULT_DESCRIPTION = "Package update"

HIDDEN = "Hidden"

# Longest names first so "Canada Post" wins over a bare "Post".
_CARRIER_NAMES = (
    r"United\s+States\s+Postal\s+Service",
    r"Federal\s+Express",
    r"Canada\s+Post",
    r"Fed\s?Ex",
    r"Purolator",
    r"Aramex",
    r"USPS",
    r"UPS",
    r"DHL",
    r"TNT",
)
_CARRIER = "(?:" + "|".join(_CARRIER_NAMES) + ")"

FACILITY_RE = re.compile(
    rf"\b{_CARRIER}\s+[A-Za-z\s]+"
    r"(?:Hub|Center|Centre|Facility|Station|Post\s+Office)",
    re.IGNORECASE,
)
LOCATION_FACILITY_RE = re.compile(
    rf",?\s*\b{_CARRIER}\s+[A-Za-z\s]*"
    r"(?:Hub|Center|Centre|Facility|Station|Post\s+Office)",
    re.IGNORECASE,
)
CARRIER_NAME_RE = re.compile(rf"\b{_CARRIER}\b", re.IGNORECASE)
TRACKING_PHRASE_RE = re.compile(r"tracking\s+number\s+\w+", re.IGNORECASE)
STAFF_ID_RE = re.compile(
    r"(?:employee|driver)\s+(?:id|#)\s*:?\s*\w+", re.IGNORECASE
)
EMBEDDED_NUMBER_RE = re.compile(
    r"\b(?:1Z[0-9A-Z]{16}|[A-Z]{2}\d{7,9}[A-Z]{2}|\d{9,22})\b",
    re.IGNORECASE,
)
_LOOSE_COMMAS_RE = re.compile(r"\s*,(?:\s*,)+")
_SPACES_RE = re.compile(r"\s{2,}")
_EDGE_PUNCT = " ,;:-"


def mask_tracking_number(tracking_number: str | None) -> str:
    """Keep the first and last two characters, star out the rest."""
    if not tracking_number or len(tracking_number) < 4:
        return "****"
    middle = "*" * max(4, len(tracking_number) - 4)
    return f"{tracking_number[:2]}{middle}{tracking_number[-2:]}"


def _tidy(text: str) -> str:
    text = _LOOSE_COMMAS_RE.sub(",", text)
    text = _SPACES_RE.sub(" ", text)
    return text.strip(_EDGE_PUNCT)


def _remove_literals(text: str, literals: Iterable[str]) -> str:
    for literal in literals:
        if literal:
            text = re.sub(re.escape(literal), "", text, flags=re.IGNORECASE)
    return text


class WhiteLabelFilter:
    def __init__(self, settings: WhiteLabelSettings | None = None) -> None:
        self.settings = settings or WhiteLabelSettings()

    def sanitize_shipment_for_public(
        self, shipment: Shipment, events: Sequence[ShipmentEvent]
    ) -> PublicTrackingView:
        """Build the customer-facing view.

        Raises:
            WhiteLabelViolationError: the shipment's own tracking code is
                shaped like a carrier tracking number.
        """
        if is_carrier_tracking_number(shipment.tracking_code):
            raise WhiteLabelViolationError(
                "Cannot expose carrier tracking number as public tracking code",
                details={"shipment_id": shipment.id},
            )

        secrets = [shipment.courier_tracking_number or ""]
        public_events = [
            self._sanitize_event(event, secrets)
            for event in events
            if event.event_type in PUBLIC_EVENT_TYPES
            and not (event.event_metadata or {}).get("audit_event")
        ]
        public_events.sort(key=lambda e: e.event_time)

        settings = self.settings
        if settings.hide_carrier_info:
            carrier = settings.carrier_placeholder
            carrier_number = HIDDEN
        else:
            carrier = shipment.courier
            carrier_number = mask_tracking_number(
                shipment.courier_tracking_number
            )

        return PublicTrackingView(
            tracking_code=shipment.tracking_code,
            carrier=carrier,
            carrier_tracking_number=carrier_number,
            status=str(shipment.status),
            estimated_delivery=shipment.estimated_delivery
            if settings.show_estimated_delivery
            else None,
            actual_delivery=shipment.actual_delivery,
            events=public_events,
        )

    def sanitize_description(
        self,
        description: str | None,
        event_type: str,
        secrets: Iterable[str] = (),
    ) -> str:
        if description:
            text = FACILITY_RE.sub("Shipping facility", description)
            text = CARRIER_NAME_RE.sub(self.settings.brand_name, text)
            text = TRACKING_PHRASE_RE.sub("tracking information", text)
            text = STAFF_ID_RE.sub("", text)
            text = _remove_literals(text, secrets)
            text = EMBEDDED_NUMBER_RE.sub("", text)
            text = _tidy(text)
            if text:
                return text
        try:
            return GENERIC_DESCRIPTIONS[EventType(event_type)]
        except (KeyError, ValueError):
            return DEFAULT_DESCRIPTION

    def sanitize_location(
        self, location: str | None, secrets: Iterable[str] = ()
    ) -> str | None:
        if not location:
            return None
        if not self.settings.sanitize_locations:
            return location
        text = LOCATION_FACILITY_RE.sub("", location)
        text = CARRIER_NAME_RE.sub("", text)
        text = _remove_literals(text, secrets)
        return _tidy(text) or None

    def validate_public_tracking_lookup(self, code: str) -> LookupValidation:
        candidate = (code or "").strip()
        if not candidate:
            return LookupValidation(
                is_valid=False, error="Tracking code is required"
            )
        if is_carrier_tracking_number(candidate):
            return LookupValidation(
                is_valid=False,
                error="Please use your tracking code that starts with SC",
            )
        if not validate_internal_tracking_code_format(candidate):
            return LookupValidation(
                is_valid=False,
                error=(
                    "Invalid tracking code format. "
                    "Please check your tracking code."
                ),
            )
        return LookupValidation(
            is_valid=True,
            normalized=normalize_internal_tracking_code(candidate),
        )

    def format_tracking_code_for_display(self, code: str) -> str:
        return format_for_display(code)

    def _sanitize_event(
        self, event: ShipmentEvent, secrets: list[str]
    ) -> PublicTrackingEvent:
        return PublicTrackingEvent(
            event_type=str(event.event_type),
            status=str(event.status) if event.status else None,
            description=self.sanitize_description(
                event.description, event.event_type, secrets
            ),
            location=self.sanitize_location(event.location, secrets),
            event_time=normalize_event_time(event.event_time),
        )
