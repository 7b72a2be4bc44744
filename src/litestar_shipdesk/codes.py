"""Internal, carrier-agnostic tracking codes."""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Awaitable, Callable

from litestar_shipdesk.exceptions import TrackingCodeError

logger = logging.getLogger(__name__)

CODE_PREFIX = "SC"
CODE_DIGITS = 9
MAX_GENERATION_ATTEMPTS = 5

INTERNAL_CODE_RE = re.compile(rf"^{CODE_PREFIX}\d{{{CODE_DIGITS}}}$")

CARRIER_NUMBER_PATTERNS = (
    re.compile(r"^1Z[A-Z0-9]{16}$"),
    re.compile(r"^\d{12,14}$"),
    re.compile(r"^\d{10,11}$"),
    re.compile(r"^9\d{3}\s?\d{4}\s?\d{4}\s?\d{4}\s?\d{4}$"),
    re.compile(r"^7\d{19}$"),
)

_SEQUENTIAL = "0123456789"


def is_carrier_tracking_number(value: str) -> bool:
    """True when ``value`` is shaped like a UPS, FedEx, DHL or USPS number."""
    candidate = value.strip().upper()
    return any(p.match(candidate) for p in CARRIER_NUMBER_PATTERNS)


def normalize_internal_tracking_code(code: str) -> str:
    return code.strip().upper().replace("-", "").replace(" ", "")


def validate_internal_tracking_code_format(code: str) -> bool:
    return bool(INTERNAL_CODE_RE.match(normalize_internal_tracking_code(code)))


def format_for_display(code: str) -> str:
    """``SC123456789`` -> ``SC-123-456-789``; other input is returned as is."""
    normalized = normalize_internal_tracking_code(code)
    if not INTERNAL_CODE_RE.match(normalized):
        return code
    digits = normalized[len(CODE_PREFIX) :]
    return f"{CODE_PREFIX}-{digits[:3]}-{digits[3:6]}-{digits[6:]}"


def _has_weak_pattern(digits: str) -> bool:
    if len(set(digits)) == 1:
        return True
    if digits in _SEQUENTIAL or digits in _SEQUENTIAL[::-1]:
        return True
    # Runs of four identical or consecutive digits.
    for i in range(len(digits) - 3):
        window = digits[i : i + 4]
        if len(set(window)) == 1:
            return True
        if window in _SEQUENTIAL or window in _SEQUENTIAL[::-1]:
            return True
    return False


def _random_digits() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(CODE_DIGITS))


def generate_candidate() -> str:
    """Random code free of sequential or repetitive digit runs."""
    while True:
        digits = _random_digits()
        if not _has_weak_pattern(digits):
            return f"{CODE_PREFIX}{digits}"


async def generate_internal_tracking_code(
    is_taken: Callable[[str], Awaitable[bool]],
    *,
    max_attempts: int = MAX_GENERATION_ATTEMPTS,
) -> str:
    """Generate a code not yet used by any shipment.

    Raises:
        TrackingCodeError: if every attempt collided.
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_candidate()
        if is_carrier_tracking_number(code):
            continue
        if not await is_taken(code):
            return code
        logger.info("Tracking code collision on attempt %d", attempt)
    raise TrackingCodeError(
        f"Could not generate a unique tracking code after "
        f"{max_attempts} attempts",
        details={"attempts": max_attempts},
    )
