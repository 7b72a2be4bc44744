"""Exception types and HTTP mapping for litestar-shipdesk."""

from __future__ import annotations

import logging
from typing import Any

from litestar import Request, Response

logger = logging.getLogger(__name__)


class ShipdeskError(Exception):
    """Base error carrying a machine-readable code and structured details."""

    code = "SHIPDESK_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details or {}


class ShipmentNotFoundError(ShipdeskError):
    """Shipment with given ID was not found."""

    code = "SHIPMENT_NOT_FOUND"

    def __init__(
        self, shipment_id: str, details: dict[str, Any] | None = None
    ) -> None:
        self.shipment_id = shipment_id
        super().__init__(
            f"Shipment {shipment_id!r} not found",
            details=details or {"shipment_id": shipment_id},
        )


class PublicTrackingNotFoundError(ShipdeskError):
    """Public lookup miss. The message never reveals why."""

    code = "TRACKING_CODE_NOT_FOUND"

    def __init__(self) -> None:
        super().__init__("Tracking code not found")


class InvalidStatusTransitionError(ShipdeskError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, new: str, source: str) -> None:
        self.current = current
        self.new = new
        self.source = source
        super().__init__(
            f"Invalid status transition from {current} to {new} "
            f"(source: {source})",
            details={"from": current, "to": new, "source": source},
        )


class TrackingValidationError(ShipdeskError):
    """Malformed input such as a tracking number in the wrong format."""

    code = "VALIDATION_ERROR"


class BulkValidationError(TrackingValidationError):
    code = "BULK_VALIDATION_FAILED"


class TrackingConflictError(ShipdeskError):
    """Tracking number already held by another shipment."""

    code = "TRACKING_CONFLICT"


class TrackingCodeError(ShipdeskError):
    code = "TRACKING_CODE_ERROR"


class WhiteLabelViolationError(ShipdeskError):
    """Public view would expose a carrier identifier."""

    code = "WHITE_LABEL_VIOLATION"


class UpstreamIntegrationError(ShipdeskError):
    """Carrier tracking API failure."""

    code = "API_INTEGRATION_ERROR"

    def __init__(
        self,
        message: str,
        provider: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(
            message, details={"provider": provider, **(details or {})}
        )


class TrackingProviderNotConfiguredError(UpstreamIntegrationError):
    code = "TRACKING_PROVIDER_NOT_CONFIGURED"

    def __init__(self) -> None:
        super().__init__("No tracking API provider configured", "none")


class WebhookSignatureError(UpstreamIntegrationError):
    code = "INVALID_SIGNATURE"


class MalformedWebhookError(UpstreamIntegrationError):
    code = "MALFORMED_WEBHOOK"


class ConfigurationError(ShipdeskError):
    """A required component is not configured."""

    code = "CONFIGURATION_ERROR"


class CallerNotAuthenticatedError(ShipdeskError):
    code = "UNAUTHENTICATED"

    def __init__(self) -> None:
        super().__init__("Authentication required")


def _error_response(
    request: Request,
    detail: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> Response:
    content: dict[str, Any] = {"detail": detail, "code": code}
    if details:
        content["details"] = details
    return Response(content=content, status_code=status_code)


def handle_not_found(request: Request, exc: ShipmentNotFoundError) -> Response:
    """Map ShipmentNotFoundError to 404."""
    return _error_response(request, str(exc), exc.code, 404, exc.details)


def handle_public_not_found(
    request: Request, exc: PublicTrackingNotFoundError
) -> Response:
    """Map public lookup misses to a generic 404."""
    return _error_response(request, str(exc), exc.code, 404)


def handle_invalid_transition(
    request: Request, exc: InvalidStatusTransitionError
) -> Response:
    """Map InvalidStatusTransitionError to 409."""
    return _error_response(request, str(exc), exc.code, 409, exc.details)


def handle_validation_error(
    request: Request, exc: TrackingValidationError
) -> Response:
    """Map TrackingValidationError to 400."""
    return _error_response(request, str(exc), exc.code, 400, exc.details)


def handle_conflict(request: Request, exc: TrackingConflictError) -> Response:
    """Map TrackingConflictError to 409."""
    return _error_response(request, str(exc), exc.code, 409, exc.details)


def handle_signature_error(
    request: Request, exc: WebhookSignatureError
) -> Response:
    """Map WebhookSignatureError to 401."""
    return _error_response(request, "Invalid signature", exc.code, 401)


def handle_malformed_webhook(
    request: Request, exc: MalformedWebhookError
) -> Response:
    """Map MalformedWebhookError to 400."""
    return _error_response(request, str(exc), exc.code, 400, exc.details)


def handle_upstream_error(
    request: Request, exc: UpstreamIntegrationError
) -> Response:
    """Map UpstreamIntegrationError to 503."""
    return _error_response(request, str(exc), exc.code, 503, exc.details)


def handle_white_label_violation(
    request: Request, exc: WhiteLabelViolationError
) -> Response:
    """Map WhiteLabelViolationError to a generic 500."""
    logger.error("White-label violation on %s: %s", request.url.path, exc)
    return _error_response(request, "Internal server error", exc.code, 500)


def handle_configuration_error(
    request: Request, exc: ConfigurationError
) -> Response:
    """Map ConfigurationError to 500."""
    return _error_response(request, str(exc), exc.code, 500)


def handle_unauthenticated(
    request: Request, exc: CallerNotAuthenticatedError
) -> Response:
    """Map CallerNotAuthenticatedError to 401."""
    return _error_response(request, str(exc), exc.code, 401)


def handle_shipdesk_error(request: Request, exc: ShipdeskError) -> Response:
    """Map generic ShipdeskError to 400."""
    return _error_response(request, str(exc), exc.code, 400, exc.details)


EXCEPTION_HANDLERS = {
    ShipmentNotFoundError: handle_not_found,
    PublicTrackingNotFoundError: handle_public_not_found,
    InvalidStatusTransitionError: handle_invalid_transition,
    TrackingValidationError: handle_validation_error,
    TrackingConflictError: handle_conflict,
    WebhookSignatureError: handle_signature_error,
    MalformedWebhookError: handle_malformed_webhook,
    UpstreamIntegrationError: handle_upstream_error,
    WhiteLabelViolationError: handle_white_label_violation,
    ConfigurationError: handle_configuration_error,
    CallerNotAuthenticatedError: handle_unauthenticated,
    ShipdeskError: handle_shipdesk_error,
}
