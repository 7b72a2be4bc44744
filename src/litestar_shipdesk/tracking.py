"""Courier tracking-number assignment and conflict resolution."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from litestar_shipdesk.enums import (
    Carrier,
    ConflictAction,
    EventSource,
    EventType,
    normalize_courier,
)
from litestar_shipdesk.exceptions import (
    BulkValidationError,
    ShipmentNotFoundError,
    TrackingConflictError,
    TrackingValidationError,
)
from litestar_shipdesk.ledger import EventLedger
from litestar_shipdesk.notifications import (
    TRACKING_ASSIGNED,
    dispatch_notification,
)
from litestar_shipdesk.protocols import (
    NotificationDispatcher,
    Shipment,
    ShipmentRepository,
)
from litestar_shipdesk.types import (
    AssignmentResult,
    BulkAssignment,
    BulkAssignmentReport,
    BulkItemError,
    BulkItemResult,
    BulkValidationResult,
    ConflictDetails,
    DuplicateAssignment,
    ResolutionOption,
    ResolutionResult,
    ResolutionSuggestions,
    TrackingStats,
    ValidationResult,
)

if TYPE_CHECKING:
    from litestar_shipdesk.sync import TrackingSynchronizer

logger = logging.getLogger(__name__)

DEFAULT_BULK_BATCH_SIZE = 10

# Per-carrier tracking number shapes with the message shown on mismatch.
COURIER_PATTERNS: dict[Carrier, tuple[re.Pattern[str], str]] = {
    Carrier.FEDEX: (
        re.compile(r"^(\d{12}|\d{14}|\d{20})$"),
        "FedEx tracking numbers should be 12, 14, or 20 digits",
    ),
    Carrier.UPS: (
        re.compile(r"^(1Z[0-9A-Z]{16}|\d{9}|\d{12})$"),
        "UPS tracking numbers should be 1Z followed by 16 alphanumeric "
        "characters, or 9 or 12 digits",
    ),
    Carrier.USPS: (
        re.compile(r"^(\d{20}|\d{22}|[A-Z]{2}\d{9}[A-Z]{2})$"),
        "USPS tracking numbers should be 20 or 22 digits, or 2 letters "
        "+ 9 digits + 2 letters",
    ),
    Carrier.DHL: (
        re.compile(r"^(\d{10,11}|\d{21})$"),
        "DHL tracking numbers should be 10-11 digits or 21 digits",
    ),
    Carrier.CANADA_POST: (
        re.compile(r"^(\d{16}|[A-Z]{2}\d{9}[A-Z]{2})$"),
        "Canada Post tracking numbers should be 16 digits or 2 letters "
        "+ 9 digits + 2 letters",
    ),
    Carrier.PUROLATOR: (
        re.compile(r"^[A-Z0-9]{10,12}$"),
        "Purolator tracking numbers should be 10-12 alphanumeric characters",
    ),
    Carrier.TNT: (
        re.compile(r"^(\d{9}|[A-Z]{2}\d{7}[A-Z]{2})$"),
        "TNT tracking numbers should be 9 digits or 2 letters + 7 digits "
        "+ 2 letters",
    ),
    Carrier.ARAMEX: (
        re.compile(r"^\d{10,11}$"),
        "Aramex tracking numbers should be 10-11 digits",
    ),
}

GENERIC_PATTERN = re.compile(r"^[A-Za-z0-9\-\s]{4,30}$")
GENERIC_MESSAGE = (
    "Tracking number should be 4-30 alphanumeric characters "
    "(letters, numbers, hyphens, spaces allowed)"
)

CONFLICT_OPTIONS = [
    ResolutionOption(
        action=ConflictAction.SKIP,
        label="Skip",
        description="Skip this assignment and leave tracking unassigned",
        risk="low",
        recommended=True,
    ),
    ResolutionOption(
        action=ConflictAction.OVERRIDE,
        label="Override",
        description=(
            "Force assign and remove from existing shipment "
            "(not recommended)"
        ),
        risk="high",
    ),
    ResolutionOption(
        action=ConflictAction.UPDATE_EXISTING,
        label="Update existing",
        description="Update the existing shipment instead of the new one",
        risk="medium",
    ),
]

NO_CONFLICT_OPTIONS = [
    ResolutionOption(
        action=ConflictAction.OVERRIDE,
        label="Proceed",
        description="No conflict detected, proceed with assignment",
        risk="low",
        recommended=True,
    ),
]


def _clean_number(tracking_number: str | None) -> str | None:
    if tracking_number is None:
        return None
    return tracking_number.strip() or None


def conflict_error_details(conflict: ConflictDetails) -> dict[str, Any]:
    return {
        "conflict": asdict(conflict),
        "resolution_options": [asdict(o) for o in CONFLICT_OPTIONS],
    }


def holder_conflict(
    holder: Shipment, courier: str, tracking_number: str
) -> ConflictDetails:
    return ConflictDetails(
        shipment_id=holder.id,
        tracking_code=holder.tracking_code,
        courier=holder.courier or courier,
        tracking_number=holder.courier_tracking_number or tracking_number,
    )


def tracking_conflict_error(
    holder: Shipment, courier: str, tracking_number: str
) -> TrackingConflictError:
    """409 error naming the holder, with the resolution menu attached."""
    return TrackingConflictError(
        f"Tracking number {tracking_number} for {courier} is already "
        f"assigned to shipment {holder.tracking_code}",
        details=conflict_error_details(
            holder_conflict(holder, courier, tracking_number)
        ),
    )


class TrackingResolver:
    """Assigns courier tracking numbers without double-booking parcels."""

    def __init__(
        self,
        shipments: ShipmentRepository,
        ledger: EventLedger,
        notifier: NotificationDispatcher | None = None,
        synchronizer: TrackingSynchronizer | None = None,
    ) -> None:
        self._shipments = shipments
        self._ledger = ledger
        self._notifier = notifier
        self.synchronizer = synchronizer

    def validate_tracking_number_format(
        self, courier: str, tracking_number: str | None
    ) -> ValidationResult:
        if not tracking_number:
            return ValidationResult(is_valid=True)
        try:
            carrier = Carrier(normalize_courier(courier))
        except ValueError:
            if GENERIC_PATTERN.match(tracking_number):
                return ValidationResult(is_valid=True)
            return ValidationResult(is_valid=False, error=GENERIC_MESSAGE)

        pattern, message = COURIER_PATTERNS[carrier]
        if pattern.match(tracking_number):
            return ValidationResult(is_valid=True)
        return ValidationResult(is_valid=False, error=message)

    async def check_tracking_number_conflict(
        self,
        courier: str,
        tracking_number: str | None,
        exclude_shipment_id: str | None = None,
    ) -> ValidationResult:
        tracking_number = _clean_number(tracking_number)
        if not tracking_number:
            return ValidationResult(is_valid=True)
        courier = normalize_courier(courier)
        holder = await self._shipments.find_tracking_holder(
            courier, tracking_number, exclude_shipment_id
        )
        if holder is None:
            return ValidationResult(is_valid=True)
        return ValidationResult(
            is_valid=False,
            error=(
                f"Tracking number {tracking_number} for {courier} is already "
                f"assigned to shipment {holder.tracking_code}"
            ),
            conflict=holder_conflict(holder, courier, tracking_number),
        )

    async def suggest_conflict_resolution(
        self, courier: str, tracking_number: str, shipment_id: str
    ) -> ResolutionSuggestions:
        result = await self.check_tracking_number_conflict(
            courier, tracking_number, shipment_id
        )
        if result.is_valid:
            return ResolutionSuggestions(
                has_conflict=False, options=list(NO_CONFLICT_OPTIONS)
            )
        return ResolutionSuggestions(
            has_conflict=True,
            options=list(CONFLICT_OPTIONS),
            conflict=result.conflict,
        )

    async def assign_tracking(
        self,
        shipment_id: str,
        courier: str,
        tracking_number: str | None = None,
        shipping_method: str | None = None,
        admin_id: str | None = None,
    ) -> AssignmentResult:
        """Assign a courier and tracking number to a shipment.

        Raises:
            ShipmentNotFoundError: unknown shipment.
            TrackingValidationError: tracking number fails the courier format.
            TrackingConflictError: another shipment holds the number.
        """
        courier = normalize_courier(courier)
        tracking_number = _clean_number(tracking_number)
        await self._ledger.get_shipment(shipment_id)
        self._require_valid_format(courier, tracking_number)

        result = await self.check_tracking_number_conflict(
            courier, tracking_number, shipment_id
        )
        if not result.is_valid:
            raise TrackingConflictError(
                result.error or "Tracking number conflict",
                details=conflict_error_details(result.conflict),
            )

        shipment = await self._write_assignment(
            shipment_id, courier, tracking_number, shipping_method
        )
        await self._ledger.add_event(
            shipment_id,
            EventType.TRACKING_ASSIGNED,
            _assignment_description(courier, tracking_number),
            EventSource.MANUAL,
            source_id=admin_id,
            metadata={
                "courier": courier,
                "tracking_number": tracking_number,
                "shipping_method": shipping_method,
            },
        )
        logger.info(
            "Assigned %s tracking to shipment %s", courier, shipment_id
        )
        await dispatch_notification(
            self._notifier,
            TRACKING_ASSIGNED,
            shipment,
            courier=courier,
            tracking_number=tracking_number,
        )
        sync_error = None
        if tracking_number:
            sync_error = await self._sync_best_effort(shipment_id)
        return AssignmentResult(shipment=shipment, sync_error=sync_error)

    async def resolve_tracking_conflict(
        self,
        courier: str,
        tracking_number: str,
        shipment_id: str,
        resolution: ConflictAction | str,
        admin_id: str | None,
        shipping_method: str | None = None,
        reason: str | None = None,
    ) -> ResolutionResult:
        action = ConflictAction(resolution)
        courier = normalize_courier(courier)
        tracking_number = _clean_number(tracking_number)
        if not tracking_number:
            raise TrackingValidationError(
                "Tracking number is required to resolve a conflict",
                details={"field": "tracking_number"},
            )
        await self._ledger.get_shipment(shipment_id)
        self._require_valid_format(courier, tracking_number)

        result = await self.check_tracking_number_conflict(
            courier, tracking_number, shipment_id
        )

        if action == ConflictAction.SKIP:
            logger.info(
                "Skipped tracking assignment for shipment %s", shipment_id
            )
            return ResolutionResult(
                success=True,
                action=action,
                message="Assignment skipped due to conflict"
                if not result.is_valid
                else "Assignment skipped",
            )

        if result.is_valid:
            assignment = await self.assign_tracking(
                shipment_id,
                courier,
                tracking_number,
                shipping_method,
                admin_id,
            )
            return ResolutionResult(
                success=True,
                action=action,
                message="No conflict to resolve, tracking assigned",
                affected_shipments=[shipment_id],
                sync_error=assignment.sync_error,
            )

        conflict = result.conflict
        if action == ConflictAction.OVERRIDE:
            return await self._override(
                conflict,
                shipment_id,
                courier,
                tracking_number,
                shipping_method,
                admin_id,
                reason,
            )
        return await self._update_existing(
            conflict, shipment_id, courier, shipping_method, admin_id, reason
        )

    async def validate_bulk_tracking_assignments(
        self, assignments: Sequence[BulkAssignment]
    ) -> BulkValidationResult:
        errors: list[BulkItemError] = []

        groups: dict[tuple[str, str], list[BulkAssignment]] = {}
        for item in assignments:
            number = _clean_number(item.tracking_number)
            if number:
                key = (normalize_courier(item.courier), number)
                groups.setdefault(key, []).append(item)
        for (courier, number), items in groups.items():
            if len(items) < 2:
                continue
            for item in items:
                errors.append(
                    BulkItemError(
                        shipment_id=item.shipment_id,
                        error_type="duplicate_in_batch",
                        message=(
                            f"Duplicate tracking number {number} for "
                            f"{courier} within batch"
                        ),
                        courier=courier,
                        tracking_number=number,
                    )
                )

        for item in assignments:
            courier = normalize_courier(item.courier)
            number = _clean_number(item.tracking_number)
            if not number:
                continue
            fmt = self.validate_tracking_number_format(courier, number)
            if not fmt.is_valid:
                errors.append(
                    BulkItemError(
                        shipment_id=item.shipment_id,
                        error_type="format",
                        message=fmt.error or "Invalid tracking number format",
                        courier=courier,
                        tracking_number=number,
                    )
                )
                continue
            conflict = await self.check_tracking_number_conflict(
                courier, number, item.shipment_id
            )
            if not conflict.is_valid:
                errors.append(
                    BulkItemError(
                        shipment_id=item.shipment_id,
                        error_type="conflict",
                        message=conflict.error or "Tracking number conflict",
                        courier=courier,
                        tracking_number=number,
                        conflict=conflict.conflict,
                    )
                )

        return BulkValidationResult(errors=errors)

    async def bulk_assign_tracking(
        self,
        assignments: Sequence[BulkAssignment],
        admin_id: str | None,
        batch_size: int = DEFAULT_BULK_BATCH_SIZE,
    ) -> BulkAssignmentReport:
        """Validate the whole batch, then apply it in concurrent chunks.

        Validation is all-or-nothing; application reports per-item results.
        """
        if not assignments:
            raise TrackingValidationError(
                "At least one assignment is required",
                details={"field": "assignments"},
            )

        requested = list(dict.fromkeys(a.shipment_id for a in assignments))
        existing = await self._shipments.list_existing_ids(requested)
        missing = [sid for sid in requested if sid not in existing]
        if missing:
            raise ShipmentNotFoundError(
                missing[0], details={"missing_shipment_ids": missing}
            )

        validation = await self.validate_bulk_tracking_assignments(
            assignments
        )
        if not validation.is_valid:
            grouped = validation.grouped()
            raise BulkValidationError(
                "Bulk tracking assignment validation failed",
                details={
                    "summary": {k: len(v) for k, v in grouped.items()},
                    "errors": {
                        k: [asdict(e) for e in v] for k, v in grouped.items()
                    },
                },
            )

        report = BulkAssignmentReport()
        size = max(1, batch_size)
        for start in range(0, len(assignments), size):
            chunk = assignments[start : start + size]
            results = await asyncio.gather(
                *(self._apply_bulk_item(item, admin_id) for item in chunk)
            )
            report.results.extend(results)

        logger.info(
            "Bulk tracking assignment: %d succeeded, %d failed",
            report.successful,
            report.failed,
        )
        return report

    async def get_tracking_number_stats(self) -> TrackingStats:
        shipments = await self._shipments.list_with_tracking_numbers()
        by_courier: Counter[str] = Counter()
        holders: dict[tuple[str, str], list[str]] = {}
        for shipment in shipments:
            if not (shipment.courier and shipment.courier_tracking_number):
                continue
            by_courier[shipment.courier] += 1
            key = (shipment.courier, shipment.courier_tracking_number)
            holders.setdefault(key, []).append(shipment.id)

        return TrackingStats(
            total_assigned=len(shipments),
            by_courier=dict(by_courier),
            duplicates=[
                DuplicateAssignment(
                    courier=courier,
                    tracking_number=number,
                    shipment_ids=ids,
                )
                for (courier, number), ids in holders.items()
                if len(ids) > 1
            ],
        )

    def _require_valid_format(
        self, courier: str, tracking_number: str | None
    ) -> None:
        fmt = self.validate_tracking_number_format(courier, tracking_number)
        if not fmt.is_valid:
            raise TrackingValidationError(
                fmt.error or "Invalid tracking number format",
                details={"field": "tracking_number", "courier": courier},
            )

    async def _write_assignment(
        self,
        shipment_id: str,
        courier: str,
        tracking_number: str | None,
        shipping_method: str | None,
    ) -> Shipment:
        try:
            return await self._shipments.assign_tracking(
                shipment_id,
                courier=courier,
                tracking_number=tracking_number,
                shipping_method=shipping_method,
            )
        except KeyError:
            raise ShipmentNotFoundError(shipment_id) from None

    async def _override(
        self,
        conflict: ConflictDetails,
        shipment_id: str,
        courier: str,
        tracking_number: str,
        shipping_method: str | None,
        admin_id: str | None,
        reason: str | None,
    ) -> ResolutionResult:
        try:
            _, target = await self._shipments.reassign_tracking(
                conflict.shipment_id,
                shipment_id,
                courier=courier,
                tracking_number=tracking_number,
                shipping_method=shipping_method,
            )
        except KeyError as exc:
            raise ShipmentNotFoundError(str(exc.args[0])) from None
        except TrackingConflictError as exc:
            if "conflict" in exc.details:
                raise
            # Released since the conflict was read; nothing to evict.
            assignment = await self.assign_tracking(
                shipment_id,
                courier,
                tracking_number,
                shipping_method,
                admin_id,
            )
            return ResolutionResult(
                success=True,
                action=ConflictAction.OVERRIDE,
                message="Conflict no longer present, tracking assigned",
                affected_shipments=[shipment_id],
                sync_error=assignment.sync_error,
            )

        metadata = {
            "conflict_resolution": True,
            "action": str(ConflictAction.OVERRIDE),
            "reason": reason,
        }
        await self._ledger.add_event(
            conflict.shipment_id,
            EventType.TRACKING_ASSIGNED,
            f"Tracking number {tracking_number} removed due to conflict "
            f"resolution (assigned to {target.tracking_code})",
            EventSource.MANUAL,
            source_id=admin_id,
            metadata={**metadata, "new_shipment_id": shipment_id},
        )
        await self._ledger.add_event(
            shipment_id,
            EventType.TRACKING_ASSIGNED,
            f"{_assignment_description(courier, tracking_number)} "
            f"(reassigned from {conflict.tracking_code})",
            EventSource.MANUAL,
            source_id=admin_id,
            metadata={
                **metadata,
                "previous_shipment_id": conflict.shipment_id,
                "courier": courier,
                "tracking_number": tracking_number,
                "shipping_method": shipping_method,
            },
        )
        logger.warning(
            "Tracking number for %s moved from shipment %s to %s by %s",
            courier,
            conflict.shipment_id,
            shipment_id,
            admin_id,
        )
        await dispatch_notification(
            self._notifier,
            TRACKING_ASSIGNED,
            target,
            courier=courier,
            tracking_number=tracking_number,
        )
        sync_error = await self._sync_best_effort(shipment_id)
        return ResolutionResult(
            success=True,
            action=ConflictAction.OVERRIDE,
            message=(
                f"Tracking number reassigned from {conflict.tracking_code} "
                f"to {target.tracking_code}"
            ),
            affected_shipments=[conflict.shipment_id, shipment_id],
            sync_error=sync_error,
        )

    async def _update_existing(
        self,
        conflict: ConflictDetails,
        shipment_id: str,
        courier: str,
        shipping_method: str | None,
        admin_id: str | None,
        reason: str | None,
    ) -> ResolutionResult:
        holder = await self._write_assignment(
            conflict.shipment_id,
            courier,
            conflict.tracking_number,
            shipping_method,
        )
        await self._ledger.add_event(
            conflict.shipment_id,
            EventType.TRACKING_ASSIGNED,
            f"Tracking assignment updated via conflict resolution "
            f"(requested for {shipment_id})",
            EventSource.MANUAL,
            source_id=admin_id,
            metadata={
                "conflict_resolution": True,
                "action": str(ConflictAction.UPDATE_EXISTING),
                "reason": reason,
                "requested_shipment_id": shipment_id,
                "courier": courier,
                "shipping_method": shipping_method,
            },
        )
        return ResolutionResult(
            success=True,
            action=ConflictAction.UPDATE_EXISTING,
            message=f"Updated existing shipment {holder.tracking_code} instead",
            affected_shipments=[conflict.shipment_id],
        )

    async def _apply_bulk_item(
        self, item: BulkAssignment, admin_id: str | None
    ) -> BulkItemResult:
        try:
            result = await self.assign_tracking(
                item.shipment_id,
                item.courier,
                item.tracking_number,
                item.shipping_method,
                admin_id,
            )
        except Exception as exc:
            logger.warning(
                "Bulk assignment failed for shipment %s: %s",
                item.shipment_id,
                exc,
            )
            return BulkItemResult(
                shipment_id=item.shipment_id, success=False, error=str(exc)
            )
        return BulkItemResult(
            shipment_id=item.shipment_id,
            success=True,
            sync_error=result.sync_error,
        )

    async def _sync_best_effort(self, shipment_id: str) -> str | None:
        """Seed carrier events; failures are reported, never raised."""
        if self.synchronizer is None or not self.synchronizer.enabled:
            return None
        try:
            result = await self.synchronizer.sync_with_api(shipment_id)
        except Exception as exc:
            logger.warning(
                "Initial carrier sync failed for shipment %s: %s",
                shipment_id,
                exc,
            )
            return str(exc)
        return None if result.success else result.error


def _assignment_description(courier: str, tracking_number: str | None) -> str:
    if tracking_number:
        return f"Tracking assigned: {courier} {tracking_number}"
    return f"Courier assigned: {courier}"
