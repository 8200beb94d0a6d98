"""
Exception classes for the rental pricing and ledger engine.

Every error here is a recoverable, user-facing validation failure. Each one
carries enough context (IDs, shortfalls) for the caller to render an
actionable message, and knows the HTTP status the API layer should use.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional


class RentalEngineError(Exception):
    """Base class for engine validation failures."""

    error_code = "RENTAL_ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str = "Error: request could not be processed") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def context(self) -> Dict[str, Any]:
        return {}

    def to_detail(self) -> Dict[str, Any]:
        """Detail payload for HTTPException responses."""
        detail = {"error": self.error_code, "message": self.message}
        detail.update(self.context())
        return detail


class InvalidDateRangeError(RentalEngineError):
    """Raised when the end date is not after the start date."""

    error_code = "INVALID_DATE_RANGE"
    status_code = 400

    def __init__(self, start_date=None, end_date=None, message: Optional[str] = None) -> None:
        self.start_date = start_date
        self.end_date = end_date
        if message is None:
            message = f"Error: end date {end_date} must be after start date {start_date}"
        super().__init__(message)

    def context(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


class UnknownExtraError(RentalEngineError):
    """Raised when a selected extra does not exist or is inactive."""

    error_code = "UNKNOWN_EXTRA"
    status_code = 404

    def __init__(self, extra_id: str, reason: str = "not found") -> None:
        self.extra_id = extra_id
        self.reason = reason
        super().__init__(f"Error: extra {extra_id} is {reason}")

    def context(self) -> Dict[str, Any]:
        return {"extra_id": self.extra_id, "reason": self.reason}


class InsufficientStockError(RentalEngineError):
    """Raised when more units of a limited extra are requested than remain."""

    error_code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, extra_id: str, extra_name: str, requested: int, remaining: int) -> None:
        self.extra_id = extra_id
        self.extra_name = extra_name
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Error: only {remaining} of '{extra_name}' left, "
            f"{requested} requested (short by {self.shortfall})"
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.remaining

    def context(self) -> Dict[str, Any]:
        return {
            "extra_id": self.extra_id,
            "extra_name": self.extra_name,
            "requested": self.requested,
            "remaining": self.remaining,
            "shortfall": self.shortfall,
        }


class VehicleUnavailableError(RentalEngineError):
    """Raised when a vehicle is already booked for the requested dates."""

    error_code = "VEHICLE_UNAVAILABLE"
    status_code = 409

    def __init__(
        self,
        vehicle_id: str,
        conflicting_rental_ids: Optional[List[str]] = None,
        message: Optional[str] = None
    ) -> None:
        self.vehicle_id = vehicle_id
        self.conflicting_rental_ids = list(conflicting_rental_ids or [])
        if message is None:
            message = (
                f"Error: vehicle {vehicle_id} is not available for the requested dates "
                f"(conflicts: {', '.join(self.conflicting_rental_ids) or 'none listed'})"
            )
        super().__init__(message)

    def context(self) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "conflicting_rental_ids": self.conflicting_rental_ids,
        }


class OverAllocationError(RentalEngineError):
    """Raised when an allocation would push a charge's remaining amount below zero."""

    error_code = "OVER_ALLOCATION"
    status_code = 409

    def __init__(self, charge_id: str, attempted: Decimal, remaining: Decimal) -> None:
        self.charge_id = charge_id
        self.attempted = attempted
        self.remaining = remaining
        super().__init__(
            f"Error: cannot apply {attempted} to charge {charge_id}, only {remaining} remaining"
        )

    def context(self) -> Dict[str, Any]:
        return {
            "charge_id": self.charge_id,
            "attempted": str(self.attempted),
            "remaining": str(self.remaining),
        }


class NotFoundError(RentalEngineError):
    """Raised when a vehicle, rental, payment or charge does not exist for the tenant."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Error: {entity} {entity_id} not found")

    def context(self) -> Dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}
