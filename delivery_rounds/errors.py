"""Typed errors raised by round lifecycle operations.

Every error is actionable by the caller: refresh the work list, pick another
order, or finish the current stop first. None of them leave partial writes
behind.
"""

from typing import Any


class RoundError(Exception):
    """Base class for all lifecycle errors."""

    code = "round_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {key: str(value) for key, value in context.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses."""
        return {
            "error": self.code,
            "detail": self.message,
            "context": self.context,
        }


class NotFoundError(RoundError):
    """Stale reference to a deleted order, round, stop, driver or suggestion."""

    code = "not_found"


class ConflictError(RoundError):
    """Resource already claimed or released by a concurrent actor."""

    code = "conflict"


class CapacityExceededError(RoundError):
    """Adding a stop would exceed the per-round cap."""

    code = "capacity_exceeded"


class PreconditionFailedError(RoundError):
    """Wrong round or stop status for the requested transition."""

    code = "precondition_failed"


class DriverNotAuthorizedError(RoundError):
    """Driver is inactive or acting on a round it does not own."""

    code = "driver_not_authorized"
