"""
Error taxonomy for the scheduling core.

Every failure crossing the core's boundary is one of these typed
exceptions. The ``kind`` lets a caller layer map each failure to a
distinct, actionable message; ``retryable`` says whether re-sending the
same request unchanged is safe.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from slotwise.schemas.booking_schema import Booking, BookingStatus


class ErrorKind(str, Enum):
    """Stable error categories exposed to callers."""

    POLICY_VIOLATION = "policy_violation"
    SLOT_UNAVAILABLE = "slot_unavailable"
    INVALID_TRANSITION = "invalid_transition"
    TRANSIENT_STORE_ERROR = "transient_store_error"
    NOT_FOUND = "not_found"


class SchedulingError(Exception):
    """Base class for all scheduling core errors."""

    kind: ErrorKind
    retryable: bool = False


class PolicyViolationError(SchedulingError):
    """Request falls outside availability windows or booking policy."""

    kind = ErrorKind.POLICY_VIOLATION

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class SlotUnavailableError(SchedulingError):
    """Requested interval overlaps an active booking."""

    kind = ErrorKind.SLOT_UNAVAILABLE

    def __init__(self, message: str, conflicting_ids: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids)


class InvalidTransitionError(SchedulingError):
    """Raised when a lifecycle transition is not legal from the current status."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        current: "BookingStatus",
        requested: "BookingStatus",
        reason: Optional[str] = None,
    ) -> None:
        message = (
            f"Cannot transition booking from '{current.value}' to '{requested.value}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.requested = requested
        self.reason = reason


class TransientStoreError(SchedulingError):
    """Infrastructure hiccup. Safe to retry the same request unchanged."""

    kind = ErrorKind.TRANSIENT_STORE_ERROR
    retryable = True


class NotFoundError(SchedulingError):
    """Unknown service or booking."""

    kind = ErrorKind.NOT_FOUND


class DuplicateBookingKeyError(SchedulingError):
    """An idempotency key is already bound to a stored booking."""

    kind = ErrorKind.POLICY_VIOLATION

    def __init__(self, existing: "Booking") -> None:
        super().__init__(
            f"Idempotency key {existing.idempotency_key!r} already used by booking "
            f"{existing.booking_id}"
        )
        self.existing = existing
