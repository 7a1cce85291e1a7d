"""
Booking lifecycle state machine.

Defines the legal status transitions of a booking, each optionally gated
by a time guard. A transition is committed with a compare-and-set on the
stored status, so of two concurrent attempts on the same booking only one
succeeds, and the domain event for it is emitted exactly once, after the
commit.

Usage:
    machine = BookingStateMachine(repository, emitter)
    booking = machine.transition(booking_id, BookingStatus.CONFIRMED)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from slotwise.errors import InvalidTransitionError, NotFoundError
from slotwise.events import EventEmitter
from slotwise.logging_context import get_request_logger
from slotwise.schemas.booking_schema import TERMINAL_STATUSES, Booking, BookingStatus
from slotwise.stores.base import BookingRepository

logger = get_request_logger(__name__)

Guard = Callable[[Booking, datetime], Optional[str]]


def _has_ended(booking: Booking, now: datetime) -> Optional[str]:
    if now < booking.end_time:
        return f"booking has not ended yet (ends {booking.end_time.isoformat()})"
    return None


def _has_started(booking: Booking, now: datetime) -> Optional[str]:
    if now < booking.start_time:
        return f"booking has not started yet (starts {booking.start_time.isoformat()})"
    return None


@dataclass(frozen=True)
class Transition:
    """A single valid status transition.

    ``guard`` returns a reason string when the transition is not allowed yet.
    """
    from_status: BookingStatus
    to_status: BookingStatus
    guard: Optional[Guard] = None


class BookingStateMachine:
    """
    Governs booking status changes.

    Every transition must be explicitly listed. Anything else is rejected
    with an error naming the current and requested statuses.
    """

    TRANSITIONS: list[Transition] = [
        # --- Approval ---
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED),
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED),

        # --- Confirmed booking outcomes ---
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
        Transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED, guard=_has_ended),
        Transition(BookingStatus.CONFIRMED, BookingStatus.NO_SHOW, guard=_has_started),
    ]

    def __init__(
        self,
        repository: BookingRepository,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._emitter = emitter or EventEmitter(clock=clock)
        self._clock = clock

    def find_transition(self, from_status: BookingStatus, to_status: BookingStatus) -> Optional[Transition]:
        for t in self.TRANSITIONS:
            if t.from_status == from_status and t.to_status == to_status:
                return t
        return None

    def valid_targets(self, status: BookingStatus) -> list[BookingStatus]:
        """Return all statuses reachable from ``status`` in one step."""
        return [t.to_status for t in self.TRANSITIONS if t.from_status == status]

    @staticmethod
    def is_terminal(status: BookingStatus) -> bool:
        return status in TERMINAL_STATUSES

    def check(self, booking: Booking, to_status: BookingStatus) -> None:
        """Raise ``InvalidTransitionError`` unless the transition is legal right now."""
        transition = self.find_transition(booking.status, to_status)
        if transition is None:
            valid = [s.value for s in self.valid_targets(booking.status)]
            raise InvalidTransitionError(
                booking.status, to_status, f"valid targets: {valid}"
            )
        if transition.guard is not None:
            reason = transition.guard(booking, self._clock())
            if reason:
                raise InvalidTransitionError(booking.status, to_status, reason)

    def transition(self, booking_id: str, to_status: BookingStatus) -> Booking:
        """
        Move a booking to ``to_status`` and emit the matching event.

        Raises:
            NotFoundError: Unknown booking.
            InvalidTransitionError: Illegal transition, unmet time guard, or the
                status was changed concurrently.
        """
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        self.check(booking, to_status)
        updated = self._repository.update_status(
            booking_id, to_status, expected_status=booking.status, updated_at=self._clock()
        )
        logger.info(
            "Booking %s transition: %s -> %s",
            booking_id, booking.status.value, updated.status.value,
        )
        self._emitter.status_changed(updated)
        return updated

    def on_created(self, booking: Booking) -> None:
        """Establish the initial state of a freshly committed booking."""
        if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidTransitionError(
                booking.status, booking.status, "bookings start as PENDING or CONFIRMED"
            )
        self._emitter.booking_created(booking)

    def confirm(self, booking_id: str) -> Booking:
        return self.transition(booking_id, BookingStatus.CONFIRMED)

    def cancel(self, booking_id: str) -> Booking:
        return self.transition(booking_id, BookingStatus.CANCELLED)

    def complete(self, booking_id: str) -> Booking:
        return self.transition(booking_id, BookingStatus.COMPLETED)

    def mark_no_show(self, booking_id: str) -> Booking:
        return self.transition(booking_id, BookingStatus.NO_SHOW)
