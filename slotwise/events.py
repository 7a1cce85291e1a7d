"""
Outbound domain events.

Events are emitted only after the state change they describe has been
durably committed, and publication is best-effort: a publisher failure is
logged and never fails or rolls back the booking operation. Delivery
retries belong to the bus collaborator behind the publisher.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from slotwise.config import settings
from slotwise.schemas.booking_schema import Booking, BookingEvent, BookingStatus

logger = logging.getLogger(__name__)

# Event subjects
BOOKING_CREATED = "booking.created"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_COMPLETED = "booking.completed"
BOOKING_NO_SHOW = "booking.no_show"
SLOT_RESERVED = "slot.reserved"

TRANSITION_SUBJECTS: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: BOOKING_CONFIRMED,
    BookingStatus.CANCELLED: BOOKING_CANCELLED,
    BookingStatus.COMPLETED: BOOKING_COMPLETED,
    BookingStatus.NO_SHOW: BOOKING_NO_SHOW,
}


class EventPublisher(Protocol):
    def publish(self, subject: str, payload: dict[str, Any]) -> None:
        ...


class LoggingPublisher:
    """Publisher used when no message bus is configured."""

    def publish(self, subject: str, payload: dict[str, Any]) -> None:
        logger.debug("Event publishing skipped (no bus): %s %s", subject, payload.get("booking_id"))


class InMemoryPublisher:
    """Collects published events. Used by tests and the console demo."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, subject: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((subject, payload))

    def subjects(self) -> list[str]:
        with self._lock:
            return [subject for subject, _ in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class EventEmitter:
    """Builds event payloads from bookings and hands them to a publisher."""

    def __init__(
        self,
        publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = datetime.now,
        enabled: Optional[bool] = None,
        slot_reserved: Optional[bool] = None,
    ) -> None:
        self._publisher = publisher or LoggingPublisher()
        self._clock = clock
        self._enabled = settings.events.publish_events if enabled is None else enabled
        self._slot_reserved = (
            settings.events.publish_slot_reserved if slot_reserved is None else slot_reserved
        )

    def emit(self, subject: str, booking: Booking) -> bool:
        """Publish one event. Returns False if the publisher failed."""
        if not self._enabled:
            return True
        event = BookingEvent.from_booking(subject, booking, occurred_at=self._clock())
        try:
            self._publisher.publish(subject, event.to_payload())
        except Exception:
            logger.exception(
                "Failed to publish %s event for booking %s", subject, booking.booking_id
            )
            return False
        logger.info("Published %s event for booking %s", subject, booking.booking_id)
        return True

    def booking_created(self, booking: Booking) -> None:
        self.emit(BOOKING_CREATED, booking)
        if booking.status == BookingStatus.CONFIRMED and self._slot_reserved:
            self.emit(SLOT_RESERVED, booking)

    def status_changed(self, booking: Booking) -> None:
        self.emit(TRANSITION_SUBJECTS[booking.status], booking)
        if booking.status == BookingStatus.CONFIRMED and self._slot_reserved:
            self.emit(SLOT_RESERVED, booking)
