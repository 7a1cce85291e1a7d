"""
Contracts for the collaborators the scheduling core reads from and writes to.

Availability rules and the service catalog are owned by the
business-management side and are read-only here. The booking repository
is the concurrency-critical dependency: ``insert_if_no_overlap`` must run
the overlap check and the insert as one atomic unit of work.
"""

from datetime import datetime
from typing import Optional, Protocol

from slotwise.schemas.availability_schema import AvailabilityRule
from slotwise.schemas.booking_schema import Booking, BookingStatus
from slotwise.schemas.service_schema import Service


class AvailabilityRuleStore(Protocol):
    def get_rules(self, business_id: str, day_of_week: int) -> list[AvailabilityRule]:
        """Return every recurring window for the business on that weekday."""
        ...


class ServiceCatalog(Protocol):
    def get_service(self, service_id: str) -> Optional[Service]:
        ...


class BookingRepository(Protocol):
    def find_overlapping(
        self, business_id: str, start: datetime, end: datetime
    ) -> list[Booking]:
        """Active (PENDING/CONFIRMED) bookings overlapping ``[start, end)``."""
        ...

    def insert_if_no_overlap(self, booking: Booking) -> Booking:
        """Atomically insert ``booking`` unless an active booking overlaps it.

        Raises:
            SlotUnavailableError: An active booking overlaps the interval.
            DuplicateBookingKeyError: The idempotency key is already stored.
            TransientStoreError: Lock wait timed out or the store failed.
        """
        ...

    def update_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        *,
        expected_status: BookingStatus,
        updated_at: Optional[datetime] = None,
    ) -> Booking:
        """Compare-and-set the status of a booking.

        ``updated_at`` defaults to the current wall-clock time.

        Raises:
            NotFoundError: Unknown booking.
            InvalidTransitionError: The stored status is no longer ``expected_status``.
        """
        ...

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        ...

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Booking]:
        ...

    def list_for_customer(
        self, customer_id: str, limit: int, offset: int
    ) -> tuple[list[Booking], int]:
        ...

    def list_for_business(
        self, business_id: str, limit: int, offset: int
    ) -> tuple[list[Booking], int]:
        ...
