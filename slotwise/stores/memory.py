"""
In-process stores for availability rules, services, and bookings.

Used by tests, the console demo, and embedded deployments that do not
need a database. The booking repository serialises check-and-insert per
business with a ``threading.Lock`` acquired under a bounded timeout, so
concurrent callers targeting the same business never both win an
overlapping interval.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Optional

from slotwise.config import settings
from slotwise.errors import (
    DuplicateBookingKeyError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    TransientStoreError,
)
from slotwise.schemas.availability_schema import AvailabilityRule
from slotwise.schemas.booking_schema import Booking, BookingStatus
from slotwise.schemas.service_schema import Service

logger = logging.getLogger(__name__)


class InMemoryAvailabilityRuleStore:
    """Weekly availability rules keyed by business."""

    def __init__(self, rules: Optional[list[AvailabilityRule]] = None) -> None:
        self._rules: dict[str, list[AvailabilityRule]] = defaultdict(list)
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: AvailabilityRule) -> None:
        self._rules[rule.business_id].append(rule)

    def replace_rules(self, business_id: str, rules: list[AvailabilityRule]) -> None:
        """Swap the full rule set for a business in one step."""
        self._rules[business_id] = list(rules)

    def get_rules(self, business_id: str, day_of_week: int) -> list[AvailabilityRule]:
        return sorted(
            (r for r in self._rules.get(business_id, []) if r.day_of_week == day_of_week),
            key=lambda r: r.start_time,
        )


class InMemoryServiceCatalog:
    """Service definitions keyed by service id."""

    def __init__(self, services: Optional[list[Service]] = None) -> None:
        self._services: dict[str, Service] = {}
        for service in services or []:
            self.add_service(service)

    def add_service(self, service: Service) -> None:
        self._services[service.service_id] = service

    def get_service(self, service_id: str) -> Optional[Service]:
        return self._services.get(service_id)


class InMemoryBookingRepository:
    """Thread-safe booking store with per-business serialisation."""

    def __init__(self, lock_timeout_sec: Optional[float] = None) -> None:
        self._lock_timeout = (
            settings.database.store_timeout_sec if lock_timeout_sec is None else lock_timeout_sec
        )
        self._bookings: dict[str, Booking] = {}
        self._keys: dict[str, str] = {}
        self._guard = threading.Lock()
        self._business_locks: dict[str, threading.Lock] = {}

    def _lock_for(self, business_id: str) -> threading.Lock:
        with self._guard:
            lock = self._business_locks.get(business_id)
            if lock is None:
                lock = self._business_locks[business_id] = threading.Lock()
            return lock

    def _acquire(self, lock: threading.Lock, business_id: str) -> None:
        if not lock.acquire(timeout=self._lock_timeout):
            logger.warning("Booking lock wait timed out for business %s", business_id)
            raise TransientStoreError(
                f"Timed out after {self._lock_timeout}s waiting for business {business_id}"
            )

    def _overlapping(self, business_id: str, start: datetime, end: datetime) -> list[Booking]:
        return sorted(
            (
                b for b in self._bookings.values()
                if b.business_id == business_id and b.is_active and b.overlaps(start, end)
            ),
            key=lambda b: b.start_time,
        )

    def find_overlapping(
        self, business_id: str, start: datetime, end: datetime
    ) -> list[Booking]:
        with self._guard:
            return self._overlapping(business_id, start, end)

    def insert_if_no_overlap(self, booking: Booking) -> Booking:
        lock = self._lock_for(booking.business_id)
        self._acquire(lock, booking.business_id)
        try:
            with self._guard:
                if booking.idempotency_key and booking.idempotency_key in self._keys:
                    raise DuplicateBookingKeyError(
                        self._bookings[self._keys[booking.idempotency_key]]
                    )
                conflicts = self._overlapping(
                    booking.business_id, booking.start_time, booking.end_time
                )
                if conflicts:
                    raise SlotUnavailableError(
                        f"Requested time {booking.start_time:%Y-%m-%d %H:%M} is no longer available",
                        [c.booking_id for c in conflicts],
                    )
                self._bookings[booking.booking_id] = booking
                if booking.idempotency_key:
                    self._keys[booking.idempotency_key] = booking.booking_id
            return booking
        finally:
            lock.release()

    def update_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        *,
        expected_status: BookingStatus,
        updated_at: Optional[datetime] = None,
    ) -> Booking:
        with self._guard:
            current = self._bookings.get(booking_id)
            if current is None:
                raise NotFoundError(f"Booking {booking_id} not found")
        # Serialised with inserts for the same business.
        lock = self._lock_for(current.business_id)
        self._acquire(lock, current.business_id)
        try:
            with self._guard:
                current = self._bookings[booking_id]
                if current.status != expected_status:
                    raise InvalidTransitionError(
                        current.status, new_status, "status changed concurrently"
                    )
                updated = current.model_copy(
                    update={"status": new_status, "updated_at": updated_at or datetime.now()}
                )
                self._bookings[booking_id] = updated
                return updated
        finally:
            lock.release()

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._guard:
            return self._bookings.get(booking_id)

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Booking]:
        with self._guard:
            booking_id = self._keys.get(idempotency_key)
            return self._bookings.get(booking_id) if booking_id else None

    def _page(self, matches: list[Booking], limit: int, offset: int) -> tuple[list[Booking], int]:
        ordered = sorted(matches, key=lambda b: b.start_time, reverse=True)
        return ordered[offset:offset + limit], len(ordered)

    def list_for_customer(
        self, customer_id: str, limit: int, offset: int
    ) -> tuple[list[Booking], int]:
        with self._guard:
            matches = [b for b in self._bookings.values() if b.customer_id == customer_id]
        return self._page(matches, limit, offset)

    def list_for_business(
        self, business_id: str, limit: int, offset: int
    ) -> tuple[list[Booking], int]:
        with self._guard:
            matches = [b for b in self._bookings.values() if b.business_id == business_id]
        return self._page(matches, limit, offset)

    def reset(self) -> None:
        """Clear all bookings. Used by test fixtures for isolation."""
        with self._guard:
            self._bookings.clear()
            self._keys.clear()
