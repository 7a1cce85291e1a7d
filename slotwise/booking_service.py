"""
Scheduling service facade.

The two operations exposed to the request-handler layer are
``list_available_slots`` (read-only, idempotent) and ``create_booking``
(authoritative check-and-commit). Lifecycle and query helpers sit beside
them so callers never reach into the stores directly.
"""

import threading
from datetime import date, datetime
from typing import Callable, Optional

from slotwise.errors import NotFoundError
from slotwise.events import EventEmitter, EventPublisher
from slotwise.logging_context import request_scope
from slotwise.scheduling.calendar import CalendarBuilder
from slotwise.scheduling.conflict_resolver import ConflictResolver
from slotwise.scheduling.slot_generator import SlotGenerator
from slotwise.scheduling.state_machine import BookingStateMachine
from slotwise.schemas.availability_schema import BusinessCalendar, TimeSlot
from slotwise.schemas.booking_schema import Booking, BookingRequest, BookingStatus
from slotwise.stores.base import AvailabilityRuleStore, BookingRepository, ServiceCatalog
from slotwise.stores.sql import SqlStores

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class SchedulingService:
    """Wires the slot generator, conflict resolver, and state machine together."""

    def __init__(
        self,
        rule_store: AvailabilityRuleStore,
        catalog: ServiceCatalog,
        repository: BookingRepository,
        publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        emitter = EventEmitter(publisher, clock=clock)
        self.slots = SlotGenerator(rule_store, catalog, repository, clock=clock)
        self.resolver = ConflictResolver(rule_store, catalog, repository, clock=clock)
        self.lifecycle = BookingStateMachine(repository, emitter, clock=clock)
        self.calendar = CalendarBuilder(rule_store, catalog, repository, clock=clock)

    @classmethod
    def from_sql_stores(
        cls,
        stores: SqlStores,
        publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "SchedulingService":
        return cls(stores.rules, stores.services, stores.bookings, publisher, clock)

    def list_available_slots(
        self,
        business_id: str,
        service_id: str,
        on_date: date,
        granularity_minutes: Optional[int] = None,
    ) -> list[TimeSlot]:
        """Bookable slots for a service on a date, ascending by start time."""
        with request_scope():
            return self.slots.generate(business_id, service_id, on_date, granularity_minutes)

    def create_booking(
        self,
        business_id: str,
        service_id: str,
        customer_id: str,
        requested_start: datetime,
        idempotency_key: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Booking:
        """Commit a booking for ``requested_start`` or raise a typed error.

        A replay of an earlier request with the same idempotency key returns
        the original booking and emits no new event. Log records for the
        call carry the idempotency key as their request id when one is given.
        """
        request = BookingRequest(
            business_id=business_id,
            service_id=service_id,
            customer_id=customer_id,
            requested_start=requested_start,
            idempotency_key=idempotency_key,
        )
        with request_scope(idempotency_key):
            resolution = self.resolver.resolve(request, cancel_event)
            if not resolution.replayed:
                self.lifecycle.on_created(resolution.booking)
        return resolution.booking

    def confirm_booking(self, booking_id: str) -> Booking:
        return self.update_status(booking_id, BookingStatus.CONFIRMED)

    def cancel_booking(self, booking_id: str) -> Booking:
        return self.update_status(booking_id, BookingStatus.CANCELLED)

    def complete_booking(self, booking_id: str) -> Booking:
        return self.update_status(booking_id, BookingStatus.COMPLETED)

    def mark_no_show(self, booking_id: str) -> Booking:
        return self.update_status(booking_id, BookingStatus.NO_SHOW)

    def update_status(self, booking_id: str, new_status: BookingStatus) -> Booking:
        with request_scope():
            return self.lifecycle.transition(booking_id, new_status)

    def get_booking(self, booking_id: str) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def list_bookings_for_customer(
        self, customer_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> tuple[list[Booking], int]:
        limit, offset = _page_bounds(limit, offset)
        return self._repository.list_for_customer(customer_id, limit, offset)

    def list_bookings_for_business(
        self, business_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> tuple[list[Booking], int]:
        limit, offset = _page_bounds(limit, offset)
        return self._repository.list_for_business(business_id, limit, offset)

    def get_business_calendar(
        self, business_id: str, service_id: str, start_date: date, end_date: date
    ) -> BusinessCalendar:
        return self.calendar.build(business_id, service_id, start_date, end_date)


def _page_bounds(limit: int, offset: int) -> tuple[int, int]:
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    return min(limit, MAX_PAGE_SIZE), offset
