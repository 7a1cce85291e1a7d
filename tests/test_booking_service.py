"""End-to-end tests for the scheduling service facade."""

import logging
from datetime import date, timedelta

import pytest

from slotwise.booking_service import MAX_PAGE_SIZE, SchedulingService
from slotwise.errors import (
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    SlotUnavailableError,
)
from slotwise.logging_context import NO_REQUEST, get_request_id, request_scope
from slotwise.schemas.booking_schema import BookingStatus
from slotwise.stores.memory import InMemoryServiceCatalog
from tests.conftest import BUSINESS_ID, MONDAY, SERVICE_ID, at, make_service


def _book(service, hhmm, customer_id="cust-1", **kwargs):
    return service.create_booking(BUSINESS_ID, SERVICE_ID, customer_id, at(MONDAY, hhmm), **kwargs)


def _starts(slots):
    return [s.start_time.strftime("%H:%M") for s in slots]


class TestListAvailableSlots:
    def test_open_day(self, any_service):
        slots = any_service.list_available_slots(BUSINESS_ID, SERVICE_ID, MONDAY)
        assert len(slots) == 8

    def test_booked_slot_disappears(self, any_service):
        _book(any_service, "11:00")
        starts = _starts(any_service.list_available_slots(BUSINESS_ID, SERVICE_ID, MONDAY))
        assert "11:00" not in starts
        assert len(starts) == 7

    def test_listing_is_repeatable(self, any_service):
        first = any_service.list_available_slots(BUSINESS_ID, SERVICE_ID, MONDAY, 30)
        second = any_service.list_available_slots(BUSINESS_ID, SERVICE_ID, MONDAY, 30)
        assert first == second

    def test_every_listed_slot_is_bookable(self, any_service):
        _book(any_service, "12:00")
        slots = any_service.list_available_slots(BUSINESS_ID, SERVICE_ID, MONDAY)
        for index, slot in enumerate(slots):
            booking = any_service.create_booking(
                BUSINESS_ID, SERVICE_ID, f"cust-{index}", slot.start_time
            )
            assert booking.start_time == slot.start_time

    def test_cancelling_reopens_slot(self, any_service):
        booking = _book(any_service, "11:00")
        any_service.cancel_booking(booking.booking_id)
        assert "11:00" in _starts(any_service.list_available_slots(BUSINESS_ID, SERVICE_ID, MONDAY))


class TestCreateBooking:
    def test_conflict_then_adjacent(self, any_service):
        _book(any_service, "14:00")
        with pytest.raises(SlotUnavailableError):
            _book(any_service, "13:30", customer_id="cust-2")
        assert _book(any_service, "15:00", customer_id="cust-2").is_active

    def test_events_on_create(self, any_service, publisher):
        _book(any_service, "10:00")
        assert publisher.subjects() == ["booking.created", "slot.reserved"]

    def test_idempotent_replay_emits_nothing_new(self, any_service, publisher):
        first = _book(any_service, "10:00", idempotency_key="req-42")
        publisher.clear()
        again = _book(any_service, "10:00", idempotency_key="req-42")
        assert again.booking_id == first.booking_id
        assert publisher.subjects() == []

    def test_empty_customer_id_is_rejected(self, service):
        with pytest.raises(ValueError):
            service.create_booking(BUSINESS_ID, SERVICE_ID, "", at(MONDAY, "10:00"))

    def test_rejected_request_emits_nothing(self, any_service, publisher):
        with pytest.raises(PolicyViolationError):
            _book(any_service, "18:00")
        assert publisher.subjects() == []


class TestRequestCorrelation:
    RESOLVER_LOGGER = "slotwise.scheduling.conflict_resolver"

    def _request_ids(self, caplog):
        return {r.request_id for r in caplog.records if r.name == self.RESOLVER_LOGGER}

    def test_idempotency_key_is_the_request_id(self, service, caplog):
        with caplog.at_level(logging.INFO, logger=self.RESOLVER_LOGGER):
            _book(service, "10:00", idempotency_key="req-7")
        assert self._request_ids(caplog) == {"req-7"}
        assert get_request_id() == NO_REQUEST

    def test_fresh_request_id_without_key(self, service, caplog):
        with caplog.at_level(logging.INFO, logger=self.RESOLVER_LOGGER):
            _book(service, "10:00")
        request_ids = self._request_ids(caplog)
        assert len(request_ids) == 1
        assert request_ids.pop().startswith("REQ-")
        assert get_request_id() == NO_REQUEST

    def test_rejected_request_still_carries_id(self, service, caplog):
        with caplog.at_level(logging.INFO, logger=self.RESOLVER_LOGGER):
            with pytest.raises(PolicyViolationError):
                _book(service, "18:00", idempotency_key="req-late")
        assert self._request_ids(caplog) == {"req-late"}
        assert get_request_id() == NO_REQUEST

    def test_outer_scope_is_kept_without_key(self, service, caplog):
        with caplog.at_level(logging.INFO, logger=self.RESOLVER_LOGGER):
            with request_scope("http-123"):
                _book(service, "10:00")
                assert get_request_id() == "http-123"
        assert self._request_ids(caplog) == {"http-123"}


class TestLifecycle:
    def test_approval_flow(self, rule_store, repository, publisher, clock):
        service = SchedulingService(
            rule_store,
            InMemoryServiceCatalog([make_service(requires_approval=True)]),
            repository,
            publisher,
            clock=clock,
        )
        booking = _book(service, "10:00")
        assert booking.status == BookingStatus.PENDING
        assert service.confirm_booking(booking.booking_id).status == BookingStatus.CONFIRMED
        assert publisher.subjects() == ["booking.created", "booking.confirmed", "slot.reserved"]

    def test_pending_booking_holds_its_interval(self, rule_store, repository, clock):
        service = SchedulingService(
            rule_store,
            InMemoryServiceCatalog([make_service(requires_approval=True)]),
            repository,
            clock=clock,
        )
        _book(service, "10:00")
        with pytest.raises(SlotUnavailableError):
            _book(service, "10:00", customer_id="cust-2")

    def test_complete_and_no_show(self, any_service, clock):
        first = _book(any_service, "09:00")
        second = _book(any_service, "10:00", customer_id="cust-2")
        clock.now = at(MONDAY, "10:05")
        assert any_service.complete_booking(first.booking_id).status == BookingStatus.COMPLETED
        assert any_service.mark_no_show(second.booking_id).status == BookingStatus.NO_SHOW

    def test_update_status_generic(self, any_service):
        booking = _book(any_service, "10:00")
        updated = any_service.update_status(booking.booking_id, BookingStatus.CANCELLED)
        assert updated.status == BookingStatus.CANCELLED
        with pytest.raises(InvalidTransitionError):
            any_service.update_status(booking.booking_id, BookingStatus.CONFIRMED)

    def test_transition_is_stamped_with_service_clock(self, any_service, clock):
        booking = _book(any_service, "10:00")
        clock.advance(hours=1)
        cancelled = any_service.cancel_booking(booking.booking_id)
        assert cancelled.updated_at == clock.now
        assert cancelled.updated_at >= booking.created_at
        assert any_service.get_booking(booking.booking_id).updated_at == clock.now


class TestQueries:
    def test_get_booking(self, any_service):
        booking = _book(any_service, "10:00")
        assert any_service.get_booking(booking.booking_id).booking_id == booking.booking_id

    def test_get_missing_booking(self, any_service):
        with pytest.raises(NotFoundError):
            any_service.get_booking("missing")

    def test_list_for_customer(self, any_service):
        _book(any_service, "09:00")
        _book(any_service, "11:00")
        _book(any_service, "13:00", customer_id="cust-2")
        bookings, total = any_service.list_bookings_for_customer("cust-1")
        assert total == 2
        assert [b.start_time for b in bookings] == [at(MONDAY, "11:00"), at(MONDAY, "09:00")]

    def test_list_for_business_paginates(self, any_service):
        for hhmm in ("09:00", "10:00", "11:00"):
            _book(any_service, hhmm)
        page, total = any_service.list_bookings_for_business(BUSINESS_ID, limit=1, offset=1)
        assert total == 3
        assert [b.start_time for b in page] == [at(MONDAY, "10:00")]

    def test_page_bounds(self, service):
        with pytest.raises(ValueError):
            service.list_bookings_for_business(BUSINESS_ID, limit=0)
        with pytest.raises(ValueError):
            service.list_bookings_for_customer("cust-1", offset=-1)

    def test_limit_is_capped(self, service, repository):
        calls = []
        original = repository.list_for_business

        def spy(business_id, limit, offset):
            calls.append(limit)
            return original(business_id, limit, offset)

        repository.list_for_business = spy
        service.list_bookings_for_business(BUSINESS_ID, limit=10_000)
        assert calls == [MAX_PAGE_SIZE]


class TestBusinessCalendar:
    def test_week_summary(self, any_service):
        _book(any_service, "10:00")
        calendar = any_service.get_business_calendar(
            BUSINESS_ID, SERVICE_ID, MONDAY, MONDAY + timedelta(days=6)
        )
        assert len(calendar.days) == 7
        monday = calendar.days[0]
        assert monday.date == MONDAY
        assert (monday.total_slots, monday.booked_slots, monday.available_slots) == (8, 1, 7)
        assert all(
            (d.total_slots, d.booked_slots, d.available_slots) == (0, 0, 0)
            for d in calendar.days[1:]
        )

    def test_cancelled_bookings_are_not_counted(self, any_service):
        booking = _book(any_service, "10:00")
        any_service.cancel_booking(booking.booking_id)
        calendar = any_service.get_business_calendar(BUSINESS_ID, SERVICE_ID, MONDAY, MONDAY)
        assert calendar.days[0].booked_slots == 0
        assert calendar.days[0].available_slots == 8

    def test_inverted_range(self, service):
        with pytest.raises(ValueError):
            service.get_business_calendar(BUSINESS_ID, SERVICE_ID, MONDAY, MONDAY - timedelta(days=1))

    def test_range_limit(self, service):
        with pytest.raises(ValueError, match="exceeds"):
            service.get_business_calendar(
                BUSINESS_ID, SERVICE_ID, MONDAY, MONDAY + timedelta(days=400)
            )

    def test_unknown_service(self, service):
        with pytest.raises(NotFoundError):
            service.get_business_calendar(BUSINESS_ID, "svc-missing", MONDAY, MONDAY)

    def test_past_days_have_no_available_slots(self, service, clock):
        clock.now = at(MONDAY, "18:00")
        calendar = service.get_business_calendar(BUSINESS_ID, SERVICE_ID, MONDAY, MONDAY)
        assert calendar.days[0].total_slots == 8
        assert calendar.days[0].available_slots == 0

    def test_start_date_must_be_a_date(self, service):
        with pytest.raises(TypeError):
            service.get_business_calendar(BUSINESS_ID, SERVICE_ID, at(MONDAY, "00:00"), MONDAY)

    def test_returns_plain_dates(self, service):
        calendar = service.get_business_calendar(BUSINESS_ID, SERVICE_ID, MONDAY, MONDAY)
        assert type(calendar.days[0].date) is date
