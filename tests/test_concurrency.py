"""Concurrent booking attempts against the in-memory and SQLite repositories."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from slotwise.errors import InvalidTransitionError, SlotUnavailableError
from slotwise.schemas.booking_schema import BookingStatus
from tests.conftest import BUSINESS_ID, MONDAY, SERVICE_ID, at


def _race(service, starts, customer_prefix="cust"):
    """Fire one create_booking per start time, all released at once."""
    barrier = threading.Barrier(len(starts))

    def attempt(index_and_start):
        index, start = index_and_start
        barrier.wait()
        try:
            return service.create_booking(
                BUSINESS_ID, SERVICE_ID, f"{customer_prefix}-{index}", start
            )
        except SlotUnavailableError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(starts)) as pool:
        return list(pool.map(attempt, enumerate(starts)))


class TestConcurrentCreate:
    def test_exactly_one_winner_for_same_slot(self, any_service):
        results = _race(any_service, [at(MONDAY, "10:00")] * 8)
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, SlotUnavailableError)]
        assert len(winners) == 1
        assert len(losers) == 7
        assert all(loser.conflicting_ids == [winners[0].booking_id] for loser in losers)

    def test_overlapping_offsets_never_both_commit(self, any_service):
        starts = [at(MONDAY, hhmm) for hhmm in ("10:00", "10:15", "10:30", "10:45")] * 2
        results = _race(any_service, starts)
        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(winners) == 1

    def test_committed_bookings_never_overlap(self, any_service):
        starts = [
            at(MONDAY, hhmm)
            for hhmm in ("09:00", "09:30", "10:00", "10:30", "11:00", "11:30", "12:00", "12:30")
        ]
        _race(any_service, starts * 2)
        bookings, _ = any_service.list_bookings_for_business(BUSINESS_ID, limit=100)
        active = sorted((b for b in bookings if b.is_active), key=lambda b: b.start_time)
        assert active
        for earlier, later in zip(active, active[1:]):
            assert earlier.end_time <= later.start_time

    def test_disjoint_slots_all_commit(self, any_service):
        starts = [at(MONDAY, hhmm) for hhmm in ("09:00", "11:00", "13:00", "15:00")]
        results = _race(any_service, starts)
        assert all(r.status == BookingStatus.CONFIRMED for r in results)


class TestConcurrentTransitions:
    def test_cancel_wins_once(self, any_service, publisher):
        workers = 6
        booking = any_service.create_booking(BUSINESS_ID, SERVICE_ID, "cust-1", at(MONDAY, "10:00"))
        publisher.clear()
        barrier = threading.Barrier(workers)

        def cancel(_):
            barrier.wait()
            try:
                return any_service.cancel_booking(booking.booking_id)
            except InvalidTransitionError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(cancel, range(workers)))

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert publisher.subjects() == ["booking.cancelled"]


class TestCommitIsDurable:
    def test_every_returned_booking_is_stored(self, any_service):
        hours = ("09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00")
        for week in range(10):
            day = MONDAY + timedelta(days=7 * week)
            results = _race(any_service, [at(day, hhmm) for hhmm in hours])
            assert all(r.status == BookingStatus.CONFIRMED for r in results)
            for booking in results:
                assert any_service.get_booking(booking.booking_id) == booking
        _, total = any_service.list_bookings_for_business(BUSINESS_ID)
        assert total == 10 * len(hours)
