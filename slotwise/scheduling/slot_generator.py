"""
Slot generation: weekly availability rules + existing bookings -> bookable start times.

The core algorithm (``generate_slots``) is a pure function of its inputs,
including the current time, so it is safe to call without any locking.
Its result is a snapshot: races with concurrent bookings are settled by
the conflict resolver at commit time, never here.

Usage:
    slots = generate_slots(
        rules=rules, bookings=bookings, service=service,
        on_date=date(2025, 3, 17), granularity_minutes=15, now=datetime.now(),
    )
"""

import time
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, TypeVar

from slotwise.config import settings
from slotwise.errors import NotFoundError, PolicyViolationError, TransientStoreError
from slotwise.logging_context import get_request_logger
from slotwise.schemas.availability_schema import AvailabilityRule, TimeSlot
from slotwise.schemas.booking_schema import Booking
from slotwise.schemas.service_schema import Service
from slotwise.stores.base import AvailabilityRuleStore, BookingRepository, ServiceCatalog
from slotwise.utils import day_bounds, overlaps, require_calendar_date

logger = get_request_logger(__name__)

T = TypeVar("T")

Window = tuple[datetime, datetime]


def merge_windows(windows: Iterable[Window]) -> list[Window]:
    """Merge windows that touch or overlap into maximal open intervals."""
    merged: list[Window] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            last_start, last_end = merged[-1]
            merged[-1] = (last_start, max(last_end, end))
        else:
            merged.append((start, end))
    return merged


def open_windows(rules: Iterable[AvailabilityRule], on_date: date) -> list[Window]:
    """Merged open intervals for the rules that apply to ``on_date``'s weekday."""
    weekday = on_date.weekday()
    return merge_windows(r.window_on(on_date) for r in rules if r.day_of_week == weekday)


def booking_horizon(service: Service, now: datetime) -> Window:
    """Earliest and latest legal start times for a service."""
    return (
        now + timedelta(hours=service.min_advance_booking_hours),
        now + timedelta(days=service.max_advance_booking_days),
    )


def policy_violation(service: Service, start: datetime, now: datetime) -> Optional[str]:
    """Reason the start time breaks the advance-booking policy, or None."""
    earliest, latest = booking_horizon(service, now)
    if start < earliest:
        return (
            f"Bookings for this service must be made at least "
            f"{service.min_advance_booking_hours} hour(s) in advance"
        )
    if start > latest:
        return (
            f"Bookings for this service can be made at most "
            f"{service.max_advance_booking_days} day(s) in advance"
        )
    return None


def fits_open_window(windows: Iterable[Window], start: datetime, end: datetime) -> bool:
    """True if ``[start, end)`` lies entirely inside one open window."""
    return any(w_start <= start and end <= w_end for w_start, w_end in windows)


def candidate_starts(windows: Iterable[Window], duration: timedelta, step: timedelta) -> list[Window]:
    """Walk each window in ``step`` increments, keeping slots that end inside it."""
    candidates: list[Window] = []
    for w_start, w_end in windows:
        current = w_start
        while current + duration <= w_end:
            candidates.append((current, current + duration))
            current += step
    return candidates


def generate_slots(
    *,
    rules: Iterable[AvailabilityRule],
    bookings: Iterable[Booking],
    service: Service,
    on_date: date,
    now: datetime,
    granularity_minutes: Optional[int] = None,
) -> list[TimeSlot]:
    """Compute bookable slots for one service on one date.

    Steps: merge the day's windows, walk them by ``granularity_minutes``
    (defaulting to the service duration), drop candidates overlapping an
    active booking, drop candidates outside the advance-booking horizon,
    and return the rest sorted by start time.
    """
    require_calendar_date(on_date, "on_date")
    step_minutes = granularity_minutes or service.duration_minutes
    if step_minutes <= 0:
        raise ValueError(f"granularity_minutes must be > 0, got {step_minutes}")

    duration = timedelta(minutes=service.duration_minutes)
    windows = open_windows(rules, on_date)
    if not windows:
        return []

    busy = [(b.start_time, b.end_time) for b in bookings if b.is_active]
    earliest, latest = booking_horizon(service, now)

    slots = [
        TimeSlot(
            business_id=service.business_id,
            service_id=service.service_id,
            start_time=start,
            end_time=end,
        )
        for start, end in candidate_starts(windows, duration, timedelta(minutes=step_minutes))
        if not any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy)
        and earliest <= start <= latest
    ]
    return sorted(slots, key=lambda s: s.start_time)


def resolve_service(catalog: ServiceCatalog, business_id: str, service_id: str) -> Service:
    """Look up a service and check it belongs to the business and is bookable."""
    service = catalog.get_service(service_id)
    if service is None or service.business_id != business_id:
        logger.warning("Service %s not found for business %s", service_id, business_id)
        raise NotFoundError(f"Service {service_id} not found for business {business_id}")
    if not service.is_active:
        raise PolicyViolationError(f"Service {service_id} is not currently bookable")
    return service


def with_read_retries(
    operation: Callable[[], T],
    attempts: Optional[int] = None,
    backoff_sec: Optional[float] = None,
) -> T:
    """Retry an idempotent read on ``TransientStoreError``."""
    attempts = attempts or settings.scheduling.read_retry_attempts
    backoff = settings.scheduling.read_retry_backoff_sec if backoff_sec is None else backoff_sec
    attempt = 1
    while True:
        try:
            return operation()
        except TransientStoreError:
            if attempt >= attempts:
                raise
            logger.info("Transient store error on read, retrying (%d/%d)", attempt, attempts)
            time.sleep(backoff * attempt)
            attempt += 1


class SlotGenerator:
    """Store-backed wrapper around ``generate_slots``.

    Rules are fetched fresh on every call; nothing is cached between
    requests.
    """

    def __init__(
        self,
        rule_store: AvailabilityRuleStore,
        catalog: ServiceCatalog,
        repository: BookingRepository,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._rules = rule_store
        self._catalog = catalog
        self._repository = repository
        self._clock = clock

    def generate(
        self,
        business_id: str,
        service_id: str,
        on_date: date,
        granularity_minutes: Optional[int] = None,
    ) -> list[TimeSlot]:
        require_calendar_date(on_date, "on_date")
        service = with_read_retries(lambda: resolve_service(self._catalog, business_id, service_id))
        rules = with_read_retries(lambda: self._rules.get_rules(business_id, on_date.weekday()))
        if not rules:
            logger.info("No availability rules for %s on %s", business_id, on_date)
            return []

        granularity = granularity_minutes or settings.scheduling.default_granularity_minutes or None
        day_start, day_end = day_bounds(on_date)
        bookings = with_read_retries(
            lambda: self._repository.find_overlapping(business_id, day_start, day_end)
        )
        slots = generate_slots(
            rules=rules,
            bookings=bookings,
            service=service,
            on_date=on_date,
            now=self._clock(),
            granularity_minutes=granularity,
        )
        logger.info(
            "Generated %d slot(s) for business %s service %s on %s",
            len(slots), business_id, service_id, on_date,
        )
        return slots
