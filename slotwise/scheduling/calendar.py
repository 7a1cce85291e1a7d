"""Per-day slot summary for a business across a date range."""

import logging
from datetime import date, datetime, timedelta
from typing import Callable

from slotwise.config import settings
from slotwise.schemas.availability_schema import BusinessCalendar, DaySummary
from slotwise.scheduling.slot_generator import (
    candidate_starts,
    generate_slots,
    open_windows,
    resolve_service,
    with_read_retries,
)
from slotwise.stores.base import AvailabilityRuleStore, BookingRepository, ServiceCatalog
from slotwise.utils import day_bounds, overlaps, require_calendar_date

logger = logging.getLogger(__name__)


class CalendarBuilder:
    """Summarises total, booked, and still-available slots per day."""

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

    def build(
        self,
        business_id: str,
        service_id: str,
        start_date: date,
        end_date: date,
    ) -> BusinessCalendar:
        require_calendar_date(start_date, "start_date")
        require_calendar_date(end_date, "end_date")
        if start_date > end_date:
            raise ValueError("start_date cannot be after end_date")
        span = (end_date - start_date).days + 1
        if span > settings.scheduling.max_calendar_days:
            raise ValueError(
                f"Calendar range of {span} days exceeds the limit of "
                f"{settings.scheduling.max_calendar_days}"
            )

        service = with_read_retries(lambda: resolve_service(self._catalog, business_id, service_id))
        range_start, _ = day_bounds(start_date)
        _, range_end = day_bounds(end_date)
        bookings = with_read_retries(
            lambda: self._repository.find_overlapping(business_id, range_start, range_end)
        )
        rules_by_day = {
            weekday: with_read_retries(lambda wd=weekday: self._rules.get_rules(business_id, wd))
            for weekday in range(7)
        }

        busy = [(b.start_time, b.end_time) for b in bookings if b.is_active]
        now = self._clock()
        duration = timedelta(minutes=service.duration_minutes)
        days: list[DaySummary] = []
        for offset in range(span):
            day = start_date + timedelta(days=offset)
            rules = rules_by_day[day.weekday()]
            candidates = candidate_starts(open_windows(rules, day), duration, duration)
            booked = sum(
                1 for start, end in candidates
                if any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy)
            )
            # Available also excludes slots outside the advance-booking horizon.
            available = len(
                generate_slots(
                    rules=rules, bookings=bookings, service=service, on_date=day, now=now
                )
            )
            days.append(
                DaySummary(
                    date=day,
                    total_slots=len(candidates),
                    booked_slots=booked,
                    available_slots=available,
                )
            )

        logger.info(
            "Built calendar for business %s service %s: %s to %s",
            business_id, service_id, start_date, end_date,
        )
        return BusinessCalendar(
            business_id=business_id,
            service_id=service_id,
            start_date=start_date,
            end_date=end_date,
            days=days,
        )
