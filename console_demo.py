"""
Offline console demo: walks through slot listing, booking, and lifecycle
transitions against the in-memory stores. No database, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario race
    python console_demo.py --scenario lifecycle --sqlite demo.db
"""

import argparse
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Optional

from slotwise.booking_service import SchedulingService
from slotwise.errors import SchedulingError
from slotwise.events import InMemoryPublisher
from slotwise.schemas.availability_schema import AvailabilityRule, DayOfWeek
from slotwise.schemas.service_schema import Service
from slotwise.stores.memory import (
    InMemoryAvailabilityRuleStore,
    InMemoryBookingRepository,
    InMemoryServiceCatalog,
)
from slotwise.stores.sql import open_sql_stores

GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

BUSINESS_ID = "biz-harbour-cuts"
SERVICE_ID = "svc-haircut"


def _next_monday(today: date) -> date:
    return today + timedelta(days=(7 - today.weekday()) or 7)


class ConsoleSession:
    """Seeds a demo business and prints each scheduling step."""

    SCENARIOS = ("slots", "race", "policy", "lifecycle")

    def __init__(self, sqlite_path: Optional[str] = None) -> None:
        self.publisher = InMemoryPublisher()
        self.monday = _next_monday(date.today())
        self.now = datetime.combine(self.monday - timedelta(days=1), datetime.min.time())
        rules = [
            AvailabilityRule(
                business_id=BUSINESS_ID,
                day_of_week=DayOfWeek.MONDAY,
                start_time="09:00",
                end_time="17:00",
            )
        ]
        service = Service(
            service_id=SERVICE_ID,
            business_id=BUSINESS_ID,
            name="Haircut",
            duration_minutes=60,
        )
        if sqlite_path:
            stores = open_sql_stores(f"sqlite:///{sqlite_path}")
            stores.rules.replace_rules(BUSINESS_ID, rules)
            stores.services.upsert_service(service)
            self.service = SchedulingService.from_sql_stores(
                stores, self.publisher, clock=lambda: self.now
            )
        else:
            self.service = SchedulingService(
                InMemoryAvailabilityRuleStore(rules),
                InMemoryServiceCatalog([service]),
                InMemoryBookingRepository(),
                self.publisher,
                clock=lambda: self.now,
            )

    def say(self, text: str) -> None:
        print(f"{GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def fail(self, exc: SchedulingError) -> None:
        print(f"{RED}  !! {exc.kind.value}: {exc}{RESET}")

    def show_slots(self) -> None:
        slots = self.service.list_available_slots(BUSINESS_ID, SERVICE_ID, self.monday)
        times = ", ".join(s.start_time.strftime("%H:%M") for s in slots) or "none"
        self.say(f"{len(slots)} slot(s) on {self.monday:%A %Y-%m-%d}: {times}")

    def book(self, hour: int, customer_id: str = "cust-1"):
        start = datetime.combine(self.monday, datetime.min.time()) + timedelta(hours=hour)
        try:
            booking = self.service.create_booking(BUSINESS_ID, SERVICE_ID, customer_id, start)
        except SchedulingError as exc:
            self.fail(exc)
            return None
        self.system_log(
            f"booked {booking.booking_id[:8]} {booking.start_time:%H:%M}-{booking.end_time:%H:%M} "
            f"[{booking.status.value}] for {customer_id}"
        )
        return booking

    def run_slots(self) -> None:
        self.show_slots()
        self.book(11)
        self.show_slots()

    def run_race(self, contenders: int = 8) -> None:
        barrier = threading.Barrier(contenders)

        def attempt(n: int):
            barrier.wait()
            return self.book(10, customer_id=f"cust-{n}")

        with ThreadPoolExecutor(max_workers=contenders) as pool:
            results = list(pool.map(attempt, range(contenders)))
        winners = [b for b in results if b is not None]
        self.say(f"{len(winners)} of {contenders} concurrent requests for 10:00 won")

    def run_policy(self) -> None:
        self.book(7)
        self.book(16)
        self.book(17)

    def run_lifecycle(self) -> None:
        booking = self.book(9)
        if booking is None:
            return
        try:
            self.service.complete_booking(booking.booking_id)
        except SchedulingError as exc:
            self.fail(exc)
        self.now = booking.end_time + timedelta(minutes=1)
        self.service.complete_booking(booking.booking_id)
        self.system_log("completed after the appointment ended")
        try:
            self.service.cancel_booking(booking.booking_id)
        except SchedulingError as exc:
            self.fail(exc)

    def run(self, scenario: str) -> None:
        print(f"{BOLD}{YELLOW}--- scenario: {scenario} ---{RESET}")
        getattr(self, f"run_{scenario}")()
        self.system_log(f"events: {', '.join(self.publisher.subjects()) or 'none'}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Offline scheduling core demo.")
    parser.add_argument(
        "--scenario",
        choices=ConsoleSession.SCENARIOS,
        default=None,
        help="Run a single scenario (default: all).",
    )
    parser.add_argument(
        "--sqlite",
        default=None,
        help="Use a SQLite database file instead of the in-memory stores.",
    )
    args = parser.parse_args(argv)

    scenarios = [args.scenario] if args.scenario else list(ConsoleSession.SCENARIOS)
    for scenario in scenarios:
        ConsoleSession(args.sqlite).run(scenario)
    return 0


if __name__ == "__main__":
    sys.exit(main())
