"""Shared test fixtures and helpers."""

import uuid
from datetime import date, datetime, timedelta
from typing import Optional

import pytest

from slotwise.booking_service import SchedulingService
from slotwise.events import InMemoryPublisher
from slotwise.schemas.availability_schema import AvailabilityRule
from slotwise.schemas.booking_schema import Booking, BookingStatus
from slotwise.schemas.service_schema import Service
from slotwise.stores.memory import (
    InMemoryAvailabilityRuleStore,
    InMemoryBookingRepository,
    InMemoryServiceCatalog,
)
from slotwise.stores.sql import open_sql_stores

BUSINESS_ID = "biz-1"
SERVICE_ID = "svc-60"

# 2025-03-17 is a Monday.
MONDAY = date(2025, 3, 17)
NOW = datetime(2025, 3, 10, 8, 0)


class FakeClock:
    """Settable clock for deterministic policy and guard checks."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def at(day: date, hhmm: str) -> datetime:
    hours, minutes = (int(p) for p in hhmm.split(":"))
    return datetime.combine(day, datetime.min.time()) + timedelta(hours=hours, minutes=minutes)


def make_rule(
    start: str = "09:00",
    end: str = "17:00",
    day_of_week: int = 0,
    business_id: str = BUSINESS_ID,
) -> AvailabilityRule:
    return AvailabilityRule(
        business_id=business_id, day_of_week=day_of_week, start_time=start, end_time=end
    )


def make_service(
    service_id: str = SERVICE_ID,
    business_id: str = BUSINESS_ID,
    duration_minutes: int = 60,
    **kwargs,
) -> Service:
    return Service(
        service_id=service_id,
        business_id=business_id,
        name=kwargs.pop("name", "Consultation"),
        duration_minutes=duration_minutes,
        **kwargs,
    )


def make_booking(
    start: datetime,
    minutes: int = 60,
    status: BookingStatus = BookingStatus.CONFIRMED,
    business_id: str = BUSINESS_ID,
    customer_id: str = "cust-1",
    idempotency_key: Optional[str] = None,
) -> Booking:
    return Booking(
        booking_id=str(uuid.uuid4()),
        business_id=business_id,
        service_id=SERVICE_ID,
        customer_id=customer_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        status=status,
        idempotency_key=idempotency_key,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def rule_store():
    return InMemoryAvailabilityRuleStore([make_rule()])


@pytest.fixture
def catalog():
    return InMemoryServiceCatalog([make_service()])


@pytest.fixture
def repository():
    return InMemoryBookingRepository(lock_timeout_sec=5.0)


@pytest.fixture
def service(rule_store, catalog, repository, publisher, clock):
    return SchedulingService(rule_store, catalog, repository, publisher, clock=clock)


@pytest.fixture
def sql_stores(tmp_path):
    stores = open_sql_stores(f"sqlite:///{tmp_path / 'slotwise-test.db'}", timeout_sec=10.0)
    stores.rules.replace_rules(BUSINESS_ID, [make_rule()])
    stores.services.upsert_service(make_service())
    yield stores
    stores.engine.dispose()


@pytest.fixture
def sql_service(sql_stores, publisher, clock):
    return SchedulingService.from_sql_stores(sql_stores, publisher, clock=clock)


@pytest.fixture
def memory_sql_service(publisher, clock):
    """SQLite in-memory database: one connection shared by every thread."""
    stores = open_sql_stores("sqlite://", timeout_sec=10.0)
    stores.rules.replace_rules(BUSINESS_ID, [make_rule()])
    stores.services.upsert_service(make_service())
    yield SchedulingService.from_sql_stores(stores, publisher, clock=clock)
    stores.engine.dispose()


@pytest.fixture(params=["memory", "sqlite", "sqlite-memory"])
def any_service(request, publisher, clock):
    """The facade backed by each repository implementation in turn."""
    if request.param == "memory":
        return SchedulingService(
            InMemoryAvailabilityRuleStore([make_rule()]),
            InMemoryServiceCatalog([make_service()]),
            InMemoryBookingRepository(lock_timeout_sec=10.0),
            publisher,
            clock=clock,
        )
    if request.param == "sqlite-memory":
        return request.getfixturevalue("memory_sql_service")
    return request.getfixturevalue("sql_service")
