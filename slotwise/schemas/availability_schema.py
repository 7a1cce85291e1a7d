"""Availability rule, time slot, and calendar data models."""

from datetime import date, datetime, time
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from slotwise.utils import parse_hhmm


class DayOfWeek(IntEnum):
    """Day numbering follows ``date.weekday()``."""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class AvailabilityRule(BaseModel):
    """A recurring weekly open window for a business.

    Times accept either ``datetime.time`` values or ``HH:MM`` strings.
    """
    model_config = ConfigDict(frozen=True)

    business_id: str
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, value):
        if isinstance(value, str):
            return parse_hhmm(value)
        return value

    @model_validator(mode="after")
    def check_order(self) -> "AvailabilityRule":
        if self.start_time >= self.end_time:
            raise ValueError(
                f"start_time ({self.start_time:%H:%M}) must be before "
                f"end_time ({self.end_time:%H:%M})"
            )
        return self

    def window_on(self, day: date) -> tuple[datetime, datetime]:
        """Concrete ``[start, end)`` interval of this rule on a given date."""
        return datetime.combine(day, self.start_time), datetime.combine(day, self.end_time)


class TimeSlot(BaseModel):
    """A concrete bookable interval. Derived on every read, never persisted."""
    model_config = ConfigDict(frozen=True)

    business_id: str
    service_id: str
    start_time: datetime
    end_time: datetime


class DaySummary(BaseModel):
    """Slot counts for a single calendar day."""
    date: date
    total_slots: int = 0
    booked_slots: int = 0
    available_slots: int = 0


class BusinessCalendar(BaseModel):
    """Per-day slot summary across a date range."""
    business_id: str
    service_id: str
    start_date: date
    end_date: date
    days: list[DaySummary] = Field(default_factory=list)
