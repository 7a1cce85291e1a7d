"""Booking data models and outbound event payload."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from slotwise.utils import overlaps


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


# Statuses that hold their interval; everything else frees it.
ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED}
)
TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
)


class Booking(BaseModel):
    """A customer's reservation of ``[start_time, end_time)`` at a business."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    booking_id: str
    business_id: str
    service_id: str
    customer_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_interval(self) -> "Booking":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return overlaps(self.start_time, self.end_time, start, end)


class BookingRequest(BaseModel):
    """Validated booking request."""
    business_id: str = Field(min_length=1)
    service_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)
    requested_start: datetime
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=255)


class BookingEvent(BaseModel):
    """Outbound domain event emitted after a committed state change."""
    subject: str
    booking_id: str
    business_id: str
    service_id: str
    customer_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    occurred_at: datetime

    @classmethod
    def from_booking(cls, subject: str, booking: Booking, occurred_at: datetime) -> "BookingEvent":
        return cls(
            subject=subject,
            booking_id=booking.booking_id,
            business_id=booking.business_id,
            service_id=booking.service_id,
            customer_id=booking.customer_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
            status=booking.status,
            occurred_at=occurred_at,
        )

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready payload, without the routing subject."""
        return self.model_dump(mode="json", exclude={"subject"})
