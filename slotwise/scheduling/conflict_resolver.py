"""
Conflict resolver: the authoritative check-and-commit for new bookings.

A slot list shown to a customer may be stale by the time they pick one,
so the resolver re-validates the request against live availability and
policy, then hands the booking to the repository's atomic
``insert_if_no_overlap``. Exactly one of any set of concurrent requests
for overlapping intervals of the same business commits; the others get
``SlotUnavailableError``.

The resolver never retries ``create_booking`` internally; a caller that
wants safe retries supplies an idempotency key.
"""

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from slotwise.errors import (
    DuplicateBookingKeyError,
    PolicyViolationError,
    SlotUnavailableError,
    TransientStoreError,
)
from slotwise.logging_context import get_request_logger
from slotwise.scheduling.slot_generator import (
    fits_open_window,
    open_windows,
    policy_violation,
    resolve_service,
)
from slotwise.schemas.booking_schema import Booking, BookingRequest, BookingStatus
from slotwise.stores.base import AvailabilityRuleStore, BookingRepository, ServiceCatalog

logger = get_request_logger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of a successful booking request."""

    booking: Booking
    replayed: bool = False


def _same_request(booking: Booking, request: BookingRequest) -> bool:
    return (
        booking.business_id == request.business_id
        and booking.service_id == request.service_id
        and booking.customer_id == request.customer_id
        and booking.start_time == request.requested_start
    )


class ConflictResolver:
    """Validates booking requests and commits them without overlap."""

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

    def create_booking(
        self,
        request: BookingRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> Booking:
        """Commit a non-overlapping booking or raise.

        Raises:
            PolicyViolationError: Outside availability windows or advance-booking bounds.
            SlotUnavailableError: The interval overlaps an active booking.
            TransientStoreError: Store timeout or failure; safe to retry unchanged.
            NotFoundError: Unknown service, or a service of another business.
        """
        return self.resolve(request, cancel_event).booking

    def resolve(
        self,
        request: BookingRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> Resolution:
        """Like ``create_booking`` but also reports idempotent replays."""
        logger.info(
            "Attempting booking: business=%s service=%s customer=%s start=%s",
            request.business_id, request.service_id, request.customer_id,
            request.requested_start.isoformat(),
        )

        if request.idempotency_key:
            existing = self._repository.find_by_idempotency_key(request.idempotency_key)
            if existing is not None:
                return self._replay(existing, request)

        service = resolve_service(self._catalog, request.business_id, request.service_id)
        start = request.requested_start
        end = start + timedelta(minutes=service.duration_minutes)

        reason = policy_violation(service, start, self._clock())
        if reason:
            logger.warning("Booking rejected by policy: %s", reason)
            raise PolicyViolationError(reason)

        rules = self._rules.get_rules(request.business_id, start.weekday())
        if not fits_open_window(open_windows(rules, start.date()), start, end):
            logger.warning(
                "Booking rejected: %s-%s is outside availability for business %s",
                start.isoformat(), end.isoformat(), request.business_id,
            )
            raise PolicyViolationError(
                f"Requested time {start:%Y-%m-%d %H:%M}-{end:%H:%M} is outside the "
                "business's availability"
            )

        if cancel_event is not None and cancel_event.is_set():
            raise TransientStoreError("Request cancelled before the booking was committed")

        now = self._clock()
        booking = Booking(
            booking_id=str(uuid.uuid4()),
            business_id=request.business_id,
            service_id=request.service_id,
            customer_id=request.customer_id,
            start_time=start,
            end_time=end,
            status=BookingStatus.PENDING if service.requires_approval else BookingStatus.CONFIRMED,
            idempotency_key=request.idempotency_key,
            created_at=now,
            updated_at=now,
        )

        try:
            committed = self._repository.insert_if_no_overlap(booking)
        except DuplicateBookingKeyError as exc:
            return self._replay(exc.existing, request)
        except SlotUnavailableError as exc:
            logger.warning(
                "Booking conflict for business %s at %s (conflicts: %s)",
                request.business_id, start.isoformat(), exc.conflicting_ids,
            )
            raise

        logger.info(
            "Booking %s committed with status %s", committed.booking_id, committed.status.value
        )
        return Resolution(booking=committed)

    def _replay(self, existing: Booking, request: BookingRequest) -> Resolution:
        if not _same_request(existing, request):
            logger.warning(
                "Idempotency key %s reused for a different request", request.idempotency_key
            )
            raise PolicyViolationError(
                "Idempotency key was already used for a different booking request"
            )
        logger.info("Replaying booking %s for idempotency key", existing.booking_id)
        return Resolution(booking=existing, replayed=True)
