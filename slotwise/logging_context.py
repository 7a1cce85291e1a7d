"""Request correlation IDs for scheduling logs.

Each facade call runs inside ``request_scope``, so every record logged
while a booking is listed, validated, committed, and announced carries
the same ``request_id``. Callers that already have a correlation ID (an
HTTP request header, an idempotency key) pass it in; otherwise a fresh
``REQ-`` id is generated.

Usage:
    with request_scope(idempotency_key):
        logger.info("Creating booking")  # -> [REQ-...] Creating booking
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

NO_REQUEST = "-"

_request_id: ContextVar[str] = ContextVar("request_id", default=NO_REQUEST)


def new_request_id() -> str:
    return f"REQ-{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    return _request_id.get()


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of one scheduling operation.

    An ID already bound by an outer scope is kept unless ``request_id``
    is given explicitly. The previous value is restored on exit.
    """
    current = _request_id.get()
    if request_id is None:
        request_id = current if current != NO_REQUEST else new_request_id()
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """Adds ``request_id`` to every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        return True


def get_request_logger(name: str) -> logging.Logger:
    """``logging.getLogger`` with a ``RequestIdFilter`` attached."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, RequestIdFilter) for f in logger.filters):
        logger.addFilter(RequestIdFilter())
    return logger
