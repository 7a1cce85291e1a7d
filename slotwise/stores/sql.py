"""
SQLAlchemy-backed stores.

Conflict-free inserts use an explicit range lock: one ``booking_locks`` row
per (business, calendar day) touched by the requested interval is locked
in ascending date order before the overlap query runs, so two units of
work for overlapping intervals of the same business are serialised and
the second one sees the first one's booking.

* SQLite: write units of work start with ``BEGIN IMMEDIATE`` which already
  serialises writers; the lock rows are kept for portability. Read units
  use a plain deferred ``BEGIN`` so slot listings never take the write
  lock. An in-memory database lives on a single shared connection, so
  every unit of work on it is serialised by an engine-wide lock.
* Server databases: lock rows are taken with ``SELECT ... FOR UPDATE``
  under READ COMMITTED, so the overlap query that follows reads bookings
  committed by the previous lock holder.

Lock waits are bounded by ``STORE_TIMEOUT_SEC``; a timeout or any other
operational failure surfaces as ``TransientStoreError``.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Query, Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from slotwise.config import settings
from slotwise.errors import (
    DuplicateBookingKeyError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    TransientStoreError,
)
from slotwise.schemas.availability_schema import AvailabilityRule
from slotwise.schemas.booking_schema import ACTIVE_STATUSES, Booking, BookingStatus
from slotwise.schemas.service_schema import Service
from slotwise.utils import days_spanned, format_hhmm

logger = logging.getLogger(__name__)

Base = declarative_base()

# Execution option marking a connection whose transaction will write.
WRITE_OPTION = "slotwise_write"


class AvailabilityRuleRow(Base):
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(String(255), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)

    __table_args__ = (
        Index("idx_availability_business_day", "business_id", "day_of_week"),
    )


class ServiceRow(Base):
    __tablename__ = "services"

    id = Column(String(255), primary_key=True)
    business_id = Column(String(255), index=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    duration_minutes = Column(Integer, nullable=False)
    min_advance_booking_hours = Column(Integer, nullable=False, default=0)
    max_advance_booking_days = Column(Integer, nullable=False, default=90)
    requires_approval = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)


class BookingRow(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    business_id = Column(String(255), nullable=False)
    service_id = Column(String(255), index=True, nullable=False)
    customer_id = Column(String(255), index=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False)
    idempotency_key = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_bookings_business_start", "business_id", "start_time"),
    )


class BookingLockRow(Base):
    """One row per (business, day); locking it guards inserts on that day."""

    __tablename__ = "booking_locks"

    business_id = Column(String(255), primary_key=True)
    lock_date = Column(Date, primary_key=True)


def create_store_engine(
    url: Optional[str] = None,
    timeout_sec: Optional[float] = None,
    echo: Optional[bool] = None,
) -> Engine:
    """Build an engine whose transactions are safe for check-then-insert."""
    url = url or settings.database.url
    timeout = settings.database.store_timeout_sec if timeout_sec is None else timeout_sec
    echo = settings.database.echo if echo is None else echo

    if url.startswith("sqlite"):
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"timeout": timeout, "check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )

        @event.listens_for(engine, "connect")
        def _disable_driver_begin(dbapi_connection, _connection_record):
            # Let SQLAlchemy emit BEGIN itself.
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin(conn):
            if conn.get_execution_options().get(WRITE_OPTION):
                conn.exec_driver_sql("BEGIN IMMEDIATE")
            else:
                conn.exec_driver_sql("BEGIN")

        return engine

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c lock_timeout={int(timeout * 1000)}"
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_timeout=timeout,
        isolation_level="READ COMMITTED",
        connect_args=connect_args,
    )


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate infrastructure failures into ``TransientStoreError``."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        logger.warning("Store operation '%s' failed: %s", operation, exc)
        raise TransientStoreError(f"{operation} failed: {exc.__class__.__name__}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.warning("Connection lost during '%s'", operation)
            raise TransientStoreError(f"{operation} failed: connection lost") from exc
        raise


def _to_booking(row: BookingRow) -> Booking:
    return Booking(
        booking_id=row.id,
        business_id=row.business_id,
        service_id=row.service_id,
        customer_id=row.customer_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=BookingStatus(row.status),
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_row(booking: Booking) -> BookingRow:
    return BookingRow(
        id=booking.booking_id,
        business_id=booking.business_id,
        service_id=booking.service_id,
        customer_id=booking.customer_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        status=booking.status.value,
        idempotency_key=booking.idempotency_key,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


class _SqlStore:
    def __init__(
        self,
        engine: Engine,
        serial_lock: Optional[threading.Lock] = None,
        timeout_sec: Optional[float] = None,
    ) -> None:
        self._engine = engine
        self._serial_lock = serial_lock
        self._timeout = settings.database.store_timeout_sec if timeout_sec is None else timeout_sec
        self._session_factory = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )
        self._write_session_factory = sessionmaker(
            bind=engine.execution_options(**{WRITE_OPTION: True}),
            autoflush=False,
            expire_on_commit=False,
        )

    @contextmanager
    def _serialised(self, operation: str) -> Iterator[None]:
        if self._serial_lock is None:
            yield
            return
        if not self._serial_lock.acquire(timeout=self._timeout):
            logger.warning("Store operation '%s' timed out waiting for the connection", operation)
            raise TransientStoreError(
                f"{operation} failed: timed out after {self._timeout}s waiting for the connection"
            )
        try:
            yield
        finally:
            self._serial_lock.release()

    @contextmanager
    def _unit_of_work(self, operation: str, write: bool = False) -> Iterator[Session]:
        """Commit on success, roll back fully on any exception."""
        factory = self._write_session_factory if write else self._session_factory
        with self._serialised(operation), _store_errors(operation):
            with factory() as session, session.begin():
                yield session


class SqlAvailabilityRuleStore(_SqlStore):
    def get_rules(self, business_id: str, day_of_week: int) -> list[AvailabilityRule]:
        with self._unit_of_work("get availability rules") as session:
            rows = (
                session.query(AvailabilityRuleRow)
                .filter(
                    AvailabilityRuleRow.business_id == business_id,
                    AvailabilityRuleRow.day_of_week == day_of_week,
                )
                .order_by(AvailabilityRuleRow.start_time)
                .all()
            )
            return [
                AvailabilityRule(
                    business_id=r.business_id,
                    day_of_week=r.day_of_week,
                    start_time=r.start_time,
                    end_time=r.end_time,
                )
                for r in rows
            ]

    def replace_rules(self, business_id: str, rules: list[AvailabilityRule]) -> None:
        """Atomically swap a business's full weekly rule set."""
        with self._unit_of_work("replace availability rules", write=True) as session:
            session.query(AvailabilityRuleRow).filter(
                AvailabilityRuleRow.business_id == business_id
            ).delete()
            session.add_all(
                AvailabilityRuleRow(
                    business_id=business_id,
                    day_of_week=r.day_of_week,
                    start_time=format_hhmm(r.start_time),
                    end_time=format_hhmm(r.end_time),
                )
                for r in rules
            )
        logger.info("Availability rules replaced for %s (%d rules)", business_id, len(rules))


class SqlServiceCatalog(_SqlStore):
    def get_service(self, service_id: str) -> Optional[Service]:
        with self._unit_of_work("get service") as session:
            row = session.get(ServiceRow, service_id)
            if row is None:
                return None
            return Service(
                service_id=row.id,
                business_id=row.business_id,
                name=row.name,
                duration_minutes=row.duration_minutes,
                min_advance_booking_hours=row.min_advance_booking_hours,
                max_advance_booking_days=row.max_advance_booking_days,
                requires_approval=row.requires_approval,
                is_active=row.is_active,
            )

    def upsert_service(self, service: Service) -> None:
        with self._unit_of_work("upsert service", write=True) as session:
            session.merge(
                ServiceRow(
                    id=service.service_id,
                    business_id=service.business_id,
                    name=service.name,
                    duration_minutes=service.duration_minutes,
                    min_advance_booking_hours=service.min_advance_booking_hours,
                    max_advance_booking_days=service.max_advance_booking_days,
                    requires_approval=service.requires_approval,
                    is_active=service.is_active,
                )
            )


class SqlBookingRepository(_SqlStore):
    @staticmethod
    def _overlapping_query(
        session: Session, business_id: str, start: datetime, end: datetime
    ) -> Query:
        return (
            session.query(BookingRow)
            .filter(
                BookingRow.business_id == business_id,
                BookingRow.status.in_([s.value for s in ACTIVE_STATUSES]),
                BookingRow.start_time < end,
                BookingRow.end_time > start,
            )
            .order_by(BookingRow.start_time)
        )

    @staticmethod
    def _lock_day(session: Session, business_id: str, day: date) -> None:
        query = session.query(BookingLockRow).filter(
            BookingLockRow.business_id == business_id,
            BookingLockRow.lock_date == day,
        )
        if query.with_for_update().first() is not None:
            return
        try:
            with session.begin_nested():
                session.add(BookingLockRow(business_id=business_id, lock_date=day))
        except IntegrityError:
            # Created by a concurrent unit of work; lock the existing row below.
            logger.debug("Lock row for %s on %s created concurrently", business_id, day)
        query.with_for_update().one()

    def _lock_range(self, session: Session, business_id: str, start: datetime, end: datetime) -> None:
        for day in days_spanned(start, end):
            self._lock_day(session, business_id, day)

    def find_overlapping(
        self, business_id: str, start: datetime, end: datetime
    ) -> list[Booking]:
        with self._unit_of_work("find overlapping bookings") as session:
            rows = self._overlapping_query(session, business_id, start, end).all()
            return [_to_booking(r) for r in rows]

    def insert_if_no_overlap(self, booking: Booking) -> Booking:
        try:
            with self._unit_of_work("insert booking", write=True) as session:
                self._lock_range(session, booking.business_id, booking.start_time, booking.end_time)
                if booking.idempotency_key:
                    existing = (
                        session.query(BookingRow)
                        .filter(BookingRow.idempotency_key == booking.idempotency_key)
                        .first()
                    )
                    if existing is not None:
                        raise DuplicateBookingKeyError(_to_booking(existing))
                conflicts = self._overlapping_query(
                    session, booking.business_id, booking.start_time, booking.end_time
                ).all()
                if conflicts:
                    raise SlotUnavailableError(
                        f"Requested time {booking.start_time:%Y-%m-%d %H:%M} is no longer available",
                        [c.id for c in conflicts],
                    )
                session.add(_to_row(booking))
                session.flush()
        except IntegrityError as exc:
            if booking.idempotency_key:
                existing = self.find_by_idempotency_key(booking.idempotency_key)
                if existing is not None:
                    raise DuplicateBookingKeyError(existing) from exc
            raise
        return booking

    def update_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        *,
        expected_status: BookingStatus,
        updated_at: Optional[datetime] = None,
    ) -> Booking:
        with self._unit_of_work("update booking status", write=True) as session:
            row = session.get(BookingRow, booking_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            if row.status != expected_status.value:
                raise InvalidTransitionError(
                    BookingStatus(row.status), new_status, "status changed concurrently"
                )
            row.status = new_status.value
            row.updated_at = updated_at or datetime.now()
            session.flush()
            return _to_booking(row)

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._unit_of_work("get booking") as session:
            row = session.get(BookingRow, booking_id)
            return _to_booking(row) if row is not None else None

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Booking]:
        with self._unit_of_work("find booking by idempotency key") as session:
            row = (
                session.query(BookingRow)
                .filter(BookingRow.idempotency_key == idempotency_key)
                .first()
            )
            return _to_booking(row) if row is not None else None

    def _list(self, column, value: str, limit: int, offset: int) -> tuple[list[Booking], int]:
        with self._unit_of_work("list bookings") as session:
            query = session.query(BookingRow).filter(column == value)
            total = query.count()
            rows = (
                query.order_by(BookingRow.start_time.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [_to_booking(r) for r in rows], total

    def list_for_customer(
        self, customer_id: str, limit: int, offset: int
    ) -> tuple[list[Booking], int]:
        return self._list(BookingRow.customer_id, customer_id, limit, offset)

    def list_for_business(
        self, business_id: str, limit: int, offset: int
    ) -> tuple[list[Booking], int]:
        return self._list(BookingRow.business_id, business_id, limit, offset)


@dataclass
class SqlStores:
    """The three SQL-backed collaborators sharing one engine."""

    engine: Engine
    rules: SqlAvailabilityRuleStore
    services: SqlServiceCatalog
    bookings: SqlBookingRepository


def open_sql_stores(url: Optional[str] = None, timeout_sec: Optional[float] = None) -> SqlStores:
    """Create the engine, ensure the schema exists, and wire the stores."""
    engine = create_store_engine(url, timeout_sec=timeout_sec)
    create_schema(engine)
    # A StaticPool hands every thread the same connection.
    serial_lock = threading.Lock() if isinstance(engine.pool, StaticPool) else None
    logger.info("SQL stores ready (%s)", engine.url.render_as_string(hide_password=True))
    return SqlStores(
        engine=engine,
        rules=SqlAvailabilityRuleStore(engine, serial_lock, timeout_sec),
        services=SqlServiceCatalog(engine, serial_lock, timeout_sec),
        bookings=SqlBookingRepository(engine, serial_lock, timeout_sec),
    )
