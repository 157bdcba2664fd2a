"""
Booking repository backed by SQLAlchemy.

All queries go through short-lived sessions. Datastore failures are logged
and re-raised as ``RepositoryError`` so the engine never sees driver-specific
exceptions.
"""

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import pendulum
from pendulum import DateTime
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from ..domain.exceptions import BookingConflictError, NotFoundError, RepositoryError
from ..domain.models import (
    Booking,
    BookingStatus,
    BookingType,
    ClassInfo,
    ClassSession,
    Facility,
    OperatingHours,
    SessionSettings,
    TimeRange,
)
from ..domain.operating_hours import hours_from_settings
from . import orm
from .fixtures import parse_timestamp

logger = logging.getLogger(__name__)


def to_db_time(value: DateTime) -> datetime:
    """Convert an aware datetime to the naive UTC value stored in the database."""
    utc = pendulum.instance(value).in_timezone("UTC")
    return datetime(utc.year, utc.month, utc.day, utc.hour, utc.minute, utc.second, utc.microsecond)


def from_db_time(value: datetime, timezone: str) -> DateTime:
    """Convert a stored naive UTC value back to an aware datetime in ``timezone``."""
    return pendulum.datetime(
        value.year, value.month, value.day,
        value.hour, value.minute, value.second, value.microsecond,
        tz="UTC",
    ).in_timezone(timezone)


class SqlBookingRepository:
    """
    Data access for facilities, bookings and class sessions.

    Implements the repository protocol consumed by ``AvailabilityService``.
    """

    def __init__(self, session_factory: sessionmaker, timezone: str = "Europe/Berlin"):
        self._session_factory = session_factory
        self.timezone = timezone

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Error %s: %s", action, e)
            raise RepositoryError(f"Failed {action}: {e}") from e

    # Facilities

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        with self._session(f"loading facility {facility_id}") as session:
            row = session.get(orm.Facility, facility_id)
            return self._facility(row) if row is not None else None

    def find_operating_hours(self, facility_id: str, weekday: int) -> Optional[OperatingHours]:
        """
        Persisted hours for a weekday.

        Facility settings win over location settings, which win over
        organization settings. Returns None when nothing is stored.
        """
        with self._session(f"loading operating hours for facility {facility_id}") as session:
            facility = (
                session.query(orm.Facility)
                .options(joinedload(orm.Facility.location).joinedload(orm.Location.organization))
                .filter(orm.Facility.id == facility_id)
                .one_or_none()
            )
            if facility is None:
                return None

            location = facility.location
            organization = location.organization if location is not None else None
            layers = (
                facility.settings,
                location.settings if location is not None else None,
                organization.settings if organization is not None else None,
            )

            try:
                for settings in layers:
                    hours = hours_from_settings(settings, weekday)
                    if hours is not None:
                        return hours
            except ValueError as e:
                raise RepositoryError(
                    f"Invalid opening hours stored for facility {facility_id}: {e}"
                ) from e

            return None

    # Bookings

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._session(f"loading booking {booking_id}") as session:
            row = session.get(orm.Booking, booking_id)
            return self._booking(row) if row is not None else None

    def find_bookings_for_facility_in_range(
        self,
        facility_id: str,
        range_start: DateTime,
        range_end: DateTime,
        exclude_statuses: Iterable[BookingStatus] = (BookingStatus.CANCELLED,),
    ) -> List[Booking]:
        """
        Get bookings on a facility whose interval intersects the range.

        Args:
            facility_id: The facility to check
            range_start: Start of the window (inclusive)
            range_end: End of the window (exclusive)
            exclude_statuses: Statuses to leave out, CANCELLED by default

        Returns:
            Bookings ordered by start time, with facility and class data loaded
        """
        excluded = [BookingStatus(status).value for status in exclude_statuses]

        with self._session(f"loading bookings for facility {facility_id}") as session:
            query = (
                session.query(orm.Booking)
                .options(
                    joinedload(orm.Booking.facility),
                    joinedload(orm.Booking.class_session).joinedload(orm.ClassSession.parent_class),
                )
                .filter(
                    orm.Booking.facility_id == facility_id,
                    orm.Booking.start_time < to_db_time(range_end),
                    orm.Booking.end_time > to_db_time(range_start),
                )
            )

            if excluded:
                query = query.filter(orm.Booking.status.notin_(excluded))

            rows = query.order_by(orm.Booking.start_time).all()
            return [self._booking(row) for row in rows]

    def update_bookings_status(self, booking_ids: Sequence[str], status: BookingStatus) -> int:
        """Set ``status`` on every listed booking and return the affected row count."""
        ids = list(dict.fromkeys(booking_ids))
        if not ids:
            return 0

        with self._session("updating booking status") as session, session.begin():
            return (
                session.query(orm.Booking)
                .filter(orm.Booking.id.in_(ids))
                .update({orm.Booking.status: BookingStatus(status).value}, synchronize_session=False)
            )

    def create_booking(
        self,
        *,
        facility_id: str,
        location_id: str,
        time_range: TimeRange,
        customer_name: str,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        notes: Optional[str] = None,
        person_count: Optional[int] = None,
        status: BookingStatus = BookingStatus.CONFIRMED,
    ) -> Booking:
        """
        Insert a NORMAL booking after re-checking for overlaps.

        The overlap query and the insert share one SERIALIZABLE transaction.

        Raises:
            BookingConflictError: If a non-cancelled booking overlaps
        """
        with self._session(f"creating booking on facility {facility_id}") as session, session.begin():
            session.connection(execution_options={"isolation_level": "SERIALIZABLE"})

            conflicting = (
                session.query(orm.Booking.id)
                .filter(
                    orm.Booking.facility_id == facility_id,
                    orm.Booking.start_time < to_db_time(time_range.end),
                    orm.Booking.end_time > to_db_time(time_range.start),
                    orm.Booking.status != BookingStatus.CANCELLED.value,
                )
                .all()
            )
            if conflicting:
                raise BookingConflictError(
                    f"Facility {facility_id} is already booked during {time_range}",
                    [row.id for row in conflicting],
                )

            row = orm.Booking(
                start_time=to_db_time(time_range.start),
                end_time=to_db_time(time_range.end),
                facility_id=facility_id,
                location_id=location_id,
                status=BookingStatus(status).value,
                type=BookingType.NORMAL.value,
                customer_name=customer_name,
                customer_email=customer_email,
                customer_phone=customer_phone,
                notes=notes,
                person_count=person_count,
            )
            session.add(row)
            session.flush()
            return self._booking(row)

    # Classes

    def get_class(self, class_id: str) -> Optional[ClassInfo]:
        with self._session(f"loading class {class_id}") as session:
            row = session.get(orm.Class, class_id)
            return self._class(row) if row is not None else None

    def get_class_session(self, class_session_id: str) -> Optional[ClassSession]:
        with self._session(f"loading class session {class_session_id}") as session:
            row = session.get(orm.ClassSession, class_session_id)
            return self._class_session(row) if row is not None else None

    def find_class_sessions(
        self,
        class_id: str,
        range_start: DateTime,
        range_end: Optional[DateTime] = None,
    ) -> List[ClassSession]:
        """Sessions of a class starting within ``[range_start, range_end]``, ascending."""
        with self._session(f"loading sessions of class {class_id}") as session:
            query = session.query(orm.ClassSession).filter(
                orm.ClassSession.class_id == class_id,
                orm.ClassSession.start_time >= to_db_time(range_start),
            )
            if range_end is not None:
                query = query.filter(orm.ClassSession.start_time <= to_db_time(range_end))

            rows = query.order_by(orm.ClassSession.start_time).all()
            return [self._class_session(row) for row in rows]

    def find_class_session_settings(self, class_session_id: str) -> Optional[SessionSettings]:
        with self._session(f"loading settings of class session {class_session_id}") as session:
            row = (
                session.query(orm.ClassSessionSettings)
                .filter(orm.ClassSessionSettings.class_session_id == class_session_id)
                .one_or_none()
            )
            if row is None:
                return None

            max_participants = (row.data or {}).get("maxParticipants")
            return SessionSettings(
                class_session_id=class_session_id,
                max_participants=int(max_participants) if max_participants is not None else None,
            )

    def count_participants(
        self,
        class_session_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
    ) -> int:
        """Count participant bookings of a session; the facility hold is not a participant."""
        with self._session(f"counting participants of class session {class_session_id}") as session:
            count = (
                session.query(func.count(orm.Booking.id))
                .filter(
                    orm.Booking.class_session_id == class_session_id,
                    orm.Booking.type == BookingType.CLASSES.value,
                    orm.Booking.status == BookingStatus(status).value,
                    orm.Booking.facility_id.is_(None),
                )
                .scalar()
            )
            return int(count or 0)

    def create_class_with_sessions(
        self,
        *,
        name: str,
        instructor: str,
        location_id: str,
        sessions: Sequence[TimeRange],
        facility_id: Optional[str] = None,
        description: str = "",
        max_participants: Optional[int] = None,
    ) -> Tuple[ClassInfo, List[ClassSession]]:
        """
        Create a class, its sessions and (with a facility) one booking per session.

        Everything is written in a single transaction.
        """
        with self._session(f"creating class {name!r}") as session, session.begin():
            class_row = orm.Class(
                name=name,
                description=description,
                instructor=instructor,
                location_id=location_id,
                facility_id=facility_id,
            )
            session.add(class_row)
            session.flush()

            created: List[ClassSession] = []
            for time_range in sessions:
                session_row = orm.ClassSession(
                    class_id=class_row.id,
                    start_time=to_db_time(time_range.start),
                    end_time=to_db_time(time_range.end),
                )
                session.add(session_row)
                session.flush()

                if max_participants is not None:
                    session.add(orm.ClassSessionSettings(
                        class_session_id=session_row.id,
                        data={"maxParticipants": max_participants},
                    ))

                if facility_id:
                    session.add(orm.Booking(
                        start_time=session_row.start_time,
                        end_time=session_row.end_time,
                        facility_id=facility_id,
                        location_id=location_id,
                        class_session_id=session_row.id,
                        status=BookingStatus.CONFIRMED.value,
                        type=BookingType.CLASSES.value,
                        customer_name=instructor,
                    ))

                created.append(ClassSession(id=session_row.id, class_id=class_row.id, time_range=time_range))

            return self._class(class_row), created

    def upsert_session_settings(self, class_session_ids: Sequence[str], max_participants: int) -> int:
        """Store ``maxParticipants`` for each session, keeping other settings keys."""
        ids = list(dict.fromkeys(class_session_ids))

        with self._session("updating class session settings") as session, session.begin():
            for class_session_id in ids:
                if session.get(orm.ClassSession, class_session_id) is None:
                    raise NotFoundError(f"Class session {class_session_id} does not exist")

                row = (
                    session.query(orm.ClassSessionSettings)
                    .filter(orm.ClassSessionSettings.class_session_id == class_session_id)
                    .one_or_none()
                )
                if row is None:
                    session.add(orm.ClassSessionSettings(
                        class_session_id=class_session_id,
                        data={"maxParticipants": max_participants},
                    ))
                else:
                    row.data = {**(row.data or {}), "maxParticipants": max_participants}

        return len(ids)

    # Seeding

    def seed(self, data: Mapping[str, List[Mapping[str, Any]]]) -> int:
        """Insert the rows of a fixture (see ``fixtures.load_fixture``). Returns the row count."""
        try:
            rows = self._fixture_rows(data)
        except (KeyError, ValueError) as e:
            raise RepositoryError(f"Invalid fixture data: {e}") from e

        with self._session("seeding fixture data") as session, session.begin():
            for row in rows:
                session.add(row)
                # Flush per row so parents exist before children on FK-enforcing backends.
                session.flush()

        return len(rows)

    def _fixture_rows(self, data: Mapping[str, List[Mapping[str, Any]]]) -> List[orm.Base]:
        tz = self.timezone
        rows: List[orm.Base] = []

        for item in data.get("organizations", []):
            rows.append(orm.Organization(id=item["id"], name=item["name"], settings=item.get("settings")))
        for item in data.get("locations", []):
            rows.append(orm.Location(
                id=item["id"],
                organization_id=item["organizationId"],
                name=item["name"],
                settings=item.get("settings"),
            ))
        for item in data.get("facilities", []):
            rows.append(orm.Facility(
                id=item["id"],
                location_id=item["locationId"],
                name=item["name"],
                price=item.get("price", 0.0),
                settings=item.get("settings"),
            ))
        for item in data.get("classes", []):
            rows.append(orm.Class(
                id=item["id"],
                name=item["name"],
                description=item.get("description", ""),
                instructor=item["instructor"],
                location_id=item["locationId"],
                facility_id=item.get("facilityId"),
            ))
        for item in data.get("classSessions", []):
            rows.append(orm.ClassSession(
                id=item["id"],
                class_id=item["classId"],
                start_time=to_db_time(parse_timestamp(item["startTime"], tz)),
                end_time=to_db_time(parse_timestamp(item["endTime"], tz)),
            ))
        for item in data.get("classSessionSettings", []):
            rows.append(orm.ClassSessionSettings(
                class_session_id=item["classSessionId"],
                data=item.get("data") or {},
            ))
        for item in data.get("bookings", []):
            rows.append(orm.Booking(
                id=item["id"],
                start_time=to_db_time(parse_timestamp(item["startTime"], tz)),
                end_time=to_db_time(parse_timestamp(item["endTime"], tz)),
                facility_id=item.get("facilityId"),
                class_session_id=item.get("classSessionId"),
                location_id=item["locationId"],
                status=BookingStatus(item.get("status", BookingStatus.CONFIRMED.value)).value,
                type=BookingType(item.get("type", BookingType.NORMAL.value)).value,
                customer_name=item.get("customerName", ""),
                customer_email=item.get("customerEmail"),
                customer_phone=item.get("customerPhone"),
                notes=item.get("notes"),
                person_count=item.get("personCount"),
            ))

        return rows

    # Row conversion

    def _time_range(self, start, end) -> TimeRange:
        return TimeRange(start=from_db_time(start, self.timezone), end=from_db_time(end, self.timezone))

    @staticmethod
    def _facility(row: orm.Facility) -> Facility:
        return Facility(id=row.id, name=row.name, location_id=row.location_id, price=row.price or 0.0)

    @staticmethod
    def _class(row: orm.Class) -> ClassInfo:
        return ClassInfo(
            id=row.id,
            name=row.name,
            instructor=row.instructor,
            location_id=row.location_id,
            facility_id=row.facility_id,
            description=row.description or "",
        )

    def _class_session(self, row: orm.ClassSession) -> ClassSession:
        return ClassSession(
            id=row.id,
            class_id=row.class_id,
            time_range=self._time_range(row.start_time, row.end_time),
        )

    def _booking(self, row: orm.Booking) -> Booking:
        session_row = row.class_session
        parent = session_row.parent_class if session_row is not None else None

        return Booking(
            id=row.id,
            time_range=self._time_range(row.start_time, row.end_time),
            location_id=row.location_id,
            status=BookingStatus(row.status),
            type=BookingType(row.type),
            facility_id=row.facility_id,
            class_session_id=row.class_session_id,
            customer_name=row.customer_name or "",
            customer_email=row.customer_email,
            customer_phone=row.customer_phone,
            notes=row.notes,
            person_count=row.person_count,
            facility_name=row.facility.name if row.facility is not None else None,
            class_name=parent.name if parent is not None else None,
            instructor=parent.instructor if parent is not None else None,
        )
