"""
Application services for facility availability.

The service coordinates fetching bookings, hours and session settings via a
repository adapter and delegates slot generation to the domain-level
``SlotCalculator``. The repository is described by a protocol so the SQL
adapter and the in-memory one are interchangeable in tests and the CLI.
"""

from __future__ import annotations

from datetime import date as date_type, datetime
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import pendulum
from pendulum import DateTime

from ..config import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_MAX_PARTICIPANTS,
    DEFAULT_RANGE_DAYS,
    MAX_RANGE_DAYS,
    AppConfig,
)
from ..domain.exceptions import InvalidArgumentError, NotFoundError, RepositoryError
from ..domain.models import (
    Booking,
    BookingStatus,
    BookingType,
    ClassConflict,
    ClassInfo,
    ClassSession,
    Facility,
    FacilityConflictReport,
    OperatingHours,
    RegularConflict,
    SessionSettings,
    TimeRange,
    TimeSlot,
)
from ..domain.operating_hours import (
    DEFAULT_BUSINESS_HOURS,
    default_hours_for,
    resolve_operating_hours,
    weekday_name,
)
from ..domain.rules import CapacityRule
from ..domain.slot_calculator import SlotCalculator

logger = logging.getLogger(__name__)

DayLike = Union[str, date_type, datetime]
SessionLike = Union[TimeRange, Mapping[str, Any]]


class BookingRepositoryProtocol(Protocol):
    """Protocol describing the booking store behaviour needed by the service."""

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        """Return the facility or None."""

    def find_operating_hours(self, facility_id: str, weekday: int) -> Optional[OperatingHours]:
        """Return persisted hours for the weekday (0=Monday) or None."""

    def find_bookings_for_facility_in_range(
        self,
        facility_id: str,
        range_start: DateTime,
        range_end: DateTime,
        exclude_statuses: Iterable[BookingStatus] = (BookingStatus.CANCELLED,),
    ) -> List[Booking]:
        """Return bookings on the facility intersecting the range."""

    def update_bookings_status(self, booking_ids: Sequence[str], status: BookingStatus) -> int:
        """Set the status of the listed bookings; return the affected count."""

    def create_booking(self, **fields: Any) -> Booking:
        """Insert a booking after an in-transaction overlap re-check."""

    def get_class(self, class_id: str) -> Optional[ClassInfo]:
        """Return the class or None."""

    def get_class_session(self, class_session_id: str) -> Optional[ClassSession]:
        """Return the class session or None."""

    def find_class_sessions(
        self,
        class_id: str,
        range_start: DateTime,
        range_end: Optional[DateTime] = None,
    ) -> List[ClassSession]:
        """Return sessions of the class starting within the range."""

    def find_class_session_settings(self, class_session_id: str) -> Optional[SessionSettings]:
        """Return the session's settings or None."""

    def count_participants(self, class_session_id: str, status: BookingStatus = BookingStatus.CONFIRMED) -> int:
        """Return the number of participant bookings with ``status``."""

    def create_class_with_sessions(self, **fields: Any) -> Tuple[ClassInfo, List[ClassSession]]:
        """Atomically create a class, its sessions and optional facility bookings."""

    def upsert_session_settings(self, class_session_ids: Sequence[str], max_participants: int) -> int:
        """Store the participant ceiling for each session."""


class AvailabilityService:
    """
    Computes facility slots, conflicts and class-session capacity.

    Every operation either returns a complete result or raises; nothing is
    partially recovered.
    """

    def __init__(
        self,
        repository: BookingRepositoryProtocol,
        slot_calculator: Optional[SlotCalculator] = None,
        *,
        timezone: str = "Europe/Berlin",
        business_hours: Optional[Mapping[str, Optional[OperatingHours]]] = None,
        max_range_days: int = MAX_RANGE_DAYS,
        default_max_participants: int = DEFAULT_MAX_PARTICIPANTS,
    ) -> None:
        self._repository = repository
        self._slot_calculator = slot_calculator or SlotCalculator()
        self.timezone = timezone
        self._business_hours = dict(business_hours or {})
        self.max_range_days = max_range_days
        self.default_max_participants = default_max_participants

    @classmethod
    def from_config(cls, repository: BookingRepositoryProtocol, config: AppConfig) -> "AvailabilityService":
        return cls(
            repository,
            timezone=config.timezone,
            business_hours=config.organization_hours(),
            max_range_days=config.limits.max_range_days,
            default_max_participants=config.limits.default_max_participants,
        )

    # Facility slots

    def get_available_time_slots(
        self,
        facility_id: str,
        date: DayLike,
        duration_minutes: int = DEFAULT_DURATION_MINUTES,
        interval_minutes: Optional[int] = None,
    ) -> List[TimeSlot]:
        """
        Compute one day's slots for a facility.

        Args:
            facility_id: Facility to compute slots for
            date: Calendar day; any time-of-day component is ignored
            duration_minutes: Length of each slot
            interval_minutes: Optional start grid, defaults to the duration

        Returns:
            Slots in chronological order, each flagged available or not

        Raises:
            InvalidArgumentError: Bad date, duration or interval
            NotFoundError: Unknown facility
            RepositoryError: Datastore failure
        """
        self._validate_minutes(duration_minutes, "Duration")
        if interval_minutes is not None:
            self._validate_minutes(interval_minutes, "Interval")

        day = self.normalize_day(date)
        self._require_facility(facility_id)

        return self._slots_for_day(facility_id, day, duration_minutes, interval_minutes)

    def get_available_time_slots_for_range(
        self,
        facility_id: str,
        start_date: DayLike,
        days: int = DEFAULT_RANGE_DAYS,
        duration_minutes: int = DEFAULT_DURATION_MINUTES,
        interval_minutes: Optional[int] = None,
    ) -> Dict[str, List[TimeSlot]]:
        """
        Compute slots for ``days`` consecutive days starting at ``start_date``.

        Returns a mapping of ``YYYY-MM-DD`` to that day's slots in
        chronological day order. Fails as a whole if any day fails.
        """
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= self.max_range_days:
            raise InvalidArgumentError(
                f"Days must be a positive number between 1 and {self.max_range_days}, got {days!r}"
            )
        self._validate_minutes(duration_minutes, "Duration")
        if interval_minutes is not None:
            self._validate_minutes(interval_minutes, "Interval")

        start_day = self.normalize_day(start_date)
        self._require_facility(facility_id)

        results: Dict[str, List[TimeSlot]] = {}

        for offset in range(days):
            day = start_day.add(days=offset)
            key = day.to_date_string()
            try:
                results[key] = self._slots_for_day(facility_id, day, duration_minutes, interval_minutes)
            except RepositoryError as exc:
                raise RepositoryError(f"Failed to compute slots for {key}: {exc}") from exc

        return results

    def resolve_operating_hours(self, facility_id: str, day: DateTime) -> OperatingHours:
        """Persisted hours, then the configured organization default, then built-in defaults."""
        weekday = day.weekday()
        return resolve_operating_hours(
            self._repository.find_operating_hours(facility_id, weekday),
            default_hours_for(weekday, self._business_hours),
            DEFAULT_BUSINESS_HOURS[weekday_name(weekday)],
        )

    def _slots_for_day(
        self,
        facility_id: str,
        day: DateTime,
        duration_minutes: int,
        interval_minutes: Optional[int],
    ) -> List[TimeSlot]:
        window = self.resolve_operating_hours(facility_id, day).for_day(day)
        if window is None:
            logger.debug("Facility %s is closed on %s", facility_id, day.to_date_string())
            return []

        day_window = self._slot_calculator.day_window(day)
        bookings = self._repository.find_bookings_for_facility_in_range(
            facility_id,
            day_window.start,
            day_window.end,
            exclude_statuses=(BookingStatus.CANCELLED,),
        )

        slots = self._slot_calculator.find_time_slots(
            window,
            [booking.time_range for booking in bookings],
            duration_minutes,
            interval_minutes,
        )
        logger.debug(
            "Facility %s on %s: %d slots, %d blocked by %d bookings",
            facility_id,
            day.to_date_string(),
            len(slots),
            sum(1 for slot in slots if not slot.is_available),
            len(bookings),
        )
        return slots

    # Conflicts

    def check_facility_availability(
        self,
        facility_id: str,
        sessions: Sequence[SessionLike],
    ) -> FacilityConflictReport:
        """
        Check candidate intervals against the facility's existing bookings.

        Conflicting bookings are split into regular (NORMAL) and class
        (CLASSES) conflicts. Intervals that only touch do not conflict.
        """
        candidates = [self._coerce_range(session) for session in sessions]
        facility = self._require_facility(facility_id)

        report = FacilityConflictReport()
        if not candidates:
            return report

        bookings = self._repository.find_bookings_for_facility_in_range(
            facility_id,
            min(candidate.start for candidate in candidates),
            max(candidate.end for candidate in candidates),
            exclude_statuses=(BookingStatus.CANCELLED,),
        )

        for booking in bookings:
            if not any(booking.time_range.overlaps(candidate) for candidate in candidates):
                continue

            facility_name = booking.facility_name or facility.name
            if booking.type == BookingType.CLASSES:
                report.class_conflicts.append(ClassConflict(
                    id=booking.id,
                    time_range=booking.time_range,
                    facility_name=facility_name,
                    class_name=booking.class_name,
                    instructor=booking.instructor,
                ))
            else:
                report.conflicts.append(RegularConflict(
                    id=booking.id,
                    time_range=booking.time_range,
                    facility_name=facility_name,
                    customer_name=booking.customer_name,
                ))

        return report

    def cancel_conflicting_bookings(self, booking_ids: Sequence[str]) -> int:
        """Move every listed booking to CANCELLED; returns the affected row count."""
        ids = list(booking_ids)
        if any(not isinstance(booking_id, str) or not booking_id for booking_id in ids):
            raise InvalidArgumentError("Booking IDs must be non-empty strings")
        if not ids:
            return 0

        count = self._repository.update_bookings_status(ids, BookingStatus.CANCELLED)
        logger.info("Cancelled %d of %d requested bookings", count, len(ids))
        return count

    # Class sessions

    def get_class_time_slots(self, class_id: str, date: DayLike) -> List[TimeSlot]:
        """Slots for every session of a class starting on ``date``, flagged by headcount."""
        day = self.normalize_day(date)
        if self._repository.get_class(class_id) is None:
            raise NotFoundError(f"Class with ID {class_id} does not exist")

        window = self._slot_calculator.day_window(day)
        sessions = self._repository.find_class_sessions(class_id, window.start, window.end)

        return [
            self._slot_calculator.session_slot(session, self.get_session_capacity(session.id))
            for session in sessions
        ]

    def get_class_session_availability(self, class_session_id: str) -> TimeSlot:
        session = self._repository.get_class_session(class_session_id)
        if session is None:
            raise NotFoundError(f"Class session with ID {class_session_id} does not exist")
        return self._slot_calculator.session_slot(session, self.get_session_capacity(session.id))

    def get_session_capacity(self, class_session_id: str) -> CapacityRule:
        """Capacity rule for a session: confirmed participants against its ceiling."""
        settings = self._repository.find_class_session_settings(class_session_id)
        if settings is not None and settings.max_participants is not None:
            max_participants = settings.max_participants
        else:
            max_participants = self.default_max_participants

        current = self._repository.count_participants(class_session_id, BookingStatus.CONFIRMED)
        return CapacityRule(max_participants=max_participants, current_participants=current)

    def get_class_dates(self, class_id: str, now: Optional[DateTime] = None) -> List[str]:
        """Unique ``YYYY-MM-DD`` dates of upcoming sessions, ascending."""
        if self._repository.get_class(class_id) is None:
            raise NotFoundError(f"Class with ID {class_id} does not exist")

        start = now or pendulum.now(self.timezone)
        sessions = self._repository.find_class_sessions(class_id, start)

        dates = dict.fromkeys(
            session.time_range.start.in_timezone(self.timezone).to_date_string()
            for session in sessions
        )
        return list(dates)

    def update_session_settings(self, class_session_ids: Sequence[str], max_participants: int) -> int:
        if not class_session_ids:
            raise InvalidArgumentError("At least one class session ID is required")
        if isinstance(max_participants, bool) or not isinstance(max_participants, int) or max_participants < 1:
            raise InvalidArgumentError(f"maxParticipants must be at least 1, got {max_participants!r}")

        return self._repository.upsert_session_settings(list(class_session_ids), max_participants)

    # Writes

    def create_class_with_sessions(
        self,
        *,
        name: str,
        instructor: str,
        location_id: str,
        sessions: Sequence[SessionLike],
        facility_id: Optional[str] = None,
        description: str = "",
        max_participants: Optional[int] = None,
    ) -> Tuple[ClassInfo, List[ClassSession]]:
        """
        Create a class with its sessions in one transaction.

        With a facility, a CONFIRMED booking is created per session. Callers
        are expected to run ``check_facility_availability`` first.
        """
        if not name or not instructor or not location_id:
            raise InvalidArgumentError("Name, instructor and location are required")
        if max_participants is not None and (
            isinstance(max_participants, bool) or not isinstance(max_participants, int) or max_participants < 1
        ):
            raise InvalidArgumentError(f"maxParticipants must be at least 1, got {max_participants!r}")

        ranges = [self._coerce_range(session) for session in sessions]
        if not ranges:
            raise InvalidArgumentError("A class needs at least one session")
        if facility_id:
            self._require_facility(facility_id)

        class_info, created = self._repository.create_class_with_sessions(
            name=name,
            instructor=instructor,
            location_id=location_id,
            sessions=ranges,
            facility_id=facility_id,
            description=description,
            max_participants=max_participants,
        )
        logger.info("Created class %s with %d sessions", class_info.id, len(created))
        return class_info, created

    def create_booking(
        self,
        facility_id: str,
        start_time: Union[str, datetime],
        end_time: Union[str, datetime],
        *,
        customer_name: str,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        notes: Optional[str] = None,
        person_count: Optional[int] = None,
    ) -> Booking:
        """
        Book a facility interval.

        The overlap re-check and the insert run in one transaction.

        Raises:
            BookingConflictError: If the interval is already taken
        """
        time_range = self._coerce_range({"startTime": start_time, "endTime": end_time})
        facility = self._require_facility(facility_id)

        booking = self._repository.create_booking(
            facility_id=facility_id,
            location_id=facility.location_id,
            time_range=time_range,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            notes=notes,
            person_count=person_count,
        )
        logger.info("Created booking %s on facility %s (%s)", booking.id, facility_id, time_range)
        return booking

    # Input normalisation

    def normalize_day(self, value: DayLike) -> DateTime:
        """Return the start of the calendar day ``value`` falls on, in the service timezone."""
        tz = self.timezone

        if isinstance(value, datetime):
            day = self._localize(value).in_timezone(tz)
        elif isinstance(value, date_type):
            day = pendulum.datetime(value.year, value.month, value.day, tz=tz)
        elif isinstance(value, str) and value.strip():
            try:
                parsed = pendulum.parse(value.strip(), tz=tz)
            except ValueError as exc:
                raise InvalidArgumentError(f"Invalid date format: {value!r}. Use YYYY-MM-DD.") from exc
            if not isinstance(parsed, DateTime):
                raise InvalidArgumentError(f"Invalid date format: {value!r}. Use YYYY-MM-DD.")
            day = parsed.in_timezone(tz)
        else:
            raise InvalidArgumentError(f"Invalid date: {value!r}")

        return day.start_of("day")

    def _localize(self, value: datetime) -> DateTime:
        # Naive values are wall-clock times in the service timezone.
        if value.tzinfo is None:
            return pendulum.datetime(
                value.year, value.month, value.day,
                value.hour, value.minute, value.second, value.microsecond,
                tz=self.timezone,
            )
        return pendulum.instance(value)

    def _to_datetime(self, value: Any, field: str) -> DateTime:
        if isinstance(value, datetime):
            return self._localize(value)
        if isinstance(value, str):
            try:
                parsed = pendulum.parse(value, tz=self.timezone)
            except ValueError as exc:
                raise InvalidArgumentError(f"Invalid {field}: {value!r}") from exc
            if isinstance(parsed, DateTime):
                return parsed
        raise InvalidArgumentError(f"Invalid {field}: {value!r}")

    def _coerce_range(self, session: SessionLike) -> TimeRange:
        if isinstance(session, TimeRange):
            return session
        if not isinstance(session, Mapping):
            raise InvalidArgumentError(f"Invalid session: {session!r}")

        start = session.get("startTime", session.get("start"))
        end = session.get("endTime", session.get("end"))
        if start is None or end is None:
            raise InvalidArgumentError("Each session needs a startTime and an endTime")

        try:
            return TimeRange(start=self._to_datetime(start, "startTime"), end=self._to_datetime(end, "endTime"))
        except ValueError as exc:
            raise InvalidArgumentError(str(exc)) from exc

    @staticmethod
    def _validate_minutes(value: Any, label: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InvalidArgumentError(f"{label} must be a positive number of minutes, got {value!r}")

    def _require_facility(self, facility_id: str) -> Facility:
        if not facility_id:
            raise InvalidArgumentError("Facility ID is required")

        facility = self._repository.get_facility(facility_id)
        if facility is None:
            raise NotFoundError(f"Facility with ID {facility_id} does not exist")
        return facility
