"""
In-memory booking repository for running without a database.
"""

from dataclasses import replace
from pathlib import Path
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import uuid

from pendulum import DateTime

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
from .fixtures import load_fixture, parse_timestamp


class InMemoryBookingRepository:
    """
    Repository that keeps facilities, bookings and class sessions in memory.

    Loads realistic booking data from mock_booking_data.json (or any fixture
    file) so the engine can be exercised without a database. Writes only
    live as long as the instance.
    """

    DEFAULT_DATA_FILE = Path(__file__).parent / "mock_booking_data.json"

    def __init__(self, data: Optional[Mapping[str, Any]] = None, timezone: str = "Europe/Berlin"):
        """
        Initialize the repository.

        Args:
            data: Fixture mapping in the shape read by ``load_fixture``
            timezone: IANA timezone used for timestamps without an offset
        """
        self.timezone = timezone
        self._lock = threading.Lock()

        self._organization_settings: Dict[str, Optional[dict]] = {}
        self._locations: Dict[str, Dict[str, Any]] = {}
        self._facilities: Dict[str, Facility] = {}
        self._facility_settings: Dict[str, Optional[dict]] = {}
        self._classes: Dict[str, ClassInfo] = {}
        self._sessions: Dict[str, ClassSession] = {}
        self._session_settings: Dict[str, dict] = {}
        self._bookings: Dict[str, Booking] = {}

        self._load_data(data or {})

    @classmethod
    def from_file(cls, data_file: Optional[Path] = None, timezone: str = "Europe/Berlin") -> "InMemoryBookingRepository":
        """Build a repository from a JSON fixture file (the bundled mock data by default)."""
        return cls(load_fixture(data_file or cls.DEFAULT_DATA_FILE), timezone=timezone)

    def _load_data(self, data: Mapping[str, Any]) -> None:
        tz = self.timezone
        try:
            for item in data.get("organizations", []):
                self._organization_settings[item["id"]] = item.get("settings")

            for item in data.get("locations", []):
                self._locations[item["id"]] = {
                    "organization_id": item.get("organizationId"),
                    "settings": item.get("settings"),
                }

            for item in data.get("facilities", []):
                self._facilities[item["id"]] = Facility(
                    id=item["id"],
                    name=item["name"],
                    location_id=item["locationId"],
                    price=float(item.get("price", 0.0)),
                )
                self._facility_settings[item["id"]] = item.get("settings")

            for item in data.get("classes", []):
                self._classes[item["id"]] = ClassInfo(
                    id=item["id"],
                    name=item["name"],
                    instructor=item["instructor"],
                    location_id=item["locationId"],
                    facility_id=item.get("facilityId"),
                    description=item.get("description", ""),
                )

            for item in data.get("classSessions", []):
                self._sessions[item["id"]] = ClassSession(
                    id=item["id"],
                    class_id=item["classId"],
                    time_range=TimeRange(
                        start=parse_timestamp(item["startTime"], tz),
                        end=parse_timestamp(item["endTime"], tz),
                    ),
                )

            for item in data.get("classSessionSettings", []):
                self._session_settings[item["classSessionId"]] = dict(item.get("data") or {})

            for item in data.get("bookings", []):
                self._bookings[item["id"]] = Booking(
                    id=item["id"],
                    time_range=TimeRange(
                        start=parse_timestamp(item["startTime"], tz),
                        end=parse_timestamp(item["endTime"], tz),
                    ),
                    location_id=item["locationId"],
                    status=BookingStatus(item.get("status", BookingStatus.CONFIRMED.value)),
                    type=BookingType(item.get("type", BookingType.NORMAL.value)),
                    facility_id=item.get("facilityId"),
                    class_session_id=item.get("classSessionId"),
                    customer_name=item.get("customerName", ""),
                    customer_email=item.get("customerEmail"),
                    customer_phone=item.get("customerPhone"),
                    notes=item.get("notes"),
                    person_count=item.get("personCount"),
                )
        except (KeyError, ValueError) as e:
            raise RepositoryError(f"Invalid fixture data: {e}") from e

    # Facilities

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        return self._facilities.get(facility_id)

    def find_operating_hours(self, facility_id: str, weekday: int) -> Optional[OperatingHours]:
        facility = self._facilities.get(facility_id)
        if facility is None:
            return None

        location = self._locations.get(facility.location_id, {})
        layers = (
            self._facility_settings.get(facility_id),
            location.get("settings"),
            self._organization_settings.get(location.get("organization_id")),
        )

        try:
            for settings in layers:
                hours = hours_from_settings(settings, weekday)
                if hours is not None:
                    return hours
        except ValueError as e:
            raise RepositoryError(f"Invalid opening hours stored for facility {facility_id}: {e}") from e

        return None

    # Bookings

    def find_bookings_for_facility_in_range(
        self,
        facility_id: str,
        range_start: DateTime,
        range_end: DateTime,
        exclude_statuses: Iterable[BookingStatus] = (BookingStatus.CANCELLED,),
    ) -> List[Booking]:
        excluded = {BookingStatus(status) for status in exclude_statuses}
        window = TimeRange(start=range_start, end=range_end)

        matches = [
            booking for booking in self._bookings.values()
            if booking.facility_id == facility_id
            and booking.status not in excluded
            and booking.time_range.overlaps(window)
        ]
        matches.sort(key=lambda b: b.time_range.start)

        return [self._resolve(booking) for booking in matches]

    def update_bookings_status(self, booking_ids: Sequence[str], status: BookingStatus) -> int:
        count = 0
        with self._lock:
            for booking_id in dict.fromkeys(booking_ids):
                booking = self._bookings.get(booking_id)
                if booking is None:
                    continue
                self._bookings[booking_id] = replace(booking, status=BookingStatus(status))
                count += 1
        return count

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
        with self._lock:
            conflicting = [
                booking.id for booking in self._bookings.values()
                if booking.facility_id == facility_id
                and booking.status != BookingStatus.CANCELLED
                and booking.time_range.overlaps(time_range)
            ]
            if conflicting:
                raise BookingConflictError(
                    f"Facility {facility_id} is already booked during {time_range}",
                    conflicting,
                )

            booking = Booking(
                id=str(uuid.uuid4()),
                time_range=time_range,
                location_id=location_id,
                status=BookingStatus(status),
                type=BookingType.NORMAL,
                facility_id=facility_id,
                customer_name=customer_name,
                customer_email=customer_email,
                customer_phone=customer_phone,
                notes=notes,
                person_count=person_count,
            )
            self._bookings[booking.id] = booking

        return self._resolve(booking)

    # Classes

    def get_class(self, class_id: str) -> Optional[ClassInfo]:
        return self._classes.get(class_id)

    def get_class_session(self, class_session_id: str) -> Optional[ClassSession]:
        return self._sessions.get(class_session_id)

    def find_class_sessions(
        self,
        class_id: str,
        range_start: DateTime,
        range_end: Optional[DateTime] = None,
    ) -> List[ClassSession]:
        sessions = [
            session for session in self._sessions.values()
            if session.class_id == class_id
            and session.time_range.start >= range_start
            and (range_end is None or session.time_range.start <= range_end)
        ]
        return sorted(sessions, key=lambda s: s.time_range.start)

    def find_class_session_settings(self, class_session_id: str) -> Optional[SessionSettings]:
        data = self._session_settings.get(class_session_id)
        if data is None:
            return None

        max_participants = data.get("maxParticipants")
        return SessionSettings(
            class_session_id=class_session_id,
            max_participants=int(max_participants) if max_participants is not None else None,
        )

    def count_participants(
        self,
        class_session_id: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
    ) -> int:
        return sum(
            1 for booking in self._bookings.values()
            if booking.class_session_id == class_session_id
            and booking.type == BookingType.CLASSES
            and booking.status == BookingStatus(status)
            and booking.facility_id is None
        )

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
        # Build everything first so a failure leaves the store untouched.
        class_info = ClassInfo(
            id=str(uuid.uuid4()),
            name=name,
            instructor=instructor,
            location_id=location_id,
            facility_id=facility_id,
            description=description,
        )
        created = [
            ClassSession(id=str(uuid.uuid4()), class_id=class_info.id, time_range=time_range)
            for time_range in sessions
        ]
        holds = [
            Booking(
                id=str(uuid.uuid4()),
                time_range=session.time_range,
                location_id=location_id,
                status=BookingStatus.CONFIRMED,
                type=BookingType.CLASSES,
                facility_id=facility_id,
                class_session_id=session.id,
                customer_name=instructor,
            )
            for session in created
        ] if facility_id else []

        with self._lock:
            self._classes[class_info.id] = class_info
            for session in created:
                self._sessions[session.id] = session
                if max_participants is not None:
                    self._session_settings[session.id] = {"maxParticipants": max_participants}
            for booking in holds:
                self._bookings[booking.id] = booking

        return class_info, created

    def upsert_session_settings(self, class_session_ids: Sequence[str], max_participants: int) -> int:
        ids = list(dict.fromkeys(class_session_ids))

        with self._lock:
            missing = [sid for sid in ids if sid not in self._sessions]
            if missing:
                raise NotFoundError(f"Class session {missing[0]} does not exist")
            for class_session_id in ids:
                data = self._session_settings.setdefault(class_session_id, {})
                data["maxParticipants"] = max_participants

        return len(ids)

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Look up a single booking (with resolved names)."""
        booking = self._bookings.get(booking_id)
        return self._resolve(booking) if booking is not None else None

    def _resolve(self, booking: Booking) -> Booking:
        """Attach facility, class and instructor names from the related records."""
        facility = self._facilities.get(booking.facility_id) if booking.facility_id else None
        session = self._sessions.get(booking.class_session_id) if booking.class_session_id else None
        class_info = self._classes.get(session.class_id) if session is not None else None

        return replace(
            booking,
            facility_name=facility.name if facility is not None else None,
            class_name=class_info.name if class_info is not None else None,
            instructor=class_info.instructor if class_info is not None else None,
        )
