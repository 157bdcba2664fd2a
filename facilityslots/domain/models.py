"""
Domain models for facilities, bookings, class sessions and derived time slots.
"""

from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pendulum import DateTime


WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class BookingType(str, Enum):
    """Whether a booking is an ad-hoc facility booking or belongs to a class."""

    NORMAL = "NORMAL"
    CLASSES = "CLASSES"


def parse_clock(value: str) -> time:
    """Parse an ``HH:mm`` string into a time object."""
    try:
        hours, minutes = value.split(":")
        return time(hour=int(hours), minute=int(minutes))
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid time of day '{value}', expected HH:mm") from exc


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another. Touching ranges do not overlap."""
        return self.start < other.end and self.end > other.start

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class OperatingHours:
    """
    Opening window of a facility for one weekday.

    A closed day carries no open/close times.
    """
    open: Optional[time] = None
    close: Optional[time] = None
    is_closed: bool = False

    def __post_init__(self):
        if self.is_closed:
            return
        if self.open is None or self.close is None:
            raise ValueError("Open days need both an opening and a closing time")
        if self.open >= self.close:
            raise ValueError(f"Opening time {self.open} must be before closing time {self.close}")

    @classmethod
    def closed(cls) -> "OperatingHours":
        return cls(is_closed=True)

    @classmethod
    def from_strings(cls, open_at: str, close_at: str) -> "OperatingHours":
        return cls(open=parse_clock(open_at), close=parse_clock(close_at))

    def for_day(self, day: DateTime) -> TimeRange | None:
        """
        Get the operating window on a specific day.
        Returns None if the facility is closed.
        """
        if self.is_closed:
            return None

        start = day.set(
            hour=self.open.hour,
            minute=self.open.minute,
            second=0,
            microsecond=0
        )
        end = day.set(
            hour=self.close.hour,
            minute=self.close.minute,
            second=0,
            microsecond=0
        )

        return TimeRange(start=start, end=end)


@dataclass(frozen=True)
class Facility:
    id: str
    name: str
    location_id: str
    price: float = 0.0


@dataclass(frozen=True)
class ClassInfo:
    id: str
    name: str
    instructor: str
    location_id: str
    facility_id: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class ClassSession:
    id: str
    class_id: str
    time_range: TimeRange


@dataclass(frozen=True)
class SessionSettings:
    """Per-session settings. ``max_participants`` is None when unset."""
    class_session_id: str
    max_participants: Optional[int] = None


@dataclass
class Booking:
    """
    A persisted booking as seen by the engine.

    ``facility_name``, ``class_name`` and ``instructor`` are resolved by the
    repository from the facility and class-session relations.
    """
    id: str
    time_range: TimeRange
    location_id: str
    status: BookingStatus = BookingStatus.CONFIRMED
    type: BookingType = BookingType.NORMAL
    facility_id: Optional[str] = None
    class_session_id: Optional[str] = None
    customer_name: str = ""
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    person_count: Optional[int] = None
    facility_name: Optional[str] = None
    class_name: Optional[str] = None
    instructor: Optional[str] = None


@dataclass
class TimeSlot:
    """
    A derived candidate booking interval with its availability flag.
    """
    time_range: TimeRange
    is_available: bool
    class_session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "startTime": self.time_range.start.format("HH:mm"),
            "endTime": self.time_range.end.format("HH:mm"),
            "isAvailable": self.is_available,
        }
        if self.class_session_id is not None:
            data["classSessionId"] = self.class_session_id
        return data

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Wochentag, DD.MM.YYYY | HH:MM – HH:MM Uhr
        """
        start = self.time_range.start
        end = self.time_range.end

        weekday_names = {
            0: "Montag",
            1: "Dienstag",
            2: "Mittwoch",
            3: "Donnerstag",
            4: "Freitag",
            5: "Samstag",
            6: "Sonntag"
        }

        weekday = weekday_names[start.weekday()]
        date_str = start.format("DD.MM.YYYY")
        time_str = f"{start.format('HH:mm')} – {end.format('HH:mm')} Uhr"

        return f"{weekday}, {date_str} | {time_str}"


@dataclass(frozen=True)
class RegularConflict:
    id: str
    time_range: TimeRange
    facility_name: Optional[str]
    customer_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.time_range.start.to_iso8601_string(),
            "endTime": self.time_range.end.to_iso8601_string(),
            "facilityName": self.facility_name,
            "customerName": self.customer_name,
        }


@dataclass(frozen=True)
class ClassConflict:
    id: str
    time_range: TimeRange
    facility_name: Optional[str]
    class_name: Optional[str]
    instructor: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.time_range.start.to_iso8601_string(),
            "endTime": self.time_range.end.to_iso8601_string(),
            "facilityName": self.facility_name,
            "className": self.class_name,
            "instructor": self.instructor,
        }


@dataclass
class FacilityConflictReport:
    """Result of checking candidate intervals against a facility's bookings."""
    conflicts: List[RegularConflict] = field(default_factory=list)
    class_conflicts: List[ClassConflict] = field(default_factory=list)

    @property
    def conflict_status(self) -> bool:
        return bool(self.conflicts)

    @property
    def class_conflicts_status(self) -> bool:
        return bool(self.class_conflicts)

    @property
    def conflicting_ids(self) -> List[str]:
        return [c.id for c in self.conflicts] + [c.id for c in self.class_conflicts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflictStatus": self.conflict_status,
            "classConflictsStatus": self.class_conflicts_status,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "classConflicts": [c.to_dict() for c in self.class_conflicts],
        }
