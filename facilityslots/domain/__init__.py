"""
Domain layer - Pure business logic without external dependencies.
"""

from .exceptions import (
    BookingConflictError,
    InvalidArgumentError,
    NotFoundError,
    RepositoryError,
    SlotEngineError,
)
from .models import (
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
from .rules import AvailabilityRule, CapacityRule, IntervalRule
from .slot_calculator import SlotCalculator

__all__ = [
    "AvailabilityRule",
    "Booking",
    "BookingConflictError",
    "BookingStatus",
    "BookingType",
    "CapacityRule",
    "ClassConflict",
    "ClassInfo",
    "ClassSession",
    "Facility",
    "FacilityConflictReport",
    "IntervalRule",
    "InvalidArgumentError",
    "NotFoundError",
    "OperatingHours",
    "RegularConflict",
    "RepositoryError",
    "SessionSettings",
    "SlotCalculator",
    "SlotEngineError",
    "TimeRange",
    "TimeSlot",
]
