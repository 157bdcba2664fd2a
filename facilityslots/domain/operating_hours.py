"""
Resolution of a facility's operating hours for a given weekday.

Hours come from an ordered fallback chain: whatever is persisted for the
facility (facility, location or organization settings), then the
organization default from configuration, then the built-in defaults below.
"""

from typing import Dict, Mapping, Optional

from .models import WEEKDAY_NAMES, OperatingHours


DEFAULT_BUSINESS_HOURS: Dict[str, OperatingHours] = {
    "monday": OperatingHours.from_strings("09:00", "17:00"),
    "tuesday": OperatingHours.from_strings("09:00", "17:00"),
    "wednesday": OperatingHours.from_strings("09:00", "17:00"),
    "thursday": OperatingHours.from_strings("09:00", "17:00"),
    "friday": OperatingHours.from_strings("09:00", "17:00"),
    "saturday": OperatingHours.from_strings("10:00", "15:00"),
    "sunday": OperatingHours.closed(),
}


def weekday_name(weekday: int) -> str:
    """Map 0=Monday .. 6=Sunday to the lowercase day name."""
    if weekday not in range(7):
        raise ValueError(f"Weekday must be between 0 and 6, got {weekday}")
    return WEEKDAY_NAMES[weekday]


def resolve_operating_hours(*candidates: Optional[OperatingHours]) -> OperatingHours:
    """
    Return the first candidate that is set.

    An explicitly closed entry counts as set and ends the chain.
    """
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return OperatingHours.closed()


def hours_from_settings(data: Optional[Mapping], weekday: int) -> Optional[OperatingHours]:
    """
    Extract the hours for ``weekday`` from a persisted settings payload.

    Accepts ``{"openingHours": [{"day": "monday", "open": "09:00",
    "close": "17:00"}, ...]}``; an entry with ``"closed": true`` or without
    times marks the day as closed. Returns None when the payload says
    nothing about that day.
    """
    if not data:
        return None

    entries = data.get("openingHours") or []
    day = weekday_name(weekday)

    for entry in entries:
        if str(entry.get("day", "")).lower() != day:
            continue
        if entry.get("closed") or not entry.get("open") or not entry.get("close"):
            return OperatingHours.closed()
        return OperatingHours.from_strings(entry["open"], entry["close"])

    return None


def default_hours_for(weekday: int, overrides: Optional[Mapping[str, Optional[OperatingHours]]] = None) -> Optional[OperatingHours]:
    """
    Organization-level default for a weekday from configuration.

    ``overrides`` maps day names to hours; a key present with a None value
    marks the day as closed. Returns None when the day is not configured.
    """
    if not overrides:
        return None

    day = weekday_name(weekday)
    if day not in overrides:
        return None

    return overrides[day] or OperatingHours.closed()
