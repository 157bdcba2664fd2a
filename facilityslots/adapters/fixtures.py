"""
Loading of JSON booking fixtures.

Fixture files use the same camelCase shape as the booking API::

    {
        "organizations": [{"id": "...", "name": "...", "settings": {...}}],
        "locations": [{"id": "...", "organizationId": "...", "name": "...", "settings": {...}}],
        "facilities": [{"id": "...", "locationId": "...", "name": "...", "price": 20}],
        "classes": [{"id": "...", "name": "...", "instructor": "...", "locationId": "..."}],
        "classSessions": [{"id": "...", "classId": "...", "startTime": "...", "endTime": "..."}],
        "classSessionSettings": [{"classSessionId": "...", "data": {"maxParticipants": 10}}],
        "bookings": [{"id": "...", "startTime": "...", "endTime": "...", ...}]
    }
"""

import json
from pathlib import Path
from typing import Any, Dict

import pendulum
from pendulum import DateTime

from ..domain.exceptions import RepositoryError

FIXTURE_SECTIONS = (
    "organizations",
    "locations",
    "facilities",
    "classes",
    "classSessions",
    "classSessionSettings",
    "bookings",
)


def load_fixture(path: Path) -> Dict[str, Any]:
    """Read a fixture file; every section defaults to an empty list."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise RepositoryError(f"Could not read fixture file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise RepositoryError(f"Fixture file {path} must contain a JSON object")

    return {section: data.get(section) or [] for section in FIXTURE_SECTIONS}


def parse_timestamp(value: str, timezone: str) -> DateTime:
    """
    Parse an ISO 8601 timestamp.

    Values without an offset are read in ``timezone``; the result is always
    expressed in ``timezone``.
    """
    try:
        parsed = pendulum.parse(value, tz=timezone)
    except (TypeError, ValueError) as exc:
        raise RepositoryError(f"Invalid timestamp in fixture: {value!r}") from exc

    if not isinstance(parsed, DateTime):
        raise RepositoryError(f"Invalid timestamp in fixture: {value!r}")

    return parsed.in_timezone(timezone)
