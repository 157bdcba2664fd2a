"""
Tests for the AvailabilityService orchestration layer.

Tests using the ``service`` fixture run against both the in-memory and the
SQLite-backed repository, seeded with the bundled mock data.
"""

from datetime import datetime

import pendulum
import pytest

from facilityslots.adapters.mock_repository import InMemoryBookingRepository
from facilityslots.domain.exceptions import (
    BookingConflictError,
    InvalidArgumentError,
    NotFoundError,
    RepositoryError,
)
from facilityslots.domain.models import BookingStatus, OperatingHours
from facilityslots.services.availability import AvailabilityService

TZ = "Europe/Berlin"


def _starts(slots, available=None):
    return [
        slot.time_range.start.format("HH:mm")
        for slot in slots
        if available is None or slot.is_available == available
    ]


def _plain_repository(facility_settings=None, bookings=()):
    """A single facility without stored hours unless ``facility_settings`` says otherwise."""
    return InMemoryBookingRepository(
        {
            "organizations": [{"id": "org-1", "name": "Verein"}],
            "locations": [{"id": "loc-1", "organizationId": "org-1", "name": "Halle"}],
            "facilities": [
                {"id": "hall", "locationId": "loc-1", "name": "Halle", "settings": facility_settings},
            ],
            "bookings": list(bookings),
        },
        timezone=TZ,
    )


class TestGetAvailableTimeSlots:
    """Tests for single-day slot computation."""

    def test_mock_data_monday(self, service):
        """Confirmed and pending bookings block slots, cancelled ones do not."""
        slots = service.get_available_time_slots("court-1", "2024-01-15", 60)

        assert _starts(slots) == [f"{hour:02d}:00" for hour in range(8, 22)]
        assert _starts(slots, available=False) == ["10:00", "14:00", "15:00"]
        assert "16:00" in _starts(slots, available=True)

    def test_nine_slots_with_one_booking(self):
        """09:00-18:00 with a 10:00-11:00 booking gives nine slots, only 10:00 taken."""
        repository = _plain_repository(
            facility_settings={"openingHours": [{"day": "monday", "open": "09:00", "close": "18:00"}]},
            bookings=[{
                "id": "b-1", "facilityId": "hall", "locationId": "loc-1",
                "startTime": "2024-01-15T10:00:00", "endTime": "2024-01-15T11:00:00",
                "status": "CONFIRMED",
            }],
        )
        service = AvailabilityService(repository, timezone=TZ)

        slots = service.get_available_time_slots("hall", "2024-01-15", 60)

        assert len(slots) == 9
        assert _starts(slots, available=False) == ["10:00"]

    def test_configured_business_hours_fallback(self):
        """Without stored hours, configured organization hours apply."""
        service = AvailabilityService(
            _plain_repository(),
            timezone=TZ,
            business_hours={"monday": OperatingHours.from_strings("07:00", "10:00"), "sunday": None},
        )

        assert _starts(service.get_available_time_slots("hall", "2024-01-15")) == ["07:00", "08:00", "09:00"]

    def test_built_in_hours_fallback(self):
        """Without stored or configured hours, the built-in defaults apply."""
        service = AvailabilityService(_plain_repository(), timezone=TZ)

        assert len(service.get_available_time_slots("hall", "2024-01-16")) == 8  # Tuesday 09-17
        assert _starts(service.get_available_time_slots("hall", "2024-01-20")) == [
            "10:00", "11:00", "12:00", "13:00", "14:00"
        ]
        assert service.get_available_time_slots("hall", "2024-01-21") == []

    def test_closed_day(self, service):
        """The location is closed on Sundays."""
        assert service.get_available_time_slots("court-1", "2024-01-14") == []

    def test_stored_hours_per_weekday(self, service):
        """Friday closes earlier than the rest of the week."""
        slots = service.get_available_time_slots("court-1", "2024-01-19", 60)

        assert _starts(slots)[0] == "08:00"
        assert _starts(slots)[-1] == "19:00"

    def test_time_of_day_is_ignored(self, service):
        by_string = service.get_available_time_slots("court-1", "2024-01-15", 60)
        by_datetime = service.get_available_time_slots(
            "court-1", pendulum.datetime(2024, 1, 15, 15, 45, tz=TZ), 60
        )

        assert [s.to_dict() for s in by_string] == [s.to_dict() for s in by_datetime]

    def test_interval_grid(self, service):
        slots = service.get_available_time_slots("court-1", "2024-01-15", 60, interval_minutes=30)

        assert _starts(slots)[:3] == ["08:00", "08:30", "09:00"]
        assert slots[-1].time_range.end.format("HH:mm") == "22:00"
        # 09:30-10:30 and 10:30-11:30 both touch the 10:00-11:00 booking
        assert {"09:30", "10:00", "10:30"} <= set(_starts(slots, available=False))

    def test_duration_longer_than_opening(self, service):
        assert service.get_available_time_slots("court-1", "2024-01-15", 15 * 60) == []

    def test_idempotent(self, service):
        first = service.get_available_time_slots("court-1", "2024-01-15", 45)
        second = service.get_available_time_slots("court-1", "2024-01-15", 45)

        assert [s.to_dict() for s in first] == [s.to_dict() for s in second]

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.get_available_time_slots("court-99", "2024-01-15")

    @pytest.mark.parametrize("value", ["2024-13-45", "morgen", ""])
    def test_invalid_date(self, service, value):
        with pytest.raises(InvalidArgumentError):
            service.get_available_time_slots("court-1", value)

    @pytest.mark.parametrize("duration", [0, -30])
    def test_invalid_duration(self, service, duration):
        with pytest.raises(InvalidArgumentError):
            service.get_available_time_slots("court-1", "2024-01-15", duration)


class TestGetAvailableTimeSlotsForRange:
    """Tests for multi-day slot computation."""

    def test_three_day_keys(self, service):
        result = service.get_available_time_slots_for_range("court-1", "2024-01-01", 3, 60)

        assert list(result) == ["2024-01-01", "2024-01-02", "2024-01-03"]
        assert all(len(day_slots) == 14 for day_slots in result.values())

    def test_range_matches_single_days(self, service):
        result = service.get_available_time_slots_for_range("court-1", "2024-01-14", 2, 60)

        assert result["2024-01-14"] == []
        single = service.get_available_time_slots("court-1", "2024-01-15", 60)
        assert [s.to_dict() for s in result["2024-01-15"]] == [s.to_dict() for s in single]

    def test_maximum_range(self, service):
        result = service.get_available_time_slots_for_range("court-1", "2024-01-01", 30)

        assert len(result) == 30
        assert list(result)[-1] == "2024-01-30"

    @pytest.mark.parametrize("days", [0, -1, 31])
    def test_days_out_of_bounds(self, service, days):
        with pytest.raises(InvalidArgumentError):
            service.get_available_time_slots_for_range("court-1", "2024-01-01", days)

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.get_available_time_slots_for_range("court-99", "2024-01-01", 3)

    def test_failure_aborts_whole_range(self):
        """A failing day fails the entire request instead of returning partial results."""

        class FlakyRepository(InMemoryBookingRepository):
            def find_bookings_for_facility_in_range(self, facility_id, range_start, range_end, exclude_statuses=()):
                if range_start.day == 2:
                    raise RepositoryError("connection lost")
                return super().find_bookings_for_facility_in_range(
                    facility_id, range_start, range_end, exclude_statuses
                )

        service = AvailabilityService(FlakyRepository.from_file(timezone=TZ), timezone=TZ)

        with pytest.raises(RepositoryError, match="2024-01-02"):
            service.get_available_time_slots_for_range("court-1", "2024-01-01", 3)


class TestCheckFacilityAvailability:
    """Tests for conflict detection."""

    def test_regular_conflicts(self, service):
        report = service.check_facility_availability(
            "court-1", [{"startTime": "2024-01-15T10:30:00", "endTime": "2024-01-15T14:30:00"}]
        )

        assert report.conflict_status is True
        assert report.class_conflicts_status is False
        assert [c.id for c in report.conflicts] == ["bk-1001", "bk-1002"]
        assert report.conflicts[0].facility_name == "Tennisplatz 1"
        assert report.conflicts[0].customer_name == "Max Mustermann"

    def test_class_conflicts(self, service):
        report = service.check_facility_availability(
            "room-1", [{"startTime": "2024-01-15T18:30:00", "endTime": "2024-01-15T19:30:00"}]
        )

        assert report.conflict_status is False
        assert report.class_conflicts_status is True
        conflict = report.class_conflicts[0]
        assert conflict.id == "bk-2001"
        assert conflict.class_name == "Yoga Flow"
        assert conflict.instructor == "Anna Keller"
        assert conflict.facility_name == "Kursraum"

    def test_abutting_session_has_no_conflict(self, service):
        report = service.check_facility_availability(
            "court-1", [{"startTime": "2024-01-15T11:00:00", "endTime": "2024-01-15T14:00:00"}]
        )

        assert report.to_dict() == {
            "conflictStatus": False,
            "classConflictsStatus": False,
            "conflicts": [],
            "classConflicts": [],
        }

    def test_cancelled_bookings_are_ignored(self, service):
        report = service.check_facility_availability(
            "court-1", [{"start": "2024-01-15T16:00:00", "end": "2024-01-15T17:00:00"}]
        )

        assert report.conflicting_ids == []

    def test_only_bookings_overlapping_a_session_are_reported(self, service):
        """Bookings inside the sessions' overall span but between them are not conflicts."""
        report = service.check_facility_availability(
            "room-1",
            [
                {"startTime": "2024-01-15T10:00:00", "endTime": "2024-01-15T10:30:00"},
                {"startTime": "2024-01-17T18:15:00", "endTime": "2024-01-17T18:45:00"},
            ],
        )

        assert report.conflicting_ids == ["bk-2002"]

    def test_empty_sessions(self, service):
        report = service.check_facility_availability("court-1", [])

        assert not report.conflict_status
        assert not report.class_conflicts_status
        assert report.conflicts == []
        assert report.class_conflicts == []

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.check_facility_availability(
                "court-99", [{"startTime": "2024-01-15T10:00:00", "endTime": "2024-01-15T11:00:00"}]
            )

    @pytest.mark.parametrize("session", [
        {"startTime": "2024-01-15T11:00:00", "endTime": "2024-01-15T10:00:00"},
        {"startTime": "2024-01-15T11:00:00"},
        {"startTime": "gestern", "endTime": "2024-01-15T10:00:00"},
        "2024-01-15T10:00:00",
    ])
    def test_malformed_session(self, service, session):
        with pytest.raises(InvalidArgumentError):
            service.check_facility_availability("court-1", [session])


class TestCancelConflictingBookings:
    """Tests for bulk cancellation."""

    def test_cancel_frees_slot(self, service, repository):
        assert service.cancel_conflicting_bookings(["bk-1001"]) == 1

        assert repository.get_booking("bk-1001").status == BookingStatus.CANCELLED
        slots = service.get_available_time_slots("court-1", "2024-01-15", 60)
        assert "10:00" in _starts(slots, available=True)

    def test_cancel_is_idempotent(self, service, repository):
        first = service.cancel_conflicting_bookings(["bk-1001", "bk-1002"])
        second = service.cancel_conflicting_bookings(["bk-1001", "bk-1002"])

        assert first == second == 2
        assert repository.get_booking("bk-1002").status == BookingStatus.CANCELLED

    def test_duplicate_ids_count_once(self, service):
        assert service.cancel_conflicting_bookings(["bk-1001", "bk-1001"]) == 1

    def test_unknown_ids(self, service):
        assert service.cancel_conflicting_bookings(["bk-9999"]) == 0

    def test_empty_list(self, service):
        assert service.cancel_conflicting_bookings([]) == 0

    def test_invalid_ids(self, service):
        with pytest.raises(InvalidArgumentError):
            service.cancel_conflicting_bookings(["bk-1001", ""])


class TestClassSessionCapacity:
    """Tests for class-session slots and headcounts."""

    def test_full_session_is_unavailable(self, service):
        """Two confirmed participants against a ceiling of two."""
        slots = service.get_class_time_slots("class-yoga", "2024-01-17")

        assert len(slots) == 1
        assert slots[0].class_session_id == "yoga-2024-01-17"
        assert slots[0].is_available is False

    def test_session_with_free_seat(self, service):
        """One participant against a ceiling of two."""
        service.update_session_settings(["yoga-2024-01-15"], 2)

        capacity = service.get_session_capacity("yoga-2024-01-15")
        assert (capacity.current_participants, capacity.max_participants) == (1, 2)
        assert service.get_class_time_slots("class-yoga", "2024-01-15")[0].is_available is True

        service.update_session_settings(["yoga-2024-01-15"], 1)
        assert service.get_class_session_availability("yoga-2024-01-15").is_available is False

    def test_facility_hold_is_not_a_participant(self, service):
        """The CLASSES booking that reserves the room does not take a seat."""
        assert service.get_session_capacity("yoga-2024-01-15").current_participants == 1

    def test_default_ceiling(self, service):
        capacity = service.get_session_capacity("yoga-2024-01-22")

        assert capacity.max_participants == 999
        assert capacity.current_participants == 0
        assert capacity.is_available()

    def test_day_without_sessions(self, service):
        assert service.get_class_time_slots("class-yoga", "2024-01-16") == []

    def test_class_dates(self, service):
        now = pendulum.datetime(2024, 1, 16, tz=TZ)

        assert service.get_class_dates("class-yoga", now=now) == ["2024-01-17", "2024-01-22"]

    def test_unknown_ids(self, service):
        with pytest.raises(NotFoundError):
            service.get_class_time_slots("class-pilates", "2024-01-15")
        with pytest.raises(NotFoundError):
            service.get_class_session_availability("yoga-1999-01-01")
        with pytest.raises(NotFoundError):
            service.get_class_dates("class-pilates")
        with pytest.raises(NotFoundError):
            service.update_session_settings(["yoga-2024-01-15", "yoga-1999-01-01"], 5)

    def test_unknown_session_leaves_settings_untouched(self, service, repository):
        with pytest.raises(NotFoundError):
            service.update_session_settings(["yoga-2024-01-22", "yoga-1999-01-01"], 5)

        assert repository.find_class_session_settings("yoga-2024-01-22") is None

    @pytest.mark.parametrize("value", [0, -3])
    def test_invalid_ceiling(self, service, value):
        with pytest.raises(InvalidArgumentError):
            service.update_session_settings(["yoga-2024-01-15"], value)


class TestCreateBooking:
    """Tests for booking creation with the overlap re-check."""

    def test_booking_blocks_slot(self, service):
        booking = service.create_booking(
            "court-1", "2024-01-15T12:00:00", "2024-01-15T13:00:00",
            customer_name="Clara Wolf", person_count=2,
        )

        assert booking.facility_name == "Tennisplatz 1"
        assert booking.location_id == "loc-nord"
        slots = service.get_available_time_slots("court-1", "2024-01-15", 60)
        assert "12:00" in _starts(slots, available=False)

    def test_overlap_is_rejected(self, service):
        with pytest.raises(BookingConflictError) as excinfo:
            service.create_booking(
                "court-1", "2024-01-15T10:30:00", "2024-01-15T11:30:00", customer_name="Clara Wolf"
            )

        assert excinfo.value.conflicting_ids == ["bk-1001"]

    def test_abutting_and_cancelled_intervals_are_free(self, service):
        service.create_booking("court-1", "2024-01-15T11:00:00", "2024-01-15T12:00:00", customer_name="A")
        service.create_booking("court-1", "2024-01-15T16:00:00", "2024-01-15T17:00:00", customer_name="B")

    def test_invalid_interval(self, service):
        with pytest.raises(InvalidArgumentError):
            service.create_booking("court-1", "2024-01-15T12:00:00", "2024-01-15T11:00:00", customer_name="A")

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.create_booking("court-99", "2024-01-15T12:00:00", "2024-01-15T13:00:00", customer_name="A")

    def test_returned_booking_keeps_requested_times(self, service, repository):
        """The returned interval matches the request and the stored booking."""
        start = pendulum.datetime(2024, 7, 1, 18, 0, tz=TZ)
        end = start.add(hours=1)

        booking = service.create_booking("court-1", start, end, customer_name="Clara Wolf")

        assert booking.time_range.start == start
        assert booking.time_range.end == end
        assert booking.time_range.start.hour == 18
        assert repository.get_booking(booking.id).time_range == booking.time_range

    @pytest.mark.parametrize("start, end", [
        (datetime(2024, 7, 1, 18, 0), datetime(2024, 7, 1, 19, 0)),
        (pendulum.naive(2024, 7, 1, 18, 0), pendulum.naive(2024, 7, 1, 19, 0)),
    ])
    def test_naive_datetimes_are_local_time(self, service, start, end):
        booking = service.create_booking("court-1", start, end, customer_name="Clara Wolf")

        assert booking.time_range.start == pendulum.datetime(2024, 7, 1, 18, 0, tz=TZ)
        assert booking.time_range.end.format("HH:mm Z") == "19:00 +02:00"

    def test_naive_datetime_selects_local_day(self, service):
        day = service.normalize_day(pendulum.naive(2024, 7, 1, 23, 30))

        assert day == pendulum.datetime(2024, 7, 1, tz=TZ)


class TestCreateClassWithSessions:
    """Tests for class creation."""

    SESSIONS = [
        {"startTime": "2024-02-05T17:00:00", "endTime": "2024-02-05T18:00:00"},
        {"startTime": "2024-02-12T17:00:00", "endTime": "2024-02-12T18:00:00"},
    ]

    def test_class_reserves_facility(self, service):
        class_info, sessions = service.create_class_with_sessions(
            name="Squash für Einsteiger",
            instructor="Tom Berger",
            location_id="loc-nord",
            sessions=self.SESSIONS,
            facility_id="court-2",
            max_participants=4,
        )

        assert class_info.facility_id == "court-2"
        assert len(sessions) == 2

        report = service.check_facility_availability("court-2", self.SESSIONS)
        assert len(report.class_conflicts) == 2
        assert report.class_conflicts[0].class_name == "Squash für Einsteiger"
        assert report.class_conflicts[0].instructor == "Tom Berger"

        slots = service.get_class_time_slots(class_info.id, "2024-02-05")
        assert [slot.class_session_id for slot in slots] == [sessions[0].id]
        assert service.get_session_capacity(sessions[0].id).max_participants == 4
        assert service.get_class_dates(class_info.id, now=pendulum.datetime(2024, 2, 1, tz=TZ)) == [
            "2024-02-05", "2024-02-12"
        ]

    def test_class_without_facility(self, service):
        class_info, _ = service.create_class_with_sessions(
            name="Lauftreff", instructor="Tom Berger", location_id="loc-nord", sessions=self.SESSIONS,
        )

        assert class_info.facility_id is None
        assert service.check_facility_availability("court-2", self.SESSIONS).conflicting_ids == []

    def test_requires_sessions(self, service):
        with pytest.raises(InvalidArgumentError):
            service.create_class_with_sessions(
                name="Lauftreff", instructor="Tom Berger", location_id="loc-nord", sessions=[],
            )

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.create_class_with_sessions(
                name="Lauftreff", instructor="Tom Berger", location_id="loc-nord",
                sessions=self.SESSIONS, facility_id="court-99",
            )
