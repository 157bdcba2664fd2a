"""
Core business logic for calculating facility time slots.

Pure domain logic without any external dependencies (no database, no I/O):
callers hand in the operating window and the busy ranges they fetched.
"""

from typing import Iterable, List, Optional

from pendulum import DateTime

from .models import ClassSession, TimeRange, TimeSlot
from .rules import CapacityRule, IntervalRule


class SlotCalculator:
    """
    Splits an operating window into fixed-duration slots and flags each one.

    Algorithm:
    1. Start at the opening time
    2. Emit a slot of ``duration_minutes`` while it still ends by closing time
    3. Advance by the step (the duration itself unless a finer grid is asked for)
    4. Mark every slot that overlaps a busy range as unavailable
    """

    def __init__(self, interval_minutes: Optional[int] = None):
        if interval_minutes is not None and interval_minutes <= 0:
            raise ValueError(f"interval_minutes must be greater than zero, got {interval_minutes}")
        self.interval_minutes = interval_minutes

    @staticmethod
    def day_window(day: DateTime) -> TimeRange:
        """Return the full-day window ``00:00 .. 23:59:59.999999`` of ``day``."""
        return TimeRange(start=day.start_of("day"), end=day.end_of("day"))

    def generate_slots(
        self,
        window: TimeRange,
        duration_minutes: int,
        interval_minutes: Optional[int] = None
    ) -> List[TimeRange]:
        """
        Partition an operating window into candidate slots.

        No partial trailing slot is produced: the last slot ends at or
        before ``window.end``.

        Example:
        Window: 09:00 - 12:30, duration 60
        Result: [09:00-10:00, 10:00-11:00, 11:00-12:00]
        """
        if duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be greater than zero, got {duration_minutes}")

        step = interval_minutes or self.interval_minutes or duration_minutes
        if step <= 0:
            raise ValueError(f"interval_minutes must be greater than zero, got {step}")

        slots: List[TimeRange] = []
        current_start = window.start

        while True:
            slot_end = current_start.add(minutes=duration_minutes)
            if slot_end > window.end:
                break
            slots.append(TimeRange(start=current_start, end=slot_end))
            current_start = current_start.add(minutes=step)

        return slots

    def find_time_slots(
        self,
        window: TimeRange | None,
        busy_ranges: Iterable[TimeRange],
        duration_minutes: int,
        interval_minutes: Optional[int] = None
    ) -> List[TimeSlot]:
        """
        Generate slots for a window and flag them against busy ranges.

        Args:
            window: Operating window for the day, None when closed
            busy_ranges: Intervals of existing non-cancelled bookings
            duration_minutes: Length of every slot
            interval_minutes: Optional start-time grid, defaults to the duration

        Returns:
            Chronologically ordered TimeSlot objects
        """
        if window is None:
            return []

        candidates = self.generate_slots(window, duration_minutes, interval_minutes)
        rule = IntervalRule(busy=sorted(busy_ranges, key=lambda r: r.start))

        return [
            TimeSlot(time_range=candidate, is_available=rule.is_available(candidate))
            for candidate in candidates
        ]

    @staticmethod
    def session_slot(session: ClassSession, rule: CapacityRule) -> TimeSlot:
        """Turn a class session into a slot flagged by its headcount."""
        return TimeSlot(
            time_range=session.time_range,
            is_available=rule.is_available(),
            class_session_id=session.id
        )
