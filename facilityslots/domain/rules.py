"""
Availability rules.

A facility slot and a class session are "available" for different reasons:
a slot is blocked by any overlapping booking, a session is full once its
headcount reaches capacity. Both are expressed as variants of
``AvailabilityRule`` so callers pick the rule explicitly.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Union

from .models import TimeRange


@dataclass(frozen=True)
class IntervalRule:
    """Available when the candidate overlaps none of the busy ranges."""
    busy: Sequence[TimeRange]
    kind: Literal["interval"] = "interval"

    def is_available(self, candidate: Optional[TimeRange] = None) -> bool:
        if candidate is None:
            raise ValueError("IntervalRule needs a candidate time range")
        return not any(busy.overlaps(candidate) for busy in self.busy)


@dataclass(frozen=True)
class CapacityRule:
    """Available while the current headcount is below the ceiling."""
    max_participants: int
    current_participants: int
    kind: Literal["capacity"] = "capacity"

    def is_available(self, candidate: Optional[TimeRange] = None) -> bool:
        return self.current_participants < self.max_participants

    @property
    def remaining(self) -> int:
        return max(self.max_participants - self.current_participants, 0)


AvailabilityRule = Union[IntervalRule, CapacityRule]
