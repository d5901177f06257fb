"""Time-of-day parsing and the planning-day slot grid."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional


def parse_time_string(value) -> time:
    """Parse ``HH:MM`` (or pass through a ``datetime.time``)."""
    if isinstance(value, time):
        return value
    hours, minutes = [int(x) for x in str(value).strip().split(":")[:2]]
    return time(hours, minutes)


def minutes_of_day(value) -> float:
    """Minutes since midnight for a ``time`` or ``datetime``."""
    return value.hour * 60 + value.minute + value.second / 60.0


def at_minutes(day: date, minutes: float) -> datetime:
    return datetime.combine(day, time(0, 0)) + timedelta(minutes=minutes)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval intersection."""
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class SlotGrid:
    """Fixed-width slots covering the visible planning day.

    The end boundary is itself a slot start, so 08:00-18:00 at 15 minutes
    yields 41 slots.
    """

    start: time = time(8, 0)
    end: time = time(18, 0)
    slot_minutes: int = 15

    def __post_init__(self):
        if self.slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        if not self.start < self.end:
            raise ValueError(f"Slot grid start {self.start} must be before end {self.end}")

    @property
    def slot_length(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    @property
    def slot_count(self) -> int:
        span = minutes_of_day(self.end) - minutes_of_day(self.start)
        return int(span // self.slot_minutes) + 1

    def slots(self, day: date) -> List[datetime]:
        first = datetime.combine(day, self.start)
        return [first + i * self.slot_length for i in range(self.slot_count)]

    def slot_index(self, when: datetime) -> Optional[int]:
        """Index of ``when`` if it is exactly a grid slot start, else None."""
        offset = minutes_of_day(when) - minutes_of_day(self.start)
        if offset < 0 or offset % self.slot_minutes:
            return None
        index = int(offset // self.slot_minutes)
        return index if index < self.slot_count else None

    def slots_touching(self, start: datetime, end: datetime) -> range:
        """Indices of every slot whose interval intersects ``[start, end)``."""
        if end <= start:
            return range(0)
        base = minutes_of_day(self.start)
        first = (minutes_of_day(start) - base) // self.slot_minutes
        last_minute = minutes_of_day(end) - base
        if end.date() > start.date():
            last_minute += 24 * 60 * (end.date() - start.date()).days
        last = -(-last_minute // self.slot_minutes) - 1
        return range(max(0, int(first)), min(self.slot_count - 1, int(last)) + 1)
