"""Time window value objects for tour scheduling."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List

MINUTES_PER_DAY = 24 * 60


def minutes_of(value: time) -> int:
    """Minutes elapsed since midnight for a wall-clock time."""
    return value.hour * 60 + value.minute


def time_of(minutes: int) -> time:
    """Wall-clock time for a minute offset within one day."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"Minute offset {minutes} is outside a single day")
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open interval ``[start, end)`` in minutes since midnight."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("Interval end must not be before its start")

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def expanded(self, minutes: int) -> "Interval":
        """Grow the interval by ``minutes`` on both sides."""
        return Interval(self.start - minutes, self.end + minutes)

    def subtract(self, occupied: Iterable["Interval"]) -> List["Interval"]:
        """Return the parts of this interval not covered by ``occupied``."""
        free = [self]
        for block in sorted(occupied):
            remaining = []
            for piece in free:
                if not piece.overlaps(block):
                    remaining.append(piece)
                    continue
                if piece.start < block.start:
                    remaining.append(Interval(piece.start, block.start))
                if block.end < piece.end:
                    remaining.append(Interval(block.end, piece.end))
            free = remaining
        return free


@dataclass(frozen=True)
class TimeWindow:
    """Immutable booking window on a single calendar day."""

    date: date
    start: time
    end: time

    def __post_init__(self) -> None:
        """Validate window bounds."""
        if self.start >= self.end:
            raise ValueError("Start time must be before end time")

    @classmethod
    def starting_at(cls, on: date, start: time, duration_minutes: int) -> "TimeWindow":
        """Build a window from a start time and a duration."""
        end_minutes = minutes_of(start) + duration_minutes
        if end_minutes >= MINUTES_PER_DAY:
            raise ValueError("Time window must end on the day it starts")
        return cls(date=on, start=start, end=time_of(end_minutes))

    @property
    def duration_minutes(self) -> int:
        return minutes_of(self.end) - minutes_of(self.start)

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def interval(self) -> Interval:
        """Window as minutes since midnight."""
        return Interval(minutes_of(self.start), minutes_of(self.end))

    @property
    def datetime_start(self) -> datetime:
        return datetime.combine(self.date, self.start)

    @property
    def datetime_end(self) -> datetime:
        return datetime.combine(self.date, self.end)

    def overlaps(self, other: "TimeWindow", buffer_minutes: int = 0) -> bool:
        """Check whether two windows collide once ``buffer_minutes`` is enforced between them."""
        if self.date != other.date:
            return False
        return self.interval.expanded(buffer_minutes).overlaps(other.interval)

    def format_time_range(self) -> str:
        """Get formatted time range string."""
        return f"{self.start.strftime('%H:%M')} - {self.end.strftime('%H:%M')}"

    @property
    def time_range(self) -> str:
        return self.format_time_range()
