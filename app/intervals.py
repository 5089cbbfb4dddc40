from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

MINUTES_PER_DAY = 1440
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6
TIME_LABEL_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def is_valid_time_label(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(TIME_LABEL_RE.match(str(value).strip()))


def parse_time_label(value) -> int:
    """Return minutes after midnight for an ``HH:MM`` label or ``datetime.time``."""
    if isinstance(value, datetime.time):
        return value.hour * 60 + value.minute
    if value is None:
        raise ValueError("Time value is required.")
    match = TIME_LABEL_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid time '{value}'; expected HH:MM.")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_hour(hour: int) -> str:
    return f"{int(hour) % 24:02d}:00"


@dataclass(frozen=True)
class ShiftInterval:
    """Clock-time window where an end at or before the start means the shift runs past midnight."""

    start: int
    end: int

    @classmethod
    def from_labels(cls, start, end) -> "ShiftInterval":
        return cls(parse_time_label(start), parse_time_label(end))

    @classmethod
    def from_hours(cls, start_hour: int, end_hour: int) -> "ShiftInterval":
        return cls((start_hour % 24) * 60, (end_hour % 24) * 60)

    @property
    def start_minutes(self) -> int:
        return self.start

    @property
    def end_minutes(self) -> int:
        if self.end <= self.start:
            return self.end + MINUTES_PER_DAY
        return self.end

    @property
    def is_overnight(self) -> bool:
        return self.end <= self.start

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    @property
    def duration_hours(self) -> float:
        return self.duration_minutes / 60.0

    @property
    def start_label(self) -> str:
        return format_minutes(self.start)

    @property
    def end_label(self) -> str:
        return format_minutes(self.end)

    @property
    def start_hour(self) -> int:
        return self.start // 60

    @property
    def end_hour(self) -> int:
        return self.end // 60

    @property
    def starts_at_night(self) -> bool:
        hour = self.start_hour
        return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR

    def overlaps(self, other: "ShiftInterval") -> bool:
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def covers_hour(self, hour: int) -> bool:
        """True when the top of clock hour ``hour`` falls inside the interval."""
        hour = int(hour) % 24
        return any(self.start_minutes <= minute < self.end_minutes for minute in (hour * 60, (hour + 24) * 60))

    def hours(self) -> Iterator[int]:
        """Yield every clock hour (0-23) the interval touches, in order."""
        first = self.start_minutes // 60
        last = (self.end_minutes - 1) // 60
        for hour in range(first, last + 1):
            yield hour % 24

    def anchored(self, date_: datetime.date) -> Tuple[datetime.datetime, datetime.datetime]:
        midnight = datetime.datetime.combine(date_, datetime.time())
        return (
            midnight + datetime.timedelta(minutes=self.start_minutes),
            midnight + datetime.timedelta(minutes=self.end_minutes),
        )

    def rest_hours_until(self, this_date: datetime.date, other: "ShiftInterval", other_date: datetime.date) -> float:
        _, this_end = self.anchored(this_date)
        other_start, _ = other.anchored(other_date)
        return (other_start - this_end).total_seconds() / 3600

    def label(self) -> str:
        return f"{self.start_label}-{self.end_label}"


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    return ShiftInterval.from_labels(start_a, end_a).overlaps(ShiftInterval.from_labels(start_b, end_b))


def any_overlap(intervals: List[ShiftInterval]) -> bool:
    for idx, first in enumerate(intervals):
        for second in intervals[idx + 1:]:
            if first.overlaps(second):
                return True
    return False


def shift_hours(start, end) -> float:
    return ShiftInterval.from_labels(start, end).duration_hours
