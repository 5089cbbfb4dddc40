from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from domain import SkillRequirement
from intervals import MINUTES_PER_DAY, NIGHT_END_HOUR, NIGHT_START_HOUR, ShiftInterval, format_minutes
from operating_hours import EffectiveHours

OPTIMIZATION_LEVELS = ("basic", "standard", "advanced")
ADVANCED_SLOT_LENGTHS = {"critical": 6, "high": 5, "low": 3}
ADVANCED_DEFAULT_LENGTH = 4
MIN_ADVANCED_SHIFT_MINUTES = 180


@dataclass(frozen=True)
class ShiftSpec:
    """A shift window on the day's minute axis (values past 1440 run into the next morning)."""

    start: int
    end: int
    required_staff: int
    priority: str = "normal"
    skill_requirement: Optional[SkillRequirement] = None
    shift_id: Optional[str] = None

    @property
    def interval(self) -> ShiftInterval:
        return ShiftInterval(self.start % MINUTES_PER_DAY, self.end % MINUTES_PER_DAY)

    @property
    def day_offset(self) -> int:
        """Whole days between the business date and the calendar date the shift starts on."""
        return self.start // MINUTES_PER_DAY

    def work_date(self, business_date: datetime.date) -> datetime.date:
        return business_date + datetime.timedelta(days=self.day_offset)

    def anchored(self, business_date: datetime.date) -> Tuple[datetime.datetime, datetime.datetime]:
        midnight = datetime.datetime.combine(business_date, datetime.time())
        return (
            midnight + datetime.timedelta(minutes=self.start),
            midnight + datetime.timedelta(minutes=self.end),
        )

    @property
    def start_time(self) -> str:
        return format_minutes(self.start)

    @property
    def end_time(self) -> str:
        return format_minutes(self.end)

    @property
    def hours(self) -> float:
        return (self.end - self.start) / 60.0

    def as_dict(self) -> dict:
        return {
            "shiftId": self.shift_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "requiredStaff": self.required_staff,
            "priority": self.priority,
            "skillRequirement": self.skill_requirement.as_dict() if self.skill_requirement else None,
        }


def determine_shift_type(interval: ShiftInterval, priority: str = "normal") -> str:
    start_hour = interval.start_hour
    end_hour = interval.end_hour
    if start_hour >= NIGHT_START_HOUR or end_hour <= NIGHT_END_HOUR:
        return "night"
    if start_hour <= 7:
        return "early"
    if end_hour >= 20:
        return "late"
    if priority == "critical":
        return "peak"
    return "regular"


def _axis_hour(hour: int, open_hour: int, overnight: bool) -> int:
    if overnight and hour < open_hour:
        return hour + 24
    return hour


def _ordered_slots(hours: EffectiveHours) -> List[tuple]:
    interval = hours.interval
    open_hour = hours.open_hour
    return sorted(
        ((_axis_hour(slot.hour, open_hour, interval.is_overnight), slot) for slot in hours.slots),
        key=lambda pair: pair[0],
    )


def _basic(hours: EffectiveHours) -> List[ShiftSpec]:
    interval = hours.interval
    return [ShiftSpec(interval.start_minutes, interval.end_minutes, hours.min_staff or 1)]


def _standard_from_slots(ordered: Sequence[tuple]) -> List[ShiftSpec]:
    shifts: List[ShiftSpec] = []
    current = None
    for hour, slot in ordered:
        if (
            current is None
            or current["required"] != slot.required_staff
            or current["priority"] != slot.priority
            or hour != current["end"]
        ):
            if current is not None:
                shifts.append(
                    ShiftSpec(
                        current["start"] * 60,
                        current["end"] * 60,
                        current["required"],
                        current["priority"],
                        current["skill"],
                    )
                )
            current = {
                "start": hour,
                "end": hour + 1,
                "required": slot.required_staff,
                "priority": slot.priority,
                "skill": slot.skill_requirement,
            }
        else:
            current["end"] = hour + 1
    if current is not None:
        shifts.append(
            ShiftSpec(current["start"] * 60, current["end"] * 60, current["required"], current["priority"], current["skill"])
        )
    return shifts


def _standard_split(hours: EffectiveHours) -> List[ShiftSpec]:
    interval = hours.interval
    midpoint = (hours.open_hour + hours.close_hour) // 2
    min_staff = hours.min_staff or 1
    mid_minutes = midpoint * 60
    if not interval.start_minutes < mid_minutes < interval.end_minutes:
        # Too short to split around a whole hour.
        return [ShiftSpec(interval.start_minutes, interval.end_minutes, min_staff)]
    return [
        ShiftSpec(interval.start_minutes, mid_minutes, math.ceil(min_staff * 0.6)),
        ShiftSpec(mid_minutes, interval.end_minutes, min_staff),
    ]


def _advanced_from_slots(ordered: Sequence[tuple], close_hour: int) -> List[ShiftSpec]:
    shifts: List[ShiftSpec] = []
    index = 0
    while index < len(ordered):
        hour, slot = ordered[index]
        length = ADVANCED_SLOT_LENGTHS.get(slot.priority, ADVANCED_DEFAULT_LENGTH)
        end_hour = min(hour + length, close_hour)
        if end_hour > hour:
            shifts.append(
                ShiftSpec(
                    hour * 60,
                    end_hour * 60,
                    slot.required_staff,
                    slot.priority,
                    slot.skill_requirement,
                    shift_id=f"shift_{len(shifts) + 1}",
                )
            )
        index += 1
        while index < len(ordered) and ordered[index][0] < end_hour:
            index += 1
    return shifts


def _advanced_rolling(hours: EffectiveHours) -> List[ShiftSpec]:
    open_hour = hours.open_hour
    close_hour = hours.close_hour
    total = close_hour - open_hour
    length_minutes = int(round(max(4.0, min(8.0, total / 2.0)) * 60))
    step = max(1, int(length_minutes // 60) // 2)
    shifts: List[ShiftSpec] = []
    for hour in range(open_hour, close_hour, step):
        start = hour * 60
        end = min(start + length_minutes, close_hour * 60)
        if end - start >= MIN_ADVANCED_SHIFT_MINUTES:
            shifts.append(ShiftSpec(start, end, hours.min_staff or 1))
    return shifts


def generate_shifts(hours: EffectiveHours, level: str = "standard") -> List[ShiftSpec]:
    """Turn one day's effective hours into shift windows for the given optimisation level."""
    if level not in OPTIMIZATION_LEVELS:
        raise ValueError(f"Unknown optimization level '{level}'.")
    if not hours.is_open or hours.interval is None:
        return []
    if level == "basic":
        return _basic(hours)
    ordered = _ordered_slots(hours)
    if level == "standard":
        return _standard_from_slots(ordered) if ordered else _standard_split(hours)
    if ordered:
        return _advanced_from_slots(ordered, hours.close_hour)
    return _advanced_rolling(hours)
