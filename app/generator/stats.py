from __future__ import annotations

import datetime
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from domain import ScheduleEntry
from intervals import ShiftInterval

WeekKey = Tuple[int, int]


def week_key(date_: datetime.date) -> WeekKey:
    iso = date_.isocalendar()
    return (iso[0], iso[1])


@dataclass
class EmployeeRunStats:
    scheduled_days: int = 0
    total_hours: float = 0.0
    max_consecutive: int = 0
    last_date: Optional[datetime.date] = None
    weekly_hours: Dict[WeekKey, float] = field(default_factory=lambda: defaultdict(float))
    shift_type_distribution: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    worked_dates: Set[datetime.date] = field(default_factory=set)
    windows: List[Tuple[datetime.datetime, datetime.datetime]] = field(default_factory=list)

    def consecutive_before(self, date_: datetime.date) -> int:
        """Length of the unbroken run of worked dates ending the day before ``date_``."""
        run = 0
        cursor = date_ - datetime.timedelta(days=1)
        while cursor in self.worked_dates:
            run += 1
            cursor -= datetime.timedelta(days=1)
        return run

    def rest_gap_hours(self, start: datetime.datetime, end: datetime.datetime) -> Optional[float]:
        """Smallest gap between the window and any known shift; negative when they overlap."""
        gaps = []
        for other_start, other_end in self.windows:
            if other_end <= start:
                gaps.append((start - other_end).total_seconds() / 3600)
            elif other_start >= end:
                gaps.append((other_start - end).total_seconds() / 3600)
            else:
                gaps.append(-1.0)
        return min(gaps) if gaps else None


class RunStatistics:
    """Per-employee running statistics owned by a single generation run."""

    def __init__(self, employee_ids: Iterable[int] = ()) -> None:
        self._stats: Dict[int, EmployeeRunStats] = {}
        for employee_id in employee_ids:
            self._stats[int(employee_id)] = EmployeeRunStats()

    def __getitem__(self, employee_id: int) -> EmployeeRunStats:
        return self.get(employee_id)

    def __contains__(self, employee_id: int) -> bool:
        return int(employee_id) in self._stats

    def get(self, employee_id: int) -> EmployeeRunStats:
        key = int(employee_id)
        if key not in self._stats:
            self._stats[key] = EmployeeRunStats()
        return self._stats[key]

    def items(self):
        return self._stats.items()

    def _note_shift(self, stats: EmployeeRunStats, date_: datetime.date, interval: ShiftInterval) -> float:
        hours = interval.duration_hours
        stats.weekly_hours[week_key(date_)] += hours
        stats.worked_dates.add(date_)
        stats.windows.append(interval.anchored(date_))
        if stats.last_date is None or date_ > stats.last_date:
            stats.last_date = date_
        return hours

    def seed_from_entries(self, entries: Iterable[ScheduleEntry]) -> None:
        """Load committed work so caps and rest checks see what is already on the books."""
        for entry in entries:
            if not entry.is_active or int(entry.employee_id) not in self._stats:
                continue
            self._note_shift(self._stats[int(entry.employee_id)], entry.date, entry.interval)

    def record_assignment(self, employee_id: int, date_: datetime.date, interval: ShiftInterval, shift_type: str) -> None:
        stats = self.get(employee_id)
        run = stats.consecutive_before(date_) + 1
        new_day = date_ not in stats.worked_dates
        hours = self._note_shift(stats, date_, interval)
        if new_day:
            stats.scheduled_days += 1
        stats.total_hours += hours
        stats.max_consecutive = max(stats.max_consecutive, run)
        stats.shift_type_distribution[shift_type] += 1

    def week_hours(self, employee_id: int, date_: datetime.date) -> float:
        return self.get(employee_id).weekly_hours.get(week_key(date_), 0.0)

    def current_run(self, employee_id: int, date_: datetime.date) -> int:
        return self.get(employee_id).consecutive_before(date_)

    def cohort_average_days(self) -> float:
        if not self._stats:
            return 0.0
        return sum(stats.scheduled_days for stats in self._stats.values()) / len(self._stats)
