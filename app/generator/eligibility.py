from __future__ import annotations

import datetime
from typing import Iterable, Mapping, Optional, Set

from domain import EmployeeSnapshot, LeaveSnapshot, Weekday
from policy import SchedulingConstraints

from .shifts import ShiftSpec
from .stats import RunStatistics

ON_LEAVE = "on_leave"
ALREADY_SCHEDULED = "already_scheduled"
CONSECUTIVE_DAYS = "consecutive_days"
WEEKLY_HOURS = "weekly_hours"
INSUFFICIENT_REST = "insufficient_rest"
UNAVAILABLE_HOUR = "unavailable_hour"
WEEKEND = "weekend"
NIGHT_SHIFT = "night_shift"
SKILL = "skill"

HOURS_EPSILON = 1e-9


def effective_consecutive_cap(employee: EmployeeSnapshot, constraints: SchedulingConstraints) -> Optional[int]:
    caps = []
    if constraints.max_consecutive_days:
        caps.append(constraints.max_consecutive_days)
    own = employee.constraints.max_consecutive_days if employee.constraints else None
    if own:
        caps.append(own)
    return min(caps) if caps else None


def ineligibility_reason(
    employee: EmployeeSnapshot,
    date_: datetime.date,
    shift: ShiftSpec,
    constraints: SchedulingConstraints,
    stats: RunStatistics,
    *,
    leaves: Iterable[LeaveSnapshot] = (),
    existing_dates: Optional[Mapping[int, Set[datetime.date]]] = None,
    default_min_skill_level: float = 3.0,
) -> Optional[str]:
    """Return why ``employee`` cannot take ``shift`` on business day ``date_``, or None when they can.

    Calendar checks use the date the shift actually starts on, which is the
    following day for the post-midnight part of an overnight business day.
    """
    work_date = shift.work_date(date_)
    if any(leave.employee_id == employee.id and leave.covers(work_date) for leave in leaves):
        return ON_LEAVE

    employee_stats = stats.get(employee.id)
    if existing_dates and work_date in existing_dates.get(employee.id, ()):
        return ALREADY_SCHEDULED
    if work_date in employee_stats.worked_dates:
        return ALREADY_SCHEDULED

    cap = effective_consecutive_cap(employee, constraints)
    if cap and employee_stats.consecutive_before(work_date) >= cap:
        return CONSECUTIVE_DAYS

    if constraints.max_weekly_hours:
        projected = stats.week_hours(employee.id, work_date) + shift.hours
        if projected >= constraints.max_weekly_hours - HOURS_EPSILON:
            return WEEKLY_HOURS

    interval = shift.interval
    if constraints.min_rest_hours:
        start, end = shift.anchored(date_)
        gap = employee_stats.rest_gap_hours(start, end)
        if gap is not None and gap < constraints.min_rest_hours:
            return INSUFFICIENT_REST

    own = employee.constraints
    if own is not None:
        if own.unavailable_hours and any(hour in own.unavailable_hours for hour in interval.hours()):
            return UNAVAILABLE_HOUR
        if Weekday.of(work_date).is_weekend and not own.can_work_weekends:
            return WEEKEND
        if interval.starts_at_night and not own.can_work_night_shifts:
            return NIGHT_SHIFT

    # Employees without an ability record are not held to skill minimums.
    if shift.skill_requirement is not None and employee.ability is not None:
        required = shift.skill_requirement.min_skill_level or default_min_skill_level
        if employee.ability.average_core < required:
            return SKILL
    return None


def is_eligible(*args, **kwargs) -> bool:
    return ineligibility_reason(*args, **kwargs) is None
