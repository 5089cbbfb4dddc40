from __future__ import annotations

import datetime
from typing import Optional

from domain import Ability, EmployeeSnapshot, SkillRequirement, Weekday
from policy import SchedulingConstraints, SchedulingPriorities

from .shifts import ShiftSpec
from .stats import RunStatistics

PRIORITY_BONUS = {"critical": 5.0, "high": 3.0}
SKILL_MATCH_WEIGHTS = (("work_skill", 0.4), ("experience", 0.3), ("customer_service", 0.3))
SENIORITY_CAP = 5.0
FAIRNESS_FLOOR = -5.0
FAIRNESS_CEILING = 10.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def skill_match(ability: Optional[Ability], requirement: Optional[SkillRequirement]) -> float:
    """Fraction (0-1) of the named sub-skills the employee meets."""
    if ability is None or requirement is None:
        return 0.0
    matched = 0.0
    for name, weight in SKILL_MATCH_WEIGHTS:
        needed = getattr(requirement, name)
        if needed and getattr(ability, name) >= needed:
            matched += weight
    return matched


def score_candidate(
    employee: EmployeeSnapshot,
    date_: datetime.date,
    shift: ShiftSpec,
    priorities: SchedulingPriorities,
    constraints: SchedulingConstraints,
    stats: RunStatistics,
    cohort_average_days: float,
    today: Optional[datetime.date] = None,
    *,
    monthly_hours_target: float = 160.0,
) -> float:
    employee_stats = stats.get(employee.id)
    work_date = shift.work_date(date_)
    score = 0.0

    if employee.ability is not None:
        score += employee.ability.weighted_score * priorities.ability_weight * 10

    preference = employee.preference
    if constraints.respect_preferences and preference is not None:
        weekday = Weekday.of(work_date)
        if weekday in preference.prefer_days:
            score += priorities.preference_weight * 10
        if weekday in preference.avoid_days:
            score -= priorities.preference_weight * 5
        if preference.preferred_hours:
            matches = sum(1 for hour in shift.interval.hours() if hour in preference.preferred_hours)
            score += priorities.preference_weight * 2 * matches

    if constraints.fair_distribution:
        score += _clamp((cohort_average_days - employee_stats.scheduled_days) * 2, FAIRNESS_FLOOR, FAIRNESS_CEILING)

    years = employee.years_of_service(today or datetime.date.today())
    score += min(years * priorities.seniority_weight, SENIORITY_CAP)

    target = monthly_hours_target if monthly_hours_target > 0 else 160.0
    utilization = min(employee_stats.total_hours / target, 1.0)
    score += (1 - utilization) * priorities.availability_weight * 10

    score += PRIORITY_BONUS.get(shift.priority, 0.0)
    score += skill_match(employee.ability, shift.skill_requirement) * 3

    if constraints.max_weekly_hours:
        score -= stats.week_hours(employee.id, work_date) / constraints.max_weekly_hours * 3
    if constraints.max_consecutive_days:
        score -= employee_stats.consecutive_before(work_date) / constraints.max_consecutive_days * 2
    return max(0.0, score)
