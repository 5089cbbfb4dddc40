from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from domain import EmployeeSnapshot, ScheduleEntry
from policy import SchedulingConstraints, load_active_policy, resolve_constraints
from repository import SqlScheduleRepository

SEVERITY_RANK = {"high": 3, "medium": 2, "low": 1}
HOURS_TOLERANCE = 1e-6


def _employee_name(employee_id: int, employees: Mapping[int, Any]) -> str:
    employee = employees.get(employee_id)
    if isinstance(employee, EmployeeSnapshot):
        return employee.name or f"Employee {employee_id}"
    if isinstance(employee, str) and employee:
        return employee
    return f"Employee {employee_id}"


def _iso_week_label(date_: datetime.date) -> str:
    year, week, _ = date_.isocalendar()
    return f"{year}-W{week:02d}"


def _group_by_employee(entries: Iterable[ScheduleEntry]) -> Dict[int, List[ScheduleEntry]]:
    grouped: Dict[int, List[ScheduleEntry]] = defaultdict(list)
    for entry in entries:
        if not entry.is_active:
            continue
        grouped[entry.employee_id].append(entry)
    for items in grouped.values():
        items.sort(key=lambda item: (item.date, item.interval.start_minutes))
    return grouped


def _overlap_conflicts(employee_id: int, name: str, items: List[ScheduleEntry]) -> List[Dict[str, Any]]:
    conflicts: List[Dict[str, Any]] = []
    by_date: Dict[datetime.date, List[ScheduleEntry]] = defaultdict(list)
    for entry in items:
        by_date[entry.date].append(entry)
    for date_, same_day in sorted(by_date.items()):
        for index, first in enumerate(same_day):
            for second in same_day[index + 1:]:
                if first.interval.overlaps(second.interval):
                    conflicts.append(
                        {
                            "type": "time_overlap",
                            "severity": "high",
                            "employeeId": employee_id,
                            "employeeName": name,
                            "date": date_.isoformat(),
                            "entries": [first.as_dict(), second.as_dict()],
                            "message": (
                                f"{name} has overlapping shifts {first.interval.label()} and "
                                f"{second.interval.label()} on {date_.isoformat()}."
                            ),
                        }
                    )
    return conflicts


def _rest_conflicts(
    employee_id: int, name: str, items: List[ScheduleEntry], min_rest_hours: float
) -> List[Dict[str, Any]]:
    conflicts: List[Dict[str, Any]] = []
    if not min_rest_hours:
        return conflicts
    for current, following in zip(items, items[1:]):
        if current.date == following.date and current.interval.overlaps(following.interval):
            continue
        rest = current.interval.rest_hours_until(current.date, following.interval, following.date)
        if rest < min_rest_hours:
            conflicts.append(
                {
                    "type": "insufficient_rest",
                    "severity": "medium",
                    "employeeId": employee_id,
                    "employeeName": name,
                    "entries": [current.as_dict(), following.as_dict()],
                    "actualRest": round(rest, 2),
                    "requiredRest": min_rest_hours,
                    "message": f"Only {rest:.1f} hours rest between shifts (minimum {min_rest_hours:g}).",
                }
            )
    return conflicts


def _weekly_conflicts(
    employee_id: int, name: str, items: List[ScheduleEntry], max_weekly_hours: float
) -> List[Dict[str, Any]]:
    conflicts: List[Dict[str, Any]] = []
    if not max_weekly_hours:
        return conflicts
    weeks: Dict[str, List[ScheduleEntry]] = defaultdict(list)
    for entry in items:
        weeks[_iso_week_label(entry.date)].append(entry)
    for week, week_entries in sorted(weeks.items()):
        hours = sum(entry.hours for entry in week_entries)
        if hours > max_weekly_hours + HOURS_TOLERANCE:
            conflicts.append(
                {
                    "type": "weekly_hours_exceeded",
                    "severity": "high",
                    "employeeId": employee_id,
                    "employeeName": name,
                    "week": week,
                    "actualHours": round(hours, 2),
                    "maxHours": max_weekly_hours,
                    "entries": [entry.as_dict() for entry in week_entries],
                    "message": f"Weekly hours ({hours:.1f}) exceed limit ({max_weekly_hours:g}) in {week}.",
                }
            )
    return conflicts


def _consecutive_runs(items: List[ScheduleEntry]) -> List[List[datetime.date]]:
    dates = sorted({entry.date for entry in items})
    runs: List[List[datetime.date]] = []
    for date_ in dates:
        if runs and (date_ - runs[-1][-1]).days == 1:
            runs[-1].append(date_)
        else:
            runs.append([date_])
    return runs


def _consecutive_conflicts(
    employee_id: int, name: str, items: List[ScheduleEntry], max_consecutive_days: int
) -> List[Dict[str, Any]]:
    conflicts: List[Dict[str, Any]] = []
    if not max_consecutive_days:
        return conflicts
    for run in _consecutive_runs(items):
        if len(run) <= max_consecutive_days:
            continue
        run_dates = set(run)
        conflicts.append(
            {
                "type": "consecutive_days_exceeded",
                "severity": "medium",
                "employeeId": employee_id,
                "employeeName": name,
                "consecutiveDays": len(run),
                "maxConsecutiveDays": max_consecutive_days,
                "startDate": run[0].isoformat(),
                "endDate": run[-1].isoformat(),
                "entries": [entry.as_dict() for entry in items if entry.date in run_dates],
                "message": f"{len(run)} consecutive days exceed limit ({max_consecutive_days}).",
            }
        )
    return conflicts


def detect_schedule_conflicts(
    entries: Iterable[ScheduleEntry],
    constraints: Optional[SchedulingConstraints] = None,
    employees: Optional[Mapping[int, Any]] = None,
) -> List[Dict[str, Any]]:
    """Report overlaps, rest gaps and hour/day limit overruns in a committed schedule."""
    constraints = constraints or SchedulingConstraints()
    employees = employees or {}
    conflicts: List[Dict[str, Any]] = []
    for employee_id, items in sorted(_group_by_employee(entries).items()):
        name = _employee_name(employee_id, employees)
        conflicts.extend(_overlap_conflicts(employee_id, name, items))
        conflicts.extend(_rest_conflicts(employee_id, name, items, constraints.min_rest_hours))
        conflicts.extend(_weekly_conflicts(employee_id, name, items, constraints.max_weekly_hours))
        conflicts.extend(_consecutive_conflicts(employee_id, name, items, constraints.max_consecutive_days))
    return conflicts


def conflict_recommendations(conflicts: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = defaultdict(int)
    for conflict in conflicts:
        counts[conflict.get("type", "")] += 1
    recommendations: List[Dict[str, Any]] = []
    if counts["time_overlap"]:
        recommendations.append(
            {
                "type": "resolve_conflicts",
                "priority": "high",
                "title": "Resolve overlapping shifts",
                "message": f"{counts['time_overlap']} overlapping shift pair(s) need rescheduling.",
                "action": "reschedule_overlapping",
            }
        )
    if counts["insufficient_rest"]:
        recommendations.append(
            {
                "type": "improve_rest",
                "priority": "medium",
                "title": "Improve rest between shifts",
                "message": f"{counts['insufficient_rest']} shift transition(s) leave too little rest.",
                "action": "adjust_shift_timing",
            }
        )
    if counts["weekly_hours_exceeded"]:
        recommendations.append(
            {
                "type": "reduce_hours",
                "priority": "high",
                "title": "Reduce weekly hours",
                "message": f"{counts['weekly_hours_exceeded']} employee week(s) exceed the weekly hour limit.",
                "action": "redistribute_hours",
            }
        )
    return sorted(recommendations, key=lambda item: SEVERITY_RANK.get(item["priority"], 0), reverse=True)


def analyze_workload_distribution(entries: Iterable[ScheduleEntry]) -> Dict[str, Any]:
    hours: Dict[int, float] = defaultdict(float)
    for entry in entries:
        if entry.is_active:
            hours[entry.employee_id] += entry.hours
    if not hours:
        return {"imbalance": 0.0, "avgHours": 0.0, "maxHours": 0.0, "minHours": 0.0, "overworked": [], "underutilized": []}
    values = list(hours.values())
    average = sum(values) / len(values)
    highest = max(values)
    lowest = min(values)
    return {
        "imbalance": (highest - lowest) / average if average > 0 else 0.0,
        "avgHours": average,
        "maxHours": highest,
        "minHours": lowest,
        "overworked": [
            {"employeeId": employee_id, "hours": total}
            for employee_id, total in sorted(hours.items())
            if total > average * 1.2
        ],
        "underutilized": [
            {"employeeId": employee_id, "hours": total}
            for employee_id, total in sorted(hours.items())
            if total < average * 0.8
        ],
    }


def _build_checklist(conflicts: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    labels: List[Tuple[str, str]] = [
        ("No overlapping shifts?", "time_overlap"),
        ("Rest periods respected?", "insufficient_rest"),
        ("Weekly hours within limit?", "weekly_hours_exceeded"),
        ("Consecutive days within limit?", "consecutive_days_exceeded"),
    ]
    checks = []
    for label, conflict_type in labels:
        hits = [conflict for conflict in conflicts if conflict["type"] == conflict_type]
        checks.append(
            {
                "label": label,
                "status": "fail" if hits else "pass",
                "details": f"{len(hits)} finding(s)." if hits else "",
            }
        )
    return checks


def validate_period_schedule(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    employee_session=None,
    constraints: Optional[Mapping[str, Any]] = None,
    policy_session=None,
) -> Dict[str, Any]:
    """Return conflict findings for committed entries between ``start`` and ``end``."""
    if start > end:
        raise ValueError("start date must be on or before end date.")
    policy = load_active_policy(policy_session if policy_session is not None else session)
    resolved = resolve_constraints(policy, constraints)
    repository = SqlScheduleRepository(session, employee_session)
    entries = repository.load_entries(start, end, include_cancelled=False)
    employees = {}
    if entries:
        ids = {entry.employee_id for entry in entries}
        employees = {employee.id: employee for employee in repository.load_employees(employee_ids=ids, only_active=False)}
    conflicts = detect_schedule_conflicts(entries, resolved, employees)
    return {
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "constraints": resolved.as_dict(),
        "checks": _build_checklist(conflicts),
        "conflicts": conflicts,
        "recommendations": conflict_recommendations(conflicts),
        "workload": analyze_workload_distribution(entries),
    }
