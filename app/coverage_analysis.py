from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional

from domain import LeaveSnapshot, OperatingTemplate, ScheduleEntry, Weekday
from operating_hours import EffectiveHours, resolve_effective_hours
from repository import SqlScheduleRepository

logger = logging.getLogger(__name__)

OVERSTAFFED_DAY_THRESHOLD = 3
SHORTFALL_DAY_RATIO = 0.3
PROBLEM_HOUR_SHORTFALL = 0.5
LOW_EFFICIENCY = 0.8
WEEKEND_STAFF_RATIO = 1.3


def _daterange(start: datetime.date, end: datetime.date) -> Iterable[datetime.date]:
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += datetime.timedelta(days=1)


def _active_by_date(entries: Iterable[ScheduleEntry]) -> Dict[datetime.date, List[ScheduleEntry]]:
    grouped: Dict[datetime.date, List[ScheduleEntry]] = defaultdict(list)
    for entry in entries:
        if entry.is_active:
            grouped[entry.date].append(entry)
    return grouped


def entries_for_business_day(
    hours: EffectiveHours, entries_by_date: Mapping[datetime.date, List[ScheduleEntry]]
) -> List[ScheduleEntry]:
    """Entries worked during the business day ``hours`` describes.

    An open day collects every entry that overlaps its opening window, so the
    post-midnight part of an overnight day, dated the next morning, counts
    toward the day it serves. A closed day keeps the entries dated on it.
    """
    interval = hours.interval
    if interval is None:
        return list(entries_by_date.get(hours.date, []))
    window_start, window_end = interval.anchored(hours.date)
    found: List[ScheduleEntry] = []
    for offset in (-1, 0, 1):
        when = hours.date + datetime.timedelta(days=offset)
        for entry in entries_by_date.get(when, []):
            start, end = entry.interval.anchored(when)
            if start < window_end and window_start < end:
                found.append(entry)
    return found


def _hour_row(hours: EffectiveHours, axis_hour: int, day_entries: List[ScheduleEntry]) -> Dict[str, Any]:
    clock_hour = axis_hour % 24
    instant = datetime.datetime.combine(hours.date, datetime.time()) + datetime.timedelta(hours=axis_hour)
    actual = 0
    for entry in day_entries:
        start, end = entry.interval.anchored(entry.date)
        if start <= instant < end:
            actual += 1
    slot = hours.slot_for(clock_hour)
    required = slot.required_staff if slot else hours.min_staff
    preferred = slot.preferred if slot else required
    priority = slot.priority if slot else "normal"
    shortfall = max(0, required - actual)
    overstaffing = max(0, actual - preferred)
    coverage_rate = min(actual / required, 1.0) if required > 0 else 1.0
    if shortfall > 0:
        status = "understaffed"
    elif overstaffing > 0:
        status = "overstaffed"
    else:
        status = "optimal"
    return {
        "hour": clock_hour,
        "timeSlot": f"{clock_hour:02d}:00-{(clock_hour + 1) % 24:02d}:00",
        "actualStaff": actual,
        "requiredStaff": required,
        "preferredStaff": preferred,
        "shortfall": shortfall,
        "overstaffing": overstaffing,
        "coverageRate": coverage_rate,
        "priority": priority,
        "status": status,
    }


def _department_rows(
    day_entries: List[ScheduleEntry],
    day_leaves: List[LeaveSnapshot],
    departments: Mapping[int, str],
) -> List[Dict[str, Any]]:
    scheduled: Dict[str, int] = defaultdict(int)
    on_leave: Dict[str, int] = defaultdict(int)
    for entry in day_entries:
        scheduled[departments.get(entry.employee_id, "")] += 1
    for leave in day_leaves:
        on_leave[departments.get(leave.employee_id, "")] += 1
    rows = []
    for department in sorted(set(scheduled) | set(on_leave)):
        count = scheduled.get(department, 0)
        away = on_leave.get(department, 0)
        rows.append(
            {
                "department": department,
                "scheduledStaff": count,
                "staffOnLeave": away,
                "utilizationRate": count / (count + away) if count else 0.0,
            }
        )
    return rows


def analyze_coverage(
    template: Optional[OperatingTemplate],
    entries: Iterable[ScheduleEntry],
    leaves: Iterable[LeaveSnapshot],
    start: datetime.date,
    end: datetime.date,
    options: Optional[Mapping[str, Any]] = None,
    *,
    departments: Optional[Mapping[int, str]] = None,
) -> Dict[str, Any]:
    """Compare committed entries with the template hour by hour across ``start``..``end``."""
    if start > end:
        raise ValueError("start date must be on or before end date.")
    options = dict(options or {})
    include_weekends = options.get("includeWeekends", True) is not False
    by_department = bool(options.get("analyzeByDepartment", False))

    active_by_date = _active_by_date(entries)
    leave_list = list(leaves)

    daily: List[Dict[str, Any]] = []
    for day in _daterange(start, end):
        weekday = Weekday.of(day)
        if weekday.is_weekend and not include_weekends:
            continue
        day_leaves = [leave for leave in leave_list if leave.covers(day)]
        hours = resolve_effective_hours(template, day)
        day_entries = entries_for_business_day(hours, active_by_date)
        hourly: List[Dict[str, Any]] = []
        if hours.is_open:
            for axis_hour in range(hours.open_hour, hours.close_hour):
                hourly.append(_hour_row(hours, axis_hour, day_entries))

        total_scheduled = len(day_entries)
        total_shortfall = sum(row["shortfall"] for row in hourly)
        total_overstaffing = sum(row["overstaffing"] for row in hourly)
        avg_rate = sum(row["coverageRate"] for row in hourly) / len(hourly) if hourly else 0.0
        if total_overstaffing == 0 or total_scheduled == 0:
            efficiency = 1.0
        else:
            efficiency = max(0.0, 1 - total_overstaffing / total_scheduled)
        if total_shortfall > 0:
            status = "critical"
        elif total_overstaffing > OVERSTAFFED_DAY_THRESHOLD:
            status = "inefficient"
        else:
            status = "good"
        daily.append(
            {
                "date": day.isoformat(),
                "dayOfWeek": int(weekday),
                "dayName": weekday.label,
                "isWeekend": weekday.is_weekend,
                "totalScheduled": total_scheduled,
                "totalOnLeave": len(day_leaves),
                "templateUsed": (
                    {
                        "isOpen": True,
                        "openTime": hours.open_time,
                        "closeTime": hours.close_time,
                        "minStaff": hours.min_staff,
                        "maxStaff": hours.max_staff,
                        "isOverride": hours.is_override,
                    }
                    if hours.is_open
                    else None
                ),
                "metrics": {
                    "avgCoverageRate": avg_rate,
                    "totalShortfall": total_shortfall,
                    "totalOverstaffing": total_overstaffing,
                    "efficiency": efficiency,
                },
                "hourlyAnalysis": hourly,
                "departmentAnalysis": (
                    _department_rows(day_entries, day_leaves, departments or {}) if by_department else None
                ),
                "status": status,
            }
        )

    overall = _overall_stats(daily)
    return {
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "template": {"id": template.id, "name": template.name} if template else None,
        "dailyAnalysis": daily,
        "overallStats": overall,
        "recommendations": coverage_recommendations(daily, overall),
        "parameters": {"includeWeekends": include_weekends, "analyzeByDepartment": by_department},
    }


def _overall_stats(daily: List[Dict[str, Any]]) -> Dict[str, Any]:
    count = len(daily)
    if not count:
        return {
            "totalDaysAnalyzed": 0,
            "avgCoverageRate": 0.0,
            "avgEfficiency": 0.0,
            "daysWithShortfall": 0,
            "daysOverstaffed": 0,
            "totalShortfallHours": 0,
            "totalOverstaffingHours": 0,
        }
    return {
        "totalDaysAnalyzed": count,
        "avgCoverageRate": sum(day["metrics"]["avgCoverageRate"] for day in daily) / count,
        "avgEfficiency": sum(day["metrics"]["efficiency"] for day in daily) / count,
        "daysWithShortfall": sum(1 for day in daily if day["metrics"]["totalShortfall"] > 0),
        "daysOverstaffed": sum(
            1 for day in daily if day["metrics"]["totalOverstaffing"] > OVERSTAFFED_DAY_THRESHOLD
        ),
        "totalShortfallHours": sum(day["metrics"]["totalShortfall"] for day in daily),
        "totalOverstaffingHours": sum(day["metrics"]["totalOverstaffing"] for day in daily),
    }


def coverage_recommendations(daily: List[Dict[str, Any]], overall: Mapping[str, Any]) -> List[Dict[str, Any]]:
    recommendations: List[Dict[str, Any]] = []
    count = len(daily)
    if not count:
        return recommendations

    if overall["daysWithShortfall"] > count * SHORTFALL_DAY_RATIO:
        share = overall["daysWithShortfall"] / count * 100
        recommendations.append(
            {
                "type": "staffing_increase",
                "priority": "high",
                "title": "Increase staffing",
                "message": f"{share:.1f}% of analysed days had a shortfall; consider hiring.",
                "impact": "high",
                "effort": "high",
            }
        )

    per_hour: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
    for day in daily:
        for row in day["hourlyAnalysis"]:
            per_hour[row["hour"]].append(row)
    hour_stats = []
    for hour in sorted(per_hour):
        rows = per_hour[hour]
        hour_stats.append(
            {
                "hour": hour,
                "avgShortfall": sum(row["shortfall"] for row in rows) / len(rows),
                "avgCoverage": sum(row["coverageRate"] for row in rows) / len(rows),
            }
        )
    problem_hours = sorted(
        (item for item in hour_stats if item["avgShortfall"] > PROBLEM_HOUR_SHORTFALL),
        key=lambda item: item["avgShortfall"],
        reverse=True,
    )[:3]
    if problem_hours:
        labels = ", ".join(f"{item['hour']:02d}:00" for item in problem_hours)
        recommendations.append(
            {
                "type": "time_slot_adjustment",
                "priority": "medium",
                "title": "Recurring hourly shortfall",
                "message": f"Staffing is consistently short at {labels}; add cover for those hours.",
                "details": problem_hours,
                "impact": "medium",
                "effort": "medium",
            }
        )

    if overall["avgEfficiency"] < LOW_EFFICIENCY:
        recommendations.append(
            {
                "type": "efficiency_improvement",
                "priority": "medium",
                "title": "Improve efficiency",
                "message": f"Overall efficiency is {overall['avgEfficiency'] * 100:.1f}%; trim overlapping assignments.",
                "impact": "medium",
                "effort": "low",
            }
        )

    weekdays = [day for day in daily if not day["isWeekend"]]
    weekends = [day for day in daily if day["isWeekend"]]
    if weekdays and weekends:
        weekday_avg = sum(day["totalScheduled"] for day in weekdays) / len(weekdays)
        weekend_avg = sum(day["totalScheduled"] for day in weekends) / len(weekends)
        if weekend_avg > weekday_avg * WEEKEND_STAFF_RATIO:
            recommendations.append(
                {
                    "type": "weekend_optimization",
                    "priority": "low",
                    "title": "Review weekend staffing",
                    "message": (
                        f"Weekend average staff ({weekend_avg:.1f}) is well above weekdays ({weekday_avg:.1f}); "
                        "check it matches demand."
                    ),
                    "impact": "low",
                    "effort": "low",
                }
            )
    return recommendations


def template_compliance(
    entries: Iterable[ScheduleEntry],
    template: Optional[OperatingTemplate],
    start: datetime.date,
    end: datetime.date,
) -> Dict[str, Any]:
    """Day-level headcount against each open day's minimum staff."""
    active_by_date = _active_by_date(entries)
    daily: List[Dict[str, Any]] = []
    issues: List[Dict[str, Any]] = []
    for day in _daterange(start, end):
        hours = resolve_effective_hours(template, day)
        if not hours.is_open:
            continue
        required = hours.min_staff or 1
        actual = len(entries_for_business_day(hours, active_by_date))
        compliant = actual >= required
        daily.append(
            {
                "date": day.isoformat(),
                "dayOfWeek": int(Weekday.of(day)),
                "required": required,
                "actual": actual,
                "coverageRate": 1.0 if compliant else actual / required,
                "status": "compliant" if compliant else "understaffed",
            }
        )
        if not compliant:
            issues.append(
                {
                    "date": day.isoformat(),
                    "type": "understaffed",
                    "required": required,
                    "actual": actual,
                    "shortfall": required - actual,
                }
            )
    overall = sum(item["coverageRate"] for item in daily) / len(daily) if daily else 0.0
    return {"overallCoverageRate": overall, "dailyCompliance": daily, "issuesFound": issues}


def analyze_coverage_for_period(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    template_id: Optional[int] = None,
    options: Optional[Mapping[str, Any]] = None,
    employee_session=None,
) -> Dict[str, Any]:
    if start > end:
        raise ValueError("start date must be on or before end date.")
    repository = SqlScheduleRepository(session, employee_session)
    template = repository.load_template(template_id)
    employees = repository.load_employees()
    ids = [employee.id for employee in employees]
    # One day either side so overnight business days see their post-midnight entries.
    entries = repository.load_entries(
        start - datetime.timedelta(days=1), end + datetime.timedelta(days=1), include_cancelled=False
    )
    leaves = repository.load_leaves(start, end, ids) if ids else []
    logger.info("Analysing coverage for %s..%s against template %s", start, end, template.id)
    return analyze_coverage(
        template,
        entries,
        leaves,
        start,
        end,
        options,
        departments={employee.id: employee.department for employee in employees},
    )
