from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional

from coverage_analysis import entries_for_business_day, template_compliance
from domain import ChemistryBook, EmployeeSnapshot, ScheduleEntry, SchedulingSnapshot
from operating_hours import EffectiveHours, resolve_effective_hours
from policy import EngineTuning, SchedulingConstraints, SchedulingPriorities
from repository import InMemoryScheduleRepository, ScheduleRepository

from .eligibility import ineligibility_reason
from .scoring import score_candidate
from .selection import ScoredCandidate, select_assignees
from .shifts import OPTIMIZATION_LEVELS, ShiftSpec, determine_shift_type, generate_shifts
from .stats import RunStatistics

logger = logging.getLogger(__name__)

GENERATE_MODES = ("replace", "append", "fill_gaps")


def _daterange(start: datetime.date, end: datetime.date) -> Iterable[datetime.date]:
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += datetime.timedelta(days=1)


class ScheduleGenerator:
    """Greedy day-by-day assignment over one immutable snapshot.

    A generator instance serves a single ``generate`` call at a time; the running
    statistics it builds are created at the start of the call and dropped at the end.
    """

    def __init__(
        self,
        snapshot: SchedulingSnapshot,
        constraints: Optional[SchedulingConstraints] = None,
        priorities: Optional[SchedulingPriorities] = None,
        *,
        optimization_level: str = "standard",
        generate_mode: str = "replace",
        tuning: Optional[EngineTuning] = None,
        repository: Optional[ScheduleRepository] = None,
        override_settings: Optional[Mapping[str, Any]] = None,
        today: Optional[datetime.date] = None,
    ) -> None:
        if optimization_level not in OPTIMIZATION_LEVELS:
            raise ValueError(f"Unknown optimization level '{optimization_level}'.")
        if generate_mode not in GENERATE_MODES:
            raise ValueError(f"Unknown generate mode '{generate_mode}'.")
        self.snapshot = snapshot
        self.constraints = constraints or SchedulingConstraints()
        self.priorities = priorities or SchedulingPriorities()
        self.optimization_level = optimization_level
        self.generate_mode = generate_mode
        self.tuning = tuning or EngineTuning()
        self.repository = repository or InMemoryScheduleRepository(snapshot)
        self.override_settings = dict(override_settings or {})
        self.today = today
        self.chemistry = ChemistryBook(
            snapshot.chemistry, conflict_threshold=self.tuning.chemistry_conflict_threshold
        )

    def _seed_entries(self, start: datetime.date) -> List[ScheduleEntry]:
        # Replace mode discards in-range entries; history before the range always counts.
        if self.generate_mode == "replace":
            return [entry for entry in self.snapshot.existing_entries if entry.date < start]
        return list(self.snapshot.existing_entries)

    def _day_already_covered(self, hours: EffectiveHours) -> bool:
        by_date: Dict[datetime.date, List[ScheduleEntry]] = defaultdict(list)
        for entry in self.snapshot.existing_entries:
            if entry.is_active:
                by_date[entry.date].append(entry)
        return len(entries_for_business_day(hours, by_date)) >= (hours.min_staff or 1)

    def _average_days(self, stats: RunStatistics) -> float:
        if self.tuning.fairness_mode == "fixed":
            return self.tuning.fixed_average_days
        return stats.cohort_average_days()

    def _candidates(
        self, date_: datetime.date, shift: ShiftSpec, stats: RunStatistics
    ) -> List[ScoredCandidate]:
        average_days = self._average_days(stats)
        scored: List[ScoredCandidate] = []
        for employee in self.snapshot.employees:
            reason = ineligibility_reason(
                employee,
                date_,
                shift,
                self.constraints,
                stats,
                leaves=self.snapshot.leaves,
                default_min_skill_level=self.tuning.default_min_skill_level,
            )
            if reason is not None:
                logger.debug("Employee %s ineligible on %s: %s", employee.id, date_, reason)
                continue
            score = score_candidate(
                employee,
                date_,
                shift,
                self.priorities,
                self.constraints,
                stats,
                average_days,
                self.today,
                monthly_hours_target=self.tuning.monthly_hours_target,
            )
            scored.append(ScoredCandidate(employee, score))
        return scored

    def _build_entry(
        self, employee: EmployeeSnapshot, date_: datetime.date, shift: ShiftSpec, hours: EffectiveHours, score: float
    ) -> ScheduleEntry:
        break_time = hours.break_window if self.constraints.enforce_breaks else None
        return ScheduleEntry(
            employee_id=employee.id,
            date=shift.work_date(date_),
            start_time=shift.start_time,
            end_time=shift.end_time,
            shift_type=determine_shift_type(shift.interval, shift.priority),
            priority=shift.priority,
            break_time=break_time,
            status="scheduled",
            is_auto_generated=True,
            notes=f"Auto-generated (score {score:.2f}, template {self.snapshot.template.name})",
        )

    def _fill_shift(
        self,
        date_: datetime.date,
        shift: ShiftSpec,
        hours: EffectiveHours,
        stats: RunStatistics,
        entries: List[ScheduleEntry],
        conflicts: List[Dict[str, Any]],
    ) -> None:
        if shift.required_staff <= 0:
            return
        work_date = shift.work_date(date_)
        context = {
            "date": work_date.isoformat(),
            "shift": {"startTime": shift.start_time, "endTime": shift.end_time, "requiredStaff": shift.required_staff},
        }
        if work_date != date_:
            context["businessDate"] = date_.isoformat()
        scored = self._candidates(date_, shift, stats)
        if not scored:
            logger.warning("No eligible employees for %s %s-%s.", work_date, shift.start_time, shift.end_time)
            conflicts.append(
                {
                    **context,
                    "type": "no_eligible_employees",
                    "severity": "high",
                    "required": shift.required_staff,
                    "message": f"No eligible employees for the {shift.start_time}-{shift.end_time} shift.",
                }
            )
            return

        selection = select_assignees(
            scored,
            shift.required_staff,
            self.chemistry,
            self.constraints.avoid_poor_chemistry,
            context=context,
        )
        for conflict in selection.conflicts:
            if conflict["type"] == "insufficient_staff":
                logger.warning(
                    "Shift %s %s-%s short by %s.", work_date, shift.start_time, shift.end_time, conflict["shortfall"]
                )
        conflicts.extend(selection.conflicts)

        for candidate in selection.selected:
            entry = self._build_entry(candidate.employee, date_, shift, hours, candidate.score)
            try:
                saved = self.repository.save_entry(entry)
            except Exception as exc:  # noqa: BLE001
                logger.error("Could not save entry for employee %s on %s: %s", entry.employee_id, work_date, exc)
                conflicts.append(
                    {
                        **context,
                        "type": "creation_error",
                        "severity": "high",
                        "employeeId": candidate.employee.id,
                        "employeeName": candidate.employee.name,
                        "error": str(exc),
                        "message": f"Failed to save the schedule entry: {exc}",
                    }
                )
                continue
            entries.append(saved)
            stats.record_assignment(candidate.employee.id, work_date, shift.interval, saved.shift_type)

    def generate(self, start: datetime.date, end: datetime.date) -> Dict[str, Any]:
        if start > end:
            raise ValueError("start date must be on or before end date.")
        if not self.snapshot.employees:
            raise ValueError("No employees available for scheduling.")
        logger.info(
            "Generating %s..%s for %d employees (level=%s, mode=%s).",
            start,
            end,
            len(self.snapshot.employees),
            self.optimization_level,
            self.generate_mode,
        )
        stats = RunStatistics(employee.id for employee in self.snapshot.employees)
        stats.seed_from_entries(self._seed_entries(start))
        entries: List[ScheduleEntry] = []
        conflicts: List[Dict[str, Any]] = []
        template = self.snapshot.template

        for date_ in _daterange(start, end):
            hours = resolve_effective_hours(template, date_, self.override_settings)
            if not hours.is_open:
                continue
            if self.generate_mode == "fill_gaps" and self._day_already_covered(hours):
                logger.debug("Skipping %s; existing entries already meet minimum staff.", date_)
                continue
            for shift in generate_shifts(hours, self.optimization_level):
                self._fill_shift(date_, shift, hours, stats, entries, conflicts)

        total_days = (end - start).days + 1
        summary = employee_summary(self.snapshot.employees, stats, total_days)
        compliance = template_compliance([*self._seed_entries(start), *entries], template, start, end)
        scheduled = [row for row in summary if row["scheduledDays"] > 0]
        result = {
            "entries": entries,
            "conflicts": conflicts,
            "employeeSummary": summary,
            "templateCompliance": compliance,
            "recommendations": generation_recommendations(conflicts, summary),
            "employeeSatisfaction": employee_satisfaction(summary, self.constraints),
            "summary": {
                "totalDays": total_days,
                "schedulesCreated": len(entries),
                "employeesInvolved": len(self.snapshot.employees),
                "employeesScheduled": len(scheduled),
                "conflictsFound": len(conflicts),
                "averageUtilization": (
                    sum(row["utilizationRate"] for row in summary) / len(summary) if summary else 0.0
                ),
                "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
                "generateMode": self.generate_mode,
                "optimizationLevel": self.optimization_level,
            },
        }
        logger.info("Generation finished: %d entries, %d conflicts.", len(entries), len(conflicts))
        return result


def employee_summary(
    employees: Iterable[EmployeeSnapshot], stats: RunStatistics, total_days: int
) -> List[Dict[str, Any]]:
    weeks = total_days / 7 if total_days else 1
    rows = []
    for employee in employees:
        employee_stats = stats.get(employee.id)
        rows.append(
            {
                "employeeId": employee.id,
                "name": employee.name,
                "department": employee.department,
                "position": employee.position,
                "scheduledDays": employee_stats.scheduled_days,
                "totalHours": employee_stats.total_hours,
                "averageHoursPerWeek": employee_stats.total_hours / weeks,
                "utilizationRate": employee_stats.scheduled_days / total_days if total_days else 0.0,
                "consecutiveDaysMax": employee_stats.max_consecutive,
                "shiftTypeDistribution": dict(employee_stats.shift_type_distribution),
            }
        )
    return rows


def employee_satisfaction(summary: List[Dict[str, Any]], constraints: SchedulingConstraints) -> float:
    if not summary:
        return 0.0
    total = 0.0
    for row in summary:
        satisfaction = 0.8
        utilization = row["utilizationRate"]
        if 0.3 < utilization < 0.8:
            satisfaction += 0.1
        elif utilization > 0.8:
            satisfaction -= 0.2
        if constraints.max_consecutive_days and row["consecutiveDaysMax"] > constraints.max_consecutive_days * 0.8:
            satisfaction -= 0.1
        total += max(0.0, min(1.0, satisfaction))
    return total / len(summary)


def generation_recommendations(
    conflicts: List[Dict[str, Any]], summary: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    recommendations: List[Dict[str, Any]] = []
    counts: Dict[str, int] = defaultdict(int)
    for conflict in conflicts:
        counts[conflict["type"]] += 1
    if counts["insufficient_staff"]:
        recommendations.append(
            {
                "type": "staffing",
                "priority": "high",
                "title": "Resolve understaffed shifts",
                "message": (
                    f"{counts['insufficient_staff']} shift(s) could not be fully staffed. "
                    "Consider hiring or adjusting hours."
                ),
                "impact": "high",
                "effort": "high",
            }
        )
    overworked = [row for row in summary if row["utilizationRate"] > 0.8]
    if overworked:
        recommendations.append(
            {
                "type": "workload_balance",
                "priority": "medium",
                "title": "Rebalance workload",
                "message": f"{len(overworked)} employee(s) carry a heavy workload. Consider redistributing shifts.",
                "affectedEmployees": [row["name"] for row in overworked],
                "impact": "medium",
                "effort": "medium",
            }
        )
    low = [row for row in summary if row["utilizationRate"] < 0.3]
    if summary and len(low) > len(summary) * 0.3:
        recommendations.append(
            {
                "type": "template_optimization",
                "priority": "medium",
                "title": "Review template staffing",
                "message": "Many employees have low utilisation. Review the template's staffing requirements.",
                "impact": "medium",
                "effort": "low",
            }
        )
    return recommendations
