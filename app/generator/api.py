from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from database import EmployeeSessionLocal, record_audit_log, record_generation_log
from policy import load_active_policy, resolve_constraints, resolve_priorities, resolve_tuning
from repository import SqlScheduleRepository

from .engine import GENERATE_MODES, ScheduleGenerator
from .shifts import OPTIMIZATION_LEVELS

logger = logging.getLogger(__name__)


# Shortfalls and forced placements are recorded as warnings; the run still completes.
SOFT_CONFLICT_TYPES = ("insufficient_staff", "chemistry_conflict_forced", "no_eligible_employees")


def _entries_of_type(conflicts: Iterable[Dict[str, Any]], *types: str):
    return [conflict for conflict in conflicts if conflict.get("type") in types]


def generate_schedule(
    session_factory: Callable,
    template_id: Optional[int],
    start: datetime.date,
    end: datetime.date,
    actor: str = "system",
    *,
    employee_session_factory: Callable = EmployeeSessionLocal,
    constraints: Optional[Mapping[str, Any]] = None,
    priorities: Optional[Mapping[str, Any]] = None,
    optimization_level: Optional[str] = None,
    generate_mode: Optional[str] = None,
    department: Optional[str] = None,
    employee_ids: Optional[Iterable[int]] = None,
    override_settings: Optional[Mapping[str, Any]] = None,
    policy_session=None,
) -> Dict[str, Any]:
    """Load the snapshot, run the generator against the database and log the run."""
    if start is None or end is None:
        raise ValueError("start and end dates are required.")
    if start > end:
        raise ValueError("start date must be on or before end date.")

    with session_factory() as session, employee_session_factory() as employee_session:
        policy = load_active_policy(policy_session if policy_session is not None else session)
        level = (optimization_level or policy.get("optimization_level") or "standard").strip().lower()
        mode = (generate_mode or policy.get("generate_mode") or "replace").strip().lower()
        if level not in OPTIMIZATION_LEVELS:
            raise ValueError(f"Unknown optimization level '{level}'.")
        if mode not in GENERATE_MODES:
            raise ValueError(f"Unknown generate mode '{mode}'.")
        resolved_constraints = resolve_constraints(policy, constraints)
        resolved_priorities = resolve_priorities(policy, priorities)
        tuning = resolve_tuning(policy)

        repository = SqlScheduleRepository(
            session,
            employee_session,
            actor=actor or "system",
            default_min_level=tuning.default_min_skill_level,
        )
        snapshot = repository.load_snapshot(template_id, start, end, department=department, employee_ids=employee_ids)
        if not snapshot.employees:
            raise ValueError("No employees available for scheduling.")

        generator = ScheduleGenerator(
            snapshot,
            resolved_constraints,
            resolved_priorities,
            optimization_level=level,
            generate_mode=mode,
            tuning=tuning,
            repository=repository,
            override_settings=override_settings,
        )
        if mode == "replace":
            removed = repository.clear_entries(start, end, employee_ids=[employee.id for employee in snapshot.employees])
            logger.info("Replace mode removed %d existing entries.", removed)
        result = generator.generate(start, end)

        conflicts = result["conflicts"]
        errors = _entries_of_type(conflicts, "creation_error")
        summary = result["summary"]
        log = record_generation_log(
            session,
            {
                "template_id": snapshot.template.id,
                "generated_by": actor or "system",
                "period_start": start,
                "period_end": end,
                "total_schedules_created": summary["schedulesCreated"],
                "total_employees_affected": summary["employeesScheduled"],
                "parameters": {
                    "templateId": template_id,
                    "department": department,
                    "employeeIds": list(employee_ids or []),
                    "overrideSettings": dict(override_settings or {}),
                    "optimizationLevel": level,
                    "constraints": resolved_constraints.as_dict(),
                    "priorities": resolved_priorities.as_dict(),
                    "generateMode": mode,
                },
                "coverage_achieved": result["templateCompliance"]["overallCoverageRate"],
                "employee_satisfaction": result["employeeSatisfaction"],
                "constraint_violations": _entries_of_type(conflicts, "chemistry_conflict_forced"),
                "warnings": _entries_of_type(conflicts, *SOFT_CONFLICT_TYPES),
                "errors": errors,
                "status": "completed_with_errors" if errors else "completed",
                "notes": f"Generated using template {snapshot.template.name}. Optimization level: {level}.",
            },
        )
        record_audit_log(
            session,
            actor or "system",
            "schedule_generate",
            target_type="GenerationLog",
            target_id=log.id,
            payload={"schedules_created": summary["schedulesCreated"], "conflicts": len(conflicts)},
        )

    result["generationLogId"] = log.id
    result["template"] = {"id": snapshot.template.id, "name": snapshot.template.name}
    result["constraints"] = resolved_constraints.as_dict()
    result["priorities"] = resolved_priorities.as_dict()
    return result
