from __future__ import annotations

import datetime
import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from database import (
    DailyHoursRow,
    Employee,
    OperatingHoursTemplate,
    Schedule,
    ScheduleDraft,
    create_schedule,
    delete_schedules,
    get_template,
    list_approved_leaves,
    list_chemistry,
    list_employees,
    list_schedules,
)
from domain import (
    Ability,
    ChemistryEdge,
    DailyHours,
    DraftItem,
    DraftSnapshot,
    EmployeeConstraints,
    EmployeeSnapshot,
    HourlySlot,
    LeaveSnapshot,
    OperatingTemplate,
    Preference,
    ScheduleEntry,
    ScheduleOverride,
    SchedulingSnapshot,
    SkillRequirement,
    Weekday,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DAYS = 14


class ScheduleRepository:
    """Storage seam for the generator; the engine only ever calls ``save_entry``."""

    def load_snapshot(
        self,
        template_id: Optional[int],
        start: datetime.date,
        end: datetime.date,
        *,
        department: Optional[str] = None,
        employee_ids: Optional[Iterable[int]] = None,
        history_days: int = DEFAULT_HISTORY_DAYS,
    ) -> SchedulingSnapshot:
        raise NotImplementedError

    def clear_entries(self, start: datetime.date, end: datetime.date, *, employee_ids: Optional[Iterable[int]] = None) -> int:
        raise NotImplementedError

    def save_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        raise NotImplementedError


class InMemoryScheduleRepository(ScheduleRepository):
    """Keeps saved entries in a list; handy for previews and tests."""

    def __init__(self, snapshot: Optional[SchedulingSnapshot] = None) -> None:
        self.snapshot = snapshot
        self.saved: List[ScheduleEntry] = []

    def load_snapshot(self, template_id, start, end, *, department=None, employee_ids=None, history_days=DEFAULT_HISTORY_DAYS):
        if self.snapshot is None:
            raise ValueError("No snapshot loaded.")
        return self.snapshot

    def clear_entries(self, start, end, *, employee_ids=None) -> int:
        ids = {int(value) for value in (employee_ids or [])}
        kept = [
            entry
            for entry in self.saved
            if not (start <= entry.date <= end and (not ids or entry.employee_id in ids))
        ]
        removed = len(self.saved) - len(kept)
        self.saved = kept
        return removed

    def save_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        stored = replace(entry, id=len(self.saved) + 1)
        self.saved.append(stored)
        return stored


def template_from_row(row: OperatingHoursTemplate, *, default_min_level: float = 3.0) -> OperatingTemplate:
    daily: dict = {}
    for day in row.daily_hours:
        daily[Weekday(day.day_of_week)] = daily_hours_from_row(day, default_min_level=default_min_level)
    overrides = {}
    for override in row.overrides:
        overrides[override.override_date] = ScheduleOverride(
            date=override.override_date,
            override_type=override.override_type,
            custom_hours=override.custom_hours_dict(),
            reason=override.reason or "",
            is_active=bool(override.is_active),
        )
    return OperatingTemplate(
        id=row.id,
        name=row.name,
        daily_hours=daily,
        overrides=overrides,
        description=row.description or "",
    )


def daily_hours_from_row(row: DailyHoursRow, *, default_min_level: float = 3.0) -> DailyHours:
    slots = tuple(
        HourlySlot(
            hour=slot.hour_slot,
            required_staff=slot.required_staff,
            preferred_staff=slot.preferred_staff,
            priority=slot.priority or "normal",
            skill_requirement=SkillRequirement.from_mapping(
                slot.skill_requirement_dict(), default_level=default_min_level
            ),
        )
        for slot in sorted(row.time_slots, key=lambda item: item.hour_slot)
    )
    return DailyHours(
        weekday=Weekday(row.day_of_week),
        is_open=bool(row.is_open),
        open_time=row.open_time,
        close_time=row.close_time,
        break_start=row.break_start,
        break_end=row.break_end,
        min_staff=row.min_staff if row.min_staff is not None else 1,
        max_staff=row.max_staff,
        slots=slots,
        notes=row.notes or "",
    )


def employee_from_row(row: Employee) -> EmployeeSnapshot:
    ability = None
    if row.ability is not None:
        ability = Ability.from_mapping(
            {
                "work_skill": row.ability.work_skill,
                "experience": row.ability.experience,
                "customer_service": row.ability.customer_service,
                "flexibility": row.ability.flexibility,
                "team_chemistry": row.ability.team_chemistry,
            }
        )
    preference = None
    if row.preference is not None:
        preference = Preference(
            prefer_days=frozenset(Weekday(day) for day in row.preference.prefer_day_list if 0 <= day <= 6),
            avoid_days=frozenset(Weekday(day) for day in row.preference.avoid_day_list if 0 <= day <= 6),
            preferred_hours=frozenset(hour for hour in row.preference.preferred_hour_list if 0 <= hour <= 23),
        )
    constraints = None
    if row.constraint is not None:
        constraints = EmployeeConstraints(
            max_consecutive_days=row.constraint.max_consecutive_days,
            can_work_weekends=bool(row.constraint.can_work_weekends),
            can_work_night_shifts=bool(row.constraint.can_work_night_shifts),
            unavailable_hours=frozenset(row.constraint.unavailable_hour_list),
        )
    return EmployeeSnapshot(
        id=row.id,
        name=row.name,
        department=row.department or "",
        position=row.position or "",
        hire_date=row.hire_date,
        ability=ability,
        preference=preference,
        constraints=constraints,
    )


def entry_from_row(row: Schedule) -> ScheduleEntry:
    return ScheduleEntry(
        employee_id=row.employee_id,
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        shift_type=row.shift_type or "regular",
        priority=row.priority or "normal",
        break_time=row.break_time,
        status=row.status or "scheduled",
        is_auto_generated=bool(row.is_auto_generated),
        notes=row.notes or "",
        id=row.id,
    )


def draft_from_row(row: ScheduleDraft) -> DraftSnapshot:
    items = [
        DraftItem(
            employee_id=item.employee_id,
            date=item.date,
            start_time=item.start_time,
            end_time=item.end_time,
            shift_type=item.shift_type or "regular",
            priority=item.priority or "normal",
            break_time=item.break_time,
            status=item.status or "planned",
            notes=item.notes or "",
            updated_at=item.updated_at,
            id=item.id,
        )
        for item in row.items
    ]
    return DraftSnapshot(
        id=row.id,
        name=row.name,
        items=items,
        version=row.version or "1.0.0",
        status=row.status or "draft",
        period_start=row.period_start,
        period_end=row.period_end,
        metadata=row.metadata_dict(),
    )


class SqlScheduleRepository(ScheduleRepository):
    """Reads the snapshot from schedule.db/employees.db and writes committed entries."""

    def __init__(self, session, employee_session=None, *, actor: str = "system", default_min_level: float = 3.0) -> None:
        self.session = session
        self.employee_session = employee_session
        self.actor = actor
        self.default_min_level = default_min_level

    def load_template(self, template_id: Optional[int]) -> OperatingTemplate:
        row = get_template(self.session, template_id)
        if row is None:
            if template_id is None:
                raise ValueError("No default operating-hours template is configured.")
            raise ValueError(f"Operating-hours template {template_id} not found.")
        return template_from_row(row, default_min_level=self.default_min_level)

    def load_employees(
        self,
        *,
        department: Optional[str] = None,
        employee_ids: Optional[Iterable[int]] = None,
        only_active: bool = True,
    ) -> List[EmployeeSnapshot]:
        rows = list_employees(
            self.employee_session, only_active=only_active, department=department, employee_ids=employee_ids
        )
        return [employee_from_row(row) for row in rows]

    def load_leaves(self, start: datetime.date, end: datetime.date, employee_ids: Iterable[int]) -> List[LeaveSnapshot]:
        rows = list_approved_leaves(self.employee_session, start, end, employee_ids=employee_ids)
        return [
            LeaveSnapshot(employee_id=row.employee_id, start=row.start_date, end=row.end_date, status=row.status)
            for row in rows
        ]

    def load_chemistry(self, employee_ids: Iterable[int]) -> List[ChemistryEdge]:
        ids = set(employee_ids)
        edges = []
        for row in list_chemistry(self.employee_session, ids):
            if row.employee1_id in ids and row.employee2_id in ids:
                edges.append(ChemistryEdge.between(row.employee1_id, row.employee2_id, row.score))
        return edges

    def load_entries(
        self,
        start: datetime.date,
        end: datetime.date,
        *,
        include_cancelled: bool = True,
        employee_ids: Optional[Iterable[int]] = None,
    ) -> List[ScheduleEntry]:
        rows = list_schedules(self.session, start, end, include_cancelled=include_cancelled, employee_ids=employee_ids)
        return [entry_from_row(row) for row in rows]

    def load_snapshot(
        self,
        template_id: Optional[int],
        start: datetime.date,
        end: datetime.date,
        *,
        department: Optional[str] = None,
        employee_ids: Optional[Iterable[int]] = None,
        history_days: int = DEFAULT_HISTORY_DAYS,
    ) -> SchedulingSnapshot:
        template = self.load_template(template_id)
        employees = self.load_employees(department=department, employee_ids=employee_ids)
        ids = [employee.id for employee in employees]
        history_start = start - datetime.timedelta(days=max(0, int(history_days)))
        snapshot = SchedulingSnapshot(
            template=template,
            employees=employees,
            leaves=self.load_leaves(start, end, ids) if ids else [],
            chemistry=self.load_chemistry(ids) if ids else [],
            existing_entries=self.load_entries(history_start, end, employee_ids=ids) if ids else [],
        )
        logger.debug(
            "Loaded snapshot: template=%s employees=%d existing=%d",
            template.id,
            len(snapshot.employees),
            len(snapshot.existing_entries),
        )
        return snapshot

    def clear_entries(self, start: datetime.date, end: datetime.date, *, employee_ids: Optional[Iterable[int]] = None) -> int:
        return delete_schedules(self.session, start, end, employee_ids=employee_ids)

    def save_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        payload = {
            "date": entry.date,
            "employee_id": entry.employee_id,
            "start_time": entry.start_time,
            "end_time": entry.end_time,
            "shift_type": entry.shift_type,
            "priority": entry.priority,
            "break_time": entry.break_time,
            "status": entry.status,
            "is_auto_generated": entry.is_auto_generated,
            "notes": entry.notes,
            "created_by": self.actor,
        }
        try:
            row = create_schedule(self.session, payload)
        except Exception:
            self.session.rollback()
            raise
        return entry_from_row(row)
