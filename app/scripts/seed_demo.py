from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    DailyHoursRow,
    Employee,
    EmployeeAbility,
    EmployeeConstraint,
    EmployeePreference,
    EmployeeSessionLocal,
    HourlySlotRow,
    OperatingHoursTemplate,
    SessionLocal,
    init_database,
    upsert_chemistry,
)
from policy import ensure_default_policy  # noqa: E402


DAY_INDEX = {
    "Mon": 0,
    "Tue": 1,
    "Wed": 2,
    "Thu": 3,
    "Fri": 4,
    "Sat": 5,
    "Sun": 6,
}

DEMO_TEMPLATE_NAME = "Standard Week"

SAMPLE_EMPLOYEES: List[Dict] = [
    # Front of house
    {
        "name": "Alex Nguyen",
        "department": "Front",
        "position": "Shift Lead",
        "hire_date": "2019-04-01",
        "ability": (5, 5, 4, 3, 4),
        "prefer_days": ["Mon", "Tue"],
        "preferred_hours": [9, 10, 11],
    },
    {
        "name": "Maya Thompson",
        "department": "Front",
        "position": "Cashier",
        "hire_date": "2021-08-15",
        "ability": (3, 3, 5, 4, 4),
        "avoid_days": ["Sat"],
    },
    {
        "name": "Jordan Ellis",
        "department": "Front",
        "position": "Cashier",
        "hire_date": "2023-02-01",
        "ability": (3, 2, 4, 5, 3),
        "can_work_weekends": True,
        "max_consecutive_days": 4,
    },
    {
        "name": "Sofia Ramirez",
        "department": "Front",
        "position": "Host",
        "hire_date": "2022-05-10",
        "ability": (4, 3, 5, 3, 5),
        "can_work_weekends": False,
    },
    # Kitchen
    {
        "name": "Maria Lopez",
        "department": "Kitchen",
        "position": "Cook",
        "hire_date": "2018-11-05",
        "ability": (5, 5, 2, 3, 3),
        "prefer_days": ["Thu", "Fri"],
    },
    {
        "name": "Peter Zhang",
        "department": "Kitchen",
        "position": "Prep",
        "hire_date": "2024-01-08",
        "ability": (3, 2, 2, 4, 4),
        "unavailable_hours": [6, 7],
        "can_work_night_shifts": False,
    },
    {
        "name": "Nina Alvarez",
        "department": "Kitchen",
        "position": "Cook",
        "hire_date": "2020-09-21",
        "ability": (4, 4, 3, 4, 2),
        "preferred_hours": [12, 13, 14, 15],
    },
]

# Pairs by name that should not be scheduled together when avoidable.
SAMPLE_CHEMISTRY = [
    ("Alex Nguyen", "Jordan Ellis", 2, "Disagree on closing duties"),
    ("Maria Lopez", "Nina Alvarez", 5, "Strong line pairing"),
]


def _days(labels: List[str]) -> List[int]:
    return [DAY_INDEX[label] for label in labels if label in DAY_INDEX]


def _apply_profile(employee: Employee, entry: Dict) -> None:
    employee.department = entry.get("department", "")
    employee.position = entry.get("position", "")
    employee.status = entry.get("status", "active")
    hire_date = entry.get("hire_date")
    employee.hire_date = datetime.date.fromisoformat(hire_date) if hire_date else None

    work_skill, experience, customer_service, flexibility, team_chemistry = entry.get("ability", (1, 1, 1, 1, 1))
    if employee.ability is None:
        employee.ability = EmployeeAbility()
    employee.ability.work_skill = work_skill
    employee.ability.experience = experience
    employee.ability.customer_service = customer_service
    employee.ability.flexibility = flexibility
    employee.ability.team_chemistry = team_chemistry

    if employee.preference is None:
        employee.preference = EmployeePreference()
    employee.preference.prefer_day_list = _days(entry.get("prefer_days", []))
    employee.preference.avoid_day_list = _days(entry.get("avoid_days", []))
    employee.preference.preferred_hour_list = entry.get("preferred_hours", [])

    if employee.constraint is None:
        employee.constraint = EmployeeConstraint()
    employee.constraint.max_consecutive_days = entry.get("max_consecutive_days")
    employee.constraint.can_work_weekends = entry.get("can_work_weekends", True)
    employee.constraint.can_work_night_shifts = entry.get("can_work_night_shifts", True)
    employee.constraint.unavailable_hour_list = entry.get("unavailable_hours", [])


def build_demo_template() -> OperatingHoursTemplate:
    template = OperatingHoursTemplate(
        name=DEMO_TEMPLATE_NAME,
        description="Weekday 09:00-18:00 with a lunch rush, short Saturdays, closed Sundays.",
        is_default=True,
    )
    rows: List[DailyHoursRow] = []
    for day in range(5):
        row = DailyHoursRow(
            day_of_week=day,
            open_time="09:00",
            close_time="18:00",
            break_start="13:00",
            break_end="13:30",
            min_staff=2,
            max_staff=4,
        )
        row.time_slots = [
            HourlySlotRow(hour_slot=hour, required_staff=3, preferred_staff=4, priority="high")
            for hour in (11, 12, 13)
        ]
        rows.append(row)
    rows.append(DailyHoursRow(day_of_week=5, open_time="10:00", close_time="16:00", min_staff=2))
    rows.append(DailyHoursRow(day_of_week=6, is_open=False))
    template.daily_hours = rows
    return template


def seed_demo_data(session, employee_session) -> Dict[str, int]:
    """Create or refresh the demo staff, chemistry pairs and default template.

    Employees are matched by name so running the seed twice refreshes profiles
    instead of duplicating them.
    """
    created = 0
    refreshed = 0
    by_name: Dict[str, Employee] = {}
    for entry in SAMPLE_EMPLOYEES:
        employee = employee_session.scalars(select(Employee).where(Employee.name == entry["name"])).first()
        if employee is None:
            employee = Employee(name=entry["name"])
            employee_session.add(employee)
            created += 1
        else:
            refreshed += 1
        _apply_profile(employee, entry)
        by_name[entry["name"]] = employee
    employee_session.commit()

    pairs = 0
    for first, second, score, notes in SAMPLE_CHEMISTRY:
        if first in by_name and second in by_name:
            upsert_chemistry(employee_session, by_name[first].id, by_name[second].id, score, notes=notes)
            pairs += 1

    templates = 0
    existing = session.scalars(
        select(OperatingHoursTemplate).where(OperatingHoursTemplate.name == DEMO_TEMPLATE_NAME)
    ).first()
    if existing is None:
        session.add(build_demo_template())
        session.commit()
        templates = 1

    return {"created": created, "refreshed": refreshed, "chemistryPairs": pairs, "templatesCreated": templates}


def main() -> None:
    init_database()
    ensure_default_policy(SessionLocal)
    with SessionLocal() as session, EmployeeSessionLocal() as employee_session:
        counts = seed_demo_data(session, employee_session)
    print(
        f"Seed complete. Created {counts['created']} employees, refreshed {counts['refreshed']} profiles, "
        f"recorded {counts['chemistryPairs']} chemistry pairs."
    )
    if counts["templatesCreated"]:
        print(f"[seed] Added operating hours template '{DEMO_TEMPLATE_NAME}'.")


if __name__ == "__main__":
    main()
