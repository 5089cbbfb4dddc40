from __future__ import annotations

import datetime
import json
import sys
import unittest
from pathlib import Path
from unittest import mock

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    AuditLog,
    Base,
    DailyHoursRow,
    Employee,
    EmployeeAbility,
    EmployeeBase,
    GenerationLog,
    OperatingHoursTemplate,
    PolicyBase,
    Schedule,
    upsert_policy,
)
import database as db  # noqa: E402
from generator.api import generate_schedule  # noqa: E402
from policy import build_default_policy  # noqa: E402

MONDAY = datetime.date(2024, 3, 4)
FRIDAY = MONDAY + datetime.timedelta(days=4)


class GenerateScheduleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.schedule_engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(self.schedule_engine)
        self.employee_engine = create_engine("sqlite:///:memory:", future=True)
        EmployeeBase.metadata.create_all(self.employee_engine)
        self.session_factory = sessionmaker(bind=self.schedule_engine, expire_on_commit=False, future=True)
        self.employee_session_factory = sessionmaker(bind=self.employee_engine, expire_on_commit=False, future=True)
        # Use the schedule engine for policies in tests to simplify table setup.
        db.policy_engine = self.schedule_engine
        db.PolicySessionLocal = self.session_factory
        PolicyBase.metadata.create_all(db.policy_engine)

        with self.session_factory() as session:
            upsert_policy(session, "Baseline", build_default_policy(), edited_by="tests")
            template = OperatingHoursTemplate(name="Weekdays", is_default=True)
            template.daily_hours = [
                DailyHoursRow(
                    day_of_week=day,
                    open_time="09:00",
                    close_time="17:00",
                    break_start="12:00",
                    break_end="13:00",
                    min_staff=2,
                )
                for day in range(5)
            ]
            session.add(template)
            session.commit()
            self.template_id = template.id

        with self.employee_session_factory() as employee_session:
            for index, department in ((1, "Front"), (2, "Front"), (3, "Front"), (4, "Kitchen")):
                employee = Employee(id=index, name=f"Employee {index}", department=department)
                employee.ability = EmployeeAbility(work_skill=4, experience=3, customer_service=4)
                employee_session.add(employee)
            employee_session.add(Employee(id=5, name="Former", department="Front", status="inactive"))
            employee_session.commit()

    def tearDown(self) -> None:
        self.schedule_engine.dispose()
        self.employee_engine.dispose()

    def _generate(self, **kwargs):
        kwargs.setdefault("employee_session_factory", self.employee_session_factory)
        kwargs.setdefault("optimization_level", "basic")
        return generate_schedule(self.session_factory, self.template_id, MONDAY, FRIDAY, "manager", **kwargs)

    def _schedules(self):
        with self.session_factory() as session:
            return session.scalars(select(Schedule).order_by(Schedule.date, Schedule.employee_id)).all()

    def test_generates_persists_and_logs(self) -> None:
        result = self._generate(department="Front")

        self.assertEqual(result["summary"]["schedulesCreated"], 10)
        self.assertEqual(result["conflicts"], [])
        self.assertEqual(result["template"]["name"], "Weekdays")
        self.assertEqual(result["constraints"]["maxWeeklyHours"], 45.0)
        rows = self._schedules()
        self.assertEqual(len(rows), 10)
        self.assertTrue({row.employee_id for row in rows} <= {1, 2, 3})
        self.assertTrue(all(row.created_by == "manager" and row.is_auto_generated for row in rows))

        with self.session_factory() as session:
            log = session.get(GenerationLog, result["generationLogId"])
            self.assertEqual(log.status, "completed")
            self.assertEqual(log.total_schedules_created, 10)
            self.assertEqual(log.coverage_achieved, 1.0)
            self.assertEqual(json.loads(log.parametersJSON)["optimizationLevel"], "basic")
            audit = session.scalars(select(AuditLog).where(AuditLog.action == "schedule_generate")).one()
            self.assertEqual(audit.target_id, log.id)

    def test_replace_mode_clears_the_period_first(self) -> None:
        self._generate(department="Front")
        self._generate(department="Front")
        self.assertEqual(len(self._schedules()), 10)

    def test_append_mode_keeps_existing_entries(self) -> None:
        with self.session_factory() as session:
            session.add(Schedule(employee_id=4, date=MONDAY, start_time="09:00", end_time="17:00"))
            session.commit()
        result = self._generate(generate_mode="append")
        self.assertTrue(all(not (entry.employee_id == 4 and entry.date == MONDAY) for entry in result["entries"]))
        self.assertEqual(len(self._schedules()), result["summary"]["schedulesCreated"] + 1)

    def test_persistence_failures_mark_the_log(self) -> None:
        with mock.patch("repository.create_schedule", side_effect=RuntimeError("database is locked")):
            result = self._generate(employee_ids=[1, 2])

        self.assertEqual(result["entries"], [])
        self.assertTrue(all(conflict["type"] == "creation_error" for conflict in result["conflicts"]))
        with self.session_factory() as session:
            log = session.get(GenerationLog, result["generationLogId"])
            self.assertEqual(log.status, "completed_with_errors")
            self.assertEqual(len(json.loads(log.errorsJSON)), len(result["conflicts"]))

    def test_shortfalls_are_logged_as_warnings(self) -> None:
        result = self._generate(employee_ids=[1])

        self.assertEqual(result["summary"]["schedulesCreated"], 5)
        self.assertEqual({conflict["type"] for conflict in result["conflicts"]}, {"insufficient_staff"})
        with self.session_factory() as session:
            log = session.get(GenerationLog, result["generationLogId"])
            self.assertEqual(log.status, "completed")
            warnings = json.loads(log.warningsJSON)
            self.assertEqual(len(warnings), len(result["conflicts"]))
            self.assertEqual(warnings[0]["type"], "insufficient_staff")
            self.assertEqual(json.loads(log.errorsJSON), [])

    def test_invalid_requests(self) -> None:
        with self.assertRaises(ValueError):
            generate_schedule(self.session_factory, self.template_id, FRIDAY, MONDAY)
        with self.assertRaises(ValueError):
            self._generate(optimization_level="maximum")
        with self.assertRaises(ValueError):
            self._generate(department="Nobody")
        with self.assertRaises(ValueError):
            generate_schedule(
                self.session_factory,
                999,
                MONDAY,
                FRIDAY,
                employee_session_factory=self.employee_session_factory,
            )


if __name__ == "__main__":
    unittest.main()
