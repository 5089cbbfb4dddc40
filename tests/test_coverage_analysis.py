from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from coverage_analysis import analyze_coverage, analyze_coverage_for_period, template_compliance  # noqa: E402
from database import (  # noqa: E402
    Base,
    DailyHoursRow,
    Employee,
    EmployeeBase,
    LeaveRequest,
    OperatingHoursTemplate,
    Schedule,
)
from domain import DailyHours, HourlySlot, LeaveSnapshot, OperatingTemplate, ScheduleEntry, Weekday  # noqa: E402

MONDAY = datetime.date(2024, 3, 4)
TUESDAY = MONDAY + datetime.timedelta(days=1)
SUNDAY = MONDAY + datetime.timedelta(days=6)


def _template() -> OperatingTemplate:
    days = {
        Weekday(day): DailyHours(weekday=Weekday(day), open_time="09:00", close_time="17:00", min_staff=1)
        for day in range(7)
    }
    days[Weekday.WEDNESDAY] = DailyHours(
        weekday=Weekday.WEDNESDAY,
        open_time="09:00",
        close_time="12:00",
        min_staff=1,
        slots=(HourlySlot(hour=10, required_staff=2, preferred_staff=3, priority="high"),),
    )
    days[Weekday.FRIDAY] = DailyHours(weekday=Weekday.FRIDAY, open_time="20:00", close_time="02:00", min_staff=1)
    return OperatingTemplate(id=7, name="Store", daily_hours=days)


def _entry(employee_id, date_, start="09:00", end="17:00", status="scheduled") -> ScheduleEntry:
    return ScheduleEntry(employee_id=employee_id, date=date_, start_time=start, end_time=end, status=status)


class AnalyzeCoverageTests(unittest.TestCase):
    def test_partial_day_is_critical(self) -> None:
        report = analyze_coverage(_template(), [_entry(1, MONDAY, "09:00", "13:00")], [], MONDAY, MONDAY)
        day = report["dailyAnalysis"][0]
        self.assertEqual(day["status"], "critical")
        self.assertEqual(day["metrics"]["totalShortfall"], 4)
        self.assertEqual([row["status"] for row in day["hourlyAnalysis"][:4]], ["optimal"] * 4)
        self.assertEqual(day["hourlyAnalysis"][4]["timeSlot"], "13:00-14:00")
        self.assertAlmostEqual(day["metrics"]["avgCoverageRate"], 0.5)

    def test_overstaffed_day_is_inefficient_and_rate_is_capped(self) -> None:
        entries = [_entry(index, TUESDAY) for index in (1, 2, 3)]
        report = analyze_coverage(_template(), entries, [], TUESDAY, TUESDAY)
        day = report["dailyAnalysis"][0]
        self.assertEqual(day["status"], "inefficient")
        self.assertEqual(day["metrics"]["totalOverstaffing"], 16)
        self.assertEqual(day["metrics"]["efficiency"], 0.0)
        for row in day["hourlyAnalysis"]:
            self.assertLessEqual(row["coverageRate"], 1.0)
            self.assertGreaterEqual(row["coverageRate"], 0.0)
        self.assertIn("efficiency_improvement", [item["type"] for item in report["recommendations"]])

    def test_slot_requirements_drive_hourly_rows(self) -> None:
        wednesday = MONDAY + datetime.timedelta(days=2)
        report = analyze_coverage(_template(), [_entry(1, wednesday, "09:00", "12:00")], [], wednesday, wednesday)
        hourly = report["dailyAnalysis"][0]["hourlyAnalysis"]
        self.assertEqual([row["hour"] for row in hourly], [9, 10, 11])
        self.assertEqual(hourly[1]["requiredStaff"], 2)
        self.assertEqual(hourly[1]["preferredStaff"], 3)
        self.assertEqual(hourly[1]["priority"], "high")
        self.assertEqual(hourly[1]["shortfall"], 1)
        self.assertEqual(hourly[1]["coverageRate"], 0.5)

    def test_overnight_day_wraps_hours(self) -> None:
        friday = MONDAY + datetime.timedelta(days=4)
        report = analyze_coverage(_template(), [_entry(1, friday, "22:00", "02:00")], [], friday, friday)
        hourly = report["dailyAnalysis"][0]["hourlyAnalysis"]
        self.assertEqual([row["hour"] for row in hourly], [20, 21, 22, 23, 0, 1])
        self.assertEqual([row["shortfall"] for row in hourly], [1, 1, 0, 0, 0, 0])

    def test_cancelled_entries_and_weekends(self) -> None:
        entries = [_entry(1, MONDAY, status="cancelled")]
        report = analyze_coverage(_template(), entries, [], MONDAY, SUNDAY, {"includeWeekends": False})
        self.assertEqual(len(report["dailyAnalysis"]), 5)
        self.assertEqual(report["dailyAnalysis"][0]["totalScheduled"], 0)
        self.assertFalse(report["parameters"]["includeWeekends"])
        self.assertEqual(report["overallStats"]["daysWithShortfall"], 5)
        self.assertIn("staffing_increase", [item["type"] for item in report["recommendations"]])

    def test_department_breakdown(self) -> None:
        entries = [_entry(1, MONDAY), _entry(2, MONDAY)]
        leaves = [LeaveSnapshot(employee_id=3, start=MONDAY, end=MONDAY)]
        report = analyze_coverage(
            _template(),
            entries,
            leaves,
            MONDAY,
            MONDAY,
            {"analyzeByDepartment": True},
            departments={1: "Front", 2: "Kitchen", 3: "Kitchen"},
        )
        rows = {row["department"]: row for row in report["dailyAnalysis"][0]["departmentAnalysis"]}
        self.assertEqual(rows["Front"]["scheduledStaff"], 1)
        self.assertEqual(rows["Kitchen"]["staffOnLeave"], 1)
        self.assertAlmostEqual(rows["Kitchen"]["utilizationRate"], 0.5)

    def test_closed_day_has_no_hours_and_bad_range_is_rejected(self) -> None:
        template = OperatingTemplate(id=1, name="Closed")
        report = analyze_coverage(template, [], [], MONDAY, MONDAY)
        self.assertEqual(report["dailyAnalysis"][0]["hourlyAnalysis"], [])
        self.assertIsNone(report["dailyAnalysis"][0]["templateUsed"])
        with self.assertRaises(ValueError):
            analyze_coverage(template, [], [], TUESDAY, MONDAY)

    def test_template_compliance_counts_heads_per_day(self) -> None:
        result = template_compliance([_entry(1, MONDAY)], _template(), MONDAY, TUESDAY)
        self.assertEqual([row["status"] for row in result["dailyCompliance"]], ["compliant", "understaffed"])
        self.assertEqual(result["issuesFound"][0]["date"], TUESDAY.isoformat())
        self.assertAlmostEqual(result["overallCoverageRate"], 0.5)


class CoverageForPeriodTests(unittest.TestCase):
    def setUp(self) -> None:
        self.schedule_engine = create_engine("sqlite:///:memory:", future=True)
        self.employee_engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(self.schedule_engine)
        EmployeeBase.metadata.create_all(self.employee_engine)
        self.session = sessionmaker(bind=self.schedule_engine, expire_on_commit=False, future=True)()
        self.employee_session = sessionmaker(bind=self.employee_engine, expire_on_commit=False, future=True)()

        template = OperatingHoursTemplate(name="Default", is_default=True)
        template.daily_hours = [
            DailyHoursRow(day_of_week=day, open_time="09:00", close_time="17:00", min_staff=1) for day in range(5)
        ]
        self.session.add(template)
        self.session.add(Schedule(employee_id=1, date=MONDAY, start_time="09:00", end_time="17:00"))
        self.session.commit()

        self.employee_session.add_all(
            [Employee(id=1, name="Avery", department="Front"), Employee(id=2, name="Blake", department="Front")]
        )
        self.employee_session.add(LeaveRequest(employee_id=2, start_date=MONDAY, end_date=MONDAY, status="approved"))
        self.employee_session.commit()

    def tearDown(self) -> None:
        self.session.close()
        self.employee_session.close()
        self.schedule_engine.dispose()
        self.employee_engine.dispose()

    def test_default_template_is_analysed(self) -> None:
        report = analyze_coverage_for_period(
            self.session,
            MONDAY,
            TUESDAY,
            options={"analyzeByDepartment": True},
            employee_session=self.employee_session,
        )
        self.assertEqual(report["template"]["name"], "Default")
        monday, tuesday = report["dailyAnalysis"]
        self.assertEqual(monday["status"], "good")
        self.assertEqual(monday["totalOnLeave"], 1)
        self.assertEqual(monday["departmentAnalysis"][0]["staffOnLeave"], 1)
        self.assertEqual(tuesday["status"], "critical")

    def test_missing_template_raises(self) -> None:
        with self.assertRaises(ValueError):
            analyze_coverage_for_period(self.session, MONDAY, TUESDAY, template_id=99, employee_session=self.employee_session)


if __name__ == "__main__":
    unittest.main()
