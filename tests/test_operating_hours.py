from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from domain import DailyHours, HourlySlot, OperatingTemplate, ScheduleOverride, Weekday  # noqa: E402
from operating_hours import (  # noqa: E402
    resolve_effective_hours,
    template_summary,
    validate_daily_hours,
    validate_template_consistency,
)

MONDAY = datetime.date(2024, 3, 4)


def _template() -> OperatingTemplate:
    weekdays = {
        Weekday(day): DailyHours(
            weekday=Weekday(day),
            open_time="09:00",
            close_time="18:00",
            break_start="12:00",
            break_end="13:00",
            min_staff=2,
            slots=(HourlySlot(hour=9, required_staff=2), HourlySlot(hour=10, required_staff=3, priority="high")),
        )
        for day in range(5)
    }
    weekdays[Weekday.SATURDAY] = DailyHours(weekday=Weekday.SATURDAY, open_time="10:00", close_time="14:00", min_staff=1)
    weekdays[Weekday.SUNDAY] = DailyHours(weekday=Weekday.SUNDAY, is_open=False)
    return OperatingTemplate(id=1, name="Main", daily_hours=weekdays)


class ResolveEffectiveHoursTests(unittest.TestCase):
    def test_weekday_hours_are_used_without_override(self) -> None:
        hours = resolve_effective_hours(_template(), MONDAY)
        self.assertTrue(hours.is_open)
        self.assertEqual(hours.open_time, "09:00")
        self.assertEqual(hours.close_hour, 18)
        self.assertEqual(hours.break_window, "12:00-13:00")
        self.assertEqual([slot.hour for slot in hours.slots], [9, 10])
        self.assertFalse(hours.is_override)

    def test_closed_day_and_missing_template(self) -> None:
        self.assertFalse(resolve_effective_hours(_template(), MONDAY + datetime.timedelta(days=6)).is_open)
        closed = resolve_effective_hours(None, MONDAY)
        self.assertFalse(closed.is_open)
        self.assertEqual(closed.slots, ())

    def test_closed_override_wins(self) -> None:
        template = _template()
        template.overrides[MONDAY] = ScheduleOverride(date=MONDAY, override_type="closed", reason="Holiday")
        hours = resolve_effective_hours(template, MONDAY)
        self.assertFalse(hours.is_open)
        self.assertEqual(hours.reason, "Holiday")

    def test_inactive_override_is_ignored(self) -> None:
        template = _template()
        template.overrides[MONDAY] = ScheduleOverride(date=MONDAY, override_type="closed", is_active=False)
        self.assertTrue(resolve_effective_hours(template, MONDAY).is_open)

    def test_custom_hours_override_replaces_the_day(self) -> None:
        template = _template()
        template.overrides[MONDAY] = ScheduleOverride(
            date=MONDAY,
            override_type="special_hours",
            custom_hours={"openTime": "12:00", "closeTime": "20:00", "minStaff": 4},
            reason="Event",
        )
        hours = resolve_effective_hours(template, MONDAY, {"openTime": "07:00"})
        self.assertTrue(hours.is_override)
        self.assertEqual(hours.open_time, "12:00")
        self.assertEqual(hours.min_staff, 4)
        self.assertEqual(hours.slots, ())

    def test_caller_fields_win_per_field(self) -> None:
        hours = resolve_effective_hours(_template(), MONDAY, {"closeTime": "20:00", "minStaff": 5, "openTime": ""})
        self.assertEqual(hours.open_time, "09:00")
        self.assertEqual(hours.close_time, "20:00")
        self.assertEqual(hours.min_staff, 5)

    def test_overnight_close_hour_is_on_extended_axis(self) -> None:
        template = OperatingTemplate(
            id=2,
            name="Late",
            daily_hours={Weekday.MONDAY: DailyHours(weekday=Weekday.MONDAY, open_time="18:00", close_time="02:00")},
        )
        hours = resolve_effective_hours(template, MONDAY)
        self.assertEqual(hours.open_hour, 18)
        self.assertEqual(hours.close_hour, 26)


class TemplateValidationTests(unittest.TestCase):
    def test_valid_payload_passes(self) -> None:
        result = validate_daily_hours(
            [
                {
                    "dayOfWeek": 0,
                    "openTime": "09:00",
                    "closeTime": "18:00",
                    "breakStart": "12:00",
                    "breakEnd": "13:00",
                    "minStaff": 2,
                    "maxStaff": 4,
                    "timeSlots": [{"hourSlot": 9, "requiredStaff": 2, "preferredStaff": 3, "priority": "high"}],
                }
            ]
        )
        self.assertTrue(result["valid"], result["errors"])

    def test_errors_are_collected(self) -> None:
        result = validate_daily_hours(
            [
                {"dayOfWeek": 0, "openTime": "9am", "closeTime": "18:00", "minStaff": 5, "maxStaff": 2},
                {
                    "dayOfWeek": 0,
                    "openTime": "09:00",
                    "closeTime": "18:00",
                    "breakStart": "08:00",
                    "breakEnd": "09:30",
                    "timeSlots": [
                        {"hourSlot": 20, "requiredStaff": 2},
                        {"hourSlot": 10, "requiredStaff": 3, "preferredStaff": 1, "priority": "urgent"},
                    ],
                },
            ]
        )
        self.assertFalse(result["valid"])
        joined = " ".join(result["errors"])
        self.assertIn("invalid open time", joined)
        self.assertIn("minimum staff cannot be greater", joined)
        self.assertIn("duplicate day of week", joined)
        self.assertIn("within operating hours", joined)
        self.assertIn("outside operating hours", joined)
        self.assertIn("preferred staff cannot be less", joined)
        self.assertIn("priority must be", joined)

    def test_overnight_slots_are_inside_hours(self) -> None:
        result = validate_daily_hours(
            [{"dayOfWeek": 4, "openTime": "18:00", "closeTime": "02:00", "timeSlots": [{"hourSlot": 1, "requiredStaff": 1}]}]
        )
        self.assertTrue(result["valid"], result["errors"])

    def test_non_list_payload_is_rejected(self) -> None:
        self.assertFalse(validate_daily_hours({"dayOfWeek": 0})["valid"])

    def test_consistency_warnings(self) -> None:
        template = _template()
        report = validate_template_consistency(template)
        self.assertTrue(report["valid"])
        self.assertTrue(any("both time slots and basic staffing" in warning for warning in report["warnings"]))

        weekend_only = OperatingTemplate(
            id=3,
            name="Weekend",
            daily_hours={Weekday.SATURDAY: DailyHours(weekday=Weekday.SATURDAY, open_time="10:00", close_time="11:00")},
        )
        warnings = validate_template_consistency(weekend_only)["warnings"]
        self.assertTrue(any("weekends" in warning for warning in warnings))
        self.assertTrue(any("very short" in warning for warning in warnings))

    def test_summary_counts_open_days(self) -> None:
        summary = template_summary(_template())
        self.assertEqual(summary["templateName"], "Main")
        self.assertEqual(summary["openDays"], 6)
        self.assertAlmostEqual(summary["totalWeeklyHours"], 5 * 9 + 4)


if __name__ == "__main__":
    unittest.main()
