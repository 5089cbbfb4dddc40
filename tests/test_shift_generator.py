from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from domain import HourlySlot  # noqa: E402
from generator.shifts import determine_shift_type, generate_shifts  # noqa: E402
from intervals import ShiftInterval  # noqa: E402
from operating_hours import EffectiveHours  # noqa: E402

DAY = datetime.date(2024, 3, 4)


def _hours(open_time="09:00", close_time="18:00", min_staff=2, slots=()) -> EffectiveHours:
    return EffectiveHours(
        date=DAY,
        is_open=True,
        open_time=open_time,
        close_time=close_time,
        min_staff=min_staff,
        slots=tuple(slots),
    )


def _windows(shifts):
    return [(shift.start_time, shift.end_time, shift.required_staff) for shift in shifts]


def test_basic_is_one_shift_across_the_day() -> None:
    assert _windows(generate_shifts(_hours(), "basic")) == [("09:00", "18:00", 2)]


def test_standard_without_slots_splits_at_midpoint() -> None:
    shifts = generate_shifts(_hours(), "standard")
    assert _windows(shifts) == [("09:00", "13:00", 2), ("13:00", "18:00", 2)]


def test_standard_split_uses_sixty_percent_for_the_first_half() -> None:
    shifts = generate_shifts(_hours(min_staff=5), "standard")
    assert [shift.required_staff for shift in shifts] == [3, 5]


def test_standard_with_slots_merges_matching_runs() -> None:
    slots = [
        HourlySlot(hour=9, required_staff=2),
        HourlySlot(hour=10, required_staff=2),
        HourlySlot(hour=11, required_staff=3, priority="high"),
        HourlySlot(hour=13, required_staff=3, priority="high"),
    ]
    shifts = generate_shifts(_hours(slots=slots), "standard")
    assert _windows(shifts) == [("09:00", "11:00", 2), ("11:00", "12:00", 3), ("13:00", "14:00", 3)]
    assert [shift.priority for shift in shifts] == ["normal", "high", "high"]


def test_advanced_with_slots_seeds_priority_lengths() -> None:
    slots = [
        HourlySlot(hour=9, required_staff=2, priority="critical"),
        HourlySlot(hour=10, required_staff=1),
        HourlySlot(hour=15, required_staff=1, priority="low"),
    ]
    shifts = generate_shifts(_hours(slots=slots), "advanced")
    assert _windows(shifts) == [("09:00", "15:00", 2), ("15:00", "18:00", 1)]


def test_advanced_without_slots_rolls_overlapping_windows() -> None:
    shifts = generate_shifts(_hours(), "advanced")
    assert _windows(shifts) == [
        ("09:00", "13:30", 2),
        ("11:00", "15:30", 2),
        ("13:00", "17:30", 2),
        ("15:00", "18:00", 2),
    ]


def test_overnight_day_renders_clock_times_modulo_24() -> None:
    shifts = generate_shifts(_hours(open_time="18:00", close_time="02:00", min_staff=1), "standard")
    assert _windows(shifts) == [("18:00", "22:00", 1), ("22:00", "02:00", 1)]
    assert shifts[1].interval.is_overnight
    assert shifts[1].hours == 4


def test_closed_day_yields_nothing_and_unknown_level_is_rejected() -> None:
    closed = EffectiveHours(date=DAY, is_open=False)
    assert generate_shifts(closed, "standard") == []
    with pytest.raises(ValueError):
        generate_shifts(_hours(), "extreme")


@pytest.mark.parametrize(
    "start,end,priority,expected",
    [
        ("22:00", "06:00", "normal", "night"),
        ("00:00", "05:00", "normal", "night"),
        ("06:00", "14:00", "normal", "early"),
        ("12:00", "21:00", "normal", "late"),
        ("10:00", "15:00", "critical", "peak"),
        ("10:00", "15:00", "normal", "regular"),
    ],
)
def test_determine_shift_type(start, end, priority, expected) -> None:
    assert determine_shift_type(ShiftInterval.from_labels(start, end), priority) == expected
