from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from domain import Ability, EmployeeSnapshot, Preference, SkillRequirement, Weekday  # noqa: E402
from generator.scoring import score_candidate, skill_match  # noqa: E402
from generator.shifts import ShiftSpec  # noqa: E402
from generator.stats import RunStatistics  # noqa: E402
from policy import SchedulingConstraints, SchedulingPriorities  # noqa: E402

MONDAY = datetime.date(2024, 3, 4)
TODAY = datetime.date(2024, 3, 1)
SHIFT = ShiftSpec(9 * 60, 17 * 60, 1)
ABILITY = Ability(work_skill=4, experience=4, customer_service=4, flexibility=3, team_chemistry=3)


def _score(employee, shift=SHIFT, constraints=None, stats=None, cohort=0.0, date_=MONDAY):
    return score_candidate(
        employee,
        date_,
        shift,
        SchedulingPriorities(),
        constraints or SchedulingConstraints(),
        stats or RunStatistics([employee.id]),
        cohort,
        TODAY,
    )


def test_higher_ability_scores_higher() -> None:
    strong = EmployeeSnapshot(id=1, ability=ABILITY)
    weak = EmployeeSnapshot(id=2, ability=Ability())
    assert _score(strong) > _score(weak)


def test_preferred_and_avoided_days_shift_the_score() -> None:
    base = EmployeeSnapshot(id=1, ability=ABILITY)
    likes = EmployeeSnapshot(id=1, ability=ABILITY, preference=Preference(prefer_days=frozenset({Weekday.MONDAY})))
    dislikes = EmployeeSnapshot(id=1, ability=ABILITY, preference=Preference(avoid_days=frozenset({Weekday.MONDAY})))
    assert _score(likes) - _score(base) == pytest.approx(3.0)
    assert _score(base) - _score(dislikes) == pytest.approx(1.5)

    ignored = SchedulingConstraints(respect_preferences=False)
    assert _score(likes, constraints=ignored) == pytest.approx(_score(base, constraints=ignored))


def test_preferred_hours_count_each_covered_hour() -> None:
    base = EmployeeSnapshot(id=1, ability=ABILITY)
    hours = EmployeeSnapshot(id=1, ability=ABILITY, preference=Preference(preferred_hours=frozenset({9, 10, 20})))
    assert _score(hours) - _score(base) == pytest.approx(1.2)


def test_fairness_bonus_is_clamped() -> None:
    employee = EmployeeSnapshot(id=1, ability=ABILITY)
    assert _score(employee, cohort=3) - _score(employee) == pytest.approx(6.0)
    assert _score(employee, cohort=20) - _score(employee) == pytest.approx(10.0)
    unfair = SchedulingConstraints(fair_distribution=False)
    assert _score(employee, constraints=unfair, cohort=20) == pytest.approx(_score(employee, constraints=unfair))


def test_seniority_is_capped() -> None:
    fresh = EmployeeSnapshot(id=1, ability=ABILITY)
    veteran = EmployeeSnapshot(id=1, ability=ABILITY, hire_date=datetime.date(1980, 1, 1))
    assert _score(veteran) - _score(fresh) == pytest.approx(5.0)


def test_priority_bonus_and_load_penalties() -> None:
    employee = EmployeeSnapshot(id=1, ability=ABILITY)
    critical = ShiftSpec(9 * 60, 17 * 60, 1, priority="critical")
    assert _score(employee, shift=critical) - _score(employee) == pytest.approx(5.0)

    stats = RunStatistics([1])
    stats.record_assignment(1, MONDAY - datetime.timedelta(days=1), SHIFT.interval, "regular")
    assert _score(employee, stats=stats) < _score(employee)


def test_score_never_goes_negative() -> None:
    employee = EmployeeSnapshot(id=1, preference=Preference(avoid_days=frozenset({Weekday.MONDAY})))
    stats = RunStatistics([1])
    for offset in range(1, 6):
        stats.record_assignment(1, MONDAY - datetime.timedelta(days=offset), SHIFT.interval, "regular")
    assert _score(employee, stats=stats) == 0.0


def test_skill_match_weights_named_subskills() -> None:
    requirement = SkillRequirement(work_skill=3, experience=5, customer_service=4)
    assert skill_match(ABILITY, requirement) == pytest.approx(0.7)
    assert skill_match(None, requirement) == 0.0
    assert skill_match(ABILITY, None) == 0.0
