from __future__ import annotations

import copy
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from database import get_active_policy, upsert_policy

FAIRNESS_MODES = {"cohort", "fixed"}

DEFAULT_CONSTRAINTS: Dict[str, Any] = {
    "maxConsecutiveDays": 6,
    "minRestHours": 10,
    "maxWeeklyHours": 45,
    "respectPreferences": True,
    "avoidPoorChemistry": True,
    "fairDistribution": True,
    "enforceBreaks": True,
}

DEFAULT_PRIORITIES: Dict[str, float] = {
    "seniorityWeight": 0.2,
    "abilityWeight": 0.4,
    "preferenceWeight": 0.3,
    "availabilityWeight": 0.1,
}

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Baseline Staffing",
    "description": "Seeded policy used by the generator, conflict checks and coverage analysis.",
    "constraints": DEFAULT_CONSTRAINTS,
    "priorities": DEFAULT_PRIORITIES,
    "fairness": {
        # "cohort" averages scheduled days over the employees in the run; "fixed" uses fixed_average_days.
        "mode": "cohort",
        "fixed_average_days": 5,
    },
    "utilization": {
        "monthly_hours_target": 160,
    },
    "skills": {
        "default_min_level": 3,
    },
    "chemistry": {
        "conflict_threshold": 2,
    },
    "optimization_level": "standard",
    "generate_mode": "replace",
}


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(frozen=True)
class SchedulingConstraints:
    max_consecutive_days: int = 6
    min_rest_hours: float = 10.0
    max_weekly_hours: float = 45.0
    respect_preferences: bool = True
    avoid_poor_chemistry: bool = True
    fair_distribution: bool = True
    enforce_breaks: bool = True

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "SchedulingConstraints":
        merged = _deep_update(DEFAULT_CONSTRAINTS, dict(payload or {}))
        return cls(
            max_consecutive_days=max(0, _to_int(merged.get("maxConsecutiveDays"), 6)),
            min_rest_hours=max(0.0, _to_float(merged.get("minRestHours"), 10.0)),
            max_weekly_hours=max(0.0, _to_float(merged.get("maxWeeklyHours"), 45.0)),
            respect_preferences=_to_bool(merged.get("respectPreferences"), True),
            avoid_poor_chemistry=_to_bool(merged.get("avoidPoorChemistry"), True),
            fair_distribution=_to_bool(merged.get("fairDistribution"), True),
            enforce_breaks=_to_bool(merged.get("enforceBreaks"), True),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "maxConsecutiveDays": self.max_consecutive_days,
            "minRestHours": self.min_rest_hours,
            "maxWeeklyHours": self.max_weekly_hours,
            "respectPreferences": self.respect_preferences,
            "avoidPoorChemistry": self.avoid_poor_chemistry,
            "fairDistribution": self.fair_distribution,
            "enforceBreaks": self.enforce_breaks,
        }


@dataclass(frozen=True)
class SchedulingPriorities:
    seniority_weight: float = 0.2
    ability_weight: float = 0.4
    preference_weight: float = 0.3
    availability_weight: float = 0.1

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "SchedulingPriorities":
        merged = _deep_update(DEFAULT_PRIORITIES, dict(payload or {}))
        return cls(
            seniority_weight=max(0.0, _to_float(merged.get("seniorityWeight"), 0.2)),
            ability_weight=max(0.0, _to_float(merged.get("abilityWeight"), 0.4)),
            preference_weight=max(0.0, _to_float(merged.get("preferenceWeight"), 0.3)),
            availability_weight=max(0.0, _to_float(merged.get("availabilityWeight"), 0.1)),
        )

    def as_dict(self) -> Dict[str, float]:
        return {
            "seniorityWeight": self.seniority_weight,
            "abilityWeight": self.ability_weight,
            "preferenceWeight": self.preference_weight,
            "availabilityWeight": self.availability_weight,
        }


@dataclass(frozen=True)
class EngineTuning:
    fairness_mode: str = "cohort"
    fixed_average_days: float = 5.0
    monthly_hours_target: float = 160.0
    default_min_skill_level: float = 3.0
    chemistry_conflict_threshold: int = 2

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a dict."""
    if conn is None:
        return build_default_policy()
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _normalize_policy(policy: Dict) -> Dict:
    """Fill gaps from the baseline so older stored payloads keep working."""
    if not isinstance(policy, dict):
        policy = {}
    normalized = _deep_update(BASELINE_POLICY, policy)
    fairness = normalized["fairness"]
    mode = str(fairness.get("mode") or "cohort").strip().lower()
    fairness["mode"] = mode if mode in FAIRNESS_MODES else "cohort"
    fairness["fixed_average_days"] = max(0.0, _to_float(fairness.get("fixed_average_days"), 5.0))
    utilization = normalized["utilization"]
    target = _to_float(utilization.get("monthly_hours_target"), 160.0)
    utilization["monthly_hours_target"] = target if target > 0 else 160.0
    skills = normalized["skills"]
    skills["default_min_level"] = min(5.0, max(1.0, _to_float(skills.get("default_min_level"), 3.0)))
    chemistry = normalized["chemistry"]
    chemistry["conflict_threshold"] = min(5, max(1, _to_int(chemistry.get("conflict_threshold"), 2)))
    return normalized


def resolve_constraints(policy: Optional[Dict], overrides: Optional[Mapping[str, Any]] = None) -> SchedulingConstraints:
    base = (policy or {}).get("constraints") if isinstance(policy, dict) else None
    payload = _deep_update(base if isinstance(base, dict) else {}, dict(overrides or {}))
    return SchedulingConstraints.from_mapping(payload)


def resolve_priorities(policy: Optional[Dict], overrides: Optional[Mapping[str, Any]] = None) -> SchedulingPriorities:
    base = (policy or {}).get("priorities") if isinstance(policy, dict) else None
    payload = _deep_update(base if isinstance(base, dict) else {}, dict(overrides or {}))
    return SchedulingPriorities.from_mapping(payload)


def resolve_tuning(policy: Optional[Dict]) -> EngineTuning:
    normalized = _normalize_policy(policy or {})
    return EngineTuning(
        fairness_mode=normalized["fairness"]["mode"],
        fixed_average_days=normalized["fairness"]["fixed_average_days"],
        monthly_hours_target=normalized["utilization"]["monthly_hours_target"],
        default_min_skill_level=normalized["skills"]["default_min_level"],
        chemistry_conflict_threshold=normalized["chemistry"]["conflict_threshold"],
    )


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return copy.deepcopy(BASELINE_POLICY)


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy exactly once so generation can run end-to-end."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        payload = build_default_policy()
        name = payload.get("name", "Baseline Staffing")
        params = {key: value for key, value in payload.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")
