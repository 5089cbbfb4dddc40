from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from intervals import ShiftInterval

PRIORITY_LEVELS = ("low", "normal", "high", "critical")
ENTRY_STATUS_CHOICES = {"scheduled", "cancelled"}
DRAFT_ITEM_STATUS_CHOICES = {"planned", "excluded"}
DRAFT_STATUS_CHOICES = {"draft", "reviewing", "active"}
LEAVE_STATUS_CHOICES = {"pending", "approved", "rejected"}
OVERRIDE_TYPES = {"closed", "special_hours", "special_staffing"}


class Weekday(IntEnum):
    """0 = Monday, matching ``datetime.date.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def of(cls, date_: datetime.date) -> "Weekday":
        return cls(date_.weekday())

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return cls(value)
        token = str(value).strip().upper()
        if token.isdigit():
            return cls(int(token))
        for member in cls:
            if member.name == token or member.name[:3] == token[:3]:
                return member
        raise ValueError(f"Unknown weekday '{value}'.")

    @property
    def is_weekend(self) -> bool:
        return self in (Weekday.SATURDAY, Weekday.SUNDAY)

    @property
    def label(self) -> str:
        return self.name.capitalize()


def _clamp_level(value: Any, default: int = 1) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(5, number))


@dataclass(frozen=True)
class Ability:
    work_skill: int = 1
    experience: int = 1
    customer_service: int = 1
    flexibility: int = 1
    team_chemistry: int = 1

    FIELD_ALIASES = {
        "work_skill": ("work_skill", "workSkill"),
        "experience": ("experience",),
        "customer_service": ("customer_service", "customerService"),
        "flexibility": ("flexibility",),
        "team_chemistry": ("team_chemistry", "teamChemistry"),
    }

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> Optional["Ability"]:
        """Map a loosely-typed record (snake or camel case) into levels clamped to 1-5."""
        if not payload:
            return None
        values: Dict[str, int] = {}
        for name, aliases in cls.FIELD_ALIASES.items():
            raw = next((payload[key] for key in aliases if key in payload), None)
            values[name] = _clamp_level(raw)
        return cls(**values)

    @property
    def average_core(self) -> float:
        return (self.work_skill + self.experience + self.customer_service) / 3.0

    @property
    def weighted_score(self) -> float:
        return (
            self.work_skill * 3
            + self.experience * 2
            + self.customer_service * 2
            + self.flexibility
            + self.team_chemistry
        ) / 9.0


@dataclass(frozen=True)
class Preference:
    prefer_days: FrozenSet[Weekday] = frozenset()
    avoid_days: FrozenSet[Weekday] = frozenset()
    preferred_hours: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class EmployeeConstraints:
    max_consecutive_days: Optional[int] = None
    can_work_weekends: bool = True
    can_work_night_shifts: bool = True
    unavailable_hours: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class EmployeeSnapshot:
    id: int
    name: str = ""
    department: str = ""
    position: str = ""
    hire_date: Optional[datetime.date] = None
    ability: Optional[Ability] = None
    preference: Optional[Preference] = None
    constraints: Optional[EmployeeConstraints] = None

    def years_of_service(self, today: datetime.date) -> float:
        if not self.hire_date:
            return 0.0
        return max(0.0, (today - self.hire_date).days / 365.25)


@dataclass(frozen=True)
class LeaveSnapshot:
    employee_id: int
    start: datetime.date
    end: datetime.date
    status: str = "approved"

    def covers(self, date_: datetime.date) -> bool:
        return self.status == "approved" and self.start <= date_ <= self.end


@dataclass(frozen=True)
class ChemistryEdge:
    employee_a: int
    employee_b: int
    score: int

    @classmethod
    def between(cls, first: int, second: int, score: int) -> "ChemistryEdge":
        if first == second:
            raise ValueError("Chemistry requires two different employees.")
        low, high = sorted((int(first), int(second)))
        return cls(low, high, int(score))

    @property
    def key(self) -> Tuple[int, int]:
        return (self.employee_a, self.employee_b)


class ChemistryBook:
    """Pair lookup over canonical chemistry edges."""

    def __init__(self, edges: Iterable[ChemistryEdge] = (), *, conflict_threshold: int = 2) -> None:
        self.conflict_threshold = conflict_threshold
        self._scores: Dict[Tuple[int, int], int] = {}
        for edge in edges:
            canonical = ChemistryEdge.between(edge.employee_a, edge.employee_b, edge.score)
            self._scores[canonical.key] = canonical.score

    def score(self, first: int, second: int) -> Optional[int]:
        low, high = sorted((first, second))
        return self._scores.get((low, high))

    def conflicts(self, first: int, second: int) -> bool:
        score = self.score(first, second)
        return score is not None and score <= self.conflict_threshold

    def __len__(self) -> int:
        return len(self._scores)


@dataclass(frozen=True)
class SkillRequirement:
    min_skill_level: float = 3.0
    work_skill: Optional[int] = None
    experience: Optional[int] = None
    customer_service: Optional[int] = None

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]], *, default_level: float = 3.0) -> Optional["SkillRequirement"]:
        if not payload:
            return None

        def _level(*keys: str) -> Optional[int]:
            for key in keys:
                if payload.get(key) is not None:
                    return _clamp_level(payload[key])
            return None

        raw_min = payload.get("min_skill_level", payload.get("minSkillLevel"))
        try:
            min_level = float(raw_min) if raw_min is not None else default_level
        except (TypeError, ValueError):
            min_level = default_level
        return cls(
            min_skill_level=min_level,
            work_skill=_level("work_skill", "workSkill"),
            experience=_level("experience"),
            customer_service=_level("customer_service", "customerService"),
        )

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"minSkillLevel": self.min_skill_level}
        if self.work_skill is not None:
            payload["workSkill"] = self.work_skill
        if self.experience is not None:
            payload["experience"] = self.experience
        if self.customer_service is not None:
            payload["customerService"] = self.customer_service
        return payload


@dataclass(frozen=True)
class HourlySlot:
    hour: int
    required_staff: int = 1
    preferred_staff: Optional[int] = None
    priority: str = "normal"
    skill_requirement: Optional[SkillRequirement] = None

    @property
    def preferred(self) -> int:
        return self.preferred_staff if self.preferred_staff is not None else self.required_staff


@dataclass(frozen=True)
class DailyHours:
    weekday: Weekday
    is_open: bool = True
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    min_staff: int = 1
    max_staff: Optional[int] = None
    slots: Tuple[HourlySlot, ...] = ()
    notes: str = ""


@dataclass(frozen=True)
class ScheduleOverride:
    date: datetime.date
    override_type: str = "closed"
    custom_hours: Optional[Dict[str, Any]] = None
    reason: str = ""
    is_active: bool = True


@dataclass
class OperatingTemplate:
    id: Optional[int]
    name: str
    daily_hours: Dict[Weekday, DailyHours] = field(default_factory=dict)
    overrides: Dict[datetime.date, ScheduleOverride] = field(default_factory=dict)
    description: str = ""

    def day(self, weekday: Weekday) -> Optional[DailyHours]:
        return self.daily_hours.get(Weekday(weekday))

    def override_for(self, date_: datetime.date) -> Optional[ScheduleOverride]:
        override = self.overrides.get(date_)
        if override and override.is_active:
            return override
        return None


@dataclass(frozen=True)
class ScheduleEntry:
    employee_id: int
    date: datetime.date
    start_time: str
    end_time: str
    shift_type: str = "regular"
    priority: str = "normal"
    break_time: Optional[str] = None
    status: str = "scheduled"
    is_auto_generated: bool = False
    notes: str = ""
    id: Optional[int] = None

    @property
    def interval(self) -> ShiftInterval:
        return ShiftInterval.from_labels(self.start_time, self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status != "cancelled"

    @property
    def hours(self) -> float:
        return self.interval.duration_hours

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employeeId": self.employee_id,
            "date": self.date.isoformat(),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "shiftType": self.shift_type,
            "priority": self.priority,
            "breakTime": self.break_time,
            "status": self.status,
            "isAutoGenerated": self.is_auto_generated,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class DraftItem:
    employee_id: int
    date: datetime.date
    start_time: str
    end_time: str
    shift_type: str = "regular"
    priority: str = "normal"
    break_time: Optional[str] = None
    status: str = "planned"
    notes: str = ""
    updated_at: Optional[datetime.datetime] = None
    id: Optional[int] = None

    @property
    def interval(self) -> ShiftInterval:
        return ShiftInterval.from_labels(self.start_time, self.end_time)

    @property
    def is_excluded(self) -> bool:
        return self.status == "excluded"

    def to_entry(self, *, status: str = "scheduled") -> ScheduleEntry:
        return ScheduleEntry(
            employee_id=self.employee_id,
            date=self.date,
            start_time=self.start_time,
            end_time=self.end_time,
            shift_type=self.shift_type,
            priority=self.priority,
            break_time=self.break_time,
            status=status,
            is_auto_generated=False,
            notes=self.notes,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employeeId": self.employee_id,
            "date": self.date.isoformat(),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "shiftType": self.shift_type,
            "priority": self.priority,
            "breakTime": self.break_time,
            "status": self.status,
            "notes": self.notes,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class DraftSnapshot:
    id: Optional[int]
    name: str
    items: List[DraftItem] = field(default_factory=list)
    version: str = "1.0.0"
    status: str = "draft"
    period_start: Optional[datetime.date] = None
    period_end: Optional[datetime.date] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SchedulingSnapshot:
    """Everything a generation run reads, loaded up front by the caller."""

    template: OperatingTemplate
    employees: List[EmployeeSnapshot]
    leaves: List[LeaveSnapshot] = field(default_factory=list)
    chemistry: List[ChemistryEdge] = field(default_factory=list)
    existing_entries: List[ScheduleEntry] = field(default_factory=list)
