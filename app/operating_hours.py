from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from domain import (
    PRIORITY_LEVELS,
    DailyHours,
    HourlySlot,
    OperatingTemplate,
    SkillRequirement,
    Weekday,
)
from intervals import MINUTES_PER_DAY, ShiftInterval, is_valid_time_label, parse_time_label

logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = {
    "openTime": "open_time",
    "closeTime": "close_time",
    "breakStart": "break_start",
    "breakEnd": "break_end",
    "minStaff": "min_staff",
    "maxStaff": "max_staff",
}
SHORT_DAY_MINUTES = 120
LONG_DAY_MINUTES = 720


@dataclass(frozen=True)
class EffectiveHours:
    date: datetime.date
    is_open: bool
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    min_staff: int = 1
    max_staff: Optional[int] = None
    slots: Tuple[HourlySlot, ...] = ()
    is_override: bool = False
    reason: str = ""
    notes: str = ""

    @property
    def weekday(self) -> Weekday:
        return Weekday.of(self.date)

    @property
    def interval(self) -> Optional[ShiftInterval]:
        if not self.is_open or not self.open_time or not self.close_time:
            return None
        return ShiftInterval.from_labels(self.open_time, self.close_time)

    @property
    def open_hour(self) -> int:
        return parse_time_label(self.open_time) // 60

    @property
    def close_hour(self) -> int:
        """Close hour on the +24 axis when the day runs past midnight."""
        interval = self.interval
        if interval is None:
            return 0
        return interval.end_minutes // 60

    @property
    def break_window(self) -> Optional[str]:
        if self.break_start and self.break_end:
            return f"{self.break_start}-{self.break_end}"
        return None

    def slot_for(self, hour: int) -> Optional[HourlySlot]:
        hour = int(hour) % 24
        for slot in self.slots:
            if slot.hour == hour:
                return slot
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "dayOfWeek": int(self.weekday),
            "isOpen": self.is_open,
            "openTime": self.open_time,
            "closeTime": self.close_time,
            "breakStart": self.break_start,
            "breakEnd": self.break_end,
            "minStaff": self.min_staff,
            "maxStaff": self.max_staff,
            "timeSlots": [
                {
                    "hourSlot": slot.hour,
                    "requiredStaff": slot.required_staff,
                    "preferredStaff": slot.preferred,
                    "priority": slot.priority,
                    "skillRequirement": slot.skill_requirement.as_dict() if slot.skill_requirement else None,
                }
                for slot in self.slots
            ],
            "isOverride": self.is_override,
            "reason": self.reason,
            "notes": self.notes,
        }


def _closed(date_: datetime.date, reason: str = "") -> EffectiveHours:
    return EffectiveHours(date=date_, is_open=False, reason=reason)


def _int_or(value: Any, default: Optional[int]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def slots_from_payload(rows: Optional[Iterable[Mapping[str, Any]]], *, default_min_level: float = 3.0) -> Tuple[HourlySlot, ...]:
    """Build hourly slots from camelCase or snake_case payload rows, ordered by hour."""
    slots: Dict[int, HourlySlot] = {}
    for row in rows or []:
        if not isinstance(row, Mapping):
            continue
        hour = _int_or(row.get("hourSlot", row.get("hour")), None)
        if hour is None or not 0 <= hour <= 23:
            continue
        priority = str(row.get("priority") or "normal").lower()
        slots[hour] = HourlySlot(
            hour=hour,
            required_staff=max(0, _int_or(row.get("requiredStaff", row.get("required_staff")), 1)),
            preferred_staff=_int_or(row.get("preferredStaff", row.get("preferred_staff")), None),
            priority=priority if priority in PRIORITY_LEVELS else "normal",
            skill_requirement=SkillRequirement.from_mapping(
                row.get("skillRequirement") or row.get("skill_requirement"),
                default_level=default_min_level,
            ),
        )
    return tuple(slots[hour] for hour in sorted(slots))


def resolve_effective_hours(
    template: Optional[OperatingTemplate],
    date_: datetime.date,
    override_settings: Optional[Mapping[str, Any]] = None,
) -> EffectiveHours:
    """Resolve opening hours for ``date_``: date override, then weekday hours, then caller fields."""
    if template is None:
        return _closed(date_, "no_template")
    override = template.override_for(date_)
    if override is not None:
        if override.override_type == "closed":
            return _closed(date_, override.reason)
        if override.custom_hours:
            custom = override.custom_hours
            open_time = custom.get("openTime")
            close_time = custom.get("closeTime")
            if not (is_valid_time_label(open_time) and is_valid_time_label(close_time)):
                logger.warning("Override for %s has unusable custom hours; treating the day as closed.", date_)
                return _closed(date_, override.reason)
            return EffectiveHours(
                date=date_,
                is_open=True,
                open_time=open_time,
                close_time=close_time,
                break_start=custom.get("breakStart"),
                break_end=custom.get("breakEnd"),
                min_staff=max(0, _int_or(custom.get("minStaff"), 1)),
                max_staff=_int_or(custom.get("maxStaff"), None),
                slots=slots_from_payload(custom.get("timeSlots")),
                is_override=True,
                reason=override.reason,
            )

    daily = template.day(Weekday.of(date_))
    if daily is None or not daily.is_open:
        return _closed(date_)

    fields: Dict[str, Any] = {
        "open_time": daily.open_time,
        "close_time": daily.close_time,
        "break_start": daily.break_start,
        "break_end": daily.break_end,
        "min_staff": daily.min_staff,
        "max_staff": daily.max_staff,
    }
    for key, attr in OVERRIDE_FIELDS.items():
        value = (override_settings or {}).get(key)
        if value is not None and value != "":
            fields[attr] = value
    if not (is_valid_time_label(fields["open_time"]) and is_valid_time_label(fields["close_time"])):
        return _closed(date_, "missing_hours")
    return EffectiveHours(
        date=date_,
        is_open=True,
        open_time=fields["open_time"],
        close_time=fields["close_time"],
        break_start=fields["break_start"],
        break_end=fields["break_end"],
        min_staff=max(0, _int_or(fields["min_staff"], 1)),
        max_staff=_int_or(fields["max_staff"], None),
        slots=tuple(daily.slots),
        notes=daily.notes,
    )


def _operating_minutes(open_time: str, close_time: str) -> int:
    return ShiftInterval.from_labels(open_time, close_time).duration_minutes


def validate_daily_hours(daily_hours: Any) -> Dict[str, Any]:
    """Validate a raw ``dailyHours`` payload list before it is stored on a template."""
    if not isinstance(daily_hours, list):
        return {"valid": False, "errors": ["Daily hours must be a list."]}
    errors: List[str] = []
    seen_days = set()
    for index, day in enumerate(daily_hours, start=1):
        prefix = f"Day {index}"
        if not isinstance(day, Mapping):
            errors.append(f"{prefix}: entry must be an object.")
            continue
        day_of_week = _int_or(day.get("dayOfWeek"), -1)
        if not 0 <= day_of_week <= 6:
            errors.append(f"{prefix}: day of week must be between 0 (Monday) and 6 (Sunday).")
        if day_of_week in seen_days:
            errors.append(f"{prefix}: duplicate day of week {day_of_week}.")
        seen_days.add(day_of_week)

        open_time = day.get("openTime")
        close_time = day.get("closeTime")
        is_open = day.get("isOpen") is not False
        if is_open:
            if open_time and not is_valid_time_label(open_time):
                errors.append(f"{prefix}: invalid open time format.")
            if close_time and not is_valid_time_label(close_time):
                errors.append(f"{prefix}: invalid close time format.")
            break_start = day.get("breakStart")
            break_end = day.get("breakEnd")
            if break_start and not is_valid_time_label(break_start):
                errors.append(f"{prefix}: invalid break start time format.")
            if break_end and not is_valid_time_label(break_end):
                errors.append(f"{prefix}: invalid break end time format.")
            if is_valid_time_label(break_start) and is_valid_time_label(break_end):
                start_minutes = parse_time_label(break_start)
                end_minutes = parse_time_label(break_end)
                if end_minutes <= start_minutes:
                    errors.append(f"{prefix}: break end time must be after break start time.")
                open_minutes = parse_time_label(open_time) if is_valid_time_label(open_time) else 0
                close_minutes = parse_time_label(close_time) if is_valid_time_label(close_time) else MINUTES_PER_DAY - 1
                if start_minutes < open_minutes or end_minutes > close_minutes:
                    errors.append(f"{prefix}: break times must be within operating hours.")

        min_staff = _int_or(day.get("minStaff"), None)
        max_staff = _int_or(day.get("maxStaff"), None)
        if min_staff is not None and not 0 <= min_staff <= 100:
            errors.append(f"{prefix}: minimum staff must be between 0 and 100.")
        if max_staff is not None and not 1 <= max_staff <= 100:
            errors.append(f"{prefix}: maximum staff must be between 1 and 100.")
        if min_staff and max_staff and min_staff > max_staff:
            errors.append(f"{prefix}: minimum staff cannot be greater than maximum staff.")

        seen_hours = set()
        for slot_index, slot in enumerate(day.get("timeSlots") or [], start=1):
            slot_prefix = f"{prefix}, time slot {slot_index}"
            if not isinstance(slot, Mapping):
                errors.append(f"{slot_prefix}: entry must be an object.")
                continue
            hour = _int_or(slot.get("hourSlot"), -1)
            if not 0 <= hour <= 23:
                errors.append(f"{slot_prefix}: hour slot must be between 0 and 23.")
            if hour in seen_hours:
                errors.append(f"{slot_prefix}: duplicate hour slot {hour}.")
            seen_hours.add(hour)
            required = _int_or(slot.get("requiredStaff"), 0)
            if not 0 <= required <= 50:
                errors.append(f"{slot_prefix}: required staff must be between 0 and 50.")
            preferred = _int_or(slot.get("preferredStaff"), None)
            if preferred is not None and preferred < required:
                errors.append(f"{slot_prefix}: preferred staff cannot be less than required staff.")
            priority = slot.get("priority")
            if priority and priority not in PRIORITY_LEVELS:
                errors.append(f"{slot_prefix}: priority must be low, normal, high, or critical.")
            if is_open and is_valid_time_label(open_time) and is_valid_time_label(close_time):
                open_hour = parse_time_label(open_time) // 60
                close_hour = ShiftInterval.from_labels(open_time, close_time).end_minutes // 60
                if not (open_hour <= hour < close_hour or open_hour <= hour + 24 < close_hour):
                    errors.append(
                        f"{slot_prefix}: hour slot {hour} is outside operating hours ({open_hour}-{close_hour % 24})."
                    )
    return {"valid": not errors, "errors": errors}


def validate_template_consistency(template: OperatingTemplate) -> Dict[str, Any]:
    errors: List[str] = []
    warnings: List[str] = []
    days = list(template.daily_hours.values())
    if not days:
        errors.append("Template must have at least one day defined.")
        return {"valid": False, "errors": errors, "warnings": warnings}

    open_days = [day for day in days if day.is_open]
    if not open_days:
        warnings.append("All days are closed; the template will not generate any schedules.")
    for day in open_days:
        if is_valid_time_label(day.open_time) and is_valid_time_label(day.close_time):
            minutes = _operating_minutes(day.open_time, day.close_time)
            if minutes < SHORT_DAY_MINUTES:
                warnings.append(f"{day.weekday.label}: very short operating hours (less than 2 hours).")
            elif minutes > LONG_DAY_MINUTES:
                warnings.append(f"{day.weekday.label}: very long operating hours (more than 12 hours).")

    has_slots = any(day.slots for day in days)
    has_basic = any(day.min_staff or day.max_staff for day in days)
    if has_slots and has_basic:
        warnings.append("Template uses both time slots and basic staffing; time slots take precedence.")

    weekend_open = [day for day in open_days if day.weekday.is_weekend]
    weekday_open = [day for day in open_days if not day.weekday.is_weekend]
    if weekend_open and not weekday_open:
        warnings.append("Template only operates on weekends.")
    return {"valid": not errors, "errors": errors, "warnings": warnings}


def template_summary(template: OperatingTemplate) -> Dict[str, Any]:
    days: List[DailyHours] = [template.daily_hours[key] for key in sorted(template.daily_hours)]
    open_days = [day for day in days if day.is_open]
    total_hours = 0.0
    for day in open_days:
        if is_valid_time_label(day.open_time) and is_valid_time_label(day.close_time):
            total_hours += _operating_minutes(day.open_time, day.close_time) / 60
    total_staff = 0
    for day in days:
        if day.slots:
            total_staff += sum(slot.required_staff for slot in day.slots)
        elif day.min_staff:
            total_staff += day.min_staff
    count = len(open_days)
    return {
        "templateName": template.name,
        "description": template.description,
        "openDays": count,
        "openDayNames": [day.weekday.label for day in open_days],
        "totalWeeklyHours": round(total_hours, 1),
        "averageDailyHours": round(total_hours / count, 1) if count else 0,
        "hasTimeSlots": any(day.slots for day in days),
        "totalStaffRequirement": total_staff,
        "averageStaffPerDay": round(total_staff / count, 1) if count else 0,
    }
