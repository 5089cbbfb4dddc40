from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    or_,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker


DATA_DIR = Path(os.getenv("STAFFING_DATA_DIR") or (Path(__file__).resolve().parent / "data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)
EMPLOYEE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'employees.db').as_posix()}"
SCHEDULE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'schedule.db').as_posix()}"
POLICY_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'policy.db').as_posix()}"
ALGORITHM_VERSION = "v2.0-enhanced"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _split_ints(value: Optional[str]) -> List[int]:
    items: List[int] = []
    for token in (value or "").split(","):
        token = token.strip()
        if not token:
            continue
        try:
            items.append(int(token))
        except ValueError:
            continue
    return items


def _join_ints(values: Iterable[int]) -> str:
    return ",".join(str(value) for value in sorted({int(value) for value in values}))


def _load_json(raw: Optional[str], default):
    try:
        value = json.loads(raw or "null")
    except json.JSONDecodeError:
        return default
    return default if value is None else value


class EmployeeBase(DeclarativeBase):
    """Standalone metadata for employee tables living in employees.db."""

    pass


class PolicyBase(DeclarativeBase):
    """Standalone metadata for policy tables living in policy.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for template/schedule/draft tables living in schedule.db."""

    pass


class Employee(EmployeeBase):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    department: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    position: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    hire_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    ability: Mapped[Optional["EmployeeAbility"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan", uselist=False
    )
    preference: Mapped[Optional["EmployeePreference"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan", uselist=False
    )
    constraint: Mapped[Optional["EmployeeConstraint"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan", uselist=False
    )
    leaves: Mapped[List["LeaveRequest"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )


class EmployeeAbility(EmployeeBase):
    __tablename__ = "employee_abilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), unique=True)
    work_skill: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    customer_service: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    flexibility: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    team_chemistry: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    employee: Mapped[Employee] = relationship(back_populates="ability")


class EmployeePreference(EmployeeBase):
    __tablename__ = "employee_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), unique=True)
    prefer_days: Mapped[str] = mapped_column(String(40), default="", nullable=False)  # 0 = Monday
    avoid_days: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    preferred_hours: Mapped[str] = mapped_column(String(120), default="", nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="preference")

    @property
    def prefer_day_list(self) -> List[int]:
        return _split_ints(self.prefer_days)

    @prefer_day_list.setter
    def prefer_day_list(self, days: Iterable[int]) -> None:
        self.prefer_days = _join_ints(days)

    @property
    def avoid_day_list(self) -> List[int]:
        return _split_ints(self.avoid_days)

    @avoid_day_list.setter
    def avoid_day_list(self, days: Iterable[int]) -> None:
        self.avoid_days = _join_ints(days)

    @property
    def preferred_hour_list(self) -> List[int]:
        return _split_ints(self.preferred_hours)

    @preferred_hour_list.setter
    def preferred_hour_list(self, hours: Iterable[int]) -> None:
        self.preferred_hours = _join_ints(hours)


class EmployeeConstraint(EmployeeBase):
    __tablename__ = "employee_constraints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), unique=True)
    max_consecutive_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_work_weekends: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_work_night_shifts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    unavailable_hours: Mapped[str] = mapped_column(String(120), default="", nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="constraint")

    @property
    def unavailable_hour_list(self) -> List[int]:
        return _split_ints(self.unavailable_hours)

    @unavailable_hour_list.setter
    def unavailable_hour_list(self, hours: Iterable[int]) -> None:
        self.unavailable_hours = _join_ints(hours)


class EmployeeChemistry(EmployeeBase):
    __tablename__ = "employee_chemistry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Stored with the smaller id first so each pair has exactly one row.
    employee1_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    employee2_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    notes: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    __table_args__ = (
        UniqueConstraint("employee1_id", "employee2_id", name="uq_employee_chemistry_pair"),
    )


class LeaveRequest(EmployeeBase):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"))
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="pending")
    reason: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="leaves")


class Policy(PolicyBase):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("name", name="uq_policies_name"),
    )

    def params_dict(self) -> Dict:
        value = _load_json(self.paramsJSON, {})
        return value if isinstance(value, dict) else {}


class OperatingHoursTemplate(Base):
    __tablename__ = "operating_hours_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    daily_hours: Mapped[List["DailyHoursRow"]] = relationship(
        back_populates="template", cascade="all, delete-orphan", order_by="DailyHoursRow.day_of_week"
    )
    overrides: Mapped[List["ScheduleOverrideRow"]] = relationship(
        back_populates="template", cascade="all, delete-orphan"
    )


class DailyHoursRow(Base):
    __tablename__ = "daily_hours"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("operating_hours_templates.id", ondelete="CASCADE"))
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Monday
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    open_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    close_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    break_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    break_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    min_staff: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_staff: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    template: Mapped[OperatingHoursTemplate] = relationship(back_populates="daily_hours")
    time_slots: Mapped[List["HourlySlotRow"]] = relationship(
        back_populates="daily_hours", cascade="all, delete-orphan", order_by="HourlySlotRow.hour_slot"
    )

    __table_args__ = (
        UniqueConstraint("template_id", "day_of_week", name="uq_daily_hours_template_day"),
    )


class HourlySlotRow(Base):
    __tablename__ = "hourly_slots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    daily_hours_id: Mapped[int] = mapped_column(ForeignKey("daily_hours.id", ondelete="CASCADE"))
    hour_slot: Mapped[int] = mapped_column(Integer, nullable=False)
    required_staff: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    preferred_staff: Mapped[int | None] = mapped_column(Integer, nullable=True)
    priority: Mapped[str] = mapped_column(String(12), nullable=False, default="normal")
    skillRequirementJSON: Mapped[str | None] = mapped_column(String(500), nullable=True)

    daily_hours: Mapped[DailyHoursRow] = relationship(back_populates="time_slots")

    __table_args__ = (
        UniqueConstraint("daily_hours_id", "hour_slot", name="uq_hourly_slot_hour"),
    )

    def skill_requirement_dict(self) -> Optional[Dict[str, Any]]:
        value = _load_json(self.skillRequirementJSON, None)
        return value if isinstance(value, dict) else None


class ScheduleOverrideRow(Base):
    __tablename__ = "schedule_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("operating_hours_templates.id", ondelete="CASCADE"))
    override_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    override_type: Mapped[str] = mapped_column(String(20), nullable=False, default="closed")
    customHoursJSON: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    reason: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    template: Mapped[OperatingHoursTemplate] = relationship(back_populates="overrides")

    __table_args__ = (
        UniqueConstraint("template_id", "override_date", name="uq_schedule_override_date"),
    )

    def custom_hours_dict(self) -> Optional[Dict[str, Any]]:
        value = _load_json(self.customHoursJSON, None)
        return value if isinstance(value, dict) else None


class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    shift_type: Mapped[str] = mapped_column(String(16), nullable=False, default="regular")
    priority: Mapped[str] = mapped_column(String(12), nullable=False, default="normal")
    break_time: Mapped[str | None] = mapped_column(String(11), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class ScheduleDraft(Base):
    __tablename__ = "schedule_drafts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0.0")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    period_start: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    metadataJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    approved_by: Mapped[str | None] = mapped_column(String(60), nullable=True)
    activated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    items: Mapped[List["ScheduleDraftItem"]] = relationship(
        back_populates="draft", cascade="all, delete-orphan", order_by="ScheduleDraftItem.id"
    )

    def metadata_dict(self) -> Dict[str, Any]:
        value = _load_json(self.metadataJSON, {})
        return value if isinstance(value, dict) else {}


class ScheduleDraftItem(Base):
    __tablename__ = "schedule_draft_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    draft_id: Mapped[int] = mapped_column(ForeignKey("schedule_drafts.id", ondelete="CASCADE"), nullable=False)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    shift_type: Mapped[str] = mapped_column(String(16), nullable=False, default="regular")
    priority: Mapped[str] = mapped_column(String(12), nullable=False, default="normal")
    break_time: Mapped[str | None] = mapped_column(String(11), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="planned")
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    draft: Mapped[ScheduleDraft] = relationship(back_populates="items")


class GenerationLog(Base):
    __tablename__ = "generation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generated_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    generation_type: Mapped[str] = mapped_column(String(40), nullable=False, default="enhanced_auto_generate")
    period_start: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    period_end: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    total_schedules_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_employees_affected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parametersJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    coverage_achieved: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    employee_satisfaction: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    constraintViolationsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="[]")
    warningsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="[]")
    errorsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="[]")
    algorithm_version: Mapped[str] = mapped_column(String(20), nullable=False, default=ALGORITHM_VERSION)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="completed")
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Schedule")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


employee_engine = create_engine(
    EMPLOYEE_DATABASE_URL,
    echo=False,
    future=True,
)
schedule_engine = create_engine(
    SCHEDULE_DATABASE_URL,
    echo=False,
    future=True,
)
policy_engine = create_engine(
    POLICY_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)
EmployeeSessionLocal = sessionmaker(bind=employee_engine, expire_on_commit=False, future=True)
PolicySessionLocal = sessionmaker(bind=policy_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    EmployeeBase.metadata.create_all(employee_engine)
    Base.metadata.create_all(schedule_engine)
    PolicyBase.metadata.create_all(policy_engine)


def _coerce_employee_session(session):
    """Return (employee_session, should_close) ensuring we talk to the employee database."""
    if session is None:
        return EmployeeSessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is schedule_engine:
        return EmployeeSessionLocal(), True
    return session, False


def _coerce_policy_session(session):
    """Return (policy_session, should_close) ensuring policy data stays in its own database."""
    PolicyBase.metadata.create_all(policy_engine)
    if session is None:
        return PolicySessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is schedule_engine or bind is employee_engine:
        return PolicySessionLocal(), True
    return session, False


def get_policies(session) -> List[Policy]:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        stmt = select(Policy).order_by(Policy.name.asc(), Policy.id.asc())
        return list(policy_session.scalars(stmt))
    finally:
        if close_session:
            policy_session.close()


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        existing: Optional[Policy] = policy_session.execute(
            select(Policy).where(Policy.name == name)
        ).scalars().first()
        payload = params_dict if isinstance(params_dict, dict) else {}
        if existing:
            existing.paramsJSON = json.dumps(payload)
            existing.lastEditedBy = edited_by
            existing.lastEditedAt = _utcnow()
            policy_session.commit()
            policy_session.refresh(existing)
            return existing
        policy = Policy(
            name=name,
            paramsJSON=json.dumps(payload),
            lastEditedBy=edited_by,
            lastEditedAt=_utcnow(),
        )
        policy_session.add(policy)
        policy_session.commit()
        policy_session.refresh(policy)
        return policy
    finally:
        if close_session:
            policy_session.close()


def get_active_policy(session) -> Optional[Policy]:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
        return policy_session.scalars(stmt).first()
    finally:
        if close_session:
            policy_session.close()


def list_employees(
    employee_session=None,
    *,
    only_active: bool = True,
    department: Optional[str] = None,
    employee_ids: Optional[Iterable[int]] = None,
) -> List[Employee]:
    session, close_session = _coerce_employee_session(employee_session)
    try:
        stmt = select(Employee).options(
            selectinload(Employee.ability),
            selectinload(Employee.preference),
            selectinload(Employee.constraint),
        )
        if only_active:
            stmt = stmt.where(Employee.status == "active")
        if department:
            stmt = stmt.where(Employee.department == department)
        ids = [int(value) for value in (employee_ids or [])]
        if ids:
            stmt = stmt.where(Employee.id.in_(ids))
        return list(session.scalars(stmt.order_by(Employee.id.asc())))
    finally:
        if close_session:
            session.close()


def list_approved_leaves(
    employee_session,
    start: datetime.date,
    end: datetime.date,
    *,
    employee_ids: Optional[Iterable[int]] = None,
) -> List[LeaveRequest]:
    session, close_session = _coerce_employee_session(employee_session)
    try:
        stmt = (
            select(LeaveRequest)
            .options(selectinload(LeaveRequest.employee))
            .where(
                LeaveRequest.status == "approved",
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        ids = [int(value) for value in (employee_ids or [])]
        if ids:
            stmt = stmt.where(LeaveRequest.employee_id.in_(ids))
        return list(session.scalars(stmt.order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())))
    finally:
        if close_session:
            session.close()


def list_chemistry(employee_session, employee_ids: Iterable[int]) -> List[EmployeeChemistry]:
    ids = [int(value) for value in employee_ids]
    if not ids:
        return []
    session, close_session = _coerce_employee_session(employee_session)
    try:
        stmt = select(EmployeeChemistry).where(
            or_(EmployeeChemistry.employee1_id.in_(ids), EmployeeChemistry.employee2_id.in_(ids))
        )
        return list(session.scalars(stmt))
    finally:
        if close_session:
            session.close()


def upsert_chemistry(employee_session, first_id: int, second_id: int, score: int, *, notes: str = "") -> EmployeeChemistry:
    if int(first_id) == int(second_id):
        raise ValueError("Chemistry requires two different employees.")
    try:
        score_value = int(score)
    except (TypeError, ValueError):
        raise ValueError("Chemistry score must be an integer between 1 and 5.")
    if score_value < 1 or score_value > 5:
        raise ValueError("Chemistry score must be between 1 and 5.")
    low, high = sorted((int(first_id), int(second_id)))
    existing = employee_session.scalars(
        select(EmployeeChemistry).where(
            EmployeeChemistry.employee1_id == low,
            EmployeeChemistry.employee2_id == high,
        )
    ).first()
    if existing:
        existing.score = score_value
        existing.notes = notes or existing.notes
    else:
        existing = EmployeeChemistry(employee1_id=low, employee2_id=high, score=score_value, notes=notes)
        employee_session.add(existing)
    employee_session.commit()
    return existing


def get_template(session, template_id: Optional[int] = None) -> Optional[OperatingHoursTemplate]:
    """Return the requested active template, or the default active template when no id is given."""
    stmt = select(OperatingHoursTemplate).options(
        selectinload(OperatingHoursTemplate.daily_hours).selectinload(DailyHoursRow.time_slots),
        selectinload(OperatingHoursTemplate.overrides),
    )
    if template_id is not None:
        stmt = stmt.where(OperatingHoursTemplate.id == int(template_id))
    else:
        stmt = stmt.where(OperatingHoursTemplate.is_default.is_(True))
    stmt = stmt.where(OperatingHoursTemplate.is_active.is_(True))
    return session.scalars(stmt.order_by(OperatingHoursTemplate.id.asc())).first()


def list_schedules(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    include_cancelled: bool = True,
    employee_ids: Optional[Iterable[int]] = None,
) -> List[Schedule]:
    stmt = select(Schedule).where(Schedule.date >= start, Schedule.date <= end)
    if not include_cancelled:
        stmt = stmt.where(Schedule.status != "cancelled")
    ids = [int(value) for value in (employee_ids or [])]
    if ids:
        stmt = stmt.where(Schedule.employee_id.in_(ids))
    return list(session.scalars(stmt.order_by(Schedule.date.asc(), Schedule.start_time.asc(), Schedule.id.asc())))


def delete_schedules(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    employee_ids: Optional[Iterable[int]] = None,
    commit: bool = True,
) -> int:
    stmt = delete(Schedule).where(Schedule.date >= start, Schedule.date <= end)
    ids = [int(value) for value in (employee_ids or [])]
    if ids:
        stmt = stmt.where(Schedule.employee_id.in_(ids))
    result = session.execute(stmt)
    if commit:
        session.commit()
    return int(result.rowcount or 0)


def create_schedule(session, payload: Dict[str, Any], *, commit: bool = True) -> Schedule:
    entry_date = payload.get("date")
    if not isinstance(entry_date, datetime.date):
        raise TypeError("Schedule date must be a date instance.")
    for key in ("employee_id", "start_time", "end_time"):
        if payload.get(key) in (None, ""):
            raise ValueError(f"Schedule {key} is required.")
    status = (payload.get("status") or "scheduled").lower()
    if status not in {"scheduled", "cancelled"}:
        raise ValueError(f"Unsupported schedule status '{status}'.")
    row = Schedule(
        employee_id=int(payload["employee_id"]),
        date=entry_date,
        start_time=str(payload["start_time"]),
        end_time=str(payload["end_time"]),
        shift_type=payload.get("shift_type") or "regular",
        priority=payload.get("priority") or "normal",
        break_time=payload.get("break_time"),
        status=status,
        is_auto_generated=bool(payload.get("is_auto_generated", False)),
        notes=payload.get("notes") or "",
        created_by=payload.get("created_by") or "system",
    )
    session.add(row)
    if commit:
        session.commit()
        session.refresh(row)
    else:
        session.flush()
    return row


def get_draft(session, draft_id: int) -> Optional[ScheduleDraft]:
    stmt = (
        select(ScheduleDraft)
        .options(selectinload(ScheduleDraft.items))
        .where(ScheduleDraft.id == int(draft_id))
    )
    return session.scalars(stmt).first()


def list_drafts(session, draft_ids: Iterable[int], *, statuses: Optional[Iterable[str]] = None) -> List[ScheduleDraft]:
    ids = [int(value) for value in draft_ids]
    if not ids:
        return []
    stmt = (
        select(ScheduleDraft)
        .options(selectinload(ScheduleDraft.items))
        .where(ScheduleDraft.id.in_(ids))
    )
    if statuses:
        stmt = stmt.where(ScheduleDraft.status.in_(list(statuses)))
    drafts = {draft.id: draft for draft in session.scalars(stmt)}
    # Preserve caller order; it doubles as the default merge priority.
    return [drafts[draft_id] for draft_id in ids if draft_id in drafts]


def record_generation_log(session, payload: Dict[str, Any]) -> GenerationLog:
    log = GenerationLog(
        template_id=payload.get("template_id"),
        generated_by=payload.get("generated_by") or "system",
        generation_type=payload.get("generation_type") or "enhanced_auto_generate",
        period_start=payload["period_start"],
        period_end=payload["period_end"],
        total_schedules_created=int(payload.get("total_schedules_created", 0)),
        total_employees_affected=int(payload.get("total_employees_affected", 0)),
        parametersJSON=json.dumps(payload.get("parameters") or {}, default=str),
        coverage_achieved=float(payload.get("coverage_achieved", 0.0)),
        employee_satisfaction=float(payload.get("employee_satisfaction", 0.0)),
        constraintViolationsJSON=json.dumps(payload.get("constraint_violations") or [], default=str),
        warningsJSON=json.dumps(payload.get("warnings") or [], default=str),
        errorsJSON=json.dumps(payload.get("errors") or [], default=str),
        algorithm_version=payload.get("algorithm_version") or ALGORITHM_VERSION,
        status=payload.get("status") or "completed",
        notes=payload.get("notes") or "",
    )
    session.add(log)
    session.commit()
    return log


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Schedule",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
