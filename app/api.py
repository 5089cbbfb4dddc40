"""FastAPI wrapper around the staffing engine.

Each endpoint parses the request, hands plain values to a service function and
serialises the returned dicts. Service functions raise ``ValueError`` for bad
input, which is surfaced as a 400.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure the flat module imports (e.g., "import database") resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from database import get_active_policy, init_database, record_audit_log, upsert_policy  # noqa: E402
from coverage_analysis import analyze_coverage_for_period  # noqa: E402
from drafts import activate_stored_draft, merge_stored_drafts, preview_merge  # noqa: E402
from generator.api import generate_schedule  # noqa: E402
from operating_hours import resolve_effective_hours  # noqa: E402
from policy import ensure_default_policy  # noqa: E402
from repository import SqlScheduleRepository, draft_from_row  # noqa: E402
from validation import validate_period_schedule  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_policy(database.SessionLocal)
    yield


app = FastAPI(title="Staffing Engine API", version="0.1", lifespan=lifespan)


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_employee_db():
    db = database.EmployeeSessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return database.SessionLocal


def get_employee_session_factory():
    return database.EmployeeSessionLocal


def _parse_date(value: Any, field: str) -> datetime.date:
    if isinstance(value, datetime.date):
        return value
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be YYYY-MM-DD")


def _parse_period(payload: Dict[str, Any]) -> tuple[datetime.date, datetime.date]:
    start = _parse_date(payload.get("startDate"), "startDate")
    end = _parse_date(payload.get("endDate"), "endDate")
    if start > end:
        raise HTTPException(status_code=400, detail="startDate must be on or before endDate")
    return start, end


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return (str((payload or {}).get("actor") or "api")).strip() or "api"


def _id_list(values: Any, field: str) -> List[int]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise HTTPException(status_code=400, detail=f"{field} must be a list of ids")
    try:
        return [int(value) for value in values]
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be a list of ids")


def _policy_payload(policy) -> Dict[str, Any]:
    return {
        "id": policy.id,
        "name": policy.name,
        "params": policy.params_dict(),
        "lastEditedBy": policy.lastEditedBy,
        "lastEditedAt": policy.lastEditedAt.isoformat() if policy.lastEditedAt else None,
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/templates/{template_id}/effective-hours")
def effective_hours(template_id: int, date: str = Query(...), db=Depends(get_db)) -> JSONResponse:
    day = _parse_date(date, "date")
    try:
        template = SqlScheduleRepository(db).load_template(template_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(resolve_effective_hours(template, day).as_dict()))


@app.post("/api/v1/schedules/generate")
def generate(
    payload: Dict[str, Any],
    session_factory=Depends(get_session_factory),
    employee_session_factory=Depends(get_employee_session_factory),
) -> JSONResponse:
    start, end = _parse_period(payload)
    template_id = payload.get("templateId")
    try:
        result = generate_schedule(
            session_factory,
            int(template_id) if template_id is not None else None,
            start,
            end,
            _actor(payload),
            employee_session_factory=employee_session_factory,
            constraints=payload.get("constraints"),
            priorities=payload.get("priorities"),
            optimization_level=payload.get("optimizationLevel"),
            generate_mode=payload.get("generateMode"),
            department=payload.get("department"),
            employee_ids=_id_list(payload.get("employeeIds"), "employeeIds") or None,
            override_settings=payload.get("overrideSettings"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    result["schedules"] = [entry.as_dict() for entry in result.pop("entries")]
    return JSONResponse(status_code=201, content=jsonable_encoder(result))


@app.post("/api/v1/schedules/conflicts")
def schedule_conflicts(payload: Dict[str, Any], db=Depends(get_db), employee_db=Depends(get_employee_db)) -> JSONResponse:
    start, end = _parse_period(payload)
    report = validate_period_schedule(
        db,
        start,
        end,
        employee_session=employee_db,
        constraints=payload.get("constraints"),
    )
    return JSONResponse(content=jsonable_encoder(report))


@app.post("/api/v1/staffing/analyze")
def staffing_analyze(payload: Dict[str, Any], db=Depends(get_db), employee_db=Depends(get_employee_db)) -> JSONResponse:
    start, end = _parse_period(payload)
    template_id = payload.get("templateId")
    options = {
        "includeWeekends": payload.get("includeWeekends", True),
        "analyzeByDepartment": payload.get("analyzeByDepartment", False),
    }
    try:
        report = analyze_coverage_for_period(
            db,
            start,
            end,
            template_id=int(template_id) if template_id is not None else None,
            options=options,
            employee_session=employee_db,
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(report))


@app.post("/api/v1/drafts/merge")
def merge(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    draft_ids = _id_list(payload.get("draftIds"), "draftIds")
    options = payload.get("mergeOptions") or {}
    try:
        result = merge_stored_drafts(
            db,
            draft_ids,
            options.get("conflictResolution") or "priority",
            _id_list(options.get("priorityOrder"), "priorityOrder"),
            actor=_actor(payload),
            name=options.get("name") or "Merged Schedule Draft",
            description=options.get("description") or "Merged from multiple schedule drafts",
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(status_code=201, content=jsonable_encoder(result))


@app.post("/api/v1/drafts/merge/preview")
def merge_preview(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    draft_ids = _id_list(payload.get("draftIds"), "draftIds")
    if len(draft_ids) < 2:
        raise HTTPException(status_code=400, detail="At least 2 drafts are required for preview")
    rows = database.list_drafts(db, draft_ids, statuses=("draft", "reviewing"))
    try:
        result = preview_merge([draft_from_row(row) for row in rows])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(result))


@app.post("/api/v1/drafts/{draft_id}/activate")
def activate(draft_id: int, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    payload = payload or {}
    try:
        result = activate_stored_draft(
            db,
            draft_id,
            _actor(payload),
            replace_existing=bool(payload.get("replaceExisting", False)),
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(result))


@app.get("/api/v1/policy/active")
def active_policy(db=Depends(get_db)) -> JSONResponse:
    policy = get_active_policy(db)
    if not policy:
        raise HTTPException(status_code=404, detail="No active policy found")
    return JSONResponse(content=jsonable_encoder(_policy_payload(policy)))


@app.put("/api/v1/policy/active")
def set_active_policy(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    name = payload.get("name")
    params = payload.get("params") or {}
    actor = _actor(payload)
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    policy = upsert_policy(db, name=name, params_dict=params, edited_by=actor)
    record_audit_log(db, actor, "POLICY_EDIT", target_type="Policy", target_id=policy.id, payload={"name": policy.name})
    return JSONResponse(content=jsonable_encoder(_policy_payload(policy)))


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=os.getenv("STAFFING_HOST", "127.0.0.1"), port=int(os.getenv("STAFFING_PORT", "8000")))
