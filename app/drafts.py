from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from database import (
    ScheduleDraft,
    ScheduleDraftItem,
    create_schedule,
    delete_schedules,
    get_draft,
    list_drafts,
    record_audit_log,
)
from domain import DraftItem, DraftSnapshot, ScheduleEntry
from intervals import any_overlap
from repository import draft_from_row

logger = logging.getLogger(__name__)

MERGE_STRATEGIES = ("priority", "latest", "combine")
MERGEABLE_STATUSES = ("draft", "reviewing")
_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


@dataclass(frozen=True)
class _Contribution:
    item: DraftItem
    draft_id: Optional[int]
    draft_name: str
    rank: int
    order: int

    def as_dict(self) -> Dict[str, Any]:
        payload = self.item.as_dict()
        payload["sourceDraftId"] = self.draft_id
        payload["sourceDraftName"] = self.draft_name
        return payload


def _aware(value: Optional[datetime.datetime]) -> datetime.datetime:
    """SQLite hands back naive timestamps; treat those as UTC so comparisons never raise."""
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _rank_of(draft: DraftSnapshot, index: int, priority_order: Sequence[int]) -> int:
    if draft.id is not None and draft.id in priority_order:
        return priority_order.index(draft.id)
    return index


def _collect(drafts: Sequence[DraftSnapshot], priority_order: Sequence[int]) -> Dict[Tuple[int, datetime.date], List[_Contribution]]:
    grouped: Dict[Tuple[int, datetime.date], List[_Contribution]] = {}
    order = 0
    for index, draft in enumerate(drafts):
        rank = _rank_of(draft, index, priority_order)
        for item in draft.items:
            key = (item.employee_id, item.date)
            grouped.setdefault(key, []).append(_Contribution(item, draft.id, draft.name, rank, order))
            order += 1
    return grouped


def _by_priority(contributions: List[_Contribution]) -> _Contribution:
    return min(contributions, key=lambda contribution: (contribution.rank, contribution.order))


def _by_latest(contributions: List[_Contribution]) -> _Contribution:
    # max() keeps the first of equal keys, so ties go to input order.
    return max(contributions, key=lambda contribution: _aware(contribution.item.updated_at))


def _period(drafts: Sequence[DraftSnapshot]) -> Tuple[Optional[datetime.date], Optional[datetime.date]]:
    dates = [value for draft in drafts for value in (draft.period_start, draft.period_end) if value]
    if not dates:
        dates = [item.date for draft in drafts for item in draft.items]
    if not dates:
        return None, None
    return min(dates), max(dates)


def merge_drafts(
    drafts: Sequence[DraftSnapshot],
    strategy: str = "priority",
    priority_order: Optional[Iterable[int]] = None,
) -> Dict[str, Any]:
    """Reconcile two or more drafts into one item list keyed by employee and date.

    Every key with more than one contributor is reported in ``conflicts`` whatever
    the strategy decided, so the merge can be audited afterwards.
    """
    if len(drafts) < 2:
        raise ValueError("At least 2 drafts are required for merging.")
    strategy = (strategy or "priority").strip().lower()
    if strategy not in MERGE_STRATEGIES:
        raise ValueError(f"Unknown merge strategy '{strategy}'. Expected one of {', '.join(MERGE_STRATEGIES)}.")
    order = [int(value) for value in (priority_order or [])]

    merged: List[_Contribution] = []
    conflicts: List[Dict[str, Any]] = []
    for (employee_id, date_), contributions in _collect(drafts, order).items():
        if len(contributions) == 1:
            merged.append(contributions[0])
            continue

        if strategy == "latest":
            kept = [_by_latest(contributions)]
            resolution = "latest"
        elif strategy == "combine" and not any_overlap([c.item.interval for c in contributions]):
            kept = list(contributions)
            resolution = "combined"
        else:
            kept = [_by_priority(contributions)]
            resolution = "priority" if strategy == "priority" else "priority_overlap"
        merged.extend(kept)
        conflicts.append(
            {
                "employeeId": employee_id,
                "date": date_.isoformat(),
                "conflictingItems": [
                    {
                        "draftId": contribution.draft_id,
                        "draftName": contribution.draft_name,
                        "startTime": contribution.item.start_time,
                        "endTime": contribution.item.end_time,
                        "shiftType": contribution.item.shift_type,
                        "priority": contribution.item.priority,
                    }
                    for contribution in contributions
                ],
                "resolution": resolution,
                "keptDraftIds": [contribution.draft_id for contribution in kept],
            }
        )

    period_start, period_end = _period(drafts)
    return {
        "mergedItems": [contribution.as_dict() for contribution in merged],
        "conflicts": conflicts,
        "summary": {
            "totalSourceDrafts": len(drafts),
            "totalItemsMerged": len(merged),
            "conflictsResolved": len(conflicts),
            "periodStart": period_start.isoformat() if period_start else None,
            "periodEnd": period_end.isoformat() if period_end else None,
        },
    }


def next_merge_version(versions: Iterable[str]) -> str:
    majors = []
    for version in versions:
        head = str(version or "").split(".")[0]
        try:
            majors.append(int(head))
        except ValueError:
            continue
    return f"{(max(majors) if majors else 0) + 1}.0.0"


def preview_merge(drafts: Sequence[DraftSnapshot]) -> Dict[str, Any]:
    if len(drafts) < 2:
        raise ValueError("At least 2 drafts are required for preview.")
    conflicts = []
    for (employee_id, date_), contributions in _collect(drafts, []).items():
        if len(contributions) < 2:
            continue
        rows = []
        for contribution in contributions:
            overlapping = any(
                other.draft_id != contribution.draft_id and other.item.interval.overlaps(contribution.item.interval)
                for other in contributions
            )
            rows.append(
                {
                    "draftId": contribution.draft_id,
                    "draftName": contribution.draft_name,
                    "startTime": contribution.item.start_time,
                    "endTime": contribution.item.end_time,
                    "shiftType": contribution.item.shift_type,
                    "hasTimeOverlap": overlapping,
                }
            )
        conflicts.append({"employeeId": employee_id, "date": date_.isoformat(), "conflictingItems": rows})
    return {
        "conflicts": conflicts,
        "summary": {
            "totalDrafts": len(drafts),
            "totalItems": sum(len(draft.items) for draft in drafts),
            "totalConflicts": len(conflicts),
            "draftSummary": [
                {
                    "id": draft.id,
                    "name": draft.name,
                    "itemCount": len(draft.items),
                    "periodStart": draft.period_start.isoformat() if draft.period_start else None,
                    "periodEnd": draft.period_end.isoformat() if draft.period_end else None,
                }
                for draft in drafts
            ],
        },
        "canMerge": True,
    }


def activate_draft_items(draft: DraftSnapshot) -> List[ScheduleEntry]:
    """Turn every non-excluded item into a committed entry."""
    if draft.status == "active":
        raise ValueError("Draft is already active.")
    return [item.to_entry(status="scheduled") for item in draft.items if not item.is_excluded]


def _item_from_payload(payload: Dict[str, Any]) -> ScheduleDraftItem:
    return ScheduleDraftItem(
        employee_id=int(payload["employeeId"]),
        date=datetime.date.fromisoformat(payload["date"]),
        start_time=payload["startTime"],
        end_time=payload["endTime"],
        shift_type=payload.get("shiftType") or "regular",
        priority=payload.get("priority") or "normal",
        break_time=payload.get("breakTime"),
        status=payload.get("status") or "planned",
        notes=payload.get("notes") or "",
    )


def merge_stored_drafts(
    session,
    draft_ids: Sequence[int],
    strategy: str = "priority",
    priority_order: Optional[Iterable[int]] = None,
    *,
    actor: str = "system",
    name: str = "Merged Schedule Draft",
    description: str = "Merged from multiple schedule drafts",
) -> Dict[str, Any]:
    ids = [int(value) for value in draft_ids or []]
    if len(ids) < 2:
        raise ValueError("At least 2 drafts are required for merging.")
    rows = list_drafts(session, ids, statuses=MERGEABLE_STATUSES)
    if len(rows) != len(set(ids)):
        raise ValueError("Some drafts were not found or cannot be merged (they may already be active).")
    snapshots = [draft_from_row(row) for row in rows]
    result = merge_drafts(snapshots, strategy, priority_order)
    summary = result["summary"]

    metadata: Dict[str, Any] = {}
    for snapshot in snapshots:
        metadata.update(snapshot.metadata)
    metadata["mergeInfo"] = {
        "sourceDrafts": [{"id": s.id, "name": s.name, "version": s.version} for s in snapshots],
        "strategy": strategy,
        "priorityOrder": list(priority_order or []),
        "conflictsResolved": summary["conflictsResolved"],
        "mergedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    merged = ScheduleDraft(
        name=name,
        description=description,
        version=next_merge_version(s.version for s in snapshots),
        status="draft",
        period_start=datetime.date.fromisoformat(summary["periodStart"]) if summary["periodStart"] else None,
        period_end=datetime.date.fromisoformat(summary["periodEnd"]) if summary["periodEnd"] else None,
        metadataJSON=json.dumps(metadata, default=str),
        notes=f"Merged from {len(snapshots)} drafts: {', '.join(s.name for s in snapshots)}",
        created_by=actor,
    )
    merged.items = [_item_from_payload(payload) for payload in result["mergedItems"]]
    session.add(merged)
    session.commit()
    record_audit_log(
        session,
        actor,
        "merge_drafts",
        target_type="ScheduleDraft",
        target_id=merged.id,
        payload={"sourceDraftIds": ids, "strategy": strategy, "conflicts": len(result["conflicts"])},
    )
    logger.info("Merged drafts %s into draft %s (%d conflicts).", ids, merged.id, len(result["conflicts"]))
    result["draft"] = {"id": merged.id, "name": merged.name, "version": merged.version}
    return result


def activate_stored_draft(session, draft_id: int, actor: str = "system", *, replace_existing: bool = False) -> Dict[str, Any]:
    row = get_draft(session, draft_id)
    if row is None:
        raise LookupError(f"Schedule draft {draft_id} not found.")
    snapshot = draft_from_row(row)
    entries = activate_draft_items(snapshot)
    removed = 0
    try:
        if replace_existing and snapshot.period_start and snapshot.period_end:
            removed = delete_schedules(session, snapshot.period_start, snapshot.period_end, commit=False)
        for entry in entries:
            create_schedule(
                session,
                {
                    "date": entry.date,
                    "employee_id": entry.employee_id,
                    "start_time": entry.start_time,
                    "end_time": entry.end_time,
                    "shift_type": entry.shift_type,
                    "priority": entry.priority,
                    "break_time": entry.break_time,
                    "status": entry.status,
                    "notes": entry.notes,
                    "created_by": actor,
                },
                commit=False,
            )
        now = datetime.datetime.now(datetime.timezone.utc)
        row.status = "active"
        row.approved_by = actor
        row.activated_at = now
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Activating draft %s failed; nothing was written.", draft_id)
        raise
    record_audit_log(
        session,
        actor,
        "activate_draft",
        target_type="ScheduleDraft",
        target_id=row.id,
        payload={"schedulesCreated": len(entries), "replacedExisting": removed},
    )
    return {"draftId": row.id, "schedulesCreated": len(entries), "schedulesRemoved": removed}
