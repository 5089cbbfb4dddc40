from __future__ import annotations

import datetime
import json
import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import AuditLog, Base, Schedule, ScheduleDraft, ScheduleDraftItem, get_draft  # noqa: E402
from domain import DraftItem, DraftSnapshot  # noqa: E402
from drafts import (  # noqa: E402
    activate_draft_items,
    activate_stored_draft,
    merge_drafts,
    merge_stored_drafts,
    next_merge_version,
    preview_merge,
)

MONDAY = datetime.date(2024, 3, 4)
TUESDAY = MONDAY + datetime.timedelta(days=1)
UTC = datetime.timezone.utc


def _item(employee_id, date_=MONDAY, start="09:00", end="17:00", updated=None, status="planned") -> DraftItem:
    return DraftItem(
        employee_id=employee_id,
        date=date_,
        start_time=start,
        end_time=end,
        status=status,
        updated_at=updated,
    )


def _draft(draft_id, items, name=None, version="1.0.0") -> DraftSnapshot:
    return DraftSnapshot(id=draft_id, name=name or f"Draft {draft_id}", items=list(items), version=version)


def _windows(result):
    return sorted(
        (item["employeeId"], item["date"], item["startTime"], item["endTime"], item["sourceDraftId"])
        for item in result["mergedItems"]
    )


class MergeDraftsTests(unittest.TestCase):
    def test_disjoint_drafts_merge_without_conflicts(self) -> None:
        result = merge_drafts([_draft(1, [_item(1)]), _draft(2, [_item(2)])])
        self.assertEqual(result["conflicts"], [])
        self.assertEqual(result["summary"]["totalItemsMerged"], 2)
        self.assertEqual(result["summary"]["periodStart"], MONDAY.isoformat())

    def test_priority_follows_explicit_order(self) -> None:
        drafts = [_draft(1, [_item(1, start="09:00")]), _draft(2, [_item(1, start="10:00")])]
        default = merge_drafts(drafts, "priority")
        self.assertEqual(_windows(default), [(1, "2024-03-04", "09:00", "17:00", 1)])

        reordered = merge_drafts(drafts, "priority", priority_order=[2, 1])
        self.assertEqual(_windows(reordered), [(1, "2024-03-04", "10:00", "17:00", 2)])
        conflict = reordered["conflicts"][0]
        self.assertEqual(conflict["resolution"], "priority")
        self.assertEqual(conflict["keptDraftIds"], [2])
        self.assertEqual([row["draftId"] for row in conflict["conflictingItems"]], [1, 2])

    def test_latest_keeps_most_recent_update(self) -> None:
        older = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
        newer = datetime.datetime(2024, 3, 2, 9, 0)  # naive timestamps count as UTC
        drafts = [
            _draft(1, [_item(1, start="09:00", updated=newer)]),
            _draft(2, [_item(1, start="12:00", updated=older)]),
        ]
        result = merge_drafts(drafts, "latest")
        self.assertEqual(_windows(result), [(1, "2024-03-04", "09:00", "17:00", 1)])
        self.assertEqual(result["conflicts"][0]["resolution"], "latest")

    def test_latest_ties_go_to_first_draft(self) -> None:
        drafts = [_draft(1, [_item(1, start="09:00")]), _draft(2, [_item(1, start="12:00")])]
        self.assertEqual(merge_drafts(drafts, "latest")["conflicts"][0]["keptDraftIds"], [1])

    def test_combine_keeps_non_overlapping_items(self) -> None:
        drafts = [
            _draft(1, [_item(1, start="09:00", end="13:00")]),
            _draft(2, [_item(1, start="13:00", end="18:00")]),
        ]
        result = merge_drafts(drafts, "combine")
        self.assertEqual(
            _windows(result),
            [(1, "2024-03-04", "09:00", "13:00", 1), (1, "2024-03-04", "13:00", "18:00", 2)],
        )
        self.assertEqual(result["conflicts"][0]["resolution"], "combined")
        self.assertEqual(result["conflicts"][0]["keptDraftIds"], [1, 2])

    def test_combine_of_a_duplicated_draft_falls_back_to_priority(self) -> None:
        items = [_item(1), _item(2), _item(1, date_=TUESDAY)]
        result = merge_drafts([_draft(1, items), _draft(2, items)], "combine")
        self.assertEqual(len(result["mergedItems"]), 3)
        self.assertEqual({item["sourceDraftId"] for item in result["mergedItems"]}, {1})
        self.assertEqual(len(result["conflicts"]), 3)
        self.assertEqual({conflict["resolution"] for conflict in result["conflicts"]}, {"priority_overlap"})

    def test_invalid_requests_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            merge_drafts([_draft(1, [_item(1)])])
        with self.assertRaises(ValueError):
            merge_drafts([_draft(1, []), _draft(2, [])], "random")

    def test_next_merge_version_bumps_major(self) -> None:
        self.assertEqual(next_merge_version(["1.0.0", "3.2.1", "beta"]), "4.0.0")
        self.assertEqual(next_merge_version([]), "1.0.0")

    def test_preview_flags_time_overlaps(self) -> None:
        drafts = [
            _draft(1, [_item(1, start="09:00", end="13:00"), _item(2)]),
            _draft(2, [_item(1, start="12:00", end="18:00")]),
        ]
        preview = preview_merge(drafts)
        self.assertTrue(preview["canMerge"])
        self.assertEqual(preview["summary"]["totalItems"], 3)
        self.assertEqual(preview["summary"]["totalConflicts"], 1)
        rows = preview["conflicts"][0]["conflictingItems"]
        self.assertEqual([row["hasTimeOverlap"] for row in rows], [True, True])

    def test_activation_skips_excluded_items(self) -> None:
        draft = _draft(1, [_item(1), _item(2, status="excluded"), _item(3)])
        entries = activate_draft_items(draft)
        self.assertEqual([entry.employee_id for entry in entries], [1, 3])
        self.assertTrue(all(entry.status == "scheduled" for entry in entries))
        draft.status = "active"
        with self.assertRaises(ValueError):
            activate_draft_items(draft)


class StoredDraftTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)()

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def _store(self, name, items, *, status="draft", version="1.0.0", metadata=None) -> ScheduleDraft:
        draft = ScheduleDraft(
            name=name,
            version=version,
            status=status,
            period_start=MONDAY,
            period_end=TUESDAY,
            metadataJSON=json.dumps(metadata or {}),
        )
        draft.items = [
            ScheduleDraftItem(employee_id=employee_id, date=date_, start_time=start, end_time=end, status=item_status)
            for employee_id, date_, start, end, item_status in items
        ]
        self.session.add(draft)
        self.session.commit()
        return draft

    def test_merge_creates_new_draft_and_audit_entry(self) -> None:
        first = self._store("Morning", [(1, MONDAY, "09:00", "13:00", "planned")], version="2.0.0", metadata={"team": "A"})
        second = self._store("Evening", [(1, MONDAY, "13:00", "18:00", "planned"), (2, TUESDAY, "09:00", "17:00", "planned")])

        result = merge_stored_drafts(self.session, [first.id, second.id], "combine", actor="manager")

        merged = get_draft(self.session, result["draft"]["id"])
        self.assertEqual(merged.version, "3.0.0")
        self.assertEqual(merged.status, "draft")
        self.assertEqual(len(merged.items), 3)
        self.assertEqual(merged.created_by, "manager")
        metadata = merged.metadata_dict()
        self.assertEqual(metadata["team"], "A")
        self.assertEqual(metadata["mergeInfo"]["strategy"], "combine")
        self.assertEqual(metadata["mergeInfo"]["conflictsResolved"], 1)
        audit = self.session.scalars(select(AuditLog).where(AuditLog.action == "merge_drafts")).one()
        self.assertEqual(audit.target_id, merged.id)

    def test_merge_refuses_active_or_missing_drafts(self) -> None:
        live = self._store("Live", [(1, MONDAY, "09:00", "17:00", "planned")], status="active")
        other = self._store("Other", [(2, MONDAY, "09:00", "17:00", "planned")])
        with self.assertRaises(ValueError):
            merge_stored_drafts(self.session, [live.id, other.id])
        with self.assertRaises(ValueError):
            merge_stored_drafts(self.session, [other.id, 999])

    def test_activation_writes_entries_and_marks_draft_active(self) -> None:
        draft = self._store(
            "Week",
            [
                (1, MONDAY, "09:00", "17:00", "planned"),
                (2, MONDAY, "09:00", "17:00", "excluded"),
                (3, TUESDAY, "09:00", "17:00", "planned"),
            ],
        )
        self.session.add(Schedule(employee_id=9, date=MONDAY, start_time="08:00", end_time="12:00"))
        self.session.commit()

        result = activate_stored_draft(self.session, draft.id, "manager", replace_existing=True)

        self.assertEqual(result, {"draftId": draft.id, "schedulesCreated": 2, "schedulesRemoved": 1})
        rows = self.session.scalars(select(Schedule).order_by(Schedule.employee_id)).all()
        self.assertEqual([row.employee_id for row in rows], [1, 3])
        self.assertTrue(all(row.created_by == "manager" for row in rows))
        refreshed = get_draft(self.session, draft.id)
        self.assertEqual(refreshed.status, "active")
        self.assertEqual(refreshed.approved_by, "manager")

        with self.assertRaises(ValueError):
            activate_stored_draft(self.session, draft.id)

    def test_activation_keeps_existing_entries_by_default(self) -> None:
        draft = self._store("Week", [(1, MONDAY, "09:00", "17:00", "planned")])
        self.session.add(Schedule(employee_id=9, date=MONDAY, start_time="08:00", end_time="12:00"))
        self.session.commit()
        result = activate_stored_draft(self.session, draft.id)
        self.assertEqual(result["schedulesRemoved"], 0)
        self.assertEqual(len(self.session.scalars(select(Schedule)).all()), 2)

    def test_missing_draft_raises_lookup_error(self) -> None:
        with self.assertRaises(LookupError):
            activate_stored_draft(self.session, 404)


if __name__ == "__main__":
    unittest.main()
