"""Pending change store tests: validation, dedup upsert, listing and guarded transitions."""

from __future__ import annotations

import os
import tempfile
import unittest
from unittest import mock

from change_fixtures import make_session_factory, make_sqlite_engine, seed_table
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ontology_sync.models.base import Base
from ontology_sync.models.pending_change import PendingChange
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable
from ontology_sync.services import pending_changes
from ontology_sync.services.errors import (
    AlreadyReviewedError,
    ChangeNotFoundError,
    ConflictError,
    ValidationError,
)
from ontology_sync.services.pending_changes import (
    ChangeCandidate,
    build_dedup_key,
    count_changes_by_status,
    list_changes,
    list_pending_ids,
    record_candidate,
    transition,
    validate_candidate,
)

PROJECT_ID = "store-project"


def enum_candidate(value: str, *, table: str = "orders", column: str = "status", source: str = "inference"):
    return ChangeCandidate(
        project_id=PROJECT_ID,
        change_type="new_enum_value",
        source=source,
        table_name=table,
        column_name=column,
        old_value=["active", "closed"],
        new_value=value,
    )


class PendingChangeStoreTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.tmpdir = tempfile.TemporaryDirectory()
        cls.engine = make_sqlite_engine(os.path.join(cls.tmpdir.name, "store.db"))
        cls.SessionLocal = make_session_factory(cls.engine)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()
        cls.tmpdir.cleanup()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(PendingChange))
        self.db.execute(delete(SchemaColumn))
        self.db.execute(delete(SchemaTable))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _pending_count(self) -> int:
        return int(self.db.scalar(select(func.count(PendingChange.id)).where(PendingChange.status == "pending")))

    def test_validation_rejects_malformed_candidates(self) -> None:
        with self.assertRaises(ValidationError):
            validate_candidate(enum_candidate("x", column=""))
        with self.assertRaises(ValidationError):
            validate_candidate(enum_candidate("x", source="crawler"))
        with self.assertRaises(ValidationError):
            validate_candidate(
                ChangeCandidate(project_id=PROJECT_ID, change_type="drop_column", source="admin", new_value="x")
            )
        with self.assertRaises(ValidationError):
            validate_candidate(
                ChangeCandidate(
                    project_id=PROJECT_ID,
                    change_type="new_fk_pattern",
                    source="inference",
                    from_table="orders",
                    from_column="customer_id",
                    to_table="customers",
                    to_column="id",
                    new_value={},
                    confidence=1.5,
                )
            )

        with self.assertRaises(ValidationError):
            record_candidate(self.db, enum_candidate(""))
        self.db.rollback()
        self.assertEqual(self._pending_count(), 0)

    def test_dedup_key_ignores_source_and_old_value(self) -> None:
        first = enum_candidate("pending_review", source="inference")
        second = enum_candidate("pending_review", source="admin")
        second.old_value = ["active"]

        self.assertEqual(build_dedup_key(first), build_dedup_key(second))
        self.assertNotEqual(build_dedup_key(first), build_dedup_key(enum_candidate("archived")))

    def test_rerecording_same_candidate_refreshes_existing_pending_row(self) -> None:
        first = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()
        second = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()

        self.assertTrue(first.created)
        self.assertFalse(second.created)
        self.assertEqual(first.change.id, second.change.id)
        self.assertEqual(self._pending_count(), 1)

    def test_recurrence_after_terminal_status_creates_new_pending_row(self) -> None:
        first = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()
        transition(self.db, first.change.id, "rejected", expected_status="pending", actor_id="reviewer-1")
        self.db.commit()

        again = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()

        self.assertTrue(again.created)
        self.assertNotEqual(again.change.id, first.change.id)
        self.assertEqual(self._pending_count(), 1)

    def test_concurrent_insert_falls_back_to_winner_row(self) -> None:
        winner_db = self.SessionLocal()
        try:
            winner = record_candidate(winner_db, enum_candidate("pending_review"))
            winner_db.commit()
            winner_id = winner.change.id
        finally:
            winner_db.close()

        real_refresh = pending_changes._refresh_pending
        calls = {"count": 0}

        def refresh_missing_first_time(db, dedup_key, detected_at):
            calls["count"] += 1
            if calls["count"] == 1:
                return None
            return real_refresh(db, dedup_key, detected_at)

        with mock.patch.object(pending_changes, "_refresh_pending", side_effect=refresh_missing_first_time):
            result = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()

        self.assertFalse(result.created)
        self.assertEqual(result.change.id, winner_id)
        self.assertEqual(self._pending_count(), 1)

    def test_transition_is_compare_and_set(self) -> None:
        change_id = record_candidate(self.db, enum_candidate("pending_review")).change.id
        self.db.commit()

        other_db = self.SessionLocal()
        try:
            transition(
                other_db,
                change_id,
                "approved",
                expected_status="pending",
                actor_id="reviewer-a",
                actor_source="admin",
            )
            other_db.commit()
        finally:
            other_db.close()

        with self.assertRaises(AlreadyReviewedError):
            transition(
                self.db,
                change_id,
                "rejected",
                expected_status="pending",
                actor_id="reviewer-b",
                actor_source="admin",
            )
        self.db.rollback()

        row = self.db.get(PendingChange, change_id, populate_existing=True)
        self.assertEqual(row.status, "approved")
        self.assertEqual(row.reviewed_by, "reviewer-a")
        self.assertEqual(row.reviewer_source, "admin")
        self.assertIsNotNone(row.reviewed_at)

    def test_illegal_and_unknown_transitions(self) -> None:
        recorded = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()

        with self.assertRaises(ConflictError):
            transition(self.db, recorded.change.id, "pending", expected_status="applied")
        with self.assertRaises(ValidationError):
            transition(self.db, recorded.change.id, "approved", expected_status="pending")
        with self.assertRaises(ChangeNotFoundError):
            transition(self.db, 999_999, "approved", expected_status="pending", actor_id="reviewer")
        self.db.rollback()

    def test_applied_rows_keep_review_fields_and_clear_errors(self) -> None:
        recorded = record_candidate(self.db, enum_candidate("pending_review"))
        self.db.commit()
        change_id = recorded.change.id
        transition(self.db, change_id, "approved", expected_status="pending", actor_id="rev", actor_source="admin")
        pending_changes.record_apply_error(self.db, change_id, "connection reset")
        self.db.commit()

        applied = transition(self.db, change_id, "applied", expected_status="approved")
        self.db.commit()

        self.assertEqual(applied.status, "applied")
        self.assertEqual(applied.reviewed_by, "rev")
        self.assertIsNotNone(applied.applied_at)
        self.assertIsNone(applied.last_error)

    def test_list_filters_and_deselection_visibility(self) -> None:
        seed_table(self.db, PROJECT_ID, "orders", [("id", "integer", True), ("status", "text", False)])
        seed_table(
            self.db,
            PROJECT_ID,
            "legacy_orders",
            [("id", "integer", True), ("status", "text", False)],
            is_selected=False,
        )
        seed_table(
            self.db,
            PROJECT_ID,
            "invoices",
            [("id", "integer", True), ("state", "text", False)],
            deselected_columns=("state",),
        )
        record_candidate(self.db, enum_candidate("pending_review"))
        record_candidate(self.db, enum_candidate("archived", table="legacy_orders"))
        record_candidate(self.db, enum_candidate("void", table="invoices", column="state"))
        record_candidate(self.db, enum_candidate("refunded", source="automated_client"))
        self.db.commit()

        visible = list_changes(self.db, PROJECT_ID)
        self.assertEqual({row.new_value for row in visible}, {"pending_review", "refunded"})

        everything = list_changes(self.db, PROJECT_ID, include_deselected=True)
        self.assertEqual(len(everything), 4)

        by_source = list_changes(self.db, PROJECT_ID, source="automated_client")
        self.assertEqual([row.new_value for row in by_source], ["refunded"])

        by_table = list_changes(self.db, PROJECT_ID, table="legacy_orders", include_deselected=True)
        self.assertEqual([row.new_value for row in by_table], ["archived"])

        page = list_changes(self.db, PROJECT_ID, include_deselected=True, limit=2, offset=1)
        self.assertEqual(len(page), 2)

        self.assertEqual(len(list_pending_ids(self.db, PROJECT_ID)), 2)
        self.assertEqual(list_changes(self.db, "another-project"), [])

    def test_relationship_into_deselected_target_is_hidden(self) -> None:
        seed_table(self.db, PROJECT_ID, "orders", [("id", "integer", True), ("customer_id", "integer", False)])
        seed_table(self.db, PROJECT_ID, "customers", [("id", "integer", True)], is_selected=False)
        seed_table(
            self.db,
            PROJECT_ID,
            "carriers",
            [("code", "text", True)],
            deselected_columns=("code",),
        )
        seed_table(self.db, PROJECT_ID, "warehouses", [("id", "integer", True)])

        def fk_candidate(column: str, to_table: str, to_column: str) -> ChangeCandidate:
            return ChangeCandidate(
                project_id=PROJECT_ID,
                change_type="new_fk_pattern",
                source="inference",
                table_name="orders",
                column_name=column,
                from_table="orders",
                from_column=column,
                to_table=to_table,
                to_column=to_column,
                new_value={"confidence": 0.95},
                confidence=0.95,
            )

        record_candidate(self.db, fk_candidate("customer_id", "customers", "id"))
        record_candidate(self.db, fk_candidate("carrier_code", "carriers", "code"))
        record_candidate(self.db, fk_candidate("warehouse_id", "warehouses", "id"))
        self.db.commit()

        visible = list_changes(self.db, PROJECT_ID)
        self.assertEqual([row.to_table for row in visible], ["warehouses"])
        self.assertEqual(len(list_changes(self.db, PROJECT_ID, include_deselected=True)), 3)
        self.assertEqual(count_changes_by_status(self.db, PROJECT_ID)["pending"], 1)

    def test_counts_are_zero_filled_per_status(self) -> None:
        first = record_candidate(self.db, enum_candidate("pending_review"))
        record_candidate(self.db, enum_candidate("archived"))
        self.db.commit()
        transition(self.db, first.change.id, "rejected", expected_status="pending", actor_id="rev")
        self.db.commit()

        counts = count_changes_by_status(self.db, PROJECT_ID)

        self.assertEqual(counts, {"pending": 1, "approved": 0, "applied": 0, "rejected": 1})


if __name__ == "__main__":
    unittest.main()
