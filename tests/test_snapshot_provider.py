"""SQL snapshot provider tests against a SQLite stand-in for the customer database."""

from __future__ import annotations

import unittest

from change_fixtures import make_session_factory, make_sqlite_engine, review_policy, seed_enum, seed_table
from sqlalchemy import create_engine, delete, select, text
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from ontology_sync.config import Settings
from ontology_sync.models.base import Base
from ontology_sync.models.column_metadata import ColumnMetadata
from ontology_sync.models.ontology_relationship import OntologyRelationship
from ontology_sync.models.pending_change import PendingChange
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable
from ontology_sync.services.change_detection import DetectionConfig, detect_changes, run_detection
from ontology_sync.services.errors import TransientStoreError
from ontology_sync.services.ontology_store import MetadataView
from ontology_sync.services.snapshot import SqlSnapshotProvider

PROJECT_ID = "sql-project"


class SqlSnapshotProviderTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = make_sqlite_engine()
        cls.SessionLocal = make_session_factory(cls.engine)
        Base.metadata.create_all(cls.engine)

        cls.customer_engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        with cls.customer_engine.begin() as conn:
            conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, tier TEXT)"))
            conn.execute(text("CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, status TEXT)"))
            conn.execute(text("CREATE TABLE audit_log (entry TEXT)"))
            conn.execute(
                text("INSERT INTO customers (id, name, tier) VALUES (:id, :name, :tier)"),
                [
                    {"id": 1, "name": "Ada", "tier": "gold"},
                    {"id": 2, "name": "Grace", "tier": None},
                    {"id": 3, "name": "Linus", "tier": "silver"},
                ],
            )
            conn.execute(
                text("INSERT INTO orders (id, customer_id, status) VALUES (:id, :customer_id, :status)"),
                [
                    {"id": 10, "customer_id": 1, "status": "active"},
                    {"id": 11, "customer_id": 2, "status": "closed"},
                    {"id": 12, "customer_id": 3, "status": "pending_review"},
                    {"id": 13, "customer_id": 3, "status": "active"},
                ],
            )
            conn.execute(text("INSERT INTO audit_log (entry) VALUES ('boot')"))
            conn.execute(text("CREATE TABLE accounts (id INTEGER PRIMARY KEY)"))
            conn.execute(text("CREATE TABLE invoices (id INTEGER PRIMARY KEY, account_id INTEGER)"))
            conn.execute(text("INSERT INTO accounts (id) VALUES (:id)"), [{"id": i} for i in range(1, 3001)])
            conn.execute(
                text("INSERT INTO invoices (id, account_id) VALUES (:id, :account_id)"),
                [{"id": i, "account_id": i} for i in range(1501, 3001)],
            )

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()
        cls.customer_engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(PendingChange))
        self.db.execute(delete(OntologyRelationship))
        self.db.execute(delete(ColumnMetadata))
        self.db.execute(delete(SchemaColumn))
        self.db.execute(delete(SchemaTable))
        self.db.commit()
        seed_table(
            self.db,
            PROJECT_ID,
            "customers",
            [("id", "integer", True), ("name", "text", False), ("tier", "text", False)],
            deselected_columns=("name",),
        )
        seed_table(
            self.db,
            PROJECT_ID,
            "orders",
            [("id", "integer", True), ("customer_id", "integer", False), ("status", "text", False)],
        )
        seed_table(self.db, PROJECT_ID, "audit_log", [("entry", "text", False)])
        seed_table(self.db, PROJECT_ID, "shipments", [("id", "integer", True)], is_selected=False)
        self.provider = SqlSnapshotProvider(self.customer_engine, self.SessionLocal, distinct_limit=101)

    def tearDown(self) -> None:
        self.db.close()

    def test_lists_only_selected_tables(self) -> None:
        self.assertEqual(self.provider.list_selected_tables(PROJECT_ID), ["audit_log", "customers", "orders"])

    def test_snapshot_samples_selected_columns_without_nulls(self) -> None:
        snapshot = self.provider.get_table_snapshot(PROJECT_ID, "customers")

        self.assertTrue(snapshot.is_selected)
        self.assertEqual(snapshot.row_count, 3)
        self.assertEqual([col.column_name for col in snapshot.columns], ["id", "tier"])
        tier = snapshot.columns[1]
        self.assertEqual(tier.distinct_values, ["gold", "silver"])
        self.assertEqual(snapshot.primary_key_column().column_name, "id")

    def test_deselected_table_is_never_sampled(self) -> None:
        snapshot = self.provider.get_table_snapshot(PROJECT_ID, "shipments")

        self.assertFalse(snapshot.is_selected)
        self.assertEqual(snapshot.columns, [])
        self.assertIsNone(snapshot.row_count)

    def test_unregistered_table_raises_lookup_error(self) -> None:
        with self.assertRaises(LookupError):
            self.provider.get_table_snapshot(PROJECT_ID, "payments")

    def test_key_match_counts_against_registered_primary_key(self) -> None:
        match = self.provider.count_matching_keys(PROJECT_ID, "customers", ["1", "3", "3", "99"])

        self.assertEqual((match.column_name, match.matched), ("id", 2))
        self.assertEqual(self.provider.count_matching_keys(PROJECT_ID, "customers", []).matched, 0)
        self.assertIsNone(self.provider.count_matching_keys(PROJECT_ID, "audit_log", ["boot"]))
        self.assertIsNone(self.provider.count_matching_keys(PROJECT_ID, "shipments", ["1"]))

    def test_selected_snapshot_skips_deselected_and_unrequested_tables(self) -> None:
        snapshots = self.provider.get_selected_snapshot(PROJECT_ID)
        self.assertEqual([snapshot.table_name for snapshot in snapshots], ["audit_log", "customers", "orders"])

        narrowed = self.provider.get_selected_snapshot(PROJECT_ID, tables=["orders", "shipments"])
        self.assertEqual([snapshot.table_name for snapshot in narrowed], ["orders"])

    def test_fk_match_is_not_limited_to_lowest_target_keys(self) -> None:
        seed_table(self.db, PROJECT_ID, "accounts", [("id", "integer", True)])
        seed_table(
            self.db,
            PROJECT_ID,
            "invoices",
            [("id", "integer", True), ("account_id", "integer", False)],
        )
        provider = SqlSnapshotProvider(self.customer_engine, self.SessionLocal)

        result = detect_changes(
            provider,
            MetadataView(),
            project_id=PROJECT_ID,
            tables=["invoices"],
            config=DetectionConfig(max_workers=1),
        )

        self.assertEqual(result.errors, [])
        fk = [c for c in result.candidates if c.change_type == "new_fk_pattern"]
        self.assertEqual(len(fk), 1)
        self.assertEqual((fk[0].from_column, fk[0].to_table, fk[0].to_column), ("account_id", "accounts", "id"))
        self.assertEqual(fk[0].confidence, 1.0)
        self.assertEqual(fk[0].new_value["source_distinct"], 1000)


    def test_missing_source_table_surfaces_as_transient_error(self) -> None:
        seed_table(self.db, PROJECT_ID, "payments", [("id", "integer", True)])

        with self.assertRaises(TransientStoreError):
            self.provider.get_table_snapshot(PROJECT_ID, "payments")

    def test_detection_over_sql_provider(self) -> None:
        seed_enum(self.db, PROJECT_ID, "orders", "status", ["active", "closed"], "admin")

        result = run_detection(
            self.db,
            PROJECT_ID,
            provider=self.provider,
            policy=review_policy(),
            settings=Settings(detection_max_workers=1),
        )

        self.assertEqual(result.errors, [])
        self.assertEqual(result.tables_scanned, 3)
        rows = list(self.db.scalars(select(PendingChange).order_by(PendingChange.change_type.asc())))
        self.assertEqual(
            [(row.change_type, row.status) for row in rows],
            [("new_enum_value", "pending"), ("new_fk_pattern", "pending")],
        )
        self.assertEqual(rows[0].new_value, "pending_review")
        self.assertEqual((rows[1].to_table, rows[1].to_column, rows[1].confidence), ("customers", "id", 1.0))


if __name__ == "__main__":
    unittest.main()
