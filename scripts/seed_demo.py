"""Seed a demo project's schema registry and ontology metadata.

Usage (from repository root):
    python scripts/seed_demo.py
    python scripts/seed_demo.py --customer-db demo_customer.sqlite

With ``--customer-db`` a small SQLite customer database is written too; point
SOURCE_DATABASE_URL at it (``sqlite:///demo_customer.sqlite``) and run
``scripts/run_detection.py`` to see drift being detected.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import create_engine, delete, select, text

# Make `ontology_sync` imports work without an editable install.
PROJECT_DIR = Path(__file__).resolve().parents[1]
if str(PROJECT_DIR) not in sys.path:
    sys.path.insert(0, str(PROJECT_DIR))

from ontology_sync.db.session import SessionLocal
from ontology_sync.models.column_metadata import ColumnMetadata
from ontology_sync.models.ontology_relationship import OntologyRelationship
from ontology_sync.models.pending_change import PendingChange
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable


DEFAULT_PROJECT_ID = "demo-shop"

DEMO_TABLES: dict[str, list[tuple[str, str, bool]]] = {
    "customers": [
        ("id", "integer", True),
        ("name", "text", False),
        ("tier", "varchar(32)", False),
    ],
    "orders": [
        ("id", "integer", True),
        ("customer_id", "integer", False),
        ("status", "varchar(32)", False),
        ("total_cents", "integer", False),
    ],
}

DEMO_ENUMS: list[tuple[str, str, list[str], str]] = [
    ("orders", "status", ["active", "closed"], "admin"),
    ("customers", "tier", ["bronze", "silver", "gold"], "inference"),
]


def reset_project(db, project_id: str) -> None:
    """Remove existing registry, metadata and change rows for the project."""

    db.execute(delete(PendingChange).where(PendingChange.project_id == project_id))
    db.execute(delete(OntologyRelationship).where(OntologyRelationship.project_id == project_id))
    db.execute(delete(ColumnMetadata).where(ColumnMetadata.project_id == project_id))
    for table in db.scalars(select(SchemaTable).where(SchemaTable.project_id == project_id)).all():
        db.delete(table)
    db.commit()


def seed_registry(db, project_id: str) -> None:
    for table_name, columns in DEMO_TABLES.items():
        table = SchemaTable(project_id=project_id, table_name=table_name, is_selected=True)
        table.columns = [
            SchemaColumn(column_name=name, data_type=data_type, is_primary_key=is_pk)
            for name, data_type, is_pk in columns
        ]
        db.add(table)
    for table_name, column_name, values, source in DEMO_ENUMS:
        db.add(
            ColumnMetadata(
                project_id=project_id,
                table_name=table_name,
                column_name=column_name,
                enum_values_json=values,
                source=source,
            )
        )
    db.commit()


def write_customer_db(path: Path) -> None:
    """Create a SQLite customer database that has drifted from the seeded ontology."""

    engine = create_engine(f"sqlite:///{path}", future=True)
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS orders"))
        conn.execute(text("DROP TABLE IF EXISTS customers"))
        conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, tier TEXT)"))
        conn.execute(
            text(
                "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, "
                "status TEXT, total_cents INTEGER)"
            )
        )
        conn.execute(
            text("INSERT INTO customers (id, name, tier) VALUES (:id, :name, :tier)"),
            [
                {"id": 1, "name": "Ada", "tier": "gold"},
                {"id": 2, "name": "Grace", "tier": "silver"},
                {"id": 3, "name": "Linus", "tier": "platinum"},
            ],
        )
        conn.execute(
            text(
                "INSERT INTO orders (id, customer_id, status, total_cents) "
                "VALUES (:id, :customer_id, :status, :total_cents)"
            ),
            [
                {"id": 10, "customer_id": 1, "status": "active", "total_cents": 1200},
                {"id": 11, "customer_id": 2, "status": "closed", "total_cents": 800},
                {"id": 12, "customer_id": 3, "status": "pending_review", "total_cents": 4300},
            ],
        )
    engine.dispose()


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo project's schema registry and ontology metadata.")
    parser.add_argument(
        "--project-id",
        default=DEFAULT_PROJECT_ID,
        help=f"Project ID to seed (default: {DEFAULT_PROJECT_ID})",
    )
    parser.add_argument(
        "--customer-db",
        type=Path,
        default=None,
        help="Also write a drifted SQLite customer database at this path.",
    )
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete existing rows for the project before seeding.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()
    project_id: str = args.project_id

    with SessionLocal() as db:
        if not args.no_reset:
            reset_project(db, project_id)
        seed_registry(db, project_id)

    if args.customer_db is not None:
        write_customer_db(args.customer_db)

    print("Seed complete")
    print(f"project_id={project_id}")
    print(f"tables={len(DEMO_TABLES)}")
    print(f"enum_columns={len(DEMO_ENUMS)}")
    if args.customer_db is not None:
        print(f"customer_db=sqlite:///{args.customer_db}")
    print()
    print("Next:")
    print(f"  python scripts/run_detection.py --project-id {project_id}")
    print(f"  GET /projects/{project_id}/changes")


if __name__ == "__main__":
    main()
