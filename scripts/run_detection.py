"""Run one detection pass for a project and print the summary.

Usage (from repository root):
    python scripts/run_detection.py --project-id demo-shop
    python scripts/run_detection.py --project-id demo-shop --table orders --source automated_client
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Make `ontology_sync` imports work without an editable install.
PROJECT_DIR = Path(__file__).resolve().parents[1]
if str(PROJECT_DIR) not in sys.path:
    sys.path.insert(0, str(PROJECT_DIR))

from ontology_sync.db.session import SessionLocal
from ontology_sync.models.pending_change import CHANGE_SOURCES
from ontology_sync.services.change_detection import run_detection


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Run change detection for one project.")
    parser.add_argument("--project-id", required=True, help="Project whose selected tables are scanned.")
    parser.add_argument(
        "--table",
        dest="tables",
        action="append",
        default=None,
        help="Restrict the pass to this table (repeatable).",
    )
    parser.add_argument(
        "--source",
        choices=CHANGE_SOURCES,
        default="inference",
        help="Writer class the detected changes are attributed to (default: inference).",
    )
    parser.add_argument("--verbose", action="store_true", help="Log timing and per-table events.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    with SessionLocal() as db:
        result = run_detection(db, args.project_id, tables=args.tables, source=args.source)

    print("Detection complete")
    print(f"project_id={args.project_id}")
    print(f"tables_scanned={result.tables_scanned}")
    print(f"created={result.created}")
    print(f"updated={result.updated}")
    print(f"auto_applied={result.auto_applied}")
    print(f"unauthorized={result.unauthorized}")
    for error in result.errors:
        print(f"error table={error.table} detail={error.error}")
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
