"""Shared builders for change engine tests: SQLite engines, registry rows and a fake snapshot provider."""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ontology_sync.models.column_metadata import ColumnMetadata
from ontology_sync.models.ontology_relationship import OntologyRelationship
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable
from ontology_sync.services.precedence import PrecedencePolicy, SourcePolicy
from ontology_sync.services.snapshot import KeyMatch, SnapshotProviderInterface, TableSnapshot

DEFAULT_RANKS = {"admin": 3, "automated_client": 2, "inference": 1}


def make_sqlite_engine(path: str | None = None):
    """SQLite engine with real BEGIN/SAVEPOINT semantics.

    Without ``path`` every session shares one in-memory connection. Pass a
    file path when a test needs sessions on separate connections.
    """

    if path is None:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite+pysqlite:///{path}",
            future=True,
            connect_args={"check_same_thread": False, "timeout": 5},
        )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def review_policy(**overrides: SourcePolicy) -> PrecedencePolicy:
    """Default deployment policy: admins and clients review, nothing auto-applies."""

    sources = {
        "admin": SourcePolicy(can_review=True),
        "automated_client": SourcePolicy(can_review=True),
        "inference": SourcePolicy(),
    }
    sources.update(overrides)
    return PrecedencePolicy(ranks=dict(DEFAULT_RANKS), sources=sources)


def seed_table(
    db: Session,
    project_id: str,
    table_name: str,
    columns: list[tuple[str, str, bool]],
    *,
    is_selected: bool = True,
    deselected_columns: tuple[str, ...] = (),
) -> SchemaTable:
    table = SchemaTable(project_id=project_id, table_name=table_name, is_selected=is_selected)
    table.columns = [
        SchemaColumn(
            column_name=name,
            data_type=data_type,
            is_primary_key=is_pk,
            is_selected=name not in deselected_columns,
        )
        for name, data_type, is_pk in columns
    ]
    db.add(table)
    db.commit()
    return table


def seed_enum(
    db: Session,
    project_id: str,
    table_name: str,
    column_name: str,
    values: list[str],
    source: str | None,
) -> ColumnMetadata:
    row = ColumnMetadata(
        project_id=project_id,
        table_name=table_name,
        column_name=column_name,
        enum_values_json=list(values),
        source=source,
    )
    db.add(row)
    db.commit()
    return row


def seed_relationship(
    db: Session,
    project_id: str,
    from_table: str,
    from_column: str,
    to_table: str,
    to_column: str,
    source: str,
) -> OntologyRelationship:
    row = OntologyRelationship(
        project_id=project_id,
        from_table=from_table,
        from_column=from_column,
        to_table=to_table,
        to_column=to_column,
        source=source,
    )
    db.add(row)
    db.commit()
    return row


class FakeSnapshotProvider(SnapshotProviderInterface):
    """In-memory snapshot provider; ``failures`` maps table names to the error raised on snapshot."""

    def __init__(
        self,
        tables: list[TableSnapshot],
        *,
        failures: dict[str, Exception] | None = None,
        key_failures: dict[str, Exception] | None = None,
    ) -> None:
        self.tables = {snapshot.table_name: snapshot for snapshot in tables}
        self.failures = failures or {}
        self.key_failures = key_failures or {}
        self.snapshot_calls: list[str] = []

    def list_selected_tables(self, project_id: str) -> list[str]:
        return sorted(name for name, snapshot in self.tables.items() if snapshot.is_selected)

    def get_table_snapshot(self, project_id: str, table_name: str) -> TableSnapshot:
        self.snapshot_calls.append(table_name)
        if table_name in self.failures:
            raise self.failures[table_name]
        return self.tables[table_name]

    def count_matching_keys(self, project_id: str, table_name: str, values: list[str]) -> KeyMatch | None:
        if table_name in self.key_failures:
            raise self.key_failures[table_name]
        snapshot = self.tables.get(table_name)
        if snapshot is None or not snapshot.is_selected:
            return None
        key = snapshot.primary_key_column()
        if key is None:
            return None
        keys = set(key.distinct_values)
        return KeyMatch(column_name=key.column_name, matched=len(set(values) & keys))
