"""Schema snapshot provider interface and a SQL-backed reference implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache

from sqlalchemy import Engine, column, create_engine, func, select, table, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ontology_sync.config import get_settings
from ontology_sync.models.schema_table import SchemaTable
from ontology_sync.services.errors import TransientStoreError


class SnapshotProviderNotConfiguredError(RuntimeError):
    """No customer database is configured for snapshot sampling."""


@dataclass(slots=True)
class ColumnSnapshot:
    """Sampled state of one column."""

    column_name: str
    data_type: str = "text"
    is_primary_key: bool = False
    is_selected: bool = True
    distinct_values: list[str] = field(default_factory=list)
    fk_target_table: str | None = None


@dataclass(slots=True)
class KeyMatch:
    """How many probed values exist in a table's key column."""

    column_name: str
    matched: int = 0


@dataclass(slots=True)
class TableSnapshot:
    """Sampled state of one table at scan time."""

    table_name: str
    is_selected: bool = True
    row_count: int | None = None
    columns: list[ColumnSnapshot] = field(default_factory=list)

    def primary_key_column(self) -> ColumnSnapshot | None:
        pk = next((col for col in self.columns if col.is_primary_key), None)
        if pk is not None:
            return pk
        return next((col for col in self.columns if col.column_name == "id"), None)


class SnapshotProviderInterface(ABC):
    """Read-only view of the customer database restricted to selected tables."""

    @abstractmethod
    def list_selected_tables(self, project_id: str) -> list[str]:
        """Return the names of the project's currently selected tables."""

    @abstractmethod
    def get_table_snapshot(self, project_id: str, table_name: str) -> TableSnapshot:
        """Sample distinct values for every selected column of one table."""

    @abstractmethod
    def count_matching_keys(self, project_id: str, table_name: str, values: list[str]) -> KeyMatch | None:
        """Count distinct ``values`` present in a selected table's key column.

        Returns None when the table is unregistered, deselected or has no usable key.
        """

    def get_selected_snapshot(self, project_id: str, tables: list[str] | None = None) -> list[TableSnapshot]:
        """Snapshot every selected table, optionally narrowed to ``tables``."""

        selected = self.list_selected_tables(project_id)
        if tables is not None:
            wanted = set(tables)
            selected = [name for name in selected if name in wanted]
        return [self.get_table_snapshot(project_id, name) for name in selected]


class SqlSnapshotProvider(SnapshotProviderInterface):
    """Samples the customer database, using the schema registry for selection."""

    def __init__(
        self,
        source_engine: Engine,
        session_factory: Callable[[], Session],
        *,
        distinct_limit: int | None = None,
        statement_timeout_ms: int | None = None,
    ) -> None:
        settings = get_settings()
        self._engine = source_engine
        self._session_factory = session_factory
        self._distinct_limit = distinct_limit or max(
            settings.max_distinct_values_for_enum + 1,
            settings.fk_sample_limit,
        )
        self._statement_timeout_ms = statement_timeout_ms or settings.snapshot_statement_timeout_ms

    def list_selected_tables(self, project_id: str) -> list[str]:
        with self._session_factory() as db:
            return list(
                db.scalars(
                    select(SchemaTable.table_name)
                    .where(SchemaTable.project_id == project_id, SchemaTable.is_selected.is_(True))
                    .order_by(SchemaTable.table_name.asc())
                ).all()
            )

    def get_table_snapshot(self, project_id: str, table_name: str) -> TableSnapshot:
        with self._session_factory() as db:
            registered = db.scalar(
                select(SchemaTable).where(
                    SchemaTable.project_id == project_id,
                    SchemaTable.table_name == table_name,
                )
            )
            if registered is None:
                raise LookupError(f"Table {table_name} is not registered for project {project_id}")
            schema_name = registered.schema_name
            snapshot = TableSnapshot(table_name=table_name, is_selected=registered.is_selected)
            selected_columns = [
                (col.column_name, col.data_type, col.is_primary_key)
                for col in registered.columns
                if col.is_selected
            ]

        if not snapshot.is_selected:
            return snapshot

        target = table(table_name, *(column(name) for name, _, _ in selected_columns), schema=schema_name)
        try:
            with self._engine.connect() as conn:
                self._apply_timeout(conn)
                snapshot.row_count = int(conn.execute(select(func.count()).select_from(target)).scalar_one())
                for name, data_type, is_primary_key in selected_columns:
                    values = self._distinct_values(conn, target, name, self._distinct_limit)
                    snapshot.columns.append(
                        ColumnSnapshot(
                            column_name=name,
                            data_type=data_type,
                            is_primary_key=is_primary_key,
                            distinct_values=values,
                        )
                    )
        except (OperationalError, PoolTimeoutError) as exc:
            raise TransientStoreError(f"Snapshot query failed for {table_name}: {exc}") from exc
        return snapshot

    def count_matching_keys(self, project_id: str, table_name: str, values: list[str]) -> KeyMatch | None:
        with self._session_factory() as db:
            registered = db.scalar(
                select(SchemaTable).where(
                    SchemaTable.project_id == project_id,
                    SchemaTable.table_name == table_name,
                )
            )
            if registered is None or not registered.is_selected:
                return None
            schema_name = registered.schema_name
            key_column = next((col.column_name for col in registered.columns if col.is_primary_key), None)
            if key_column is None:
                key_column = next((col.column_name for col in registered.columns if col.column_name == "id"), None)
        if key_column is None:
            return None
        if not values:
            return KeyMatch(column_name=key_column)

        target = table(table_name, column(key_column), schema=schema_name)
        key = target.c[key_column]
        try:
            with self._engine.connect() as conn:
                self._apply_timeout(conn)
                matched = conn.execute(
                    select(func.count(key.distinct())).where(key.in_(list(dict.fromkeys(values))))
                ).scalar_one()
        except (OperationalError, PoolTimeoutError) as exc:
            raise TransientStoreError(f"Key match failed for {table_name}.{key_column}: {exc}") from exc
        return KeyMatch(column_name=key_column, matched=int(matched))

    def _apply_timeout(self, conn) -> None:
        if conn.dialect.name == "postgresql":
            conn.execute(text(f"SET LOCAL statement_timeout = {int(self._statement_timeout_ms)}"))

    @staticmethod
    def _distinct_values(conn, target, column_name: str, limit: int) -> list[str]:
        col = target.c[column_name]
        rows = conn.execute(
            select(col).where(col.is_not(None)).distinct().order_by(col).limit(limit)
        ).scalars()
        return [str(value) for value in rows]


@lru_cache
def _source_engine(source_database_url: str) -> Engine:
    return create_engine(source_database_url, future=True, pool_pre_ping=True)


def get_default_snapshot_provider() -> SqlSnapshotProvider:
    """Return the SQL snapshot provider for the configured customer database."""

    from ontology_sync.db.session import SessionLocal

    settings = get_settings()
    if not settings.source_database_url:
        raise SnapshotProviderNotConfiguredError(
            "SOURCE_DATABASE_URL is not configured. Set it in .env before running detection."
        )
    return SqlSnapshotProvider(_source_engine(settings.source_database_url), SessionLocal)
