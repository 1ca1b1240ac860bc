"""Ontology metadata store: column enum sets, relationships and their source tags."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from ontology_sync.models.column_metadata import ColumnMetadata
from ontology_sync.models.ontology_relationship import OntologyRelationship
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable
from ontology_sync.services.errors import TargetMissingError
from ontology_sync.services.precedence import PrecedencePolicy, highest_source

ColumnKey = tuple[str, str]


@dataclass(slots=True, frozen=True)
class ColumnMetadataView:
    """Detached copy of one column's metadata, safe to share across threads."""

    enum_values: tuple[str, ...]
    source: str | None


@dataclass(slots=True)
class MetadataView:
    """Read-only snapshot of a project's ontology metadata used during detection."""

    columns: dict[ColumnKey, ColumnMetadataView] = field(default_factory=dict)
    related_columns: set[ColumnKey] = field(default_factory=set)

    def enum_values(self, table_name: str, column_name: str) -> tuple[str, ...]:
        meta = self.columns.get((table_name, column_name))
        return meta.enum_values if meta is not None else ()

    def has_relationship(self, table_name: str, column_name: str) -> bool:
        return (table_name, column_name) in self.related_columns


def get_column_metadata(
    db: Session,
    project_id: str,
    table_name: str,
    column_name: str,
) -> ColumnMetadata | None:
    """Return the metadata row for one column, if any."""

    return db.scalar(
        select(ColumnMetadata).where(
            ColumnMetadata.project_id == project_id,
            ColumnMetadata.table_name == table_name,
            ColumnMetadata.column_name == column_name,
        )
    )


def set_column_enum_values(
    db: Session,
    project_id: str,
    table_name: str,
    column_name: str,
    values: list[str],
    source: str,
) -> ColumnMetadata:
    """Replace a column's enum set and record which writer class set it."""

    row = get_column_metadata(db, project_id, table_name, column_name)
    if row is None:
        raise TargetMissingError(f"No column metadata for {table_name}.{column_name}")
    row.enum_values_json = list(values)
    row.source = source
    db.flush()
    return row


def get_relationships(
    db: Session,
    project_id: str,
    table_name: str,
    column_name: str,
) -> list[OntologyRelationship]:
    """List relationships touching a column on either endpoint."""

    stmt = (
        select(OntologyRelationship)
        .where(
            OntologyRelationship.project_id == project_id,
            or_(
                and_(
                    OntologyRelationship.from_table == table_name,
                    OntologyRelationship.from_column == column_name,
                ),
                and_(
                    OntologyRelationship.to_table == table_name,
                    OntologyRelationship.to_column == column_name,
                ),
            ),
        )
        .order_by(OntologyRelationship.id.asc())
    )
    return list(db.scalars(stmt).all())


def add_relationship(
    db: Session,
    project_id: str,
    from_table: str,
    from_column: str,
    to_table: str,
    to_column: str,
    source: str,
    *,
    confidence: float | None = None,
) -> tuple[OntologyRelationship, bool]:
    """Create a relationship unless the identical one already exists."""

    existing = db.scalar(
        select(OntologyRelationship).where(
            OntologyRelationship.project_id == project_id,
            OntologyRelationship.from_table == from_table,
            OntologyRelationship.from_column == from_column,
            OntologyRelationship.to_table == to_table,
            OntologyRelationship.to_column == to_column,
        )
    )
    if existing is not None:
        return existing, False
    row = OntologyRelationship(
        project_id=project_id,
        from_table=from_table,
        from_column=from_column,
        to_table=to_table,
        to_column=to_column,
        source=source,
        confidence=confidence,
    )
    db.add(row)
    db.flush()
    return row, True


def column_exists(db: Session, project_id: str, table_name: str, column_name: str) -> bool:
    """Return whether the schema registry still knows the column."""

    column_id = db.scalar(
        select(SchemaColumn.id)
        .join(SchemaTable, SchemaTable.id == SchemaColumn.schema_table_id)
        .where(
            SchemaTable.project_id == project_id,
            SchemaTable.table_name == table_name,
            SchemaColumn.column_name == column_name,
        )
    )
    return column_id is not None


def load_metadata_view(db: Session, project_id: str) -> MetadataView:
    """Load every column's enum set and relationship endpoints for a project."""

    view = MetadataView()
    for row in db.scalars(select(ColumnMetadata).where(ColumnMetadata.project_id == project_id)):
        view.columns[(row.table_name, row.column_name)] = ColumnMetadataView(
            enum_values=tuple(row.enum_values_json or ()),
            source=row.source,
        )
    for rel in db.scalars(select(OntologyRelationship).where(OntologyRelationship.project_id == project_id)):
        view.related_columns.add((rel.from_table, rel.from_column))
        view.related_columns.add((rel.to_table, rel.to_column))
    return view


def current_target_source(
    db: Session,
    policy: PrecedencePolicy,
    *,
    project_id: str,
    change_type: str,
    table_name: str | None,
    column_name: str | None,
) -> str | None:
    """Return the source tag that currently owns the field a change targets."""

    if table_name is None or column_name is None:
        return None
    if change_type == "new_enum_value":
        row = get_column_metadata(db, project_id, table_name, column_name)
        return row.source if row is not None else None
    if change_type == "new_fk_pattern":
        relationships = get_relationships(db, project_id, table_name, column_name)
        return highest_source(policy, [rel.source for rel in relationships])
    return None
