"""SQLAlchemy metadata registry import for Alembic."""

from ontology_sync.models import (
    ColumnMetadata,
    OntologyRelationship,
    PendingChange,
    SchemaColumn,
    SchemaTable,
)
from ontology_sync.models.base import Base

__all__ = ["Base", "SchemaTable", "SchemaColumn", "ColumnMetadata", "OntologyRelationship", "PendingChange"]
