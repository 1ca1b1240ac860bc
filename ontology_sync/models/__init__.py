"""ORM models package exports."""

from ontology_sync.models.column_metadata import ColumnMetadata
from ontology_sync.models.ontology_relationship import OntologyRelationship
from ontology_sync.models.pending_change import PendingChange
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable

__all__ = [
    "SchemaTable",
    "SchemaColumn",
    "ColumnMetadata",
    "OntologyRelationship",
    "PendingChange",
]
