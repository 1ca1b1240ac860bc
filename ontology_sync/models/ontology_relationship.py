"""Ontology column-to-column relationship model."""

from sqlalchemy import Float, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ontology_sync.models.base import Base, CreatedAtMixin, IdMixin


class OntologyRelationship(Base, IdMixin, CreatedAtMixin):
    """Foreign-key-like link between two columns."""

    __tablename__ = "ontology_relationships"
    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "from_table",
            "from_column",
            "to_table",
            "to_column",
            name="uq_ontology_relationships_endpoints",
        ),
    )

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    from_table: Mapped[str] = mapped_column(String(255), nullable=False)
    from_column: Mapped[str] = mapped_column(String(255), nullable=False)
    to_table: Mapped[str] = mapped_column(String(255), nullable=False)
    to_column: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
