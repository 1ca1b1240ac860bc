"""Ontology column metadata model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from ontology_sync.models.base import Base, CreatedAtMixin, IdMixin


class ColumnMetadata(Base, IdMixin, CreatedAtMixin):
    """Semantic metadata for one column, including its known enum set."""

    __tablename__ = "column_metadata"
    __table_args__ = (
        UniqueConstraint("project_id", "table_name", "column_name", name="uq_column_metadata_target"),
    )

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    column_name: Mapped[str] = mapped_column(String(255), nullable=False)
    enum_values_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
