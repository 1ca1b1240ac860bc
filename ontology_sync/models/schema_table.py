"""Schema registry table model carrying selection flags."""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ontology_sync.models.base import Base, CreatedAtMixin, IdMixin

if TYPE_CHECKING:
    from ontology_sync.models.schema_column import SchemaColumn


class SchemaTable(Base, IdMixin, CreatedAtMixin):
    """Customer database table known to a project."""

    __tablename__ = "schema_tables"
    __table_args__ = (UniqueConstraint("project_id", "table_name", name="uq_schema_tables_project_table"),)

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    schema_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_selected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    columns: Mapped[list["SchemaColumn"]] = relationship(
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="SchemaColumn.id",
    )
