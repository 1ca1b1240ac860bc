"""Schema registry column model."""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ontology_sync.models.base import Base, CreatedAtMixin, IdMixin

if TYPE_CHECKING:
    from ontology_sync.models.schema_table import SchemaTable


class SchemaColumn(Base, IdMixin, CreatedAtMixin):
    """Column of a registered table."""

    __tablename__ = "schema_columns"
    __table_args__ = (
        UniqueConstraint("schema_table_id", "column_name", name="uq_schema_columns_table_column"),
    )

    schema_table_id: Mapped[int] = mapped_column(
        ForeignKey("schema_tables.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    column_name: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(128), default="text", nullable=False)
    is_primary_key: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_selected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    table: Mapped["SchemaTable"] = relationship(back_populates="columns")
