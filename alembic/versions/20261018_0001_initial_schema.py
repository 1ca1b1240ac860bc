"""initial ontology change schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "schema_tables",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=False),
        sa.Column("schema_name", sa.String(length=255), nullable=True),
        sa.Column("table_name", sa.String(length=255), nullable=False),
        sa.Column("is_selected", sa.Boolean(), nullable=False),
        sa.Column("row_count", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "table_name", name="uq_schema_tables_project_table"),
    )
    op.create_index("ix_schema_tables_project_id", "schema_tables", ["project_id"], unique=False)

    op.create_table(
        "schema_columns",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("schema_table_id", sa.Integer(), nullable=False),
        sa.Column("column_name", sa.String(length=255), nullable=False),
        sa.Column("data_type", sa.String(length=128), nullable=False),
        sa.Column("is_primary_key", sa.Boolean(), nullable=False),
        sa.Column("is_selected", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["schema_table_id"], ["schema_tables.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("schema_table_id", "column_name", name="uq_schema_columns_table_column"),
    )
    op.create_index("ix_schema_columns_schema_table_id", "schema_columns", ["schema_table_id"], unique=False)

    op.create_table(
        "column_metadata",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=False),
        sa.Column("table_name", sa.String(length=255), nullable=False),
        sa.Column("column_name", sa.String(length=255), nullable=False),
        sa.Column("enum_values_json", sa.JSON(), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "table_name", "column_name", name="uq_column_metadata_target"),
    )
    op.create_index("ix_column_metadata_project_id", "column_metadata", ["project_id"], unique=False)

    op.create_table(
        "ontology_relationships",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=False),
        sa.Column("from_table", sa.String(length=255), nullable=False),
        sa.Column("from_column", sa.String(length=255), nullable=False),
        sa.Column("to_table", sa.String(length=255), nullable=False),
        sa.Column("to_column", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "project_id",
            "from_table",
            "from_column",
            "to_table",
            "to_column",
            name="uq_ontology_relationships_endpoints",
        ),
    )
    op.create_index(
        "ix_ontology_relationships_project_id",
        "ontology_relationships",
        ["project_id"],
        unique=False,
    )

    op.create_table(
        "pending_changes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=False),
        sa.Column("change_type", sa.String(length=64), nullable=False),
        sa.Column("table_name", sa.String(length=255), nullable=True),
        sa.Column("column_name", sa.String(length=255), nullable=True),
        sa.Column("from_table", sa.String(length=255), nullable=True),
        sa.Column("from_column", sa.String(length=255), nullable=True),
        sa.Column("to_table", sa.String(length=255), nullable=True),
        sa.Column("to_column", sa.String(length=255), nullable=True),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("dedup_key", sa.String(length=64), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewer_source", sa.String(length=32), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=1024), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pending_changes_project_id", "pending_changes", ["project_id"], unique=False)
    op.create_index("ix_pending_changes_change_type", "pending_changes", ["change_type"], unique=False)
    op.create_index("ix_pending_changes_dedup_key", "pending_changes", ["dedup_key"], unique=False)
    op.create_index(
        "ix_pending_changes_project_status",
        "pending_changes",
        ["project_id", "status"],
        unique=False,
    )
    op.create_index(
        "uq_pending_changes_pending_dedup_key",
        "pending_changes",
        ["dedup_key"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_pending_changes_pending_dedup_key", table_name="pending_changes")
    op.drop_index("ix_pending_changes_project_status", table_name="pending_changes")
    op.drop_index("ix_pending_changes_dedup_key", table_name="pending_changes")
    op.drop_index("ix_pending_changes_change_type", table_name="pending_changes")
    op.drop_index("ix_pending_changes_project_id", table_name="pending_changes")
    op.drop_table("pending_changes")
    op.drop_index("ix_ontology_relationships_project_id", table_name="ontology_relationships")
    op.drop_table("ontology_relationships")
    op.drop_index("ix_column_metadata_project_id", table_name="column_metadata")
    op.drop_table("column_metadata")
    op.drop_index("ix_schema_columns_schema_table_id", table_name="schema_columns")
    op.drop_table("schema_columns")
    op.drop_index("ix_schema_tables_project_id", table_name="schema_tables")
    op.drop_table("schema_tables")
