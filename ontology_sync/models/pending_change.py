"""Pending ontology change model."""

from datetime import datetime
from typing import Any, Literal

from sqlalchemy import JSON, DateTime, Float, Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from ontology_sync.models.base import Base, CreatedAtMixin, IdMixin

ChangeType = Literal["new_enum_value", "new_fk_pattern"]
ChangeStatus = Literal["pending", "approved", "applied", "rejected"]
ChangeSource = Literal["admin", "automated_client", "inference"]

CHANGE_TYPES: tuple[str, ...] = ("new_enum_value", "new_fk_pattern")
CHANGE_STATUSES: tuple[str, ...] = ("pending", "approved", "applied", "rejected")
CHANGE_SOURCES: tuple[str, ...] = ("admin", "automated_client", "inference")


class PendingChange(Base, IdMixin, CreatedAtMixin):
    """Proposed mutation to ontology metadata awaiting (or past) review."""

    __tablename__ = "pending_changes"
    __table_args__ = (
        Index(
            "uq_pending_changes_pending_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_pending_changes_project_status", "project_id", "status"),
    )

    project_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    change_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    table_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    column_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    from_table: Mapped[str | None] = mapped_column(String(255), nullable=True)
    from_column: Mapped[str | None] = mapped_column(String(255), nullable=True)
    to_table: Mapped[str | None] = mapped_column(String(255), nullable=True)
    to_column: Mapped[str | None] = mapped_column(String(255), nullable=True)
    old_value: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Any] = mapped_column(JSON, nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)
    dedup_key: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewer_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
