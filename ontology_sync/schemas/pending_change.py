"""Pending change and review endpoint schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ChangeSource = Literal["admin", "automated_client", "inference"]


class PendingChangeRead(BaseModel):
    """Serialized pending change."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: str
    change_type: str
    table_name: str | None
    column_name: str | None
    from_table: str | None
    from_column: str | None
    to_table: str | None
    to_column: str | None
    old_value: Any | None
    new_value: Any
    confidence: float | None
    source: str
    status: str
    detected_at: datetime
    reviewed_at: datetime | None
    reviewed_by: str | None
    reviewer_source: str | None
    applied_at: datetime | None
    rejection_reason: str | None
    last_error: str | None
    created_at: datetime


class ChangeCounts(BaseModel):
    """Change totals per status; ``pending`` drives the review badge."""

    pending: int = 0
    approved: int = 0
    applied: int = 0
    rejected: int = 0


class ReviewRequest(BaseModel):
    """Reviewer identity for approve/reject/apply calls."""

    actor_id: str = Field(..., min_length=1)
    actor_source: ChangeSource
    reason: str | None = Field(default=None, max_length=1024)


class BulkReviewRequest(ReviewRequest):
    """Reviewer identity plus the change ids to act on."""

    ids: list[int] = Field(..., min_length=1)


class BulkReviewItemRead(BaseModel):
    """Outcome for one id of a bulk call."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    ok: bool
    status: str | None = None
    error: str | None = None
    detail: str | None = None


class BulkReviewResult(BaseModel):
    """Per-row outcomes of a bulk call."""

    succeeded: int
    failed: int
    items: list[BulkReviewItemRead]
