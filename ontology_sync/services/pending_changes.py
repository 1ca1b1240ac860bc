"""Pending change store: deduplicated upsert, filtered listing and guarded transitions."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ontology_sync.models.pending_change import CHANGE_SOURCES, CHANGE_STATUSES, PendingChange
from ontology_sync.models.schema_column import SchemaColumn
from ontology_sync.models.schema_table import SchemaTable
from ontology_sync.services.errors import (
    AlreadyReviewedError,
    ChangeNotFoundError,
    ConflictError,
    ValidationError,
)

REVIEWED_STATUSES = ("approved", "rejected")
_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"approved", "rejected", "applied"}),
    "approved": frozenset({"applied", "rejected"}),
}


@dataclass(slots=True)
class ChangeCandidate:
    """Change proposed by a detector or client, before persistence."""

    project_id: str
    change_type: str
    source: str
    new_value: Any
    table_name: str | None = None
    column_name: str | None = None
    from_table: str | None = None
    from_column: str | None = None
    to_table: str | None = None
    to_column: str | None = None
    old_value: Any | None = None
    confidence: float | None = None


@dataclass(slots=True)
class RecordResult:
    """Outcome of recording one candidate."""

    change: PendingChange
    created: bool


def _enum_key_parts(candidate: ChangeCandidate) -> list[object]:
    return [candidate.table_name, candidate.column_name, candidate.new_value]


def _fk_key_parts(candidate: ChangeCandidate) -> list[object]:
    return [candidate.from_table, candidate.from_column, candidate.to_table, candidate.to_column]


def _validate_enum_candidate(candidate: ChangeCandidate) -> None:
    if not candidate.table_name or not candidate.column_name:
        raise ValidationError("new_enum_value requires table and column")
    if not isinstance(candidate.new_value, str) or not candidate.new_value:
        raise ValidationError("new_enum_value requires a non-empty string new_value")


def _validate_fk_candidate(candidate: ChangeCandidate) -> None:
    endpoints = (candidate.from_table, candidate.from_column, candidate.to_table, candidate.to_column)
    if not all(endpoints):
        raise ValidationError("new_fk_pattern requires from_table, from_column, to_table and to_column")
    if candidate.confidence is None or not 0.0 <= candidate.confidence <= 1.0:
        raise ValidationError("new_fk_pattern requires a confidence between 0 and 1")


# Registering a new change type means adding an entry to each of these maps.
DEDUP_KEY_PARTS: dict[str, Callable[[ChangeCandidate], list[object]]] = {
    "new_enum_value": _enum_key_parts,
    "new_fk_pattern": _fk_key_parts,
}
CANDIDATE_VALIDATORS: dict[str, Callable[[ChangeCandidate], None]] = {
    "new_enum_value": _validate_enum_candidate,
    "new_fk_pattern": _validate_fk_candidate,
}


def validate_candidate(candidate: ChangeCandidate) -> None:
    """Reject malformed candidates before they reach storage."""

    if not candidate.project_id or not candidate.project_id.strip():
        raise ValidationError("project_id is required")
    validator = CANDIDATE_VALIDATORS.get(candidate.change_type)
    if validator is None:
        raise ValidationError(f"Unknown change type: {candidate.change_type}")
    if candidate.source not in CHANGE_SOURCES:
        raise ValidationError(f"Unknown change source: {candidate.source}")
    validator(candidate)


def build_dedup_key(candidate: ChangeCandidate) -> str:
    """Stable digest identifying "the same drift" across rescans."""

    parts = [candidate.project_id, candidate.change_type, *DEDUP_KEY_PARTS[candidate.change_type](candidate)]
    encoded = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def record_candidate(db: Session, candidate: ChangeCandidate, *, now: datetime | None = None) -> RecordResult:
    """Upsert a candidate by dedup key.

    An existing pending row only has ``detected_at`` refreshed. Applied or
    rejected rows never suppress re-detection: a fresh pending row is created.
    Callers own the transaction.
    """

    validate_candidate(candidate)
    dedup_key = build_dedup_key(candidate)
    detected_at = now or datetime.now(timezone.utc)

    refreshed = _refresh_pending(db, dedup_key, detected_at)
    if refreshed is not None:
        return RecordResult(change=refreshed, created=False)

    row = PendingChange(
        project_id=candidate.project_id,
        change_type=candidate.change_type,
        table_name=candidate.table_name,
        column_name=candidate.column_name,
        from_table=candidate.from_table,
        from_column=candidate.from_column,
        to_table=candidate.to_table,
        to_column=candidate.to_column,
        old_value=candidate.old_value,
        new_value=candidate.new_value,
        confidence=candidate.confidence,
        source=candidate.source,
        status="pending",
        dedup_key=dedup_key,
        detected_at=detected_at,
    )
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        # Another writer inserted the same pending drift first.
        refreshed = _refresh_pending(db, dedup_key, detected_at)
        if refreshed is None:
            raise ConflictError(f"Concurrent insert for dedup key {dedup_key} could not be reconciled")
        return RecordResult(change=refreshed, created=False)
    return RecordResult(change=row, created=True)


def _refresh_pending(db: Session, dedup_key: str, detected_at: datetime) -> PendingChange | None:
    existing_id = db.scalar(
        select(PendingChange.id).where(
            PendingChange.dedup_key == dedup_key,
            PendingChange.status == "pending",
        )
    )
    if existing_id is None:
        return None
    result = db.execute(
        update(PendingChange)
        .where(PendingChange.id == existing_id, PendingChange.status == "pending")
        .values(detected_at=detected_at)
    )
    if result.rowcount == 0:
        return None
    return db.get(PendingChange, existing_id, populate_existing=True)


def get_change(db: Session, change_id: int) -> PendingChange | None:
    """Fetch one pending change by id."""

    return db.scalar(select(PendingChange).where(PendingChange.id == change_id))


def require_change(db: Session, change_id: int, *, project_id: str | None = None) -> PendingChange:
    """Fetch one pending change or raise ``ChangeNotFoundError``."""

    change = get_change(db, change_id)
    if change is None or (project_id is not None and change.project_id != project_id):
        raise ChangeNotFoundError(f"Pending change {change_id} not found")
    return change


def _deselected_table(table_col):
    return (
        select(SchemaTable.id)
        .where(
            SchemaTable.project_id == PendingChange.project_id,
            SchemaTable.table_name == table_col,
            SchemaTable.is_selected.is_(False),
        )
        .exists()
    )


def _deselected_column(table_col, column_col):
    return (
        select(SchemaColumn.id)
        .join(SchemaTable, SchemaTable.id == SchemaColumn.schema_table_id)
        .where(
            SchemaTable.project_id == PendingChange.project_id,
            SchemaTable.table_name == table_col,
            SchemaColumn.column_name == column_col,
            SchemaColumn.is_selected.is_(False),
        )
        .exists()
    )


def _visible_only(stmt):
    # Relationship changes are hidden when either endpoint is deselected.
    return stmt.where(
        ~_deselected_table(PendingChange.table_name),
        ~_deselected_column(PendingChange.table_name, PendingChange.column_name),
        ~_deselected_table(PendingChange.to_table),
        ~_deselected_column(PendingChange.to_table, PendingChange.to_column),
    )


def list_changes(
    db: Session,
    project_id: str,
    *,
    status: str | None = None,
    table: str | None = None,
    change_type: str | None = None,
    source: str | None = None,
    include_deselected: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[PendingChange]:
    """List changes for a project, newest detection first.

    Changes targeting tables or columns that are currently deselected are
    hidden unless ``include_deselected`` is set. They are never deleted.
    """

    stmt = select(PendingChange).where(PendingChange.project_id == project_id)
    if status is not None:
        stmt = stmt.where(PendingChange.status == status)
    if table is not None:
        stmt = stmt.where(PendingChange.table_name == table)
    if change_type is not None:
        stmt = stmt.where(PendingChange.change_type == change_type)
    if source is not None:
        stmt = stmt.where(PendingChange.source == source)
    if not include_deselected:
        stmt = _visible_only(stmt)
    stmt = stmt.order_by(PendingChange.detected_at.desc(), PendingChange.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).all())


def count_changes_by_status(
    db: Session,
    project_id: str,
    *,
    include_deselected: bool = False,
) -> dict[str, int]:
    """Count a project's changes per status (zero-filled)."""

    stmt = (
        select(PendingChange.status, func.count(PendingChange.id))
        .where(PendingChange.project_id == project_id)
        .group_by(PendingChange.status)
    )
    if not include_deselected:
        stmt = _visible_only(stmt)
    counts = {status: 0 for status in CHANGE_STATUSES}
    for status, count in db.execute(stmt).all():
        counts[status] = int(count)
    return counts


def transition(
    db: Session,
    change_id: int,
    new_status: str,
    *,
    expected_status: str,
    actor_id: str | None = None,
    actor_source: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> PendingChange:
    """Compare-and-set a change from ``expected_status`` to ``new_status``.

    The guarded UPDATE is the only serialization point, so concurrent
    reviewers on separate replicas cannot both win. Callers own the
    transaction.
    """

    if new_status not in _ALLOWED_TRANSITIONS.get(expected_status, frozenset()):
        raise ConflictError(f"Cannot move change {change_id} from {expected_status} to {new_status}")

    timestamp = now or datetime.now(timezone.utc)
    values: dict[str, object] = {"status": new_status}
    if expected_status == "pending" and new_status in REVIEWED_STATUSES:
        if not actor_id:
            raise ValidationError("A reviewer identity is required to approve or reject a change")
        values["reviewed_at"] = timestamp
        values["reviewed_by"] = actor_id
        values["reviewer_source"] = actor_source
    if new_status == "rejected":
        values["rejection_reason"] = reason
    if new_status == "applied":
        values["applied_at"] = timestamp
        values["last_error"] = None

    result = db.execute(
        update(PendingChange)
        .where(PendingChange.id == change_id, PendingChange.status == expected_status)
        .values(**values)
    )
    if result.rowcount == 0:
        current_status = db.scalar(select(PendingChange.status).where(PendingChange.id == change_id))
        if current_status is None:
            raise ChangeNotFoundError(f"Pending change {change_id} not found")
        if expected_status == "pending":
            raise AlreadyReviewedError(f"Change {change_id} was already reviewed (status: {current_status})")
        raise ConflictError(
            f"Change {change_id} is {current_status}, expected {expected_status}"
        )
    return db.get(PendingChange, change_id, populate_existing=True)


def record_apply_error(db: Session, change_id: int, message: str) -> None:
    """Attach a retryable apply failure to a change without touching its status."""

    db.execute(
        update(PendingChange)
        .where(PendingChange.id == change_id)
        .values(last_error=message[:4000])
    )


def list_pending_ids(db: Session, project_id: str, *, include_deselected: bool = False) -> list[int]:
    """Ids of every pending change of a project, oldest detection first."""

    stmt = select(PendingChange.id).where(
        PendingChange.project_id == project_id,
        PendingChange.status == "pending",
    )
    if not include_deselected:
        stmt = _visible_only(stmt)
    stmt = stmt.order_by(PendingChange.detected_at.asc(), PendingChange.id.asc())
    return list(db.scalars(stmt).all())
