"""Change applier: mutates ontology metadata exactly once per approved change."""

from __future__ import annotations

import logging
from collections.abc import Callable
from time import perf_counter

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ontology_sync.models.pending_change import PendingChange
from ontology_sync.services.errors import ConflictError, TargetMissingError, TransientStoreError
from ontology_sync.services.ontology_store import (
    add_relationship,
    column_exists,
    get_column_metadata,
    set_column_enum_values,
)
from ontology_sync.services.pending_changes import get_change, record_apply_error, require_change, transition

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"
TARGET_MISSING_REASON = "target_missing"


def _apply_new_enum_value(db: Session, change: PendingChange, source: str) -> None:
    if not column_exists(db, change.project_id, change.table_name, change.column_name):
        raise TargetMissingError(f"Column {change.table_name}.{change.column_name} no longer exists")
    metadata = get_column_metadata(db, change.project_id, change.table_name, change.column_name)
    if metadata is None:
        raise TargetMissingError(f"No column metadata for {change.table_name}.{change.column_name}")

    values = list(metadata.enum_values_json or [])
    if change.new_value not in values:
        values.append(change.new_value)
    set_column_enum_values(db, change.project_id, change.table_name, change.column_name, values, source)


def _apply_new_fk_pattern(db: Session, change: PendingChange, source: str) -> None:
    for table_name, column_name in (
        (change.from_table, change.from_column),
        (change.to_table, change.to_column),
    ):
        if not column_exists(db, change.project_id, table_name, column_name):
            raise TargetMissingError(f"Column {table_name}.{column_name} no longer exists")
    add_relationship(
        db,
        change.project_id,
        change.from_table,
        change.from_column,
        change.to_table,
        change.to_column,
        source,
        confidence=change.confidence,
    )


APPLIERS: dict[str, Callable[[Session, PendingChange, str], None]] = {
    "new_enum_value": _apply_new_enum_value,
    "new_fk_pattern": _apply_new_fk_pattern,
}


def effective_source(change: PendingChange) -> str:
    """Writer class recorded on the metadata once this change lands."""

    return change.reviewer_source or change.source


def apply_change(
    db: Session,
    change_id: int,
    *,
    actor_id: str | None = None,
    expected_status: str | None = None,
) -> PendingChange:
    """Apply a pending (auto-apply path) or approved change.

    The metadata mutation and the transition to ``applied`` commit together.
    An already applied change is returned untouched. A vanished target
    rejects the change with ``target_missing``; store outages and lost insert
    races leave the row in its current status with ``last_error`` set.
    """

    started = perf_counter()
    change = require_change(db, change_id)
    if change.status == "applied":
        return change
    if change.status == "rejected":
        raise ConflictError(f"Change {change_id} was rejected and cannot be applied")

    current_status = expected_status or change.status
    applier = APPLIERS.get(change.change_type)
    if applier is None:
        raise ConflictError(f"No applier registered for change type {change.change_type}")

    try:
        applier(db, change, effective_source(change))
        applied = transition(db, change_id, "applied", expected_status=current_status)
        db.commit()
    except TargetMissingError:
        db.rollback()
        _reject_missing_target(db, change_id, current_status, actor_id=actor_id)
        raise
    except ConflictError:
        db.rollback()
        latest = get_change(db, change_id)
        if latest is not None and latest.status == "applied":
            db.refresh(latest)
            return latest
        raise
    except (OperationalError, PoolTimeoutError, IntegrityError) as exc:
        db.rollback()
        _record_failure(db, change_id, str(exc))
        raise TransientStoreError(f"Applying change {change_id} failed: {exc}") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        _record_failure(db, change_id, str(exc))
        raise

    logger.info(
        "change_applier.applied change_id=%s change_type=%s source=%s elapsed_ms=%.2f",
        change_id,
        applied.change_type,
        effective_source(applied),
        (perf_counter() - started) * 1000.0,
    )
    return applied


def _reject_missing_target(db: Session, change_id: int, current_status: str, *, actor_id: str | None) -> None:
    try:
        transition(
            db,
            change_id,
            "rejected",
            expected_status=current_status,
            actor_id=actor_id or SYSTEM_ACTOR_ID,
            reason=TARGET_MISSING_REASON,
        )
        db.commit()
    except (ConflictError, SQLAlchemyError):
        db.rollback()
        logger.exception("change_applier.target_missing_reject_failed change_id=%s", change_id)
        return
    logger.warning("change_applier.target_missing change_id=%s", change_id)


def _record_failure(db: Session, change_id: int, message: str) -> None:
    try:
        record_apply_error(db, change_id, message)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("change_applier.record_error_failed change_id=%s", change_id)
        return
    logger.warning("change_applier.transient_failure change_id=%s error=%s", change_id, message)
