"""Review surface services: list, approve, reject and bulk operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ontology_sync.models.pending_change import CHANGE_SOURCES, CHANGE_STATUSES, CHANGE_TYPES, PendingChange
from ontology_sync.services import pending_changes
from ontology_sync.services.change_applier import apply_change
from ontology_sync.services.errors import (
    AlreadyReviewedError,
    ConflictError,
    OntologyChangeError,
    TransientStoreError,
    UnauthorizedError,
    ValidationError,
)
from ontology_sync.services.ontology_store import current_target_source
from ontology_sync.services.precedence import PrecedencePolicy

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Actor:
    """Reviewer identity plus the writer class it acts as."""

    id: str
    source: str


@dataclass(slots=True)
class BulkReviewItem:
    """Per-row outcome of a bulk review call."""

    id: int
    ok: bool
    status: str | None = None
    error: str | None = None
    detail: str | None = None


def _validate_actor(actor: Actor) -> None:
    if not actor.id or not actor.id.strip():
        raise ValidationError("actor id is required")
    if actor.source not in CHANGE_SOURCES:
        raise ValidationError(f"Unknown actor source: {actor.source}")


def _check_review_rights(db: Session, change: PendingChange, actor: Actor, policy: PrecedencePolicy) -> None:
    target_source = current_target_source(
        db,
        policy,
        project_id=change.project_id,
        change_type=change.change_type,
        table_name=change.table_name,
        column_name=change.column_name,
    )
    if not policy.can_review(actor.source, target_source):
        raise UnauthorizedError(
            f"{actor.source} may not review change {change.id} (target last set by {target_source})"
        )


def _commit_review(
    db: Session,
    change_id: int,
    new_status: str,
    actor: Actor,
    reason: str | None = None,
) -> PendingChange:
    try:
        reviewed = pending_changes.transition(
            db,
            change_id,
            new_status,
            expected_status="pending",
            actor_id=actor.id,
            actor_source=actor.source,
            reason=reason,
        )
        db.commit()
    except OntologyChangeError:
        db.rollback()
        raise
    except (OperationalError, PoolTimeoutError) as exc:
        db.rollback()
        raise TransientStoreError(f"Reviewing change {change_id} failed: {exc}") from exc
    except SQLAlchemyError:
        db.rollback()
        raise
    return reviewed


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
    """List a project's changes; deselected targets are hidden by default."""

    if status is not None and status not in CHANGE_STATUSES:
        raise ValidationError(f"Unknown status filter: {status}")
    if change_type is not None and change_type not in CHANGE_TYPES:
        raise ValidationError(f"Unknown change type filter: {change_type}")
    if source is not None and source not in CHANGE_SOURCES:
        raise ValidationError(f"Unknown source filter: {source}")
    return pending_changes.list_changes(
        db,
        project_id,
        status=status,
        table=table,
        change_type=change_type,
        source=source,
        include_deselected=include_deselected,
        limit=limit,
        offset=offset,
    )


def count_changes(db: Session, project_id: str, *, include_deselected: bool = False) -> dict[str, int]:
    return pending_changes.count_changes_by_status(db, project_id, include_deselected=include_deselected)


def get_change(db: Session, change_id: int, *, project_id: str | None = None) -> PendingChange:
    return pending_changes.require_change(db, change_id, project_id=project_id)


def approve_change(
    db: Session,
    change_id: int,
    actor: Actor,
    *,
    project_id: str | None = None,
    policy: PrecedencePolicy | None = None,
) -> PendingChange:
    """Approve a pending change and apply it synchronously.

    The approval is committed before apply runs, so a transient apply failure
    leaves the row ``approved`` and retryable through ``retry_apply``.
    """

    _validate_actor(actor)
    policy = policy or PrecedencePolicy.from_settings()
    change = pending_changes.require_change(db, change_id, project_id=project_id)
    if change.status != "pending":
        raise AlreadyReviewedError(f"Change {change_id} was already reviewed (status: {change.status})")
    _check_review_rights(db, change, actor, policy)

    _commit_review(db, change_id, "approved", actor)
    logger.info("change_review.approved change_id=%s actor=%s source=%s", change_id, actor.id, actor.source)
    return apply_change(db, change_id, actor_id=actor.id, expected_status="approved")


def reject_change(
    db: Session,
    change_id: int,
    actor: Actor,
    reason: str | None = None,
    *,
    project_id: str | None = None,
    policy: PrecedencePolicy | None = None,
) -> PendingChange:
    """Reject a pending change. Metadata is never touched."""

    _validate_actor(actor)
    policy = policy or PrecedencePolicy.from_settings()
    change = pending_changes.require_change(db, change_id, project_id=project_id)
    if change.status != "pending":
        raise AlreadyReviewedError(f"Change {change_id} was already reviewed (status: {change.status})")
    _check_review_rights(db, change, actor, policy)

    rejected = _commit_review(db, change_id, "rejected", actor, reason)
    logger.info("change_review.rejected change_id=%s actor=%s source=%s", change_id, actor.id, actor.source)
    return rejected


def retry_apply(
    db: Session,
    change_id: int,
    actor: Actor,
    *,
    project_id: str | None = None,
    policy: PrecedencePolicy | None = None,
) -> PendingChange:
    """Re-run apply for an approved change left unapplied by a transient failure."""

    _validate_actor(actor)
    policy = policy or PrecedencePolicy.from_settings()
    if not policy.policy_for(actor.source).can_review:
        raise UnauthorizedError(f"{actor.source} may not apply reviewed changes")
    change = pending_changes.require_change(db, change_id, project_id=project_id)
    if change.status == "applied":
        return change
    if change.status != "approved":
        raise ConflictError(f"Change {change_id} is {change.status}; only approved changes can be re-applied")
    return apply_change(db, change_id, actor_id=actor.id, expected_status="approved")


def _current_status(db: Session, change_id: int, project_id: str | None) -> str | None:
    try:
        current = pending_changes.get_change(db, change_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("change_review.status_lookup_failed change_id=%s error=%s", change_id, exc)
        return None
    if current is None or (project_id is not None and current.project_id != project_id):
        return None
    return current.status


def _bulk(db: Session, ids: list[int], operation, *, project_id: str | None) -> list[BulkReviewItem]:
    items: list[BulkReviewItem] = []
    for change_id in dict.fromkeys(ids):
        try:
            change = operation(change_id)
        except OntologyChangeError as exc:
            db.rollback()
            error, detail = exc.code, str(exc)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("change_review.bulk_row_failed change_id=%s error=%s", change_id, exc)
            error, detail = TransientStoreError.code, str(exc)
        else:
            items.append(BulkReviewItem(id=change_id, ok=True, status=change.status))
            continue
        items.append(
            BulkReviewItem(
                id=change_id,
                ok=False,
                status=_current_status(db, change_id, project_id),
                error=error,
                detail=detail,
            )
        )
    return items


def bulk_approve(
    db: Session,
    ids: list[int],
    actor: Actor,
    *,
    project_id: str | None = None,
    policy: PrecedencePolicy | None = None,
) -> list[BulkReviewItem]:
    """Approve each id independently; one row's failure never affects another."""

    _validate_actor(actor)
    policy = policy or PrecedencePolicy.from_settings()
    return _bulk(
        db,
        ids,
        lambda change_id: approve_change(db, change_id, actor, project_id=project_id, policy=policy),
        project_id=project_id,
    )


def bulk_reject(
    db: Session,
    ids: list[int],
    actor: Actor,
    reason: str | None = None,
    *,
    project_id: str | None = None,
    policy: PrecedencePolicy | None = None,
) -> list[BulkReviewItem]:
    _validate_actor(actor)
    policy = policy or PrecedencePolicy.from_settings()
    return _bulk(
        db,
        ids,
        lambda change_id: reject_change(db, change_id, actor, reason, project_id=project_id, policy=policy),
        project_id=project_id,
    )


def approve_all_pending(
    db: Session,
    project_id: str,
    actor: Actor,
    *,
    policy: PrecedencePolicy | None = None,
) -> list[BulkReviewItem]:
    """Approve every visible pending change of a project."""

    ids = pending_changes.list_pending_ids(db, project_id)
    return bulk_approve(db, ids, actor, project_id=project_id, policy=policy)


def reject_all_pending(
    db: Session,
    project_id: str,
    actor: Actor,
    reason: str | None = None,
    *,
    policy: PrecedencePolicy | None = None,
) -> list[BulkReviewItem]:
    """Reject every visible pending change of a project."""

    ids = pending_changes.list_pending_ids(db, project_id)
    return bulk_reject(db, ids, actor, reason, project_id=project_id, policy=policy)
