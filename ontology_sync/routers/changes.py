"""Pending change review routes."""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from ontology_sync.db.dependencies import get_db
from ontology_sync.routers.errors import to_http_exception
from ontology_sync.schemas.common import ApiResponse
from ontology_sync.schemas.pending_change import (
    BulkReviewItemRead,
    BulkReviewRequest,
    BulkReviewResult,
    ChangeCounts,
    PendingChangeRead,
    ReviewRequest,
)
from ontology_sync.services.change_review import (
    Actor,
    BulkReviewItem,
    approve_all_pending,
    approve_change,
    bulk_approve,
    bulk_reject,
    count_changes,
    get_change,
    list_changes,
    reject_all_pending,
    reject_change,
    retry_apply,
)
from ontology_sync.services.errors import OntologyChangeError

router = APIRouter(prefix="/projects/{project_id}")


def _bulk_result(items: list[BulkReviewItem]) -> BulkReviewResult:
    succeeded = sum(1 for item in items if item.ok)
    return BulkReviewResult(
        succeeded=succeeded,
        failed=len(items) - succeeded,
        items=[BulkReviewItemRead.model_validate(item) for item in items],
    )


@router.get("/changes", response_model=ApiResponse[list[PendingChangeRead]])
def get_changes(
    project_id: str = Path(..., min_length=1),
    status: str | None = Query(default=None),
    table: str | None = Query(default=None),
    change_type: str | None = Query(default=None),
    source: str | None = Query(default=None),
    include_deselected: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> ApiResponse[list[PendingChangeRead]]:
    """List changes for a project, hiding deselected targets unless asked."""

    try:
        rows = list_changes(
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
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=[PendingChangeRead.model_validate(row) for row in rows])


@router.get("/changes/counts", response_model=ApiResponse[ChangeCounts])
def get_change_counts(
    project_id: str = Path(..., min_length=1),
    include_deselected: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> ApiResponse[ChangeCounts]:
    """Return change totals per status."""

    return ApiResponse(data=ChangeCounts(**count_changes(db, project_id, include_deselected=include_deselected)))


@router.get("/changes/{change_id}", response_model=ApiResponse[PendingChangeRead])
def get_change_detail(
    project_id: str = Path(..., min_length=1),
    change_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[PendingChangeRead]:
    """Return one change."""

    try:
        change = get_change(db, change_id, project_id=project_id)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=PendingChangeRead.model_validate(change))


@router.post("/changes/bulk-approve", response_model=ApiResponse[BulkReviewResult])
def post_bulk_approve(
    payload: BulkReviewRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkReviewResult]:
    """Approve and apply several changes; each row succeeds or fails on its own."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        items = bulk_approve(db, payload.ids, actor, project_id=project_id)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=_bulk_result(items))


@router.post("/changes/bulk-reject", response_model=ApiResponse[BulkReviewResult])
def post_bulk_reject(
    payload: BulkReviewRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkReviewResult]:
    """Reject several changes; each row succeeds or fails on its own."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        items = bulk_reject(db, payload.ids, actor, payload.reason, project_id=project_id)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=_bulk_result(items))


@router.post("/changes/approve-all", response_model=ApiResponse[BulkReviewResult])
def post_approve_all(
    payload: ReviewRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkReviewResult]:
    """Approve every visible pending change of the project."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        items = approve_all_pending(db, project_id, actor)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=_bulk_result(items))


@router.post("/changes/reject-all", response_model=ApiResponse[BulkReviewResult])
def post_reject_all(
    payload: ReviewRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkReviewResult]:
    """Reject every visible pending change of the project."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        items = reject_all_pending(db, project_id, actor, payload.reason)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=_bulk_result(items))


@router.post("/changes/{change_id}/approve", response_model=ApiResponse[PendingChangeRead])
def post_approve(
    payload: ReviewRequest,
    project_id: str = Path(..., min_length=1),
    change_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[PendingChangeRead]:
    """Approve a pending change and apply it."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        change = approve_change(db, change_id, actor, project_id=project_id)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=PendingChangeRead.model_validate(change))


@router.post("/changes/{change_id}/reject", response_model=ApiResponse[PendingChangeRead])
def post_reject(
    payload: ReviewRequest,
    project_id: str = Path(..., min_length=1),
    change_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[PendingChangeRead]:
    """Reject a pending change."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        change = reject_change(db, change_id, actor, payload.reason, project_id=project_id)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=PendingChangeRead.model_validate(change))


@router.post("/changes/{change_id}/apply", response_model=ApiResponse[PendingChangeRead])
def post_apply(
    payload: ReviewRequest,
    project_id: str = Path(..., min_length=1),
    change_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[PendingChangeRead]:
    """Retry apply for an approved change that has not landed yet."""

    actor = Actor(id=payload.actor_id, source=payload.actor_source)
    try:
        change = retry_apply(db, change_id, actor, project_id=project_id)
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=PendingChangeRead.model_validate(change))
