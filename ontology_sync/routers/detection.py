"""Detection trigger routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from ontology_sync.db.dependencies import get_db
from ontology_sync.routers.errors import to_http_exception
from ontology_sync.schemas.common import ApiResponse
from ontology_sync.schemas.detection import DetectionRunRequest, DetectionRunResult
from ontology_sync.services.change_detection import run_detection
from ontology_sync.services.errors import OntologyChangeError
from ontology_sync.services.snapshot import SnapshotProviderNotConfiguredError, get_default_snapshot_provider

router = APIRouter(prefix="/projects/{project_id}")


@router.post("/detection/run", response_model=ApiResponse[DetectionRunResult])
def run_project_detection(
    payload: DetectionRunRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[DetectionRunResult]:
    """Run a detection pass over the project's selected tables."""

    try:
        provider = get_default_snapshot_provider()
        result = run_detection(
            db,
            project_id,
            tables=payload.tables,
            source=payload.source,
            provider=provider,
        )
    except SnapshotProviderNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except OntologyChangeError as exc:
        raise to_http_exception(exc) from exc
    return ApiResponse(data=DetectionRunResult.model_validate(result))
