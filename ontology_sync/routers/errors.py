"""Map change engine errors onto HTTP responses."""

from fastapi import HTTPException

from ontology_sync.services.errors import (
    ChangeNotFoundError,
    ConflictError,
    OntologyChangeError,
    TargetMissingError,
    TransientStoreError,
    UnauthorizedError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[OntologyChangeError], int], ...] = (
    (ValidationError, 422),
    (ChangeNotFoundError, 404),
    (UnauthorizedError, 403),
    (ConflictError, 409),
    (TargetMissingError, 410),
    (TransientStoreError, 503),
)


def to_http_exception(exc: OntologyChangeError) -> HTTPException:
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})
