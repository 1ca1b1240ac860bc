"""Error taxonomy for ontology change detection, review and apply."""

from __future__ import annotations


class OntologyChangeError(RuntimeError):
    """Base class for change engine failures."""

    code = "ontology_change_error"
    retryable = False


class ValidationError(OntologyChangeError):
    """Malformed candidate change; never persisted."""

    code = "validation_error"


class ChangeNotFoundError(OntologyChangeError):
    """Referenced pending change does not exist."""

    code = "not_found"


class ConflictError(OntologyChangeError):
    """Status transition lost a race or is not allowed from the current status."""

    code = "conflict"


class AlreadyReviewedError(ConflictError):
    """Change is no longer pending."""

    code = "already_reviewed"


class TargetMissingError(OntologyChangeError):
    """Metadata row the change targets no longer exists."""

    code = "target_missing"


class TransientStoreError(OntologyChangeError):
    """Snapshot or metadata store unavailable; safe to retry."""

    code = "transient_store_error"
    retryable = True


class UnauthorizedError(OntologyChangeError):
    """Writer or reviewer lacks the precedence or rights for this operation."""

    code = "unauthorized"
