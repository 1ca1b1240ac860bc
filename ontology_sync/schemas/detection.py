"""Detection endpoint schemas."""

from pydantic import BaseModel, ConfigDict, Field

from ontology_sync.schemas.pending_change import ChangeSource


class DetectionRunRequest(BaseModel):
    """Optional narrowing of a detection pass."""

    tables: list[str] | None = Field(default=None, min_length=1)
    source: ChangeSource = "inference"


class TableErrorRead(BaseModel):
    """Per-table failure reported by a detection pass."""

    model_config = ConfigDict(from_attributes=True)

    table: str
    error: str


class DetectionRunResult(BaseModel):
    """Detection pass summary."""

    model_config = ConfigDict(from_attributes=True)

    created: int
    updated: int
    auto_applied: int
    unauthorized: int
    tables_scanned: int
    errors: list[TableErrorRead]
