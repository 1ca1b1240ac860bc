"""Change detection: compare sampled customer data with stored ontology metadata."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from time import perf_counter

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ontology_sync.config import Settings, get_settings
from ontology_sync.models.pending_change import CHANGE_SOURCES
from ontology_sync.services.change_applier import apply_change
from ontology_sync.services.errors import (
    ConflictError,
    TargetMissingError,
    TransientStoreError,
    ValidationError,
)
from ontology_sync.services.ontology_store import MetadataView, current_target_source, load_metadata_view
from ontology_sync.services.pending_changes import ChangeCandidate, record_candidate
from ontology_sync.services.precedence import PrecedencePolicy
from ontology_sync.services.snapshot import (
    SnapshotProviderInterface,
    TableSnapshot,
    get_default_snapshot_provider,
)

logger = logging.getLogger(__name__)

STRING_TYPES = frozenset(
    {
        "text",
        "varchar",
        "character varying",
        "char",
        "character",
        "nvarchar",
        "nchar",
        "ntext",
        "string",
    }
)
FK_SUFFIX = "_id"


@dataclass(slots=True)
class TableError:
    """Failure isolated to one table during a detection pass."""

    table: str
    error: str


@dataclass(slots=True)
class DetectionConfig:
    """Thresholds and resource bounds for one detection pass."""

    max_distinct_values_for_enum: int = 100
    max_enum_value_length: int = 100
    min_fk_confidence: float = 0.9
    fk_sample_limit: int = 1000
    max_workers: int = 4
    table_timeout_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DetectionConfig:
        settings = settings or get_settings()
        return cls(
            max_distinct_values_for_enum=settings.max_distinct_values_for_enum,
            max_enum_value_length=settings.max_enum_value_length,
            min_fk_confidence=settings.min_fk_confidence,
            fk_sample_limit=settings.fk_sample_limit,
            max_workers=settings.detection_max_workers,
            table_timeout_seconds=settings.detection_table_timeout_seconds,
        )


@dataclass(slots=True)
class TableScan:
    """Candidates produced by one table unit."""

    table_name: str
    candidates: list[ChangeCandidate] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class DetectionResult:
    """Candidates and per-table failures of a scan, before persistence."""

    candidates: list[ChangeCandidate] = field(default_factory=list)
    errors: list[TableError] = field(default_factory=list)
    tables_scanned: int = 0


@dataclass(slots=True)
class DetectionRunResult:
    """Summary of a detection pass after persistence and precedence gating."""

    created: int = 0
    updated: int = 0
    auto_applied: int = 0
    unauthorized: int = 0
    tables_scanned: int = 0
    errors: list[TableError] = field(default_factory=list)


def is_string_type(data_type: str | None) -> bool:
    if not data_type:
        return False
    base = data_type.split("(", 1)[0].strip().lower()
    return base in STRING_TYPES


def resolve_target_table(column_name: str, table_names: list[str]) -> str | None:
    """Guess the table a ``<name>_id`` column points at."""

    lowered = column_name.lower()
    if not lowered.endswith(FK_SUFFIX) or len(lowered) == len(FK_SUFFIX):
        return None
    base = lowered[: -len(FK_SUFFIX)]
    guesses = [base, f"{base}s", f"{base}es"]
    if base.endswith("y"):
        guesses.append(f"{base[:-1]}ies")

    by_lower = {name.lower(): name for name in table_names}
    for guess in guesses:
        if guess in by_lower:
            return by_lower[guess]
    return None


def detect_enum_changes(
    snapshot: TableSnapshot,
    metadata: MetadataView,
    config: DetectionConfig,
    *,
    project_id: str,
    source: str,
) -> list[ChangeCandidate]:
    """Emit one candidate per observed value missing from a column's known enum set."""

    candidates: list[ChangeCandidate] = []
    for col in snapshot.columns:
        if not col.is_selected:
            logger.info(
                "change_detection.skip_deselected_column table=%s column=%s",
                snapshot.table_name,
                col.column_name,
            )
            continue
        known = metadata.enum_values(snapshot.table_name, col.column_name)
        if not known or not is_string_type(col.data_type):
            continue
        if len(col.distinct_values) > config.max_distinct_values_for_enum:
            continue
        if any(len(value) > config.max_enum_value_length for value in col.distinct_values):
            continue

        known_set = set(known)
        for value in col.distinct_values:
            if value in known_set:
                continue
            candidates.append(
                ChangeCandidate(
                    project_id=project_id,
                    change_type="new_enum_value",
                    source=source,
                    table_name=snapshot.table_name,
                    column_name=col.column_name,
                    old_value=list(known),
                    new_value=value,
                )
            )
    return candidates


def detect_fk_patterns(
    snapshot: TableSnapshot,
    metadata: MetadataView,
    config: DetectionConfig,
    provider: SnapshotProviderInterface,
    *,
    project_id: str,
    source: str,
    table_names: list[str],
) -> list[ChangeCandidate]:
    """Emit candidates for columns whose sampled values fall inside another table's keys.

    The target comes from the provider's ``fk_target_table`` hint when present,
    otherwise from the ``<name>_id`` naming convention. Membership is counted
    by the provider against the full key column, not a sample of it.
    """

    candidates: list[ChangeCandidate] = []
    for col in snapshot.columns:
        if not col.is_selected or col.is_primary_key or not col.distinct_values:
            continue
        if metadata.has_relationship(snapshot.table_name, col.column_name):
            continue
        if col.fk_target_table and col.fk_target_table in table_names:
            target_table = col.fk_target_table
        else:
            target_table = resolve_target_table(col.column_name, table_names)
        if target_table is None or target_table == snapshot.table_name:
            continue

        probed = col.distinct_values[: config.fk_sample_limit]
        match = provider.count_matching_keys(project_id, target_table, probed)
        if match is None or match.matched == 0:
            continue
        confidence = match.matched / len(probed)
        if confidence < config.min_fk_confidence:
            continue
        confidence = round(confidence, 4)
        candidates.append(
            ChangeCandidate(
                project_id=project_id,
                change_type="new_fk_pattern",
                source=source,
                table_name=snapshot.table_name,
                column_name=col.column_name,
                from_table=snapshot.table_name,
                from_column=col.column_name,
                to_table=target_table,
                to_column=match.column_name,
                new_value={
                    "from_table": snapshot.table_name,
                    "from_column": col.column_name,
                    "to_table": target_table,
                    "to_column": match.column_name,
                    "confidence": confidence,
                    "matched_count": match.matched,
                    "source_distinct": len(probed),
                },
                confidence=confidence,
            )
        )
    return candidates


def detect_table_changes(
    provider: SnapshotProviderInterface,
    metadata: MetadataView,
    config: DetectionConfig,
    *,
    project_id: str,
    table_name: str,
    source: str,
    table_names: list[str],
) -> TableScan:
    """Scan one table. FK probing failures keep the table's enum candidates."""

    scan = TableScan(table_name=table_name)
    snapshot = provider.get_table_snapshot(project_id, table_name)
    if not snapshot.is_selected:
        logger.info("change_detection.skip_deselected_table table=%s", table_name)
        return scan

    scan.candidates.extend(
        detect_enum_changes(snapshot, metadata, config, project_id=project_id, source=source)
    )
    try:
        scan.candidates.extend(
            detect_fk_patterns(
                snapshot,
                metadata,
                config,
                provider,
                project_id=project_id,
                source=source,
                table_names=table_names,
            )
        )
    except Exception as exc:
        logger.exception("change_detection.fk_probe_failed table=%s", table_name)
        scan.error = f"relationship probe failed: {exc}"
    return scan


def detect_changes(
    provider: SnapshotProviderInterface,
    metadata: MetadataView,
    *,
    project_id: str,
    tables: list[str] | None = None,
    source: str = "inference",
    config: DetectionConfig | None = None,
) -> DetectionResult:
    """Run one unit of work per selected table and collect candidates.

    A table that raises or outlives the pass deadline becomes a ``TableError``;
    the other tables still contribute their candidates.
    """

    config = config or DetectionConfig.from_settings()
    result = DetectionResult()
    selected = provider.list_selected_tables(project_id)
    if tables is None:
        to_scan = list(selected)
    else:
        selected_set = set(selected)
        to_scan = []
        for name in dict.fromkeys(tables):
            if name in selected_set:
                to_scan.append(name)
            else:
                result.errors.append(TableError(table=name, error="table is not selected or does not exist"))
    if not to_scan:
        return result

    workers = max(1, min(config.max_workers, len(to_scan)))
    deadline = config.table_timeout_seconds * math.ceil(len(to_scan) / workers)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="change-detection")
    try:
        futures = {
            executor.submit(
                detect_table_changes,
                provider,
                metadata,
                config,
                project_id=project_id,
                table_name=name,
                source=source,
                table_names=selected,
            ): name
            for name in to_scan
        }
        done, not_done = wait(futures, timeout=deadline)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    scans: dict[str, TableScan] = {}
    for future in done:
        name = futures[future]
        try:
            scans[name] = future.result()
        except Exception as exc:
            logger.warning("change_detection.table_failed table=%s error=%s", name, exc)
            result.errors.append(TableError(table=name, error=str(exc)))
    for future in not_done:
        name = futures[future]
        logger.warning("change_detection.table_timeout table=%s timeout_s=%.1f", name, deadline)
        result.errors.append(TableError(table=name, error=f"timed out after {deadline:.1f}s"))

    for name in to_scan:
        scan = scans.get(name)
        if scan is None:
            continue
        result.tables_scanned += 1
        result.candidates.extend(scan.candidates)
        if scan.error:
            result.errors.append(TableError(table=name, error=scan.error))
    return result


def run_detection(
    db: Session,
    project_id: str,
    *,
    tables: list[str] | None = None,
    source: str = "inference",
    provider: SnapshotProviderInterface | None = None,
    policy: PrecedencePolicy | None = None,
    settings: Settings | None = None,
) -> DetectionRunResult:
    """Detect drift for a project, persist candidates and auto-apply where policy allows."""

    if source not in CHANGE_SOURCES:
        raise ValidationError(f"Unknown change source: {source}")
    settings = settings or get_settings()
    policy = policy or PrecedencePolicy.from_settings(settings)
    config = DetectionConfig.from_settings(settings)

    total_started = perf_counter()
    try:
        active_provider = provider or get_default_snapshot_provider()

        started = perf_counter()
        metadata = load_metadata_view(db, project_id)
        db.rollback()
        metadata_load_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        detection = detect_changes(
            active_provider,
            metadata,
            project_id=project_id,
            tables=tables,
            source=source,
            config=config,
        )
        scan_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        result = DetectionRunResult(tables_scanned=detection.tables_scanned, errors=list(detection.errors))
        for candidate in detection.candidates:
            _persist_candidate(db, candidate, policy, result)
        persist_ms = (perf_counter() - started) * 1000.0

        logger.info(
            (
                "change_detection.run_timing project_id=%s source=%s tables=%d candidates=%d "
                "created=%d updated=%d auto_applied=%d unauthorized=%d errors=%d "
                "metadata_load_ms=%.2f scan_ms=%.2f persist_ms=%.2f total_ms=%.2f"
            ),
            project_id,
            source,
            result.tables_scanned,
            len(detection.candidates),
            result.created,
            result.updated,
            result.auto_applied,
            result.unauthorized,
            len(result.errors),
            metadata_load_ms,
            scan_ms,
            persist_ms,
            (perf_counter() - total_started) * 1000.0,
        )
        return result
    except Exception:
        logger.exception(
            "change_detection.run_failed project_id=%s elapsed_ms=%.2f",
            project_id,
            (perf_counter() - total_started) * 1000.0,
        )
        raise


def _persist_candidate(
    db: Session,
    candidate: ChangeCandidate,
    policy: PrecedencePolicy,
    result: DetectionRunResult,
) -> None:
    table_label = candidate.table_name or candidate.from_table or "?"
    try:
        target_source = current_target_source(
            db,
            policy,
            project_id=candidate.project_id,
            change_type=candidate.change_type,
            table_name=candidate.table_name,
            column_name=candidate.column_name,
        )
        decision = policy.decide(
            candidate.source,
            target_source,
            change_type=candidate.change_type,
            confidence=candidate.confidence,
        )
        if decision == "reject_unauthorized":
            db.rollback()
            result.unauthorized += 1
            return

        recorded = record_candidate(db, candidate)
        db.commit()
    except (ValidationError, ConflictError) as exc:
        db.rollback()
        result.errors.append(TableError(table=table_label, error=str(exc)))
        return
    except (OperationalError, PoolTimeoutError) as exc:
        db.rollback()
        raise TransientStoreError(f"Pending change store unavailable: {exc}") from exc

    if recorded.created:
        result.created += 1
    else:
        result.updated += 1

    if decision != "auto_apply":
        return
    try:
        apply_change(db, recorded.change.id, expected_status="pending")
    except (TargetMissingError, TransientStoreError, ConflictError) as exc:
        result.errors.append(TableError(table=table_label, error=str(exc)))
        return
    result.auto_applied += 1
