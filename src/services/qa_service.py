"""
QA Service - checkpoint results and stage progress for batches.

This module provides:
- Typed checkpoint metadata keyed by checkpoint code (core temperature,
  marination times, water activity) with an opaque fallback
- Status derivation for those special checkpoints
- Stage aggregation: per-stage required/passed counts, the current stage
  and whether a batch can be completed
- record_check() and get_batch_qa_progress() over the database

Stage aggregation is pure; get_batch_qa_progress() only loads the rows and
hands them to aggregate_stages().
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..models import Batch, BatchQACheck, QACheckpoint, QACheckStatus
from ..utils.constants import (
    CORE_TEMP_CHECKPOINT_CODE,
    CORE_TEMP_HOLD_MINUTES,
    CORE_TEMP_LIMIT_C,
    CORE_TEMP_READING_COUNT,
    MARINATION_MAX_TEMP_C,
    MARINATION_TIMES_CHECKPOINT_CODE,
    QA_STAGE_ORDER,
    WATER_ACTIVITY_CHECKPOINT_CODE,
    WATER_ACTIVITY_MAX,
)
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .exceptions import BatchNotFound, CheckpointNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


# ============================================================================
# Checkpoint Metadata
# ============================================================================


def _reading(value: Any) -> Optional[float]:
    """A numeric reading, or None when not entered."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class CoreTempReading:
    """One core-temperature reading: peak temperature and hold time."""

    temp_c: Optional[float] = None
    minutes: Optional[float] = None

    @property
    def entered(self) -> bool:
        return self.temp_c is not None and self.minutes is not None

    def meets_limit(self, limit_c: float = CORE_TEMP_LIMIT_C,
                    hold_minutes: float = CORE_TEMP_HOLD_MINUTES) -> bool:
        return self.entered and self.temp_c >= limit_c and self.minutes >= hold_minutes


@dataclass(frozen=True)
class CoreTempMetadata:
    """Readings for the core-temperature checkpoint."""

    readings: Tuple[CoreTempReading, ...] = ()

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CoreTempMetadata":
        readings = [
            CoreTempReading(temp_c=_reading(r.get("tempC")), minutes=_reading(r.get("minutes")))
            for r in (raw.get("readings") or [])
            if isinstance(r, dict)
        ]
        while len(readings) < CORE_TEMP_READING_COUNT:
            readings.append(CoreTempReading())
        return cls(readings=tuple(readings))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "readings": [
                {
                    "tempC": "" if r.temp_c is None else r.temp_c,
                    "minutes": "" if r.minutes is None else r.minutes,
                }
                for r in self.readings
            ]
        }

    def derive_status(self) -> QACheckStatus:
        """Pending until every reading is entered; passed only if all meet the limit."""
        if not all(r.entered for r in self.readings):
            return QACheckStatus.PENDING
        if all(r.meets_limit() for r in self.readings):
            return QACheckStatus.PASSED
        return QACheckStatus.FAILED


@dataclass(frozen=True)
class MarinationMetadata:
    """Marination start/end and holding temperature."""

    start: Optional[str] = None
    end: Optional[str] = None
    temp_c: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "MarinationMetadata":
        return cls(
            start=raw.get("startISO") or None,
            end=raw.get("endISO") or None,
            temp_c=_reading(raw.get("tempC")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startISO": self.start or "",
            "endISO": self.end or "",
            "tempC": "" if self.temp_c is None else self.temp_c,
        }

    def derive_status(self) -> QACheckStatus:
        if not (self.start and self.end and self.temp_c is not None):
            return QACheckStatus.PENDING
        if self.temp_c <= MARINATION_MAX_TEMP_C:
            return QACheckStatus.PASSED
        return QACheckStatus.FAILED


@dataclass(frozen=True)
class WaterActivityMetadata:
    """Finished product water activity reading."""

    aw: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "WaterActivityMetadata":
        return cls(aw=_reading(raw.get("aw")))

    def to_dict(self) -> Dict[str, Any]:
        return {"aw": "" if self.aw is None else self.aw}

    def derive_status(self) -> QACheckStatus:
        if self.aw is None:
            return QACheckStatus.PENDING
        return QACheckStatus.PASSED if self.aw <= WATER_ACTIVITY_MAX else QACheckStatus.FAILED


@dataclass(frozen=True)
class OpaqueMetadata:
    """Metadata of a generic checkpoint, stored as given."""

    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.payload)

    def derive_status(self) -> Optional[QACheckStatus]:
        return None


CheckpointMetadata = Union[CoreTempMetadata, MarinationMetadata, WaterActivityMetadata, OpaqueMetadata]

_METADATA_TYPES = {
    CORE_TEMP_CHECKPOINT_CODE: CoreTempMetadata,
    MARINATION_TIMES_CHECKPOINT_CODE: MarinationMetadata,
    WATER_ACTIVITY_CHECKPOINT_CODE: WaterActivityMetadata,
}


def parse_checkpoint_metadata(code: str, raw: Optional[Dict[str, Any]]) -> CheckpointMetadata:
    """
    Interpret a checkpoint's stored metadata by checkpoint code.

    Args:
        code: Checkpoint code
        raw: Stored metadata dict (None is treated as empty)

    Returns:
        The typed variant for special codes, else OpaqueMetadata
    """
    raw = raw if isinstance(raw, dict) else {}
    metadata_type = _METADATA_TYPES.get(code)
    if metadata_type is None:
        return OpaqueMetadata(payload=dict(raw))
    return metadata_type.from_dict(raw)


def evaluate_core_temp(readings: Iterable[Dict[str, Any]]) -> QACheckStatus:
    """Status of a set of core-temperature readings ({'tempC': .., 'minutes': ..} each)."""
    return CoreTempMetadata.from_dict({"readings": list(readings)}).derive_status()


# ============================================================================
# Stage Aggregation
# ============================================================================


@dataclass(frozen=True)
class StageProgress:
    """Required checkpoint progress for one stage."""

    stage: str
    required_total: int
    required_passed: int

    @property
    def percent(self) -> int:
        if self.required_total == 0:
            return 100
        # Round half up
        return int(math.floor(self.required_passed / self.required_total * 100 + 0.5))

    @property
    def complete(self) -> bool:
        return self.required_passed >= self.required_total


@dataclass(frozen=True)
class QAProgress:
    """Stage roll-up for one batch."""

    stages: Tuple[StageProgress, ...]
    current_stage: str
    can_complete: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stages": [
                {
                    "stage": s.stage,
                    "required_total": s.required_total,
                    "required_passed": s.required_passed,
                    "percent": s.percent,
                }
                for s in self.stages
            ],
            "current_stage": self.current_stage,
            "can_complete": self.can_complete,
        }


def aggregate_stages(
    checkpoints: Iterable[Any], check_status_by_checkpoint: Dict[int, str]
) -> QAProgress:
    """
    Roll checkpoint results up into stage progress.

    Only active, required checkpoints count. A checkpoint counts as passed
    only when its check status is 'passed'.

    Args:
        checkpoints: Checkpoint definitions (id, stage, required, active)
        check_status_by_checkpoint: checkpoint id -> status of the batch's check

    Returns:
        QAProgress with one StageProgress per stage in processing order

    Example:
        Two required checkpoints in 'preparation', both passed, and two in
        'mixing' with one passed: preparation is 100%, mixing is 50%,
        current_stage is 'mixing' and can_complete is False.
    """
    totals = {stage: 0 for stage in QA_STAGE_ORDER}
    passed = {stage: 0 for stage in QA_STAGE_ORDER}

    for cp in checkpoints:
        if not (cp.active and cp.required) or cp.stage not in totals:
            continue
        totals[cp.stage] += 1
        if check_status_by_checkpoint.get(cp.id) == QACheckStatus.PASSED.value:
            passed[cp.stage] += 1

    stages = tuple(
        StageProgress(stage=stage, required_total=totals[stage], required_passed=passed[stage])
        for stage in QA_STAGE_ORDER
    )
    current = next((s.stage for s in stages if not s.complete), QA_STAGE_ORDER[-1])
    return QAProgress(
        stages=stages,
        current_stage=current,
        can_complete=all(s.complete for s in stages),
    )


# ============================================================================
# Database-backed Operations
# ============================================================================


def _get_batch_qa_progress_impl(batch_id: int, session: Session) -> QAProgress:
    if session.get(Batch, batch_id) is None:
        raise BatchNotFound(batch_id)

    checkpoints = (
        session.query(QACheckpoint)
        .filter(QACheckpoint.active.is_(True))
        .order_by(QACheckpoint.stage, QACheckpoint.display_order, QACheckpoint.id)
        .all()
    )
    checks = session.query(BatchQACheck).filter(BatchQACheck.batch_id == batch_id).all()
    statuses = {check.checkpoint_id: check.status for check in checks}
    return aggregate_stages(checkpoints, statuses)


def get_batch_qa_progress(batch_id: int, session: Optional[Session] = None) -> QAProgress:
    """
    Stage progress for a batch.

    Raises:
        BatchNotFound: batch_id does not exist
    """
    if session is not None:
        return _get_batch_qa_progress_impl(batch_id, session)
    with session_scope() as sess:
        return _get_batch_qa_progress_impl(batch_id, sess)


def get_batch_checks(batch_id: int, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Every active checkpoint with this batch's result, in stage order.

    Checkpoints without a recorded check are reported as 'pending'.
    """
    def _impl(sess: Session) -> List[Dict[str, Any]]:
        if sess.get(Batch, batch_id) is None:
            raise BatchNotFound(batch_id)
        checkpoints = (
            sess.query(QACheckpoint)
            .filter(QACheckpoint.active.is_(True))
            .order_by(QACheckpoint.display_order, QACheckpoint.id)
            .all()
        )
        checks = {
            c.checkpoint_id: c
            for c in sess.query(BatchQACheck).filter(BatchQACheck.batch_id == batch_id)
        }
        rows = []
        for cp in sorted(checkpoints, key=lambda c: QA_STAGE_ORDER.index(c.stage)):
            check = checks.get(cp.id)
            rows.append({
                "checkpoint_id": cp.id,
                "code": cp.code,
                "name": cp.name,
                "stage": cp.stage,
                "required": cp.required,
                "display_order": cp.display_order,
                "status": check.status if check else QACheckStatus.PENDING.value,
                "metadata": check.check_metadata if check else None,
                "check_id": check.id if check else None,
            })
        return rows

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def _record_check_impl(
    batch_id: int,
    checkpoint_id: int,
    status: Optional[str],
    metadata: Optional[Dict[str, Any]],
    checked_by: Optional[str],
    checked_at: Optional[datetime],
    fields: Dict[str, Any],
    session: Session,
) -> BatchQACheck:
    if session.get(Batch, batch_id) is None:
        raise BatchNotFound(batch_id)
    checkpoint = session.get(QACheckpoint, checkpoint_id)
    if checkpoint is None:
        raise CheckpointNotFound(checkpoint_id)

    parsed = parse_checkpoint_metadata(checkpoint.code, metadata)
    derived = parsed.derive_status()
    if derived is not None:
        resolved = derived
    else:
        if not status:
            raise ValidationError(["status is required"])
        try:
            resolved = QACheckStatus(status)
        except ValueError:
            raise ValidationError([f"Invalid QA status: {status}"])

    check = (
        session.query(BatchQACheck)
        .filter(BatchQACheck.batch_id == batch_id, BatchQACheck.checkpoint_id == checkpoint_id)
        .first()
    )
    if check is None:
        check = BatchQACheck(batch_id=batch_id, checkpoint_id=checkpoint_id)
        session.add(check)

    check.status = resolved.value
    check.check_metadata = parsed.to_dict()
    check.checked_by = checked_by
    if checked_at is not None or check.checked_at is None:
        check.checked_at = checked_at or utc_now()
    check.notes = fields.get("notes")
    check.corrective_action = fields.get("corrective_action")
    check.recheck_required = bool(fields.get("recheck_required", False))
    check.temperature_c = fields.get("temperature_c")
    check.humidity_percent = fields.get("humidity_percent")
    check.ph_level = fields.get("ph_level")
    check.water_activity = fields.get("water_activity")
    session.flush()

    log_operation(
        logger,
        operation="record_check",
        outcome=resolved.value,
        level=logging.WARNING if resolved == QACheckStatus.FAILED else logging.INFO,
        batch_id=batch_id,
        checkpoint_code=checkpoint.code,
    )
    return check


def record_check(
    batch_id: int,
    checkpoint_id: int,
    status: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    checked_by: Optional[str] = None,
    checked_at: Optional[datetime] = None,
    session: Optional[Session] = None,
    **fields: Any,
) -> BatchQACheck:
    """
    Create or update a batch's result for one checkpoint.

    For special checkpoints (core temperature, marination times, water
    activity) the status is derived from the metadata and the `status`
    argument is ignored. For generic checkpoints the given status is stored.

    Args:
        batch_id: Batch being checked
        checkpoint_id: Checkpoint definition
        status: QACheckStatus value (generic checkpoints)
        metadata: Stage-specific readings
        checked_by: Who checked
        checked_at: When (defaults to now on first record)
        session: Optional database session
        **fields: notes, corrective_action, recheck_required, temperature_c,
            humidity_percent, ph_level, water_activity

    Returns:
        The BatchQACheck row

    Raises:
        BatchNotFound / CheckpointNotFound: Unknown ids
        ValidationError: Missing or unknown status for a generic checkpoint
    """
    args = (batch_id, checkpoint_id, status, metadata, checked_by, checked_at, fields)
    if session is not None:
        return _record_check_impl(*args, session)
    with session_scope() as sess:
        return _record_check_impl(*args, sess)
