"""
Compliance Service - recurring obligations and their schedule status.

This module provides:
- compute_task_status(): pure status derivation for one task
- get_task_statuses(): status of every active task from its logs and the
  batch history
- log_completion() / get_task_logs(): the append-only completion log

Status rules:
    batch_interval  batches since the last completion (all batches when never
                    completed) against frequency_value: batch_due when
                    reached, due_soon when 2 or fewer remain, else on_track
    weekly / fortnightly / monthly
                    next due = last completion + 7 / 14 / 30 days times
                    frequency_value (0 counts as 1): overdue when past,
                    due_soon within 2 days, else on_track; not_started when
                    never completed
    custom          on_track once completed, not_started otherwise

`now` is always an argument so results depend only on their inputs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Batch, ComplianceFrequency, ComplianceLog, ComplianceStatus, ComplianceTask
from ..utils.constants import COMPLIANCE_INTERVAL_DAYS, DUE_SOON_BATCHES, DUE_SOON_DAYS
from ..utils.datetime_utils import ensure_utc, utc_now
from .database import session_scope
from .exceptions import ComplianceTaskNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class TaskSchedule:
    """Derived schedule state of one task."""

    status: ComplianceStatus
    next_due_at: Optional[datetime] = None
    days_overdue: Optional[int] = None
    batches_since_last: Optional[int] = None
    batches_remaining: Optional[int] = None


def compute_task_status(
    frequency_type: str,
    frequency_value: int,
    last_completed_at: Optional[datetime],
    batches_since_last: Optional[int],
    now: datetime,
) -> TaskSchedule:
    """
    Derive the schedule status of one task.

    Args:
        frequency_type: ComplianceFrequency value
        frequency_value: Interval count
        last_completed_at: Latest completion, or None if never completed
        batches_since_last: Batches created since the latest completion (all
            batches when never completed); None when unknown. Only used for
            batch_interval tasks.
        now: Reference time

    Returns:
        TaskSchedule

    Example:
        >>> compute_task_status("batch_interval", 10, None, 7, now).status
        <ComplianceStatus.ON_TRACK: 'on_track'>
    """
    frequency = ComplianceFrequency(frequency_type)

    if frequency == ComplianceFrequency.BATCH_INTERVAL:
        if batches_since_last is None:
            return TaskSchedule(status=ComplianceStatus.NOT_STARTED)
        remaining = max(frequency_value - batches_since_last, 0)
        if batches_since_last >= frequency_value:
            status = ComplianceStatus.BATCH_DUE
        elif remaining <= DUE_SOON_BATCHES:
            status = ComplianceStatus.DUE_SOON
        else:
            status = ComplianceStatus.ON_TRACK
        return TaskSchedule(
            status=status,
            batches_since_last=batches_since_last,
            batches_remaining=remaining,
        )

    if last_completed_at is None:
        return TaskSchedule(status=ComplianceStatus.NOT_STARTED)

    interval_days = COMPLIANCE_INTERVAL_DAYS.get(frequency.value)
    if interval_days is None:
        return TaskSchedule(status=ComplianceStatus.ON_TRACK)

    due_at = ensure_utc(last_completed_at) + timedelta(days=interval_days * (frequency_value or 1))
    delta = (due_at - ensure_utc(now)).total_seconds()
    if delta < 0:
        return TaskSchedule(
            status=ComplianceStatus.OVERDUE,
            next_due_at=due_at,
            days_overdue=math.ceil(abs(delta) / SECONDS_PER_DAY),
        )
    if delta <= DUE_SOON_DAYS * SECONDS_PER_DAY:
        return TaskSchedule(status=ComplianceStatus.DUE_SOON, next_due_at=due_at)
    return TaskSchedule(status=ComplianceStatus.ON_TRACK, next_due_at=due_at)


# ============================================================================
# Database-backed Operations
# ============================================================================


def _get_task(task_id: int, session: Session) -> ComplianceTask:
    task = session.get(ComplianceTask, task_id)
    if task is None:
        raise ComplianceTaskNotFound(task_id)
    return task


def _latest_log(task_id: int, session: Session) -> Optional[ComplianceLog]:
    return (
        session.query(ComplianceLog)
        .filter(ComplianceLog.compliance_task_id == task_id)
        .order_by(ComplianceLog.completed_at.desc(), ComplianceLog.id.desc())
        .first()
    )


def _count_batches_since(since: Optional[datetime], session: Session) -> int:
    query = session.query(func.count(Batch.id))
    if since is not None:
        # Stored timestamps are naive UTC
        query = query.filter(Batch.created_at > ensure_utc(since).replace(tzinfo=None))
    return int(query.scalar() or 0)


def _get_task_statuses_impl(now: datetime, session: Session) -> List[Dict[str, Any]]:
    tasks = (
        session.query(ComplianceTask)
        .filter(ComplianceTask.active.is_(True))
        .order_by(ComplianceTask.category, ComplianceTask.name)
        .all()
    )

    results = []
    for task in tasks:
        latest = _latest_log(task.id, session)
        log_count = (
            session.query(func.count(ComplianceLog.id))
            .filter(ComplianceLog.compliance_task_id == task.id)
            .scalar()
        )
        last_completed_at = ensure_utc(latest.completed_at) if latest else None

        batches_since_last = None
        if task.frequency_type == ComplianceFrequency.BATCH_INTERVAL.value:
            batches_since_last = _count_batches_since(last_completed_at, session)

        schedule = compute_task_status(
            task.frequency_type,
            task.frequency_value,
            last_completed_at,
            batches_since_last,
            now,
        )
        results.append({
            "task_id": task.id,
            "code": task.code,
            "name": task.name,
            "category": task.category,
            "frequency_type": task.frequency_type,
            "frequency_value": task.frequency_value,
            "proof_required": task.proof_required,
            "latest_log": latest,
            "log_count": int(log_count or 0),
            "status": schedule.status.value,
            "next_due_at": schedule.next_due_at,
            "days_overdue": schedule.days_overdue,
            "batches_since_last": schedule.batches_since_last,
            "batches_remaining": schedule.batches_remaining,
        })
    return results


def get_task_statuses(
    now: Optional[datetime] = None, session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """
    Schedule status of every active compliance task.

    Args:
        now: Reference time (default: current UTC time)
        session: Optional database session

    Returns:
        List of dicts ordered by category then name, each with task_id, code,
        name, category, frequency_type, frequency_value, proof_required,
        latest_log, log_count, status, next_due_at, days_overdue,
        batches_since_last and batches_remaining
    """
    now = now or utc_now()
    if session is not None:
        return _get_task_statuses_impl(now, session)
    with session_scope() as sess:
        return _get_task_statuses_impl(now, sess)


def log_completion(
    task_id: int,
    completed_at: Optional[datetime] = None,
    completed_by: Optional[str] = None,
    result: Optional[str] = None,
    notes: Optional[str] = None,
    batches_covered: Optional[int] = None,
    batch_start: Optional[str] = None,
    batch_end: Optional[str] = None,
    scope: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    session: Optional[Session] = None,
) -> ComplianceLog:
    """
    Append a completion record for a task.

    Scope, batches covered and the batch window are kept in the log's
    metadata alongside any extra metadata given.

    Args:
        task_id: Task completed
        completed_at: When (default: now)
        completed_by: Who
        result: Outcome text
        notes: Free-form notes
        batches_covered: Number of batches the completion covers
        batch_start / batch_end: Batch numbers bounding the covered window
        scope: What was covered (e.g., "slicer and trays")
        metadata: Extra task-specific details
        session: Optional database session

    Returns:
        The new ComplianceLog

    Raises:
        ComplianceTaskNotFound: task_id does not exist
        ValidationError: Negative batches_covered
    """
    def _impl(sess: Session) -> ComplianceLog:
        if batches_covered is not None and batches_covered < 0:
            raise ValidationError(["batches_covered cannot be negative"])
        task = _get_task(task_id, sess)

        details: Dict[str, Any] = {}
        if scope and scope.strip():
            details["scope"] = scope.strip()
        if batches_covered is not None:
            details["batches_covered"] = batches_covered
        if batch_start or batch_end:
            details["batch_window"] = {"start": batch_start or None, "end": batch_end or None}
        if metadata:
            details.update(metadata)

        log = ComplianceLog(
            compliance_task_id=task.id,
            completed_at=ensure_utc(completed_at or utc_now()),
            completed_by=(completed_by or "").strip() or None,
            result=(result or "").strip() or None,
            notes=(notes or "").strip() or None,
            batches_covered=batches_covered,
            log_metadata=details or None,
        )
        sess.add(log)
        sess.flush()
        log_operation(
            logger,
            operation="log_completion",
            outcome="success",
            task_id=task.id,
            task_code=task.code,
        )
        return log

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_task_logs(
    task_id: int, limit: int = 25, session: Optional[Session] = None
) -> List[ComplianceLog]:
    """Most recent completions of a task, newest first (limit clamped to 1..200)."""
    limit = min(max(int(limit), 1), 200)

    def _impl(sess: Session) -> List[ComplianceLog]:
        _get_task(task_id, sess)
        return (
            sess.query(ComplianceLog)
            .filter(ComplianceLog.compliance_task_id == task_id)
            .order_by(ComplianceLog.completed_at.desc(), ComplianceLog.id.desc())
            .limit(limit)
            .all()
        )

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)
