"""
Lot Service - traceable inventory with an append-only ledger.

This module provides:
- Receiving lots (with their opening 'receive' event)
- FIFO allocation of lots to a batch (all-or-nothing)
- Adjustments, scrap, returns, quarantine and release
- Lot recall with the set of affected batches
- Traceability queries (lot -> batches, batch -> lots)
- Inventory summary per material
- Ledger reconciliation

Ledger rules:
    Every change to a lot's quantity or status is a LotEvent. The signed sum
    of a lot's events is its true balance; Lot.current_balance is a cache
    written only by _append_event() in this module. The opening 'receive'
    event carries quantity_received, so balance == sum(events).

Concurrency:
    Allocations for the same material are serialized by a per-process lock
    per material, taken on behalf of the allocating session and released by
    an after_transaction_end hook when that session's root transaction
    commits, rolls back or closes. Candidate lots are re-read under the lock
    (SELECT ... FOR UPDATE where the backend supports it), so a second
    allocation never plans against balances an open transaction has already
    spent. Different materials never block each other.
"""

from dataclasses import dataclass
from datetime import date, timedelta
import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, event, func
from sqlalchemy.orm import Session

from ..models import (
    Batch,
    BatchLotUsage,
    Lot,
    LotEvent,
    LotEventType,
    LotRecall,
    LotRecallBatch,
    LotStatus,
    Material,
    ReleaseStatus,
)
from ..utils.constants import LOT_CODE_PREFIX, MATERIAL_LOCK_TIMEOUT_SECONDS, QUANTITY_EPSILON
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .exceptions import (
    AllocationBusy,
    BatchNotFound,
    InsufficientLotStock,
    InvalidStatusTransition,
    LedgerInconsistency,
    LotNotFound,
    MaterialNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

# Events an operator can record directly against a lot's quantity
ADJUSTMENT_EVENT_TYPES = (LotEventType.ADJUST, LotEventType.SCRAP, LotEventType.RETURN)


@dataclass(frozen=True)
class LotAllocation:
    """Quantity taken from one lot by an allocation."""

    lot_id: int
    lot_number: Optional[str]
    internal_lot_code: str
    quantity_allocated: float
    new_balance: float


# =============================================================================
# Per-material Locks
# =============================================================================

_material_locks: Dict[int, threading.Lock] = {}
_material_locks_guard = threading.Lock()

# Session.info key: material ids whose lock this session holds
_HELD_LOCKS_KEY = "cure_tracker.material_locks"


def _get_material_lock(material_id: int) -> threading.Lock:
    with _material_locks_guard:
        lock = _material_locks.get(material_id)
        if lock is None:
            lock = threading.Lock()
            _material_locks[material_id] = lock
        return lock


def _hold_material_lock(material_id: int, session: Session) -> None:
    """
    Take the allocation lock for a material on behalf of a session.

    The lock stays held until the session's outermost transaction commits,
    rolls back or is closed. A session that already holds it does not wait.

    Raises:
        AllocationBusy: Another session kept the lock past the timeout
    """
    # Autobegin so the end of the root transaction releases the lock
    session.connection()
    held = session.info.setdefault(_HELD_LOCKS_KEY, set())
    if material_id in held:
        return
    if not _get_material_lock(material_id).acquire(timeout=MATERIAL_LOCK_TIMEOUT_SECONDS):
        log_operation(
            logger,
            operation="allocate_lots",
            outcome="lock_timeout",
            level=logging.WARNING,
            material_id=material_id,
            timeout=MATERIAL_LOCK_TIMEOUT_SECONDS,
        )
        raise AllocationBusy(material_id, MATERIAL_LOCK_TIMEOUT_SECONDS)
    held.add(material_id)


@event.listens_for(Session, "after_transaction_end")
def _release_material_locks(session, transaction):
    if transaction.parent is not None:
        return
    for material_id in session.info.pop(_HELD_LOCKS_KEY, ()):
        _get_material_lock(material_id).release()


def holds_material_lock(material_id: int, session: Session) -> bool:
    """Whether a session currently holds the allocation lock for a material."""
    return material_id in session.info.get(_HELD_LOCKS_KEY, ())


# =============================================================================
# Internal Helpers
# =============================================================================


def _base36(number: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_internal_lot_code() -> str:
    """Internal lot code: LOT-<base36 ms timestamp>-<4 hex>."""
    stamp = _base36(int(time.time() * 1000))
    return f"{LOT_CODE_PREFIX}{stamp}-{uuid.uuid4().hex[:4].upper()}"


def _get_lot(lot_id: int, session: Session, for_update: bool = False) -> Lot:
    query = session.query(Lot).filter(Lot.id == lot_id)
    if for_update:
        query = query.with_for_update()
    lot = query.first()
    if lot is None:
        raise LotNotFound(lot_id)
    return lot


def _append_event(
    lot: Lot,
    event_type: LotEventType,
    quantity: float,
    session: Session,
    batch_id: Optional[int] = None,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
) -> LotEvent:
    """Append a ledger event and move the cached balance with it."""
    balance_after = float(lot.current_balance or 0.0) + quantity
    if abs(balance_after) < QUANTITY_EPSILON:
        balance_after = 0.0

    event = LotEvent(
        lot_id=lot.id,
        event_type=event_type.value,
        quantity=quantity,
        balance_after=balance_after,
        batch_id=batch_id,
        reason=reason,
        created_by=created_by,
    )
    session.add(event)

    lot.current_balance = balance_after
    if balance_after == 0.0 and lot.status == LotStatus.AVAILABLE.value:
        lot.status = LotStatus.DEPLETED.value
    elif balance_after > 0.0 and lot.status == LotStatus.DEPLETED.value:
        lot.status = LotStatus.AVAILABLE.value
    return event


def _fifo_query(material_id: int, session: Session):
    return (
        session.query(Lot)
        .filter(
            Lot.material_id == material_id,
            Lot.status == LotStatus.AVAILABLE.value,
            Lot.current_balance > 0,
        )
        .order_by(Lot.received_date.asc(), Lot.id.asc())
    )


# =============================================================================
# Receiving
# =============================================================================


def _receive_lot_impl(
    material_id: int,
    quantity_received: float,
    received_date: date,
    lot_number: Optional[str],
    supplier_name: Optional[str],
    expiry_date: Optional[date],
    unit_cost,
    notes: Optional[str],
    created_by: Optional[str],
    session: Session,
) -> Lot:
    errors = []
    if quantity_received is None or not quantity_received > 0:
        errors.append("quantity_received must be positive")
    if received_date is None:
        errors.append("received_date is required")
    if expiry_date is not None and received_date is not None and expiry_date < received_date:
        errors.append("expiry_date cannot be before received_date")
    if errors:
        raise ValidationError(errors)

    if session.get(Material, material_id) is None:
        raise MaterialNotFound(material_id)

    lot = Lot(
        material_id=material_id,
        lot_number=lot_number,
        internal_lot_code=generate_internal_lot_code(),
        supplier_name=supplier_name,
        received_date=received_date,
        expiry_date=expiry_date,
        quantity_received=float(quantity_received),
        current_balance=0.0,
        unit_cost=unit_cost,
        status=LotStatus.AVAILABLE.value,
        notes=notes,
    )
    session.add(lot)
    session.flush()

    _append_event(
        lot,
        LotEventType.RECEIVE,
        float(quantity_received),
        session,
        reason="Initial receipt",
        created_by=created_by,
    )
    session.flush()

    log_operation(
        logger,
        operation="receive_lot",
        outcome="success",
        lot_id=lot.id,
        material_id=material_id,
        quantity=float(quantity_received),
    )
    return lot


def receive_lot(
    material_id: int,
    quantity_received: float,
    received_date: date,
    lot_number: Optional[str] = None,
    supplier_name: Optional[str] = None,
    expiry_date: Optional[date] = None,
    unit_cost=None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> Lot:
    """
    Receive a new lot into stock.

    Creates the lot as 'available' and appends its 'receive' event.

    Args:
        material_id: Material received
        quantity_received: Quantity in the material's unit (> 0)
        received_date: Date received (FIFO key)
        lot_number: Supplier lot number
        supplier_name: Supplier name
        expiry_date: Optional expiry date
        unit_cost: Optional cost per unit
        notes: Free-form notes
        created_by: Who received it
        session: Optional database session

    Returns:
        The new Lot

    Raises:
        ValidationError: Bad quantity or dates
        MaterialNotFound: material_id does not exist
    """
    args = (
        material_id, quantity_received, received_date, lot_number, supplier_name,
        expiry_date, unit_cost, notes, created_by,
    )
    if session is not None:
        return _receive_lot_impl(*args, session)
    with session_scope() as sess:
        return _receive_lot_impl(*args, sess)


# =============================================================================
# FIFO Allocation
# =============================================================================


def get_available_lots(material_id: int, session: Optional[Session] = None) -> List[Lot]:
    """
    Available lots with stock for a material, oldest received first.

    Ties on received_date are broken by lot id.
    """
    if session is not None:
        return _fifo_query(material_id, session).all()
    with session_scope() as sess:
        return _fifo_query(material_id, sess).all()


def plan_fifo_allocation(
    lots: List[Lot], quantity_needed: float, material_id: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Walk lots in order and decide how much to take from each.

    Pure: the lots are not modified.

    Quantities are matched to within QUANTITY_EPSILON, not exactly:
    - A lot whose leftover would be below QUANTITY_EPSILON is taken in full,
      so the plan may exceed quantity_needed by less than QUANTITY_EPSILON.
    - A shortfall of at most QUANTITY_EPSILON counts as covered.
    Each step's quantity is exactly what leaves the lot, so the recorded
    usage always matches the ledger even when it differs from the request.

    Args:
        lots: Candidate lots in FIFO order
        quantity_needed: Quantity to cover
        material_id: Material reported on shortage (default: the lots' material)

    Returns:
        List of {"lot": Lot, "quantity": float, "new_balance": float}

    Raises:
        InsufficientLotStock: The lots fall short by more than QUANTITY_EPSILON
    """
    remaining = float(quantity_needed)
    plan = []
    for lot in lots:
        if remaining <= QUANTITY_EPSILON:
            break
        balance = float(lot.current_balance)
        take = min(remaining, balance)
        if balance - take < QUANTITY_EPSILON:
            take = balance
        plan.append({"lot": lot, "quantity": take, "new_balance": balance - take})
        remaining -= take

    if remaining > QUANTITY_EPSILON:
        available = sum(float(lot.current_balance) for lot in lots)
        if material_id is None and lots:
            material_id = lots[0].material_id
        raise InsufficientLotStock(material_id, float(quantity_needed), available)
    return plan


def _allocate_lots_impl(
    batch_id: int,
    material_id: int,
    quantity_needed: float,
    created_by: Optional[str],
    session: Session,
) -> List[LotAllocation]:
    if quantity_needed is None or not quantity_needed > 0:
        raise ValidationError(["quantity_needed must be positive"])

    material = session.get(Material, material_id)
    if material is None:
        raise MaterialNotFound(material_id)
    _hold_material_lock(material_id, session)
    batch = session.get(Batch, batch_id)
    if batch is None:
        raise BatchNotFound(batch_id)

    lots = _fifo_query(material_id, session).with_for_update().populate_existing().all()
    try:
        plan = plan_fifo_allocation(lots, quantity_needed, material_id)
    except InsufficientLotStock as e:
        log_operation(
            logger,
            operation="allocate_lots",
            outcome="insufficient_stock",
            level=logging.WARNING,
            batch_id=batch_id,
            material_id=material_id,
            required=e.required,
            available=e.available,
        )
        raise

    allocations = []
    for step in plan:
        lot = step["lot"]
        _append_event(
            lot,
            LotEventType.CONSUME,
            -step["quantity"],
            session,
            batch_id=batch_id,
            reason=f"Consumed in batch {batch.batch_number}",
            created_by=created_by,
        )
        session.add(
            BatchLotUsage(
                batch_id=batch_id,
                lot_id=lot.id,
                material_id=material_id,
                quantity_used=step["quantity"],
                unit=material.unit,
            )
        )
        allocations.append(
            LotAllocation(
                lot_id=lot.id,
                lot_number=lot.lot_number,
                internal_lot_code=lot.internal_lot_code,
                quantity_allocated=step["quantity"],
                new_balance=lot.current_balance,
            )
        )
    session.flush()

    log_operation(
        logger,
        operation="allocate_lots",
        outcome="success",
        batch_id=batch_id,
        material_id=material_id,
        quantity=float(quantity_needed),
        lots_touched=len(allocations),
    )
    return allocations


def allocate_lots(
    batch_id: int,
    material_id: int,
    quantity_needed: float,
    created_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> List[LotAllocation]:
    """Allocate stock to a batch, oldest lots first.

    **All-or-nothing**: either every lot decrement, ledger event and usage
    record is written, or nothing is.

    Algorithm:
        1. Take the material's allocation lock for this session and load its
           available lots with stock, ordered by received_date then id
        2. Plan min(remaining, balance) from each lot until covered (to
           within QUANTITY_EPSILON, see plan_fifo_allocation)
        3. If the lots cannot cover the request, raise before any change
        4. Append one 'consume' event and one usage record per touched lot

    The material lock is released when the session's transaction ends, not
    when this function returns. With a caller-supplied session, another
    allocation of the same material waits until the caller commits or rolls
    back, so it always plans against committed balances.

    Args:
        batch_id: Batch receiving the stock
        material_id: Material to allocate
        quantity_needed: Quantity in the material's unit (> 0)
        created_by: Who allocated
        session: Optional database session. If provided, the caller owns the
                 transaction and this function will NOT commit.

    Returns:
        List of LotAllocation, one per touched lot, in FIFO order

    Raises:
        ValidationError: quantity_needed is not positive
        MaterialNotFound / BatchNotFound: Unknown ids
        InsufficientLotStock: Total available balance is too small
        AllocationBusy: Another open session holds the material lock

    Example:
        >>> allocate_lots(batch.id, beef.id, 15000.0)
        [LotAllocation(lot_id=1, ..., quantity_allocated=10000.0, new_balance=0.0),
         LotAllocation(lot_id=2, ..., quantity_allocated=5000.0, new_balance=5000.0)]
    """
    if session is not None:
        return _allocate_lots_impl(batch_id, material_id, quantity_needed, created_by, session)
    with session_scope() as sess:
        return _allocate_lots_impl(batch_id, material_id, quantity_needed, created_by, sess)


# =============================================================================
# Adjustments and Status
# =============================================================================


def _adjust_lot_impl(lot_id, quantity_delta, event_type, reason, created_by, session) -> LotEvent:
    try:
        event_type = LotEventType(event_type)
    except ValueError:
        event_type = None
    if event_type not in ADJUSTMENT_EVENT_TYPES:
        raise ValidationError(["event_type must be one of adjust, scrap, return"])
    if quantity_delta is None or quantity_delta == 0:
        raise ValidationError(["quantity_delta must be non-zero"])
    if event_type == LotEventType.SCRAP and quantity_delta > 0:
        raise ValidationError(["scrap events must be negative"])
    if not reason or not reason.strip():
        raise ValidationError(["reason is required"])

    lot = _get_lot(lot_id, session, for_update=True)
    new_balance = float(lot.current_balance) + float(quantity_delta)
    if new_balance < -QUANTITY_EPSILON or new_balance > float(lot.quantity_received) + QUANTITY_EPSILON:
        raise ValidationError(
            [f"Balance after adjustment ({new_balance}) must be between 0 and "
             f"{lot.quantity_received}"]
        )

    event = _append_event(
        lot, event_type, float(quantity_delta), session,
        reason=reason.strip(), created_by=created_by,
    )
    session.flush()
    log_operation(
        logger,
        operation="adjust_lot",
        outcome="success",
        lot_id=lot_id,
        event_type=event_type.value,
        quantity=float(quantity_delta),
    )
    return event


def adjust_lot(
    lot_id: int,
    quantity_delta: float,
    event_type: str = "adjust",
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> LotEvent:
    """
    Record a correcting event against a lot.

    Args:
        lot_id: Lot to adjust
        quantity_delta: Signed change (scrap must be negative)
        event_type: 'adjust', 'scrap' or 'return'
        reason: Required explanation
        created_by: Who recorded it
        session: Optional database session

    Returns:
        The new LotEvent

    Raises:
        ValidationError: Bad type/quantity/reason, or the balance would leave
            [0, quantity_received]
        LotNotFound: lot_id does not exist
    """
    args = (lot_id, quantity_delta, event_type, reason, created_by)
    if session is not None:
        return _adjust_lot_impl(*args, session)
    with session_scope() as sess:
        return _adjust_lot_impl(*args, sess)


def _set_status_impl(lot_id, target, event_type, allowed_from, reason, created_by, session) -> Lot:
    lot = _get_lot(lot_id, session, for_update=True)
    if lot.status not in allowed_from:
        raise InvalidStatusTransition(f"lot {lot_id}", lot.status, target)
    _append_event(lot, event_type, 0.0, session, reason=reason, created_by=created_by)
    lot.status = target
    if target == LotStatus.AVAILABLE.value and float(lot.current_balance) == 0.0:
        lot.status = LotStatus.DEPLETED.value
    session.flush()
    log_operation(
        logger,
        operation=f"{event_type.value}_lot",
        outcome="success",
        lot_id=lot_id,
        status=lot.status,
    )
    return lot


def quarantine_lot(
    lot_id: int,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> Lot:
    """
    Move an available lot to quarantine (excluded from allocation).

    Raises:
        InvalidStatusTransition: Lot is not available
    """
    args = (
        lot_id, LotStatus.QUARANTINE.value, LotEventType.QUARANTINE,
        (LotStatus.AVAILABLE.value,), reason, created_by,
    )
    if session is not None:
        return _set_status_impl(*args, session)
    with session_scope() as sess:
        return _set_status_impl(*args, sess)


def release_lot(
    lot_id: int,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> Lot:
    """
    Release a quarantined lot back to available.

    Raises:
        InvalidStatusTransition: Lot is not in quarantine
    """
    args = (
        lot_id, LotStatus.AVAILABLE.value, LotEventType.RELEASE,
        (LotStatus.QUARANTINE.value,), reason, created_by,
    )
    if session is not None:
        return _set_status_impl(*args, session)
    with session_scope() as sess:
        return _set_status_impl(*args, sess)


# =============================================================================
# Recall and Traceability
# =============================================================================


def _recall_lot_impl(lot_id, reason, notes, initiated_by, session) -> Dict[str, Any]:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError(["Recall reason is required"])
    notes = (notes or "").strip() or None

    lot = _get_lot(lot_id, session, for_update=True)
    now = utc_now()

    batch_ids = sorted({
        row.batch_id
        for row in session.query(BatchLotUsage.batch_id).filter(BatchLotUsage.lot_id == lot_id)
    })

    recall = LotRecall(lot_id=lot_id, reason=reason, notes=notes, initiated_by=initiated_by)
    recall.affected_batches = [LotRecallBatch(batch_id=bid) for bid in batch_ids]
    session.add(recall)

    lot.status = LotStatus.RECALLED.value
    lot.recall_reason = reason
    lot.recall_notes = notes
    lot.recall_initiated_at = now
    lot.recall_initiated_by = initiated_by

    if batch_ids:
        for batch in session.query(Batch).filter(Batch.id.in_(batch_ids)):
            batch.release_status = ReleaseStatus.RECALLED.value
            batch.recall_reason = reason
            batch.recall_notes = notes
            batch.recalled_at = now

    session.flush()
    log_operation(
        logger,
        operation="recall_lot",
        outcome="success",
        level=logging.WARNING,
        lot_id=lot_id,
        affected_batches=len(batch_ids),
    )
    return {"recall_id": recall.id, "lot_id": lot_id, "affected_batch_ids": batch_ids}


def recall_lot(
    lot_id: int,
    reason: str,
    notes: Optional[str] = None,
    initiated_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Recall a lot and every batch that consumed it.

    Marks the lot 'recalled', records a LotRecall listing the affected
    batches and sets release_status='recalled' on each of them.

    Returns:
        Dict with recall_id, lot_id and affected_batch_ids

    Raises:
        ValidationError: Empty reason
        LotNotFound: lot_id does not exist
    """
    if session is not None:
        return _recall_lot_impl(lot_id, reason, notes, initiated_by, session)
    with session_scope() as sess:
        return _recall_lot_impl(lot_id, reason, notes, initiated_by, sess)


def get_lot_batches(lot_id: int, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Batches that consumed a lot, with quantities.

    Returns:
        List of dicts: batch_id, batch_number, recipe_name, quantity_used, unit
    """
    def _impl(sess: Session) -> List[Dict[str, Any]]:
        _get_lot(lot_id, sess)
        rows = (
            sess.query(BatchLotUsage, Batch)
            .join(Batch, Batch.id == BatchLotUsage.batch_id)
            .filter(BatchLotUsage.lot_id == lot_id)
            .order_by(BatchLotUsage.id)
            .all()
        )
        return [
            {
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "recipe_name": batch.recipe.name if batch.recipe else None,
                "quantity_used": usage.quantity_used,
                "unit": usage.unit,
            }
            for usage, batch in rows
        ]

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_batch_lots(batch_id: int, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    Lots consumed by a batch, with quantities.

    Returns:
        List of dicts: lot_id, lot_number, internal_lot_code, material_id,
        received_date, quantity_used, unit
    """
    def _impl(sess: Session) -> List[Dict[str, Any]]:
        if sess.get(Batch, batch_id) is None:
            raise BatchNotFound(batch_id)
        rows = (
            sess.query(BatchLotUsage, Lot)
            .join(Lot, Lot.id == BatchLotUsage.lot_id)
            .filter(BatchLotUsage.batch_id == batch_id)
            .order_by(BatchLotUsage.id)
            .all()
        )
        return [
            {
                "lot_id": lot.id,
                "lot_number": lot.lot_number,
                "internal_lot_code": lot.internal_lot_code,
                "material_id": usage.material_id,
                "received_date": lot.received_date,
                "quantity_used": usage.quantity_used,
                "unit": usage.unit,
            }
            for usage, lot in rows
        ]

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_expiring_lots(
    days: int = 14, today: Optional[date] = None, session: Optional[Session] = None
) -> List[Lot]:
    """
    Available lots with stock expiring within `days` (soonest first).

    Already-expired lots are included; lots without an expiry date are not.
    """
    today = today or date.today()
    cutoff = today + timedelta(days=days)

    def _impl(sess: Session) -> List[Lot]:
        return (
            sess.query(Lot)
            .filter(
                Lot.status == LotStatus.AVAILABLE.value,
                Lot.current_balance > 0,
                Lot.expiry_date.isnot(None),
                Lot.expiry_date <= cutoff,
            )
            .order_by(Lot.expiry_date.asc(), Lot.id.asc())
            .all()
        )

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_inventory_summary(session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    On-hand stock per active material, ordered by material name.

    Only 'available' lots count toward the totals. A material with no such
    lots is listed with a zero total and no dates.

    Returns:
        List of dicts: material_id, name, material_code, category, unit,
        reorder_point, total_on_hand, lot_count, oldest_lot_date,
        nearest_expiry_date, is_low_stock (total below a set reorder_point)
    """
    def _impl(sess: Session) -> List[Dict[str, Any]]:
        rows = (
            sess.query(
                Material,
                func.coalesce(func.sum(Lot.current_balance), 0.0),
                func.count(Lot.id),
                func.min(Lot.received_date),
                func.min(Lot.expiry_date),
            )
            .outerjoin(
                Lot,
                and_(Lot.material_id == Material.id, Lot.status == LotStatus.AVAILABLE.value),
            )
            .filter(Material.active.is_(True))
            .group_by(Material.id)
            .order_by(Material.name, Material.id)
            .all()
        )
        summary = []
        for material, total, lot_count, oldest, nearest_expiry in rows:
            total = float(total or 0.0)
            reorder_point = material.reorder_point
            summary.append({
                "material_id": material.id,
                "name": material.name,
                "material_code": material.material_code,
                "category": material.category,
                "unit": material.unit,
                "reorder_point": reorder_point,
                "total_on_hand": total,
                "lot_count": int(lot_count or 0),
                "oldest_lot_date": oldest,
                "nearest_expiry_date": nearest_expiry,
                "is_low_stock": reorder_point is not None and total < float(reorder_point),
            })
        return summary

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# =============================================================================
# Ledger
# =============================================================================


def get_lot_events(lot_id: int, session: Optional[Session] = None) -> List[LotEvent]:
    """Ledger events for a lot in the order they were written."""
    def _impl(sess: Session) -> List[LotEvent]:
        _get_lot(lot_id, sess)
        return sess.query(LotEvent).filter(LotEvent.lot_id == lot_id).order_by(LotEvent.id).all()

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def _ledger_sum(lot_id: int, session: Session) -> float:
    total = (
        session.query(func.coalesce(func.sum(LotEvent.quantity), 0.0))
        .filter(LotEvent.lot_id == lot_id)
        .scalar()
    )
    return float(total or 0.0)


def get_ledger_balance(lot_id: int, session: Optional[Session] = None) -> float:
    """Signed sum of a lot's ledger events (the authoritative balance)."""
    def _impl(sess: Session) -> float:
        _get_lot(lot_id, sess)
        return _ledger_sum(lot_id, sess)

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def verify_lot_ledger(lot_id: int, session: Optional[Session] = None) -> float:
    """
    Check that a lot's cached balance matches its ledger.

    Returns:
        The ledger balance

    Raises:
        LedgerInconsistency: The cache has drifted
    """
    def _impl(sess: Session) -> float:
        lot = _get_lot(lot_id, sess)
        ledger = _ledger_sum(lot_id, sess)
        if abs(float(lot.current_balance) - ledger) > QUANTITY_EPSILON:
            raise LedgerInconsistency(lot_id, float(lot.current_balance), ledger)
        return ledger

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def reconcile_lot_balance(lot_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Repair a lot's cached balance from its ledger.

    Returns:
        Dict with lot_id, cached (before), ledger, corrected (bool)
    """
    def _impl(sess: Session) -> Dict[str, Any]:
        lot = _get_lot(lot_id, sess, for_update=True)
        cached = float(lot.current_balance)
        ledger = _ledger_sum(lot_id, sess)
        corrected = abs(cached - ledger) > QUANTITY_EPSILON
        if corrected:
            lot.current_balance = max(ledger, 0.0)
            if lot.current_balance == 0.0 and lot.status == LotStatus.AVAILABLE.value:
                lot.status = LotStatus.DEPLETED.value
            elif lot.current_balance > 0.0 and lot.status == LotStatus.DEPLETED.value:
                lot.status = LotStatus.AVAILABLE.value
            sess.flush()
            log_operation(
                logger,
                operation="reconcile_lot_balance",
                outcome="corrected",
                level=logging.WARNING,
                lot_id=lot_id,
                cached=cached,
                ledger=ledger,
            )
        return {"lot_id": lot_id, "cached": cached, "ledger": ledger, "corrected": corrected}

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)
