"""
Batch Service - production batch lifecycle and ingredient measurements.

This module provides functions for:
- Creating batches with generated batch numbers and seeded targets
- Re-scaling an in-progress batch to a new input mass
- Recording measured ingredient amounts (tolerance and cure evaluation)
- Lifecycle transitions: complete, release, recall, cancel, hold

Lifecycle:
    in_progress -> completed -> released
    in_progress -> cancelled
    released -> completed (recall, release_status='recalled')

Completion is gated on QA: complete_batch() raises BatchNotCompletable
unless every stage has all of its required checkpoints passed.

The service integrates with:
- recipe_scaling_service for scaling factors and ingredient targets
- cure_service / settings_service for ppm dosing and thresholds
- tolerance_service for measurement evaluation
- qa_service for the completion gate
"""

from datetime import date
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import (
    Batch,
    BatchCureAudit,
    BatchDayCounter,
    BatchIngredientActual,
    BatchStatus,
    Recipe,
    ReleaseStatus,
)
from ..utils.constants import ALL_UNITS, BATCH_NUMBER_PREFIX, UNIT_GRAMS, UNIT_KILOGRAMS
from ..utils.datetime_utils import utc_now
from . import lot_service
from .cure_service import calculate_ppm, evaluate_cure_status
from .database import session_scope
from .exceptions import (
    AllocationBusy,
    BatchNotCompletable,
    BatchNotFound,
    InsufficientLotStock,
    InvalidStatusTransition,
    RecipeNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .qa_service import get_batch_qa_progress
from .recipe_scaling_service import (
    batch_input_mass_grams,
    batch_scaling_factor,
    calculate_ingredient_target,
    compute_scaling_factor,
    determine_cure_base_mass,
)
from .settings_service import get_cure_settings
from .tolerance_service import evaluate_tolerance, resolve_tolerance
from .unit_converter import convert, to_grams

logger = get_service_logger(__name__)

_ACCEPTED_UNITS = set(ALL_UNITS) | {"l"}


# =============================================================================
# Helpers
# =============================================================================


def _get_batch(batch_id: int, session: Session, for_update: bool = False) -> Batch:
    query = session.query(Batch).filter(Batch.id == batch_id)
    if for_update:
        query = query.with_for_update()
    batch = query.first()
    if batch is None:
        raise BatchNotFound(batch_id)
    return batch


def _require_status(batch: Batch, allowed, target: str) -> None:
    if batch.status not in allowed:
        raise InvalidStatusTransition(f"batch {batch.id}", batch.status, target)


def next_batch_number(session: Session, on_date: Optional[date] = None) -> str:
    """
    Issue the next batch number for a day: BYYYYMMDD-NNN.

    The per-day counter row is locked while it is incremented.
    """
    day = on_date or utc_now().date()
    counter = (
        session.query(BatchDayCounter)
        .filter(BatchDayCounter.day == day)
        .with_for_update()
        .first()
    )
    if counter is None:
        counter = BatchDayCounter(day=day, counter=0)
        session.add(counter)
    counter.counter += 1
    session.flush()
    return f"{BATCH_NUMBER_PREFIX}{day.strftime('%Y%m%d')}-{counter.counter:03d}"


def _line_targets(batch: Batch, session: Session) -> Dict[int, Any]:
    """Recipe line and IngredientTarget per material for a batch."""
    recipe = batch.recipe
    factor = batch_scaling_factor(batch)
    ingredients = list(recipe.ingredients)
    base_mass = determine_cure_base_mass(
        ingredients,
        factor,
        batch_input_mass_grams(batch),
        float(recipe.base_reference_mass or 0.0),
    )
    settings = get_cure_settings(session=session)
    return {
        ing.material_id: (
            ing,
            calculate_ingredient_target(ing, factor, base_mass, settings),
        )
        for ing in ingredients
    }


# =============================================================================
# Creation and Scaling
# =============================================================================


def _create_batch_impl(
    recipe_id: int,
    input_mass_kg: float,
    batch_number: Optional[str],
    product_name: Optional[str],
    created_by: Optional[str],
    notes: Optional[str],
    scaling_factor: Optional[float],
    auto_allocate: bool,
    session: Session,
) -> Batch:
    errors = []
    if input_mass_kg is None or not input_mass_kg > 0:
        errors.append("input_mass_kg must be positive")
    if scaling_factor is not None and not scaling_factor > 0:
        errors.append("scaling_factor must be positive when given")
    if errors:
        raise ValidationError(errors)

    recipe = session.get(Recipe, recipe_id)
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    if not recipe.active:
        raise ValidationError([f"Recipe '{recipe.name}' is inactive"])

    if batch_number:
        if session.query(Batch).filter(Batch.batch_number == batch_number).first():
            raise ValidationError([f"Batch number {batch_number} already exists"])
    else:
        batch_number = next_batch_number(session)

    input_grams = to_grams(float(input_mass_kg), UNIT_KILOGRAMS)
    factor = compute_scaling_factor(
        input_grams, float(recipe.base_reference_mass or 0.0), scaling_factor
    )

    batch = Batch(
        batch_number=batch_number,
        recipe_id=recipe.id,
        product_name=product_name,
        input_mass=float(input_mass_kg),
        input_unit=UNIT_KILOGRAMS,
        scaling_factor=factor,
        status=BatchStatus.IN_PROGRESS.value,
        created_by=created_by,
        notes=notes,
    )
    batch.recipe = recipe
    session.add(batch)
    session.flush()

    for material_id, (ing, target) in _line_targets(batch, session).items():
        session.add(
            BatchIngredientActual(
                batch_id=batch.id,
                material_id=material_id,
                ingredient_name=ing.material.name if ing.material else "Unknown",
                target_amount=target.target_amount,
                unit=ing.unit,
                tolerance_percentage=resolve_tolerance(configured=ing.tolerance_percentage),
                is_cure=target.is_cure,
                cure_required_grams=target.cure_required_grams,
                cure_unit=ing.unit if target.is_cure else None,
            )
        )
    session.flush()

    if auto_allocate:
        _allocate_batch_materials_impl(batch, created_by, session)

    log_operation(
        logger,
        operation="create_batch",
        outcome="success",
        batch_id=batch.id,
        batch_number=batch.batch_number,
        recipe_id=recipe.id,
        scaling_factor=factor,
    )
    return batch


def create_batch(
    recipe_id: int,
    input_mass_kg: float,
    batch_number: Optional[str] = None,
    product_name: Optional[str] = None,
    created_by: Optional[str] = None,
    notes: Optional[str] = None,
    scaling_factor: Optional[float] = None,
    auto_allocate: bool = False,
    session: Optional[Session] = None,
) -> Batch:
    """
    Start a production batch from a recipe.

    Generates a batch number when none is given, stores the scaling factor
    and seeds one ingredient row per recipe line with its initial target.
    With auto_allocate, lots are then allocated for every line as by
    allocate_batch_materials(); lines short of stock are logged and left for
    manual allocation without failing the batch.

    Args:
        recipe_id: Recipe to produce
        input_mass_kg: Primary input mass in kg (> 0)
        batch_number: Explicit batch number (must be unused)
        product_name: Finished product name
        created_by: Operator
        notes: Free-form notes
        scaling_factor: Explicit factor overriding input mass / base mass
        auto_allocate: Allocate FIFO lots for each recipe line
        session: Optional database session

    Returns:
        The new Batch (status 'in_progress')

    Raises:
        ValidationError: Non-positive mass or factor, duplicate number,
            inactive recipe
        RecipeNotFound: recipe_id does not exist
    """
    args = (
        recipe_id, input_mass_kg, batch_number, product_name, created_by, notes, scaling_factor,
        auto_allocate,
    )
    if session is not None:
        return _create_batch_impl(*args, session)
    with session_scope() as sess:
        return _create_batch_impl(*args, sess)


def update_input_mass(
    batch_id: int, input_mass_kg: float, session: Optional[Session] = None
) -> Batch:
    """
    Change the input mass of an in-progress batch.

    The scaling factor is recomputed from the new mass and the targets of
    rows that have not been measured yet are refreshed. Measured rows keep
    the target they were evaluated against.

    Raises:
        ValidationError: input_mass_kg is not positive
        InvalidStatusTransition: Batch is not in progress
    """
    def _impl(sess: Session) -> Batch:
        if input_mass_kg is None or not input_mass_kg > 0:
            raise ValidationError(["input_mass_kg must be positive"])
        batch = _get_batch(batch_id, sess, for_update=True)
        _require_status(batch, (BatchStatus.IN_PROGRESS.value,), "rescale")

        batch.input_mass = float(input_mass_kg)
        batch.input_unit = UNIT_KILOGRAMS
        batch.scaling_factor = compute_scaling_factor(
            to_grams(float(input_mass_kg), UNIT_KILOGRAMS),
            float(batch.recipe.base_reference_mass or 0.0),
        )

        targets = _line_targets(batch, sess)
        for row in batch.ingredient_actuals:
            if row.actual_amount is not None or row.material_id not in targets:
                continue
            ing, target = targets[row.material_id]
            row.target_amount = convert(target.target_amount, ing.unit, row.unit)
            row.cure_required_grams = target.cure_required_grams
        sess.flush()

        log_operation(
            logger,
            operation="update_input_mass",
            outcome="success",
            batch_id=batch_id,
            scaling_factor=batch.scaling_factor,
        )
        return batch

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# =============================================================================
# Lot Allocation
# =============================================================================


def _allocate_batch_materials_impl(
    batch: Batch, created_by: Optional[str], session: Session
) -> List[Dict[str, Any]]:
    results = []
    for material_id, (ing, target) in _line_targets(batch, session).items():
        material = ing.material
        unit = material.unit if material is not None else ing.unit
        quantity = convert(target.target_amount, target.unit, unit)
        result = {
            "material_id": material_id,
            "quantity": quantity,
            "unit": unit,
            "allocations": [],
            "error": None,
        }
        if not quantity > 0:
            results.append(result)
            continue
        try:
            result["allocations"] = lot_service.allocate_lots(
                batch.id, material_id, quantity, created_by=created_by, session=session
            )
        except (InsufficientLotStock, AllocationBusy) as e:
            result["error"] = str(e)
            log_operation(
                logger,
                operation="allocate_batch_materials",
                outcome="left_for_manual_allocation",
                level=logging.WARNING,
                batch_id=batch.id,
                material_id=material_id,
                error=str(e),
            )
        results.append(result)
    return results


def allocate_batch_materials(
    batch_id: int, created_by: Optional[str] = None, session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """
    Allocate lots for every recipe line of a batch, oldest lots first.

    Each line's scaled target is converted to the material's unit and passed
    to lot_service.allocate_lots(). A line that cannot be covered (or whose
    material is locked by another session) is skipped with a warning and
    left for manual allocation; the other lines are still allocated.

    Args:
        batch_id: Batch to allocate for
        created_by: Who allocated
        session: Optional database session

    Returns:
        One dict per recipe line: material_id, quantity, unit, allocations
        (list of LotAllocation) and error (None when allocated)

    Raises:
        BatchNotFound: batch_id does not exist
        InvalidStatusTransition: Batch is not in progress
    """
    def _impl(sess: Session) -> List[Dict[str, Any]]:
        batch = _get_batch(batch_id, sess)
        _require_status(batch, (BatchStatus.IN_PROGRESS.value,), "allocate")
        results = _allocate_batch_materials_impl(batch, created_by, sess)
        log_operation(
            logger,
            operation="allocate_batch_materials",
            outcome="success",
            batch_id=batch_id,
            lines=len(results),
            lines_short=sum(1 for r in results if r["error"]),
        )
        return results

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# =============================================================================
# Ingredient Measurements
# =============================================================================


def _record_ingredient_actual_impl(
    batch_id: int,
    material_id: int,
    actual_amount: float,
    unit: str,
    tolerance_percentage: Optional[float],
    recorded_by: Optional[str],
    session: Session,
) -> BatchIngredientActual:
    errors = []
    if actual_amount is None or not actual_amount > 0:
        errors.append("actual_amount must be positive")
    if unit not in _ACCEPTED_UNITS:
        errors.append(f"Unknown unit: {unit}")
    if errors:
        raise ValidationError(errors)

    batch = _get_batch(batch_id, session)
    _require_status(batch, (BatchStatus.IN_PROGRESS.value,), "measure")

    recipe = batch.recipe
    ingredients = list(recipe.ingredients)
    line = next((ing for ing in ingredients if ing.material_id == material_id), None)
    if line is None:
        raise ValidationError([f"Material {material_id} is not part of recipe '{recipe.name}'"])

    factor = batch_scaling_factor(batch)
    base_mass = determine_cure_base_mass(
        ingredients,
        factor,
        batch_input_mass_grams(batch),
        float(recipe.base_reference_mass or 0.0),
    )
    settings = get_cure_settings(session=session)

    target = calculate_ingredient_target(line, factor, base_mass, settings, display_unit=unit)
    tolerance = resolve_tolerance(tolerance_percentage, line.tolerance_percentage)
    result = evaluate_tolerance(float(actual_amount), target.target_amount, tolerance)

    cure_ppm = None
    cure_status = None
    actual_grams = None
    if target.is_cure and target.cure_type:
        actual_grams = to_grams(convert(float(actual_amount), unit, line.unit), line.unit)
        total_mass = base_mass + actual_grams
        if actual_grams > 0 and total_mass > 0:
            cure_ppm = calculate_ppm(actual_grams, total_mass, target.cure_type)
            cure_status = evaluate_cure_status(cure_ppm, settings).value

    row = (
        session.query(BatchIngredientActual)
        .filter(
            BatchIngredientActual.batch_id == batch_id,
            BatchIngredientActual.material_id == material_id,
        )
        .first()
    )
    if row is None:
        row = BatchIngredientActual(
            batch_id=batch_id,
            material_id=material_id,
            ingredient_name=line.material.name if line.material else "Unknown",
        )
        session.add(row)

    row.actual_amount = float(actual_amount)
    row.unit = unit
    row.target_amount = target.target_amount
    row.tolerance_percentage = tolerance
    row.in_tolerance = result.in_tolerance
    row.measured_at = utc_now()
    row.recorded_by = recorded_by
    row.is_cure = target.is_cure
    row.cure_required_grams = target.cure_required_grams
    row.cure_ppm = cure_ppm
    row.cure_status = cure_status
    row.cure_unit = line.unit if target.is_cure else None

    if target.is_cure:
        session.add(
            BatchCureAudit(
                batch_id=batch_id,
                material_id=material_id,
                cure_type=target.cure_type,
                actual_grams=actual_grams if actual_grams is not None else float(actual_amount),
                required_grams=target.cure_required_grams,
                base_mass_grams=base_mass,
                cure_ppm=cure_ppm,
                cure_status=cure_status,
                recorded_by=recorded_by,
            )
        )
    session.flush()

    out_of_range = not result.in_tolerance or cure_status not in (None, "OK")
    log_operation(
        logger,
        operation="record_ingredient_actual",
        outcome="out_of_range" if out_of_range else "success",
        level=logging.WARNING if out_of_range else logging.INFO,
        batch_id=batch_id,
        material_id=material_id,
        diff_percent=result.diff_percent,
        cure_ppm=cure_ppm,
        cure_status=cure_status,
    )
    return row


def record_ingredient_actual(
    batch_id: int,
    material_id: int,
    actual_amount: float,
    unit: str = UNIT_GRAMS,
    tolerance_percentage: Optional[float] = None,
    recorded_by: Optional[str] = None,
    session: Optional[Session] = None,
) -> BatchIngredientActual:
    """Record the measured amount of one ingredient.

    The target is recomputed from the batch's current scale: cure lines with
    a known agent target the ppm dose for the cure base mass; other lines
    target quantity x scaling factor. The target is expressed in the
    measurement unit before tolerance is evaluated. For cure lines the
    achieved ppm is computed over base mass + actual grams and an audit row
    is appended.

    Each call overwrites the single row for (batch, material).

    Args:
        batch_id: Batch being measured
        material_id: Material measured (must be in the batch's recipe)
        actual_amount: Measured amount (> 0)
        unit: Unit of actual_amount
        tolerance_percentage: Override of the recipe line's tolerance
        recorded_by: Operator
        session: Optional database session

    Returns:
        The BatchIngredientActual row

    Raises:
        ValidationError: Non-positive amount, unknown unit, or material not
            in the recipe
        BatchNotFound: batch_id does not exist
        InvalidStatusTransition: Batch is not in progress

    Example:
        Recipe base 1000 g, batch input 2 kg, line 50 g: target 100 g.
        >>> row = record_ingredient_actual(batch.id, salt.id, 104.0, "g")
        >>> row.target_amount, row.in_tolerance
        (100.0, True)
    """
    args = (batch_id, material_id, actual_amount, unit, tolerance_percentage, recorded_by)
    if session is not None:
        return _record_ingredient_actual_impl(*args, session)
    with session_scope() as sess:
        return _record_ingredient_actual_impl(*args, sess)


def get_ingredient_actuals(
    batch_id: int, session: Optional[Session] = None
) -> List[BatchIngredientActual]:
    """Ingredient rows of a batch ordered by ingredient name."""
    def _impl(sess: Session) -> List[BatchIngredientActual]:
        _get_batch(batch_id, sess)
        return (
            sess.query(BatchIngredientActual)
            .filter(BatchIngredientActual.batch_id == batch_id)
            .order_by(BatchIngredientActual.ingredient_name, BatchIngredientActual.id)
            .all()
        )

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_cure_audit(batch_id: int, session: Optional[Session] = None) -> List[BatchCureAudit]:
    """Cure measurement history of a batch, oldest first."""
    def _impl(sess: Session) -> List[BatchCureAudit]:
        _get_batch(batch_id, sess)
        return (
            sess.query(BatchCureAudit)
            .filter(BatchCureAudit.batch_id == batch_id)
            .order_by(BatchCureAudit.id)
            .all()
        )

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# =============================================================================
# Lifecycle
# =============================================================================


def _complete_batch_impl(batch_id: int, session: Session) -> Batch:
    batch = _get_batch(batch_id, session, for_update=True)
    _require_status(batch, (BatchStatus.IN_PROGRESS.value,), BatchStatus.COMPLETED.value)

    progress = get_batch_qa_progress(batch_id, session=session)
    if not progress.can_complete:
        log_operation(
            logger,
            operation="complete_batch",
            outcome="qa_incomplete",
            level=logging.WARNING,
            batch_id=batch_id,
            current_stage=progress.current_stage,
        )
        raise BatchNotCompletable(batch_id, progress.current_stage)

    batch.status = BatchStatus.COMPLETED.value
    batch.completed_at = utc_now()
    session.flush()
    log_operation(logger, operation="complete_batch", outcome="success", batch_id=batch_id)
    return batch


def complete_batch(batch_id: int, session: Optional[Session] = None) -> Batch:
    """
    Mark an in-progress batch completed.

    Raises:
        BatchNotFound: batch_id does not exist
        InvalidStatusTransition: Batch is not in progress
        BatchNotCompletable: Required QA checkpoints are outstanding
    """
    if session is not None:
        return _complete_batch_impl(batch_id, session)
    with session_scope() as sess:
        return _complete_batch_impl(batch_id, sess)


def release_batch(batch_id: int, session: Optional[Session] = None) -> Batch:
    """
    Release a completed batch (release_status 'approved').

    Releasing an already released batch is a no-op.

    Raises:
        InvalidStatusTransition: Batch is neither completed nor released
    """
    def _impl(sess: Session) -> Batch:
        batch = _get_batch(batch_id, sess, for_update=True)
        if batch.status == BatchStatus.RELEASED.value:
            return batch
        _require_status(batch, (BatchStatus.COMPLETED.value,), BatchStatus.RELEASED.value)

        batch.status = BatchStatus.RELEASED.value
        batch.release_status = ReleaseStatus.APPROVED.value
        batch.completed_at = utc_now()
        sess.flush()
        log_operation(logger, operation="release_batch", outcome="success", batch_id=batch_id)
        return batch

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def recall_batch(
    batch_id: int,
    reason: str,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> Batch:
    """
    Recall a batch.

    A released batch goes back to 'completed'; every recalled batch gets
    release_status 'recalled' and the recall details.

    Raises:
        ValidationError: Empty reason
        InvalidStatusTransition: Batch is in progress or cancelled
    """
    def _impl(sess: Session) -> Batch:
        clean_reason = (reason or "").strip()
        if not clean_reason:
            raise ValidationError(["Recall reason is required"])
        batch = _get_batch(batch_id, sess, for_update=True)
        _require_status(
            batch,
            (BatchStatus.COMPLETED.value, BatchStatus.RELEASED.value),
            ReleaseStatus.RECALLED.value,
        )

        if batch.status == BatchStatus.RELEASED.value:
            batch.status = BatchStatus.COMPLETED.value
        batch.release_status = ReleaseStatus.RECALLED.value
        batch.recall_reason = clean_reason
        batch.recall_notes = (notes or "").strip() or None
        batch.recalled_at = utc_now()
        sess.flush()
        log_operation(
            logger,
            operation="recall_batch",
            outcome="success",
            level=logging.WARNING,
            batch_id=batch_id,
        )
        return batch

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def cancel_batch(batch_id: int, session: Optional[Session] = None) -> Batch:
    """
    Cancel an in-progress batch.

    Raises:
        InvalidStatusTransition: Batch is not in progress
    """
    def _impl(sess: Session) -> Batch:
        batch = _get_batch(batch_id, sess, for_update=True)
        _require_status(batch, (BatchStatus.IN_PROGRESS.value,), BatchStatus.CANCELLED.value)
        batch.status = BatchStatus.CANCELLED.value
        sess.flush()
        log_operation(logger, operation="cancel_batch", outcome="success", batch_id=batch_id)
        return batch

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def hold_batch(batch_id: int, session: Optional[Session] = None) -> Batch:
    """
    Put a completed batch on hold (release_status 'hold').

    Raises:
        InvalidStatusTransition: Batch is not completed
    """
    def _impl(sess: Session) -> Batch:
        batch = _get_batch(batch_id, sess, for_update=True)
        _require_status(batch, (BatchStatus.COMPLETED.value,), ReleaseStatus.HOLD.value)
        batch.release_status = ReleaseStatus.HOLD.value
        sess.flush()
        log_operation(logger, operation="hold_batch", outcome="success", batch_id=batch_id)
        return batch

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def set_best_before(
    batch_id: int, best_before_date: Optional[date], session: Optional[Session] = None
) -> Batch:
    """Set (or clear) the printed best-before date of a batch."""
    def _impl(sess: Session) -> Batch:
        batch = _get_batch(batch_id, sess)
        batch.best_before_date = best_before_date
        sess.flush()
        return batch

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_batch(batch_id: int, session: Optional[Session] = None) -> Batch:
    """
    Load a batch by id.

    Raises:
        BatchNotFound: batch_id does not exist
    """
    if session is not None:
        return _get_batch(batch_id, session)
    with session_scope() as sess:
        return _get_batch(batch_id, sess)
