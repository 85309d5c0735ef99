"""
Recipe Scaling Service - scaling factors and per-ingredient targets.

This module provides:
- An explicit prioritized fallback (first_positive) for the scaling factor
  and the cure base mass
- Pure target calculations over recipe ingredient lines
- scale_recipe() for previewing a recipe at an input mass
- compute_batch_targets() for the targets of an existing batch

Ingredient lines are read by attribute (quantity, unit, is_cure, cure_type,
notes), so the pure functions accept RecipeIngredient rows or any object of
the same shape.

Cure lines are not scaled: their target is the dose that reaches the target
nitrite ppm in the batch's base mass (see cure_service).
"""

from dataclasses import dataclass
import math
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models import Batch, Recipe
from ..utils.constants import UNIT_GRAMS
from .cure_service import calculate_required_cure_grams, parse_cure_type
from .database import session_scope
from .exceptions import BatchNotFound, RecipeNotFound, ValidationError
from .settings_service import CureSettings, get_cure_settings
from .unit_converter import convert, is_mass_unit, to_grams


@dataclass(frozen=True)
class IngredientTarget:
    """Target for one ingredient line at a given scale."""

    material_id: Optional[int]
    quantity: float
    unit: str
    target_amount: float
    is_cure: bool = False
    cure_type: Optional[str] = None
    cure_required_grams: Optional[float] = None


# ============================================================================
# Fallback and Scaling Factor
# ============================================================================


def first_positive(*candidates: Optional[float]) -> Optional[float]:
    """
    Return the first candidate that is a finite number greater than zero.

    Args:
        *candidates: Values in priority order (None is skipped)

    Returns:
        The winning value, or None if no candidate qualifies

    Example:
        >>> first_positive(0, None, 1500.0, 2000.0)
        1500.0
    """
    for value in candidates:
        if value is None:
            continue
        value = float(value)
        if math.isfinite(value) and value > 0:
            return value
    return None


def compute_scaling_factor(
    input_mass_grams: float,
    recipe_base_mass_grams: float,
    override: Optional[float] = None,
) -> float:
    """
    Scaling factor for a batch.

    Priority: a positive override, then input / base when the recipe has a
    positive base mass, then 1.

    Args:
        input_mass_grams: Batch input mass in grams
        recipe_base_mass_grams: Recipe base reference mass in grams
        override: Explicit factor stored on the batch

    Returns:
        Scaling factor (> 0)

    Raises:
        ValidationError: The computed factor is not positive
    """
    explicit = first_positive(override)
    if explicit is not None:
        return explicit

    if recipe_base_mass_grams and recipe_base_mass_grams > 0:
        factor = (input_mass_grams or 0.0) / recipe_base_mass_grams
        if not (math.isfinite(factor) and factor > 0):
            raise ValidationError(
                [f"Scaling factor must be positive (input mass {input_mass_grams} g)"]
            )
        return factor

    return 1.0


def batch_input_mass_grams(batch: Batch) -> float:
    """Batch input mass converted to grams."""
    return to_grams(float(batch.input_mass or 0.0), batch.input_unit or "kg")


def batch_scaling_factor(batch: Batch) -> float:
    """Scaling factor for a batch from its stored override, input mass and recipe."""
    return compute_scaling_factor(
        batch_input_mass_grams(batch),
        float(batch.recipe.base_reference_mass or 0.0),
        batch.scaling_factor,
    )


# ============================================================================
# Ingredient Targets
# ============================================================================


def resolve_cure_type(ingredient: Any) -> Optional[str]:
    """Cure type of a line: the explicit column, else the legacy JSON note."""
    return parse_cure_type(getattr(ingredient, "cure_type", None)) or parse_cure_type(
        getattr(ingredient, "notes", None)
    )


def calculate_non_cure_mass_grams(ingredients: Iterable[Any], scaling_factor: float) -> float:
    """
    Sum of scaled non-cure ingredient masses, in grams.

    Only mass-class lines count; volume and count lines are skipped.
    """
    total = 0.0
    for ing in ingredients:
        if ing.is_cure or not is_mass_unit(ing.unit):
            continue
        total += to_grams(float(ing.quantity) * scaling_factor, ing.unit)
    return total


def determine_cure_base_mass(
    ingredients: Iterable[Any],
    scaling_factor: float,
    input_mass_grams: Optional[float] = None,
    recipe_base_mass_grams: Optional[float] = None,
) -> float:
    """
    Mass the curing agent is distributed through.

    Priority: scaled non-cure ingredient mass, then the batch input mass,
    then the recipe base mass times the scaling factor.

    Returns:
        Base mass in grams, or 0 if no candidate is positive
    """
    recipe_scaled = (
        recipe_base_mass_grams * scaling_factor if recipe_base_mass_grams else None
    )
    base_mass = first_positive(
        calculate_non_cure_mass_grams(ingredients, scaling_factor),
        input_mass_grams,
        recipe_scaled,
    )
    return base_mass or 0.0


def scale_ingredient(ingredient: Any, scaling_factor: float, display_unit: Optional[str] = None):
    """
    Scaled target of one non-cure line.

    Args:
        ingredient: Recipe line
        scaling_factor: Factor to apply
        display_unit: Unit to express the target in (defaults to the line's unit)

    Returns:
        IngredientTarget
    """
    unit = display_unit or ingredient.unit
    scaled = float(ingredient.quantity) * scaling_factor
    return IngredientTarget(
        material_id=getattr(ingredient, "material_id", None),
        quantity=float(ingredient.quantity),
        unit=unit,
        target_amount=convert(scaled, ingredient.unit, unit),
    )


def calculate_ingredient_target(
    ingredient: Any,
    scaling_factor: float,
    base_mass_grams: float,
    cure_settings: CureSettings,
    display_unit: Optional[str] = None,
) -> IngredientTarget:
    """
    Target for one line, dosing cure lines by ppm.

    A cure line with a known agent and a positive base mass targets the
    required dose (converted from grams to the line's unit). Any other line,
    including a cure line with no identifiable agent, is scaled.

    Args:
        ingredient: Recipe line
        scaling_factor: Batch scaling factor
        base_mass_grams: Cure base mass (see determine_cure_base_mass)
        cure_settings: Thresholds; the target ppm is used for dosing
        display_unit: Unit to express the target in

    Returns:
        IngredientTarget
    """
    is_cure = bool(ingredient.is_cure)
    cure_type = resolve_cure_type(ingredient) if is_cure else None

    if not (is_cure and cure_type and base_mass_grams > 0):
        scaled = scale_ingredient(ingredient, scaling_factor, display_unit)
        return IngredientTarget(
            material_id=scaled.material_id,
            quantity=scaled.quantity,
            unit=scaled.unit,
            target_amount=scaled.target_amount,
            is_cure=is_cure,
            cure_type=cure_type,
        )

    required_grams = calculate_required_cure_grams(
        base_mass_grams, cure_type, cure_settings.target
    )
    unit = display_unit or ingredient.unit
    target_in_recipe_unit = convert(required_grams, UNIT_GRAMS, ingredient.unit)
    return IngredientTarget(
        material_id=getattr(ingredient, "material_id", None),
        quantity=float(ingredient.quantity),
        unit=unit,
        target_amount=convert(target_in_recipe_unit, ingredient.unit, unit),
        is_cure=True,
        cure_type=cure_type,
        cure_required_grams=required_grams,
    )


def calculate_scaled_targets(
    ingredients: Iterable[Any], scaling_factor: float, display_unit: Optional[str] = None
) -> List[IngredientTarget]:
    """
    Scaled targets for every non-cure line.

    Raises:
        ValidationError: scaling_factor is not positive
    """
    if not (scaling_factor and scaling_factor > 0):
        raise ValidationError([f"Scaling factor must be positive, got {scaling_factor}"])
    return [
        scale_ingredient(ing, scaling_factor, display_unit)
        for ing in ingredients
        if not ing.is_cure
    ]


# ============================================================================
# Database-backed Operations
# ============================================================================


def _get_recipe(recipe_id: int, session: Session) -> Recipe:
    recipe = session.get(Recipe, recipe_id)
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    return recipe


def _scale_recipe_impl(
    recipe_id: int, input_mass: float, input_unit: str, session: Session
) -> Dict[str, Any]:
    if input_mass is None or not input_mass > 0:
        raise ValidationError(["input_mass must be positive"])

    recipe = _get_recipe(recipe_id, session)
    input_grams = to_grams(float(input_mass), input_unit)
    factor = compute_scaling_factor(input_grams, float(recipe.base_reference_mass or 0.0))

    scaled_ingredients = []
    for ing in recipe.ingredients:
        material = ing.material
        scaled_ingredients.append({
            "material_id": ing.material_id,
            "material_name": material.name if material else None,
            "material_code": material.material_code if material else None,
            "base_quantity": ing.quantity,
            "scaled_quantity": float(ing.quantity) * factor,
            "unit": ing.unit,
            "is_critical": bool(ing.is_critical),
            "is_cure": bool(ing.is_cure),
        })

    return {
        "recipe_id": recipe.id,
        "recipe_name": recipe.name,
        "base_reference_mass": recipe.base_reference_mass,
        "input_mass_grams": input_grams,
        "scaling_factor": factor,
        "scaled_ingredients": scaled_ingredients,
    }


def scale_recipe(
    recipe_id: int,
    input_mass: float,
    input_unit: str = "kg",
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Preview a recipe scaled to an input mass.

    Every line is scaled literally here (cure lines included) for display;
    ppm dosing of cure lines happens per batch in compute_batch_targets().

    Args:
        recipe_id: Recipe to scale
        input_mass: Input mass (e.g., beef weight)
        input_unit: Unit of input_mass
        session: Optional database session

    Returns:
        Dict with recipe_id, recipe_name, base_reference_mass,
        input_mass_grams, scaling_factor and scaled_ingredients

    Raises:
        RecipeNotFound: recipe_id does not exist
        ValidationError: input_mass is not positive
    """
    if session is not None:
        return _scale_recipe_impl(recipe_id, input_mass, input_unit, session)
    with session_scope() as sess:
        return _scale_recipe_impl(recipe_id, input_mass, input_unit, sess)


def _compute_batch_targets_impl(
    batch_id: int, display_unit: Optional[str], session: Session
) -> List[IngredientTarget]:
    batch = session.get(Batch, batch_id)
    if batch is None:
        raise BatchNotFound(batch_id)

    recipe = batch.recipe
    factor = batch_scaling_factor(batch)
    ingredients = list(recipe.ingredients)
    base_mass = determine_cure_base_mass(
        ingredients,
        factor,
        batch_input_mass_grams(batch),
        float(recipe.base_reference_mass or 0.0),
    )
    cure_settings = get_cure_settings(session=session)

    return [
        calculate_ingredient_target(ing, factor, base_mass, cure_settings, display_unit)
        for ing in ingredients
    ]


def compute_batch_targets(
    batch_id: int,
    display_unit: Optional[str] = None,
    session: Optional[Session] = None,
) -> List[IngredientTarget]:
    """
    Targets for every line of a batch's recipe.

    Args:
        batch_id: Batch to compute targets for
        display_unit: Express every target in this unit (default: line unit)
        session: Optional database session

    Returns:
        List of IngredientTarget in recipe order

    Raises:
        BatchNotFound: batch_id does not exist
    """
    if session is not None:
        return _compute_batch_targets_impl(batch_id, display_unit, session)
    with session_scope() as sess:
        return _compute_batch_targets_impl(batch_id, display_unit, sess)
