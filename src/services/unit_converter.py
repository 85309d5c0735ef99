"""
Unit conversion for batch quantities.

This module provides:
- Unit class detection (mass, volume, count)
- Conversions within a class (g <-> kg, ml <-> L)
- Display normalization for kg / L quantities

Conversion Strategy:
- Mass units convert through grams (base unit)
- Volume units convert through milliliters (base unit)
- Cross-class pairs (e.g., g -> units) are returned unchanged unless the
  caller asks for strict conversion
"""

import math
from typing import Optional

from ..utils.constants import UNIT_CLASS_MAP, UNIT_GRAMS
from .exceptions import ValidationError


# ============================================================================
# Standard Conversion Tables
# ============================================================================

MASS_TO_GRAMS = {
    "g": 1.0,
    "kg": 1000.0,
}

VOLUME_TO_ML = {
    "ml": 1.0,
    "L": 1000.0,
    "l": 1000.0,
}

_TABLES = {
    "mass": MASS_TO_GRAMS,
    "volume": VOLUME_TO_ML,
}


# ============================================================================
# Unit Type Detection
# ============================================================================


def get_unit_class(unit: Optional[str]) -> str:
    """
    Determine the class of a unit.

    Args:
        unit: Unit code

    Returns:
        "mass", "volume", "count", or "unknown"
    """
    if not unit:
        return "unknown"
    return UNIT_CLASS_MAP.get(unit.strip(), "unknown")


def is_mass_unit(unit: Optional[str]) -> bool:
    """True if unit is g or kg."""
    return get_unit_class(unit) == "mass"


def units_compatible(unit1: str, unit2: str) -> bool:
    """
    Check if two units belong to the same known class.

    Args:
        unit1: First unit
        unit2: Second unit

    Returns:
        True if a defined conversion exists between them
    """
    class1 = get_unit_class(unit1)
    return class1 != "unknown" and class1 == get_unit_class(unit2)


# ============================================================================
# Conversions
# ============================================================================


def convert(value: float, from_unit: str, to_unit: str, strict: bool = False) -> float:
    """
    Convert a quantity between units.

    Identity when the units are equal. Defined pairs: g <-> kg and ml <-> L.
    Every other pair returns the value unchanged (lenient policy), unless
    strict=True, in which case it raises.

    Args:
        value: Quantity to convert
        from_unit: Source unit
        to_unit: Target unit
        strict: Raise ValidationError for pairs with no defined conversion

    Returns:
        Converted quantity

    Raises:
        ValidationError: strict=True and the units are not compatible
    """
    if from_unit == to_unit:
        return value

    unit_class = get_unit_class(from_unit)
    table = _TABLES.get(unit_class)
    if table is None or get_unit_class(to_unit) != unit_class:
        if strict:
            raise ValidationError(
                [f"Cannot convert {from_unit} to {to_unit}: incompatible unit types"]
            )
        return value

    factor_from = table[from_unit.strip()]
    factor_to = table[to_unit.strip()]
    if factor_from == factor_to:
        return value
    # Multiply or divide by exact powers of 1000 so round trips stay exact
    if factor_from > factor_to:
        return value * (factor_from / factor_to)
    return value / (factor_to / factor_from)


def to_grams(value: float, unit: str) -> float:
    """Convert a mass-class quantity to grams (lenient for other classes)."""
    return convert(value, unit, UNIT_GRAMS)


def normalize_quantity_for_display(quantity: float, unit: Optional[str]) -> float:
    """
    Scale a base-unit quantity for display in kg or L.

    Quantities are held in grams / millilitres; a kg or L label divides by
    1000. Non-finite input displays as 0.

    Args:
        quantity: Quantity in the base unit
        unit: Display unit label

    Returns:
        Quantity to show next to the label
    """
    if quantity is None or not math.isfinite(quantity):
        return 0.0
    normalized = (unit or "").strip().lower()
    if normalized in ("kg", "kilogram", "l", "liter", "litre"):
        return quantity / 1000
    return quantity


def format_quantity(quantity: float, unit: Optional[str]) -> str:
    """
    Format a base-unit quantity with its display unit.

    Uses three decimals below 1 and two otherwise, trimming trailing zeros.

    Returns:
        String like "1.5 kg" or "--" for non-finite input
    """
    if quantity is None or not math.isfinite(quantity):
        return "--"
    normalized = normalize_quantity_for_display(quantity, unit)
    decimals = 3 if abs(normalized) < 1 else 2
    text = f"{normalized:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{text} {unit}" if unit else text
