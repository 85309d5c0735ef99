"""
Tolerance evaluation for measured ingredient quantities.

diff_percent = |actual - target| / target * 100, and a measurement is in
tolerance when diff_percent <= tolerance (inclusive). A zero or negative
target yields diff_percent 0, so every measurement against it is in
tolerance.
"""

from dataclasses import dataclass
from typing import Optional

from ..utils.constants import DEFAULT_TOLERANCE_PERCENTAGE


@dataclass(frozen=True)
class ToleranceResult:
    """Outcome of one tolerance evaluation."""

    target: float
    actual: float
    tolerance_percentage: float
    diff_percent: float
    in_tolerance: bool


def resolve_tolerance(
    override: Optional[float] = None, configured: Optional[float] = None
) -> float:
    """
    Pick the tolerance percentage to apply.

    Priority: caller override, then the recipe line's configured value,
    then the default of 5.
    """
    if override is not None:
        return float(override)
    if configured is not None:
        return float(configured)
    return DEFAULT_TOLERANCE_PERCENTAGE


def calculate_diff_percent(actual: float, target: float) -> float:
    """Relative deviation of actual from target, in percent (0 if target <= 0)."""
    if target > 0:
        return abs(actual - target) / target * 100
    return 0.0


def evaluate_tolerance(
    actual: float,
    target: float,
    tolerance_percentage: Optional[float] = None,
) -> ToleranceResult:
    """
    Evaluate a measured amount against its target.

    Args:
        actual: Measured amount
        target: Target amount (same unit as actual)
        tolerance_percentage: Allowed deviation; None means the default

    Returns:
        ToleranceResult
    """
    tolerance = resolve_tolerance(tolerance_percentage)
    diff_percent = calculate_diff_percent(actual, target)
    return ToleranceResult(
        target=target,
        actual=actual,
        tolerance_percentage=tolerance,
        diff_percent=diff_percent,
        in_tolerance=diff_percent <= tolerance,
    )
