"""
Cure Service - curing-agent dosing and nitrite ppm evaluation.

All functions here are pure: they take masses in grams and return numbers,
so they can be checked in isolation and reused by the measurement workflow.

Formulas (f = active nitrite fraction of the agent, t = target ppm / 1e6):
    required_grams = t * base_mass / (f - t)
    achieved_ppm   = cure_grams * f / total_mass * 1e6

The required-dose formula accounts for the cure itself adding to the total
mass, so dosing required_grams into base_mass yields exactly the target ppm.

A zero dose means "not applicable" (unreachable target or no base mass), not
"zero is correct"; callers check the base mass before trusting the value.
"""

import json
import math
from typing import Any, Optional

from ..models.enums import CureStatus
from ..utils.constants import CURE_AGENTS, CURE_DENKURIT, CURE_PRAGUE_1
from .exceptions import ValidationError
from .settings_service import CureSettings, DEFAULT_CURE_THRESHOLDS

PPM_SCALE = 1_000_000

_CURE_NOTE_KEY = "cure_type"


# ============================================================================
# Cure Agents
# ============================================================================


def get_nitrite_fraction(cure_type: str) -> float:
    """
    Active nitrite fraction of a curing agent.

    Args:
        cure_type: Agent id ('denkurit' or 'prague1')

    Returns:
        Fraction between 0 and 1 (e.g., 0.11 for Denkurit)

    Raises:
        ValidationError: Unknown cure type
    """
    agent = CURE_AGENTS.get(cure_type)
    if agent is None:
        raise ValidationError([f"Unknown cure type: {cure_type}"])
    return float(agent["nitrite_percent"]) / 100


def parse_cure_type(note: Any) -> Optional[str]:
    """
    Read a cure type annotation.

    Accepts a bare agent id, a JSON note like '{"cure_type": "prague1"}', a
    dict with a 'cure_type' key, or free text mentioning the agent.

    Returns:
        Agent id, or None if no agent can be identified
    """
    if not note:
        return None

    if isinstance(note, dict):
        value = note.get(_CURE_NOTE_KEY)
        return value if value in CURE_AGENTS else None

    if not isinstance(note, str):
        return None

    if note in CURE_AGENTS:
        return note

    try:
        parsed = json.loads(note)
    except ValueError:
        lowered = note.lower()
        if CURE_DENKURIT in lowered:
            return CURE_DENKURIT
        if "prague" in lowered:
            return CURE_PRAGUE_1
        return None

    if isinstance(parsed, dict):
        value = parsed.get(_CURE_NOTE_KEY)
        return value if value in CURE_AGENTS else None
    return None


def encode_cure_note(cure_type: Optional[str]) -> Optional[str]:
    """Encode a cure type as the JSON note stored on legacy recipe lines."""
    if not cure_type:
        return None
    return json.dumps({_CURE_NOTE_KEY: cure_type})


# ============================================================================
# Dosing
# ============================================================================


def calculate_required_cure_grams(
    base_mass_grams: float, cure_type: str, target_ppm: float
) -> float:
    """
    Curing agent mass needed to reach target_ppm of nitrite.

    Args:
        base_mass_grams: Product mass the agent is mixed into (excluding the agent)
        cure_type: Agent id
        target_ppm: Desired nitrite ppm in the finished mix

    Returns:
        Grams of agent, or 0 when the base mass is not positive or the agent
        is too dilute to ever reach the target
    """
    if base_mass_grams is None or not math.isfinite(base_mass_grams) or base_mass_grams <= 0:
        return 0.0

    nitrite_fraction = get_nitrite_fraction(cure_type)
    target_fraction = target_ppm / PPM_SCALE
    if nitrite_fraction <= target_fraction:
        return 0.0

    required = (target_fraction * base_mass_grams) / (nitrite_fraction - target_fraction)
    return required if math.isfinite(required) and required > 0 else 0.0


def calculate_ppm(cure_grams: float, total_mass_grams: float, cure_type: str) -> float:
    """
    Nitrite ppm achieved by cure_grams of agent in total_mass_grams of mix.

    Args:
        cure_grams: Agent actually used
        total_mass_grams: Base mass plus the agent
        cure_type: Agent id

    Returns:
        ppm, or 0 when either mass is not positive
    """
    if cure_grams is None or not math.isfinite(cure_grams) or cure_grams <= 0:
        return 0.0
    if total_mass_grams is None or not math.isfinite(total_mass_grams) or total_mass_grams <= 0:
        return 0.0

    nitrite_grams = cure_grams * get_nitrite_fraction(cure_type)
    return (nitrite_grams / total_mass_grams) * PPM_SCALE


def evaluate_cure_status(ppm: float, settings: CureSettings = DEFAULT_CURE_THRESHOLDS) -> CureStatus:
    """
    Classify achieved ppm against thresholds.

    Both bounds are inclusive for OK; a non-finite ppm is LOW.
    """
    if ppm is None or not math.isfinite(ppm):
        return CureStatus.LOW
    if ppm < settings.min:
        return CureStatus.LOW
    if ppm > settings.max:
        return CureStatus.HIGH
    return CureStatus.OK
