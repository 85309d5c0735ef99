"""
Constants and enumerations for the Cure Batch Tracker application.

This module defines all system-wide constants including:
- Unit codes and unit classes (mass, volume, count)
- Cure agent definitions and default ppm thresholds
- QA stage order and critical limits
- Compliance interval lookup
- Application metadata
"""

from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Cure Batch Tracker"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"
DATABASE_FILENAME = "cure_tracker.db"

# ============================================================================
# Unit Types
# ============================================================================

UNIT_GRAMS = "g"
UNIT_KILOGRAMS = "kg"
UNIT_MILLILITERS = "ml"
UNIT_LITERS = "L"
UNIT_COUNT = "units"

MASS_UNITS: List[str] = [UNIT_GRAMS, UNIT_KILOGRAMS]
VOLUME_UNITS: List[str] = [UNIT_MILLILITERS, UNIT_LITERS]
COUNT_UNITS: List[str] = [UNIT_COUNT]

ALL_UNITS: List[str] = MASS_UNITS + VOLUME_UNITS + COUNT_UNITS

# Unit class mappings (litre also accepted lower-case)
UNIT_CLASS_MAP: Dict[str, str] = {
    UNIT_GRAMS: "mass",
    UNIT_KILOGRAMS: "mass",
    UNIT_MILLILITERS: "volume",
    UNIT_LITERS: "volume",
    "l": "volume",
    UNIT_COUNT: "count",
}

# ============================================================================
# Cure Agents
# ============================================================================

CURE_DENKURIT = "denkurit"
CURE_PRAGUE_1 = "prague1"

# Active nitrite content as a percentage of agent mass
CURE_AGENTS: Dict[str, Dict[str, object]] = {
    CURE_DENKURIT: {"label": "Denkurit", "nitrite_percent": 11.0},
    CURE_PRAGUE_1: {"label": "Prague Powder #1", "nitrite_percent": 6.25},
}

# Setting keys and embedded defaults
CURE_PPM_MIN_KEY = "cure_ppm_min"
CURE_PPM_TARGET_KEY = "cure_ppm_target"
CURE_PPM_MAX_KEY = "cure_ppm_max"

DEFAULT_CURE_SETTINGS: Dict[str, float] = {
    CURE_PPM_MIN_KEY: 110.0,
    CURE_PPM_TARGET_KEY: 125.0,
    CURE_PPM_MAX_KEY: 125.0,
}

# ============================================================================
# Recipe / Tolerance
# ============================================================================

DEFAULT_TOLERANCE_PERCENTAGE = 5.0

# Quantities below this are treated as zero (floating-point dust)
QUANTITY_EPSILON = 0.001

# ============================================================================
# QA
# ============================================================================

QA_STAGE_ORDER: List[str] = [
    "preparation",
    "mixing",
    "marination",
    "drying",
    "packaging",
    "final",
]

CORE_TEMP_CHECKPOINT_CODE = "DRY-CORE"
MARINATION_TIMES_CHECKPOINT_CODE = "MAR-TIMES"
WATER_ACTIVITY_CHECKPOINT_CODE = "DRY-AW"

# Each reading must reach this temperature and hold it for this long
CORE_TEMP_LIMIT_C = 70.0
CORE_TEMP_HOLD_MINUTES = 2.0
CORE_TEMP_READING_COUNT = 3

# Marination must stay at or below this temperature
MARINATION_MAX_TEMP_C = 5.0

# Finished product water activity must not exceed this
WATER_ACTIVITY_MAX = 0.85

# ============================================================================
# Compliance
# ============================================================================

# Days per interval; None means no time-based schedule
COMPLIANCE_INTERVAL_DAYS: Dict[str, object] = {
    "weekly": 7,
    "fortnightly": 14,
    "monthly": 30,
    "batch_interval": None,
    "custom": None,
}

# Status flips to due_soon within this many days / batches
DUE_SOON_DAYS = 2
DUE_SOON_BATCHES = 2

# ============================================================================
# Batch Numbering
# ============================================================================

BATCH_NUMBER_PREFIX = "B"
LOT_CODE_PREFIX = "LOT-"

# Seconds an allocation waits for another session holding the same material
MATERIAL_LOCK_TIMEOUT_SECONDS = 30.0

# ============================================================================
# Equipment Calibration
# ============================================================================

EQUIPMENT_LABEL_PREFIX = "EQ-"
EQUIPMENT_LABEL_MAX_LENGTH = 32
EQUIPMENT_STATUSES: List[str] = ["active", "out_of_service", "retired"]
DEFAULT_EQUIPMENT_TYPE = "thermometer"
DEFAULT_CALIBRATION_INTERVAL_DAYS = 30
DEFAULT_CALIBRATION_METHOD = "Ice + boil two-point check"
DEFAULT_REFERENCE_ICE_C = 0.0
DEFAULT_REFERENCE_BOILING_C = 100.0
