"""
Enumerations for batch, lot, QA and compliance tracking.

Values are stored as plain strings in the database; these enums are the
single source of truth for the allowed values.
"""

from enum import Enum


class LotStatus(str, Enum):
    """
    Inventory lot status.

    Only AVAILABLE lots participate in FIFO allocation.
    """

    AVAILABLE = "available"
    QUARANTINE = "quarantine"
    DEPLETED = "depleted"
    RECALLED = "recalled"


class LotEventType(str, Enum):
    """
    Ledger event types.

    Values:
        RECEIVE: Initial receipt (+quantity_received)
        CONSUME: Allocation to a batch (negative)
        ADJUST: Stock count correction (either sign)
        SCRAP: Disposal (negative)
        RETURN: Return to supplier (negative) or back to stock (positive)
        QUARANTINE: Status change, zero quantity
        RELEASE: Status change out of quarantine, zero quantity
    """

    RECEIVE = "receive"
    CONSUME = "consume"
    ADJUST = "adjust"
    SCRAP = "scrap"
    RETURN = "return"
    QUARANTINE = "quarantine"
    RELEASE = "release"


class BatchStatus(str, Enum):
    """Production batch lifecycle status."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RELEASED = "released"


class ReleaseStatus(str, Enum):
    """Release decision recorded on a batch."""

    APPROVED = "approved"
    RECALLED = "recalled"
    HOLD = "hold"


class QAStage(str, Enum):
    """QA pipeline stages, in processing order."""

    PREPARATION = "preparation"
    MIXING = "mixing"
    MARINATION = "marination"
    DRYING = "drying"
    PACKAGING = "packaging"
    FINAL = "final"


class QACheckStatus(str, Enum):
    """Status of one checkpoint for one batch."""

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CONDITIONAL = "conditional"


class CureStatus(str, Enum):
    """Achieved nitrite ppm against configured thresholds."""

    LOW = "LOW"
    OK = "OK"
    HIGH = "HIGH"


class ComplianceFrequency(str, Enum):
    """How often a compliance task recurs."""

    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    BATCH_INTERVAL = "batch_interval"
    CUSTOM = "custom"


class ComplianceStatus(str, Enum):
    """Derived schedule status of a compliance task."""

    NOT_STARTED = "not_started"
    ON_TRACK = "on_track"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    BATCH_DUE = "batch_due"
