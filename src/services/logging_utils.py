"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across allocation, batch lifecycle,
cure evaluation and compliance operations.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="allocate_lots",
        outcome="success",
        batch_id=12,
        material_id=3,
        lots_touched=2,
    )

    log_operation(
        logger,
        operation="allocate_lots",
        outcome="insufficient_stock",
        level=logging.WARNING,
        material_id=3,
        shortfall=120.0,
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "cure_tracker.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger in the 'cure_tracker.services' namespace.

    Example:
        >>> logger = get_service_logger("src.services.lot_service")
        >>> logger.name
        'cure_tracker.services.lot_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via 'extra' so handlers can emit it as fields.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "allocate_lots", "complete_batch")
        outcome: Outcome description (e.g., "success", "insufficient_stock")
        level: Log level (default: INFO)
        **context: Entity IDs and other details
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
