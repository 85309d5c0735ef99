"""
Settings Service - Runtime key-value configuration.

Reads and writes rows of the project_settings table. The cure ppm thresholds
are the main consumer: they are read on every cure evaluation, and a failed
read must never block the evaluation, so get_cure_settings() falls back to the
embedded defaults on any storage error.

Usage:
    from src.services.settings_service import get_cure_settings, set_setting

    settings = get_cure_settings()
    settings.target  # 125.0 unless overridden

    set_setting("cure_ppm_target", "120")
"""

from dataclasses import dataclass
import logging
import math
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import ProjectSetting
from ..utils.constants import (
    CURE_PPM_MAX_KEY,
    CURE_PPM_MIN_KEY,
    CURE_PPM_TARGET_KEY,
    DEFAULT_CURE_SETTINGS,
)
from .database import session_scope
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class CureSettings:
    """Cure ppm thresholds: below min is LOW, above max is HIGH."""

    min: float = DEFAULT_CURE_SETTINGS[CURE_PPM_MIN_KEY]
    target: float = DEFAULT_CURE_SETTINGS[CURE_PPM_TARGET_KEY]
    max: float = DEFAULT_CURE_SETTINGS[CURE_PPM_MAX_KEY]


DEFAULT_CURE_THRESHOLDS = CureSettings()

_CURE_KEYS = (CURE_PPM_MIN_KEY, CURE_PPM_TARGET_KEY, CURE_PPM_MAX_KEY)


def _parse_number(value: Optional[str]) -> Optional[float]:
    """Parse a stored setting as a finite float, or None."""
    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _read_settings(keys, session: Session) -> Dict[str, Optional[str]]:
    rows = session.query(ProjectSetting).filter(ProjectSetting.key.in_(list(keys))).all()
    return {row.key: row.value for row in rows}


def get_setting(key: str, default: Optional[str] = None, session: Optional[Session] = None):
    """
    Read one setting.

    Args:
        key: Setting key
        default: Returned when the key is absent
        session: Optional database session

    Returns:
        Stored string value, or default
    """
    def _impl(sess: Session):
        values = _read_settings([key], sess)
        value = values.get(key)
        return default if value is None else value

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def set_setting(key: str, value, session: Optional[Session] = None) -> ProjectSetting:
    """
    Create or update a setting.

    Args:
        key: Setting key
        value: Value (stored as text; None clears it)
        session: Optional database session

    Returns:
        The ProjectSetting row
    """
    def _impl(sess: Session) -> ProjectSetting:
        setting = sess.query(ProjectSetting).filter(ProjectSetting.key == key).first()
        stored = None if value is None else str(value)
        if setting is None:
            setting = ProjectSetting(key=key, value=stored)
            sess.add(setting)
        else:
            setting.value = stored
        sess.flush()
        return setting

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_cure_settings(session: Optional[Session] = None) -> CureSettings:
    """
    Load cure ppm thresholds, falling back to defaults.

    Each key that is missing or not a finite number keeps its default. Any
    storage error is logged and the defaults are returned; this function
    never raises for a failed read.

    Args:
        session: Optional database session (read inside a savepoint, so a
            failed read leaves the caller's transaction open)

    Returns:
        CureSettings
    """
    try:
        if session is not None:
            # A failed read rolls back to this savepoint only
            with session.begin_nested():
                stored = _read_settings(_CURE_KEYS, session)
        else:
            with session_scope() as sess:
                stored = _read_settings(_CURE_KEYS, sess)
    except SQLAlchemyError as e:
        log_operation(
            logger,
            operation="get_cure_settings",
            outcome="fallback_to_defaults",
            level=logging.WARNING,
            error=str(e),
        )
        return DEFAULT_CURE_THRESHOLDS

    values = dict(DEFAULT_CURE_SETTINGS)
    for key in _CURE_KEYS:
        parsed = _parse_number(stored.get(key))
        if parsed is not None:
            values[key] = parsed

    return CureSettings(
        min=values[CURE_PPM_MIN_KEY],
        target=values[CURE_PPM_TARGET_KEY],
        max=values[CURE_PPM_MAX_KEY],
    )
