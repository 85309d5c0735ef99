"""
Equipment Service - calibrated devices and their calibration schedule.

This module provides:
- create_equipment(): register a labelled device
- record_calibration(): append a calibration check and schedule the next one
- list_equipment(): every device with its latest calibration and due status
- calibration_status(): pure due-status derivation

Scheduling:
    A calibration's next_due_at is the value given, or performed_at plus the
    device's calibration_interval_days. The device is overdue once now is past
    the latest next_due_at, due_soon within DUE_SOON_DAYS of it, and
    not_started when it has never been calibrated.
"""

from datetime import datetime, timedelta
import re
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import ComplianceStatus, Equipment, EquipmentCalibration
from ..utils.constants import (
    DEFAULT_CALIBRATION_INTERVAL_DAYS,
    DEFAULT_CALIBRATION_METHOD,
    DEFAULT_EQUIPMENT_TYPE,
    DEFAULT_REFERENCE_BOILING_C,
    DEFAULT_REFERENCE_ICE_C,
    DUE_SOON_DAYS,
    EQUIPMENT_LABEL_MAX_LENGTH,
    EQUIPMENT_LABEL_PREFIX,
    EQUIPMENT_STATUSES,
)
from ..utils.datetime_utils import ensure_utc, utc_now
from .database import session_scope
from .exceptions import EquipmentNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

_LABEL_CODE_PATTERN = re.compile(r"^[A-Za-z0-9\-]+$")


def generate_label_code() -> str:
    """Label code: EQ-<8 hex>."""
    return f"{EQUIPMENT_LABEL_PREFIX}{uuid.uuid4().hex[:8].upper()}"


def calibration_status(next_due_at: Optional[datetime], now: datetime) -> ComplianceStatus:
    """
    Due status of a device from its latest next_due_at.

    Args:
        next_due_at: Due time of the latest calibration, or None if never
            calibrated (or calibrated with no due date)
        now: Reference time

    Returns:
        ComplianceStatus (not_started, on_track, due_soon or overdue)
    """
    if next_due_at is None:
        return ComplianceStatus.NOT_STARTED
    remaining = ensure_utc(next_due_at) - ensure_utc(now)
    if remaining.total_seconds() < 0:
        return ComplianceStatus.OVERDUE
    if remaining <= timedelta(days=DUE_SOON_DAYS):
        return ComplianceStatus.DUE_SOON
    return ComplianceStatus.ON_TRACK


def _get_equipment(equipment_id: int, session: Session) -> Equipment:
    equipment = session.get(Equipment, equipment_id)
    if equipment is None:
        raise EquipmentNotFound(equipment_id)
    return equipment


def _latest_calibration(equipment_id: int, session: Session) -> Optional[EquipmentCalibration]:
    return (
        session.query(EquipmentCalibration)
        .filter(EquipmentCalibration.equipment_id == equipment_id)
        .order_by(EquipmentCalibration.performed_at.desc(), EquipmentCalibration.id.desc())
        .first()
    )


def _clean(value: Optional[str]) -> Optional[str]:
    return (value or "").strip() or None


# ============================================================================
# Equipment
# ============================================================================


def create_equipment(
    name: str,
    label_code: Optional[str] = None,
    equipment_type: Optional[str] = None,
    model: Optional[str] = None,
    serial_number: Optional[str] = None,
    location: Optional[str] = None,
    status: str = "active",
    calibration_interval_days: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    session: Optional[Session] = None,
) -> Equipment:
    """
    Register a device.

    Args:
        name: Display name (required)
        label_code: Label code (letters, digits and dashes; generated as
            EQ-<8 hex> when omitted)
        equipment_type: Kind of device (default 'thermometer', stored lower-case)
        model / serial_number / location: Optional details
        status: 'active', 'out_of_service' or 'retired'
        calibration_interval_days: Days between calibrations (default 30)
        metadata: Free-form details
        session: Optional database session

    Returns:
        The new Equipment

    Raises:
        ValidationError: Missing name, malformed or duplicate label code,
            unknown status, non-positive interval
    """
    def _impl(sess: Session) -> Equipment:
        clean_name = _clean(name)
        code = _clean(label_code) or generate_label_code()
        interval = (
            DEFAULT_CALIBRATION_INTERVAL_DAYS
            if calibration_interval_days is None
            else calibration_interval_days
        )

        errors = []
        if clean_name is None:
            errors.append("name is required")
        if len(code) > EQUIPMENT_LABEL_MAX_LENGTH or not _LABEL_CODE_PATTERN.match(code):
            errors.append(
                f"label_code must be 1-{EQUIPMENT_LABEL_MAX_LENGTH} letters, digits or dashes"
            )
        if status not in EQUIPMENT_STATUSES:
            errors.append(f"Unknown equipment status: {status}")
        if not isinstance(interval, int) or interval <= 0:
            errors.append("calibration_interval_days must be a positive whole number")
        if errors:
            raise ValidationError(errors)

        if sess.query(Equipment).filter(Equipment.label_code == code).first():
            raise ValidationError(["That label code already exists"])

        equipment = Equipment(
            label_code=code,
            name=clean_name,
            equipment_type=(_clean(equipment_type) or DEFAULT_EQUIPMENT_TYPE).lower(),
            model=_clean(model),
            serial_number=_clean(serial_number),
            location=_clean(location),
            status=status,
            calibration_interval_days=interval,
            equipment_metadata=metadata,
        )
        sess.add(equipment)
        sess.flush()
        log_operation(
            logger,
            operation="create_equipment",
            outcome="success",
            equipment_id=equipment.id,
            label_code=code,
        )
        return equipment

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_equipment(equipment_id: int, session: Optional[Session] = None) -> Equipment:
    """
    Load one device.

    Raises:
        EquipmentNotFound: equipment_id does not exist
    """
    if session is not None:
        return _get_equipment(equipment_id, session)
    with session_scope() as sess:
        return _get_equipment(equipment_id, sess)


def list_equipment(
    now: Optional[datetime] = None, session: Optional[Session] = None
) -> List[Dict[str, Any]]:
    """
    Every device with its latest calibration, most recently updated first.

    Args:
        now: Reference time for calibration_status (default: current UTC time)
        session: Optional database session

    Returns:
        List of dicts: the device's columns (as to_dict()) plus
        latest_calibration_id, latest_calibrated_at, latest_calibration_result,
        latest_calibration_due_at and calibration_status
    """
    now = now or utc_now()

    def _impl(sess: Session) -> List[Dict[str, Any]]:
        devices = (
            sess.query(Equipment)
            .order_by(Equipment.updated_at.desc(), Equipment.id.desc())
            .all()
        )
        results = []
        for equipment in devices:
            latest = _latest_calibration(equipment.id, sess)
            due_at = ensure_utc(latest.next_due_at) if latest else None
            row = equipment.to_dict()
            row.update({
                "latest_calibration_id": latest.id if latest else None,
                "latest_calibrated_at": ensure_utc(latest.performed_at) if latest else None,
                "latest_calibration_result": latest.result if latest else None,
                "latest_calibration_due_at": due_at,
                "calibration_status": calibration_status(due_at, now).value,
            })
            results.append(row)
        return results

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# ============================================================================
# Calibration
# ============================================================================


def record_calibration(
    equipment_id: int,
    performed_at: Optional[datetime] = None,
    performed_by: Optional[str] = None,
    method: Optional[str] = None,
    reference_ice_c: Optional[float] = None,
    reference_boiling_c: Optional[float] = None,
    observed_ice_c: Optional[float] = None,
    observed_boiling_c: Optional[float] = None,
    adjustment: Optional[str] = None,
    result: Optional[str] = None,
    notes: Optional[str] = None,
    next_due_at: Optional[datetime] = None,
    metadata: Optional[Dict[str, Any]] = None,
    session: Optional[Session] = None,
) -> EquipmentCalibration:
    """
    Record a calibration check for a device.

    Args:
        equipment_id: Device calibrated
        performed_at: When (default: now)
        performed_by: Who
        method: Procedure (default: ice + boil two-point check)
        reference_ice_c / reference_boiling_c: Expected readings (0 / 100)
        observed_ice_c / observed_boiling_c: Actual readings
        adjustment: Offset applied or noted
        result: Outcome text
        notes: Free-form notes
        next_due_at: Explicit due time; default performed_at plus the
            device's calibration interval
        metadata: Free-form details
        session: Optional database session

    Returns:
        The new EquipmentCalibration

    Raises:
        EquipmentNotFound: equipment_id does not exist
    """
    def _impl(sess: Session) -> EquipmentCalibration:
        equipment = _get_equipment(equipment_id, sess)
        performed = ensure_utc(performed_at or utc_now())
        due = ensure_utc(next_due_at)
        if due is None:
            due = performed + timedelta(days=equipment.calibration_interval_days)

        calibration = EquipmentCalibration(
            equipment_id=equipment.id,
            performed_at=performed,
            performed_by=_clean(performed_by),
            method=_clean(method) or DEFAULT_CALIBRATION_METHOD,
            reference_ice_c=(
                DEFAULT_REFERENCE_ICE_C if reference_ice_c is None else float(reference_ice_c)
            ),
            reference_boiling_c=(
                DEFAULT_REFERENCE_BOILING_C
                if reference_boiling_c is None
                else float(reference_boiling_c)
            ),
            observed_ice_c=observed_ice_c,
            observed_boiling_c=observed_boiling_c,
            adjustment=_clean(adjustment),
            result=_clean(result),
            notes=_clean(notes),
            next_due_at=due,
            calibration_metadata=metadata,
        )
        sess.add(calibration)
        equipment.updated_at = utc_now()
        sess.flush()
        log_operation(
            logger,
            operation="record_calibration",
            outcome="success",
            equipment_id=equipment.id,
            label_code=equipment.label_code,
            next_due_at=due.isoformat(),
        )
        return calibration

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)
