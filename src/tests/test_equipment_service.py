"""Tests for Equipment Service.

Tests for:
- create_equipment() defaults and validation
- record_calibration() defaults and next-due scheduling
- list_equipment() with the latest calibration and due status
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.models import ComplianceStatus
from src.services import equipment_service
from src.services.equipment_service import calibration_status
from src.services.exceptions import EquipmentNotFound, ValidationError
from src.utils.datetime_utils import ensure_utc

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def thermometer(db_session):
    return equipment_service.create_equipment(
        "Dial thermometer", label_code="EQ-THERM-1", location="Kitchen", session=db_session
    )


class TestCalibrationStatus:
    @pytest.mark.parametrize(
        "due_in, expected",
        [
            (None, ComplianceStatus.NOT_STARTED),
            (timedelta(days=10), ComplianceStatus.ON_TRACK),
            (timedelta(days=2), ComplianceStatus.DUE_SOON),
            (timedelta(hours=1), ComplianceStatus.DUE_SOON),
            (timedelta(seconds=-1), ComplianceStatus.OVERDUE),
        ],
    )
    def test_status(self, due_in, expected):
        due_at = None if due_in is None else NOW + due_in
        assert calibration_status(due_at, NOW) == expected

    def test_naive_due_time_is_utc(self):
        naive = (NOW + timedelta(days=1)).replace(tzinfo=None)
        assert calibration_status(naive, NOW) == ComplianceStatus.DUE_SOON


class TestCreateEquipment:
    def test_defaults(self, db_session):
        equipment = equipment_service.create_equipment("  Dial thermometer ", session=db_session)

        assert equipment.name == "Dial thermometer"
        assert equipment.label_code.startswith("EQ-")
        assert len(equipment.label_code) == 11
        assert equipment.equipment_type == "thermometer"
        assert equipment.status == "active"
        assert equipment.calibration_interval_days == 30

    def test_type_is_lower_cased(self, db_session):
        equipment = equipment_service.create_equipment(
            "Bench scale", equipment_type="Scale", calibration_interval_days=90,
            session=db_session,
        )
        assert equipment.equipment_type == "scale"
        assert equipment.calibration_interval_days == 90

    def test_duplicate_label_code(self, db_session, thermometer):
        with pytest.raises(ValidationError) as exc_info:
            equipment_service.create_equipment(
                "Second thermometer", label_code="EQ-THERM-1", session=db_session
            )
        assert exc_info.value.errors == ["That label code already exists"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "  "},
            {"name": "Thermometer", "label_code": "EQ THERM"},
            {"name": "Thermometer", "label_code": "EQ-" + "X" * 30},
            {"name": "Thermometer", "status": "broken"},
            {"name": "Thermometer", "calibration_interval_days": 0},
        ],
    )
    def test_validation(self, db_session, kwargs):
        with pytest.raises(ValidationError):
            equipment_service.create_equipment(session=db_session, **kwargs)

    def test_get_unknown(self, db_session):
        with pytest.raises(EquipmentNotFound):
            equipment_service.get_equipment(999, session=db_session)


class TestRecordCalibration:
    def test_defaults_and_interval_due_date(self, db_session, thermometer):
        performed = NOW - timedelta(days=1)
        calibration = equipment_service.record_calibration(
            thermometer.id, performed_at=performed, performed_by=" Sam ",
            observed_ice_c=0.3, observed_boiling_c=99.6, result="pass",
            session=db_session,
        )

        assert calibration.method == "Ice + boil two-point check"
        assert (calibration.reference_ice_c, calibration.reference_boiling_c) == (0.0, 100.0)
        assert calibration.performed_by == "Sam"
        assert ensure_utc(calibration.next_due_at) == performed + timedelta(days=30)

    def test_explicit_due_date(self, db_session, thermometer):
        due = NOW + timedelta(days=7)
        calibration = equipment_service.record_calibration(
            thermometer.id, performed_at=NOW, next_due_at=due, session=db_session
        )
        assert ensure_utc(calibration.next_due_at) == due

    def test_unknown_equipment(self, db_session):
        with pytest.raises(EquipmentNotFound):
            equipment_service.record_calibration(999, session=db_session)


class TestListEquipment:
    def test_latest_calibration_and_status(self, db_session, thermometer):
        equipment_service.record_calibration(
            thermometer.id, performed_at=NOW - timedelta(days=29), result="adjusted",
            session=db_session,
        )
        older = equipment_service.record_calibration(
            thermometer.id, performed_at=NOW - timedelta(days=60), session=db_session
        )

        (row,) = equipment_service.list_equipment(now=NOW, session=db_session)

        assert row["label_code"] == "EQ-THERM-1"
        assert row["type"] == "thermometer"
        assert row["latest_calibration_id"] != older.id
        assert row["latest_calibration_result"] == "adjusted"
        assert row["latest_calibrated_at"] == NOW - timedelta(days=29)
        assert row["latest_calibration_due_at"] == NOW + timedelta(days=1)
        assert row["calibration_status"] == "due_soon"

    def test_never_calibrated_and_overdue(self, db_session, thermometer):
        scale = equipment_service.create_equipment(
            "Bench scale", equipment_type="scale", session=db_session
        )
        equipment_service.record_calibration(
            thermometer.id, performed_at=NOW - timedelta(days=40), session=db_session
        )

        rows = {
            row["id"]: row for row in equipment_service.list_equipment(now=NOW, session=db_session)
        }

        assert rows[scale.id]["latest_calibration_id"] is None
        assert rows[scale.id]["calibration_status"] == "not_started"
        assert rows[thermometer.id]["calibration_status"] == "overdue"

    def test_most_recently_updated_first(self, db_session, thermometer):
        scale = equipment_service.create_equipment("Bench scale", session=db_session)
        thermometer.updated_at = NOW
        scale.updated_at = NOW - timedelta(days=1)
        db_session.flush()

        rows = equipment_service.list_equipment(now=NOW, session=db_session)

        assert [row["id"] for row in rows] == [thermometer.id, scale.id]

    def test_without_session(self, test_db):
        created = equipment_service.create_equipment("Dial thermometer")
        equipment_service.record_calibration(created.id)

        (row,) = equipment_service.list_equipment()
        assert row["id"] == created.id
        assert row["calibration_status"] == "on_track"
