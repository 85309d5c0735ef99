"""Tests for QA Service.

Tests for:
- Typed checkpoint metadata and status derivation
- Stage aggregation (percentages, current stage, completion gate)
- Recording checks and loading batch progress
"""

from types import SimpleNamespace

import pytest

from src.models import Batch, QACheckpoint, QACheckStatus
from src.services import qa_service
from src.services.exceptions import BatchNotFound, CheckpointNotFound, ValidationError
from src.services.qa_service import (
    CoreTempMetadata,
    MarinationMetadata,
    OpaqueMetadata,
    WaterActivityMetadata,
    aggregate_stages,
    evaluate_core_temp,
    parse_checkpoint_metadata,
)


def checkpoint(cp_id, stage, required=True, active=True):
    return SimpleNamespace(id=cp_id, stage=stage, required=required, active=active)


@pytest.fixture
def batch(db_session, jerky_recipe):
    b = Batch(batch_number="B20250310-001", recipe_id=jerky_recipe.id, input_mass=2.0)
    db_session.add(b)
    db_session.flush()
    return b


@pytest.fixture
def core_temp_checkpoint(db_session):
    cp = QACheckpoint(code="DRY-CORE", name="Core temperature", stage="drying", required=True)
    db_session.add(cp)
    db_session.flush()
    return cp


# ============================================================================
# Metadata
# ============================================================================


class TestCoreTemp:
    def test_all_readings_pass(self):
        readings = [{"tempC": 72, "minutes": 3}, {"tempC": 70, "minutes": 2}, {"tempC": 75, "minutes": 10}]
        assert evaluate_core_temp(readings) == QACheckStatus.PASSED

    def test_one_reading_below_limit_fails(self):
        readings = [{"tempC": 72, "minutes": 3}, {"tempC": 69.9, "minutes": 5}, {"tempC": 75, "minutes": 3}]
        assert evaluate_core_temp(readings) == QACheckStatus.FAILED

    def test_short_hold_fails(self):
        readings = [{"tempC": 72, "minutes": 1.5}, {"tempC": 72, "minutes": 3}, {"tempC": 72, "minutes": 3}]
        assert evaluate_core_temp(readings) == QACheckStatus.FAILED

    def test_missing_reading_is_pending(self):
        readings = [{"tempC": 72, "minutes": 3}, {"tempC": "", "minutes": 3}, {"tempC": 72, "minutes": 3}]
        assert evaluate_core_temp(readings) == QACheckStatus.PENDING

    def test_fewer_than_three_readings_is_pending(self):
        assert evaluate_core_temp([{"tempC": 80, "minutes": 5}]) == QACheckStatus.PENDING

    def test_round_trip_to_dict(self):
        meta = CoreTempMetadata.from_dict({"readings": [{"tempC": 71, "minutes": 2}]})
        assert meta.to_dict()["readings"][0] == {"tempC": 71.0, "minutes": 2.0}
        assert meta.to_dict()["readings"][1] == {"tempC": "", "minutes": ""}


class TestParseMetadata:
    def test_variants_by_code(self):
        assert isinstance(parse_checkpoint_metadata("DRY-CORE", {}), CoreTempMetadata)
        assert isinstance(parse_checkpoint_metadata("MAR-TIMES", {}), MarinationMetadata)
        assert isinstance(parse_checkpoint_metadata("DRY-AW", None), WaterActivityMetadata)

    def test_unknown_code_is_opaque(self):
        meta = parse_checkpoint_metadata("PREP-SANITISE", {"sanitiser_ppm": 200})
        assert meta == OpaqueMetadata(payload={"sanitiser_ppm": 200})
        assert meta.derive_status() is None

    def test_marination(self):
        ok = {"startISO": "2025-03-10T08:00", "endISO": "2025-03-11T08:00", "tempC": 4}
        warm = dict(ok, tempC=6)
        assert parse_checkpoint_metadata("MAR-TIMES", ok).derive_status() == QACheckStatus.PASSED
        assert parse_checkpoint_metadata("MAR-TIMES", warm).derive_status() == QACheckStatus.FAILED
        assert (
            parse_checkpoint_metadata("MAR-TIMES", dict(ok, endISO="")).derive_status()
            == QACheckStatus.PENDING
        )

    def test_water_activity(self):
        assert parse_checkpoint_metadata("DRY-AW", {"aw": 0.85}).derive_status() == QACheckStatus.PASSED
        assert parse_checkpoint_metadata("DRY-AW", {"aw": 0.86}).derive_status() == QACheckStatus.FAILED
        assert parse_checkpoint_metadata("DRY-AW", {"aw": ""}).derive_status() == QACheckStatus.PENDING


# ============================================================================
# Stage Aggregation
# ============================================================================


class TestAggregateStages:
    def test_partial_progress(self):
        checkpoints = [
            checkpoint(1, "preparation"),
            checkpoint(2, "preparation"),
            checkpoint(3, "mixing"),
            checkpoint(4, "mixing"),
        ]
        progress = aggregate_stages(checkpoints, {1: "passed", 2: "passed", 3: "passed", 4: "failed"})

        by_stage = {s.stage: s for s in progress.stages}
        assert [s.stage for s in progress.stages] == [
            "preparation", "mixing", "marination", "drying", "packaging", "final",
        ]
        assert by_stage["preparation"].percent == 100
        assert by_stage["mixing"].percent == 50
        assert by_stage["drying"].percent == 100
        assert progress.current_stage == "mixing"
        assert progress.can_complete is False

    def test_all_passed(self):
        checkpoints = [checkpoint(1, "preparation"), checkpoint(2, "final")]
        progress = aggregate_stages(checkpoints, {1: "passed", 2: "passed"})
        assert progress.current_stage == "final"
        assert progress.can_complete is True

    def test_no_checkpoints(self):
        progress = aggregate_stages([], {})
        assert all(s.percent == 100 for s in progress.stages)
        assert progress.current_stage == "final"
        assert progress.can_complete is True

    def test_optional_and_inactive_are_ignored(self):
        checkpoints = [
            checkpoint(1, "drying", required=False),
            checkpoint(2, "drying", active=False),
            checkpoint(3, "drying"),
        ]
        progress = aggregate_stages(checkpoints, {3: "passed"})
        drying = next(s for s in progress.stages if s.stage == "drying")
        assert (drying.required_total, drying.required_passed) == (1, 1)
        assert progress.can_complete is True

    @pytest.mark.parametrize("status", ["skipped", "conditional", "pending", "failed"])
    def test_only_passed_counts(self, status):
        progress = aggregate_stages([checkpoint(1, "packaging")], {1: status})
        assert progress.current_stage == "packaging"
        assert progress.can_complete is False

    def test_percent_rounds_half_up(self):
        checkpoints = [checkpoint(i, "drying") for i in range(1, 9)]
        # 1 of 8 = 12.5%
        progress = aggregate_stages(checkpoints, {1: "passed"})
        drying = next(s for s in progress.stages if s.stage == "drying")
        assert drying.percent == 13

    def test_to_dict(self):
        progress = aggregate_stages([checkpoint(1, "mixing")], {})
        data = progress.to_dict()
        assert data["current_stage"] == "mixing"
        assert data["stages"][1] == {
            "stage": "mixing", "required_total": 1, "required_passed": 0, "percent": 0,
        }


# ============================================================================
# Database-backed Operations
# ============================================================================


class TestRecordCheck:
    def test_generic_checkpoint_uses_given_status(self, db_session, batch, qa_checkpoints):
        check = qa_service.record_check(
            batch.id, qa_checkpoints[0].id, status="passed", checked_by="QA",
            notes="Bench sanitised", session=db_session,
        )
        assert check.status == "passed"
        assert check.checked_at is not None
        assert check.notes == "Bench sanitised"

    def test_update_keeps_single_row(self, db_session, batch, qa_checkpoints):
        qa_service.record_check(batch.id, qa_checkpoints[0].id, status="failed", session=db_session)
        check = qa_service.record_check(
            batch.id, qa_checkpoints[0].id, status="passed", session=db_session
        )
        rows = qa_service.get_batch_checks(batch.id, session=db_session)
        assert check.status == "passed"
        assert [r["status"] for r in rows if r["checkpoint_id"] == qa_checkpoints[0].id] == ["passed"]

    def test_core_temp_status_is_derived(self, db_session, batch, core_temp_checkpoint):
        readings = {"readings": [{"tempC": 72, "minutes": 3}] * 2 + [{"tempC": 65, "minutes": 3}]}
        check = qa_service.record_check(
            batch.id, core_temp_checkpoint.id, status="passed", metadata=readings, session=db_session
        )
        assert check.status == "failed"
        assert check.check_metadata["readings"][2] == {"tempC": 65.0, "minutes": 3.0}

    def test_generic_requires_valid_status(self, db_session, batch, qa_checkpoints):
        with pytest.raises(ValidationError):
            qa_service.record_check(batch.id, qa_checkpoints[0].id, session=db_session)
        with pytest.raises(ValidationError):
            qa_service.record_check(batch.id, qa_checkpoints[0].id, status="great", session=db_session)

    def test_unknown_ids(self, db_session, batch):
        with pytest.raises(CheckpointNotFound):
            qa_service.record_check(batch.id, 999, status="passed", session=db_session)
        with pytest.raises(BatchNotFound):
            qa_service.record_check(999, 1, status="passed", session=db_session)


class TestBatchProgress:
    def test_progress(self, db_session, batch, qa_checkpoints):
        prep, mixing = qa_checkpoints[0], qa_checkpoints[1]
        qa_service.record_check(batch.id, prep.id, status="passed", session=db_session)
        qa_service.record_check(batch.id, mixing.id, status="failed", session=db_session)

        progress = qa_service.get_batch_qa_progress(batch.id, session=db_session)
        assert progress.current_stage == "mixing"
        assert progress.can_complete is False
        assert progress.stages[0].percent == 100
        assert progress.stages[1].percent == 0

    def test_inactive_checkpoint_excluded(self, db_session, batch, qa_checkpoints):
        for cp in qa_checkpoints:
            if cp.stage != "final":
                qa_service.record_check(batch.id, cp.id, status="passed", session=db_session)
        qa_checkpoints[5].active = False
        db_session.flush()

        progress = qa_service.get_batch_qa_progress(batch.id, session=db_session)
        assert progress.can_complete is True

    def test_checks_listing_defaults_to_pending(self, db_session, batch, qa_checkpoints):
        rows = qa_service.get_batch_checks(batch.id, session=db_session)
        assert len(rows) == len(qa_checkpoints)
        assert {r["status"] for r in rows} == {"pending"}
        assert [r["stage"] for r in rows][0] == "preparation"
