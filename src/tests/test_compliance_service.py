"""Tests for Compliance Service.

Tests for:
- compute_task_status() for batch-interval, time-based and custom tasks
- get_task_statuses() counting batches since the latest completion
- log_completion() and get_task_logs()
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.models import Batch, ComplianceStatus, ComplianceTask
from src.services import compliance_service
from src.services.compliance_service import compute_task_status
from src.services.exceptions import ComplianceTaskNotFound, ValidationError

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def slicer_clean(db_session):
    task = ComplianceTask(
        code="SLICER-DEEP",
        name="Slicer deep clean",
        category="Sanitation",
        frequency_type="batch_interval",
        frequency_value=10,
    )
    db_session.add(task)
    db_session.flush()
    return task


@pytest.fixture
def weekly_swab(db_session):
    task = ComplianceTask(
        code="SWAB-WEEKLY",
        name="Environmental swab",
        category="Micro",
        frequency_type="weekly",
        frequency_value=1,
        proof_required=True,
    )
    db_session.add(task)
    db_session.flush()
    return task


def add_batches(db_session, recipe, created_times):
    for i, created_at in enumerate(created_times, start=1):
        db_session.add(
            Batch(
                batch_number=f"B20250301-{i:03d}",
                recipe_id=recipe.id,
                input_mass=1.0,
                created_at=created_at.replace(tzinfo=None),
            )
        )
    db_session.flush()


# ============================================================================
# compute_task_status
# ============================================================================


class TestBatchIntervalStatus:
    @pytest.mark.parametrize(
        "batches,expected,remaining",
        [
            (0, ComplianceStatus.ON_TRACK, 10),
            (7, ComplianceStatus.ON_TRACK, 3),
            (8, ComplianceStatus.DUE_SOON, 2),
            (9, ComplianceStatus.DUE_SOON, 1),
            (10, ComplianceStatus.BATCH_DUE, 0),
            (14, ComplianceStatus.BATCH_DUE, 0),
        ],
    )
    def test_thresholds(self, batches, expected, remaining):
        schedule = compute_task_status("batch_interval", 10, NOW, batches, NOW)
        assert schedule.status == expected
        assert schedule.batches_remaining == remaining
        assert schedule.batches_since_last == batches

    def test_never_completed_counts_all_batches(self):
        schedule = compute_task_status("batch_interval", 10, None, 12, NOW)
        assert schedule.status == ComplianceStatus.BATCH_DUE

    def test_unknown_count_is_not_started(self):
        schedule = compute_task_status("batch_interval", 10, None, None, NOW)
        assert schedule.status == ComplianceStatus.NOT_STARTED


class TestTimeBasedStatus:
    def test_never_completed(self):
        assert compute_task_status("weekly", 1, None, None, NOW).status == ComplianceStatus.NOT_STARTED

    def test_on_track(self):
        schedule = compute_task_status("weekly", 1, NOW - timedelta(days=2), None, NOW)
        assert schedule.status == ComplianceStatus.ON_TRACK
        assert schedule.next_due_at == NOW + timedelta(days=5)

    def test_due_soon_within_two_days(self):
        schedule = compute_task_status("weekly", 1, NOW - timedelta(days=5), None, NOW)
        assert schedule.status == ComplianceStatus.DUE_SOON

    def test_due_exactly_now_is_due_soon(self):
        schedule = compute_task_status("weekly", 1, NOW - timedelta(days=7), None, NOW)
        assert schedule.status == ComplianceStatus.DUE_SOON

    def test_overdue_rounds_days_up(self):
        last = NOW - timedelta(days=8, hours=3)
        schedule = compute_task_status("weekly", 1, last, None, NOW)
        assert schedule.status == ComplianceStatus.OVERDUE
        assert schedule.days_overdue == 2

    def test_frequency_value_multiplies_interval(self):
        schedule = compute_task_status("fortnightly", 2, NOW - timedelta(days=20), None, NOW)
        assert schedule.status == ComplianceStatus.ON_TRACK
        assert schedule.next_due_at == NOW + timedelta(days=8)

    def test_zero_frequency_counts_as_one(self):
        schedule = compute_task_status("monthly", 0, NOW - timedelta(days=31), None, NOW)
        assert schedule.status == ComplianceStatus.OVERDUE
        assert schedule.days_overdue == 1

    def test_naive_timestamps_are_utc(self):
        last = (NOW - timedelta(days=1)).replace(tzinfo=None)
        schedule = compute_task_status("weekly", 1, last, None, NOW)
        assert schedule.next_due_at == NOW + timedelta(days=6)


class TestCustomStatus:
    def test_custom(self):
        assert compute_task_status("custom", 1, None, None, NOW).status == ComplianceStatus.NOT_STARTED
        assert compute_task_status("custom", 1, NOW, None, NOW).status == ComplianceStatus.ON_TRACK

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            compute_task_status("hourly", 1, NOW, None, NOW)


# ============================================================================
# Database-backed Operations
# ============================================================================


class TestTaskStatuses:
    def test_batches_counted_since_latest_completion(self, db_session, jerky_recipe, slicer_clean):
        compliance_service.log_completion(
            slicer_clean.id, completed_at=NOW - timedelta(days=3), session=db_session
        )
        add_batches(
            db_session,
            jerky_recipe,
            [NOW - timedelta(days=5)] + [NOW - timedelta(days=2, hours=h) for h in range(7)],
        )

        (row,) = compliance_service.get_task_statuses(now=NOW, session=db_session)
        assert row["code"] == "SLICER-DEEP"
        assert row["batches_since_last"] == 7
        assert row["batches_remaining"] == 3
        assert row["status"] == "on_track"
        assert row["log_count"] == 1

    def test_never_completed_uses_all_batches(self, db_session, jerky_recipe, slicer_clean):
        add_batches(db_session, jerky_recipe, [NOW - timedelta(hours=h) for h in range(10)])
        (row,) = compliance_service.get_task_statuses(now=NOW, session=db_session)
        assert row["status"] == "batch_due"
        assert row["latest_log"] is None

    def test_time_based_and_inactive(self, db_session, weekly_swab):
        db_session.add(
            ComplianceTask(code="OLD", name="Retired", frequency_type="weekly", active=False)
        )
        compliance_service.log_completion(
            weekly_swab.id, completed_at=NOW - timedelta(days=10), session=db_session
        )

        rows = compliance_service.get_task_statuses(now=NOW, session=db_session)
        assert [r["code"] for r in rows] == ["SWAB-WEEKLY"]
        assert rows[0]["status"] == "overdue"
        assert rows[0]["days_overdue"] == 3
        assert rows[0]["proof_required"] is True


class TestLogCompletion:
    def test_metadata(self, db_session, slicer_clean):
        log = compliance_service.log_completion(
            slicer_clean.id,
            completed_at=NOW,
            completed_by="  Sam ",
            result="Clean",
            batches_covered=10,
            batch_start="B20250301-001",
            batch_end="B20250308-002",
            scope="slicer and trays",
            metadata={"chemical": "Quat 200ppm"},
            session=db_session,
        )
        assert log.completed_by == "Sam"
        assert log.batches_covered == 10
        assert log.log_metadata == {
            "scope": "slicer and trays",
            "batches_covered": 10,
            "batch_window": {"start": "B20250301-001", "end": "B20250308-002"},
            "chemical": "Quat 200ppm",
        }

    def test_plain_log_has_no_metadata(self, db_session, weekly_swab):
        log = compliance_service.log_completion(weekly_swab.id, session=db_session)
        assert log.log_metadata is None
        assert log.completed_at is not None

    def test_validation(self, db_session, slicer_clean):
        with pytest.raises(ValidationError):
            compliance_service.log_completion(slicer_clean.id, batches_covered=-1, session=db_session)
        with pytest.raises(ComplianceTaskNotFound):
            compliance_service.log_completion(999, session=db_session)


class TestTaskLogs:
    def test_newest_first_and_clamped(self, db_session, weekly_swab):
        for days in (21, 14, 7):
            compliance_service.log_completion(
                weekly_swab.id, completed_at=NOW - timedelta(days=days), session=db_session
            )

        logs = compliance_service.get_task_logs(weekly_swab.id, session=db_session)
        assert len(logs) == 3
        assert logs[0].completed_at.replace(tzinfo=None) == (NOW - timedelta(days=7)).replace(tzinfo=None)

        assert len(compliance_service.get_task_logs(weekly_swab.id, limit=0, session=db_session)) == 1

    def test_unknown_task(self, db_session):
        with pytest.raises(ComplianceTaskNotFound):
            compliance_service.get_task_logs(42, session=db_session)
