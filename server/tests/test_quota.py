import sqlite3
from types import SimpleNamespace

import pytest

from reconciliation.models import Scope, TrackedRecord
from reconciliation.normalizer import CourseIndex
from reconciliation.quota import (
    QUOTA_ERROR_HINT,
    DutyLeaveQuotaError,
    count_duty_leaves,
    is_duty_leave_quota_error,
    remaining_duty_leaves,
    submit_tracked_record,
)

SCOPE = Scope(semester="S5", academic_year="2024-25")


def _record(day, *, course="101", code=225, semester="S5"):
    return TrackedRecord(
        course=course,
        session="I",
        date=day,
        attendance_code=code,
        semester=semester,
        academic_year="2024-25",
    )


@pytest.mark.parametrize(
    "error",
    [
        DutyLeaveQuotaError("101"),
        {"code": "P0001", "hint": QUOTA_ERROR_HINT},
        {"code": "23514", "details": {"code": "P0001", "hint": QUOTA_ERROR_HINT}},
        {"code": "P0001", "message": "Maximum 5 Duty Leaves exceeded for this course"},
        SimpleNamespace(code="P0001", hint=QUOTA_ERROR_HINT),
        sqlite3.IntegrityError("Only 5 duty leaves allowed per semester per course"),
        sqlite3.IntegrityError("Only 3 duty leaves allowed per semester per course"),
    ],
)
def test_recognises_quota_rejections(error):
    assert is_duty_leave_quota_error(error)


@pytest.mark.parametrize(
    "error",
    [
        None,
        ValueError("boom"),
        {"code": "23505", "message": "duplicate key"},
        {"code": "P0001", "message": "some other trigger"},
        {"hint": QUOTA_ERROR_HINT},
        sqlite3.IntegrityError("UNIQUE constraint failed: tracker.username"),
    ],
)
def test_ignores_other_errors(error):
    assert not is_duty_leave_quota_error(error)


def test_quota_error_payload():
    error = DutyLeaveQuotaError("101", semester="S5", year="2024-25", course_name="Data Structures")

    assert error.message == (
        "Cannot add Duty Leave: Maximum of 5 duty leaves per semester exceeded for Data Structures"
    )
    assert error.as_dict() == {
        "error": "duty_leave_limit",
        "course": "101",
        "semester": "S5",
        "year": "2024-25",
        "limit": 5,
        "message": error.message,
    }


def test_count_and_remaining_duty_leaves():
    index = CourseIndex({"101": {"name": "Data Structures"}})
    records = [
        _record("2024-01-10"),
        _record("2024-01-11", course="Data Structures"),
        _record("2024-01-12", code=110),
        _record("2024-01-13", semester="S4"),
        _record("2024-01-14", course="202"),
    ]

    assert count_duty_leaves(records, "101", SCOPE, index) == 2
    assert remaining_duty_leaves(records, "101", SCOPE, index=index) == 3
    assert remaining_duty_leaves(records * 5, "101", SCOPE, index=index) == 0


def test_submit_applies_on_success():
    snapshot = [_record("2024-01-10")]
    new = _record("2024-01-11")

    outcome = submit_tracked_record(snapshot, new, lambda r: {**r.as_dict(), "id": 7})

    assert outcome.applied
    assert outcome.error is None
    assert len(outcome.records) == 2
    assert outcome.records[-1].id == 7


def test_submit_rejection_leaves_snapshot_untouched():
    snapshot = [_record("2024-01-10")]

    def _insert(record):
        raise sqlite3.IntegrityError(QUOTA_ERROR_HINT)

    outcome = submit_tracked_record(snapshot, _record("2024-01-11"), _insert, course_name="Data Structures")

    assert not outcome.applied
    assert outcome.status == "rejected"
    assert outcome.records == tuple(snapshot)
    assert outcome.error.as_dict()["error"] == "duty_leave_limit"
    assert "Data Structures" in outcome.error.message


def test_submit_propagates_other_errors():
    def _insert(record):
        raise RuntimeError("store offline")

    with pytest.raises(RuntimeError):
        submit_tracked_record([], _record("2024-01-11"), _insert)
