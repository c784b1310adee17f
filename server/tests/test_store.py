import sqlite3

import pytest

import storage.db as db
from reconciliation.quota import DutyLeaveQuotaError
from reconciliation.statuses import AttendanceCode
from reconciliation.sync import SyncPlan


@pytest.fixture()
def store(tmp_path, monkeypatch):
    test_db = tmp_path / "attendance_test.db"
    monkeypatch.setattr(db, "DB_PATH", test_db)
    db.create_tables()
    return db


def _add(day, *, username="alice", course="101", session="I", **kw):
    kw.setdefault("semester", "S5")
    kw.setdefault("year", "2024-25")
    return db.add_tracked_record(username, course, day, session, **kw)


def test_add_and_get_tracked_record(store):
    record = _add("20240115", session="1", remarks="lab ran late")

    assert record.id >= 1
    assert record.date == "2024-01-15"
    assert record.session == "I"

    rows = store.get_tracked_records("alice")
    assert len(rows) == 1
    assert rows[0].id == record.id
    assert rows[0].kind == "correction"
    assert rows[0].code == AttendanceCode.PRESENT
    assert rows[0].remarks == "lab ran late"
    assert rows[0].academic_year == "2024-25"


def test_create_tables_is_idempotent(store):
    _add("2024-01-15")
    store.create_tables()
    assert store.count_tracked_records("alice") == 1


def test_duplicate_slot_is_rejected(store):
    _add("2024-01-15", session="I")
    with pytest.raises(sqlite3.IntegrityError):
        _add("2024-01-15", session="1st")


def test_invalid_status_and_code(store):
    with pytest.raises(ValueError):
        _add("2024-01-15", status="bogus")
    with pytest.raises(ValueError):
        _add("2024-01-15", attendance=999)


def test_duty_leave_limit_enforced_by_store(store):
    for day in range(10, 15):
        _add(f"2024-01-{day}", attendance=225)

    with pytest.raises(DutyLeaveQuotaError) as excinfo:
        _add("2024-01-20", attendance=225, course_name="Data Structures")

    assert excinfo.value.limit == 5
    assert "Data Structures" in excinfo.value.message
    assert store.count_tracked_records("alice") == 5

    # other course, other term, other user and non-leave rows are unaffected
    _add("2024-01-20", course="202", attendance=225)
    _add("2024-01-20", semester="S6", attendance=225)
    _add("2024-01-20", username="bob", attendance=225)
    _add("2024-01-21", attendance=110)


def test_duty_leave_limit_follows_config(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "limit.db")
    monkeypatch.setattr(db, "DUTY_LEAVE_LIMIT", 2)
    db.create_tables()

    _add("2024-01-10", attendance=225)
    _add("2024-01-11", attendance=225)
    with pytest.raises(DutyLeaveQuotaError) as excinfo:
        _add("2024-01-12", attendance=225)
    assert excinfo.value.limit == 2


def test_delete_tracked_record(store):
    _add("2024-01-15", session="II")

    assert store.delete_tracked_record("alice", "101", "20240115", "2")
    assert not store.delete_tracked_record("alice", "101", "2024-01-15", "II")


def test_count_with_scope_filters(store):
    _add("2024-01-15")
    _add("2024-01-16")
    _add("2024-01-17", semester="S4")

    assert store.count_tracked_records("alice") == 3
    assert store.count_tracked_records("alice", semester="S5", year="2024-25") == 2
    assert len(store.get_tracked_records("alice", semester="S4")) == 1


def test_apply_sync_plan(store):
    stale = _add("2024-01-15")
    extra = _add("2024-01-16", status="extra")
    keep = _add("2024-01-17")

    result = store.apply_sync_plan(SyncPlan(deletions=[stale], promotions=[extra]))

    assert result == {"deleted": 1, "promoted": 1}
    rows = {r.id: r for r in store.get_tracked_records("alice")}
    assert set(rows) == {extra.id, keep.id}
    assert rows[extra.id].kind == "correction"


def test_clear_tracker(store):
    _add("2024-01-15")
    _add("2024-01-15", username="bob")

    assert store.clear_tracker("alice") == 1
    assert store.count_tracked_records("bob") == 1
    assert store.clear_tracker() == 1


def test_store_stays_writable_after_rejections(store):
    _add("2024-01-15")
    for day in range(10, 15):
        _add(f"2024-02-{day}", attendance=225)

    with pytest.raises(sqlite3.IntegrityError):
        _add("2024-01-15")
    with pytest.raises(DutyLeaveQuotaError) as excinfo:
        _add("2024-02-20", attendance=225)

    # keep the exception alive: later writes must not wait on its statement
    assert excinfo.value is not None
    record = _add("2024-01-16", course="202")
    assert record.id is not None
    assert store.delete_tracked_record("alice", "202", "2024-01-16", "I")


def test_duty_leave_limit_ignores_course_spelling(store):
    for day in range(10, 15):
        _add(f"2024-01-{day}", course="CS201", attendance=225)

    with pytest.raises(DutyLeaveQuotaError):
        _add("2024-01-20", course="cs201", attendance=225)
    with pytest.raises(DutyLeaveQuotaError):
        _add("2024-01-21", course="CS 201", attendance=225)
    assert store.count_tracked_records("alice") == 5


def test_slot_uniqueness_ignores_course_spelling(store):
    _add("2024-01-15", course="CS201")
    with pytest.raises(sqlite3.IntegrityError):
        _add("2024-01-15", course="cs-201")
    assert store.delete_tracked_record("alice", "cs 201", "2024-01-15", "I")
