import pytest
from fastapi.testclient import TestClient

import server.config as config
import server.main as main
import server.routers.attendance as attendance_router
import storage.db as db

SCOPE = {"semester": "S5", "year": "2024-25"}

REPORT = {
    "attendance": {
        "20240115": {
            "1": {"course": "101", "session": "I", "attendance": 111},
            "2": {"course": "101", "session": "II", "attendance": 110},
        },
        "20240116": {
            "1": {"course": "101", "session": "I", "attendance": 111},
        },
    },
    "courses": {"101": {"name": "Data Structures", "code": "CS201"}},
}


@pytest.fixture()
def client(tmp_path, monkeypatch):
    test_db = tmp_path / "attendance_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()

    with TestClient(main.app) as c:
        yield c


def _track(client, **overrides):
    payload = {
        "username": "alice",
        "course": "101",
        "date": "2024-01-15",
        "session": "I",
        "semester": "S5",
        "year": "2024-25",
    }
    payload.update(overrides)
    return client.post("/tracker", json=payload)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_attendance_config(client):
    res = client.get("/config/attendance")
    assert res.status_code == 200
    data = res.json()
    assert data["duty_leave_limit"] == 5
    assert data["attendance_codes"]["225"] == "Duty Leave"


def test_projection_below_target(client):
    res = client.post("/attendance/projection", json={"present": 40, "total": 60})
    assert res.status_code == 200
    assert res.json() == {
        "is_exact": False,
        "can_bunk": 0,
        "required_to_attend": 20,
        "target_percentage": 75.0,
    }


def test_projection_target_floor(client, monkeypatch):
    res = client.post("/attendance/projection", json={"present": 30, "total": 40, "target_percentage": 50})
    assert res.json()["is_exact"] is True
    assert res.json()["target_percentage"] == 75.0

    monkeypatch.setattr(attendance_router, "ENFORCE_TARGET_FLOOR", False)
    res = client.post("/attendance/projection", json={"present": 30, "total": 40, "target_percentage": 50})
    assert res.json()["can_bunk"] == 20


def test_projection_rejects_bad_payload(client):
    res = client.post("/attendance/projection", json={"present": "lots"})
    assert res.status_code == 422


def test_track_list_count_and_delete(client):
    res = _track(client, session="1", remarks="signed in late")
    assert res.status_code == 200
    record = res.json()["record"]
    assert record["session"] == "I"
    assert record["status"] == "correction"
    assert record["attendance"] == 110

    res = client.get("/tracker/alice")
    assert res.status_code == 200
    assert len(res.json()) == 1

    res = client.get("/tracker/alice/count", params={"semester": "S5"})
    assert res.json() == {"username": "alice", "count": 1}

    params = {"username": "alice", "course": "101", "date": "2024-01-15", "session": "I"}
    res = client.delete("/tracker", params=params)
    assert res.status_code == 200

    res = client.delete("/tracker", params=params)
    assert res.status_code == 404


def test_track_duplicate_slot(client):
    assert _track(client).status_code == 200
    res = _track(client, session="1st")
    assert res.status_code == 409
    assert res.json()["detail"] == "Session already tracked."


def test_track_validation(client):
    assert _track(client, username="  ").status_code == 400
    assert _track(client, attendance="nope").status_code == 400
    assert _track(client, status="maybe").status_code == 422


def test_track_duty_leave_limit(client):
    for day in range(10, 15):
        assert _track(client, date=f"2024-01-{day}", attendance=225).status_code == 200

    res = _track(client, date="2024-01-20", attendance=225, course_name="Data Structures")
    assert res.status_code == 422
    detail = res.json()["detail"]
    assert detail["error"] == "duty_leave_limit"
    assert detail["limit"] == 5
    assert detail["course"] == "101"
    assert "Data Structures" in detail["message"]

    res = client.get(
        "/tracker/alice/duty-leaves",
        params={"course": "101", "semester": "S5", "year": "2024-25"},
    )
    assert res.json()["used"] == 5
    assert res.json()["remaining"] == 0


def test_reconcile_with_inline_records(client):
    payload = {
        "report": REPORT,
        "scope": SCOPE,
        "records": [
            {"course": "Data Structures", "session": "1", "date": "2024-01-15", "semester": "S5", "year": "2024-25"},
            {"course": "101", "session": "III", "date": "2024-01-15", "status": "extra", "semester": "S5", "year": "2024-25"},
        ],
        "date": "20240115",
    }
    res = client.post("/attendance/reconcile", json=payload)
    assert res.status_code == 200
    data = res.json()

    assert len(data["sessions"]) == 4
    agg = data["aggregates"]["101"]
    assert agg["official_total"] == 3
    assert agg["official_present"] == 1
    assert agg["adjusted_present"] == 3
    assert agg["adjusted_total"] == 4

    projection = data["projections"]["101"]
    assert projection["safe"]["required_to_attend"] == 5
    assert projection["extra"]["is_exact"] is True
    assert projection["diverges"] is True

    assert data["day"]["date"] == "2024-01-15"
    assert data["day"]["status"] == "present"
    assert [s["session_number"] for s in data["day"]["sessions"]] == [1, 2, 3]


def test_reconcile_loads_records_from_store(client):
    assert _track(client, session="I", date="2024-01-16").status_code == 200

    res = client.post(
        "/attendance/reconcile",
        json={"report": REPORT, "scope": SCOPE, "username": "alice", "status": "present"},
    )
    assert res.status_code == 200
    data = res.json()
    assert data["aggregates"]["101"]["correction_positive"] == 1
    assert len(data["filtered"]) == 2


def test_reconcile_requires_records_or_username(client):
    res = client.post("/attendance/reconcile", json={"report": REPORT, "scope": SCOPE})
    assert res.status_code == 400


def test_sync_applies_plan(client):
    assert _track(client, session="II", attendance=111).status_code == 200
    assert _track(client, session="I", status="extra").status_code == 200
    assert _track(client, session="I", date="2024-01-20").status_code == 200

    res = client.post("/attendance/sync", json={"username": "alice", "report": REPORT, "dry_run": True})
    assert res.status_code == 200
    assert res.json()["applied"] == {"deleted": 0, "promoted": 0}
    assert len(client.get("/tracker/alice").json()) == 3

    res = client.post("/attendance/sync", json={"username": "alice", "report": REPORT})
    assert res.status_code == 200
    data = res.json()
    assert data["applied"] == {"deleted": 1, "promoted": 1}
    assert {n["kind"] for n in data["notices"]} == {"official_present", "conflict"}

    rows = client.get("/tracker/alice").json()
    assert len(rows) == 2
    assert all(r["status"] == "correction" for r in rows)


def test_tracker_accepts_writes_after_quota_rejection(client):
    for day in range(10, 15):
        assert _track(client, date=f"2024-01-{day}", attendance=225).status_code == 200
    assert _track(client, date="2024-01-20", attendance=225).status_code == 422
    assert _track(client, date="2024-01-20", course="101-", attendance=225).status_code == 422

    res = _track(client, date="2024-01-20", course="202", attendance=225)
    assert res.status_code == 200
    assert res.json()["record"]["attendance_label"] == "Duty Leave"
