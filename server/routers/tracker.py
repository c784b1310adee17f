import sqlite3
from typing import Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from reconciliation.models import Scope, TrackedRecord
from reconciliation.quota import count_duty_leaves, remaining_duty_leaves, submit_tracked_record
from server.config import DUTY_LEAVE_LIMIT
from storage.db import (
    add_tracked_record,
    count_tracked_records,
    delete_tracked_record,
    get_tracked_records,
)

router = APIRouter()


class TrackerCreate(BaseModel):
    username: str
    course: str
    date: str
    session: str
    semester: str = ""
    year: str = ""
    status: Literal["correction", "extra"] = "correction"
    attendance: int | str = 110
    remarks: str | None = None
    course_name: str | None = None


@router.get("/tracker/{username}")
def tracker_records(username: str, semester: str | None = None, year: str | None = None):
    return [r.as_dict() for r in get_tracked_records(username, semester=semester, year=year)]


@router.get("/tracker/{username}/count")
def tracker_count(username: str, semester: str | None = None, year: str | None = None):
    return {
        "username": username,
        "count": count_tracked_records(username, semester=semester, year=year),
    }


@router.get("/tracker/{username}/duty-leaves")
def tracker_duty_leaves(username: str, course: str, semester: str = "", year: str = ""):
    scope = Scope(semester=semester, academic_year=year)
    records = get_tracked_records(username)
    return {
        "username": username,
        "course": course,
        "semester": semester,
        "year": year,
        "limit": DUTY_LEAVE_LIMIT,
        "used": count_duty_leaves(records, course, scope),
        "remaining": remaining_duty_leaves(records, course, scope, limit=DUTY_LEAVE_LIMIT),
    }


@router.post("/tracker")
def create_tracker_record(payload: TrackerCreate):
    username = payload.username.strip()
    course = payload.course.strip()
    date = payload.date.strip()
    session = payload.session.strip()

    if not username or not course or not date or not session:
        raise HTTPException(status_code=400, detail="username, course, date and session are required.")

    def _insert(record: TrackedRecord) -> TrackedRecord:
        return add_tracked_record(
            username,
            record.course,
            record.date,
            record.session,
            semester=record.semester,
            year=record.academic_year,
            status=record.kind,
            attendance=record.attendance_code,
            remarks=record.remarks,
            course_name=payload.course_name,
        )

    record = TrackedRecord(
        username=username,
        course=course,
        date=date,
        session=session,
        semester=payload.semester.strip(),
        academic_year=payload.year.strip(),
        kind=payload.status,
        attendance_code=payload.attendance,
        remarks=payload.remarks,
    )
    snapshot = get_tracked_records(username, semester=record.semester, year=record.academic_year)

    try:
        outcome = submit_tracked_record(
            snapshot,
            record,
            _insert,
            limit=DUTY_LEAVE_LIMIT,
            course_name=payload.course_name,
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Session already tracked.")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if not outcome.applied:
        raise HTTPException(status_code=422, detail=outcome.error.as_dict())

    return {
        "record": outcome.records[-1].as_dict(),
        "count": len(outcome.records),
    }


@router.delete("/tracker")
def delete_tracker_record(username: str, course: str, date: str, session: str):
    if not delete_tracked_record(username, course, date, session):
        raise HTTPException(status_code=404, detail="Tracked record not found.")
    return {"ok": True}
