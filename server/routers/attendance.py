import logging
from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from reconciliation.merge import parse_official_report, reconcile_report, session_as_dict
from reconciliation.models import Scope, TrackedRecord
from reconciliation.normalizer import normalize_date
from reconciliation.projection import project
from reconciliation.sync import plan_sync
from server.config import (
    DEFAULT_TARGET_PERCENTAGE,
    ENFORCE_TARGET_FLOOR,
    MIN_TARGET_PERCENTAGE,
)
from storage.db import apply_sync_plan, get_tracked_records

router = APIRouter()
logger = logging.getLogger(__name__)


class ProjectionRequest(BaseModel):
    present: float
    total: float
    target_percentage: float | None = None


class ScopeIn(BaseModel):
    semester: str
    year: str
    target_percentage: float | None = None


class TrackedRecordIn(BaseModel):
    course: str
    session: str
    date: str
    status: Literal["correction", "extra"] = "correction"
    attendance: int | str = 110
    semester: str = ""
    year: str = ""
    remarks: str | None = None
    id: int | None = None


class ReconcileRequest(BaseModel):
    report: dict[str, Any]
    scope: ScopeIn
    username: str | None = None
    records: list[TrackedRecordIn] | None = None
    date: str | None = None
    status: str | None = None


class SyncRequest(BaseModel):
    username: str
    report: dict[str, Any]
    dry_run: bool = False


def effective_target(requested: float | None) -> float:
    """Caller-side target: the configured default, raised to the floor when enforced."""
    target = DEFAULT_TARGET_PERCENTAGE if requested is None else requested
    if ENFORCE_TARGET_FLOOR:
        return max(MIN_TARGET_PERCENTAGE, target)
    return target


@router.post("/attendance/projection")
def projection(payload: ProjectionRequest):
    result = project(payload.present, payload.total, effective_target(payload.target_percentage))
    return result.as_dict()


@router.post("/attendance/reconcile")
def reconcile_attendance(payload: ReconcileRequest):
    if payload.records is not None:
        records = [TrackedRecord.from_mapping(r.model_dump()) for r in payload.records]
    elif payload.username and payload.username.strip():
        records = get_tracked_records(payload.username.strip())
    else:
        raise HTTPException(status_code=400, detail="Either records or username is required.")

    target = effective_target(payload.scope.target_percentage)
    scope = Scope(
        semester=payload.scope.semester,
        academic_year=payload.scope.year,
        target_percentage=target,
    )
    result = reconcile_report(payload.report, records, scope)

    body = result.as_dict()
    body["target_percentage"] = target
    body["projections"] = {cid: p.as_dict() for cid, p in result.projections().items()}

    if payload.date:
        day = normalize_date(payload.date)
        body["day"] = {
            "date": day,
            "status": result.day_status(day),
            "sessions": [session_as_dict(s) for s in result.sessions_on(day)],
        }
    if payload.status:
        body["filtered"] = [session_as_dict(s) for s in result.filter_status(payload.status)]
    return body


@router.post("/attendance/sync")
def sync_tracker(payload: SyncRequest):
    username = payload.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="Username is required.")

    report = parse_official_report(payload.report)
    plan = plan_sync(report.sessions, get_tracked_records(username), report.courses)

    body = plan.as_dict()
    if payload.dry_run or plan.is_empty:
        body["applied"] = {"deleted": 0, "promoted": 0}
        return body

    body["applied"] = apply_sync_plan(plan)
    logger.info(
        "sync for %s: %d notices, applied %s",
        username, len(plan.notices), body["applied"],
    )
    return body
