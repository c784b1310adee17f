from fastapi import APIRouter

from reconciliation.statuses import AttendanceCode
from server.config import (
    DEFAULT_TARGET_PERCENTAGE,
    DUTY_LEAVE_LIMIT,
    ENFORCE_TARGET_FLOOR,
    MIN_TARGET_PERCENTAGE,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config/attendance")
def attendance_config():
    return {
        "default_target_percentage": DEFAULT_TARGET_PERCENTAGE,
        "min_target_percentage": MIN_TARGET_PERCENTAGE,
        "enforce_target_floor": ENFORCE_TARGET_FLOOR,
        "duty_leave_limit": DUTY_LEAVE_LIMIT,
        "attendance_codes": {str(int(code)): code.label for code in AttendanceCode},
    }
