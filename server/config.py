import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("ATTENDANCE_DB_PATH", BASE_DIR / "storage" / "attendance.db"))
LOG_LEVEL = (os.getenv("ATTENDANCE_LOG_LEVEL", "INFO").strip() or "INFO").upper()


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_int(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        return int(value.strip())
    except ValueError:
        return fallback


def _parse_float(value: str | None, fallback: float) -> float:
    if not value:
        return fallback
    try:
        return float(value.strip())
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("ATTENDANCE_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("ATTENDANCE_CORS_ALLOW_METHODS"),
    ["GET", "POST", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("ATTENDANCE_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("ATTENDANCE_CORS_ALLOW_CREDENTIALS"), True)

DEFAULT_TARGET_PERCENTAGE = _parse_float(os.getenv("ATTENDANCE_DEFAULT_TARGET"), 75.0)
# Lowest target a caller may ask for; the calculator itself accepts 1-100.
MIN_TARGET_PERCENTAGE = _parse_float(os.getenv("ATTENDANCE_MIN_TARGET"), 75.0)
ENFORCE_TARGET_FLOOR = _parse_bool(os.getenv("ATTENDANCE_ENFORCE_TARGET_FLOOR"), True)
DUTY_LEAVE_LIMIT = max(0, _parse_int(os.getenv("ATTENDANCE_DUTY_LEAVE_LIMIT"), 5))
