import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal, Mapping

from reconciliation.models import Scope, TrackedRecord
from reconciliation.normalizer import CourseIndex
from reconciliation.statuses import AttendanceCode

DUTY_LEAVE_LIMIT = 5
QUOTA_ERROR_CODE = "P0001"
QUOTA_ERROR_HINT = "Only 5 duty leaves allowed per semester per course"
QUOTA_TRIGGER_MARKER = "duty leaves allowed per semester per course"


class DutyLeaveQuotaError(Exception):
    """The store refused a duty-leave record: the per-course semester cap is used up."""

    def __init__(
        self,
        course: str,
        *,
        semester: str = "",
        year: str = "",
        limit: int = DUTY_LEAVE_LIMIT,
        course_name: str | None = None,
    ) -> None:
        self.course = str(course)
        self.semester = semester
        self.year = year
        self.limit = limit
        self.course_name = course_name or f"course {course}"
        super().__init__(duty_leave_message(self.course_name, limit))

    @property
    def message(self) -> str:
        return str(self)

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": "duty_leave_limit",
            "course": self.course,
            "semester": self.semester,
            "year": self.year,
            "limit": self.limit,
            "message": self.message,
        }


def duty_leave_message(course_name: str, limit: int = DUTY_LEAVE_LIMIT) -> str:
    return f"Cannot add Duty Leave: Maximum of {limit} duty leaves per semester exceeded for {course_name}"


def _field(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def is_duty_leave_quota_error(error: Any) -> bool:
    """
    Recognise the store's quota rejection in the shapes it arrives in:
      - DutyLeaveQuotaError
      - {code: "P0001", hint: QUOTA_ERROR_HINT}, directly or under `details`
      - a P0001 error whose message says "Maximum ... Duty Leaves exceeded"
      - the sqlite trigger's IntegrityError
    """
    if error is None:
        return False
    if isinstance(error, DutyLeaveQuotaError):
        return True
    if isinstance(error, sqlite3.Error):
        return QUOTA_TRIGGER_MARKER in str(error)

    code = _field(error, "code")
    if code == QUOTA_ERROR_CODE and _field(error, "hint") == QUOTA_ERROR_HINT:
        return True

    details = _field(error, "details")
    if details is not None and not isinstance(details, str):
        if _field(details, "code") == QUOTA_ERROR_CODE and _field(details, "hint") == QUOTA_ERROR_HINT:
            return True

    message = _field(error, "message")
    if isinstance(message, str) and code == QUOTA_ERROR_CODE:
        return "Maximum" in message and "Duty Leaves exceeded" in message
    return False


# -----------------------------
# Client-side awareness
# -----------------------------
def count_duty_leaves(
    records: Iterable[TrackedRecord],
    course: Any,
    scope: Scope,
    index: CourseIndex | None = None,
) -> int:
    index = index or CourseIndex()
    target = index.identity(course)
    return sum(
        1
        for record in records
        if record.in_scope(scope)
        and record.code == AttendanceCode.DUTY_LEAVE
        and index.identity(record.course) == target
    )


def remaining_duty_leaves(
    records: Iterable[TrackedRecord],
    course: Any,
    scope: Scope,
    *,
    limit: int = DUTY_LEAVE_LIMIT,
    index: CourseIndex | None = None,
) -> int:
    return max(0, limit - count_duty_leaves(records, course, scope, index))


# -----------------------------
# Write boundary
# -----------------------------
@dataclass(frozen=True)
class WriteOutcome:
    status: Literal["applied", "rejected"]
    records: tuple[TrackedRecord, ...]
    error: DutyLeaveQuotaError | None = None

    @property
    def applied(self) -> bool:
        return self.status == "applied"


def submit_tracked_record(
    records: Iterable[TrackedRecord],
    record: TrackedRecord,
    insert: Callable[[TrackedRecord], Any],
    *,
    limit: int = DUTY_LEAVE_LIMIT,
    course_name: str | None = None,
) -> WriteOutcome:
    """
    Run the external insert and report one of two outcomes.

    applied:  the new snapshot is the old one plus the stored record (the
              insert may return the stored row as a TrackedRecord or mapping)
    rejected: duty-leave cap hit; the snapshot is returned untouched
    Any other error from `insert` propagates.
    """
    snapshot = tuple(records)
    try:
        stored = insert(record)
    except Exception as exc:
        if not is_duty_leave_quota_error(exc):
            raise
        if isinstance(exc, DutyLeaveQuotaError):
            error = exc
        else:
            error = DutyLeaveQuotaError(
                record.course,
                semester=record.semester,
                year=record.academic_year,
                limit=limit,
                course_name=course_name,
            )
        return WriteOutcome(status="rejected", records=snapshot, error=error)

    if isinstance(stored, TrackedRecord):
        new_record = stored
    elif isinstance(stored, Mapping):
        new_record = TrackedRecord.from_mapping(stored)
    else:
        new_record = record
    return WriteOutcome(status="applied", records=snapshot + (new_record,))
