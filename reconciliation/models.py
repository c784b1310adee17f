from dataclasses import dataclass
from typing import Any, Literal, Mapping

from reconciliation.statuses import AttendanceCode, coerce_code, label_for

RecordKind = Literal["correction", "extra"]
RECORD_KINDS: tuple[str, ...] = ("correction", "extra")


@dataclass(frozen=True)
class Scope:
    """Active reporting period. Passed explicitly into every engine call."""

    semester: str
    academic_year: str
    target_percentage: float | None = None

    def matches(self, semester: Any, academic_year: Any) -> bool:
        return _scope_text(semester) == _scope_text(self.semester) and _scope_text(
            academic_year
        ) == _scope_text(self.academic_year)


def _scope_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class CanonicalSlotKey:
    course: str
    session: int
    date: str
    # raw label, kept only for sessions that did not normalize to a number
    label: str = ""


@dataclass(frozen=True)
class OfficialSession:
    course_id: str
    date: str
    session_label: str | None
    attendance_code: Any
    course_name: str = ""
    course_code: str = ""
    class_type: str | None = None
    session_key: str = ""

    @property
    def is_revision(self) -> bool:
        return (self.class_type or "").strip().lower() == "revision"


@dataclass(frozen=True)
class TrackedRecord:
    course: str
    session: str
    date: str
    kind: RecordKind = "correction"
    attendance_code: Any = AttendanceCode.PRESENT
    semester: str = ""
    academic_year: str = ""
    remarks: str | None = None
    username: str | None = None
    id: int | None = None

    def in_scope(self, scope: Scope) -> bool:
        return scope.matches(self.semester, self.academic_year)

    @property
    def code(self) -> AttendanceCode | None:
        return coerce_code(self.attendance_code)

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "TrackedRecord":
        """
        Build from the tracker row shape:
          {id?, username, course, session, date, status, attendance,
           semester, year, remarks?}
        """
        kind = str(row.get("status") or "correction").strip().lower()
        if kind not in RECORD_KINDS:
            kind = "correction"
        attendance = row.get("attendance")
        return cls(
            id=row.get("id"),
            username=row.get("username"),
            course=str(row.get("course") or ""),
            session=str(row.get("session") or ""),
            date=str(row.get("date") or ""),
            kind=kind,  # type: ignore[arg-type]
            attendance_code=AttendanceCode.PRESENT if attendance is None else attendance,
            semester=_scope_text(row.get("semester")),
            academic_year=_scope_text(row.get("year", row.get("academic_year"))),
            remarks=row.get("remarks"),
        )

    def as_dict(self) -> dict[str, Any]:
        code = self.code
        return {
            "id": self.id,
            "username": self.username,
            "course": self.course,
            "session": self.session,
            "date": self.date,
            "status": self.kind,
            "attendance": int(code) if code is not None else self.attendance_code,
            "attendance_label": label_for(self.attendance_code),
            "semester": self.semester,
            "year": self.academic_year,
            "remarks": self.remarks,
        }


@dataclass(frozen=True)
class ReconciledSession:
    key: CanonicalSlotKey
    course_id: str
    course_name: str
    date: str
    session_label: str
    status: AttendanceCode
    is_correction: bool = False
    is_extra: bool = False
    original_status: AttendanceCode | None = None
    remarks: str | None = None

    @property
    def session_number(self) -> int:
        return self.key.session

    def as_dict(self) -> dict[str, Any]:
        return {
            "course_id": self.course_id,
            "course_name": self.course_name,
            "date": self.date,
            "session": self.session_label,
            "session_number": self.key.session,
            "status": self.status.label,
            "attendance": int(self.status),
            "is_correction": self.is_correction,
            "is_extra": self.is_extra,
            "original_status": self.original_status.label if self.original_status else None,
            "remarks": self.remarks,
        }


def _percentage(present: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(present / total * 100, 2)


@dataclass
class CourseAggregate:
    course_id: str
    course_name: str = ""
    official_present: int = 0
    official_absent: int = 0
    official_total: int = 0
    official_duty_leave: int = 0
    official_other_leave: int = 0
    correction_positive: int = 0
    correction_duty_leave: int = 0
    extra_positive: int = 0
    extra_absent: int = 0
    extra_duty_leave: int = 0
    extra_count: int = 0

    @property
    def adjusted_present(self) -> int:
        return self.official_present + self.correction_positive + self.extra_positive

    @property
    def adjusted_total(self) -> int:
        return self.official_total + self.extra_count

    @property
    def official_percentage(self) -> float:
        return _percentage(self.official_present, self.official_total)

    @property
    def adjusted_percentage(self) -> float:
        return _percentage(self.adjusted_present, self.adjusted_total)

    def as_dict(self) -> dict[str, Any]:
        return {
            "course_id": self.course_id,
            "course_name": self.course_name,
            "official_present": self.official_present,
            "official_absent": self.official_absent,
            "official_total": self.official_total,
            "official_duty_leave": self.official_duty_leave,
            "official_other_leave": self.official_other_leave,
            "correction_positive": self.correction_positive,
            "correction_duty_leave": self.correction_duty_leave,
            "extra_positive": self.extra_positive,
            "extra_absent": self.extra_absent,
            "extra_duty_leave": self.extra_duty_leave,
            "extra_count": self.extra_count,
            "adjusted_present": self.adjusted_present,
            "adjusted_total": self.adjusted_total,
            "official_percentage": self.official_percentage,
            "adjusted_percentage": self.adjusted_percentage,
        }


@dataclass(frozen=True)
class Projection:
    is_exact: bool = False
    can_bunk: int = 0
    required_to_attend: int = 0
    target_percentage: float = 75

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_exact": self.is_exact,
            "can_bunk": self.can_bunk,
            "required_to_attend": self.required_to_attend,
            "target_percentage": self.target_percentage,
        }


@dataclass(frozen=True)
class CourseProjection:
    """Official-only ("safe") and adjusted ("extra") projections for one course."""

    course_id: str
    safe: Projection
    extra: Projection

    @property
    def diverges(self) -> bool:
        return (
            self.safe.is_exact != self.extra.is_exact
            or self.safe.can_bunk != self.extra.can_bunk
            or self.safe.required_to_attend != self.extra.required_to_attend
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "course_id": self.course_id,
            "safe": self.safe.as_dict(),
            "extra": self.extra.as_dict(),
            "diverges": self.diverges,
        }
