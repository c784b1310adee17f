import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from reconciliation.models import (
    CanonicalSlotKey,
    CourseAggregate,
    CourseProjection,
    OfficialSession,
    ReconciledSession,
    Scope,
    TrackedRecord,
)
from reconciliation.normalizer import (
    SESSION_SENTINEL,
    CourseIndex,
    format_session_name,
    normalize_date,
    official_slot_key,
    tracked_slot_key,
)
from reconciliation.projection import project_all
from reconciliation.statuses import AttendanceCode, code_for_label, coerce_code

logger = logging.getLogger(__name__)

_CANONICAL_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


# -----------------------------
# Official report
# -----------------------------
@dataclass
class OfficialReport:
    sessions: list[OfficialSession] = field(default_factory=list)
    courses: dict[str, dict[str, Any]] = field(default_factory=dict)
    totals: dict[str, dict[str, int]] = field(default_factory=dict)


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() in ("", "null")


def _resolve_session_label(
    slot: Mapping[str, Any],
    session_key: str,
    position: int,
    session_names: Mapping[str, Any],
) -> str:
    if not _is_blank(slot.get("session")):
        return str(slot["session"])
    named = session_names.get(session_key) or {}
    if isinstance(named, Mapping) and not _is_blank(named.get("name")):
        return str(named["name"])
    if session_key.isdigit() and int(session_key) < 20:
        return session_key
    return str(position)


def parse_official_report(report: Mapping[str, Any]) -> OfficialReport:
    """
    Flatten the official report

      {"attendance": {YYYYMMDD: {session_key: {course, session?, attendance, class_type?}}},
       "courses": {course_id: {name, code}},
       "sessions": {session_key: {name}},
       "totals": {course_id: {present, absent, total}}}

    into OfficialSession rows in feed order. "studentAttendanceData" is
    accepted as an alias of "attendance". Empty slots (no course or no
    attendance mark) are holidays and are skipped.
    """
    raw_days = report.get("attendance")
    if raw_days is None:
        raw_days = report.get("studentAttendanceData") or {}
    courses = {str(k): dict(v or {}) for k, v in (report.get("courses") or {}).items()}
    session_names = {str(k): v for k, v in (report.get("sessions") or {}).items()}
    totals = {}
    for course_id, counts in (report.get("totals") or {}).items():
        counts = counts or {}
        totals[str(course_id)] = {
            "present": int(counts.get("present") or 0),
            "absent": int(counts.get("absent") or 0),
            "total": int(counts.get("total") or 0),
        }

    sessions: list[OfficialSession] = []
    for date_str, slots in raw_days.items():
        for position, (session_key, slot) in enumerate((slots or {}).items(), start=1):
            if not isinstance(slot, Mapping):
                continue
            if _is_blank(slot.get("course")) or slot.get("attendance") is None:
                continue
            course_id = str(slot["course"])
            info = courses.get(course_id, {})
            sessions.append(
                OfficialSession(
                    course_id=course_id,
                    course_name=str(info.get("name") or ""),
                    course_code=str(info.get("code") or ""),
                    date=str(date_str),
                    session_label=_resolve_session_label(slot, str(session_key), position, session_names),
                    attendance_code=slot.get("attendance"),
                    class_type=slot.get("class_type"),
                    session_key=str(session_key),
                )
            )
    return OfficialReport(sessions=sessions, courses=courses, totals=totals)


# -----------------------------
# Reconciled view
# -----------------------------
def session_as_dict(session: ReconciledSession) -> dict[str, Any]:
    """Session row plus its display name ("2nd Hour")."""
    body = session.as_dict()
    body["session_name"] = format_session_name(session.session_label)
    return body


@dataclass(frozen=True)
class Reconciliation:
    scope: Scope
    sessions: tuple[ReconciledSession, ...]
    aggregates: dict[str, CourseAggregate]

    def sessions_on(self, day: Any) -> list[ReconciledSession]:
        target = normalize_date(day)
        return [s for s in self.sessions if s.date == target]

    def day_status(self, day: Any) -> str | None:
        """Calendar dot for a day: "absent", "dutyLeave", "present" or None."""
        day_sessions = self.sessions_on(day)
        if not day_sessions:
            return None
        if any(s.status == AttendanceCode.ABSENT for s in day_sessions):
            return "absent"
        if any(s.status.is_leave for s in day_sessions):
            return "dutyLeave"
        return "present"

    def filter_status(self, label: str | None) -> list[ReconciledSession]:
        if not label or label.strip().lower() == "all":
            return list(self.sessions)
        wanted = code_for_label(label)
        if wanted is None:
            return []
        return [s for s in self.sessions if s.status == wanted]

    def projections(self, target_percentage: Any = None) -> dict[str, CourseProjection]:
        if target_percentage is None:
            target_percentage = self.scope.target_percentage
        return project_all(self.aggregates, target_percentage)

    def as_dict(self) -> dict[str, Any]:
        return {
            "semester": self.scope.semester,
            "year": self.scope.academic_year,
            "sessions": [session_as_dict(s) for s in self.sessions],
            "aggregates": {cid: agg.as_dict() for cid, agg in self.aggregates.items()},
        }


def _build_course_index(
    official_sessions: Iterable[OfficialSession],
    courses: Mapping[str, Mapping[str, Any]] | None,
) -> CourseIndex:
    index = CourseIndex(courses)
    for session in official_sessions:
        index.add(session.course_id, name=session.course_name, code=session.course_code)
    return index


def _log_unmatchable(source: str, key: CanonicalSlotKey, raw_date: Any, raw_session: Any) -> None:
    if key.session == SESSION_SENTINEL or not _CANONICAL_DATE.fullmatch(key.date):
        logger.debug("%s has an unrecognised date or session: date=%r session=%r", source, raw_date, raw_session)


def _tracked_lookup(
    tracked_records: Iterable[TrackedRecord],
    scope: Scope,
    index: CourseIndex,
) -> dict[CanonicalSlotKey, TrackedRecord]:
    lookup: dict[CanonicalSlotKey, TrackedRecord] = {}
    for record in tracked_records:
        if not record.in_scope(scope):
            continue
        if record.code is None:
            logger.debug(
                "tracked record skipped: unknown attendance %r (course=%r date=%r session=%r)",
                record.attendance_code, record.course, record.date, record.session,
            )
            continue
        key = tracked_slot_key(record, index)
        _log_unmatchable("tracked record", key, record.date, record.session)
        lookup[key] = record
    return lookup


def _dedupe_officials(
    official_sessions: Iterable[OfficialSession],
    index: CourseIndex,
) -> dict[CanonicalSlotKey, tuple[OfficialSession, AttendanceCode]]:
    """Last write wins per slot; the slot keeps its first position."""
    officials: dict[CanonicalSlotKey, tuple[OfficialSession, AttendanceCode]] = {}
    for session in official_sessions:
        if session.is_revision:
            continue
        code = coerce_code(session.attendance_code)
        if code is None:
            logger.debug(
                "official session skipped: unknown attendance %r (course=%r date=%r)",
                session.attendance_code, session.course_id, session.date,
            )
            continue
        key = official_slot_key(session, index)
        _log_unmatchable("official session", key, session.date, session.session_label)
        officials[key] = (session, code)
    return officials


def _merge_sessions(
    officials: dict[CanonicalSlotKey, tuple[OfficialSession, AttendanceCode]],
    lookup: dict[CanonicalSlotKey, TrackedRecord],
    index: CourseIndex,
) -> list[ReconciledSession]:
    merged: list[ReconciledSession] = []
    matched: set[CanonicalSlotKey] = set()

    for key, (session, code) in officials.items():
        course_name = session.course_name or index.name_for(session.course_id)
        record = lookup.get(key)
        if record is None:
            merged.append(
                ReconciledSession(
                    key=key,
                    course_id=session.course_id,
                    course_name=course_name,
                    date=key.date,
                    session_label=session.session_label or "",
                    status=code,
                )
            )
            continue

        # An "extra" that lands on an official slot is handled as a correction.
        matched.add(key)
        merged.append(
            ReconciledSession(
                key=key,
                course_id=session.course_id,
                course_name=course_name,
                date=key.date,
                session_label=session.session_label or record.session,
                status=record.code,  # type: ignore[arg-type]
                is_correction=True,
                original_status=code,
                remarks=record.remarks,
            )
        )

    for key, record in lookup.items():
        if key in matched:
            continue
        if record.kind != "extra":
            logger.debug(
                "correction has no official slot: course=%r date=%r session=%r",
                record.course, record.date, record.session,
            )
            continue
        course_id = index.course_id_for(record.course)
        merged.append(
            ReconciledSession(
                key=key,
                course_id=course_id,
                course_name=index.name_for(course_id) or record.course,
                date=key.date,
                session_label=record.session,
                status=record.code,  # type: ignore[arg-type]
                is_extra=True,
                remarks=record.remarks,
            )
        )

    # list.sort is stable: equal slots keep insertion order
    merged.sort(key=lambda s: (s.date, s.key.session))
    return merged


def aggregate_sessions(
    sessions: Iterable[ReconciledSession],
    totals: Mapping[str, Mapping[str, int]] | None = None,
    index: CourseIndex | None = None,
) -> dict[str, CourseAggregate]:
    """
    Per-course rollup in one pass over the reconciled sessions.

    Courses without any official session fall back to the report totals
    when those are supplied.
    """
    aggregates: dict[str, CourseAggregate] = {}

    def _for(course_id: str, course_name: str = "") -> CourseAggregate:
        agg = aggregates.get(course_id)
        if agg is None:
            agg = CourseAggregate(course_id=course_id, course_name=course_name)
            aggregates[course_id] = agg
        elif not agg.course_name and course_name:
            agg.course_name = course_name
        return agg

    for session in sessions:
        agg = _for(session.course_id, session.course_name)
        status = session.status

        if session.is_extra:
            agg.extra_count += 1
            if status.is_positive:
                agg.extra_positive += 1
            else:
                agg.extra_absent += 1
            if status == AttendanceCode.DUTY_LEAVE:
                agg.extra_duty_leave += 1
            continue

        official = session.original_status if session.is_correction else status
        if official is None:
            official = status
        agg.official_total += 1
        if official.is_positive:
            agg.official_present += 1
        else:
            agg.official_absent += 1
        if official == AttendanceCode.DUTY_LEAVE:
            agg.official_duty_leave += 1
        elif official == AttendanceCode.OTHER_LEAVE:
            agg.official_other_leave += 1

        if session.is_correction and not official.is_positive and status.is_positive:
            agg.correction_positive += 1
            if status == AttendanceCode.DUTY_LEAVE:
                agg.correction_duty_leave += 1

    for course_id, counts in (totals or {}).items():
        name = index.name_for(course_id) if index is not None else ""
        agg = _for(str(course_id), name)
        if agg.official_total == 0:
            agg.official_present = int(counts.get("present", 0))
            agg.official_absent = int(counts.get("absent", 0))
            agg.official_total = int(counts.get("total", 0))

    return aggregates


def reconcile(
    official_sessions: Iterable[OfficialSession],
    tracked_records: Iterable[TrackedRecord],
    scope: Scope,
    *,
    courses: Mapping[str, Mapping[str, Any]] | None = None,
    totals: Mapping[str, Mapping[str, int]] | None = None,
) -> Reconciliation:
    """
    Overlay in-scope tracked records onto the official sessions.

    Pure and idempotent: the same inputs always give the same output, so it
    is meant to be re-run from the latest snapshots whenever either side
    changes.
    """
    officials_in = list(official_sessions)
    index = _build_course_index(officials_in, courses)
    lookup = _tracked_lookup(tracked_records, scope, index)
    officials = _dedupe_officials(officials_in, index)
    merged = _merge_sessions(officials, lookup, index)
    return Reconciliation(
        scope=scope,
        sessions=tuple(merged),
        aggregates=aggregate_sessions(merged, totals, index),
    )


def reconcile_report(
    report: Mapping[str, Any] | OfficialReport,
    tracked_records: Iterable[TrackedRecord],
    scope: Scope,
) -> Reconciliation:
    parsed = report if isinstance(report, OfficialReport) else parse_official_report(report)
    return reconcile(
        parsed.sessions,
        tracked_records,
        scope,
        courses=parsed.courses,
        totals=parsed.totals,
    )
