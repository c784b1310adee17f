from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping

from reconciliation.models import OfficialSession, TrackedRecord
from reconciliation.normalizer import (
    SESSION_SENTINEL,
    CourseIndex,
    normalize_date,
    normalize_session,
)
from reconciliation.statuses import AttendanceCode, coerce_code

NoticeKind = Literal["revision", "course_mismatch", "official_present", "conflict"]

# Sync treats every leave as "marked", unlike the attendance rollup.
_SYNC_POSITIVE = (AttendanceCode.PRESENT, AttendanceCode.DUTY_LEAVE, AttendanceCode.OTHER_LEAVE)


@dataclass(frozen=True)
class SyncNotice:
    kind: NoticeKind
    record: TrackedRecord
    message: str
    topic: str


@dataclass
class SyncPlan:
    deletions: list[TrackedRecord] = field(default_factory=list)
    promotions: list[TrackedRecord] = field(default_factory=list)
    notices: list[SyncNotice] = field(default_factory=list)

    @property
    def deletion_ids(self) -> list[int]:
        return _unique_ids(self.deletions)

    @property
    def promotion_ids(self) -> list[int]:
        return _unique_ids(self.promotions)

    @property
    def is_empty(self) -> bool:
        return not self.deletions and not self.promotions

    def as_dict(self) -> dict[str, Any]:
        return {
            "deletions": self.deletion_ids,
            "promotions": self.promotion_ids,
            "notices": [
                {"kind": n.kind, "topic": n.topic, "message": n.message, "record_id": n.record.id}
                for n in self.notices
            ],
        }


def _unique_ids(records: Iterable[TrackedRecord]) -> list[int]:
    seen: list[int] = []
    for record in records:
        if record.id is not None and record.id not in seen:
            seen.append(record.id)
    return seen


@dataclass(frozen=True)
class _OfficialSlot:
    code: AttendanceCode
    course_id: str
    course_name: str


def _slot(date_value: Any, session: Any) -> tuple[str, int] | None:
    number = normalize_session(session)
    if number == SESSION_SENTINEL:
        return None
    return normalize_date(date_value), number


def plan_sync(
    official_sessions: Iterable[OfficialSession],
    tracked_records: Iterable[TrackedRecord],
    courses: Mapping[str, Mapping[str, Any]] | None = None,
) -> SyncPlan:
    """
    Compare a user's tracked records with a fresh official feed, slot by
    slot (date and session number, any course):

      - Revision slot: delete (notice for extras only)
      - extra on a slot the feed gives to another course: delete, notice
      - feed already positive, or same code as tracked: delete; notice when
        the feed says present but the record said otherwise
      - extra claiming present where the feed says absent: promote to a
        correction and flag the conflict

    Records whose session label cannot be normalized are left alone.
    """
    index = CourseIndex(courses)
    officials_in = list(official_sessions)
    for session in officials_in:
        index.add(session.course_id, name=session.course_name, code=session.course_code)

    official_map: dict[tuple[str, int], _OfficialSlot] = {}
    revision_slots: set[tuple[str, int]] = set()
    for session in officials_in:
        key = _slot(session.date, session.session_label)
        if key is None:
            continue
        if session.is_revision:
            revision_slots.add(key)
            continue
        code = coerce_code(session.attendance_code)
        if code is None:
            continue
        official_map[key] = _OfficialSlot(
            code=code,
            course_id=session.course_id,
            course_name=session.course_name or index.name_for(session.course_id) or session.course_id,
        )

    plan = SyncPlan()
    for record in tracked_records:
        key = _slot(record.date, record.session)
        if key is None:
            continue
        slot_topic = f"{key[0]}|{key[1]}"
        record_course = index.name_for(index.course_id_for(record.course)) or record.course

        if key in revision_slots:
            plan.deletions.append(record)
            if record.kind == "extra":
                plan.notices.append(
                    SyncNotice(
                        kind="revision",
                        record=record,
                        message=(
                            f"{record_course} - {record.date} ({record.session}): marked as a Revision "
                            "class. It won't count toward attendance, so the manual entry was removed."
                        ),
                        topic=f"revision-{slot_topic}",
                    )
                )
            continue

        official = official_map.get(key)
        if official is None:
            continue

        if record.kind == "extra" and index.identity(record.course) != index.identity(official.course_id):
            plan.deletions.append(record)
            plan.notices.append(
                SyncNotice(
                    kind="course_mismatch",
                    record=record,
                    message=(
                        f"{record.date} ({record.session}): Removed {record_course}. "
                        f"Official: {official.course_name}"
                    ),
                    topic=f"conflict-course-{slot_topic}",
                )
            )
            continue

        tracked_code = record.code
        official_positive = official.code in _SYNC_POSITIVE
        tracked_positive = tracked_code in _SYNC_POSITIVE

        if official_positive or official.code == tracked_code:
            plan.deletions.append(record)
            if official_positive and not tracked_positive:
                plan.notices.append(
                    SyncNotice(
                        kind="official_present",
                        record=record,
                        message=(
                            f"{official.course_name} - {record.date} ({record.session}): "
                            "Official record is Present. Manual entry removed."
                        ),
                        topic=f"sync-surprise-{slot_topic}",
                    )
                )
        elif official.code == AttendanceCode.ABSENT and tracked_positive and record.kind == "extra":
            plan.promotions.append(record)
            plan.notices.append(
                SyncNotice(
                    kind="conflict",
                    record=record,
                    message=(
                        f"{official.course_name} - {record.date} ({record.session}): "
                        "You marked Present, Official says Absent."
                    ),
                    topic=f"conflict-{slot_topic}",
                )
            )
    return plan
