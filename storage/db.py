import logging
import sqlite3
from typing import Any, TypedDict

from reconciliation.models import RECORD_KINDS, TrackedRecord
from reconciliation.normalizer import normalize_course_identity, normalize_date, to_roman
from reconciliation.quota import DutyLeaveQuotaError, is_duty_leave_quota_error
from reconciliation.statuses import AttendanceCode, coerce_code
from reconciliation.sync import SyncPlan
from server.config import DB_PATH, DUTY_LEAVE_LIMIT

logger = logging.getLogger(__name__)

TRACKER_COLUMNS = (
    "id",
    "username",
    "course",
    "date",
    "session",
    "semester",
    "year",
    "status",
    "attendance",
    "remarks",
)


class SyncResult(TypedDict):
    deleted: int
    promoted: int


def connect_db():
    return sqlite3.connect(str(DB_PATH), check_same_thread=False)


def _duty_leave_trigger_sql(limit: int) -> str:
    hint = f"Only {int(limit)} duty leaves allowed per semester per course"
    return f"""
    CREATE TRIGGER tracker_duty_leave_limit
    BEFORE INSERT ON tracker
    WHEN NEW.attendance = {int(AttendanceCode.DUTY_LEAVE)} AND (
        SELECT COUNT(*)
        FROM tracker
        WHERE username = NEW.username
          AND course_key = NEW.course_key
          AND semester IS NEW.semester
          AND year IS NEW.year
          AND attendance = {int(AttendanceCode.DUTY_LEAVE)}
    ) >= {int(limit)}
    BEGIN
        SELECT RAISE(ABORT, '{hint}');
    END
    """


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS tracker (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL,
        course TEXT NOT NULL,
        course_key TEXT NOT NULL DEFAULT '',  -- lowercase alphanumeric course
        date TEXT NOT NULL,              -- YYYY-MM-DD
        session TEXT NOT NULL,           -- roman numeral when recognised
        semester TEXT,
        year TEXT,
        status TEXT NOT NULL DEFAULT 'correction'
            CHECK (status IN ('correction', 'extra')),
        attendance INTEGER NOT NULL DEFAULT 110,
        remarks TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    # Migration for older DB
    try:
        cursor.execute("ALTER TABLE tracker ADD COLUMN remarks TEXT;")
    except sqlite3.OperationalError:
        pass
    try:
        cursor.execute("ALTER TABLE tracker ADD COLUMN course_key TEXT NOT NULL DEFAULT '';")
    except sqlite3.OperationalError:
        pass
    _backfill_course_keys(cursor)

    cursor.execute("DROP INDEX IF EXISTS idx_tracker_slot;")
    cursor.execute("""
    CREATE UNIQUE INDEX IF NOT EXISTS idx_tracker_slot_key
    ON tracker (username, date, course_key, session)
    """)

    # The limit is configurable, so the trigger is rebuilt on every start.
    cursor.execute("DROP TRIGGER IF EXISTS tracker_duty_leave_limit;")
    cursor.execute(_duty_leave_trigger_sql(DUTY_LEAVE_LIMIT))

    conn.commit()
    conn.close()


def _backfill_course_keys(cursor: sqlite3.Cursor) -> None:
    cursor.execute("SELECT id, course FROM tracker WHERE course_key = ''")
    rows = cursor.fetchall()
    cursor.executemany(
        "UPDATE tracker SET course_key = ? WHERE id = ?",
        [(normalize_course_identity(course), record_id) for record_id, course in rows],
    )


def _row_to_record(row: tuple[Any, ...]) -> TrackedRecord:
    return TrackedRecord.from_mapping(dict(zip(TRACKER_COLUMNS, row)))


# -----------------------------
# Tracker
# -----------------------------
def add_tracked_record(
    username: str,
    course: str,
    date: str,
    session: str,
    *,
    semester: str = "",
    year: str = "",
    status: str = "correction",
    attendance: Any = AttendanceCode.PRESENT,
    remarks: str | None = None,
    course_name: str | None = None,
) -> TrackedRecord:
    """
    Insert one tracker row and return it as stored.

    Raises DutyLeaveQuotaError when the duty-leave trigger refuses the row,
    sqlite3.IntegrityError when the slot is already tracked, and ValueError
    for an unknown status or attendance code.
    """
    if status not in RECORD_KINDS:
        raise ValueError(f"Unknown record status: {status!r}")
    code = coerce_code(attendance)
    if code is None:
        raise ValueError(f"Unknown attendance code: {attendance!r}")

    clean_date = normalize_date(date)
    clean_session = to_roman(session)

    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO tracker (
                username, course, course_key, date, session, semester, year, status, attendance, remarks
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (username, course, normalize_course_identity(course), clean_date, clean_session, semester, year, status, int(code), remarks),
        )
    except sqlite3.IntegrityError as exc:
        # the failed statement still holds the write lock until rolled back
        conn.rollback()
        cur.close()
        conn.close()
        if is_duty_leave_quota_error(exc):
            logger.info(
                "duty leave rejected: user=%s course=%s semester=%s year=%s",
                username, course, semester, year,
            )
            raise DutyLeaveQuotaError(
                course,
                semester=semester,
                year=year,
                limit=DUTY_LEAVE_LIMIT,
                course_name=course_name,
            ) from exc
        raise

    record_id = cur.lastrowid
    conn.commit()
    conn.close()
    return TrackedRecord(
        id=record_id,
        username=username,
        course=course,
        date=clean_date,
        session=clean_session,
        semester=semester,
        academic_year=year,
        kind=status,  # type: ignore[arg-type]
        attendance_code=code,
        remarks=remarks,
    )


def delete_tracked_record(username: str, course: str, date: str, session: str) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        DELETE FROM tracker
        WHERE username = ? AND course_key = ? AND date = ? AND session = ?
        """,
        (username, normalize_course_identity(course), normalize_date(date), to_roman(session)),
    )
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def get_tracked_records(
    username: str,
    *,
    semester: str | None = None,
    year: str | None = None,
) -> list[TrackedRecord]:
    query = f"SELECT {', '.join(TRACKER_COLUMNS)} FROM tracker WHERE username = ?"
    params: list[Any] = [username]
    if semester is not None:
        query += " AND semester = ?"
        params.append(semester)
    if year is not None:
        query += " AND year = ?"
        params.append(year)
    query += " ORDER BY date, session, id"

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(query, params)
    rows = cur.fetchall()
    conn.close()
    return [_row_to_record(r) for r in rows]


def count_tracked_records(
    username: str,
    *,
    semester: str | None = None,
    year: str | None = None,
) -> int:
    query = "SELECT COUNT(*) FROM tracker WHERE username = ?"
    params: list[Any] = [username]
    if semester is not None:
        query += " AND semester = ?"
        params.append(semester)
    if year is not None:
        query += " AND year = ?"
        params.append(year)

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(query, params)
    (count,) = cur.fetchone()
    conn.close()
    return int(count)


def apply_sync_plan(plan: SyncPlan) -> SyncResult:
    """Delete and promote in one transaction; records without an id are ignored."""
    deletion_ids = plan.deletion_ids
    promotion_ids = [i for i in plan.promotion_ids if i not in deletion_ids]

    conn = connect_db()
    cur = conn.cursor()
    deleted = 0
    promoted = 0
    try:
        if deletion_ids:
            cur.executemany("DELETE FROM tracker WHERE id = ?", [(i,) for i in deletion_ids])
            deleted = max(0, cur.rowcount)
        if promotion_ids:
            cur.executemany(
                "UPDATE tracker SET status = 'correction' WHERE id = ? AND status = 'extra'",
                [(i,) for i in promotion_ids],
            )
            promoted = max(0, cur.rowcount)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    if deleted or promoted:
        logger.info("tracker sync applied: deleted=%d promoted=%d", deleted, promoted)
    return {"deleted": deleted, "promoted": promoted}


# -----------------------------
# Resets
# -----------------------------
def clear_tracker(username: str | None = None) -> int:
    conn = connect_db()
    cur = conn.cursor()
    if username is None:
        cur.execute("DELETE FROM tracker;")
        removed = cur.rowcount
        cur.execute("DELETE FROM sqlite_sequence WHERE name='tracker';")
    else:
        cur.execute("DELETE FROM tracker WHERE username = ?", (username,))
        removed = cur.rowcount
    conn.commit()
    conn.close()
    return removed
