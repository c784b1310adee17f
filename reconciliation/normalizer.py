import re
from datetime import date, datetime
from typing import Any, Mapping

from reconciliation.models import CanonicalSlotKey, OfficialSession, TrackedRecord

# Unknown or out-of-range session labels sort last and never equal a real slot.
SESSION_SENTINEL = 999
MAX_SESSION = 8

_PACKED_DATE = re.compile(r"(\d{4})(\d{2})(\d{2})")
_ISO_DATE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")

_ROMAN_NUMERALS = ["i", "ii", "iii", "iv", "v", "vi", "vii", "viii", "ix", "x"]
_ROMAN_VALUES = {numeral: idx for idx, numeral in enumerate(_ROMAN_NUMERALS[:MAX_SESSION], start=1)}
_ORDINAL_WORDS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
}
_LABEL_NOISE = re.compile(r"session|hour", re.IGNORECASE)
_NUMBER_TOKEN = re.compile(r"(\d+)(?:st|nd|rd|th)?")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


# -----------------------------
# Dates
# -----------------------------
def normalize_date(value: Any) -> str:
    """
    Canonical `YYYY-MM-DD` for `YYYYMMDD`, `YYYY-MM-DD` or `DD/MM/YYYY`
    (an ISO timestamp is cut at its `T` first).

    Anything else comes back unchanged, so it simply matches nothing.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        return ""

    raw = str(value)
    text = raw.strip()
    if "T" in text:
        text = text.split("T", 1)[0]

    m = _PACKED_DATE.fullmatch(text)
    if m:
        year, month, day = m.groups()
        return f"{year}-{month}-{day}"
    m = _ISO_DATE.fullmatch(text)
    if m:
        year, month, day = m.groups()
        return f"{year}-{int(month):02d}-{int(day):02d}"
    m = _SLASH_DATE.fullmatch(text)
    if m:
        day, month, year = m.groups()
        return f"{year}-{int(month):02d}-{int(day):02d}"
    return raw


# -----------------------------
# Sessions
# -----------------------------
def _clean_session_label(label: Any) -> str:
    clean = _LABEL_NOISE.sub(" ", str(label).lower())
    return " ".join(clean.split())


def normalize_session(label: Any) -> int:
    """
    Session number 1-8 from a Roman numeral, ordinal ("2nd", "second"),
    bare digits or "Session 3" / "4th Hour". Missing, unknown or
    out-of-range labels give SESSION_SENTINEL.
    """
    if label is None or isinstance(label, bool):
        return SESSION_SENTINEL

    if isinstance(label, int):
        number = label
    else:
        clean = _clean_session_label(label)
        if not clean or clean == "null":
            return SESSION_SENTINEL
        if clean in _ROMAN_VALUES:
            return _ROMAN_VALUES[clean]
        if clean in _ORDINAL_WORDS:
            return _ORDINAL_WORDS[clean]
        m = _NUMBER_TOKEN.fullmatch(clean)
        if not m:
            return SESSION_SENTINEL
        number = int(m.group(1))

    if 1 <= number <= MAX_SESSION:
        return number
    return SESSION_SENTINEL


def to_roman(label: Any) -> str:
    """Storage form of a session label: "1", "1st", "Session 1" -> "I"."""
    raw = str(label).strip()
    clean = _clean_session_label(raw)
    if clean in _ROMAN_NUMERALS:
        return clean.upper()
    if clean in _ORDINAL_WORDS:
        return _ROMAN_NUMERALS[_ORDINAL_WORDS[clean] - 1].upper()
    m = _NUMBER_TOKEN.fullmatch(clean)
    if m:
        number = int(m.group(1))
        if 1 <= number <= len(_ROMAN_NUMERALS):
            return _ROMAN_NUMERALS[number - 1].upper()
    return raw


def _ordinal(number: int) -> str:
    if number % 10 == 1 and number % 100 != 11:
        return f"{number}st"
    if number % 10 == 2 and number % 100 != 12:
        return f"{number}nd"
    if number % 10 == 3 and number % 100 != 13:
        return f"{number}rd"
    return f"{number}th"


def format_session_name(label: Any) -> str:
    """Display form: "II" -> "2nd Hour", "11" -> "11th Hour"."""
    if label is None:
        return ""
    raw = str(label).strip()
    if not raw:
        return ""

    clean = _clean_session_label(raw)
    if clean in _ROMAN_VALUES:
        return f"{_ordinal(_ROMAN_VALUES[clean])} Hour"
    if clean.isdigit() and int(clean) > 0:
        return f"{_ordinal(int(clean))} Hour"
    if "session" in raw.lower():
        return raw
    return f"Session {raw}"


# -----------------------------
# Courses
# -----------------------------
def normalize_course_identity(value: Any) -> str:
    if value is None:
        return ""
    return _NON_ALNUM.sub("", str(value).lower())


def _course_subcode(code: str) -> str:
    # "CS301 - Theory of Computation" style codes
    if "-" in code:
        return code.split("-", 1)[0]
    return code


class CourseIndex:
    """
    Resolves a course reference (official id, course name or course code)
    to the official course id. The two sources often agree on only one of
    these fields, so all three are indexed after normalization.
    """

    def __init__(self, courses: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._by_id: dict[str, str] = {}
        self._by_name: dict[str, str] = {}
        self._by_code: dict[str, str] = {}
        self._names: dict[str, str] = {}
        for course_id, info in (courses or {}).items():
            info = info or {}
            self.add(course_id, name=info.get("name") or "", code=info.get("code") or "")

    def add(self, course_id: Any, *, name: str = "", code: str = "") -> None:
        cid = str(course_id)
        id_token = normalize_course_identity(cid)
        if not id_token:
            return
        self._by_id.setdefault(id_token, cid)
        if name:
            self._names.setdefault(cid, name)
            name_token = normalize_course_identity(name)
            if name_token:
                self._by_name.setdefault(name_token, cid)
        if code:
            for candidate in (code, _course_subcode(code)):
                code_token = normalize_course_identity(candidate)
                if code_token:
                    self._by_code.setdefault(code_token, cid)

    def resolve(self, reference: Any) -> str | None:
        token = normalize_course_identity(reference)
        if not token:
            return None
        for table in (self._by_id, self._by_name, self._by_code):
            if token in table:
                return table[token]
        return None

    def identity(self, reference: Any) -> str:
        """Key component: the normalized official id, or the normalized reference itself."""
        resolved = self.resolve(reference)
        return normalize_course_identity(resolved if resolved is not None else reference)

    def course_id_for(self, reference: Any) -> str:
        resolved = self.resolve(reference)
        return resolved if resolved is not None else str(reference or "")

    def name_for(self, course_id: Any) -> str:
        return self._names.get(str(course_id), "")


# -----------------------------
# Slot keys
# -----------------------------
def slot_key(course: Any, session: Any, date_value: Any, index: CourseIndex | None = None) -> CanonicalSlotKey:
    course_identity = (index or CourseIndex()).identity(course)
    number = normalize_session(session)
    label = ""
    if number == SESSION_SENTINEL and session is not None:
        label = _clean_session_label(session)
    return CanonicalSlotKey(
        course=course_identity,
        session=number,
        date=normalize_date(date_value),
        label=label,
    )


def official_slot_key(session: OfficialSession, index: CourseIndex | None = None) -> CanonicalSlotKey:
    label = session.session_label if session.session_label not in (None, "") else session.session_key or None
    return slot_key(session.course_id, label, session.date, index)


def tracked_slot_key(record: TrackedRecord, index: CourseIndex | None = None) -> CanonicalSlotKey:
    return slot_key(record.course, record.session, record.date, index)
