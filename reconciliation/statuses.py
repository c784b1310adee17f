from enum import IntEnum


class AttendanceCode(IntEnum):
    PRESENT = 110
    ABSENT = 111
    OTHER_LEAVE = 112
    DUTY_LEAVE = 225

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def is_positive(self) -> bool:
        """Present and duty leave both count toward attendance."""
        return self in (AttendanceCode.PRESENT, AttendanceCode.DUTY_LEAVE)

    @property
    def is_leave(self) -> bool:
        return self in (AttendanceCode.DUTY_LEAVE, AttendanceCode.OTHER_LEAVE)


_LABELS = {
    AttendanceCode.PRESENT: "Present",
    AttendanceCode.ABSENT: "Absent",
    AttendanceCode.OTHER_LEAVE: "Other Leave",
    AttendanceCode.DUTY_LEAVE: "Duty Leave",
}

# Labels seen across both sources, compared after lowercasing and dropping spaces.
_LABEL_ALIASES = {
    "present": AttendanceCode.PRESENT,
    "absent": AttendanceCode.ABSENT,
    "otherleave": AttendanceCode.OTHER_LEAVE,
    "leave": AttendanceCode.OTHER_LEAVE,
    "dutyleave": AttendanceCode.DUTY_LEAVE,
    "dl": AttendanceCode.DUTY_LEAVE,
}


def _label_key(value: str) -> str:
    return "".join(value.split()).replace("_", "").replace("-", "").lower()


def coerce_code(value) -> AttendanceCode | None:
    """
    Map a numeric code (int or numeric string) or a status label to an
    AttendanceCode. Returns None for anything outside the enumeration.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, AttendanceCode):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, int):
        try:
            return AttendanceCode(value)
        except ValueError:
            return None

    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return _LABEL_ALIASES.get(_label_key(text))
    if not number.is_integer():
        return None
    try:
        return AttendanceCode(int(number))
    except ValueError:
        return None


def label_for(value) -> str | None:
    code = coerce_code(value)
    return code.label if code is not None else None


def code_for_label(label: str) -> AttendanceCode | None:
    return _LABEL_ALIASES.get(_label_key(label or ""))
