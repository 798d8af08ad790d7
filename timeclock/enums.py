from __future__ import annotations

import enum


class EventType(str, enum.Enum):
    SIGNIN = "signin"
    SIGNOUT = "signout"
    BREAK_START = "break_start"
    BREAK_END = "break_end"


class AttendanceState(str, enum.Enum):
    SIGNED_OUT = "signed_out"
    SIGNED_IN = "signed_in"
    ON_BREAK = "on_break"


class PeriodKind(str, enum.Enum):
    WORK = "work"
    BREAK = "break"


class AdherenceStatus(str, enum.Enum):
    EARLY = "early"
    ON_TIME = "on_time"
    LATE = "late"
    ABSENT = "absent"
    PENDING = "pending"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"
