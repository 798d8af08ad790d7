from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any

from timeclock.enums import AdherenceStatus, EventType, PeriodKind
from timeclock.errors import InvalidStateError
from timeclock.services.events import record_field, to_utc
from timeclock.services.periods import TimePeriod
from timeclock.services.timezones import combine_local, local_date

DEFAULT_SHIFT_START = time(9, 0)
DEFAULT_SHIFT_END = time(17, 0)
DEFAULT_GRACE_PERIOD_MINUTES = 30


def parse_time_of_day(value: Any) -> time:
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if not isinstance(value, str):
        raise ValueError(f"Invalid time of day: {value!r}")
    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    if hour > 23 or minute > 59 or second > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(hour=hour, minute=minute, second=second)


@dataclass(frozen=True)
class ShiftConfig:
    start_time: time = DEFAULT_SHIFT_START
    end_time: time = DEFAULT_SHIFT_END
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES

    def __post_init__(self) -> None:
        if self.grace_period_minutes < 0:
            raise InvalidStateError("grace_period_minutes must be >= 0")

    @classmethod
    def from_department(
        cls,
        department: Any = None,
        *,
        default_start: time | str = DEFAULT_SHIFT_START,
        default_end: time | str = DEFAULT_SHIFT_END,
        default_grace_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
    ) -> ShiftConfig:
        raw_start = record_field(department, "shift_start_time") if department is not None else None
        raw_end = record_field(department, "shift_end_time") if department is not None else None
        raw_grace = record_field(department, "grace_period_minutes") if department is not None else None
        return cls(
            start_time=parse_time_of_day(raw_start if raw_start is not None else default_start),
            end_time=parse_time_of_day(raw_end if raw_end is not None else default_end),
            grace_period_minutes=int(raw_grace if raw_grace is not None else default_grace_minutes),
        )

    @property
    def is_overnight(self) -> bool:
        return self.end_time <= self.start_time

    def window(self, day_date: date, tz: tzinfo) -> tuple[datetime, datetime]:
        start = combine_local(day_date, self.start_time, tz)
        end_day = day_date + timedelta(days=1) if self.is_overnight else day_date
        return start, combine_local(end_day, self.end_time, tz)

    def shift_start(self, day_date: date, tz: tzinfo) -> datetime:
        return combine_local(day_date, self.start_time, tz)

    def grace_end(self, day_date: date, tz: tzinfo) -> datetime:
        return self.shift_start(day_date, tz) + timedelta(minutes=self.grace_period_minutes)

    def shift_day(self, instant: datetime, tz: tzinfo) -> date:
        """Shift day an instant belongs to.

        For an overnight shift, anything before the local end time belongs to the
        shift that started the previous evening.
        """
        local_day = local_date(instant, tz)
        if self.is_overnight and to_utc(instant) < combine_local(local_day, self.end_time, tz):
            return local_day - timedelta(days=1)
        return local_day


@dataclass(frozen=True)
class AdherenceRecord:
    user_id: Any
    day_date: date
    status: AdherenceStatus
    marked_by: Any = None
    eligible_for_absent: bool = False
    first_signin: datetime | None = None
    late_by_seconds: int = 0

    @property
    def is_marked(self) -> bool:
        return self.status == AdherenceStatus.ABSENT


def first_signin_of_day(
    periods: Iterable[TimePeriod],
    day_date: date,
    tz: tzinfo,
    shift: ShiftConfig | None = None,
) -> datetime | None:
    """Earliest work period on ``day_date`` that was opened by an actual signin.

    With a shift, days are shift days: an after-midnight signin on an overnight
    shift counts for the evening it belongs to.
    """
    starts = [
        item.start
        for item in periods
        if item.kind == PeriodKind.WORK
        and item.opened_by == EventType.SIGNIN
        and (shift.shift_day(item.start, tz) if shift is not None else local_date(item.start, tz)) == day_date
    ]
    return min(starts) if starts else None


def is_absence_eligible(
    *,
    day_date: date,
    has_signin: bool,
    shift: ShiftConfig,
    tz: tzinfo,
    now: datetime,
) -> bool:
    """Whether an administrator may mark ``day_date`` absent.

    Never for future days or days with a signin. Past days always qualify; today
    qualifies once the grace period has run out.
    """
    now_utc = to_utc(now)
    today = local_date(now_utc, tz)
    if day_date > today or has_signin:
        return False
    if day_date < today:
        return True
    return now_utc > shift.grace_end(day_date, tz)


def _coerce_status(value: AdherenceStatus | str | None) -> AdherenceStatus | None:
    if value is None or isinstance(value, AdherenceStatus):
        return value
    return AdherenceStatus(str(value))


def classify_day(
    *,
    user_id: Any,
    day_date: date,
    periods: Iterable[TimePeriod],
    shift: ShiftConfig,
    tz: tzinfo,
    now: datetime,
    marked_status: AdherenceStatus | str | None = None,
    marked_by: Any = None,
) -> AdherenceRecord:
    now_utc = to_utc(now)
    first_signin = first_signin_of_day(periods, day_date, tz, shift)

    if _coerce_status(marked_status) == AdherenceStatus.ABSENT:
        return AdherenceRecord(
            user_id=user_id,
            day_date=day_date,
            status=AdherenceStatus.ABSENT,
            marked_by=marked_by,
            first_signin=first_signin,
        )

    shift_start = shift.shift_start(day_date, tz)
    grace_end = shift.grace_end(day_date, tz)
    eligible = is_absence_eligible(
        day_date=day_date,
        has_signin=first_signin is not None,
        shift=shift,
        tz=tz,
        now=now_utc,
    )

    if first_signin is None:
        # No signin: pending until grace runs out, then late and open to an absent mark.
        status = AdherenceStatus.LATE if now_utc > grace_end else AdherenceStatus.PENDING
        return AdherenceRecord(
            user_id=user_id,
            day_date=day_date,
            status=status,
            eligible_for_absent=eligible,
        )

    late_by_seconds = 0
    if first_signin <= shift_start:
        status = AdherenceStatus.EARLY
    elif first_signin <= grace_end:
        status = AdherenceStatus.ON_TIME
    else:
        status = AdherenceStatus.LATE
        late_by_seconds = int((first_signin - shift_start).total_seconds())

    return AdherenceRecord(
        user_id=user_id,
        day_date=day_date,
        status=status,
        eligible_for_absent=eligible,
        first_signin=first_signin,
        late_by_seconds=late_by_seconds,
    )
