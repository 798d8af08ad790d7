from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, tzinfo

from timeclock.enums import PeriodKind
from timeclock.services.periods import TimePeriod
from timeclock.services.shift_calc import MAX_SHIFT_SECONDS
from timeclock.services.timezones import local_date, month_start, week_start

STANDARD_DAY_SECONDS = 8 * 3600


@dataclass(frozen=True)
class DayTotals:
    day_date: date
    work_seconds: int
    break_seconds: int
    overtime_seconds: int
    open_seconds: int = 0
    was_capped: bool = False


@dataclass(frozen=True)
class WeekTotals:
    week_start: date
    work_seconds: int
    break_seconds: int
    overtime_seconds: int
    was_capped: bool = False


@dataclass(frozen=True)
class MonthTotals:
    year: int
    month: int
    work_seconds: int
    break_seconds: int
    overtime_seconds: int
    was_capped: bool = False


@dataclass(frozen=True)
class TimeTotals:
    days: tuple[DayTotals, ...]
    weeks: tuple[WeekTotals, ...]
    months: tuple[MonthTotals, ...]
    work_seconds: int = 0
    break_seconds: int = 0
    overtime_seconds: int = 0
    was_capped: bool = False

    def day(self, day_date: date) -> DayTotals | None:
        for item in self.days:
            if item.day_date == day_date:
                return item
        return None

    def week(self, day_date: date) -> WeekTotals | None:
        start = week_start(day_date)
        for item in self.weeks:
            if item.week_start == start:
                return item
        return None

    def month(self, day_date: date) -> MonthTotals | None:
        for item in self.months:
            if (item.year, item.month) == (day_date.year, day_date.month):
                return item
        return None


@dataclass
class _Bucket:
    work_seconds: int = 0
    break_seconds: int = 0
    overtime_seconds: int = 0
    open_seconds: int = 0
    was_capped: bool = False


def attribution_date(period: TimePeriod, tz: tzinfo) -> date:
    """Calendar day a period counts toward: the local day of its start."""
    return local_date(period.start, tz)


def aggregate_periods(
    periods: Iterable[TimePeriod],
    *,
    tz: tzinfo,
    standard_day_seconds: int = STANDARD_DAY_SECONDS,
    max_shift_seconds: int = MAX_SHIFT_SECONDS,
    include_open: bool = True,
) -> TimeTotals:
    """Bucket capped periods into local days, then roll days into weeks and months.

    Overtime is computed per day and summed upward; break time never counts
    toward it. With ``include_open=False`` periods still running at ``now`` are
    left out, which gives the completed-only totals.
    """
    standard = max(0, int(standard_day_seconds))
    day_buckets: dict[date, _Bucket] = {}

    for period in periods:
        if period.is_open and not include_open:
            continue
        capped = period.capped(max_shift_seconds)
        bucket = day_buckets.setdefault(attribution_date(period, tz), _Bucket())
        if period.kind == PeriodKind.WORK:
            bucket.work_seconds += capped.duration_seconds
        else:
            bucket.break_seconds += capped.duration_seconds
        if period.is_open:
            bucket.open_seconds += capped.duration_seconds
        bucket.was_capped = bucket.was_capped or capped.was_capped

    days: list[DayTotals] = []
    week_buckets: dict[date, _Bucket] = {}
    month_buckets: dict[date, _Bucket] = {}
    for day_date in sorted(day_buckets):
        bucket = day_buckets[day_date]
        overtime = max(0, bucket.work_seconds - standard)
        days.append(
            DayTotals(
                day_date=day_date,
                work_seconds=bucket.work_seconds,
                break_seconds=bucket.break_seconds,
                overtime_seconds=overtime,
                open_seconds=bucket.open_seconds,
                was_capped=bucket.was_capped,
            )
        )
        for rollup in (
            week_buckets.setdefault(week_start(day_date), _Bucket()),
            month_buckets.setdefault(month_start(day_date), _Bucket()),
        ):
            rollup.work_seconds += bucket.work_seconds
            rollup.break_seconds += bucket.break_seconds
            rollup.overtime_seconds += overtime
            rollup.was_capped = rollup.was_capped or bucket.was_capped

    weeks = tuple(
        WeekTotals(
            week_start=key,
            work_seconds=bucket.work_seconds,
            break_seconds=bucket.break_seconds,
            overtime_seconds=bucket.overtime_seconds,
            was_capped=bucket.was_capped,
        )
        for key, bucket in sorted(week_buckets.items())
    )
    months = tuple(
        MonthTotals(
            year=key.year,
            month=key.month,
            work_seconds=bucket.work_seconds,
            break_seconds=bucket.break_seconds,
            overtime_seconds=bucket.overtime_seconds,
            was_capped=bucket.was_capped,
        )
        for key, bucket in sorted(month_buckets.items())
    )

    return TimeTotals(
        days=tuple(days),
        weeks=weeks,
        months=months,
        work_seconds=sum(item.work_seconds for item in days),
        break_seconds=sum(item.break_seconds for item in days),
        overtime_seconds=sum(item.overtime_seconds for item in days),
        was_capped=any(item.was_capped for item in days),
    )
