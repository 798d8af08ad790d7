from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any

from timeclock.enums import AdherenceStatus, AttendanceState, EventType
from timeclock.services.adherence import AdherenceRecord, ShiftConfig, classify_day
from timeclock.services.aggregation import STANDARD_DAY_SECONDS, TimeTotals, aggregate_periods
from timeclock.services.events import (
    ISSUE_CAPPED_DURATION,
    DataQualityIssue,
    NormalizedEvents,
    normalize_events,
    to_utc,
)
from timeclock.services.periods import Reconciliation, TimePeriod, reconcile
from timeclock.services.shift_calc import MAX_SHIFT_SECONDS
from timeclock.services.timezones import local_date, resolve_timezone_or_utc

logger = logging.getLogger("timeclock.engine")


@dataclass(frozen=True)
class LastActivity:
    event_type: EventType
    timestamp: datetime


@dataclass(frozen=True)
class AdherenceMark:
    status: AdherenceStatus
    marked_by: Any = None


@dataclass(frozen=True)
class EmployeeMetrics:
    user_id: Any
    work_time_seconds: int
    break_time_seconds: int
    overtime_seconds: int
    is_active: bool
    is_on_break: bool
    status: AttendanceState
    last_activity: LastActivity | None
    today_work_seconds: int
    week_time_seconds: int
    month_time_seconds: int
    was_capped: bool
    periods: tuple[TimePeriod, ...]
    orphaned_events: tuple[DataQualityIssue, ...]
    warnings: tuple[DataQualityIssue, ...]
    totals: TimeTotals
    adherence_today: AdherenceRecord | None = None


@dataclass(frozen=True)
class ReconciledRecords:
    normalized: NormalizedEvents
    reconciliation: Reconciliation


def _resolve_tz(tz: tzinfo | str | None) -> tzinfo:
    if isinstance(tz, tzinfo):
        return tz
    return resolve_timezone_or_utc(tz)


def reconcile_records(records: Iterable[Any], *, now: datetime, user_id: Any = None) -> ReconciledRecords:
    normalized = normalize_events(records, user_id=user_id)
    return ReconciledRecords(
        normalized=normalized,
        reconciliation=reconcile(normalized.events, now=now),
    )


def _capping_issues(periods: Iterable[TimePeriod], *, max_shift_seconds: int, user_id: Any) -> list[DataQualityIssue]:
    issues: list[DataQualityIssue] = []
    for period in periods:
        capped = period.capped(max_shift_seconds)
        if not capped.was_capped:
            continue
        issues.append(
            DataQualityIssue(
                code=ISSUE_CAPPED_DURATION,
                message=(
                    f"{period.kind.value} period capped from {capped.original_duration_seconds}s "
                    f"to {capped.duration_seconds}s"
                ),
                event_id=period.start_event_id,
                event_type=period.opened_by.value if period.opened_by else None,
                timestamp=period.start,
            )
        )
        logger.info(
            "work_period_capped",
            extra={
                "user_id": user_id,
                "period_kind": period.kind.value,
                "period_start": period.start.isoformat(),
                "original_duration_seconds": capped.original_duration_seconds,
                "capped_duration_seconds": capped.duration_seconds,
                "is_open": period.is_open,
            },
        )
    return issues


def compute_adherence(
    day_periods: Iterable[TimePeriod],
    *,
    shift: ShiftConfig,
    now: datetime,
    tz: tzinfo | str | None,
    day_date: date,
    user_id: Any = None,
    marked_status: AdherenceStatus | str | None = None,
    marked_by: Any = None,
) -> AdherenceRecord:
    """Adherence for one shift day.

    ``day_periods`` may include neighbouring days; only periods whose signin
    belongs to ``day_date`` as a shift day are considered. An explicit absent
    mark always wins over the computed status.
    """
    return classify_day(
        user_id=user_id,
        day_date=day_date,
        periods=tuple(day_periods),
        shift=shift,
        tz=_resolve_tz(tz),
        now=now,
        marked_status=marked_status,
        marked_by=marked_by,
    )


def compute_metrics(
    records: Iterable[Any],
    *,
    tz: tzinfo | str | None,
    shift: ShiftConfig | None,
    now: datetime,
    user_id: Any = None,
    standard_day_seconds: int = STANDARD_DAY_SECONDS,
    max_shift_seconds: int = MAX_SHIFT_SECONDS,
    marks: Mapping[date, AdherenceMark] | None = None,
    day_range: tuple[date, date] | None = None,
) -> EmployeeMetrics:
    """Single entry point for one employee's derived attendance figures.

    Pure: the same records, timezone, shift and ``now`` always give the same
    result. Work, break and overtime totals cover every supplied event, or only
    the local days inside ``day_range`` when one is given. ``today_*``,
    ``week_*`` and ``month_*`` are always taken relative to the local day of
    ``now``; ``adherence_today`` is for the shift day that contains ``now``.
    """
    now_utc = to_utc(now)
    zone = _resolve_tz(tz)
    reconciled = reconcile_records(records, now=now_utc, user_id=user_id)
    reconciliation = reconciled.reconciliation
    periods = reconciliation.periods

    totals = aggregate_periods(
        periods,
        tz=zone,
        standard_day_seconds=standard_day_seconds,
        max_shift_seconds=max_shift_seconds,
    )
    today = local_date(now_utc, zone)
    today_totals = totals.day(today)
    week_totals = totals.week(today)
    month_totals = totals.month(today)

    last_event = reconciliation.last_event
    last_activity = (
        LastActivity(event_type=last_event.event_type, timestamp=last_event.timestamp)
        if last_event is not None
        else None
    )

    adherence_today = None
    if shift is not None:
        shift_today = shift.shift_day(now_utc, zone)
        mark = (marks or {}).get(shift_today)
        adherence_today = compute_adherence(
            periods,
            shift=shift,
            now=now_utc,
            tz=zone,
            day_date=shift_today,
            user_id=user_id,
            marked_status=mark.status if mark else None,
            marked_by=mark.marked_by if mark else None,
        )

    warnings = (
        list(reconciled.normalized.issues)
        + list(reconciliation.orphaned)
        + _capping_issues(periods, max_shift_seconds=max_shift_seconds, user_id=user_id)
    )

    if day_range is None:
        headline_days = totals.days
    else:
        first_day, last_day = day_range
        headline_days = tuple(item for item in totals.days if first_day <= item.day_date <= last_day)

    return EmployeeMetrics(
        user_id=user_id,
        work_time_seconds=sum(item.work_seconds for item in headline_days),
        break_time_seconds=sum(item.break_seconds for item in headline_days),
        overtime_seconds=sum(item.overtime_seconds for item in headline_days),
        is_active=reconciliation.is_active,
        is_on_break=reconciliation.is_on_break,
        status=reconciliation.state,
        last_activity=last_activity,
        today_work_seconds=today_totals.work_seconds if today_totals else 0,
        week_time_seconds=week_totals.work_seconds if week_totals else 0,
        month_time_seconds=month_totals.work_seconds if month_totals else 0,
        was_capped=any(item.was_capped for item in headline_days),
        periods=periods,
        orphaned_events=reconciliation.orphaned,
        warnings=tuple(warnings),
        totals=totals,
        adherence_today=adherence_today,
    )


def compute_adherence_range(
    reconciliation: Reconciliation,
    *,
    days: Iterable[date],
    shift: ShiftConfig,
    now: datetime,
    tz: tzinfo | str | None,
    user_id: Any = None,
    marks: Mapping[date, AdherenceMark] | None = None,
) -> list[AdherenceRecord]:
    zone = _resolve_tz(tz)
    result: list[AdherenceRecord] = []
    for day_date in days:
        mark = (marks or {}).get(day_date)
        result.append(
            compute_adherence(
                reconciliation.periods,
                shift=shift,
                now=now,
                tz=zone,
                day_date=day_date,
                user_id=user_id,
                marked_status=mark.status if mark else None,
                marked_by=mark.marked_by if mark else None,
            )
        )
    return result
