from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta, tzinfo

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from timeclock.db import SessionLocal
from timeclock.enums import AdherenceStatus, EventType
from timeclock.errors import ApiError
from timeclock.models import AttendanceAdherence, AttendanceLog, Employee
from timeclock.services.adherence import AdherenceRecord, ShiftConfig
from timeclock.services.clock_cache import utc_now
from timeclock.services.events import to_utc
from timeclock.services.metrics import (
    AdherenceMark,
    EmployeeMetrics,
    compute_adherence,
    compute_adherence_range,
    compute_metrics,
    reconcile_records,
)
from timeclock.services.org_settings import get_org_timezone
from timeclock.services.periods import Reconciliation
from timeclock.services.timezones import local_date, local_range_bounds_utc, month_start, week_start
from timeclock.settings import get_settings

MAX_ADHERENCE_RANGE_DAYS = 92


def load_shift_config(employee: Employee) -> ShiftConfig:
    settings = get_settings()
    return ShiftConfig.from_department(
        employee.department,
        default_start=settings.default_shift_start,
        default_end=settings.default_shift_end,
        default_grace_minutes=settings.default_grace_period_minutes,
    )


def get_employee_or_404(db: Session, user_id: int) -> Employee:
    employee = db.scalar(
        select(Employee).options(selectinload(Employee.department)).where(Employee.id == user_id)
    )
    if employee is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    return employee


def load_events(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
    tz: tzinfo,
) -> list[AttendanceLog]:
    """Attendance rows that can affect periods attributed to ``start_date..end_date``.

    The UTC window is widened by the maximum shift length on both sides so an
    overnight period is reconciled with both of its events. The start is then
    pulled back to the last signin at or before it, so the state machine never
    starts in the middle of a shift and reports its tail as orphaned. Rows
    without a timestamp are kept when they were written inside the window so
    the normalizer can report them.
    """
    window_start, window_end = local_range_bounds_utc(start_date, end_date, tz)
    lookaround = timedelta(seconds=get_settings().max_shift_seconds)
    load_start = window_start - lookaround
    load_end = window_end + lookaround
    anchor = db.scalar(
        select(func.max(AttendanceLog.timestamp)).where(
            AttendanceLog.user_id == user_id,
            func.lower(AttendanceLog.event_type) == EventType.SIGNIN.value,
            AttendanceLog.timestamp <= load_start,
        )
    )
    if anchor is not None:
        load_start = to_utc(anchor)
    return list(
        db.scalars(
            select(AttendanceLog)
            .where(
                AttendanceLog.user_id == user_id,
                or_(
                    and_(AttendanceLog.timestamp >= load_start, AttendanceLog.timestamp < load_end),
                    and_(
                        AttendanceLog.timestamp.is_(None),
                        AttendanceLog.created_at >= window_start,
                        AttendanceLog.created_at < window_end,
                    ),
                ),
            )
            .order_by(AttendanceLog.id.asc())
        ).all()
    )


def load_marks(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
) -> dict[date, AdherenceMark]:
    rows = db.scalars(
        select(AttendanceAdherence).where(
            AttendanceAdherence.user_id == user_id,
            AttendanceAdherence.day_date >= start_date,
            AttendanceAdherence.day_date <= end_date,
        )
    ).all()
    return {row.day_date: AdherenceMark(status=row.status, marked_by=row.marked_by) for row in rows}


def reconcile_days(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
    now_utc: datetime,
    tz: tzinfo,
) -> Reconciliation:
    records = load_events(db, user_id=user_id, start_date=start_date, end_date=end_date, tz=tz)
    return reconcile_records(records, now=now_utc, user_id=user_id).reconciliation


def get_employee_metrics(
    db: Session,
    *,
    user_id: int,
    now_utc: datetime,
    tz: tzinfo,
    employee: Employee | None = None,
) -> EmployeeMetrics:
    """Dashboard figures for today, plus week-to-date and month-to-date work."""
    settings = get_settings()
    if employee is None:
        employee = get_employee_or_404(db, user_id)
    today = local_date(now_utc, tz)
    first_day = min(week_start(today), month_start(today))
    records = load_events(db, user_id=user_id, start_date=first_day, end_date=today, tz=tz)
    # An overnight shift that started yesterday is still "today" until it ends.
    marks = load_marks(db, user_id=user_id, start_date=today - timedelta(days=1), end_date=today)
    return compute_metrics(
        records,
        tz=tz,
        shift=load_shift_config(employee),
        now=now_utc,
        user_id=user_id,
        standard_day_seconds=settings.standard_day_seconds,
        max_shift_seconds=settings.max_shift_seconds,
        marks=marks,
        day_range=(today, today),
    )


def get_day_adherence(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    now_utc: datetime,
    tz: tzinfo,
    employee: Employee | None = None,
) -> AdherenceRecord:
    if employee is None:
        employee = get_employee_or_404(db, user_id)
    reconciliation = reconcile_days(
        db,
        user_id=user_id,
        start_date=day_date,
        end_date=day_date,
        now_utc=now_utc,
        tz=tz,
    )
    mark = load_marks(db, user_id=user_id, start_date=day_date, end_date=day_date).get(day_date)
    return compute_adherence(
        reconciliation.periods,
        shift=load_shift_config(employee),
        now=now_utc,
        tz=tz,
        day_date=day_date,
        user_id=user_id,
        marked_status=mark.status if mark else None,
        marked_by=mark.marked_by if mark else None,
    )


def get_adherence_range(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
    now_utc: datetime,
    tz: tzinfo,
) -> list[AdherenceRecord]:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not be before start_date.")
    day_count = (end_date - start_date).days + 1
    if day_count > MAX_ADHERENCE_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Date range must not exceed {MAX_ADHERENCE_RANGE_DAYS} days.",
        )

    employee = get_employee_or_404(db, user_id)
    reconciliation = reconcile_days(
        db,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        now_utc=now_utc,
        tz=tz,
    )
    return compute_adherence_range(
        reconciliation,
        days=[start_date + timedelta(days=offset) for offset in range(day_count)],
        shift=load_shift_config(employee),
        now=now_utc,
        tz=tz,
        user_id=user_id,
        marks=load_marks(db, user_id=user_id, start_date=start_date, end_date=end_date),
    )


def list_active_employees(db: Session, *, department_id: int | None = None) -> list[Employee]:
    stmt = (
        select(Employee)
        .options(selectinload(Employee.department))
        .where(Employee.is_active.is_(True))
        .order_by(Employee.id.asc())
    )
    if department_id is not None:
        stmt = stmt.where(Employee.department_id == department_id)
    return list(db.scalars(stmt).all())


def get_team_metrics(
    db: Session,
    *,
    now_utc: datetime,
    tz: tzinfo,
    department_id: int | None = None,
) -> list[EmployeeMetrics]:
    return [
        get_employee_metrics(db, user_id=employee.id, now_utc=now_utc, tz=tz, employee=employee)
        for employee in list_active_employees(db, department_id=department_id)
    ]


def get_adherence_counts_by_status(
    db: Session,
    *,
    day_date: date,
    now_utc: datetime,
    tz: tzinfo,
    department_id: int | None = None,
) -> dict[str, int]:
    counts: Counter[str] = Counter({status.value: 0 for status in AdherenceStatus})
    for employee in list_active_employees(db, department_id=department_id):
        record = get_day_adherence(
            db,
            user_id=employee.id,
            day_date=day_date,
            now_utc=now_utc,
            tz=tz,
            employee=employee,
        )
        counts[record.status.value] += 1
    return dict(counts)


def compute_live_metrics(user_id: int) -> EmployeeMetrics:
    """Fresh metrics for the live dashboard, outside any request session."""
    with SessionLocal() as db:
        return get_employee_metrics(db, user_id=user_id, now_utc=utc_now(), tz=get_org_timezone())
