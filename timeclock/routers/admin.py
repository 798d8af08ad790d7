from datetime import date, datetime, tzinfo

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from timeclock.audit import log_audit
from timeclock.db import get_db
from timeclock.errors import ApiError, InvalidTimezoneError
from timeclock.models import AuditActorType
from timeclock.schemas import (
    AbsenceMarkRequest,
    AdherenceCountsResponse,
    AdherenceRead,
    EmployeeMetricsResponse,
    TimezoneSettingRead,
    TimezoneSettingUpdate,
)
from timeclock.services.absence import mark_absent, revert_absence
from timeclock.services.clock_cache import utc_now
from timeclock.services.dashboard import get_adherence_counts_by_status, get_team_metrics
from timeclock.services.exports import build_timesheet_xlsx_bytes
from timeclock.services.org_settings import get_org_timezone, get_org_timezone_name, set_org_timezone
from timeclock.services.timezones import local_date

router = APIRouter(tags=["admin"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.get("/api/admin/team/metrics", response_model=list[EmployeeMetricsResponse])
def read_team_metrics(
    department_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> list[EmployeeMetricsResponse]:
    metrics = get_team_metrics(db, now_utc=now_utc, tz=tz, department_id=department_id)
    return [EmployeeMetricsResponse.model_validate(item) for item in metrics]


@router.get("/api/admin/adherence/counts", response_model=AdherenceCountsResponse)
def read_adherence_counts(
    day_date: date | None = Query(default=None),
    department_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> AdherenceCountsResponse:
    target_day = day_date or local_date(now_utc, tz)
    counts = get_adherence_counts_by_status(
        db,
        day_date=target_day,
        now_utc=now_utc,
        tz=tz,
        department_id=department_id,
    )
    return AdherenceCountsResponse(day_date=target_day, department_id=department_id, counts=counts)


@router.post("/api/admin/adherence/mark-absent", response_model=AdherenceRead)
def mark_employee_absent(
    payload: AbsenceMarkRequest,
    request: Request,
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> AdherenceRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.admin_id
    request.state.employee_id = payload.user_id
    record = mark_absent(
        db,
        user_id=payload.user_id,
        day_date=payload.day_date,
        admin_id=payload.admin_id,
        now_utc=now_utc,
        tz=tz,
        request_id=_request_id(request),
    )
    return AdherenceRead.model_validate(record)


@router.post("/api/admin/adherence/revert-absence", response_model=AdherenceRead)
def revert_employee_absence(
    payload: AbsenceMarkRequest,
    request: Request,
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> AdherenceRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.admin_id
    request.state.employee_id = payload.user_id
    record = revert_absence(
        db,
        user_id=payload.user_id,
        day_date=payload.day_date,
        admin_id=payload.admin_id,
        now_utc=now_utc,
        tz=tz,
        request_id=_request_id(request),
    )
    return AdherenceRead.model_validate(record)


@router.get("/api/admin/settings/timezone", response_model=TimezoneSettingRead)
def read_org_timezone(db: Session = Depends(get_db)) -> TimezoneSettingRead:
    return TimezoneSettingRead(timezone=get_org_timezone_name(db))


@router.put("/api/admin/settings/timezone", response_model=TimezoneSettingRead)
def update_org_timezone(
    payload: TimezoneSettingUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> TimezoneSettingRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.admin_id
    try:
        name = set_org_timezone(
            db,
            name=payload.timezone,
            actor_id=payload.admin_id,
            request_id=_request_id(request),
        )
    except InvalidTimezoneError as exc:
        raise ApiError(status_code=422, code="INVALID_TIMEZONE", message=str(exc)) from exc
    return TimezoneSettingRead(timezone=name)


@router.get("/api/admin/exports/timesheet.xlsx")
def export_timesheet_xlsx(
    request: Request,
    user_id: int = Query(..., ge=1),
    start_date: date = Query(...),
    end_date: date = Query(...),
    admin_id: str = Query(default="admin", min_length=1, max_length=255),
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> Response:
    payload = build_timesheet_xlsx_bytes(
        db,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        now_utc=now_utc,
        tz=tz,
    )

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=admin_id,
        action="TIMESHEET_EXPORT_XLSX",
        success=True,
        entity_type="employee",
        entity_id=str(user_id),
        details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        request_id=_request_id(request),
    )

    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": (
                f'attachment; filename="timesheet-{user_id}-{start_date.isoformat()}-{end_date.isoformat()}.xlsx"'
            ),
        },
    )
