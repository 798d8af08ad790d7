from datetime import date, datetime, tzinfo

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from timeclock.db import get_db
from timeclock.errors import ApiError
from timeclock.schemas import (
    AdherenceRead,
    EmployeeMetricsResponse,
    EventNotifyResponse,
    LiveMetricsResponse,
)
from timeclock.services.clock_cache import utc_now
from timeclock.services.dashboard import (
    get_adherence_range,
    get_day_adherence,
    get_employee_metrics,
    get_employee_or_404,
)
from timeclock.services.org_settings import get_org_timezone
from timeclock.services.recompute import RecomputeCoordinator, get_recompute_coordinator
from timeclock.services.timezones import local_date

router = APIRouter(tags=["metrics"])


@router.get("/api/employees/{user_id}/metrics", response_model=EmployeeMetricsResponse)
def read_employee_metrics(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> EmployeeMetricsResponse:
    request.state.employee_id = user_id
    metrics = get_employee_metrics(db, user_id=user_id, now_utc=now_utc, tz=tz)
    return EmployeeMetricsResponse.model_validate(metrics)


@router.get("/api/employees/{user_id}/metrics/live", response_model=LiveMetricsResponse)
async def read_live_metrics(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    coordinator: RecomputeCoordinator = Depends(get_recompute_coordinator),
) -> LiveMetricsResponse:
    request.state.employee_id = user_id
    get_employee_or_404(db, user_id)
    coordinator.watch(user_id)
    snapshot = coordinator.snapshot(user_id)
    if snapshot is None:
        snapshot = await coordinator.refresh(user_id)
    if snapshot is None:
        raise ApiError(
            status_code=503,
            code="METRICS_UNAVAILABLE",
            message="Metrics could not be computed yet.",
        )
    return LiveMetricsResponse(
        user_id=user_id,
        computed_at_utc=snapshot.computed_at_utc,
        metrics=EmployeeMetricsResponse.model_validate(snapshot.value),
    )


@router.post(
    "/api/employees/{user_id}/events/notify",
    response_model=EventNotifyResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def notify_attendance_change(
    user_id: int,
    request: Request,
    coordinator: RecomputeCoordinator = Depends(get_recompute_coordinator),
) -> EventNotifyResponse:
    request.state.employee_id = user_id
    coordinator.watch(user_id)
    coordinator.trigger(user_id)
    return EventNotifyResponse(
        user_id=user_id,
        accepted=True,
        recompute_in_flight=coordinator.is_in_flight(user_id),
    )


@router.get("/api/employees/{user_id}/adherence", response_model=AdherenceRead)
def read_day_adherence(
    user_id: int,
    request: Request,
    day_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> AdherenceRead:
    request.state.employee_id = user_id
    record = get_day_adherence(
        db,
        user_id=user_id,
        day_date=day_date or local_date(now_utc, tz),
        now_utc=now_utc,
        tz=tz,
    )
    return AdherenceRead.model_validate(record)


@router.get("/api/employees/{user_id}/adherence/range", response_model=list[AdherenceRead])
def read_adherence_range(
    user_id: int,
    request: Request,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
    tz: tzinfo = Depends(get_org_timezone),
    now_utc: datetime = Depends(utc_now),
) -> list[AdherenceRead]:
    request.state.employee_id = user_id
    records = get_adherence_range(
        db,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        now_utc=now_utc,
        tz=tz,
    )
    return [AdherenceRead.model_validate(record) for record in records]
