from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from timeclock.enums import AdherenceStatus, AttendanceState, EventType, PeriodKind
from timeclock.services.shift_calc import format_duration


class TimePeriodRead(BaseModel):
    kind: PeriodKind
    start: datetime
    end: datetime
    opened_by: EventType | None = None
    start_event_id: int | str | None = None
    end_event_id: int | str | None = None
    is_open: bool
    is_incomplete: bool
    raw_seconds: int

    model_config = ConfigDict(from_attributes=True)


class DataQualityIssueRead(BaseModel):
    code: str
    message: str
    event_index: int | None = None
    event_id: int | str | None = None
    event_type: str | None = None
    timestamp: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class LastActivityRead(BaseModel):
    event_type: EventType
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class AdherenceRead(BaseModel):
    user_id: int
    day_date: date
    status: AdherenceStatus
    marked_by: str | None = None
    eligible_for_absent: bool
    first_signin: datetime | None = None
    late_by_seconds: int

    model_config = ConfigDict(from_attributes=True)


class DayTotalsRead(BaseModel):
    day_date: date
    work_seconds: int
    break_seconds: int
    overtime_seconds: int
    open_seconds: int
    was_capped: bool

    model_config = ConfigDict(from_attributes=True)


class EmployeeMetricsResponse(BaseModel):
    user_id: int
    work_time_seconds: int
    break_time_seconds: int
    overtime_seconds: int
    is_active: bool
    is_on_break: bool
    status: AttendanceState
    last_activity: LastActivityRead | None = None
    today_work_seconds: int
    week_time_seconds: int
    month_time_seconds: int
    was_capped: bool
    periods: list[TimePeriodRead]
    orphaned_events: list[DataQualityIssueRead]
    warnings: list[DataQualityIssueRead]
    adherence_today: AdherenceRead | None = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def work_time_display(self) -> str:
        return format_duration(self.work_time_seconds)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overtime_display(self) -> str:
        return format_duration(self.overtime_seconds)


class LiveMetricsResponse(BaseModel):
    user_id: int
    computed_at_utc: datetime
    metrics: EmployeeMetricsResponse


class EventNotifyResponse(BaseModel):
    user_id: int
    accepted: bool
    recompute_in_flight: bool


class AdherenceCountsResponse(BaseModel):
    day_date: date
    department_id: int | None = None
    counts: dict[AdherenceStatus, int]


class AbsenceMarkRequest(BaseModel):
    user_id: int = Field(ge=1)
    day_date: date
    admin_id: str = Field(min_length=1, max_length=255)


class TimezoneSettingRead(BaseModel):
    timezone: str


class TimezoneSettingUpdate(BaseModel):
    timezone: str = Field(min_length=1, max_length=64)
    admin_id: str = Field(min_length=1, max_length=255)
