from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy.orm import Session

from timeclock.enums import AdherenceStatus
from timeclock.errors import ApiError
from timeclock.services.adherence import AdherenceRecord
from timeclock.services.aggregation import TimeTotals, aggregate_periods, attribution_date
from timeclock.services.dashboard import get_employee_or_404, load_events, load_marks, load_shift_config
from timeclock.services.metrics import compute_adherence_range, reconcile_records
from timeclock.services.shift_calc import seconds_to_hhmm
from timeclock.settings import get_settings

MAX_EXPORT_RANGE_DAYS = 366

DAILY_HEADERS = [
    "Date",
    "First Sign-in",
    "Work (hh:mm)",
    "Break (hh:mm)",
    "Overtime (hh:mm)",
    "Adherence",
    "Flags",
]
SUMMARY_HEADERS = ["Period", "Work (hh:mm)", "Break (hh:mm)", "Overtime (hh:mm)", "Flags"]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
META_VALUE_FILL = PatternFill(fill_type="solid", fgColor="F8FCFF")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUCCESS_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

FLAGGED_STATUSES = {AdherenceStatus.LATE.value, AdherenceStatus.ABSENT.value}


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _style_metadata_rows(ws: Worksheet, *, start_row: int, end_row: int) -> None:
    for row_idx in range(start_row, end_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        value_cell.font = MUTED_FONT
        value_cell.fill = META_VALUE_FILL
        value_cell.border = THIN_BORDER


def _style_rows(
    ws: Worksheet,
    *,
    header_row: int,
    data_end_row: int,
    status_col: int | None,
    overtime_col: int,
    flags_col: int,
) -> None:
    ws.freeze_panes = f"A{header_row + 1}"
    if data_end_row <= header_row:
        return
    ws.auto_filter.ref = f"A{header_row}:{get_column_letter(ws.max_column)}{data_end_row}"

    for row_idx in range(header_row + 1, data_end_row + 1):
        status_value = ws.cell(row=row_idx, column=status_col).value if status_col else None
        row_fill = PatternFill(fill_type=None)
        if isinstance(status_value, str) and status_value in FLAGGED_STATUSES:
            row_fill = WARNING_FILL
        elif row_idx % 2 == 0:
            row_fill = ZEBRA_FILL

        for col_idx in range(1, ws.max_column + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_fill.fill_type:
                cell.fill = row_fill
            cell.alignment = Alignment(horizontal="center" if col_idx > 1 else "left", vertical="center")

        flag_cell = ws.cell(row=row_idx, column=flags_col)
        if flag_cell.value not in {None, "", "-"}:
            flag_cell.fill = ALERT_FILL
            flag_cell.font = Font(bold=True, color="9F1239")

        overtime_cell = ws.cell(row=row_idx, column=overtime_col)
        if overtime_cell.value not in {None, "", "00:00"}:
            overtime_cell.fill = SUCCESS_FILL
            overtime_cell.font = Font(bold=True, color="166534")


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = max(len("" if cell.value is None else str(cell.value)) for cell in column_cells)
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = min(max_len + 2, 45)


def _local_time_label(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return "-"
    return value.astimezone(tz).strftime("%H:%M")


def _flags(*, was_capped: bool, open_seconds: int, record: AdherenceRecord) -> str:
    flags: list[str] = []
    if was_capped:
        flags.append("CAPPED")
    if open_seconds:
        flags.append("OPEN")
    if record.eligible_for_absent:
        flags.append("ABSENCE_ELIGIBLE")
    return ", ".join(flags) or "-"


def _append_daily_sheet(
    ws: Worksheet,
    *,
    employee_name: str,
    department_name: str | None,
    start_date: date,
    end_date: date,
    tz: tzinfo,
    now_utc: datetime,
    totals: TimeTotals,
    adherence: list[AdherenceRecord],
) -> None:
    ws.append(["Employee", employee_name])
    ws.append(["Department", department_name or "-"])
    ws.append(["Period", f"{start_date.isoformat()} - {end_date.isoformat()}"])
    ws.append(["Timezone", str(tz)])
    ws.append(["Generated (UTC)", now_utc.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")])
    _style_metadata_rows(ws, start_row=1, end_row=ws.max_row)
    ws.append([])

    ws.append(DAILY_HEADERS)
    header_row = ws.max_row
    _style_header(ws, header_row)

    for record in adherence:
        day_totals = totals.day(record.day_date)
        work_seconds = day_totals.work_seconds if day_totals else 0
        break_seconds = day_totals.break_seconds if day_totals else 0
        overtime_seconds = day_totals.overtime_seconds if day_totals else 0
        ws.append(
            [
                record.day_date.isoformat(),
                _local_time_label(record.first_signin, tz),
                seconds_to_hhmm(work_seconds),
                seconds_to_hhmm(break_seconds),
                seconds_to_hhmm(overtime_seconds),
                record.status.value,
                _flags(
                    was_capped=day_totals.was_capped if day_totals else False,
                    open_seconds=day_totals.open_seconds if day_totals else 0,
                    record=record,
                ),
            ]
        )

    data_end_row = ws.max_row
    ws.append(
        [
            "Total",
            "",
            seconds_to_hhmm(totals.work_seconds),
            seconds_to_hhmm(totals.break_seconds),
            seconds_to_hhmm(totals.overtime_seconds),
            "",
            "CAPPED" if totals.was_capped else "-",
        ]
    )
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
        cell.border = THIN_BORDER
    _style_rows(ws, header_row=header_row, data_end_row=data_end_row, status_col=6, overtime_col=5, flags_col=7)
    _auto_width(ws)


def _append_summary_sheet(ws: Worksheet, *, totals: TimeTotals) -> None:
    header_row = 1
    ws.append(SUMMARY_HEADERS)
    _style_header(ws, header_row)
    for week in totals.weeks:
        ws.append(
            [
                f"Week of {week.week_start.isoformat()}",
                seconds_to_hhmm(week.work_seconds),
                seconds_to_hhmm(week.break_seconds),
                seconds_to_hhmm(week.overtime_seconds),
                "CAPPED" if week.was_capped else "-",
            ]
        )
    for month in totals.months:
        ws.append(
            [
                f"Month {month.year}-{month.month:02d}",
                seconds_to_hhmm(month.work_seconds),
                seconds_to_hhmm(month.break_seconds),
                seconds_to_hhmm(month.overtime_seconds),
                "CAPPED" if month.was_capped else "-",
            ]
        )
    _style_rows(ws, header_row=header_row, data_end_row=ws.max_row, status_col=None, overtime_col=4, flags_col=5)
    _auto_width(ws)


def build_timesheet_xlsx_bytes(
    db: Session,
    *,
    user_id: int,
    start_date: date,
    end_date: date,
    now_utc: datetime,
    tz: tzinfo,
) -> bytes:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not be before start_date.")
    day_count = (end_date - start_date).days + 1
    if day_count > MAX_EXPORT_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Date range must not exceed {MAX_EXPORT_RANGE_DAYS} days.",
        )

    settings = get_settings()
    employee = get_employee_or_404(db, user_id)
    records = load_events(db, user_id=user_id, start_date=start_date, end_date=end_date, tz=tz)
    reconciliation = reconcile_records(records, now=now_utc, user_id=user_id).reconciliation
    in_range = [
        period
        for period in reconciliation.periods
        if start_date <= attribution_date(period, tz) <= end_date
    ]
    totals = aggregate_periods(
        in_range,
        tz=tz,
        standard_day_seconds=settings.standard_day_seconds,
        max_shift_seconds=settings.max_shift_seconds,
    )
    adherence = compute_adherence_range(
        reconciliation,
        days=[start_date + timedelta(days=offset) for offset in range(day_count)],
        shift=load_shift_config(employee),
        now=now_utc,
        tz=tz,
        user_id=user_id,
        marks=load_marks(db, user_id=user_id, start_date=start_date, end_date=end_date),
    )

    wb = Workbook()
    daily = wb.active
    daily.title = "Daily"
    _append_daily_sheet(
        daily,
        employee_name=employee.full_name,
        department_name=employee.department.name if employee.department else None,
        start_date=start_date,
        end_date=end_date,
        tz=tz,
        now_utc=now_utc,
        totals=totals,
        adherence=adherence,
    )
    _append_summary_sheet(wb.create_sheet("Summary"), totals=totals)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
