from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from timeclock.enums import AttendanceState, EventType, PeriodKind
from timeclock.services.events import ISSUE_ORPHANED_EVENT, AttendanceEvent, DataQualityIssue, to_utc
from timeclock.services.shift_calc import MAX_SHIFT_SECONDS, CappedDuration, cap_duration

logger = logging.getLogger("timeclock.engine")


@dataclass(frozen=True)
class TimePeriod:
    kind: PeriodKind
    start: datetime
    end: datetime
    opened_by: EventType | None = None
    start_event_id: Any = None
    end_event_id: Any = None
    # Still running at the end of the stream; ``end`` is the caller's "now".
    is_open: bool = False
    # Closed by a stray signin rather than by its own closing event.
    is_incomplete: bool = False

    @property
    def raw_seconds(self) -> int:
        return max(0, int((self.end - self.start).total_seconds()))

    def capped(self, max_seconds: int = MAX_SHIFT_SECONDS) -> CappedDuration:
        return cap_duration(self.start, self.end, max_seconds=max_seconds)


@dataclass(frozen=True)
class OpenPeriod:
    start: datetime
    opened_by: EventType
    event_id: Any = None


@dataclass(frozen=True)
class ReconcilerCursor:
    state: AttendanceState = AttendanceState.SIGNED_OUT
    open_work: OpenPeriod | None = None
    open_break: OpenPeriod | None = None
    last_event: AttendanceEvent | None = None


@dataclass(frozen=True)
class Transition:
    cursor: ReconcilerCursor
    closed: tuple[TimePeriod, ...] = ()
    orphan: DataQualityIssue | None = None


@dataclass(frozen=True)
class Reconciliation:
    periods: tuple[TimePeriod, ...]
    state: AttendanceState
    last_event: AttendanceEvent | None
    orphaned: tuple[DataQualityIssue, ...]

    @property
    def work_periods(self) -> tuple[TimePeriod, ...]:
        return tuple(item for item in self.periods if item.kind == PeriodKind.WORK)

    @property
    def break_periods(self) -> tuple[TimePeriod, ...]:
        return tuple(item for item in self.periods if item.kind == PeriodKind.BREAK)

    @property
    def is_active(self) -> bool:
        return self.state == AttendanceState.SIGNED_IN

    @property
    def is_on_break(self) -> bool:
        return self.state == AttendanceState.ON_BREAK


def _close(
    kind: PeriodKind,
    opened: OpenPeriod,
    event: AttendanceEvent,
    *,
    is_incomplete: bool = False,
) -> TimePeriod:
    return TimePeriod(
        kind=kind,
        start=opened.start,
        end=max(event.timestamp, opened.start),
        opened_by=opened.opened_by,
        start_event_id=opened.event_id,
        end_event_id=event.event_id,
        is_incomplete=is_incomplete,
    )


def _open(event: AttendanceEvent) -> OpenPeriod:
    return OpenPeriod(start=event.timestamp, opened_by=event.event_type, event_id=event.event_id)


def _orphan(cursor: ReconcilerCursor, event: AttendanceEvent) -> Transition:
    issue = DataQualityIssue(
        code=ISSUE_ORPHANED_EVENT,
        message=f"{event.event_type.value} while {cursor.state.value} has no open period to act on",
        event_index=event.index,
        event_id=event.event_id,
        event_type=event.event_type.value,
        timestamp=event.timestamp,
    )
    return Transition(cursor=replace(cursor, last_event=event), orphan=issue)


def transition(cursor: ReconcilerCursor, event: AttendanceEvent) -> Transition:
    """Apply one normalized event to the reconciler state."""
    state = cursor.state
    kind = event.event_type

    if kind == EventType.SIGNIN:
        closed: tuple[TimePeriod, ...] = ()
        # A signin while already in is an implicit signout followed by a signin.
        if cursor.open_work is not None:
            closed = (_close(PeriodKind.WORK, cursor.open_work, event, is_incomplete=True),)
        elif cursor.open_break is not None:
            closed = (_close(PeriodKind.BREAK, cursor.open_break, event, is_incomplete=True),)
        return Transition(
            cursor=ReconcilerCursor(
                state=AttendanceState.SIGNED_IN,
                open_work=_open(event),
                last_event=event,
            ),
            closed=closed,
        )

    if state == AttendanceState.SIGNED_IN and cursor.open_work is not None:
        if kind == EventType.SIGNOUT:
            return Transition(
                cursor=ReconcilerCursor(state=AttendanceState.SIGNED_OUT, last_event=event),
                closed=(_close(PeriodKind.WORK, cursor.open_work, event),),
            )
        if kind == EventType.BREAK_START:
            return Transition(
                cursor=ReconcilerCursor(
                    state=AttendanceState.ON_BREAK,
                    open_break=_open(event),
                    last_event=event,
                ),
                closed=(_close(PeriodKind.WORK, cursor.open_work, event),),
            )

    if state == AttendanceState.ON_BREAK and cursor.open_break is not None:
        if kind == EventType.BREAK_END:
            return Transition(
                cursor=ReconcilerCursor(
                    state=AttendanceState.SIGNED_IN,
                    open_work=_open(event),
                    last_event=event,
                ),
                closed=(_close(PeriodKind.BREAK, cursor.open_break, event),),
            )
        if kind == EventType.SIGNOUT:
            return Transition(
                cursor=ReconcilerCursor(state=AttendanceState.SIGNED_OUT, last_event=event),
                closed=(_close(PeriodKind.BREAK, cursor.open_break, event),),
            )

    return _orphan(cursor, event)


def _close_at_now(kind: PeriodKind, opened: OpenPeriod, now: datetime) -> TimePeriod:
    return TimePeriod(
        kind=kind,
        start=opened.start,
        end=max(now, opened.start),
        opened_by=opened.opened_by,
        start_event_id=opened.event_id,
        is_open=True,
    )


def reconcile(events: Iterable[AttendanceEvent], *, now: datetime) -> Reconciliation:
    """Fold normalized events into work and break periods.

    ``events`` must already be in chronological order. A period still open at the
    end of the stream is closed at ``now`` and flagged ``is_open``.
    """
    now_utc = to_utc(now)
    cursor = ReconcilerCursor()
    periods: list[TimePeriod] = []
    orphaned: list[DataQualityIssue] = []

    for event in events:
        step = transition(cursor, event)
        cursor = step.cursor
        periods.extend(step.closed)
        if step.orphan is not None:
            orphaned.append(step.orphan)
            logger.info(
                "attendance_event_orphaned",
                extra={
                    "user_id": event.user_id,
                    "event_id": event.event_id,
                    "event_type": event.event_type.value,
                    "event_ts": event.timestamp.isoformat(),
                },
            )

    if cursor.open_work is not None:
        periods.append(_close_at_now(PeriodKind.WORK, cursor.open_work, now_utc))
    if cursor.open_break is not None:
        periods.append(_close_at_now(PeriodKind.BREAK, cursor.open_break, now_utc))

    return Reconciliation(
        periods=tuple(periods),
        state=cursor.state,
        last_event=cursor.last_event,
        orphaned=tuple(orphaned),
    )
