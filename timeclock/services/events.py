from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from timeclock.enums import EventType
from timeclock.errors import CappedDurationWarning, MalformedEventError, OrphanedEventError

logger = logging.getLogger("timeclock.engine")

ISSUE_MALFORMED_TIMESTAMP = "MALFORMED_TIMESTAMP"
ISSUE_UNKNOWN_EVENT_TYPE = "UNKNOWN_EVENT_TYPE"
ISSUE_USER_MISMATCH = "USER_MISMATCH"
ISSUE_ORPHANED_EVENT = "ORPHANED_EVENT"
ISSUE_CAPPED_DURATION = "CAPPED_DURATION"


@dataclass(frozen=True)
class AttendanceEvent:
    user_id: Any
    event_type: EventType
    timestamp: datetime
    event_id: Any = None
    index: int = 0


@dataclass(frozen=True)
class DataQualityIssue:
    code: str
    message: str
    event_index: int | None = None
    event_id: Any = None
    event_type: str | None = None
    timestamp: datetime | None = None

    def as_exception(self) -> Exception:
        if self.code == ISSUE_ORPHANED_EVENT:
            return OrphanedEventError(self.message)
        if self.code == ISSUE_CAPPED_DURATION:
            return CappedDurationWarning(self.message)
        return MalformedEventError(self.message)


@dataclass(frozen=True)
class NormalizedEvents:
    events: tuple[AttendanceEvent, ...]
    issues: tuple[DataQualityIssue, ...]


def record_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(raw: Any) -> datetime:
    """Parse a stored event timestamp into an aware UTC datetime.

    Naive values are taken to be UTC, which is how the event store writes them.
    Raises MalformedEventError for anything that is not an instant.
    """
    if raw is None:
        raise MalformedEventError("timestamp is missing")
    if isinstance(raw, datetime):
        return to_utc(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise MalformedEventError("timestamp is empty")
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            return to_utc(datetime.fromisoformat(text))
        except ValueError as exc:
            raise MalformedEventError(f"timestamp {raw!r} is not ISO-8601") from exc
    raise MalformedEventError(f"timestamp of type {type(raw).__name__} is not supported")


def parse_event_type(raw: Any) -> EventType:
    if isinstance(raw, EventType):
        return raw
    if isinstance(raw, str):
        try:
            return EventType(raw.strip().lower())
        except ValueError:
            pass
    raise MalformedEventError(f"event_type {raw!r} is not recognised")


def _report(issue: DataQualityIssue, *, user_id: Any) -> None:
    logger.warning(
        "attendance_event_malformed",
        extra={
            "user_id": user_id,
            "issue_code": issue.code,
            "event_index": issue.event_index,
            "event_id": issue.event_id,
            "detail": issue.message,
        },
    )


def normalize_events(records: Iterable[Any], *, user_id: Any = None) -> NormalizedEvents:
    """Sort raw attendance records by instant and drop the ones that cannot be used.

    Records may be mappings (the persisted row contract) or objects exposing the
    same attribute names. Ties on the timestamp keep their input order.
    """
    events: list[AttendanceEvent] = []
    issues: list[DataQualityIssue] = []

    for index, record in enumerate(records):
        event_id = record_field(record, "id")
        raw_type = record_field(record, "event_type")
        record_user_id = record_field(record, "user_id")
        raw_type_label = raw_type.value if isinstance(raw_type, EventType) else (None if raw_type is None else str(raw_type))

        if user_id is not None and record_user_id is not None and str(record_user_id) != str(user_id):
            issue = DataQualityIssue(
                code=ISSUE_USER_MISMATCH,
                message=f"event belongs to user {record_user_id}, expected {user_id}",
                event_index=index,
                event_id=event_id,
                event_type=raw_type_label,
            )
            issues.append(issue)
            _report(issue, user_id=user_id)
            continue

        try:
            timestamp = parse_timestamp(record_field(record, "timestamp"))
        except MalformedEventError as exc:
            issue = DataQualityIssue(
                code=ISSUE_MALFORMED_TIMESTAMP,
                message=str(exc),
                event_index=index,
                event_id=event_id,
                event_type=raw_type_label,
            )
            issues.append(issue)
            _report(issue, user_id=user_id if user_id is not None else record_user_id)
            continue

        try:
            event_type = parse_event_type(raw_type)
        except MalformedEventError as exc:
            issue = DataQualityIssue(
                code=ISSUE_UNKNOWN_EVENT_TYPE,
                message=str(exc),
                event_index=index,
                event_id=event_id,
                event_type=raw_type_label,
                timestamp=timestamp,
            )
            issues.append(issue)
            _report(issue, user_id=user_id if user_id is not None else record_user_id)
            continue

        events.append(
            AttendanceEvent(
                user_id=record_user_id if record_user_id is not None else user_id,
                event_type=event_type,
                timestamp=timestamp,
                event_id=event_id,
                index=index,
            )
        )

    events.sort(key=lambda item: (item.timestamp, item.index))
    return NormalizedEvents(events=tuple(events), issues=tuple(issues))
