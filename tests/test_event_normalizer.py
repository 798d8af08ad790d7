from __future__ import annotations

import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

from timeclock.enums import EventType
from timeclock.errors import CappedDurationWarning, MalformedEventError, OrphanedEventError
from timeclock.services.events import (
    ISSUE_CAPPED_DURATION,
    ISSUE_MALFORMED_TIMESTAMP,
    ISSUE_ORPHANED_EVENT,
    ISSUE_UNKNOWN_EVENT_TYPE,
    ISSUE_USER_MISMATCH,
    DataQualityIssue,
    normalize_events,
    parse_timestamp,
)


def _ts(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 10, hour, minute, tzinfo=timezone.utc)


class EventNormalizerTests(unittest.TestCase):
    def test_events_are_sorted_by_timestamp(self) -> None:
        records = [
            {"id": 2, "user_id": 1, "event_type": "signout", "timestamp": _ts(17)},
            {"id": 1, "user_id": 1, "event_type": "signin", "timestamp": _ts(9)},
        ]

        result = normalize_events(records, user_id=1)

        self.assertEqual([item.event_id for item in result.events], [1, 2])
        self.assertEqual(result.issues, ())

    def test_equal_timestamps_keep_input_order(self) -> None:
        records = [
            {"id": 10, "user_id": 1, "event_type": "break_start", "timestamp": _ts(12)},
            {"id": 5, "user_id": 1, "event_type": "signout", "timestamp": _ts(12)},
        ]

        result = normalize_events(records)

        self.assertEqual([item.event_id for item in result.events], [10, 5])

    def test_missing_timestamp_is_dropped_and_reported(self) -> None:
        records = [
            {"id": 1, "user_id": 1, "event_type": "signin", "timestamp": None},
            {"id": 2, "user_id": 1, "event_type": "signout", "timestamp": _ts(17)},
        ]

        result = normalize_events(records, user_id=1)

        self.assertEqual(len(result.events), 1)
        self.assertEqual(len(result.issues), 1)
        self.assertEqual(result.issues[0].code, ISSUE_MALFORMED_TIMESTAMP)
        self.assertEqual(result.issues[0].event_id, 1)
        self.assertEqual(result.issues[0].event_index, 0)

    def test_unparseable_timestamp_is_reported(self) -> None:
        result = normalize_events([{"id": 3, "event_type": "signin", "timestamp": "yesterday-ish"}])

        self.assertEqual(result.events, ())
        self.assertEqual(result.issues[0].code, ISSUE_MALFORMED_TIMESTAMP)

    def test_unknown_event_type_is_reported(self) -> None:
        result = normalize_events([{"id": 4, "event_type": "lunch", "timestamp": _ts(12)}])

        self.assertEqual(result.events, ())
        self.assertEqual(result.issues[0].code, ISSUE_UNKNOWN_EVENT_TYPE)
        self.assertEqual(result.issues[0].event_type, "lunch")
        self.assertEqual(result.issues[0].timestamp, _ts(12))

    def test_events_of_another_user_are_rejected(self) -> None:
        records = [
            {"id": 1, "user_id": 1, "event_type": "signin", "timestamp": _ts(9)},
            {"id": 2, "user_id": 2, "event_type": "signout", "timestamp": _ts(10)},
        ]

        result = normalize_events(records, user_id=1)

        self.assertEqual([item.event_id for item in result.events], [1])
        self.assertEqual(result.issues[0].code, ISSUE_USER_MISMATCH)

    def test_object_records_and_string_timestamps_are_accepted(self) -> None:
        records = [
            SimpleNamespace(id=1, user_id=1, event_type="SIGNIN", timestamp="2026-03-10T09:00:00Z"),
            SimpleNamespace(id=2, user_id=1, event_type=EventType.SIGNOUT, timestamp=datetime(2026, 3, 10, 17, 0)),
        ]

        result = normalize_events(records, user_id=1)

        self.assertEqual([item.event_type for item in result.events], [EventType.SIGNIN, EventType.SIGNOUT])
        self.assertEqual(result.events[0].timestamp, _ts(9))
        # Naive values are read as UTC.
        self.assertEqual(result.events[1].timestamp, _ts(17))

    def test_offset_timestamps_are_converted_to_utc(self) -> None:
        parsed = parse_timestamp("2026-03-10T12:00:00+03:00")
        self.assertEqual(parsed, _ts(9))
        self.assertEqual(parsed.tzinfo, timezone.utc)

    def test_parse_timestamp_rejects_unsupported_types(self) -> None:
        with self.assertRaises(MalformedEventError):
            parse_timestamp(12345)
        with self.assertRaises(MalformedEventError):
            parse_timestamp("   ")

    def test_issue_maps_to_error_taxonomy(self) -> None:
        self.assertIsInstance(
            DataQualityIssue(code=ISSUE_ORPHANED_EVENT, message="x").as_exception(),
            OrphanedEventError,
        )
        self.assertIsInstance(
            DataQualityIssue(code=ISSUE_CAPPED_DURATION, message="x").as_exception(),
            CappedDurationWarning,
        )
        self.assertIsInstance(
            DataQualityIssue(code=ISSUE_UNKNOWN_EVENT_TYPE, message="x").as_exception(),
            MalformedEventError,
        )

    def test_malformed_events_are_logged(self) -> None:
        with self.assertLogs("timeclock.engine", level="WARNING") as captured:
            normalize_events([{"id": 9, "event_type": "signin", "timestamp": None}], user_id=1)

        self.assertTrue(any("attendance_event_malformed" in line for line in captured.output))


if __name__ == "__main__":
    unittest.main()
