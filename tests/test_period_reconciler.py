from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from timeclock.enums import AttendanceState, EventType, PeriodKind
from timeclock.services.events import ISSUE_ORPHANED_EVENT, AttendanceEvent
from timeclock.services.periods import ReconcilerCursor, reconcile, transition


def _ts(hour: int, minute: int = 0, *, day: int = 10) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def _events(*items: tuple[str, datetime]) -> list[AttendanceEvent]:
    return [
        AttendanceEvent(user_id=1, event_type=EventType(kind), timestamp=ts, event_id=idx + 1, index=idx)
        for idx, (kind, ts) in enumerate(items)
    ]


class PeriodReconcilerTests(unittest.TestCase):
    def test_signin_signout_makes_one_work_period(self) -> None:
        result = reconcile(_events(("signin", _ts(9)), ("signout", _ts(17))), now=_ts(18))

        self.assertEqual(len(result.periods), 1)
        period = result.periods[0]
        self.assertEqual(period.kind, PeriodKind.WORK)
        self.assertEqual(period.raw_seconds, 8 * 3600)
        self.assertEqual(period.start_event_id, 1)
        self.assertEqual(period.end_event_id, 2)
        self.assertFalse(period.is_open)
        self.assertEqual(result.state, AttendanceState.SIGNED_OUT)
        self.assertFalse(result.is_active)

    def test_break_splits_work_into_two_periods(self) -> None:
        result = reconcile(
            _events(
                ("signin", _ts(9)),
                ("break_start", _ts(12)),
                ("break_end", _ts(12, 30)),
                ("signout", _ts(17, 30)),
            ),
            now=_ts(18),
        )

        kinds = [item.kind for item in result.periods]
        self.assertEqual(kinds, [PeriodKind.WORK, PeriodKind.BREAK, PeriodKind.WORK])
        self.assertEqual(sum(item.raw_seconds for item in result.work_periods), 8 * 3600)
        self.assertEqual(sum(item.raw_seconds for item in result.break_periods), 1800)
        self.assertEqual(result.periods[2].opened_by, EventType.BREAK_END)

    def test_signout_during_break_closes_the_break(self) -> None:
        result = reconcile(
            _events(("signin", _ts(9)), ("break_start", _ts(12)), ("signout", _ts(12, 15))),
            now=_ts(18),
        )

        self.assertEqual(result.state, AttendanceState.SIGNED_OUT)
        self.assertEqual(result.periods[-1].kind, PeriodKind.BREAK)
        self.assertEqual(result.periods[-1].raw_seconds, 900)

    def test_signout_while_signed_out_is_orphaned(self) -> None:
        result = reconcile(_events(("signout", _ts(17))), now=_ts(18))

        self.assertEqual(result.periods, ())
        self.assertEqual(len(result.orphaned), 1)
        self.assertEqual(result.orphaned[0].code, ISSUE_ORPHANED_EVENT)
        self.assertEqual(result.state, AttendanceState.SIGNED_OUT)
        self.assertEqual(result.last_event.event_type, EventType.SIGNOUT)

    def test_break_end_while_signed_in_is_orphaned(self) -> None:
        result = reconcile(
            _events(("signin", _ts(9)), ("break_end", _ts(10)), ("signout", _ts(17))),
            now=_ts(18),
        )

        self.assertEqual(len(result.orphaned), 1)
        self.assertEqual(result.orphaned[0].event_type, "break_end")
        self.assertEqual(len(result.periods), 1)
        self.assertEqual(result.periods[0].raw_seconds, 8 * 3600)

    def test_duplicate_break_start_is_orphaned(self) -> None:
        result = reconcile(
            _events(
                ("signin", _ts(9)),
                ("break_start", _ts(12)),
                ("break_start", _ts(12, 10)),
                ("break_end", _ts(12, 30)),
            ),
            now=_ts(13),
        )

        self.assertEqual(len(result.orphaned), 1)
        self.assertEqual(result.break_periods[0].raw_seconds, 1800)
        self.assertEqual(result.state, AttendanceState.SIGNED_IN)

    def test_signin_while_signed_in_closes_previous_period(self) -> None:
        result = reconcile(_events(("signin", _ts(9)), ("signin", _ts(10))), now=_ts(11))

        self.assertEqual(len(result.periods), 2)
        first, second = result.periods
        self.assertTrue(first.is_incomplete)
        self.assertEqual(first.raw_seconds, 3600)
        self.assertTrue(second.is_open)
        self.assertEqual(second.raw_seconds, 3600)
        self.assertEqual(result.orphaned, ())

    def test_open_period_is_closed_at_now(self) -> None:
        result = reconcile(_events(("signin", _ts(9))), now=_ts(11, 30))

        self.assertEqual(result.state, AttendanceState.SIGNED_IN)
        self.assertTrue(result.is_active)
        self.assertTrue(result.periods[0].is_open)
        self.assertEqual(result.periods[0].end, _ts(11, 30))

    def test_open_break_is_closed_at_now(self) -> None:
        result = reconcile(_events(("signin", _ts(9)), ("break_start", _ts(12))), now=_ts(12, 20))

        self.assertTrue(result.is_on_break)
        self.assertEqual(result.break_periods[0].raw_seconds, 1200)
        self.assertTrue(result.break_periods[0].is_open)

    def test_now_before_open_start_gives_zero_length(self) -> None:
        result = reconcile(_events(("signin", _ts(9))), now=_ts(8))

        self.assertEqual(result.periods[0].raw_seconds, 0)

    def test_overnight_period_is_not_split(self) -> None:
        result = reconcile(
            _events(("signin", _ts(23)), ("signout", _ts(1, 30, day=11))),
            now=_ts(8, day=11),
        )

        self.assertEqual(len(result.periods), 1)
        self.assertEqual(result.periods[0].raw_seconds, int(timedelta(hours=2, minutes=30).total_seconds()))

    def test_transition_does_not_mutate_cursor(self) -> None:
        cursor = ReconcilerCursor()
        event = _events(("signin", _ts(9)))[0]

        step = transition(cursor, event)

        self.assertEqual(cursor.state, AttendanceState.SIGNED_OUT)
        self.assertIsNone(cursor.open_work)
        self.assertEqual(step.cursor.state, AttendanceState.SIGNED_IN)
        self.assertEqual(step.closed, ())
        self.assertIsNone(step.orphan)


if __name__ == "__main__":
    unittest.main()
