from __future__ import annotations

import random
import unittest
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from timeclock.enums import AdherenceStatus, AttendanceState, EventType
from timeclock.services.adherence import ShiftConfig
from timeclock.services.events import ISSUE_CAPPED_DURATION, ISSUE_MALFORMED_TIMESTAMP, ISSUE_ORPHANED_EVENT
from timeclock.services.metrics import AdherenceMark, compute_adherence, compute_metrics, reconcile_records
from timeclock.services.shift_calc import MAX_SHIFT_SECONDS

UTC = ZoneInfo("UTC")
SHIFT = ShiftConfig()
EVENT_TYPES = ["signin", "signout", "break_start", "break_end"]


def _ts(hour: int, minute: int = 0, *, day: int = 10) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def _records(*items: tuple[str, datetime | None]) -> list[dict[str, object]]:
    return [
        {"id": idx + 1, "user_id": 7, "event_type": kind, "timestamp": ts}
        for idx, (kind, ts) in enumerate(items)
    ]


class MetricsScenarioTests(unittest.TestCase):
    def test_simple_day(self) -> None:
        metrics = compute_metrics(
            _records(("signin", _ts(9)), ("signout", _ts(17))),
            tz=UTC,
            shift=SHIFT,
            now=_ts(18),
            user_id=7,
        )

        self.assertEqual(metrics.work_time_seconds, 28800)
        self.assertEqual(metrics.break_time_seconds, 0)
        self.assertEqual(metrics.overtime_seconds, 0)
        self.assertEqual(metrics.status, AttendanceState.SIGNED_OUT)
        self.assertFalse(metrics.is_active)
        self.assertEqual(metrics.last_activity.event_type, EventType.SIGNOUT)
        self.assertEqual(metrics.last_activity.timestamp, _ts(17))
        self.assertEqual(metrics.adherence_today.status, AdherenceStatus.EARLY)
        self.assertEqual(metrics.today_work_seconds, 28800)

    def test_late_arrival(self) -> None:
        metrics = compute_metrics(_records(("signin", _ts(9, 45))), tz=UTC, shift=SHIFT, now=_ts(10))

        self.assertEqual(metrics.adherence_today.status, AdherenceStatus.LATE)
        self.assertTrue(metrics.is_active)
        self.assertEqual(metrics.work_time_seconds, 900)

    def test_break_accounting(self) -> None:
        metrics = compute_metrics(
            _records(
                ("signin", _ts(9)),
                ("break_start", _ts(12)),
                ("break_end", _ts(12, 30)),
                ("signout", _ts(17, 30)),
            ),
            tz=UTC,
            shift=SHIFT,
            now=_ts(18),
        )

        self.assertEqual(metrics.work_time_seconds, 28800)
        self.assertEqual(metrics.break_time_seconds, 1800)
        self.assertEqual(metrics.overtime_seconds, 0)

    def test_currently_on_break(self) -> None:
        metrics = compute_metrics(
            _records(("signin", _ts(9)), ("break_start", _ts(12))),
            tz=UTC,
            shift=SHIFT,
            now=_ts(12, 10),
        )

        self.assertTrue(metrics.is_on_break)
        self.assertFalse(metrics.is_active)
        self.assertEqual(metrics.status, AttendanceState.ON_BREAK)
        self.assertEqual(metrics.break_time_seconds, 600)

    def test_forgotten_signout_is_capped(self) -> None:
        signin = _ts(9)
        metrics = compute_metrics(
            _records(("signin", signin)),
            tz=UTC,
            shift=SHIFT,
            now=signin + timedelta(hours=20),
        )

        capped = metrics.periods[0].capped(MAX_SHIFT_SECONDS)
        self.assertEqual(capped.duration_seconds, 57600)
        self.assertTrue(capped.was_capped)
        self.assertTrue(metrics.was_capped)
        self.assertEqual(metrics.work_time_seconds, 57600)
        self.assertEqual(metrics.overtime_seconds, 57600 - 28800)
        self.assertIn(ISSUE_CAPPED_DURATION, [item.code for item in metrics.warnings])
        # The period belongs to the day it started, not to "today".
        self.assertEqual(metrics.today_work_seconds, 0)

    def test_overnight_continuity(self) -> None:
        metrics = compute_metrics(
            _records(("signin", _ts(23)), ("signout", _ts(1, 30, day=11))),
            tz=UTC,
            shift=SHIFT,
            now=_ts(8, day=11),
        )

        self.assertEqual(len(metrics.periods), 1)
        self.assertEqual(metrics.periods[0].raw_seconds, 9000)
        self.assertEqual(metrics.totals.day(date(2026, 3, 10)).work_seconds, 9000)
        self.assertIsNone(metrics.totals.day(date(2026, 3, 11)))

    def test_absence_eligibility_and_mark(self) -> None:
        now = _ts(10)
        yesterday = date(2026, 3, 9)

        record = compute_adherence([], shift=SHIFT, now=now, tz=UTC, day_date=yesterday, user_id=7)
        self.assertTrue(record.eligible_for_absent)

        marked = compute_adherence(
            [],
            shift=SHIFT,
            now=now,
            tz=UTC,
            day_date=yesterday,
            user_id=7,
            marked_status=AdherenceStatus.ABSENT,
            marked_by="admin-1",
        )
        again = compute_adherence(
            [],
            shift=SHIFT,
            now=now,
            tz=UTC,
            day_date=yesterday,
            user_id=7,
            marked_status=AdherenceStatus.ABSENT,
            marked_by="admin-1",
        )
        self.assertEqual(marked.status, AdherenceStatus.ABSENT)
        self.assertEqual(again.status, AdherenceStatus.ABSENT)

    def test_absent_mark_for_today_is_applied(self) -> None:
        metrics = compute_metrics(
            [],
            tz=UTC,
            shift=SHIFT,
            now=_ts(12),
            marks={date(2026, 3, 10): AdherenceMark(status=AdherenceStatus.ABSENT, marked_by="admin-1")},
        )

        self.assertEqual(metrics.adherence_today.status, AdherenceStatus.ABSENT)
        self.assertEqual(metrics.work_time_seconds, 0)
        self.assertIsNone(metrics.last_activity)

    def test_day_range_limits_headline_totals(self) -> None:
        metrics = compute_metrics(
            _records(
                ("signin", _ts(8, day=9)),
                ("signout", _ts(18, day=9)),
                ("signin", _ts(9)),
                ("signout", _ts(13)),
            ),
            tz=UTC,
            shift=SHIFT,
            now=_ts(18),
            day_range=(date(2026, 3, 10), date(2026, 3, 10)),
        )

        self.assertEqual(metrics.work_time_seconds, 4 * 3600)
        self.assertEqual(metrics.overtime_seconds, 0)
        self.assertEqual(metrics.week_time_seconds, 14 * 3600)
        self.assertEqual(metrics.month_time_seconds, 14 * 3600)

    def test_data_quality_issues_are_reported_not_raised(self) -> None:
        metrics = compute_metrics(
            _records(("signout", _ts(8)), ("signin", None), ("signin", _ts(9)), ("signout", _ts(10))),
            tz=UTC,
            shift=None,
            now=_ts(11),
        )

        codes = [item.code for item in metrics.warnings]
        self.assertIn(ISSUE_ORPHANED_EVENT, codes)
        self.assertIn(ISSUE_MALFORMED_TIMESTAMP, codes)
        self.assertEqual(len(metrics.orphaned_events), 1)
        self.assertEqual(metrics.work_time_seconds, 3600)
        self.assertIsNone(metrics.adherence_today)

    def test_unknown_timezone_name_falls_back_to_utc(self) -> None:
        metrics = compute_metrics(
            _records(("signin", _ts(9)), ("signout", _ts(17))),
            tz="Not/AZone",
            shift=SHIFT,
            now=_ts(18),
        )
        self.assertEqual(metrics.today_work_seconds, 28800)

    def test_adherence_for_day_from_reconciled_periods(self) -> None:
        reconciled = reconcile_records(
            _records(("signin", _ts(9, 20)), ("signout", _ts(17))),
            now=_ts(18),
        )
        record = compute_adherence(
            reconciled.reconciliation.periods,
            shift=SHIFT,
            now=_ts(18),
            tz=UTC,
            day_date=date(2026, 3, 10),
        )
        self.assertEqual(record.status, AdherenceStatus.ON_TIME)


class MetricsPropertyTests(unittest.TestCase):
    def _random_records(self, rng: random.Random, *, unique_times: bool = False) -> list[dict[str, object]]:
        base = _ts(0, day=8)
        count = rng.randint(0, 25)
        if unique_times:
            offsets = rng.sample(range(0, 5 * 24 * 60), count)
        else:
            offsets = [rng.randint(0, 5 * 24 * 60) for _ in range(count)]
        records: list[dict[str, object]] = []
        for idx, offset in enumerate(offsets):
            kind = rng.choice(EVENT_TYPES + ([] if unique_times else ["bogus"]))
            timestamp: datetime | None = base + timedelta(minutes=offset)
            if not unique_times and rng.random() < 0.05:
                timestamp = None
            records.append({"id": idx + 1, "user_id": 7, "event_type": kind, "timestamp": timestamp})
        return records

    def test_totals_are_never_negative_and_periods_are_bounded(self) -> None:
        rng = random.Random(20260310)
        for _ in range(200):
            records = self._random_records(rng)
            now = _ts(0, day=8) + timedelta(minutes=rng.randint(0, 7 * 24 * 60))
            metrics = compute_metrics(records, tz=UTC, shift=SHIFT, now=now)

            self.assertGreaterEqual(metrics.work_time_seconds, 0)
            self.assertGreaterEqual(metrics.break_time_seconds, 0)
            self.assertGreaterEqual(metrics.overtime_seconds, 0)
            for period in metrics.periods:
                self.assertLessEqual(period.capped(MAX_SHIFT_SECONDS).duration_seconds, MAX_SHIFT_SECONDS)
            for day_totals in metrics.totals.days:
                self.assertGreaterEqual(day_totals.work_seconds, 0)

    def test_same_inputs_give_same_output(self) -> None:
        rng = random.Random(42)
        for _ in range(50):
            records = self._random_records(rng)
            now = _ts(12, day=12)
            first = compute_metrics(records, tz=UTC, shift=SHIFT, now=now, user_id=7)
            second = compute_metrics(records, tz=UTC, shift=SHIFT, now=now, user_id=7)
            self.assertEqual(first, second)

    def test_input_order_does_not_change_periods(self) -> None:
        rng = random.Random(7)
        for _ in range(100):
            records = self._random_records(rng, unique_times=True)
            shuffled = list(records)
            rng.shuffle(shuffled)
            now = _ts(12, day=13)

            ordered = reconcile_records(records, now=now).reconciliation
            reordered = reconcile_records(shuffled, now=now).reconciliation

            self.assertEqual(ordered.periods, reordered.periods)
            self.assertEqual(ordered.state, reordered.state)


if __name__ == "__main__":
    unittest.main()
