from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from timeclock.services.shift_calc import MAX_SHIFT_SECONDS, cap_duration, format_duration, seconds_to_hhmm


class DurationCapperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.start = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

    def test_short_duration_is_untouched(self) -> None:
        result = cap_duration(self.start, self.start + timedelta(hours=8))
        self.assertEqual(result.duration_seconds, 28800)
        self.assertFalse(result.was_capped)

    def test_long_duration_is_capped_to_max_shift(self) -> None:
        result = cap_duration(self.start, self.start + timedelta(hours=20))
        self.assertEqual(MAX_SHIFT_SECONDS, 57600)
        self.assertEqual(result.duration_seconds, 57600)
        self.assertTrue(result.was_capped)
        self.assertEqual(result.original_duration_seconds, 72000)

    def test_exactly_max_shift_is_not_capped(self) -> None:
        result = cap_duration(self.start, self.start + timedelta(seconds=MAX_SHIFT_SECONDS))
        self.assertFalse(result.was_capped)

    def test_inverted_interval_counts_as_zero(self) -> None:
        result = cap_duration(self.start, self.start - timedelta(minutes=5))
        self.assertEqual(result.duration_seconds, 0)
        self.assertFalse(result.was_capped)

    def test_custom_limit(self) -> None:
        result = cap_duration(self.start, self.start + timedelta(hours=3), max_seconds=3600)
        self.assertEqual(result.duration_seconds, 3600)
        self.assertTrue(result.was_capped)


class FormatDurationTests(unittest.TestCase):
    def test_format_duration(self) -> None:
        self.assertEqual(format_duration(0), "0m")
        self.assertEqual(format_duration(None), "0m")
        self.assertEqual(format_duration(-30), "0m")
        self.assertEqual(format_duration(2700), "45m")
        self.assertEqual(format_duration(7200), "2h")
        self.assertEqual(format_duration(9000), "2h 30m")

    def test_seconds_to_hhmm(self) -> None:
        self.assertEqual(seconds_to_hhmm(30600), "08:30")
        self.assertEqual(seconds_to_hhmm(0), "00:00")
        self.assertEqual(seconds_to_hhmm(-10), "00:00")
        self.assertEqual(seconds_to_hhmm(57600), "16:00")


if __name__ == "__main__":
    unittest.main()
