from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

MAX_SHIFT_HOURS = 16
MAX_SHIFT_SECONDS = MAX_SHIFT_HOURS * 3600


@dataclass(frozen=True)
class CappedDuration:
    duration_seconds: int
    was_capped: bool
    original_duration_seconds: int


def cap_duration(start: datetime, end: datetime, *, max_seconds: int = MAX_SHIFT_SECONDS) -> CappedDuration:
    """Bound one open-to-close interval to the longest plausible shift.

    The uncapped length is kept for diagnostics. Inverted intervals count as zero.
    """
    original = max(0, int((end - start).total_seconds()))
    limit = max(0, int(max_seconds))
    was_capped = original > limit
    return CappedDuration(
        duration_seconds=limit if was_capped else original,
        was_capped=was_capped,
        original_duration_seconds=original,
    )


def format_duration(seconds: int | float | None) -> str:
    if not seconds or seconds <= 0:
        return "0m"
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    if hours == 0:
        return f"{minutes}m"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def seconds_to_hhmm(seconds: int) -> str:
    value = max(0, int(seconds)) // 60
    return f"{value // 60:02d}:{value % 60:02d}"
