from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime, timezone, tzinfo

from timeclock.services.timezones import UTC_ZONE, resolve_timezone_or_utc

logger = logging.getLogger("timeclock.timezone")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TimezoneCache:
    """TTL cache for the organization timezone with a single in-flight load.

    Concurrent callers that miss the cache wait on the same load instead of each
    hitting the settings store. ``invalidate()`` must be called whenever the
    configured timezone changes; a load that was already running when the cache
    was invalidated still answers its waiters but is not stored.
    """

    def __init__(
        self,
        loader: Callable[[], str | None],
        *,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._value: tzinfo | None = None
        self._expires_at = 0.0
        self._generation = 0
        self._inflight: Future[tzinfo] | None = None

    def get(self) -> tzinfo:
        with self._lock:
            if self._value is not None and self._clock() < self._expires_at:
                return self._value
            if self._inflight is not None:
                waiter = self._inflight
                leader = False
            else:
                waiter = Future()
                self._inflight = waiter
                leader = True
            generation = self._generation

        if not leader:
            return waiter.result()

        try:
            zone = resolve_timezone_or_utc(self._loader())
        except Exception:
            logger.exception("timezone_load_failed")
            with self._lock:
                fallback = self._value or UTC_ZONE
                self._inflight = None
            waiter.set_result(fallback)
            return fallback

        with self._lock:
            if generation == self._generation:
                self._value = zone
                self._expires_at = self._clock() + self._ttl_seconds
            self._inflight = None
        waiter.set_result(zone)
        return zone

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._expires_at = 0.0
            self._generation += 1
        logger.info("timezone_cache_invalidated")
