from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from timeclock.services.dashboard import compute_live_metrics
from timeclock.settings import get_settings

logger = logging.getLogger("timeclock.recompute")


@dataclass(frozen=True)
class MetricsSnapshot:
    user_id: Any
    value: Any
    computed_at_utc: datetime


class RecomputeCoordinator:
    """Keeps one live metrics snapshot per watched user.

    Two paths ask for a recompute: change notifications (``trigger``) and the
    fallback timer (``run_periodic``). At most one recompute per user is in
    flight; triggers that arrive meanwhile collapse into a single follow-up
    run, and the newest finished result replaces the stored snapshot.
    ``compute`` is blocking and runs in a worker thread.
    """

    def __init__(self, compute: Callable[[Any], Any], *, interval_seconds: float = 150) -> None:
        self._compute = compute
        self._interval_seconds = max(1.0, float(interval_seconds))
        self._inflight: dict[Any, asyncio.Task[None]] = {}
        self._pending: set[Any] = set()
        self._snapshots: dict[Any, MetricsSnapshot] = {}
        self._watched: set[Any] = set()

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def watch(self, user_id: Any) -> None:
        self._watched.add(user_id)

    def unwatch(self, user_id: Any) -> None:
        self._watched.discard(user_id)

    def watched(self) -> frozenset[Any]:
        return frozenset(self._watched)

    def is_in_flight(self, user_id: Any) -> bool:
        return user_id in self._inflight

    def snapshot(self, user_id: Any) -> MetricsSnapshot | None:
        return self._snapshots.get(user_id)

    def trigger(self, user_id: Any) -> asyncio.Task[None]:
        """Request a recompute; returns the task that will cover this request."""
        task = self._inflight.get(user_id)
        if task is not None:
            self._pending.add(user_id)
            return task
        task = asyncio.create_task(self._run(user_id))
        self._inflight[user_id] = task
        return task

    async def refresh(self, user_id: Any) -> MetricsSnapshot | None:
        await self.trigger(user_id)
        return self.snapshot(user_id)

    async def _run(self, user_id: Any) -> None:
        try:
            while True:
                self._pending.discard(user_id)
                started = time.perf_counter()
                try:
                    value = await asyncio.to_thread(self._compute, user_id)
                except Exception:
                    logger.exception("metrics_recompute_failed", extra={"user_id": user_id})
                else:
                    self._snapshots[user_id] = MetricsSnapshot(
                        user_id=user_id,
                        value=value,
                        computed_at_utc=datetime.now(timezone.utc),
                    )
                    logger.debug(
                        "metrics_recomputed",
                        extra={
                            "user_id": user_id,
                            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                        },
                    )
                if user_id not in self._pending:
                    return
        finally:
            self._inflight.pop(user_id, None)

    async def run_periodic(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            watched = sorted(self._watched, key=str)
            for user_id in watched:
                self.trigger(user_id)
            if watched:
                logger.info("metrics_refresh_tick", extra={"watched_users": len(watched)})
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def drain(self) -> None:
        tasks = list(self._inflight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


@lru_cache
def get_recompute_coordinator() -> RecomputeCoordinator:
    return RecomputeCoordinator(
        compute_live_metrics,
        interval_seconds=get_settings().metrics_refresh_interval_seconds,
    )
