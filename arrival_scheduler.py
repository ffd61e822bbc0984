"""Constant arrival-rate scheduler.

Ticks are due at ``start + i / rate`` regardless of how long earlier jobs take.
Each tick is handed to an idle worker task; the pool grows from ``min_workers``
up to ``max_workers`` and, once saturated, the next tick waits for a worker
instead of being dropped.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

LOGGER = logging.getLogger("order_load.scheduler")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Tick:
    index: int
    scheduled_at: float
    dispatched_at: float


@dataclass(frozen=True)
class SchedulerResult:
    planned: int
    dispatched: int
    delayed: int
    peak_workers: int
    elapsed: float


Job = Callable[[Tick], Awaitable[None]]


def planned_ticks(rate: float, duration: float) -> int:
    """Number of ticks a run of ``duration`` seconds at ``rate`` per second dispatches."""

    # epsilon keeps e.g. 0.1 * 30 from flooring to 2
    return int(math.floor(rate * duration + 1e-9))


class ArrivalScheduler:
    """Dispatch ``floor(rate * duration)`` ticks spaced ``1 / rate`` seconds apart."""

    def __init__(
        self,
        rate: float,
        duration: float,
        min_workers: int = 1,
        max_workers: int = 10,
        *,
        pause: float = 0.1,
        clock: Clock = time.monotonic,
        sleep: Optional[Sleep] = None,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be a positive number")
        if duration <= 0:
            raise ValueError("duration must be a positive number")
        if not 1 <= min_workers <= max_workers:
            raise ValueError("workers must satisfy 1 <= min_workers <= max_workers")
        if pause < 0:
            raise ValueError("pause cannot be negative")

        self.rate = rate
        self.duration = duration
        self.interval = 1.0 / rate
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.pause = pause
        self._clock = clock
        self._sleep = sleep

        self._stop_event = asyncio.Event()
        self._condition: Optional[asyncio.Condition] = None
        self._queue: Optional["asyncio.Queue[Optional[Tick]]"] = None
        self._workers: List["asyncio.Task[None]"] = []
        self._idle = 0
        self._peak = 0

    def stop(self) -> None:
        """Stop issuing ticks; work already dispatched still runs to completion."""

        if not self._stop_event.is_set():
            LOGGER.info("Stop requested, no further ticks will be dispatched")
        self._stop_event.set()

    async def run(self, job: Job) -> SchedulerResult:
        """Dispatch every planned tick to ``job``, then wait for all workers to finish.

        Each call is a fresh run: a stop request, the pool and the peak from an
        earlier run do not carry over.
        """

        self._stop_event.clear()
        self._workers = []
        self._idle = 0
        self._peak = 0
        self._condition = asyncio.Condition()
        self._queue = asyncio.Queue()
        planned = planned_ticks(self.rate, self.duration)
        dispatched = 0
        delayed = 0

        for _ in range(self.min_workers):
            self._spawn_worker(job)

        start = self._clock()
        LOGGER.debug("Scheduling %d ticks every %.3fs", planned, self.interval)
        try:
            for index in range(planned):
                scheduled_at = start + index * self.interval
                await self._wait_until(scheduled_at)
                if self._stop_event.is_set():
                    break

                if await self._reserve_worker(job):
                    delayed += 1
                if self._stop_event.is_set():
                    self._release_reservation()
                    break

                self._queue.put_nowait(Tick(index, scheduled_at, self._clock()))
                dispatched += 1
        finally:
            await self._drain()

        elapsed = self._clock() - start
        LOGGER.debug("Dispatched %d/%d ticks (%d delayed) in %.2fs", dispatched, planned, delayed, elapsed)
        return SchedulerResult(
            planned=planned,
            dispatched=dispatched,
            delayed=delayed,
            peak_workers=self._peak,
            elapsed=elapsed,
        )

    async def _wait_until(self, deadline: float) -> None:
        delay = deadline - self._clock()
        if delay <= 0:
            return
        if self._sleep is not None:
            await self._sleep(delay)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _pause(self) -> None:
        if self._sleep is not None:
            await self._sleep(self.pause)
        else:
            await asyncio.sleep(self.pause)

    async def _reserve_worker(self, job: Job) -> bool:
        """Claim an idle worker, growing the pool if allowed. Returns True if the tick had to wait."""

        assert self._condition is not None
        waited = False
        async with self._condition:
            while self._idle == 0:
                if len(self._workers) < self.max_workers:
                    self._spawn_worker(job)
                    LOGGER.debug("Scaled worker pool up to %d", len(self._workers))
                    continue
                if not waited:
                    LOGGER.debug("All %d workers busy, delaying tick", self.max_workers)
                waited = True
                await self._condition.wait()
            self._idle -= 1
        return waited

    def _release_reservation(self) -> None:
        self._idle += 1

    def _spawn_worker(self, job: Job) -> None:
        self._idle += 1
        self._workers.append(asyncio.create_task(self._worker(job)))
        self._peak = max(self._peak, len(self._workers))

    async def _worker(self, job: Job) -> None:
        assert self._queue is not None and self._condition is not None
        while True:
            tick = await self._queue.get()
            if tick is None:
                return
            try:
                await job(tick)
            except Exception:
                LOGGER.exception("Job for tick %d failed", tick.index)
            if self.pause:
                await self._pause()
            async with self._condition:
                self._idle += 1
                self._condition.notify()

    async def _drain(self) -> None:
        assert self._queue is not None
        for _ in self._workers:
            self._queue.put_nowait(None)
        await asyncio.gather(*self._workers)
        self._workers = []
