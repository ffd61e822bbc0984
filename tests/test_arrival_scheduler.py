"""Scheduler tests.

Tick spacing and counts are checked against a fake clock; pool scaling,
backpressure and draining use short real-time runs.
"""

import asyncio
import time

import pytest

from arrival_scheduler import ArrivalScheduler, planned_ticks


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.now += max(delay, 0.0)
        await asyncio.sleep(0)


def test_planned_ticks_floor():
    assert planned_ticks(2, 5) == 10
    assert planned_ticks(0.1, 30) == 3
    assert planned_ticks(3, 2.5) == 7


@pytest.mark.parametrize("rate,duration", [(2, 5), (4, 10), (10, 3.05), (0.5, 9)])
@pytest.mark.asyncio
async def test_tick_count_and_spacing_with_fake_clock(rate, duration):
    clock = FakeClock()
    scheduler = ArrivalScheduler(rate, duration, 2, 4, pause=0, clock=clock, sleep=clock.sleep)
    ticks = []

    async def job(tick):
        ticks.append(tick)

    result = await scheduler.run(job)

    expected = planned_ticks(rate, duration)
    assert result.planned == expected
    assert result.dispatched == expected
    assert len(ticks) == expected
    ordered = sorted(ticks, key=lambda t: t.index)
    assert [t.index for t in ordered] == list(range(expected))
    for earlier, later in zip(ordered, ordered[1:]):
        assert later.dispatched_at - earlier.dispatched_at == pytest.approx(1.0 / rate, abs=1e-6)
    assert ordered[-1].scheduled_at < duration


def test_invalid_arguments_rejected():
    with pytest.raises(ValueError):
        ArrivalScheduler(0, 5)
    with pytest.raises(ValueError):
        ArrivalScheduler(1, 0)
    with pytest.raises(ValueError):
        ArrivalScheduler(1, 5, min_workers=3, max_workers=2)


@pytest.mark.asyncio
async def test_backpressure_delays_but_never_drops_ticks():
    scheduler = ArrivalScheduler(20, 0.5, 1, 2, pause=0)
    in_flight = 0
    peak = 0
    done = []

    async def job(tick):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.15)
        in_flight -= 1
        done.append(tick.index)

    result = await scheduler.run(job)

    assert result.dispatched == result.planned == 10
    assert sorted(done) == list(range(10))
    assert result.delayed > 0
    assert result.peak_workers == 2
    assert peak <= 2


@pytest.mark.asyncio
async def test_pool_scales_up_to_max_when_busy():
    scheduler = ArrivalScheduler(20, 0.4, 1, 4, pause=0)

    async def job(tick):
        await asyncio.sleep(0.3)

    result = await scheduler.run(job)
    assert result.peak_workers == 4
    assert result.dispatched == 8


@pytest.mark.asyncio
async def test_slow_job_does_not_block_following_ticks():
    scheduler = ArrivalScheduler(10, 0.5, 2, 4, pause=0)
    dispatched = {}

    async def job(tick):
        dispatched[tick.index] = tick.dispatched_at
        if tick.index == 0:
            await asyncio.sleep(0.6)

    result = await scheduler.run(job)
    assert result.dispatched == 5
    for index in range(1, 5):
        late_by = dispatched[index] - (dispatched[0] + index * 0.1)
        assert late_by < 0.08


@pytest.mark.asyncio
async def test_stop_prevents_new_ticks_and_drains_in_flight():
    scheduler = ArrivalScheduler(20, 2, 2, 4, pause=0)
    finished = []

    async def job(tick):
        if tick.index == 2:
            scheduler.stop()
        await asyncio.sleep(0.05)
        finished.append(tick.index)

    started = time.monotonic()
    result = await scheduler.run(job)

    assert result.dispatched == 3
    assert sorted(finished) == [0, 1, 2]
    assert time.monotonic() - started < 1.0


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_the_run(caplog):
    scheduler = ArrivalScheduler(50, 0.2, 1, 2, pause=0)
    seen = []

    async def job(tick):
        seen.append(tick.index)
        if tick.index == 1:
            raise RuntimeError("boom")

    result = await scheduler.run(job)
    assert result.dispatched == 10
    assert len(seen) == 10
    assert "Job for tick 1 failed" in caplog.text


@pytest.mark.asyncio
async def test_worker_pause_is_applied_after_each_cycle():
    clock = FakeClock()
    pauses = []

    async def sleep(delay):
        pauses.append(delay)
        await clock.sleep(delay)

    scheduler = ArrivalScheduler(1, 3, 1, 1, pause=0.1, clock=clock, sleep=sleep)

    async def job(tick):
        return None

    result = await scheduler.run(job)
    assert result.dispatched == 3
    assert pauses.count(0.1) == 3


@pytest.mark.asyncio
async def test_second_run_starts_fresh_after_stop():
    clock = FakeClock()
    scheduler = ArrivalScheduler(2, 5, 1, 3, pause=0, clock=clock, sleep=clock.sleep)

    async def stopping_job(tick):
        if tick.index == 2:
            scheduler.stop()

    first = await scheduler.run(stopping_job)
    assert first.dispatched < first.planned

    ticks = []

    async def job(tick):
        ticks.append(tick.index)

    second = await scheduler.run(job)
    assert second.dispatched == second.planned == 10
    assert sorted(ticks) == list(range(10))
    assert 1 <= second.peak_workers <= 3
