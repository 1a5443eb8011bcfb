import asyncio

import pytest

from app.core.scheduler import PeriodicJob


@pytest.mark.asyncio
async def test_job_runs_repeatedly_until_stopped():
    calls = 0

    async def tick():
        nonlocal calls
        calls += 1

    job = PeriodicJob("tick", tick, interval=0.01)
    job.start()
    await asyncio.sleep(0.1)
    await job.stop()

    assert calls >= 2
    assert job.runs == calls
    assert not job.running


@pytest.mark.asyncio
async def test_initial_delay_postpones_first_run():
    calls = 0

    async def tick():
        nonlocal calls
        calls += 1

    job = PeriodicJob("delayed", tick, interval=0.01, initial_delay=5)
    job.start()
    await asyncio.sleep(0.05)
    await job.stop()

    assert calls == 0


@pytest.mark.asyncio
async def test_failures_do_not_stop_the_loop():
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        raise RuntimeError("upstream unavailable")

    job = PeriodicJob("flaky", flaky, interval=0.01)
    job.start()
    await asyncio.sleep(0.1)
    await job.stop()

    assert calls >= 2


@pytest.mark.asyncio
async def test_stop_waits_for_inflight_run():
    finished = False
    started = asyncio.Event()

    async def slow():
        nonlocal finished
        started.set()
        await asyncio.sleep(0.05)
        finished = True

    job = PeriodicJob("slow", slow, interval=10)
    job.start()
    await asyncio.wait_for(started.wait(), timeout=1)
    await job.stop(timeout=1)

    assert finished is True


@pytest.mark.asyncio
async def test_stop_cancels_after_timeout():
    async def hang():
        await asyncio.sleep(10)

    job = PeriodicJob("hang", hang, interval=10)
    job.start()
    await asyncio.sleep(0.01)
    await job.stop(timeout=0.05)

    assert not job.running


@pytest.mark.asyncio
async def test_run_once_returns_result():
    async def compute():
        return 42

    job = PeriodicJob("once", compute, interval=1)
    assert await job.run_once() == 42
    assert job.runs == 1


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicJob("bad", lambda: None, interval=0)
