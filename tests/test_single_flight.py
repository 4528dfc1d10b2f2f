import asyncio

import pytest

from onebox.application.sync.single_flight import SingleFlight


class _GatedJob:
    def __init__(self):
        self.gate = asyncio.Event()
        self.started = 0
        self.active = 0
        self.max_active = 0

    async def __call__(self):
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_triggers_during_a_run_coalesce_into_one_more_run():
    job = _GatedJob()
    runner = SingleFlight(job)

    assert runner.trigger() is True
    await asyncio.sleep(0)
    assert runner.trigger() is False
    assert runner.trigger() is False
    assert runner.trigger() is False

    job.gate.set()
    await runner.wait_idle()

    assert job.started == 2
    assert job.max_active == 1


@pytest.mark.asyncio
async def test_trigger_after_idle_starts_fresh_run():
    job = _GatedJob()
    job.gate.set()
    runner = SingleFlight(job)

    runner.trigger()
    await runner.wait_idle()
    runner.trigger()
    await runner.wait_idle()

    assert job.started == 2


@pytest.mark.asyncio
async def test_closed_runner_finishes_current_run_and_refuses_more():
    job = _GatedJob()
    runner = SingleFlight(job)
    runner.trigger()
    await asyncio.sleep(0)
    runner.trigger()

    runner.close()
    job.gate.set()
    await runner.wait_idle()

    assert job.started == 1
    assert runner.trigger() is False


@pytest.mark.asyncio
async def test_failing_job_does_not_wedge_runner():
    calls = []

    async def job():
        calls.append(1)
        raise RuntimeError("boom")

    runner = SingleFlight(job)
    runner.trigger()
    await runner.wait_idle()
    runner.trigger()
    await runner.wait_idle()

    assert len(calls) == 2
    assert not runner.running
