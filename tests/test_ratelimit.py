"""Tests for the fixed-interval request gate."""

import asyncio

import pytest

from menureader.cancellation import CancellationToken
from menureader.exceptions import AnalysisCancelledError
from menureader.ratelimit import IntervalGate


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_first_call_passes_immediately():
    clock = FakeClock()
    gate = IntervalGate(0.3, clock=clock, sleep=clock.sleep)
    await gate.wait()
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_successive_calls_spaced():
    clock = FakeClock()
    gate = IntervalGate(0.3, clock=clock, sleep=clock.sleep)
    await gate.wait()
    await gate.wait()
    await gate.wait()
    assert clock.sleeps == [pytest.approx(0.3), pytest.approx(0.3)]


@pytest.mark.asyncio
async def test_no_wait_after_interval_elapsed():
    clock = FakeClock()
    gate = IntervalGate(0.3, clock=clock, sleep=clock.sleep)
    await gate.wait()
    clock.now += 1.0
    await gate.wait()
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_concurrent_callers_serialised():
    clock = FakeClock()
    gate = IntervalGate(0.3, clock=clock, sleep=clock.sleep)
    await asyncio.gather(*(gate.wait() for _ in range(4)))
    assert len(clock.sleeps) == 3


@pytest.mark.asyncio
async def test_cancelled_token_raises():
    token = CancellationToken()
    token.cancel()
    gate = IntervalGate(0.3)
    with pytest.raises(AnalysisCancelledError):
        await gate.wait(token)


@pytest.mark.asyncio
async def test_cancel_interrupts_sleep():
    token = CancellationToken()
    gate = IntervalGate(10.0)
    await gate.wait(token)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel()

    asyncio.ensure_future(cancel_soon())
    with pytest.raises(AnalysisCancelledError):
        await asyncio.wait_for(gate.wait(token), timeout=2.0)


def test_negative_interval_rejected():
    with pytest.raises(ValueError):
        IntervalGate(-1)
