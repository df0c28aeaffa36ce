"""
Testes para o módulo streamfinder.core.signals.
"""

import asyncio
import threading

import pytest

from streamfinder.core.signals import OneShotSignal, SignalState


@pytest.mark.asyncio
async def test_fire_only_once():
    signal = OneShotSignal()
    assert signal.state is SignalState.OPEN
    assert signal.fire() is True
    assert signal.fire() is False
    assert signal.state is SignalState.CLOSED
    assert signal.is_set()


@pytest.mark.asyncio
async def test_wait_times_out_when_not_fired():
    signal = OneShotSignal()
    assert await signal.wait(0.05) is False
    assert signal.state is SignalState.OPEN


@pytest.mark.asyncio
async def test_wait_wakes_on_fire():
    signal = OneShotSignal()
    asyncio.get_running_loop().call_later(0.02, signal.fire)
    assert await signal.wait(1.0) is True


@pytest.mark.asyncio
async def test_wait_with_zero_timeout_returns_state():
    signal = OneShotSignal()
    assert await signal.wait(0) is False
    signal.fire()
    assert await signal.wait(0) is True


@pytest.mark.asyncio
async def test_concurrent_fire_from_threads_closes_once():
    signal = OneShotSignal()
    results = []

    def worker():
        results.append(signal.fire())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert await signal.wait(1.0) is True
    assert signal.state is SignalState.CLOSED
