"""
tests.test_debounce

Trailing-edge debouncing of bursts.
"""

from __future__ import annotations

import asyncio

import pytest

from nova_session.session.debounce import Debouncer


class Recorder:
    def __init__(self) -> None:
        self.values: list[str] = []

    async def __call__(self, value: str) -> None:
        self.values.append(value)


@pytest.mark.asyncio
async def test_burst_produces_single_action_with_last_value() -> None:
    recorder = Recorder()
    debouncer: Debouncer[str] = Debouncer(recorder, window=0.05)

    for value in ("a", "b", "c", "d"):
        debouncer.schedule(value)
        await asyncio.sleep(0.01)

    await debouncer.wait_idle()
    assert recorder.values == ["d"]


@pytest.mark.asyncio
async def test_quiet_period_separates_bursts() -> None:
    recorder = Recorder()
    debouncer: Debouncer[str] = Debouncer(recorder, window=0.02)

    debouncer.schedule("first")
    await debouncer.wait_idle()
    debouncer.schedule("second")
    debouncer.schedule("third")
    await debouncer.wait_idle()

    assert recorder.values == ["first", "third"]


@pytest.mark.asyncio
async def test_cancel_drops_pending_action() -> None:
    recorder = Recorder()
    debouncer: Debouncer[str] = Debouncer(recorder, window=0.02)

    debouncer.schedule("x")
    assert debouncer.pending
    assert debouncer.cancel()
    assert not debouncer.pending
    assert not debouncer.cancel()

    await asyncio.sleep(0.05)
    assert recorder.values == []


@pytest.mark.asyncio
async def test_failing_action_does_not_break_later_schedules() -> None:
    calls: list[str] = []

    async def action(value: str) -> None:
        calls.append(value)
        if value == "boom":
            raise RuntimeError("boom")

    debouncer: Debouncer[str] = Debouncer(action, window=0.01)
    debouncer.schedule("boom")
    await debouncer.wait_idle()
    debouncer.schedule("fine")
    await debouncer.wait_idle()

    assert calls == ["boom", "fine"]
