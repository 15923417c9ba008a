import asyncio

import pytest

from visual_planner.cancellation import (
    is_cancelled,
    raise_if_cancelled,
    sleep_cancellable,
    wait_cancellable,
)
from visual_planner.errors import OperationCancelled, VisualPlannerError


def test_operation_cancelled_is_not_a_planner_error():
    assert not issubclass(OperationCancelled, VisualPlannerError)


def test_is_cancelled_ignores_missing_signals():
    event = asyncio.Event()
    assert not is_cancelled(None, event)
    event.set()
    assert is_cancelled(None, event)
    with pytest.raises(OperationCancelled):
        raise_if_cancelled(event)


def test_wait_cancellable_returns_result():
    async def run():
        async def work():
            await asyncio.sleep(0)
            return 7

        return await wait_cancellable(work(), asyncio.Event(), None)

    assert asyncio.run(run()) == 7


def test_wait_cancellable_without_signals():
    async def run():
        async def work():
            return "done"

        return await wait_cancellable(work())

    assert asyncio.run(run()) == "done"


def test_signal_interrupts_pending_work():
    finished = []

    async def run():
        cancel = asyncio.Event()

        async def slow():
            await asyncio.sleep(5)
            finished.append(True)

        async def trigger():
            await asyncio.sleep(0.01)
            cancel.set()

        asyncio.ensure_future(trigger())
        await wait_cancellable(slow(), cancel)

    with pytest.raises(OperationCancelled):
        asyncio.run(run())
    assert finished == []


def test_work_errors_propagate():
    async def run():
        async def broken():
            raise ValueError("bad")

        await wait_cancellable(broken(), asyncio.Event())

    with pytest.raises(ValueError):
        asyncio.run(run())


def test_sleep_cancellable():
    async def run():
        signal = asyncio.Event()
        await sleep_cancellable(0, signal)
        await sleep_cancellable(0.001, signal)
        signal.set()
        await sleep_cancellable(0, signal)

    with pytest.raises(OperationCancelled):
        asyncio.run(run())
