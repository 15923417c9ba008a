"""Cooperative cancellation helpers.

Entry points accept an optional ``asyncio.Event`` as the caller's cancel
signal.  ``wait_cancellable`` races an awaitable against one or more such
events and raises ``OperationCancelled`` as soon as any of them is set,
cancelling the pending work.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .errors import OperationCancelled

T = TypeVar("T")


def is_cancelled(*signals: asyncio.Event | None) -> bool:
    return any(s is not None and s.is_set() for s in signals)


def raise_if_cancelled(*signals: asyncio.Event | None) -> None:
    if is_cancelled(*signals):
        raise OperationCancelled("Operation cancelled")


async def wait_cancellable(aw: Awaitable[T], *signals: asyncio.Event | None) -> T:
    """Await ``aw`` unless one of ``signals`` fires first."""
    active = [s for s in signals if s is not None]
    if not active:
        return await aw

    task = asyncio.ensure_future(aw)
    if is_cancelled(*active):
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelled("Operation cancelled")

    waiters = [asyncio.ensure_future(s.wait()) for s in active]
    try:
        await asyncio.wait([task, *waiters], return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        for w in waiters:
            w.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)

    if task.done():
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise OperationCancelled("Operation cancelled")


async def sleep_cancellable(seconds: float, *signals: asyncio.Event | None) -> None:
    if seconds <= 0:
        raise_if_cancelled(*signals)
        return
    await wait_cancellable(asyncio.sleep(seconds), *signals)
