"""Per-node timing for planning runs.

Nodes are decorated with ``@timed_node(name, type)``; while a
``collect_metrics()`` block is active each call appends a ``NodeMetrics``
entry, including calls that raise, so a run that aborts halfway still
reports where its time went::

    with collect_metrics() as metrics:
        items = await classifier.classify_segments_only(...)
    report = build_report(metrics)
"""

from __future__ import annotations

import contextvars
import functools
import inspect
import logging
import time
from typing import Any

from .errors import OperationCancelled
from .models import NodeMetrics

log = logging.getLogger(__name__)

_active_run: contextvars.ContextVar[list[NodeMetrics] | None] = (
    contextvars.ContextVar("_active_run", default=None)
)


class collect_metrics:
    """Collect ``NodeMetrics`` from every ``@timed_node`` call in the block."""

    def __enter__(self) -> list[NodeMetrics]:
        self._metrics: list[NodeMetrics] = []
        self._token = _active_run.set(self._metrics)
        return self._metrics

    def __exit__(self, *exc) -> None:
        _active_run.reset(self._token)


def _count_items(result: Any) -> int:
    if isinstance(result, bool):
        return 0
    if isinstance(result, int):
        return result
    if isinstance(result, (list, dict)):
        return len(result)
    return 0


class _NodeTimer:
    def __init__(self, name: str, node_type: str) -> None:
        self.name = name
        self.node_type = node_type
        self.result: Any = None

    def __enter__(self) -> "_NodeTimer":
        self._metrics = _active_run.get(None)
        self._t0 = time.monotonic_ns()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        elapsed = (time.monotonic_ns() - self._t0) // 1_000_000
        if exc_type is None:
            outcome = "ok"
        elif issubclass(exc_type, OperationCancelled):
            outcome = "cancelled"
        else:
            outcome = "failed"
        processed = _count_items(self.result)
        log.info("%s: %d ms (%s, %d items)", self.name, elapsed, outcome, processed)
        if self._metrics is not None:
            self._metrics.append(NodeMetrics(self.name, self.node_type, elapsed, processed, outcome))


def timed_node(name: str, node_type: str):
    """Time a sync or async node; ``node_type`` is ``"ai"`` or ``"programmatic"``.

    Item counts come from the return value: its length for lists and dicts,
    the value itself for integer counts.
    """

    def decorator(fn):
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                with _NodeTimer(name, node_type) as timer:
                    timer.result = await fn(*args, **kwargs)
                return timer.result

        else:

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                with _NodeTimer(name, node_type) as timer:
                    timer.result = fn(*args, **kwargs)
                return timer.result

        return wrapper

    return decorator


def build_report(metrics: list[NodeMetrics]) -> dict:
    nodes = [
        {
            "name": m.node_name,
            "type": m.node_type,
            "duration_ms": m.duration_ms,
            "items_processed": m.items_processed,
            "outcome": m.outcome,
        }
        for m in metrics
    ]
    return {
        "total_ms": sum(m.duration_ms for m in metrics),
        "ai_ms": sum(m.duration_ms for m in metrics if m.node_type == "ai"),
        "failed_nodes": [m.node_name for m in metrics if m.outcome != "ok"],
        "nodes": nodes,
    }
