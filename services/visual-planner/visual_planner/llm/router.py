"""Model router: round-robin over model pools with cooldown failover.

Each pool keeps its own cursor.  A model reported as failed is parked until
``now + cooldown_seconds``; expiry is checked lazily the next time the pool
is asked for a model.  When every model in a pool is parked the router
degrades to the pool's first entry instead of blocking.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from ..config import COOLDOWN_SECONDS
from ..models import ModelEntry, Pool

log = logging.getLogger(__name__)


class ModelRouter:
    def __init__(
        self,
        high_reasoning: list[str],
        fast: list[str],
        default_model: str,
        *,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pools: dict[Pool, list[str]] = {
            Pool.HIGH_REASONING: list(high_reasoning),
            Pool.FAST: list(fast),
        }
        self._cursors: dict[Pool, int] = {pool: 0 for pool in Pool}
        self._pool_locks: dict[Pool, threading.Lock] = {pool: threading.Lock() for pool in Pool}
        self._cooldowns: dict[str, float] = {}
        self._cooldown_lock = threading.Lock()
        self._observers: list[Callable[[str], None]] = []
        self.default_model = default_model
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

    def subscribe(self, callback: Callable[[str], None]) -> None:
        """Register a callback receiving "model switched" messages."""
        self._observers.append(callback)

    def is_on_cooldown(self, model_id: str) -> bool:
        with self._cooldown_lock:
            until = self._cooldowns.get(model_id)
            if until is None:
                return False
            if self._clock() >= until:
                del self._cooldowns[model_id]
                return False
            return True

    def get_model(self, pool: Pool) -> str:
        models = self._pools[pool]
        if not models:
            return self.default_model

        with self._pool_locks[pool]:
            for _ in range(len(models)):
                candidate = models[self._cursors[pool]]
                self._cursors[pool] = (self._cursors[pool] + 1) % len(models)
                if not self.is_on_cooldown(candidate):
                    return candidate

        log.warning("All %s models on cooldown -- degrading to %s", pool.value, models[0])
        return models[0]

    def report_failure(self, model_id: str, reason: str = "Rate limit hit") -> None:
        with self._cooldown_lock:
            self._cooldowns[model_id] = self._clock() + self.cooldown_seconds

        for pool, models in self._pools.items():
            if not models:
                continue
            with self._pool_locks[pool]:
                if models[self._cursors[pool]] == model_id:
                    self._cursors[pool] = (self._cursors[pool] + 1) % len(models)

        message = f"Rotated model from {model_id} due to: {reason}"
        log.warning("%s", message)
        for callback in self._observers:
            callback(message)

    def entries(self, pool: Pool) -> list[ModelEntry]:
        with self._cooldown_lock:
            cooldowns = dict(self._cooldowns)
        return [ModelEntry(m, pool, cooldowns.get(m)) for m in self._pools[pool]]
