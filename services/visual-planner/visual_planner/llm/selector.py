"""Session-scoped "current model" handle used by the chat gateway."""

from __future__ import annotations

import logging
from typing import Callable

log = logging.getLogger(__name__)


class ModelSelector:
    def __init__(self, high_reasoning: list[str], fast: list[str], default_model: str) -> None:
        available = list(high_reasoning)
        available.extend(m for m in dict.fromkeys(fast) if m not in available)
        self._available = available or [default_model]
        self._current = high_reasoning[0] if high_reasoning else default_model
        self._observers: list[Callable[[str], None]] = []

    @property
    def current_model(self) -> str:
        return self._current

    @property
    def available_models(self) -> list[str]:
        return list(self._available)

    def subscribe(self, callback: Callable[[str], None]) -> None:
        self._observers.append(callback)

    def select_model(self, model_id: str) -> bool:
        """Make ``model_id`` current.  Returns True if the value changed."""
        if not model_id or not model_id.strip() or model_id == self._current:
            return False
        log.info("Model changed: %s -> %s", self._current, model_id)
        self._current = model_id
        for callback in self._observers:
            callback(model_id)
        return True
