"""Chat gateway: the single point of network I/O towards the model endpoint.

Talks to an OpenAI-compatible ``/v1/chat/completions`` endpoint over a
shared ``httpx.AsyncClient`` and applies the retry policy:

* 429, 5xx or a quota-exceeded body: wait ``2**attempt`` s, rotate model
* any other non-2xx status: raise immediately
* 2xx with empty content: wait 1 s
* timeout / transport failure: wait ``attempt`` s
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from ..cancellation import raise_if_cancelled, wait_cancellable
from ..config import CHAT_MAX_ATTEMPTS
from ..errors import (
    ChatRequestError,
    EmptyResponseError,
    RateLimitedError,
    RetriesExhaustedError,
    TransientNetworkError,
    VisualPlannerError,
)
from ..models import Pool
from .router import ModelRouter
from .selector import ModelSelector

log = logging.getLogger(__name__)

_COMPLETIONS_PATH = "/v1/chat/completions"
_QUOTA_MARKER = "quota"


@dataclass(frozen=True)
class ChatResult:
    content: str
    tokens_used: int
    model: str


def is_rate_limited(status_code: int, body: str) -> bool:
    return status_code == 429 or status_code >= 500 or _QUOTA_MARKER in body.lower()


class ChatGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        selector: ModelSelector,
        *,
        router: ModelRouter | None = None,
        pool: Pool = Pool.HIGH_REASONING,
        max_attempts: int = CHAT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.selector = selector
        self.router = router
        self.pool = pool
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def send_chat(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        max_tokens: int = 300,
        cancel: asyncio.Event | None = None,
    ) -> ChatResult:
        """Run one chat exchange and return the first non-empty answer."""
        model = self.selector.current_model
        last_error: VisualPlannerError | None = None

        for attempt in range(1, self.max_attempts + 1):
            raise_if_cancelled(cancel)
            model = self.selector.current_model
            has_next = attempt < self.max_attempts
            payload = {
                "model": model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": temperature,
                "max_tokens": max_tokens,
            }

            try:
                resp = await wait_cancellable(self.client.post(_COMPLETIONS_PATH, json=payload), cancel)
            except httpx.TimeoutException as e:
                log.warning("Timeout calling %s (attempt %d/%d)", model, attempt, self.max_attempts)
                last_error = TransientNetworkError(f"Timeout calling {model}: {e}")
                if has_next:
                    await self._wait(attempt, cancel)
                continue
            except httpx.TransportError as e:
                log.warning("Network error calling %s (attempt %d/%d): %s",
                            model, attempt, self.max_attempts, e)
                last_error = TransientNetworkError(f"Network error calling {model}: {e}")
                if has_next:
                    await self._wait(attempt, cancel)
                continue

            if not resp.is_success:
                body = resp.text
                if is_rate_limited(resp.status_code, body):
                    log.warning("Model %s rate limited (HTTP %d, attempt %d/%d)",
                                model, resp.status_code, attempt, self.max_attempts)
                    last_error = RateLimitedError(model, resp.status_code, body)
                    self._rotate(model, f"HTTP {resp.status_code}")
                    if has_next:
                        await self._wait(2 ** attempt, cancel)
                    continue
                log.error("Chat request to %s failed: HTTP %d %s", model, resp.status_code, body[:500])
                raise ChatRequestError(model, resp.status_code, body)

            content, tokens = _read_completion(resp)
            if not content.strip():
                log.warning("Empty response from %s (attempt %d/%d)", model, attempt, self.max_attempts)
                last_error = EmptyResponseError(f"Empty response from {model}")
                if has_next:
                    await self._wait(1, cancel)
                continue

            log.info("Chat response from %s: %d chars, %d tokens", model, len(content), tokens)
            return ChatResult(content, tokens, model)

        raise RetriesExhaustedError(model, self.max_attempts) from last_error

    async def generate_content(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 300,
        cancel: asyncio.Event | None = None,
    ) -> str | None:
        """Convenience wrapper returning only the text, or None on failure."""
        try:
            result = await self.send_chat(system_prompt, user_prompt, temperature=temperature,
                                          max_tokens=max_tokens, cancel=cancel)
        except VisualPlannerError:
            log.exception("Content generation failed")
            return None
        return result.content

    def _rotate(self, model: str, reason: str) -> None:
        if self.router is None:
            return
        self.router.report_failure(model, reason)
        self.selector.select_model(self.router.get_model(self.pool))

    async def _wait(self, seconds: float, cancel: asyncio.Event | None) -> None:
        await wait_cancellable(self._sleep(seconds), cancel)


def _read_completion(resp: httpx.Response) -> tuple[str, int]:
    """Extract ``(content, total_tokens)``; an undecodable envelope reads as empty."""
    try:
        data = resp.json()
    except ValueError:
        log.warning("Chat endpoint returned a non-JSON body: %.200s", resp.text)
        return "", 0
    if not isinstance(data, dict):
        return "", 0

    content = ""
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            content = message["content"]

    tokens = 0
    usage = data.get("usage")
    if isinstance(usage, dict):
        try:
            tokens = int(usage.get("total_tokens") or 0)
        except (TypeError, ValueError, OverflowError):
            log.warning("Unreadable token count in chat envelope: %r", usage.get("total_tokens"))
    return content, tokens
