"""Error taxonomy for the visual planner.

Everything raised by the LLM path derives from ``VisualPlannerError`` so the
HTTP layer and the batch cores can catch one base class.  External
cancellation is kept outside that hierarchy: catch-all handlers in the
batch cores must never absorb it.
"""

from __future__ import annotations


class VisualPlannerError(Exception):
    """Base class for recoverable and terminal planner errors."""


class TransientNetworkError(VisualPlannerError):
    """Connection reset, DNS failure or timeout talking to the chat endpoint."""


class RateLimitedError(VisualPlannerError):
    """HTTP 429, a 5xx status, or a quota-exceeded body."""

    def __init__(self, model: str, status_code: int, body: str = "") -> None:
        super().__init__(f"Model {model} rate limited or unavailable (HTTP {status_code})")
        self.model = model
        self.status_code = status_code
        self.body = body


class EmptyResponseError(VisualPlannerError):
    """The endpoint answered 2xx but carried no usable content."""


class MalformedResponseError(VisualPlannerError):
    """Model output could not be decoded into the expected structure."""


class ChatRequestError(VisualPlannerError):
    """Non-retryable HTTP failure (bad request, auth, unknown model...)."""

    def __init__(self, model: str, status_code: int, body: str = "") -> None:
        super().__init__(f"Chat request to {model} failed with HTTP {status_code}: {body[:200]}")
        self.model = model
        self.status_code = status_code
        self.body = body


class RetriesExhaustedError(VisualPlannerError):
    """All attempts against the chat endpoint failed."""

    def __init__(self, model: str, attempts: int) -> None:
        super().__init__(f"Chat request failed after {attempts} attempts (last model: {model})")
        self.model = model
        self.attempts = attempts


class PromptGenerationAborted(VisualPlannerError):
    """An item in a fail-fast prompt group exhausted its retries.

    Carries ``completed``/``total`` so callers can offer a resume pass.
    """

    def __init__(self, index: int, attempts: int, completed: int, total: int) -> None:
        super().__init__(
            f"Prompt generation failed for segment #{index} after {attempts} attempts. "
            f"Completed {completed}/{total}."
        )
        self.index = index
        self.attempts = attempts
        self.completed = completed
        self.total = total


class OperationCancelled(Exception):
    """The caller's cancellation signal fired."""
