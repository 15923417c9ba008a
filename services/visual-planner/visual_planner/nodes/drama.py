"""Drama pause detection.

One call over the whole script picks the entries that close a paragraph or
a chapter and should be followed by a moment of silence.  The result only
carries timings; applying them to the audio track is left to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional

from ..errors import MalformedResponseError, OperationCancelled, VisualPlannerError
from ..llm import repair
from ..llm.gateway import ChatGateway
from ..models import DramaResult
from ..timing import timed_node

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_SYSTEM_PROMPT = (_PROMPTS_DIR / "drama_system.txt").read_text().strip()


def _pause_index(key: str) -> Optional[int]:
    try:
        return int(key.strip())
    except ValueError:
        return None


def _pause_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_pauses(raw: str) -> dict[int, float]:
    """``pauseDurations`` from a model answer; unreadable entries are skipped."""
    data = repair.load_json(raw)
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Drama response is not a JSON object: {raw[:200]!r}")

    pauses = data.get("pauseDurations")
    if not isinstance(pauses, dict):
        return {}

    result: dict[int, float] = {}
    for key, value in pauses.items():
        index, seconds = _pause_index(key), _pause_seconds(value)
        if index is None or seconds is None:
            log.debug("Skipping pause entry %r=%r", key, value)
            continue
        result[index] = seconds
    return result


@timed_node("detect_drama", "ai")
async def detect_drama(
    entries: list[tuple[int, str]],
    *,
    gateway: ChatGateway,
    cancel: Optional[asyncio.Event] = None,
) -> DramaResult:
    """Pause durations after selected entries.  Never raises except on cancel."""
    t0 = time.monotonic()
    if not entries:
        return DramaResult(False, error="No entries provided for drama detection")

    script = "\n".join(f"[{index}]: {text}" for index, text in entries)
    user_prompt = (
        "Analyze these script entries for drama pauses:\n\n"
        f"{script}\n\n"
        "Return JSON with pauseDurations."
    )

    try:
        result = await gateway.send_chat(
            _SYSTEM_PROMPT, user_prompt, temperature=0.3, max_tokens=1500, cancel=cancel)
        pauses = parse_pauses(result.content)
    except OperationCancelled:
        raise
    except MalformedResponseError as e:
        log.error("Drama response parsing failed: %s", e)
        return DramaResult(False, error=f"Failed to parse drama response: {e}",
                           processing_ms=int((time.monotonic() - t0) * 1000))
    except VisualPlannerError as e:
        log.exception("Drama detection failed")
        return DramaResult(False, error=f"Drama detection failed: {e}",
                           processing_ms=int((time.monotonic() - t0) * 1000))

    elapsed = int((time.monotonic() - t0) * 1000)
    log.info("Drama detection complete: %d pauses, %d tokens, %d ms",
             len(pauses), result.tokens_used, elapsed)
    return DramaResult(True, pauses, tokens_used=result.tokens_used, processing_ms=elapsed)
