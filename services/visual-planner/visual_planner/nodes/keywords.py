"""Layered keyword extraction for the stock-footage path.

The model is asked for five keyword layers per sentence.  Answers that do
not match the layered schema fall back to a flat keyword list spread over
the layers, and answers that are not JSON at all fall back to phrases
pulled out of the raw text.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from ..errors import OperationCancelled, VisualPlannerError
from ..llm import repair
from ..llm.gateway import ChatGateway
from ..models import KeywordResult, KeywordSet
from ..schemas import (
    LayeredKeywords,
    flat_keyword_list,
    flat_keyword_map,
    layered_keyword_map,
)
from ..timing import timed_node

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_SYSTEM_PROMPT = (_PROMPTS_DIR / "keyword_system.txt").read_text().strip()

_BATCH_TOKENS_PER_SENTENCE = 200
_MAX_BATCH_TOKENS = 6000


def _strict_layered(data: Any) -> Optional[KeywordSet]:
    if not isinstance(data, dict):
        return None
    try:
        keyword_set = LayeredKeywords.model_validate(data).to_keyword_set()
    except ValidationError:
        return None
    return None if keyword_set.is_empty else keyword_set


def _flat_list(data: Any) -> Optional[KeywordSet]:
    if isinstance(data, dict):
        data = data.get("keywords")
    try:
        keywords = flat_keyword_list.validate_python(data)
    except ValidationError:
        return None
    return KeywordSet.from_flat(keywords) if keywords else None


def _from_text(text: str) -> KeywordSet:
    return KeywordSet.from_flat(repair.extract_phrases(text))


@timed_node("extract_keywords", "ai")
async def extract_keywords(
    text: str,
    mood: Optional[str] = None,
    *,
    gateway: ChatGateway,
    cancel: Optional[asyncio.Event] = None,
) -> KeywordResult:
    """Layered keywords for one segment.  Never raises except on cancel."""
    t0 = time.monotonic()
    user_prompt = f"Mood/Style: {mood}\n\nSegment: {text}" if mood else f"Segment: {text}"

    try:
        result = await gateway.send_chat(
            _SYSTEM_PROMPT, user_prompt, temperature=0.3, max_tokens=300, cancel=cancel)
    except OperationCancelled:
        raise
    except VisualPlannerError as e:
        log.exception("Keyword extraction failed")
        return KeywordResult(KeywordSet(), False, error=str(e),
                             processing_ms=int((time.monotonic() - t0) * 1000))

    decoded = repair.decode(result.content, _strict_layered, _flat_list, _from_text)
    keyword_set = decoded.value
    elapsed = int((time.monotonic() - t0) * 1000)
    log.info("Extracted %d keywords via %s parse in %d ms (mood=%s)",
             keyword_set.total_count, decoded.stage, elapsed, mood or "Auto")
    return KeywordResult(
        keyword_set=keyword_set,
        success=not keyword_set.is_empty,
        raw_response=result.content,
        tokens_used=result.tokens_used,
        error=None if not keyword_set.is_empty else "No keywords found in response",
        processing_ms=elapsed,
    )


def _parse_batch(raw: str) -> dict[int, KeywordSet]:
    data = repair.load_json(raw)
    if not isinstance(data, dict):
        return {}

    try:
        layered = layered_keyword_map.validate_python(data)
        return {int(k): v.to_keyword_set() for k, v in layered.items() if k.strip().isdigit()}
    except ValidationError:
        log.warning("Layered batch parse failed, trying flat format")

    try:
        flat = flat_keyword_map.validate_python(data)
    except ValidationError as e:
        log.warning("Both batch keyword parse attempts failed: %s", e.error_count())
        return {}
    return {int(k): KeywordSet.from_flat(v) for k, v in flat.items() if k.strip().isdigit()}


@timed_node("extract_keyword_sets", "ai")
async def extract_keyword_sets(
    sentences: list[tuple[int, str]],
    mood: Optional[str] = None,
    *,
    gateway: ChatGateway,
    cancel: Optional[asyncio.Event] = None,
) -> dict[int, KeywordSet]:
    """Layered keywords for many sentences in one call, keyed by sentence id.

    Every id gets an entry; ids the model skipped get an empty set.
    """
    if not sentences:
        return {}

    lines = []
    if mood:
        lines += [f"Mood/Style for ALL sentences: {mood}", ""]
    lines += [
        "Extract B-Roll keywords for each sentence below.",
        "Return a JSON object where each key is the sentence ID.",
        "Each value has primaryKeywords, moodKeywords, contextualKeywords, actionKeywords, fallbackKeywords arrays.",
        "Also include suggestedCategory and detectedMood strings.",
        "",
        "SENTENCES:",
    ]
    lines += [f"[{sid}]: {text}" for sid, text in sentences]

    results: dict[int, KeywordSet] = {}
    try:
        result = await gateway.send_chat(
            _SYSTEM_PROMPT,
            "\n".join(lines),
            temperature=0.3,
            max_tokens=min(len(sentences) * _BATCH_TOKENS_PER_SENTENCE, _MAX_BATCH_TOKENS),
            cancel=cancel,
        )
        results = _parse_batch(result.content)
    except OperationCancelled:
        raise
    except VisualPlannerError:
        log.exception("Batch keyword extraction failed for %d sentences", len(sentences))

    wanted = {sid for sid, _ in sentences}
    results = {sid: ks for sid, ks in results.items() if sid in wanted}
    log.info("Batch extracted layered keywords for %d/%d sentences", len(results), len(sentences))
    for sid in wanted:
        results.setdefault(sid, KeywordSet())
    return results
