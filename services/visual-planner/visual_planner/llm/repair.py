"""Best-effort decoder for model output.

Models wrap JSON in markdown fences, leave trailing commas, emit a stray
``-`` before a closing bracket, or stop mid-array when they hit the token
limit.  The repair rules below are fixed:

1. strip a leading ```` ```json ```` / ```` ``` ```` and a trailing ```` ``` ````
2. ``-`` directly before ``}`` / ``]`` is dropped
3. ``,`` directly before ``}`` / ``]`` is dropped
4. text opening with ``[`` but not closing with ``]`` is cut after the last
   ``}`` and closed with ``]``

``decode`` then runs the caller's strict parser, the caller's flat-list
parser, and finally a free-text fallback.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

_STRAY_DASH_OBJ = re.compile(r"-\s*}")
_STRAY_DASH_ARR = re.compile(r"-\s*]")
_TRAILING_COMMA_OBJ = re.compile(r",\s*}")
_TRAILING_COMMA_ARR = re.compile(r",\s*]")
_QUOTED = re.compile(r'"([^"]+)"')
_FRAGMENT_SPLIT = re.compile(r"[,\n;]")

MAX_PHRASES = 6


def strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def repair_json(text: str) -> str:
    text = _STRAY_DASH_OBJ.sub("}", text)
    text = _STRAY_DASH_ARR.sub("]", text)
    text = _TRAILING_COMMA_OBJ.sub("}", text)
    text = _TRAILING_COMMA_ARR.sub("]", text)

    if text.startswith("[") and not text.endswith("]"):
        last_brace = text.rfind("}")
        if last_brace > 0:
            text = text[:last_brace + 1] + "]"
    return text


def clean_json_response(raw: str) -> str:
    return repair_json(strip_fences(raw))


def load_json(raw: str) -> Any | None:
    """Clean and decode; None when the text still is not valid JSON."""
    if not raw or not raw.strip():
        return None
    try:
        return json.loads(clean_json_response(raw))
    except json.JSONDecodeError:
        return None


def _phrase_ok(phrase: str) -> bool:
    return 2 < len(phrase) < 50


def split_fragments(text: str) -> list[str]:
    """Split on comma / newline / semicolon, trimming brackets and quotes."""
    fragments = (f.strip().strip("[]\"' ").strip() for f in _FRAGMENT_SPLIT.split(text))
    return [f for f in fragments if f]


def extract_phrases(text: str, limit: int = MAX_PHRASES) -> list[str]:
    """Free-text fallback: quoted substrings first, then split fragments."""
    quoted = [m.strip() for m in _QUOTED.findall(text)]
    quoted = [q for q in quoted if _phrase_ok(q)]
    if quoted:
        return quoted[:limit]
    return [f for f in split_fragments(text) if _phrase_ok(f)][:limit]


@dataclass(frozen=True)
class DecodeResult(Generic[T]):
    value: T
    stage: str  # "strict" | "flat" | "text"


def decode(
    raw: str,
    strict: Callable[[Any], Optional[T]],
    flat: Callable[[Any], Optional[T]],
    fallback: Callable[[str], T],
) -> DecodeResult[T]:
    """Run the decoding cascade.

    ``strict`` and ``flat`` receive the decoded JSON value (or None when the
    text is not JSON at all) and return None to pass.  ``fallback`` receives
    the fence-stripped text and must always produce a value.
    """
    data = load_json(raw)
    if data is not None:
        value = strict(data)
        if value is not None:
            return DecodeResult(value, "strict")
        value = flat(data)
        if value is not None:
            return DecodeResult(value, "flat")
    log.debug("Structured parse failed, using free-text fallback: %.200s", raw)
    return DecodeResult(fallback(strip_fences(raw)), "text")
