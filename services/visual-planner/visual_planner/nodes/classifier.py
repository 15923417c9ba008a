"""Batch classifier.

Splits the script into fixed-size batches, sends each batch to the model as
one numbered list, and maps the answers back onto global segment indices.
Batches run concurrently under a semaphore.  A segment the model skipped, or
a batch whose call failed outright, gets a deterministic fallback item, so
the result always holds exactly one item per input segment, sorted by index.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from ..config import (
    BATCH_CONCURRENCY,
    CLASSIFY_ONLY_BATCH_SIZE,
    CLASSIFY_WITH_PROMPTS_BATCH_SIZE,
    MAX_BATCH_TOKENS,
)
from ..cancellation import raise_if_cancelled
from ..errors import OperationCancelled
from ..llm import repair
from ..llm.gateway import ChatGateway
from ..models import (
    ClassifiedItem,
    GeneratedImage,
    MediaKind,
    Segment,
    StockVideo,
    estimate_duration,
    media_for_kind,
)
from ..schemas import ClassificationEntry, ClassificationEnvelope, classification_list
from ..timing import timed_node
from . import era_library
from .style import COMPOSITIONS, DEFAULT_STYLE, PromptStyle

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_WITH_PROMPTS_TEMPLATE = (_PROMPTS_DIR / "classify_prompts_system.txt").read_text().strip()
_CLASSIFY_ONLY_TEMPLATE = (_PROMPTS_DIR / "classify_only_system.txt").read_text().strip()

DEFAULT_FALLBACK_PROMPT = "atmospheric cinematic footage"

_PROMPT_TOKENS_PER_ITEM = 200
_LABEL_TOKENS_PER_ITEM = 150

# "[3] IMAGE_GEN: prompt" / "3. BROLL - query" lines in free-text answers
_TEXT_LINE = re.compile(
    r"^\[?(\d+)\]?[.:)\s-]*\s*(BROLL|B-ROLL|IMAGE_GEN|IMAGE)\b[\s:,-]*(.*)$",
    re.IGNORECASE,
)

ProgressCallback = Callable[[list[ClassifiedItem]], Union[Awaitable[None], None]]


async def notify(callback: Optional[Callable[..., Any]], *args) -> None:
    """Invoke a sync or async progress callback."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def fallback_item(index: int, segment: Segment, prompt: str) -> ClassifiedItem:
    return ClassifiedItem(
        index=index,
        timestamp=segment.timestamp,
        text=segment.text,
        media=StockVideo(),
        prompt=prompt,
        estimated_duration_seconds=estimate_duration(segment.text),
    )


def overlay_item(index: int, segment: Segment) -> ClassifiedItem:
    return ClassifiedItem(
        index=index,
        timestamp=segment.timestamp,
        text=segment.text,
        media=StockVideo(overlay=segment.known_overlay),
        prompt="",
        estimated_duration_seconds=estimate_duration(segment.text),
    )


def build_batch_prompt(topic: str, batch: list[tuple[int, Segment]]) -> str:
    """Numbered segment list sent as the user message for one batch."""
    lines = [f"Topic: {topic}", "", "SEGMENTS:"]
    lines.extend(f"[{local}] {seg.timestamp} {seg.text}" for local, seg in batch)
    return "\n".join(lines)


def _strict_entries(data: Any) -> Optional[list[ClassificationEntry]]:
    if not isinstance(data, list):
        return None
    try:
        return classification_list.validate_python(data)
    except ValidationError:
        return None


def _flat_entries(data: Any) -> Optional[list[ClassificationEntry]]:
    """Salvage valid entries one by one, also from a wrapping object."""
    if isinstance(data, dict):
        try:
            entries = ClassificationEnvelope.model_validate(data).segments
            return entries or None
        except ValidationError:
            data = next((v for v in data.values() if isinstance(v, list)), None)
    if not isinstance(data, list):
        return None

    entries: list[ClassificationEntry] = []
    for raw in data:
        try:
            entries.append(ClassificationEntry.model_validate(raw))
        except ValidationError:
            continue
    return entries or None


def _text_entries(text: str) -> list[ClassificationEntry]:
    entries = []
    for fragment in text.splitlines():
        m = _TEXT_LINE.match(fragment.strip())
        if m:
            label = "IMAGE_GEN" if m.group(2).upper().startswith("IMAGE") else "BROLL"
            prompt = m.group(3).strip().strip("\"'")
            entries.append(ClassificationEntry(index=int(m.group(1)), media_type=label, prompt=prompt))
    return entries


def parse_classification(raw: str) -> list[ClassificationEntry]:
    result = repair.decode(raw, _strict_entries, _flat_entries, _text_entries)
    if result.stage != "strict":
        log.warning("Classification response decoded via %s fallback (%d entries)",
                    result.stage, len(result.value))
    return result.value


def _item_from_entry(
    index: int,
    segment: Segment,
    entry: ClassificationEntry,
    include_prompts: bool,
    fallback_prompt: str,
) -> ClassifiedItem:
    media = media_for_kind(entry.kind)
    prompt = entry.prompt.strip() if include_prompts else ""
    if include_prompts and not prompt:
        prompt = fallback_prompt
    if include_prompts and isinstance(media, GeneratedImage):
        media = era_library.assign_era(media, prompt)
    return ClassifiedItem(
        index=index,
        timestamp=segment.timestamp,
        text=segment.text,
        media=media,
        prompt=prompt,
        reasoning=entry.reasoning,
        estimated_duration_seconds=estimate_duration(segment.text),
    )


async def classify_segments_batch(
    segments: list[Segment],
    *,
    gateway: ChatGateway,
    system_prompt: str,
    topic: str,
    batch_size: int,
    include_prompts: bool,
    fallback_prompt: str,
    concurrency: int = BATCH_CONCURRENCY,
    on_batch_complete: Optional[ProgressCallback] = None,
    cancel: Optional[asyncio.Event] = None,
) -> list[ClassifiedItem]:
    """Classify every segment; total over its input.

    Only the caller's ``cancel`` signal can make this raise.
    """
    if not segments:
        return []

    t0 = time.monotonic()
    semaphore = asyncio.Semaphore(concurrency)
    results_lock = asyncio.Lock()
    results: list[ClassifiedItem] = []
    total_batches = -(-len(segments) // batch_size)
    per_item = _PROMPT_TOKENS_PER_ITEM if include_prompts else _LABEL_TOKENS_PER_ITEM
    temperature = 0.4 if include_prompts else 0.3

    log.info("Classifier: %d segments in %d batches of %d (prompts=%s)",
             len(segments), total_batches, batch_size, include_prompts)

    async def run_batch(batch_start: int) -> None:
        batch = segments[batch_start:batch_start + batch_size]
        async with semaphore:
            raise_if_cancelled(cancel)
            batch_items: dict[int, ClassifiedItem] = {}
            to_model: list[tuple[int, Segment]] = []
            for local, seg in enumerate(batch):
                if seg.known_overlay is not None:
                    batch_items[batch_start + local] = overlay_item(batch_start + local, seg)
                else:
                    to_model.append((local, seg))

            if to_model:
                try:
                    result = await gateway.send_chat(
                        system_prompt,
                        build_batch_prompt(topic, to_model),
                        temperature=temperature,
                        max_tokens=min(len(batch) * per_item, MAX_BATCH_TOKENS),
                        cancel=cancel,
                    )
                    entries = parse_classification(result.content)
                except OperationCancelled:
                    raise
                except Exception:
                    log.exception("Classifier batch starting at %d failed -- using fallbacks", batch_start)
                    entries = []

                pending = {local for local, _ in to_model}
                for entry in entries:
                    if entry.index not in pending:
                        continue
                    pending.discard(entry.index)
                    global_idx = batch_start + entry.index
                    batch_items[global_idx] = _item_from_entry(
                        global_idx, batch[entry.index], entry, include_prompts, fallback_prompt)

                for local in sorted(pending):
                    batch_items[batch_start + local] = fallback_item(
                        batch_start + local, batch[local], fallback_prompt)
                if pending:
                    log.warning("Classifier batch starting at %d: %d/%d segments filled with fallback",
                                batch_start, len(pending), len(to_model))

        async with results_lock:
            results.extend(batch_items.values())
            snapshot = sorted(results, key=lambda it: it.index)
        await notify(on_batch_complete, snapshot)

    outcomes = await asyncio.gather(
        *(run_batch(start) for start in range(0, len(segments), batch_size)),
        return_exceptions=True,
    )
    for outcome in outcomes:
        if isinstance(outcome, OperationCancelled):
            raise outcome
        if isinstance(outcome, BaseException):
            log.error("Classifier batch task crashed: %r", outcome)

    seen = {item.index for item in results}
    for idx, seg in enumerate(segments):
        if idx not in seen:
            results.append(fallback_item(idx, seg, fallback_prompt))
    results.sort(key=lambda it: it.index)

    images = sum(1 for it in results if it.kind is MediaKind.GENERATED_IMAGE)
    log.info("Classifier: %d stock / %d image in %d ms",
             len(results) - images, images, int((time.monotonic() - t0) * 1000))
    return results


def _era_bias(style: PromptStyle) -> str:
    if style.default_era:
        return (f"\nDEFAULT ERA CONTEXT: Unless a segment clearly belongs to a different era, "
                f"default to the {style.default_era} era.\n")
    return ""


def classify_with_prompts_system_prompt(style: PromptStyle) -> str:
    custom = ""
    if style.custom_instructions.strip():
        custom = f"\nUSER CUSTOM INSTRUCTIONS (PRIORITY):\n{style.custom_instructions.strip()}\n"
    return _WITH_PROMPTS_TEMPLATE.format(
        era_bias=_era_bias(style),
        era_instructions=era_library.era_selection_instructions(),
        composition=COMPOSITIONS.get(style.composition, "cinematic shot"),
        lighting=style.lighting_suffix,
        style=style.style_suffix,
        custom_instructions=custom,
    )


def classify_only_system_prompt(style: PromptStyle) -> str:
    return _CLASSIFY_ONLY_TEMPLATE.format(era_bias=_era_bias(style))


@timed_node("classify_and_prompt", "ai")
async def classify_and_generate_prompts(
    segments: list[Segment],
    topic: str,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    on_batch_complete: Optional[ProgressCallback] = None,
    cancel: Optional[asyncio.Event] = None,
) -> list[ClassifiedItem]:
    """Classify segments and write a prompt for each in the same call."""
    return await classify_segments_batch(
        segments,
        gateway=gateway,
        system_prompt=classify_with_prompts_system_prompt(style),
        topic=topic,
        batch_size=CLASSIFY_WITH_PROMPTS_BATCH_SIZE,
        include_prompts=True,
        fallback_prompt=DEFAULT_FALLBACK_PROMPT,
        on_batch_complete=on_batch_complete,
        cancel=cancel,
    )


@timed_node("classify_only", "ai")
async def classify_segments_only(
    segments: list[Segment],
    topic: str,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    on_batch_complete: Optional[ProgressCallback] = None,
    cancel: Optional[asyncio.Event] = None,
) -> list[ClassifiedItem]:
    """Label segments only; prompts are generated in a later phase."""
    return await classify_segments_batch(
        segments,
        gateway=gateway,
        system_prompt=classify_only_system_prompt(style),
        topic=topic,
        batch_size=CLASSIFY_ONLY_BATCH_SIZE,
        include_prompts=False,
        fallback_prompt="",
        on_batch_complete=on_batch_complete,
        cancel=cancel,
    )
