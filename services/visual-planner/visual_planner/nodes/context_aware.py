"""Context-aware prompt generation.

Pass 1 reads the whole script once and extracts the context that persists
across segments (locations, characters, era timeline, mood beats).  Pass 2
writes each prompt with that context plus a window of neighbouring
segments, dispatched through the fail-fast prompt core.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..cancellation import raise_if_cancelled
from ..config import CONTEXT_WINDOW_SIZE
from ..errors import MalformedResponseError, OperationCancelled, VisualPlannerError
from ..llm import repair
from ..llm.gateway import ChatGateway
from ..models import ClassifiedItem, GlobalScriptContext, MediaKind
from ..schemas import GlobalContextSchema
from ..timing import timed_node
from . import era_library
from .prompt_generator import ProgressFn, clean_prompt, generate_prompts_batch
from .style import DEFAULT_STYLE, LIGHTING, PromptStyle

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_GLOBAL_CONTEXT_SYSTEM = (_PROMPTS_DIR / "global_context_system.txt").read_text().strip()
_STOCK_TASK = (_PROMPTS_DIR / "contextual_stock_task.txt").read_text().strip()
_IMAGE_TASK_TEMPLATE = (_PROMPTS_DIR / "contextual_image_task.txt").read_text().strip()


def parse_global_context(raw: str, topic: str) -> GlobalScriptContext:
    data = repair.load_json(raw)
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Global context is not a JSON object: {raw[:200]!r}")
    try:
        return GlobalContextSchema.model_validate(data).to_context(topic)
    except ValidationError as e:
        raise MalformedResponseError(f"Global context does not match schema: {e.error_count()} errors") from e


@timed_node("extract_global_context", "ai")
async def extract_global_context(
    items: list[ClassifiedItem],
    topic: str,
    *,
    gateway: ChatGateway,
    cancel: Optional[asyncio.Event] = None,
) -> Optional[GlobalScriptContext]:
    """Whole-script context, or None when the model gave nothing usable."""
    if not items:
        return None

    script = "\n".join(f"[{it.index}] [{it.timestamp}] {it.text}" for it in items)
    user_prompt = f"TOPIC: {topic}\n\nFULL SCRIPT ({len(items)} segments):\n{script}"

    try:
        result = await gateway.send_chat(
            _GLOBAL_CONTEXT_SYSTEM, user_prompt, temperature=0.3, max_tokens=4000, cancel=cancel)
        context = parse_global_context(result.content, topic)
    except OperationCancelled:
        raise
    except MalformedResponseError as e:
        log.warning("Global context unusable -- continuing without context: %s", e)
        return None
    except VisualPlannerError:
        log.exception("Global context extraction failed -- continuing without context")
        return None

    log.info("Global context: %d locations, %d characters, %d eras, %d mood beats",
             len(context.locations), len(context.characters),
             len(context.era_timeline), len(context.mood_beats))
    return context


def build_contextual_prompt(
    item: ClassifiedItem,
    all_items: list[ClassifiedItem],
    context: GlobalScriptContext,
    topic: str,
    style: PromptStyle = DEFAULT_STYLE,
    window_size: int = CONTEXT_WINDOW_SIZE,
) -> str:
    lines = [
        f"TOPIC: {topic}",
        f"TOTAL SEGMENTS: {len(all_items)}",
        f"CURRENT SEGMENT INDEX: {item.index}",
        "",
    ]
    if context.locations:
        lines.append(f"PRIMARY LOCATIONS: {', '.join(context.locations)}")
    if context.characters:
        lines.append("CHARACTERS:")
        lines.extend(f"  - {c.name}: {c.description}" for c in context.characters)
    if context.recurring_visuals:
        lines.append(f"RECURRING VISUALS: {', '.join(context.recurring_visuals)}")
    if context.color_progression:
        lines.append(f"COLOR PROGRESSION: {context.color_progression}")
    lines.append("")

    era = context.era_for(item.index)
    if era is not None:
        lines.append(f"CURRENT ERA: {era.era}")
        if era.description:
            lines.append(f"ERA CONTEXT: {era.description}")
        era_instruction = f"set in the {era.era} era"
    else:
        lines.append(era_library.era_selection_instructions())
        era_instruction = "start with one era prefix from the list above"

    mood = context.mood_for(item.index)
    if mood is not None:
        lines.append(f"CURRENT MOOD: {mood.mood}: {mood.description}" if mood.description
                     else f"CURRENT MOOD: {mood.mood}")
        if mood.visual_keywords:
            lines.append(f"MOOD VISUALS: {', '.join(mood.visual_keywords)}")
        if mood.suggested_lighting:
            lines.append(f"SUGGESTED LIGHTING: {LIGHTING.get(mood.suggested_lighting, mood.suggested_lighting)}")
        if mood.suggested_palette:
            lines.append(f"SUGGESTED PALETTE: {mood.suggested_palette}")
        if mood.visual_rationale:
            lines.append(f"RATIONALE: {mood.visual_rationale}")
    lines.append("")

    by_index = {it.index: it for it in all_items}
    lines.append("SURROUNDING SEGMENTS:")
    for i in range(max(0, item.index - window_size), item.index + window_size + 1):
        neighbour = by_index.get(i)
        if neighbour is None:
            continue
        marker = ">>>" if i == item.index else "   "
        lines.append(f"  {marker} [{i}] [{neighbour.timestamp}] {neighbour.text}")
    lines.append("")

    if item.kind is MediaKind.STOCK_VIDEO:
        lines.append(_STOCK_TASK)
    else:
        lines.append(_IMAGE_TASK_TEMPLATE.format(
            composition=style.composition_for(item.index),
            era_instruction=era_instruction,
            lighting=style.lighting_suffix,
            style=style.style_suffix,
        ))
    if style.custom_instructions.strip():
        lines.append("")
        lines.append(f"USER INSTRUCTIONS: {style.custom_instructions.strip()}")
    return "\n".join(lines)


async def generate_prompt_with_context(
    item: ClassifiedItem,
    all_items: list[ClassifiedItem],
    topic: str,
    context: GlobalScriptContext,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    window_size: int = CONTEXT_WINDOW_SIZE,
    cancel: Optional[asyncio.Event] = None,
) -> str:
    raise_if_cancelled(cancel)
    result = await gateway.send_chat(
        build_contextual_prompt(item, all_items, context, topic, style, window_size),
        f"Generate prompt for segment {item.index}: {item.text}",
        temperature=0.7,
        max_tokens=500,
        cancel=cancel,
    )
    return clean_prompt(result.content)


@timed_node("generate_prompts_with_context", "ai")
async def generate_prompts_with_context(
    items: list[ClassifiedItem],
    kind: MediaKind,
    topic: str,
    context: GlobalScriptContext,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    window_size: int = CONTEXT_WINDOW_SIZE,
    resume_only: bool = False,
    on_progress: Optional[ProgressFn] = None,
    cancel: Optional[asyncio.Event] = None,
) -> int:
    async def generate(item: ClassifiedItem) -> str:
        return await generate_prompt_with_context(
            item, items, topic, context,
            gateway=gateway, style=style, window_size=window_size, cancel=cancel)

    return await generate_prompts_batch(
        items, kind, generate, resume_only=resume_only, on_progress=on_progress, cancel=cancel)
