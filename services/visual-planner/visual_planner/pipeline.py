"""Planning pipeline.

Runs the planning phases strictly one after another, since classification
and prompt generation must not overlap on the same item set:

1. classify-only (batched)
2. global context extraction (optional)
3. image prompts, with context when available
4. stock footage search queries

Per-phase timing is collected into the result's report.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import CONTEXT_WINDOW_SIZE
from .llm.gateway import ChatGateway
from .models import MediaKind, PlanResult, Segment
from .nodes import classifier, context_aware, prompt_generator
from .nodes.style import DEFAULT_STYLE, PromptStyle
from .timing import build_report, collect_metrics

log = logging.getLogger(__name__)


async def run_visual_plan(
    segments: list[Segment],
    topic: str,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    use_context: bool = True,
    window_size: int = CONTEXT_WINDOW_SIZE,
    cancel: Optional[asyncio.Event] = None,
) -> PlanResult:
    """Classify every segment and write its prompt.

    Raises ``PromptGenerationAborted`` if a prompt phase fails; items
    classified so far are discarded along with the run.
    """
    context = None
    with collect_metrics() as metrics:
        items = await classifier.classify_segments_only(
            segments, topic, gateway=gateway, style=style, cancel=cancel)

        if use_context:
            context = await context_aware.extract_global_context(
                items, topic, gateway=gateway, cancel=cancel)
            if context is None:
                log.warning("Continuing without global context")

        for kind in (MediaKind.GENERATED_IMAGE, MediaKind.STOCK_VIDEO):
            if context is not None:
                await context_aware.generate_prompts_with_context(
                    items, kind, topic, context,
                    gateway=gateway, style=style, window_size=window_size, cancel=cancel)
            else:
                await prompt_generator.generate_prompts_for_type(
                    items, kind, topic, gateway=gateway, style=style, cancel=cancel)

    report = build_report(metrics)
    images = sum(1 for it in items if it.kind is MediaKind.GENERATED_IMAGE)
    report["items"] = {"total": len(items), "image": images, "stock": len(items) - images}
    log.info("Plan complete: %d items (%d image, %d stock) in %d ms",
             len(items), images, len(items) - images, report["total_ms"])
    return PlanResult(topic=topic, items=items, context=context, report=report)
