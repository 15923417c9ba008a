"""Per-item prompt generation.

Unlike the batch classifier this runs one model call per item and is
fail-fast: once any item exhausts its retries no further items are started,
progress reporting stops, and the caller gets ``PromptGenerationAborted``
with the completed/total counts so it can run a resume pass later.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..cancellation import is_cancelled, raise_if_cancelled, sleep_cancellable
from ..config import PROMPT_CONCURRENCY, PROMPT_MAX_ATTEMPTS, PROMPT_RETRY_DELAY_SECONDS
from ..errors import OperationCancelled, PromptGenerationAborted
from ..llm.gateway import ChatGateway
from ..models import ClassifiedItem, GeneratedImage, MediaKind
from ..timing import timed_node
from . import era_library
from .classifier import notify
from .style import DEFAULT_STYLE, PromptStyle, style_directives

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_STOCK_TEMPLATE = (_PROMPTS_DIR / "stock_query_system.txt").read_text().strip()
_IMAGE_TEMPLATE = (_PROMPTS_DIR / "image_prompt_system.txt").read_text().strip()

PromptFn = Callable[[ClassifiedItem], Awaitable[str]]
ProgressFn = Callable[[int], Optional[Awaitable[None]]]


def clean_prompt(raw: str) -> str:
    return raw.strip().strip('"').strip()


async def generate_prompts_batch(
    items: list[ClassifiedItem],
    target_kind: MediaKind,
    generator: PromptFn,
    *,
    resume_only: bool = False,
    concurrency: int = PROMPT_CONCURRENCY,
    max_attempts: int = PROMPT_MAX_ATTEMPTS,
    retry_delay: float = PROMPT_RETRY_DELAY_SECONDS,
    on_progress: Optional[ProgressFn] = None,
    cancel: Optional[asyncio.Event] = None,
) -> int:
    """Fill ``prompt`` in place for every item of ``target_kind``.

    With ``resume_only`` only items whose prompt is still blank are touched.
    Returns the number of prompts written.
    """
    targets = [
        it for it in items
        if it.kind is target_kind and (not resume_only or not it.prompt.strip())
    ]
    total = len(targets)
    if not targets:
        return 0

    log.info("Prompt generation: %d %s items (resume=%s, concurrency=%d)",
             total, target_kind.value, resume_only, concurrency)

    semaphore = asyncio.Semaphore(concurrency)
    failed = asyncio.Event()
    failed_index: list[int] = []
    completed = 0

    async def run_item(item: ClassifiedItem) -> None:
        nonlocal completed
        async with semaphore:
            if failed.is_set():
                return
            raise_if_cancelled(cancel)

            prompt = ""
            for attempt in range(1, max_attempts + 1):
                try:
                    prompt = clean_prompt(await generator(item))
                except OperationCancelled:
                    raise
                except Exception as e:
                    log.warning("Prompt attempt %d/%d for segment #%d failed: %s",
                                attempt, max_attempts, item.index, e)
                    prompt = ""
                if prompt:
                    break
                if attempt < max_attempts:
                    try:
                        await sleep_cancellable(retry_delay, cancel, failed)
                    except OperationCancelled:
                        if is_cancelled(cancel):
                            raise
                        return

            if not prompt:
                if not failed.is_set():
                    failed_index.append(item.index)
                    failed.set()
                log.error("Prompt generation failed for segment #%d after %d attempts",
                          item.index, max_attempts)
                return

            item.prompt = prompt
            if isinstance(item.media, GeneratedImage):
                item.media = era_library.assign_era(item.media, prompt)
            completed += 1

        if not failed.is_set():
            await notify(on_progress, completed)

    outcomes = await asyncio.gather(*(run_item(it) for it in targets), return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, OperationCancelled):
            raise outcome
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome

    if failed_index:
        raise PromptGenerationAborted(failed_index[0], max_attempts, completed, total)

    log.info("Prompt generation: %d/%d %s prompts written", completed, total, target_kind.value)
    return completed


def _era_bias(style: PromptStyle) -> str:
    if style.default_era:
        return f"\nDEFAULT ERA: Bias toward the {style.default_era} era visual style.\n"
    return ""


def system_prompt_for(kind: MediaKind, topic: str, style: PromptStyle, index: int) -> str:
    if kind is MediaKind.STOCK_VIDEO:
        custom = ""
        if style.custom_instructions.strip():
            custom = f"\nUSER INSTRUCTIONS: {style.custom_instructions.strip()}\n"
        return _STOCK_TEMPLATE.format(topic=topic, era_bias=_era_bias(style), custom_instructions=custom)
    return _IMAGE_TEMPLATE.format(
        topic=topic,
        era_instructions=era_library.era_selection_instructions(),
        style_directives=style_directives(style, index),
    )


async def generate_prompt_for_type(
    text: str,
    kind: MediaKind,
    topic: str,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    index: int = 0,
    cancel: Optional[asyncio.Event] = None,
) -> str:
    """One search query (stock) or image prompt (image) for a single segment."""
    result = await gateway.send_chat(
        system_prompt_for(kind, topic, style, index),
        f"Script segment: {text}",
        temperature=0.7,
        max_tokens=300,
        cancel=cancel,
    )
    return clean_prompt(result.content)


@timed_node("generate_prompts", "ai")
async def generate_prompts_for_type(
    items: list[ClassifiedItem],
    kind: MediaKind,
    topic: str,
    *,
    gateway: ChatGateway,
    style: PromptStyle = DEFAULT_STYLE,
    resume_only: bool = False,
    on_progress: Optional[ProgressFn] = None,
    cancel: Optional[asyncio.Event] = None,
) -> int:
    async def generate(item: ClassifiedItem) -> str:
        return await generate_prompt_for_type(
            item.text, kind, topic, gateway=gateway, style=style, index=item.index, cancel=cancel)

    return await generate_prompts_batch(
        items, kind, generate, resume_only=resume_only, on_progress=on_progress, cancel=cancel)
