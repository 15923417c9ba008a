"""Cascading stock footage search.

For each narration unit: search an adaptive duration window around the
spoken duration, widen to a forced wide window when that finds nothing,
then rank whatever came back by duration fit and pick the best.  The asset
search itself is an external collaborator behind ``AssetSearcher``, so the
service endpoints stop at ranking (``/assets/rank``); callers that own a
searcher (a stock provider client) use ``find_best_asset`` for one unit or
``search_stock_items`` for a classified plan.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol, Union

from ..cancellation import raise_if_cancelled, wait_cancellable
from ..config import SEARCH_CONCURRENCY
from ..errors import OperationCancelled
from ..models import (
    CandidateAsset,
    ClassifiedItem,
    KeywordSet,
    MediaKind,
    SearchOutcome,
    SearchStatus,
    target_seconds,
)
from ..timing import timed_node
from .duration_match import rank_assets

log = logging.getLogger(__name__)

Keywords = Union[list[str], KeywordSet]

DEFAULT_MAX_RESULTS = 6
MIN_CLIP_SECONDS = 3


class AssetSearcher(Protocol):
    async def search_assets(
        self,
        keywords: Keywords,
        max_results: int,
        min_duration_seconds: int,
        max_duration_seconds: int,
    ) -> list[CandidateAsset]:
        ...


def adaptive_duration_range(target: int) -> tuple[int, int]:
    """Search window around a spoken duration; wider for longer narration."""
    if target <= 5:
        return max(MIN_CLIP_SECONDS, target), target + 5
    if target <= 15:
        return max(MIN_CLIP_SECONDS, target - 2), target + 8
    return max(MIN_CLIP_SECONDS, target - 5), target + 15


def wide_duration_range(target: int) -> tuple[int, int]:
    return max(MIN_CLIP_SECONDS, target - 10), target + 30


async def find_best_asset(
    keywords: Keywords,
    target: int,
    searcher: AssetSearcher,
    *,
    max_results: int = DEFAULT_MAX_RESULTS,
    range_fn: Callable[[int], tuple[int, int]] = adaptive_duration_range,
    exclude_beyond: Optional[float] = None,
    cancel: Optional[asyncio.Event] = None,
) -> SearchOutcome:
    window = range_fn(target)
    candidates = await wait_cancellable(
        searcher.search_assets(keywords, max_results, window[0], window[1]), cancel)

    used_wide = False
    if not candidates:
        window = wide_duration_range(target)
        used_wide = True
        log.info("No results in adaptive window for %ds target, retrying wide window %s", target, window)
        candidates = await wait_cancellable(
            searcher.search_assets(keywords, max_results, window[0], window[1]), cancel)

    ranked = rank_assets(target, candidates, exclude_beyond)
    if not ranked:
        return SearchOutcome(SearchStatus.NO_RESULTS, target, window, used_wide_window=used_wide)

    return SearchOutcome(
        SearchStatus.SELECTED,
        target,
        window,
        selected=ranked[0].asset,
        ranked=ranked,
        used_wide_window=used_wide,
    )


def _keywords_for(item: ClassifiedItem, keyword_sets: Optional[dict[int, KeywordSet]]) -> Keywords:
    keyword_set = (keyword_sets or {}).get(item.index)
    if keyword_set is not None and not keyword_set.is_empty:
        return keyword_set
    return [item.prompt] if item.prompt.strip() else []


@timed_node("search_stock_items", "programmatic")
async def search_stock_items(
    items: list[ClassifiedItem],
    searcher: AssetSearcher,
    *,
    keyword_sets: Optional[dict[int, KeywordSet]] = None,
    concurrency: int = SEARCH_CONCURRENCY,
    max_results: int = DEFAULT_MAX_RESULTS,
    exclude_beyond: Optional[float] = None,
    cancel: Optional[asyncio.Event] = None,
) -> dict[int, SearchOutcome]:
    """Run the cascade for every stock-footage item, keyed by item index.

    A search that raises is recorded as a ``FAILED`` outcome for that item.
    """
    stock = [it for it in items if it.kind is MediaKind.STOCK_VIDEO]
    semaphore = asyncio.Semaphore(concurrency)
    outcomes: dict[int, SearchOutcome] = {}

    async def run(item: ClassifiedItem) -> None:
        target = target_seconds(item.estimated_duration_seconds)
        keywords = _keywords_for(item, keyword_sets)
        if not keywords:
            outcomes[item.index] = SearchOutcome(SearchStatus.NO_RESULTS, target,
                                                 error="No keywords to search with")
            return
        async with semaphore:
            raise_if_cancelled(cancel)
            try:
                outcomes[item.index] = await find_best_asset(
                    keywords, target, searcher,
                    max_results=max_results, exclude_beyond=exclude_beyond, cancel=cancel)
            except OperationCancelled:
                raise
            except Exception as e:
                log.exception("Asset search failed for segment #%d", item.index)
                outcomes[item.index] = SearchOutcome(SearchStatus.FAILED, target, error=str(e))

    results = await asyncio.gather(*(run(it) for it in stock), return_exceptions=True)
    for result in results:
        if isinstance(result, OperationCancelled):
            raise result
    for result in results:
        if isinstance(result, BaseException):
            raise result

    selected = sum(1 for o in outcomes.values() if o.status is SearchStatus.SELECTED)
    log.info("Asset search: %d/%d stock items matched", selected, len(stock))
    return outcomes
