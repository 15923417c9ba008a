import asyncio

import pytest

from visual_planner.errors import OperationCancelled
from visual_planner.models import (
    CandidateAsset,
    ClassifiedItem,
    GeneratedImage,
    KeywordSet,
    SearchStatus,
    StockVideo,
)
from visual_planner.search import cascade


class FakeSearcher:
    """Returns clips for whichever windows ``by_window`` lists."""

    def __init__(self, by_window=None, error=None):
        self.by_window = by_window or {}
        self.error = error
        self.calls = []

    async def search_assets(self, keywords, max_results, min_duration_seconds, max_duration_seconds):
        self.calls.append((keywords, max_results, min_duration_seconds, max_duration_seconds))
        if self.error is not None:
            raise self.error
        durations = self.by_window.get((min_duration_seconds, max_duration_seconds), [])
        return [CandidateAsset(d, f"https://cdn.test/{d}.mp4") for d in durations]


@pytest.mark.parametrize("target,window", [
    (2, (3, 7)),
    (3, (3, 8)),
    (5, (5, 10)),
    (8, (6, 16)),
    (15, (13, 23)),
    (20, (15, 35)),
    (30, (25, 45)),
])
def test_adaptive_duration_range(target, window):
    assert cascade.adaptive_duration_range(target) == window


def test_wide_duration_range():
    assert cascade.wide_duration_range(10) == (3, 40)
    assert cascade.wide_duration_range(25) == (15, 55)


def test_adaptive_hit_selects_best_candidate():
    searcher = FakeSearcher({(8, 18): [16, 11, 9]})
    outcome = asyncio.run(cascade.find_best_asset(["desert dunes"], 10, searcher))

    assert outcome.status is SearchStatus.SELECTED
    assert outcome.selected.duration_seconds == 11
    assert [s.asset.duration_seconds for s in outcome.ranked] == [11, 16, 9]
    assert outcome.window == (8, 18)
    assert not outcome.used_wide_window
    assert len(searcher.calls) == 1


def test_empty_adaptive_window_falls_back_to_wide_window():
    searcher = FakeSearcher({(3, 40): [30, 12]})
    outcome = asyncio.run(cascade.find_best_asset(["storm"], 10, searcher, max_results=4))

    assert outcome.used_wide_window
    assert outcome.window == (3, 40)
    assert outcome.selected.duration_seconds == 12
    assert [c[2:] for c in searcher.calls] == [(8, 18), (3, 40)]
    assert {c[1] for c in searcher.calls} == {4}


def test_no_results_anywhere():
    searcher = FakeSearcher()
    outcome = asyncio.run(cascade.find_best_asset(["storm"], 10, searcher))
    assert outcome.status is SearchStatus.NO_RESULTS
    assert outcome.selected is None
    assert outcome.used_wide_window


def test_cutoff_can_empty_the_ranking():
    searcher = FakeSearcher({(8, 18): [], (3, 40): [35]})
    outcome = asyncio.run(cascade.find_best_asset(["storm"], 10, searcher, exclude_beyond=2.0))
    assert outcome.status is SearchStatus.NO_RESULTS


def make_item(index, media, prompt="", duration=4.2):
    return ClassifiedItem(index=index, timestamp="", text="t", media=media, prompt=prompt,
                          estimated_duration_seconds=duration)


def test_search_stock_items_skips_images_and_prefers_keyword_sets():
    items = [
        make_item(0, StockVideo(), "ocean waves"),
        make_item(1, GeneratedImage(), "a pharaoh"),
        make_item(2, StockVideo(), "city lights"),
        make_item(3, StockVideo(), ""),
    ]
    keyword_sets = {2: KeywordSet(primary=["neon street"]), 0: KeywordSet()}
    searcher = FakeSearcher({(5, 10): [6, 5]})

    outcomes = asyncio.run(cascade.search_stock_items(items, searcher, keyword_sets=keyword_sets))

    assert set(outcomes) == {0, 2, 3}
    assert outcomes[0].status is SearchStatus.SELECTED
    assert outcomes[0].target_seconds == 5
    assert outcomes[0].selected.duration_seconds == 5
    assert outcomes[3].status is SearchStatus.NO_RESULTS
    assert outcomes[3].error
    searched = [c[0] for c in searcher.calls]
    assert ["ocean waves"] in searched
    assert KeywordSet(primary=["neon street"]) in searched


def test_search_failure_is_recorded_per_item():
    searcher = FakeSearcher(error=RuntimeError("provider down"))
    outcomes = asyncio.run(cascade.search_stock_items([make_item(0, StockVideo(), "q")], searcher))
    assert outcomes[0].status is SearchStatus.FAILED
    assert "provider down" in outcomes[0].error


def test_search_cancel():
    async def run():
        cancel = asyncio.Event()
        cancel.set()
        await cascade.search_stock_items([make_item(0, StockVideo(), "q")], FakeSearcher(), cancel=cancel)

    with pytest.raises(OperationCancelled):
        asyncio.run(run())


def test_cancel_mid_search_settles_every_item_before_raising():
    cancel = asyncio.Event()
    settled = []

    class StoppingSearcher:
        async def search_assets(self, keywords, max_results, min_duration_seconds, max_duration_seconds):
            try:
                if keywords == ["stop"]:
                    cancel.set()
                    return []
                await asyncio.sleep(1)
                return []
            finally:
                settled.append(keywords[0])

    items = [make_item(0, StockVideo(), "stop"), make_item(1, StockVideo(), "slow a"),
             make_item(2, StockVideo(), "slow b")]

    async def run():
        with pytest.raises(OperationCancelled):
            await cascade.search_stock_items(items, StoppingSearcher(), cancel=cancel)
        return sorted(settled)

    assert asyncio.run(run()) == ["slow a", "slow b", "stop"]
