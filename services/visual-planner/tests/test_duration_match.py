import pytest

from visual_planner.models import CandidateAsset
from visual_planner.search.duration_match import duration_match_score, rank_assets


@pytest.mark.parametrize("target,actual,expected", [
    (10, 10, 100),
    (10, 5, 0),
    (10, 9, 80),
    (10, 12, 94),
    (10, 13, 91),
    (10, 18, 75),
    (10, 20, 69),
    (10, 21, 50),
    (10, 30, 45),
    (20, 35, 60),
    (20, 39, 52),
])
def test_score_values(target, actual, expected):
    assert duration_match_score(target, actual) == expected


def test_score_is_bounded():
    for target in (1, 3, 7, 15, 40):
        for actual in range(0, 200, 3):
            assert 0 <= duration_match_score(target, actual) <= 100


def test_score_without_target_is_zero():
    assert duration_match_score(None, 10) == 0
    assert duration_match_score(0, 10) == 0


def clip(seconds):
    return CandidateAsset(duration_seconds=seconds, download_url=f"https://cdn.test/{seconds}.mp4")


def test_ranking_orders_by_score():
    ranked = rank_assets(10, [clip(5), clip(12), clip(30)])
    assert [(s.asset.duration_seconds, s.score) for s in ranked] == [(12, 94), (30, 45), (5, 0)]


def test_ranking_with_cutoff_drops_overlong_clips():
    ranked = rank_assets(10, [clip(5), clip(12), clip(30)], exclude_beyond=2.0)
    assert [s.asset.duration_seconds for s in ranked] == [12, 5]


def test_ties_keep_search_order():
    a = CandidateAsset(12, "https://cdn.test/a.mp4", id="a")
    b = CandidateAsset(12, "https://cdn.test/b.mp4", id="b")
    assert [s.asset.id for s in rank_assets(10, [a, b])] == ["a", "b"]
