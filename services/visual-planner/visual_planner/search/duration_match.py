"""Duration-match scoring for stock footage candidates."""

from __future__ import annotations

from typing import Optional

from ..models import CandidateAsset, ScoredAsset


def duration_match_score(target: Optional[int], actual: int) -> int:
    """Score 0-100 for how well a clip of ``actual`` seconds covers ``target``.

    Clips shorter than the narration are penalised hard (20 points per
    missing second).  Longer clips lose little for a few spare seconds and
    bottom out once they run past twice the target.
    """
    if target is None or target <= 0:
        return 0
    if actual == target:
        return 100

    if actual < target:
        score = 100 - 20 * (target - actual)
    else:
        excess = actual - target
        if excess <= 3:
            score = 100 - 3 * excess
        elif excess <= 10:
            score = 90 - 3 * (excess - 3)
        elif actual > 2 * target:
            score = 50 - (actual - 2 * target) // 2
        else:
            score = max(50, 70 - 2 * (excess - 10))

    return max(0, min(100, score))


def rank_assets(
    target: int,
    candidates: list[CandidateAsset],
    exclude_beyond: Optional[float] = None,
) -> list[ScoredAsset]:
    """Candidates sorted best-first; ties keep their search order.

    With ``exclude_beyond`` set, clips longer than ``exclude_beyond * target``
    are dropped before ranking.
    """
    if exclude_beyond is not None and target > 0:
        candidates = [c for c in candidates if c.duration_seconds <= exclude_beyond * target]
    scored = [ScoredAsset(c, duration_match_score(target, c.duration_seconds)) for c in candidates]
    return sorted(scored, key=lambda s: s.score, reverse=True)
