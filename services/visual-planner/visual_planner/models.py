"""Data models for the visual planning pipeline."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Optional, Union


class MediaKind(str, enum.Enum):
    STOCK_VIDEO = "BROLL"
    GENERATED_IMAGE = "IMAGE_GEN"


class Pool(str, enum.Enum):
    HIGH_REASONING = "high_reasoning"
    FAST = "fast"


@dataclass(frozen=True)
class TextOverlay:
    """On-screen text known ahead of classification (quote, key phrase...)."""

    type: str  # "quote" | "key_phrase" | "question" | ...
    text: str
    reference: Optional[str] = None


@dataclass(frozen=True)
class StockVideo:
    overlay: Optional[TextOverlay] = None

    @property
    def kind(self) -> MediaKind:
        return MediaKind.STOCK_VIDEO


@dataclass(frozen=True)
class GeneratedImage:
    era: Optional[str] = None  # filled by era_library.assign_era

    @property
    def kind(self) -> MediaKind:
        return MediaKind.GENERATED_IMAGE


MediaType = Union[StockVideo, GeneratedImage]


def media_for_kind(kind: MediaKind) -> MediaType:
    if kind is MediaKind.GENERATED_IMAGE:
        return GeneratedImage()
    return StockVideo()


@dataclass(frozen=True)
class Segment:
    """One timestamped unit of narration text."""

    timestamp: str
    text: str
    known_overlay: Optional[TextOverlay] = None


def estimate_duration(text: str) -> float:
    """Spoken duration heuristic: 2.5 words per second, never under 3 s."""
    return max(3.0, len(text.split()) / 2.5)


@dataclass
class ClassifiedItem:
    """Classification result for one segment.

    Prompt generation fills ``prompt`` (and may refine ``media``) in place.
    """

    index: int
    timestamp: str
    text: str
    media: MediaType = field(default_factory=StockVideo)
    prompt: str = ""
    reasoning: str = ""
    estimated_duration_seconds: float = 3.0

    @property
    def kind(self) -> MediaKind:
        return self.media.kind


@dataclass
class KeywordSet:
    """Layered search keywords for the stock-footage path, highest priority first."""

    primary: list[str] = field(default_factory=list)
    mood: list[str] = field(default_factory=list)
    contextual: list[str] = field(default_factory=list)
    action: list[str] = field(default_factory=list)
    fallback: list[str] = field(default_factory=list)
    suggested_category: str = ""
    detected_mood: str = ""

    @classmethod
    def from_flat(cls, keywords: list[str]) -> KeywordSet:
        """Spread a flat keyword list over the layers: 2 primary, 2 mood, 2 contextual, rest fallback."""
        return cls(
            primary=list(keywords[:2]),
            mood=list(keywords[2:4]),
            contextual=list(keywords[4:6]),
            fallback=list(keywords[6:]),
        )

    def all_by_priority(self) -> list[str]:
        return [*self.primary, *self.mood, *self.contextual, *self.action, *self.fallback]

    def tier(self, n: int) -> list[str]:
        if n == 1:
            return [*self.primary, *self.mood][:4]
        if n == 2:
            return [*self.contextual, *self.action][:4]
        if n == 3:
            return self.fallback[:3]
        return self.fallback[:2]

    @property
    def total_count(self) -> int:
        return len(self.all_by_priority())

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0


@dataclass
class KeywordResult:
    keyword_set: KeywordSet
    success: bool
    raw_response: str = ""
    tokens_used: int = 0
    error: Optional[str] = None
    processing_ms: int = 0


@dataclass
class DramaResult:
    """Pauses to insert after narration entries, keyed by entry index."""

    success: bool
    pause_durations: dict[int, float] = field(default_factory=dict)
    tokens_used: int = 0
    error: Optional[str] = None
    processing_ms: int = 0


@dataclass(frozen=True)
class Character:
    name: str
    description: str = ""


@dataclass(frozen=True)
class EraSpan:
    start_index: int
    era: str
    end_index: Optional[int] = None
    description: str = ""


@dataclass(frozen=True)
class MoodBeat:
    start_index: int
    mood: str
    end_index: Optional[int] = None
    description: str = ""
    visual_keywords: list[str] = field(default_factory=list)
    suggested_lighting: Optional[str] = None
    suggested_palette: Optional[str] = None
    visual_rationale: Optional[str] = None


@dataclass
class GlobalScriptContext:
    """Whole-script narrative context, built once and read-only afterwards."""

    topic: str = ""
    locations: list[str] = field(default_factory=list)
    characters: list[Character] = field(default_factory=list)
    era_timeline: list[EraSpan] = field(default_factory=list)
    mood_beats: list[MoodBeat] = field(default_factory=list)
    recurring_visuals: list[str] = field(default_factory=list)
    color_progression: str = ""

    def era_for(self, index: int) -> Optional[EraSpan]:
        """Last timeline entry whose start is at or before ``index``."""
        match = None
        for span in self.era_timeline:
            if span.start_index <= index:
                match = span
        return match

    def mood_for(self, index: int) -> Optional[MoodBeat]:
        match = None
        for beat in self.mood_beats:
            if beat.start_index <= index:
                match = beat
        return match


@dataclass
class ModelEntry:
    id: str
    pool: Pool
    cooldown_until: Optional[float] = None  # monotonic seconds


@dataclass(frozen=True)
class CandidateAsset:
    """A stock-footage search hit.  Only ``duration_seconds`` matters for scoring."""

    duration_seconds: int
    download_url: str
    id: str = ""
    provider: str = ""
    title: str = ""
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class ScoredAsset:
    asset: CandidateAsset
    score: int


class SearchStatus(str, enum.Enum):
    SELECTED = "selected"
    NO_RESULTS = "no_results"
    FAILED = "failed"


@dataclass
class SearchOutcome:
    status: SearchStatus
    target_seconds: int
    window: tuple[int, int] = (0, 0)
    selected: Optional[CandidateAsset] = None
    ranked: list[ScoredAsset] = field(default_factory=list)
    used_wide_window: bool = False
    error: Optional[str] = None


def target_seconds(estimated_duration: float) -> int:
    return int(math.ceil(estimated_duration))


@dataclass
class NodeMetrics:
    """Timing for one pipeline node."""

    node_name: str
    node_type: str  # "programmatic" | "ai"
    duration_ms: int = 0
    items_processed: int = 0
    outcome: str = "ok"  # "ok" | "failed" | "cancelled"


@dataclass
class PlanResult:
    """Complete output of one serialized planning run."""

    topic: str
    items: list[ClassifiedItem] = field(default_factory=list)
    context: Optional[GlobalScriptContext] = None
    report: dict = field(default_factory=dict)
