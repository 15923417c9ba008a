"""Pydantic schemas for structured model output.

These describe the JSON the prompts ask for.  Keys are camelCase on the
wire; unknown keys are ignored and everything optional defaults to empty so
that partially-filled answers still validate.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .models import (
    Character,
    EraSpan,
    GlobalScriptContext,
    KeywordSet,
    MediaKind,
    MoodBeat,
)


class _Lenient(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class ClassificationEntry(_Lenient):
    index: int
    media_type: str = Field("", alias="mediaType")
    prompt: str = ""
    reasoning: str = ""

    @property
    def kind(self) -> MediaKind:
        label = self.media_type.strip().upper().replace("-", "_").replace(" ", "_")
        if label in ("IMAGE_GEN", "IMAGE", "IMAGE_GENERATION", "GENERATED_IMAGE", "AI_IMAGE"):
            return MediaKind.GENERATED_IMAGE
        return MediaKind.STOCK_VIDEO


class ClassificationEnvelope(_Lenient):
    segments: list[ClassificationEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("segments", "items", "results", "classifications"),
    )


classification_list = TypeAdapter(list[ClassificationEntry])


class LayeredKeywords(_Lenient):
    primary_keywords: list[str] = Field(default_factory=list, alias="primaryKeywords")
    mood_keywords: list[str] = Field(default_factory=list, alias="moodKeywords")
    contextual_keywords: list[str] = Field(default_factory=list, alias="contextualKeywords")
    action_keywords: list[str] = Field(default_factory=list, alias="actionKeywords")
    fallback_keywords: list[str] = Field(default_factory=list, alias="fallbackKeywords")
    suggested_category: str = Field("", alias="suggestedCategory")
    detected_mood: str = Field("", alias="detectedMood")

    def to_keyword_set(self) -> KeywordSet:
        return KeywordSet(
            primary=self.primary_keywords,
            mood=self.mood_keywords,
            contextual=self.contextual_keywords,
            action=self.action_keywords,
            fallback=self.fallback_keywords,
            suggested_category=self.suggested_category or "",
            detected_mood=self.detected_mood or "",
        )


layered_keyword_map = TypeAdapter(dict[str, LayeredKeywords])
flat_keyword_list = TypeAdapter(list[str])
flat_keyword_map = TypeAdapter(dict[str, list[str]])


class CharacterSchema(_Lenient):
    name: str
    description: str = ""


class EraSchema(_Lenient):
    start_segment: int = Field(validation_alias=AliasChoices("startSegment", "startIndex", "start_segment"))
    end_segment: Optional[int] = Field(None, validation_alias=AliasChoices("endSegment", "endIndex", "end_segment"))
    era: str
    description: str = ""


class MoodBeatSchema(_Lenient):
    start_segment: int = Field(validation_alias=AliasChoices("startSegment", "startIndex", "start_segment"))
    end_segment: Optional[int] = Field(None, validation_alias=AliasChoices("endSegment", "endIndex", "end_segment"))
    mood: str
    description: str = ""
    visual_keywords: list[str] = Field(default_factory=list, alias="visualKeywords")
    suggested_lighting: Optional[str] = Field(None, alias="suggestedLighting")
    suggested_palette: Optional[str] = Field(None, alias="suggestedPalette")
    visual_rationale: Optional[str] = Field(None, alias="visualRationale")


class GlobalContextSchema(_Lenient):
    primary_locations: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("primaryLocations", "locations"))
    identified_characters: list[CharacterSchema] = Field(
        default_factory=list, validation_alias=AliasChoices("identifiedCharacters", "characters"))
    era_timeline: list[EraSchema] = Field(default_factory=list, alias="eraTimeline")
    mood_beats: list[MoodBeatSchema] = Field(default_factory=list, alias="moodBeats")
    recurring_visuals: list[str] = Field(default_factory=list, alias="recurringVisuals")
    color_progression: str = Field("", alias="colorProgression")

    def to_context(self, topic: str) -> GlobalScriptContext:
        return GlobalScriptContext(
            topic=topic,
            locations=list(self.primary_locations),
            characters=[Character(c.name, c.description) for c in self.identified_characters],
            era_timeline=sorted(
                (EraSpan(e.start_segment, e.era, e.end_segment, e.description) for e in self.era_timeline),
                key=lambda e: e.start_index,
            ),
            mood_beats=sorted(
                (
                    MoodBeat(
                        m.start_segment, m.mood, m.end_segment, m.description,
                        list(m.visual_keywords), m.suggested_lighting,
                        m.suggested_palette, m.visual_rationale,
                    )
                    for m in self.mood_beats
                ),
                key=lambda m: m.start_index,
            ),
            recurring_visuals=list(self.recurring_visuals),
            color_progression=self.color_progression or "",
        )
