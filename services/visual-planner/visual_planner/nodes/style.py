"""Image prompt style presets.

A ``PromptStyle`` carries the user's art-style / lighting / composition
choices.  "auto" leaves the decision to the model, except composition,
which rotates through a fixed shot list by segment index so consecutive
images do not all share one framing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

ART_STYLES = {
    "semi_realistic_painting": "semi-realistic academic painting, visible brushstrokes",
    "oil_painting": "classical oil painting, rich textures, depth",
    "watercolor": "soft watercolor, translucent washes, bleeding edges",
    "digital_art": "modern digital art, clean and polished",
    "photorealistic": "photorealistic rendering, natural detail",
    "cinematic": "cinematic film still, shallow depth of field, film grain",
    "sketch": "pencil and charcoal sketch, hand-drawn feel",
}

LIGHTING = {
    "dramatic": "dramatic directional light, strong shadows",
    "golden_hour": "warm golden hour sunlight",
    "soft_ambient": "soft diffused ambient light",
    "moody_dark": "dark moody atmosphere, minimal light",
    "ethereal": "ethereal glow",
    "flat": "flat even lighting",
}

COMPOSITIONS = {
    "ultra_wide_establishing": "ultra-wide establishing shot, epic scale",
    "ground_level_wide": "ground-level wide shot",
    "low_angle_hero": "low-angle hero shot",
    "over_the_shoulder": "over-the-shoulder shot",
    "high_angle_top_down": "high-angle top-down shot",
    "close_up_environmental": "close-up environmental detail shot",
    "dynamic_action": "dynamic action shot, motion blur",
    "interior_perspective": "interior perspective shot",
}

_COMPOSITION_ROTATION = (
    "ultra_wide_establishing",
    "ground_level_wide",
    "low_angle_hero",
    "close_up_environmental",
    "high_angle_top_down",
    "over_the_shoulder",
    "dynamic_action",
    "interior_perspective",
)

AUTO = "auto"


@dataclass(frozen=True)
class PromptStyle:
    art_style: str = "cinematic"
    custom_art_style: str = ""
    lighting: str = AUTO
    composition: str = AUTO
    default_era: Optional[str] = None
    custom_instructions: str = ""

    @property
    def style_suffix(self) -> str:
        if self.custom_art_style.strip():
            return self.custom_art_style.strip()
        return ART_STYLES.get(self.art_style, ART_STYLES["cinematic"])

    @property
    def lighting_suffix(self) -> str:
        return LIGHTING.get(self.lighting, "appropriately matched lighting")

    def composition_for(self, index: int) -> str:
        key = self.composition
        if key == AUTO:
            key = _COMPOSITION_ROTATION[index % len(_COMPOSITION_ROTATION)]
        return COMPOSITIONS.get(key, "cinematic shot")


DEFAULT_STYLE = PromptStyle()


def style_directives(style: PromptStyle, index: int) -> str:
    """Extra system-prompt lines describing the visual style for one segment."""
    lines = [
        f"ART STYLE: {style.style_suffix}",
        f"LIGHTING: {style.lighting_suffix}",
        f"COMPOSITION: {style.composition_for(index)}",
    ]
    if style.default_era:
        lines.append(f"DEFAULT ERA: Bias toward {style.default_era} era visual style.")
    if style.custom_instructions.strip():
        lines.append(f"USER INSTRUCTIONS: {style.custom_instructions.strip()}")
    return "\n".join(lines)
