"""Era library.

Predefined era prefixes the image prompts are asked to start with, plus the
post-step that tags a generated image with the era its prompt settled on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from ..models import GeneratedImage

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Era:
    name: str
    prefix: str
    keywords: tuple[str, ...] = ()


ERA_GROUPS: dict[str, tuple[Era, ...]] = {
    "Historical Eras": (
        Era("7th century Arabia", "7th century Arabia era, early Islamic atmosphere, ",
            ("7th century", "arabia", "mecca", "medina")),
        Era("Pre-Islamic Arabia", "6th century Pre-Islamic Arabia era, tribal desert atmosphere, ",
            ("pre-islamic", "6th century", "jahiliyya")),
        Era("Ancient Egypt", "1500 BC Ancient Egypt era, monumental stone and sand, ",
            ("ancient egypt", "pharaoh", "pyramid", "nile")),
        Era("Ancient Babylon", "6th century BC Ancient Babylon era, ancient mystery, ",
            ("babylon", "mesopotamia", "ziggurat")),
        Era("Late Roman Empire", "Late Ancient Roman Empire era, civilization decline, ",
            ("roman empire", "rome", "byzantine", "colosseum")),
        Era("Medieval", "Medieval era, torchlit stone halls, ",
            ("medieval", "castle", "knight", "middle ages")),
    ),
    "Modern Eras": (
        Era("21st century urban", "21st century modern urban era, digital technology, ",
            ("21st century", "modern city", "skyscraper", "smartphone", "digital")),
        Era("Late modern", "Late modern civilization era, moral decay, ",
            ("late modern", "industrial", "factory")),
        Era("Surveillance", "Global surveillance era, dystopian control, ",
            ("surveillance", "cctv", "dystopian")),
        Era("AI future", "AI-dominated future era, cold technocracy, ",
            ("artificial intelligence", "robot", "futuristic", "technocracy")),
    ),
    "Abstract Eras": (
        Era("Post-apocalyptic", "Post-apocalyptic era, abandoned cities, ",
            ("post-apocalyptic", "apocalypse", "abandoned city", "ruined city")),
        Era("Lost civilization", "Lost ancient civilization ruins era, ",
            ("lost civilization", "ancient ruins", "overgrown ruins")),
        Era("Metaphysical void", "Metaphysical void era, existential reflection, ",
            ("void", "metaphysical", "existential")),
        Era("Cosmic end", "Cosmic end-of-world era, cracked sky, ",
            ("cosmic", "cracked sky", "end of the world")),
    ),
}

ALL_ERAS: tuple[Era, ...] = tuple(era for group in ERA_GROUPS.values() for era in group)


def era_selection_instructions() -> str:
    lines = [
        "ERA SELECTION INSTRUCTIONS:",
        "Select the appropriate era prefix from the options below based on the scene's setting.",
        "",
        "AVAILABLE ERAS (select one per prompt):",
    ]
    for group, eras in ERA_GROUPS.items():
        lines.append("")
        lines.append(f"{group}:")
        lines.extend(f'  - "{era.prefix}"' for era in eras)
    return "\n".join(lines)


def detect_era(prompt: str) -> str | None:
    """Name of the era a prompt is set in, or None.

    An exact prefix wins; otherwise the keyword that appears earliest in the
    prompt decides.
    """
    text = prompt.lower()
    if not text.strip():
        return None

    for era in ALL_ERAS:
        if text.startswith(era.prefix.strip().lower().rstrip(",")):
            return era.name

    best: tuple[int, str] | None = None
    for era in ALL_ERAS:
        for keyword in era.keywords:
            pos = text.find(keyword)
            if pos >= 0 and (best is None or pos < best[0]):
                best = (pos, era.name)
    return best[1] if best else None


def assign_era(media: GeneratedImage, prompt: str) -> GeneratedImage:
    """Return ``media`` tagged with the era detected in ``prompt``.

    Keeps the existing era when nothing is detected.
    """
    era = detect_era(prompt)
    if era is None or era == media.era:
        return media
    log.debug("Era auto-assigned: %s", era)
    return replace(media, era=era)
