"""Vocabulary and prompt fragments shared by every agent."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from puzzlecraft.models.domain import DesignMode, Fragment, FragmentType, PuzzleType
from puzzlecraft.models.session import FragmentSummary


@dataclass(frozen=True)
class ModeDescription:
    focus: str
    aspects: tuple[str, ...]


MODE_DESCRIPTIONS: dict[DesignMode, ModeDescription] = {
    DesignMode.FORM: ModeDescription(
        "Visual structure, shape, composition, spatial relationships",
        ("geometric vs organic", "visual weight", "layering", "proportion", "texture"),
    ),
    DesignMode.MOTION: ModeDescription(
        "Movement, animation, transitions, rhythm, timing",
        ("speed & pacing", "easing curves", "entrance/exit", "micro-interactions", "flow"),
    ),
    DesignMode.EXPRESSION: ModeDescription(
        "Emotional tone, personality, brand voice, atmosphere",
        ("mood", "voice & tone", "warmth vs cool", "premium vs accessible", "energy level"),
    ),
    DesignMode.FUNCTION: ModeDescription(
        "Purpose, utility, user value, practical constraints",
        ("primary use case", "target audience", "accessibility", "platform", "constraints"),
    ),
}

PUZZLE_TYPE_GUIDANCE: dict[PuzzleType, str] = {
    PuzzleType.CLARIFY: "Make vague concepts concrete. State what IS, not what to explore.",
    PuzzleType.EXPAND: "Introduce fresh perspectives. State new angles and possibilities.",
    PuzzleType.REFINE: "Help prioritize. State what's essential and what to commit to.",
}

# One-word pad used when a generated title collapses to a single word.
MODE_QUALIFIERS: dict[DesignMode, str] = {
    DesignMode.FORM: "approach",
    DesignMode.MOTION: "flow",
    DesignMode.EXPRESSION: "feel",
    DesignMode.FUNCTION: "focus",
}

_UUID_RE = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)
_HEX32_RE = re.compile(r"\b[a-f0-9]{32}\b", re.IGNORECASE)


def summarize_fragment(fragment: Fragment) -> FragmentSummary:
    """Agent-facing view of a stored fragment."""
    title = fragment.title or (fragment.summary or fragment.content)[:30] or "Untitled"
    summary = fragment.summary or fragment.content[:150]
    image_url = fragment.content if fragment.type == FragmentType.IMAGE else None
    return FragmentSummary(
        id=fragment.id,
        type=fragment.type,
        title=title,
        summary=summary,
        tags=list(fragment.tags),
        image_url=image_url,
    )


def format_fragments(fragments: Sequence[FragmentSummary], limit: int = 8) -> str:
    """Numbered fragment list for prompts, or a placeholder line."""
    if not fragments:
        return "  (no fragments on the canvas yet)"
    lines = []
    for i, f in enumerate(fragments[:limit], start=1):
        tags = ", ".join(f.tags) or "no tags"
        kind = "[IMAGE] " if f.image_url else ""
        lines.append(f'  {i}. {kind}ID: "{f.id}" | Title: "{f.title}" | Summary: "{f.summary}" [{tags}]')
    return "\n".join(lines)


def sanitize_rationale(rationale: str, fragments: Iterable[FragmentSummary]) -> str:
    """Replace fragment ids with their titles and any other UUID with ``[fragment]``."""
    result = rationale
    for fragment in fragments:
        if fragment.id and fragment.title:
            result = re.sub(re.escape(fragment.id), f'"{fragment.title}"', result, flags=re.IGNORECASE)
    result = _UUID_RE.sub("[fragment]", result)
    return _HEX32_RE.sub("[fragment]", result)


def trim_words(text: str, max_words: int) -> str:
    words = text.split()
    return " ".join(words[:max_words])
