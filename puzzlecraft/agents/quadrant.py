"""
Session quadrant agent.

Generates the prioritized pieces for one quadrant of a puzzle session.
The coordinator runs four of these concurrently, one per DesignMode.

Post-processing rules for every generated piece:
- text is a statement of 2-5 words (trimmed, or padded with a mode qualifier)
- priority maps to saturation (1-2 high, 3-4 medium, 5-6 low)
- a piece citing a fragment gets that fragment's title/summary backfilled
- every piece carries a short reasoning line in ``fragment_summary``
- questions and stock phrases are dropped
"""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from puzzlecraft.agents.common import (
    MODE_DESCRIPTIONS,
    MODE_QUALIFIERS,
    PUZZLE_TYPE_GUIDANCE,
    format_fragments,
    trim_words,
)
from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.llm_output import parse_model
from puzzlecraft.core.validation import filter_valid_pieces, is_blacklisted_phrase, quality_score
from puzzlecraft.models.domain import DesignMode, PuzzleType
from puzzlecraft.models.session import (
    FragmentSummary,
    QuadrantAgentInput,
    QuadrantPiece,
    SaturationLevel,
    saturation_for_priority,
)

logger = logging.getLogger(__name__)

MAX_TITLE_WORDS = 5

_TYPE_VERB: dict[PuzzleType, str] = {
    PuzzleType.CLARIFY: "clarifies",
    PuzzleType.EXPAND: "explores new angles for",
    PuzzleType.REFINE: "helps narrow down",
}

_MODE_ASPECT: dict[DesignMode, str] = {
    DesignMode.FORM: "visual structure",
    DesignMode.MOTION: "movement and timing",
    DesignMode.EXPRESSION: "emotional tone",
    DesignMode.FUNCTION: "practical application",
}


class RawQuadrantPiece(BaseModel):
    """A piece as the model wrote it; accepts snake or camel keys."""
    text: str
    priority: int = 3
    fragment_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("fragment_id", "fragmentId"))
    fragment_title: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fragment_title", "fragmentTitle")
    )
    fragment_summary: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fragment_summary", "fragmentSummary")
    )

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        try:
            return max(1, min(6, int(value)))
        except (TypeError, ValueError):
            return 3


class RawQuadrantOutput(BaseModel):
    pieces: list[RawQuadrantPiece] = Field(default_factory=list)


def build_quadrant_prompt(agent_input: QuadrantAgentInput) -> str:
    mode = agent_input.mode
    info = MODE_DESCRIPTIONS[mode]
    anchors = " | ".join(f"{a.type.value}: {a.text}" for a in agent_input.anchors) or "none"
    existing = "\n".join(
        f'  - "{p.text}" (priority {p.priority})' for p in agent_input.existing_pieces
    ) or "  (none)"
    return f"""You are the {mode.value} Quadrant Agent for a design thinking puzzle.
MODE: {mode.value} - {info.focus}
Aspects to consider: {", ".join(info.aspects)}
Puzzle type: {agent_input.puzzle_type.value} - {PUZZLE_TYPE_GUIDANCE[agent_input.puzzle_type]}
Central question: {agent_input.central_question}
Process aim: {agent_input.process_aim}
Anchors: {anchors}

Canvas fragments (cite these by id):
{format_fragments(agent_input.relevant_fragments, limit=5)}

Existing {mode.value} pieces (avoid duplicates):
{existing}

Preference hints: {agent_input.preference_hints or "none"}

Rules:
- {agent_input.requested_count} pieces, each a STATEMENT of 2-5 words, never a question
- priority 1-2 for core insights, 3-4 supporting, 5-6 subtle details
- total text under {agent_input.max_total_chars} characters
- include fragment_id, fragment_title and a one-sentence fragment_summary explaining the link

Return JSON:
{{"pieces": [{{"text": string, "priority": 1-6, "fragment_id": string, "fragment_title": string, "fragment_summary": string}}]}}"""


def _shape_title(text: str, mode: DesignMode) -> str:
    """2-5 words: trim long titles, pad single words with the mode qualifier."""
    title = trim_words(text.strip(), MAX_TITLE_WORDS)
    if len(title.split()) < 2:
        title = f"{title} {MODE_QUALIFIERS[mode]}".strip()
    return title


def fallback_reasoning(
    puzzle_type: PuzzleType,
    mode: DesignMode,
    text: str,
    fragments: list[FragmentSummary],
    fragment_id: Optional[str] = None,
) -> str:
    if fragment_id:
        fragment = next((f for f in fragments if f.id == fragment_id), None)
        if fragment is not None:
            return (
                f'Inspired by "{fragment.title}" - this fragment\'s content suggested '
                f"this {mode.value.lower()} direction"
            )
    return f'This {_TYPE_VERB[puzzle_type]} the {_MODE_ASPECT[mode]} by suggesting "{text}" as a direction'


def normalize_piece(raw: RawQuadrantPiece, agent_input: QuadrantAgentInput) -> QuadrantPiece:
    mode = agent_input.mode
    fragments = agent_input.relevant_fragments
    text = _shape_title(raw.text, mode)
    fragment_title = raw.fragment_title
    fragment_summary = raw.fragment_summary

    if raw.fragment_id:
        source = next((f for f in fragments if f.id == raw.fragment_id), None)
        if source is not None:
            if not fragment_title:
                fragment_title = source.title or source.summary[:30] or "Fragment"
            if not fragment_summary:
                detail = source.summary[:100] or "This fragment influenced this insight"
                fragment_summary = f'From "{fragment_title}": {detail}'

    if not fragment_summary:
        fragment_summary = fallback_reasoning(
            agent_input.puzzle_type, mode, text, fragments, raw.fragment_id
        )

    return QuadrantPiece(
        text=text,
        priority=raw.priority,
        saturation_level=saturation_for_priority(raw.priority),
        fragment_id=raw.fragment_id,
        fragment_title=fragment_title,
        fragment_summary=fragment_summary,
    )


def fallback_quadrant_pieces(agent_input: QuadrantAgentInput) -> list[QuadrantPiece]:
    """Pieces built from the first two fragments, or one exploratory piece."""
    mode = agent_input.mode
    pieces: list[QuadrantPiece] = []
    for index, fragment in enumerate(agent_input.relevant_fragments[:2]):
        title = fragment.title or "Reference"
        if fragment.image_url:
            text = f"Visual: {title[:30]}"
            reasoning = f'From image "{title}": Visual reference for {mode.value.lower()} exploration'
        else:
            first_sentence = re.split(r"[.!?]", fragment.summary)[0].strip()
            text = first_sentence[:40] if first_sentence else f"Explore {title}"
            reasoning = f'From "{title}": {fragment.summary[:80]}'
        priority = 2 if index == 0 else 4
        pieces.append(
            QuadrantPiece(
                text=trim_words(text, 4) or f"{mode.value.lower()} direction",
                priority=priority,
                saturation_level=saturation_for_priority(priority),
                fragment_id=fragment.id,
                fragment_title=title,
                fragment_summary=reasoning,
            )
        )
    if not pieces:
        aspect = MODE_DESCRIPTIONS[mode].aspects[0]
        pieces.append(
            QuadrantPiece(
                text=f"Explore {aspect}",
                priority=3,
                saturation_level=SaturationLevel.MEDIUM,
                fragment_summary=(
                    f"Fallback suggestion for {mode.value} exploration. "
                    "Add more fragments for better insights."
                ),
            )
        )
    return pieces


async def run_quadrant_agent(agent_input: QuadrantAgentInput, llm: BaseLLMClient) -> list[QuadrantPiece]:
    """
    Generate up to ``requested_count`` pieces for one quadrant.

    Unusable answers produce fragment-grounded fallback pieces. LLM errors
    propagate so the coordinator can record the quadrant as failed.
    """
    mode = agent_input.mode
    raw = await llm.generate(build_quadrant_prompt(agent_input), temperature=0.7)
    result = parse_model(raw, RawQuadrantOutput)
    if not result.ok or result.value is None:
        logger.warning(f"⚠️ {mode.value} quadrant answer unusable ({result.reason}); using fallback")
        return fallback_quadrant_pieces(agent_input)

    pieces = [
        normalize_piece(p, agent_input)
        for p in result.value.pieces
        if p.text and p.text.strip()
    ]
    pieces = [
        p for p in pieces
        if not p.text.endswith("?") and not is_blacklisted_phrase(p.text)
    ]
    pieces = filter_valid_pieces(pieces, agent_input.relevant_fragments, mode.value)
    if not pieces:
        logger.warning(f"⚠️ {mode.value} quadrant kept no pieces; using fallback")
        return fallback_quadrant_pieces(agent_input)

    logger.debug(
        f"{mode.value} quadrant quality {quality_score(pieces, agent_input.relevant_fragments)}/100, "
        f"{len(pieces)} pieces"
    )
    return pieces[:agent_input.requested_count]
