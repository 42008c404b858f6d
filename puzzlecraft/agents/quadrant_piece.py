"""
Quadrant Piece agent: one to three fresh statements for a single quadrant
of an existing puzzle (the "give me another piece" action).
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from puzzlecraft.agents.common import MODE_DESCRIPTIONS, PUZZLE_TYPE_GUIDANCE, format_fragments
from puzzlecraft.core.errors import LLMResponseError
from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.models.domain import Anchor, DesignMode, PuzzleType
from puzzlecraft.models.session import FragmentSummary

logger = logging.getLogger(__name__)

MAX_PIECES = 3
MAX_IMAGES = 3

FALLBACK_STATEMENTS: dict[PuzzleType, dict[DesignMode, str]] = {
    PuzzleType.CLARIFY: {
        DesignMode.FORM: "Core visual quality defined",
        DesignMode.MOTION: "Motion energy as gentle flow",
        DesignMode.EXPRESSION: "Single word feeling captured",
        DesignMode.FUNCTION: "Target audience identified",
    },
    PuzzleType.EXPAND: {
        DesignMode.FORM: "Alternative visual approach",
        DesignMode.MOTION: "Unexpected movement possibility",
        DesignMode.EXPRESSION: "Contrasting emotion for depth",
        DesignMode.FUNCTION: "New use case considered",
    },
    PuzzleType.REFINE: {
        DesignMode.FORM: "Essential visual element chosen",
        DesignMode.MOTION: "Priority motion effect selected",
        DesignMode.EXPRESSION: "Core feeling doubled down",
        DesignMode.FUNCTION: "Must-have feature confirmed",
    },
}


class PieceSuggestion(BaseModel):
    mode: Optional[DesignMode] = None
    text: str


class QuadrantPieceOutput(BaseModel):
    pieces: list[PieceSuggestion] = Field(default_factory=list)


def build_quadrant_piece_prompt(
    mode: DesignMode,
    puzzle_type: PuzzleType,
    central_question: str,
    process_aim: str,
    anchors: list[Anchor],
    existing_texts: list[str],
    fragments: list[FragmentSummary],
    preference_hint: str = "",
) -> str:
    info = MODE_DESCRIPTIONS[mode]
    anchor_text = " | ".join(f"{a.type.value}: {a.text}" for a in anchors) or "none"
    existing = "\n".join(f'  - "{t}"' for t in existing_texts) or "  (none)"
    return f"""You are the Quadrant Piece Agent.
MODE: {mode.value} - {info.focus}
Aspects: {", ".join(info.aspects)}
Puzzle type: {puzzle_type.value} - {PUZZLE_TYPE_GUIDANCE[puzzle_type]}
Central question: {central_question}
Process aim: {process_aim}
Anchors: {anchor_text}
Existing pieces in this quadrant (do not repeat):
{existing}
Fragments:
{format_fragments(fragments, limit=5)}
Preference hint: {preference_hint or "none"}

Write 1-{MAX_PIECES} short STATEMENTS (2-5 words, never questions).
Return JSON: {{"pieces": [{{"mode": "{mode.value}", "text": string}}]}}"""


def fallback_pieces(puzzle_type: PuzzleType, mode: DesignMode) -> list[PieceSuggestion]:
    return [PieceSuggestion(mode=mode, text=FALLBACK_STATEMENTS[puzzle_type][mode])]


async def run_quadrant_piece_agent(
    mode: DesignMode,
    puzzle_type: PuzzleType,
    central_question: str,
    process_aim: str,
    anchors: list[Anchor],
    existing_texts: list[str],
    fragments: list[FragmentSummary],
    llm: BaseLLMClient,
    preference_hint: str = "",
) -> list[PieceSuggestion]:
    """Statements for ``mode``. Unusable answers yield one fallback statement."""
    prompt = build_quadrant_piece_prompt(
        mode, puzzle_type, central_question, process_aim, anchors,
        existing_texts, fragments, preference_hint,
    )
    image_urls = [f.image_url for f in fragments if f.image_url][:MAX_IMAGES]
    try:
        if image_urls:
            output = await llm.generate_structured_with_images(
                prompt, image_urls, QuadrantPieceOutput, temperature=0.7
            )
        else:
            output = await llm.generate_structured(prompt, QuadrantPieceOutput, temperature=0.7)
    except LLMResponseError as e:
        logger.warning(f"⚠️ {mode.value} piece answer unusable ({e}); using fallback statement")
        return fallback_pieces(puzzle_type, mode)

    existing = {t.strip().lower() for t in existing_texts}
    pieces = [
        PieceSuggestion(mode=mode, text=p.text.strip())
        for p in output.pieces
        if p.text.strip()
        and not p.text.strip().endswith("?")
        and p.text.strip().lower() not in existing
    ][:MAX_PIECES]
    if not pieces:
        logger.warning(f"⚠️ {mode.value} piece answer had no usable statements; using fallback")
        return fallback_pieces(puzzle_type, mode)
    return pieces
