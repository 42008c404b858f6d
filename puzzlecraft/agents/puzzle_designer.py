"""
Puzzle Designer agent.

Two tasks share one persona:
- ``design``: turn a proposed central question into anchors and seed pieces
- ``summarize``: condense a finished puzzle into a direction statement

Both fall back to a deterministic answer when the model's output does not
parse; LLM failures propagate to the caller.
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.llm_output import parse_model
from puzzlecraft.models.domain import (
    Anchor,
    AnchorType,
    Cluster,
    DesignMode,
    PieceStatus,
    PuzzlePiece,
    PuzzleSummary,
    PuzzleType,
)

logger = logging.getLogger(__name__)

DEFAULT_STARTING_ANCHOR = "Why this matters now"


# =============================================================================
# Design
# =============================================================================

class DesignAnchors(BaseModel):
    starting: str = ""
    solution: str = ""


class SeedPiece(BaseModel):
    mode: DesignMode
    text: str


class PuzzleDesign(BaseModel):
    central_question: str
    anchors: DesignAnchors = Field(default_factory=DesignAnchors)
    seed_pieces: list[SeedPiece] = Field(default_factory=list)


def build_design_prompt(
    process_aim: str,
    proposed_question: str,
    puzzle_type: PuzzleType,
    primary_modes: list[DesignMode],
    rationale: str,
    clusters: list[Cluster],
    summaries: list[PuzzleSummary],
) -> str:
    modes = ",".join(m.value for m in primary_modes) or "any"
    themes = " | ".join(c.theme for c in clusters) or "none"
    previous = " | ".join(s.one_line or s.direction_statement for s in summaries) or "none"
    return f"""You are the Puzzle Designer Agent (task: "design").
Process aim: {process_aim}
Puzzle type: {puzzle_type.value}
Proposed central question: {proposed_question}
Primary modes: {modes}
Rationale from mascot: {rationale}
Related clusters: {themes}
Related puzzle summaries: {previous}

Return JSON:
{{
  "central_question": string,
  "anchors": {{"starting": string, "solution": string}},
  "seed_pieces": [{{"mode": "FORM"|"MOTION"|"EXPRESSION"|"FUNCTION", "text": string}}]
}}"""


def fallback_design(proposed_question: str, primary_modes: list[DesignMode]) -> PuzzleDesign:
    seeds = [SeedPiece(mode=mode, text="The crisp version of this idea") for mode in primary_modes[:1]]
    return PuzzleDesign(
        central_question=proposed_question,
        anchors=DesignAnchors(starting=DEFAULT_STARTING_ANCHOR),
        seed_pieces=seeds,
    )


async def run_puzzle_design(
    process_aim: str,
    proposed_question: str,
    puzzle_type: PuzzleType,
    primary_modes: list[DesignMode],
    rationale: str,
    clusters: list[Cluster],
    summaries: list[PuzzleSummary],
    llm: BaseLLMClient,
) -> PuzzleDesign:
    prompt = build_design_prompt(
        process_aim, proposed_question, puzzle_type, primary_modes, rationale, clusters, summaries
    )
    raw = await llm.generate(prompt, temperature=0.5)
    result = parse_model(raw, PuzzleDesign)
    if not result.ok or result.value is None or not result.value.central_question.strip():
        logger.warning(f"⚠️ Puzzle design unusable ({result.reason}); keeping proposed question")
        return fallback_design(proposed_question, primary_modes)
    return result.value


def design_to_entities(
    design: PuzzleDesign,
    puzzle_id: str,
    puzzle_type: PuzzleType,
) -> tuple[list[Anchor], list[PuzzlePiece]]:
    """Anchors for non-empty anchor texts plus SUGGESTED seed pieces."""
    anchors = [
        Anchor(puzzle_id=puzzle_id, type=anchor_type, text=text.strip())
        for anchor_type, text in (
            (AnchorType.STARTING, design.anchors.starting),
            (AnchorType.SOLUTION, design.anchors.solution),
        )
        if text and text.strip()
    ]
    pieces = [
        PuzzlePiece(
            puzzle_id=puzzle_id,
            mode=seed.mode,
            category=puzzle_type,
            text=seed.text,
            status=PieceStatus.SUGGESTED,
        )
        for seed in design.seed_pieces
        if seed.text.strip()
    ]
    return anchors, pieces


# =============================================================================
# Summarize
# =============================================================================

class SummaryDraft(BaseModel):
    direction_statement: str
    reasons: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    title: Optional[str] = None
    one_line: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


def build_summarize_prompt(
    process_aim: str,
    central_question: str,
    anchors: list[Anchor],
    pieces: list[PuzzlePiece],
) -> str:
    anchor_text = " | ".join(f"{a.type.value}: {a.text}" for a in anchors) or "none"
    piece_text = "\n".join(
        f"{p.mode.value}/{p.status.value}: {p.text} :: {p.user_annotation or ''}" for p in pieces
    ) or "(no pieces)"
    return f"""You are the Puzzle Designer Agent (task: "summarize").
Process aim: {process_aim}
Central question: {central_question}
Anchors: {anchor_text}
Pieces:
{piece_text}

Return JSON:
{{
  "title": string,
  "one_line": string,
  "direction_statement": string,
  "reasons": [string],
  "open_questions": [string],
  "tags": [string]
}}"""


def fallback_summary(
    puzzle_id: str,
    puzzle_type: Optional[PuzzleType],
    central_question: str,
    anchors: list[Anchor],
    pieces: list[PuzzlePiece],
) -> PuzzleSummary:
    """Direction from the latest solution anchor; reasons from kept pieces."""
    solutions = [a for a in anchors if a.type == AnchorType.SOLUTION and a.text.strip()]
    if solutions:
        direction = f"Direction: {solutions[-1].text}"
    else:
        direction = f'Based on exploring "{central_question}", further exploration is needed.'

    kept = [p for p in pieces if p.status != PieceStatus.DISCARDED]
    reasons = [f"{p.mode.value}: {p.text}" for p in kept[:4]]
    if not reasons:
        reasons = ["No pieces were placed during this session"]

    label = puzzle_type.value if puzzle_type else "Puzzle"
    return PuzzleSummary(
        puzzle_id=puzzle_id,
        title=f"{label} Puzzle",
        one_line=direction[:100],
        direction_statement=direction,
        reasons=reasons,
        open_questions=[],
        tags=[label.lower()],
    )


async def run_puzzle_summary(
    puzzle_id: str,
    puzzle_type: Optional[PuzzleType],
    process_aim: str,
    central_question: str,
    anchors: list[Anchor],
    pieces: list[PuzzlePiece],
    llm: BaseLLMClient,
) -> PuzzleSummary:
    prompt = build_summarize_prompt(process_aim, central_question, anchors, pieces)
    raw = await llm.generate(prompt, temperature=0.5)
    result = parse_model(raw, SummaryDraft)
    if not result.ok or result.value is None:
        logger.warning(f"⚠️ Puzzle summary unusable ({result.reason}); building from anchors and pieces")
        return fallback_summary(puzzle_id, puzzle_type, central_question, anchors, pieces)
    draft = result.value
    return PuzzleSummary(
        puzzle_id=puzzle_id,
        direction_statement=draft.direction_statement,
        reasons=draft.reasons,
        open_questions=draft.open_questions,
        title=draft.title,
        one_line=draft.one_line or draft.direction_statement[:100],
        tags=draft.tags,
    )
