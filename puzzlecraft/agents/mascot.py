"""
Mascot agent: proposes a puzzle, either from the user's own question
("self") or unprompted from the shape of the canvas ("suggest").
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from puzzlecraft.agents.common import format_fragments
from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.llm_output import parse_model
from puzzlecraft.models.domain import Cluster, DesignMode, PuzzleSummary, PuzzleType
from puzzlecraft.models.session import FragmentSummary

logger = logging.getLogger(__name__)

_EXPAND_WORDS = ("more", "other", "expand", "explore")
_REFINE_WORDS = ("choose", "decide", "which", "prioritize")


class _ProposalFields(BaseModel):
    puzzle_type: PuzzleType = PuzzleType.CLARIFY
    primary_modes: list[DesignMode] = Field(default_factory=list)
    rationale: str = ""

    @field_validator("puzzle_type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> Any:
        if isinstance(value, PuzzleType):
            return value
        if isinstance(value, str) and value.upper() in PuzzleType.__members__:
            return value.upper()
        return PuzzleType.CLARIFY

    @field_validator("primary_modes", mode="before")
    @classmethod
    def _known_modes(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        valid = {m.value for m in DesignMode}
        return [m for m in value if isinstance(m, str) and m in valid]


class MascotProposal(_ProposalFields):
    central_question: str


class MascotSuggestion(_ProposalFields):
    """``should_suggest`` left unset counts as a yes."""
    should_suggest: Optional[bool] = None
    central_question: Optional[str] = None


def _previous(summaries: list[PuzzleSummary]) -> str:
    lines = [s.one_line or s.direction_statement for s in summaries]
    return " | ".join(lines) or "none"


def build_self_prompt(
    process_aim: str,
    user_question: str,
    nearby_fragments: list[FragmentSummary],
    summaries: list[PuzzleSummary],
    preference_hints: str = "",
) -> str:
    return f"""You are the Mascot Agent (self).
The user raised their own puzzle.

CONTEXT:
- Process aim: {process_aim}
- User question: {user_question}
- Nearby fragments:
{format_fragments(nearby_fragments, limit=5)}
- Previous puzzles: {_previous(summaries)}
- Preference hints: {preference_hints or "none"}

Choose the puzzle type:
- CLARIFY when the question involves vague terms that need sharpening
- EXPAND when it seeks more options or new angles
- REFINE when ideas exist and need to converge

Never mention fragment ids in the rationale; refer to fragments by title.

Return JSON:
{{"central_question": string, "puzzle_type": "CLARIFY" | "EXPAND" | "REFINE",
  "primary_modes": ["FORM" | "MOTION" | "EXPRESSION" | "FUNCTION"], "rationale": string}}"""


def build_suggest_prompt(
    process_aim: str,
    clusters: list[Cluster],
    summaries: list[PuzzleSummary],
    preference_hints: str = "",
) -> str:
    cluster_lines = "\n".join(
        f"- {c.theme} ({len(c.fragment_ids)} fragments)" for c in clusters
    ) or "- (no clusters yet)"
    return f"""You are the Mascot Agent (suggest).
Decide whether the canvas is ready for a new puzzle.

CONTEXT:
- Process aim: {process_aim}
- Fragment clusters:
{cluster_lines}
- Previous puzzles: {_previous(summaries)}
- Preference hints: {preference_hints or "none"}

If there is no obvious gap or need, return: {{"should_suggest": false}}
Otherwise return JSON:
{{"should_suggest": true, "central_question": string,
  "puzzle_type": "CLARIFY" | "EXPAND" | "REFINE",
  "primary_modes": [string], "rationale": string}}"""


def fallback_proposal(user_question: str) -> MascotProposal:
    """Keyword-based puzzle type for the user's question."""
    q = user_question.lower()
    puzzle_type = PuzzleType.CLARIFY
    if any(word in q for word in _EXPAND_WORDS):
        puzzle_type = PuzzleType.EXPAND
    elif any(word in q for word in _REFINE_WORDS):
        puzzle_type = PuzzleType.REFINE
    return MascotProposal(
        central_question=user_question or "What is the core feeling we want to preserve?",
        puzzle_type=puzzle_type,
        primary_modes=[DesignMode.EXPRESSION],
        rationale=f"Focusing on {puzzle_type.value.lower()} based on your question.",
    )


def fallback_suggestion(cluster_count: int, puzzle_count: int) -> MascotSuggestion:
    """Context-based suggestion: converge when crowded, explore when fresh."""
    if cluster_count > 3:
        return MascotSuggestion(
            should_suggest=True,
            central_question="Which of these idea clusters deserves our focus first?",
            puzzle_type=PuzzleType.REFINE,
            primary_modes=[DesignMode.EXPRESSION, DesignMode.FUNCTION],
            rationale="Multiple clusters suggest it's time to converge.",
        )
    if puzzle_count == 0:
        return MascotSuggestion(
            should_suggest=True,
            central_question="Which unexplored directions could this project take?",
            puzzle_type=PuzzleType.EXPAND,
            primary_modes=[DesignMode.EXPRESSION, DesignMode.FUNCTION],
            rationale="No previous puzzles - let's explore the space first.",
        )
    return MascotSuggestion(
        should_suggest=True,
        central_question="What does this project's core identity feel like?",
        puzzle_type=PuzzleType.CLARIFY,
        primary_modes=[DesignMode.EXPRESSION, DesignMode.FUNCTION],
        rationale="Starting with clarification to establish foundations.",
    )


async def run_mascot_self(
    process_aim: str,
    user_question: str,
    nearby_fragments: list[FragmentSummary],
    summaries: list[PuzzleSummary],
    llm: BaseLLMClient,
    preference_hints: str = "",
) -> MascotProposal:
    prompt = build_self_prompt(process_aim, user_question, nearby_fragments, summaries, preference_hints)
    raw = await llm.generate(prompt, temperature=0.5)
    result = parse_model(raw, MascotProposal)
    if not result.ok or result.value is None or not result.value.central_question.strip():
        logger.warning(f"⚠️ Mascot proposal unusable ({result.reason}); using keyword fallback")
        return fallback_proposal(user_question)
    return result.value


async def run_mascot_suggest(
    process_aim: str,
    clusters: list[Cluster],
    summaries: list[PuzzleSummary],
    llm: BaseLLMClient,
    preference_hints: str = "",
) -> MascotSuggestion:
    prompt = build_suggest_prompt(process_aim, clusters, summaries, preference_hints)
    raw = await llm.generate(prompt, temperature=0.5)
    result = parse_model(raw, MascotSuggestion)
    if not result.ok or result.value is None:
        logger.warning(f"⚠️ Mascot suggestion unusable ({result.reason}); using context fallback")
        return fallback_suggestion(len(clusters), len(summaries))
    return result.value
