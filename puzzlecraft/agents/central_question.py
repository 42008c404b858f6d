"""
Central Question agent.

Synthesizes the single focal question for a puzzle session, then checks it
against the fragments the user supplied. A rejected, unparseable or failed
answer falls through an ordered chain of pure fallback tiers:

1. ``question_from_fragments`` - first fragment title, else its first tags
2. ``question_from_aim`` - first words of the process aim
3. ``placeholder_question`` - a "needs more fragments" prompt per puzzle type

``generate_central_question`` never raises.
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from puzzlecraft.agents.common import PUZZLE_TYPE_GUIDANCE, format_fragments
from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.llm_output import parse_model
from puzzlecraft.core.validation import is_generic_question, validate_central_question
from puzzlecraft.models.domain import PuzzleSummary, PuzzleType
from puzzlecraft.models.session import FragmentSummary

logger = logging.getLogger(__name__)

DEFAULT_FRAGMENT_LIMIT = 8
DEFAULT_SUMMARY_LIMIT = 3
AIM_WORDS = 5

_TITLE_TEMPLATES: dict[PuzzleType, str] = {
    PuzzleType.CLARIFY: 'What does "{}" mean for this project?',
    PuzzleType.EXPAND: 'What other directions does "{}" suggest?',
    PuzzleType.REFINE: 'How should we prioritize "{}" vs other ideas?',
}

_TAG_TEMPLATES: dict[PuzzleType, str] = {
    PuzzleType.CLARIFY: "What defines the {} direction?",
    PuzzleType.EXPAND: "What else connects to {}?",
    PuzzleType.REFINE: "How do we focus on {}?",
}

_AIM_TEMPLATES: dict[PuzzleType, str] = {
    PuzzleType.CLARIFY: "What's the core of: {}...?",
    PuzzleType.EXPAND: "What possibilities exist for: {}...?",
    PuzzleType.REFINE: "What's essential for: {}...?",
}

_PLACEHOLDERS: dict[PuzzleType, str] = {
    PuzzleType.CLARIFY: "What needs defining? (Add fragments for better questions)",
    PuzzleType.EXPAND: "What else is possible? (Add fragments for better questions)",
    PuzzleType.REFINE: "What should we prioritize? (Add fragments for better questions)",
}


class CentralQuestionOutput(BaseModel):
    central_question: str


def build_central_question_prompt(
    puzzle_type: PuzzleType,
    process_aim: str,
    fragments: list[FragmentSummary],
    previous: list[PuzzleSummary],
    fragment_limit: int = DEFAULT_FRAGMENT_LIMIT,
    summary_limit: int = DEFAULT_SUMMARY_LIMIT,
) -> str:
    directions = "\n".join(
        f"  - {s.direction_statement}" for s in previous[:summary_limit]
    ) or "  (none)"
    return f"""You are the Central Question Agent.
Puzzle type: {puzzle_type.value} - {PUZZLE_TYPE_GUIDANCE[puzzle_type]}
Process aim: {process_aim or "(not set)"}

Fragments on the canvas:
{format_fragments(fragments, limit=fragment_limit)}

Previous puzzle directions:
{directions}

Write ONE specific question that names something from the fragments above.
Avoid generic questions that could apply to any project.

Return JSON: {{"central_question": string}}"""


# =============================================================================
# Fallback tiers
# =============================================================================

def question_from_fragments(puzzle_type: PuzzleType, fragments: list[FragmentSummary]) -> Optional[str]:
    """Question naming the first fragment with a title, else the first with tags."""
    for fragment in fragments:
        if fragment.title and fragment.title.strip():
            return _TITLE_TEMPLATES[puzzle_type].format(fragment.title.strip())
    for fragment in fragments:
        tags = [t for t in fragment.tags if t.strip()][:2]
        if tags:
            return _TAG_TEMPLATES[puzzle_type].format(" & ".join(tags))
    return None


def question_from_aim(puzzle_type: PuzzleType, process_aim: str) -> Optional[str]:
    words = process_aim.split()[:AIM_WORDS]
    if not words:
        return None
    return _AIM_TEMPLATES[puzzle_type].format(" ".join(words))


def placeholder_question(puzzle_type: PuzzleType) -> str:
    return _PLACEHOLDERS[puzzle_type]


def fallback_central_question(
    puzzle_type: PuzzleType,
    fragments: list[FragmentSummary],
    process_aim: str,
) -> str:
    return (
        question_from_fragments(puzzle_type, fragments)
        or question_from_aim(puzzle_type, process_aim)
        or placeholder_question(puzzle_type)
    )


async def generate_central_question(
    puzzle_type: PuzzleType,
    process_aim: str,
    fragments: list[FragmentSummary],
    previous: list[PuzzleSummary],
    llm: BaseLLMClient,
    fragment_limit: int = DEFAULT_FRAGMENT_LIMIT,
    summary_limit: int = DEFAULT_SUMMARY_LIMIT,
) -> str:
    """A grounded central question, or the first fallback tier that applies."""
    prompt = build_central_question_prompt(
        puzzle_type, process_aim, fragments, previous, fragment_limit, summary_limit
    )
    try:
        raw = await llm.generate(prompt, temperature=0.6)
    except Exception as e:
        logger.error(f"❌ Central question generation failed: {e}", exc_info=True)
        return fallback_central_question(puzzle_type, fragments, process_aim)

    result = parse_model(raw, CentralQuestionOutput)
    if not result.ok or result.value is None:
        logger.warning(f"⚠️ Central question unparseable ({result.reason}); using fallback")
        return fallback_central_question(puzzle_type, fragments, process_aim)

    question = result.value.central_question.strip()
    if is_generic_question(question):
        logger.warning(f'⚠️ Generic central question rejected: "{question}"')
        return fallback_central_question(puzzle_type, fragments, process_aim)

    check = validate_central_question(question, fragments[:fragment_limit])
    if not check.is_valid:
        logger.warning(f"⚠️ Central question rejected: {check.reason}")
        return fallback_central_question(puzzle_type, fragments, process_aim)
    return question
