"""
Output validation for generated questions and pieces.

Rejects stock phrasing and answers with no visible tie to the fragments the
user actually supplied. Every check is a pure function over its inputs.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from puzzlecraft.models.session import FragmentSummary, QuadrantPiece

logger = logging.getLogger(__name__)

# Stock statements from early prompt examples; a model echoing them back
# has not looked at the fragments.
BLACKLISTED_PHRASES: frozenset[str] = frozenset({
    # Form
    "geometric foundation with organic accents",
    "light visual weight, airy composition",
    "card-based layout with generous whitespace",
    "glass morphism as depth metaphor",
    "asymmetric balance creating visual tension",
    "layered transparency revealing structure",
    "rounded corners (8px) as signature element",
    "two-column layout as primary structure",
    "blue-gray palette as final direction",
    # Motion
    "slow, deliberate transitions",
    "ease-out curves for natural deceleration",
    "minimal motion, content-focused",
    "breathing animations for living interface",
    "staggered reveals building anticipation",
    "physics-based spring animations",
    "fade transitions only, no sliding",
    "200ms duration as standard timing",
    "loading states over skeletons",
    # Expression
    "calm confidence, not excitement",
    "professional warmth without corporate coldness",
    "understated premium quality",
    "playful moments within serious context",
    "unexpected delight in routine interactions",
    "nostalgic references to analog tools",
    "helpful guide over neutral tool",
    "encouraging tone in empty states",
    "subtle celebration of milestones",
    # Function
    "mobile-first, desktop-enhanced",
    "primary audience: creative professionals",
    "quick task completion as core value",
    "offline-first for unreliable connections",
    "voice control as alternative input",
    "integration with existing workflow tools",
    "search as primary navigation pattern",
    "three-step wizard for onboarding",
    "export to pdf as must-have feature",
})

GENERIC_QUESTIONS: frozenset[str] = frozenset({
    "what possibilities haven't we explored yet?",
    "what possibilities haven't we considered yet?",
    "what's the core essence we need to define?",
    "which direction should we commit to?",
    "what needs defining?",
    "what else is possible?",
    "what should we prioritize?",
})

_WORD_SPLIT = re.compile(r"\W+")


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None


VALID = ValidationResult(is_valid=True)


def _words(text: str, min_len: int = 4) -> set[str]:
    return {w for w in _WORD_SPLIT.split(text.lower()) if len(w) >= min_len}


def is_blacklisted_phrase(text: str) -> bool:
    return text.lower().strip() in BLACKLISTED_PHRASES


def is_generic_question(question: str) -> bool:
    return question.lower().strip() in GENERIC_QUESTIONS


def fragment_keywords(fragments: Iterable[FragmentSummary]) -> set[str]:
    """Title words and tags longer than three characters."""
    keywords: set[str] = set()
    for fragment in fragments:
        keywords |= _words(fragment.title)
        keywords |= {t.lower() for t in fragment.tags if len(t) > 3}
    return keywords


def validate_central_question(question: str, fragments: list[FragmentSummary]) -> ValidationResult:
    """A question must not be stock phrasing, and must touch the fragments.

    "Touching" means sharing a keyword with a fragment title or tag, or
    quoting something explicitly.
    """
    if not question or not question.strip():
        return ValidationResult(False, "Question is empty")
    if is_generic_question(question):
        return ValidationResult(
            False,
            f'Question "{question}" is too generic',
            "Question should reference specific fragment content or themes",
        )
    if fragments:
        overlap = _words(question) & fragment_keywords(fragments)
        if not overlap and '"' not in question:
            return ValidationResult(
                False,
                "Question has no apparent connection to fragments",
                "Reference fragment titles or themes in the question",
            )
    return VALID


def validate_piece(piece: QuadrantPiece, fragments: list[FragmentSummary]) -> ValidationResult:
    text = piece.text.lower().strip()
    if is_blacklisted_phrase(text):
        return ValidationResult(
            False,
            f'Piece "{piece.text}" matches a stock example',
            "Generate insight grounded in fragment content",
        )

    if fragments:
        has_reference = bool(piece.fragment_id or piece.fragment_title)
        has_summary = bool(
            piece.fragment_summary
            and len(piece.fragment_summary) > 20
            and "Fallback" not in piece.fragment_summary
        )
        if not has_reference and not has_summary:
            vocabulary: set[str] = set()
            for fragment in fragments:
                vocabulary |= _words(fragment.summary) | _words(fragment.title)
                vocabulary |= {t.lower() for t in fragment.tags if len(t) > 3}
            if not _words(text) & vocabulary:
                return ValidationResult(
                    False,
                    f'Piece "{piece.text}" has no connection to provided fragments',
                    "Reference fragment titles, keywords, or themes",
                )

    if not piece.fragment_summary or len(piece.fragment_summary) < 10:
        return ValidationResult(
            False,
            f'Piece "{piece.text}" lacks reasoning',
            "Add fragment_summary explaining why this insight is relevant",
        )
    return VALID


def filter_valid_pieces(
    pieces: list[QuadrantPiece],
    fragments: list[FragmentSummary],
    mode: str,
) -> list[QuadrantPiece]:
    """Keep valid pieces. If every piece fails, keep them all rather than none."""
    valid: list[QuadrantPiece] = []
    for piece in pieces:
        result = validate_piece(piece, fragments)
        if result.is_valid:
            valid.append(piece)
        else:
            logger.debug(f"{mode} piece rejected: {result.reason}")
    if not valid and pieces:
        logger.warning(f"⚠️ All {len(pieces)} {mode} pieces failed validation; keeping originals")
        return list(pieces)
    return valid


def quality_score(pieces: list[QuadrantPiece], fragments: list[FragmentSummary]) -> int:
    """Average 0-100 score for a batch of pieces."""
    if not pieces:
        return 0
    tags = {t.lower() for f in fragments for t in f.tags}
    total = 0
    for piece in pieces:
        score = 50
        if piece.fragment_id or piece.fragment_title:
            score += 20
        if piece.fragment_summary and len(piece.fragment_summary) > 30:
            score += 20
        if is_blacklisted_phrase(piece.text):
            score -= 30
        if tags and set(_WORD_SPLIT.split(piece.text.lower())) & tags:
            score += 10
        total += max(0, min(100, score))
    return round(total / len(pieces))
