"""
Fragment selection for puzzle sessions.

Before a session runs, the canvas fragments are scored and a diverse subset
is handed to the quadrant agents instead of the whole canvas:

    relevance  keyword overlap with the process aim and central question,
               plus tag overlap, plus per-quadrant aspect words
    novelty    fragments no piece links to yet score higher
    diversity  fragments whose tags are already selected are penalized,
               and no tag is selected more than ``max_per_tag`` times

A small global set is picked first, then each quadrant picks its own set
with a cap on text and image fragments. The session receives the union.

If ranking raises, ``balance_fragments`` keeps at most 6 text and 4 image
fragments (10 in total) in canvas order.
"""
from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from puzzlecraft.models.domain import DesignMode, Fragment, FragmentType, PuzzlePiece

logger = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"\W+")

MODE_ASPECTS: dict[DesignMode, frozenset[str]] = {
    DesignMode.FORM: frozenset({
        "visual", "shape", "structure", "composition", "layout",
        "geometric", "organic", "texture", "color", "pattern",
    }),
    DesignMode.MOTION: frozenset({
        "movement", "animation", "transition", "timing", "rhythm",
        "flow", "speed", "easing", "dynamic", "pace",
    }),
    DesignMode.EXPRESSION: frozenset({
        "emotion", "tone", "personality", "mood", "feeling",
        "voice", "warmth", "energy", "calm", "playful",
    }),
    DesignMode.FUNCTION: frozenset({
        "purpose", "utility", "user", "audience", "platform",
        "accessibility", "interaction", "workflow", "task", "goal",
    }),
}


@dataclass(frozen=True)
class SelectionBudget:
    total_target: int = 24
    per_quadrant: int = 6
    max_text_per_quadrant: int = 4
    max_image_per_quadrant: int = 2
    max_per_tag: int = 2


@dataclass
class RankedFragment:
    fragment: Fragment
    relevance: float
    novelty: float
    penalty: float = 0.0

    @property
    def score(self) -> float:
        return self.relevance + self.novelty - self.penalty


@dataclass
class FragmentSelection:
    global_context: list[RankedFragment] = field(default_factory=list)
    per_mode: dict[DesignMode, list[RankedFragment]] = field(default_factory=dict)

    @property
    def selected_ids(self) -> set[str]:
        ids = {r.fragment.id for r in self.global_context}
        for ranked in self.per_mode.values():
            ids.update(r.fragment.id for r in ranked)
        return ids


@dataclass
class _SelectionState:
    fragment_ids: set[str] = field(default_factory=set)
    tag_counts: Counter = field(default_factory=Counter)

    def add(self, fragment: Fragment) -> None:
        self.fragment_ids.add(fragment.id)
        self.tag_counts.update(_tags(fragment))


# =============================================================================
# Scoring
# =============================================================================

def _keywords(text: Optional[str]) -> set[str]:
    if not text:
        return set()
    return {w for w in _WORD_SPLIT.split(text.lower()) if len(w) > 3}


def _tags(fragment: Fragment) -> set[str]:
    return {tag.lower() for tag in fragment.tags if tag.strip()}


def _fragment_keywords(fragment: Fragment) -> set[str]:
    words = _keywords(fragment.title) | _keywords(fragment.summary) | _tags(fragment)
    if fragment.type != FragmentType.IMAGE:
        words |= _keywords(fragment.content)
    return words


def _overlap(a: set[str], b: Iterable[str]) -> float:
    b = set(b)
    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))


def relevance_score(
    fragment: Fragment,
    context_keywords: set[str],
    mode: Optional[DesignMode] = None,
) -> float:
    """Overlap with the session context, in ``[0, 1]``."""
    words = _fragment_keywords(fragment)
    score = _overlap(words, context_keywords)
    score += _overlap(_tags(fragment), context_keywords) * 0.3
    if mode is not None:
        score += _overlap(words, MODE_ASPECTS[mode]) * 0.2
    if fragment.summary and len(fragment.summary) > 20:
        score += 0.1
    return min(1.0, score)


def novelty_bonus(usage_count: int) -> float:
    if usage_count == 0:
        return 0.2
    if usage_count == 1:
        return 0.1
    if usage_count == 2:
        return 0.05
    return 0.0


def diversity_penalty(fragment: Fragment, selected: _SelectionState) -> float:
    penalty = 0.25 * sum(1 for tag in _tags(fragment) if selected.tag_counts[tag])
    if fragment.id in selected.fragment_ids:
        penalty += 0.5
    return min(1.0, penalty)


def fragment_usage_counts(pieces: Iterable[PuzzlePiece]) -> dict[str, int]:
    """How many pieces link back to each fragment."""
    counts: Counter = Counter()
    for piece in pieces:
        for fragment_id in {link.fragment_id for link in piece.fragment_links}:
            counts[fragment_id] += 1
    return dict(counts)


# =============================================================================
# Selection
# =============================================================================

class FragmentRanker:
    """Scores canvas fragments and picks a diverse set for one session."""

    def __init__(self, budget: Optional[SelectionBudget] = None) -> None:
        self.budget = budget or SelectionBudget()

    def _over_tag_quota(self, fragment: Fragment, selected: _SelectionState) -> bool:
        return any(selected.tag_counts[tag] >= self.budget.max_per_tag for tag in _tags(fragment))

    def rank_and_select(
        self,
        fragments: list[Fragment],
        process_aim: str,
        central_question: Optional[str] = None,
        usage_counts: Optional[dict[str, int]] = None,
    ) -> FragmentSelection:
        usage_counts = usage_counts or {}
        context = _keywords(process_aim) | _keywords(central_question)
        selected = _SelectionState()

        scored = [
            RankedFragment(
                fragment=f,
                relevance=relevance_score(f, context),
                novelty=novelty_bonus(usage_counts.get(f.id, 0)),
            )
            for f in fragments
        ]
        scored.sort(key=lambda r: r.score, reverse=True)

        selection = FragmentSelection()
        selection.global_context = self._select_global(
            scored, math.ceil(self.budget.total_target / 4), selected
        )

        for mode in DesignMode:
            mode_scored = [
                RankedFragment(
                    fragment=r.fragment,
                    relevance=relevance_score(r.fragment, context, mode),
                    novelty=r.novelty,
                    penalty=diversity_penalty(r.fragment, selected),
                )
                for r in scored
            ]
            mode_scored.sort(key=lambda r: r.score, reverse=True)
            selection.per_mode[mode] = self._select_for_mode(mode_scored, selected)

        return selection

    def _select_global(
        self,
        candidates: list[RankedFragment],
        count: int,
        selected: _SelectionState,
    ) -> list[RankedFragment]:
        picked: list[RankedFragment] = []
        for candidate in candidates:
            if len(picked) >= count:
                break
            penalty = diversity_penalty(candidate.fragment, selected)
            if penalty > 0.5 or self._over_tag_quota(candidate.fragment, selected):
                continue
            candidate.penalty = penalty
            picked.append(candidate)
            selected.add(candidate.fragment)
        return picked

    def _select_for_mode(
        self,
        candidates: list[RankedFragment],
        selected: _SelectionState,
    ) -> list[RankedFragment]:
        picked: list[RankedFragment] = []
        text_count = image_count = 0
        for candidate in candidates:
            if len(picked) >= self.budget.per_quadrant:
                break
            is_image = candidate.fragment.type == FragmentType.IMAGE
            if is_image and image_count >= self.budget.max_image_per_quadrant:
                continue
            if not is_image and text_count >= self.budget.max_text_per_quadrant:
                continue
            penalty = diversity_penalty(candidate.fragment, selected)
            if penalty > 0.6 or self._over_tag_quota(candidate.fragment, selected):
                continue
            candidate.penalty = penalty
            picked.append(candidate)
            if is_image:
                image_count += 1
            else:
                text_count += 1
            selected.add(candidate.fragment)
        return picked


def balance_fragments(
    fragments: list[Fragment],
    max_text: int = 6,
    max_image: int = 4,
    limit: int = 10,
) -> list[Fragment]:
    """Canvas-order fallback: a few text fragments, then a few images."""
    text = [f for f in fragments if f.type in (FragmentType.TEXT, FragmentType.OTHER)]
    images = [f for f in fragments if f.type == FragmentType.IMAGE]
    return (text[:max_text] + images[:max_image])[:limit]


def select_session_fragments(
    fragments: list[Fragment],
    process_aim: str,
    central_question: Optional[str] = None,
    pieces: Iterable[PuzzlePiece] = (),
    ranker: Optional[FragmentRanker] = None,
) -> list[Fragment]:
    """Fragments to hand a puzzle session, in canvas order."""
    ranker = ranker or FragmentRanker()
    try:
        selection = ranker.rank_and_select(
            fragments, process_aim, central_question, fragment_usage_counts(pieces)
        )
        chosen = [f for f in fragments if f.id in selection.selected_ids]
        logger.info(f"🎯 Ranked selection: {len(chosen)} of {len(fragments)} fragments")
    except Exception as e:
        logger.warning(f"⚠️ Fragment ranking failed, using fallback balance: {e}", exc_info=True)
        chosen = balance_fragments(fragments)

    if chosen and all(f.type == FragmentType.IMAGE for f in chosen):
        logger.warning("⚠️ No text fragments selected; reasoning will rely on images only")
    return chosen
