"""
Preference aggregation from the piece lifecycle log.

Pure functions only: the same events and pieces always yield the same
profile and the same hint text.
"""
from __future__ import annotations

from typing import Iterable, Optional

from puzzlecraft.models.domain import (
    PieceEvent,
    PieceEventType,
    PreferenceStats,
    PuzzlePiece,
    PuzzleType,
    UserPreferenceProfile,
)

UNCATEGORIZED = "GENERAL"

# Which counter each lifecycle event bumps. DETACH_FROM_ANCHOR bumps nothing.
_EVENT_COUNTERS: dict[PieceEventType, Optional[str]] = {
    PieceEventType.CREATE_SUGGESTED: "suggested",
    PieceEventType.CREATE_USER: "suggested",
    PieceEventType.PLACE: "placed",
    PieceEventType.EDIT_TEXT: "edited",
    PieceEventType.DELETE: "discarded",
    PieceEventType.ATTACH_TO_ANCHOR: "connected",
    PieceEventType.DETACH_FROM_ANCHOR: None,
}


def preference_key(mode: str, category: Optional[PuzzleType | str]) -> str:
    """``mode:category`` key, e.g. ``FORM:CLARIFY``."""
    if isinstance(category, PuzzleType):
        category = category.value
    return f"{mode}:{category or UNCATEGORIZED}"


def aggregate_preferences(
    events: Iterable[PieceEvent],
    pieces: Iterable[PuzzlePiece],
) -> UserPreferenceProfile:
    """Fold the event log into per ``mode:category`` counters.

    Events for piece ids not present in ``pieces`` are skipped.
    """
    by_id = {piece.id: piece for piece in pieces}
    profile: UserPreferenceProfile = {}

    for event in events:
        piece = by_id.get(event.piece_id)
        if piece is None:
            continue
        counter = _EVENT_COUNTERS.get(event.type)
        if counter is None:
            continue
        key = preference_key(piece.mode.value, piece.category)
        stats = profile.setdefault(key, PreferenceStats())
        setattr(stats, counter, getattr(stats, counter) + 1)

    return profile


def _score(stats: PreferenceStats) -> int:
    return stats.placed + stats.connected - stats.discarded


def rank_preferences(profile: UserPreferenceProfile, limit: int = 2) -> list[tuple[str, PreferenceStats]]:
    """Top ``limit`` keys by placed + connected - discarded (stable on ties)."""
    ranked = sorted(profile.items(), key=lambda item: _score(item[1]), reverse=True)
    return ranked[:limit]


def build_preference_hints(profile: UserPreferenceProfile, limit: int = 2) -> list[str]:
    """Short natural-language hints for the highest-ranked keys.

    Each key yields at most one hint: discards win over connects, connects
    over edits.
    """
    hints: list[str] = []
    for key, stats in rank_preferences(profile, limit):
        mode, _, category = key.partition(":")
        label = f"{mode}-{category}"
        total = stats.suggested or 1
        if stats.discarded / total > 0.5:
            hints.append(f"User often discards {label} prompts; keep them short and concrete.")
        elif stats.connected > stats.placed:
            hints.append(f"User tends to attach {label} pieces to anchors; offer connect-ready phrasing.")
        elif stats.edited > stats.placed:
            hints.append(f"User frequently edits {label} prompts; propose concise drafts for quick tweaking.")
    return hints


def format_preference_hints(profile: UserPreferenceProfile, limit: int = 2) -> str:
    """Hints joined into one prompt-ready string (empty when nothing stands out)."""
    return " ".join(build_preference_hints(profile, limit))
