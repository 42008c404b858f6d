"""
In-process visual piece board.

Stands in for the UI's ephemeral collection of placed pieces: positioned,
edited live, and unaware of the domain model. Every change notifies the
listeners with a snapshot of the whole board, which is what the sync
adapter diffs.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from puzzlecraft.models.base import new_id
from puzzlecraft.models.domain import DesignMode, PuzzleType

logger = logging.getLogger(__name__)


class VisualSource(str, Enum):
    AI = "ai"
    USER = "user"
    AI_EDITED = "ai_edited"


@dataclass
class VisualPiece:
    quadrant: DesignMode
    text: str
    position: tuple[int, int] = (0, 0)
    source: VisualSource = VisualSource.USER
    id: str = field(default_factory=new_id)
    fragment_id: Optional[str] = None
    fragment_title: Optional[str] = None
    priority: Optional[int] = None
    category: Optional[PuzzleType] = None


BoardListener = Callable[[list[VisualPiece]], None]


class PieceBoard:
    """Mutable piece collection with change listeners."""

    def __init__(self, puzzle_id: Optional[str] = None) -> None:
        self.current_puzzle_id = puzzle_id
        self._pieces: dict[str, VisualPiece] = {}
        self._listeners: list[BoardListener] = []

    @property
    def pieces(self) -> list[VisualPiece]:
        """Independent copies, in insertion order."""
        return [copy.copy(p) for p in self._pieces.values()]

    def get(self, piece_id: str) -> Optional[VisualPiece]:
        piece = self._pieces.get(piece_id)
        return copy.copy(piece) if piece else None

    def subscribe(self, listener: BoardListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        snapshot = self.pieces
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Board listener failed: {e}", exc_info=True)

    def add(self, piece: VisualPiece) -> VisualPiece:
        self._pieces[piece.id] = copy.copy(piece)
        self._changed()
        return piece

    def update_text(self, piece_id: str, text: str) -> None:
        """Edit a piece's label. An AI piece edited by hand becomes ``ai_edited``."""
        piece = self._pieces.get(piece_id)
        if piece is None:
            raise KeyError(piece_id)
        piece.text = text
        if piece.source == VisualSource.AI:
            piece.source = VisualSource.AI_EDITED
        self._changed()

    def move(self, piece_id: str, position: tuple[int, int]) -> None:
        piece = self._pieces.get(piece_id)
        if piece is None:
            raise KeyError(piece_id)
        piece.position = position
        self._changed()

    def remove(self, piece_id: str) -> None:
        if self._pieces.pop(piece_id, None) is not None:
            self._changed()

    def clear(self) -> None:
        self._pieces.clear()
        self._changed()
