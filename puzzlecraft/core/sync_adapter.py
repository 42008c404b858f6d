"""
Sync adapter between the visual piece board and the domain store.

The board is owned by the UI and changes constantly; the store holds the
persisted ``PuzzlePiece`` records. On every board change the adapter diffs
the new piece list against the last one it saw, by id:

    added            → upsert PLACED,                 emit PIECE_PLACED
    text changed     → upsert EDITED (AI piece edited
                       by the user) or PLACED,        emit PIECE_EDITED
    position changed → nothing persisted (visual only)
    removed          → status DISCARDED (kept),       emit PIECE_DELETED

Pieces that still have anchors stay CONNECTED across edits and flushes.
Changes made while no puzzle is active are not folded into the baseline,
so they are picked up once a puzzle id is set.

Attaching twice replaces the board subscription instead of stacking it.
"""
from __future__ import annotations

import copy
import logging
from typing import Callable, Optional

from puzzlecraft.board import PieceBoard, VisualPiece, VisualSource
from puzzlecraft.core.context_store import ContextStore
from puzzlecraft.core.event_bus import EventBus
from puzzlecraft.models.domain import (
    FragmentLink,
    PieceSource,
    PieceStatus,
    PuzzlePiece,
)
from puzzlecraft.protocol.events import PiecePayload, UIEventType

logger = logging.getLogger(__name__)

_SOURCE_MAP: dict[VisualSource, PieceSource] = {
    VisualSource.AI: PieceSource.AI,
    VisualSource.USER: PieceSource.USER,
    VisualSource.AI_EDITED: PieceSource.AI_SUGGESTED_USER_EDITED,
}


def visual_to_domain_piece(
    visual: VisualPiece,
    puzzle_id: str,
    status: PieceStatus,
    existing: Optional[PuzzlePiece] = None,
) -> PuzzlePiece:
    """Domain record for a board piece, keeping what only the domain knows."""
    if existing is not None and existing.anchor_ids and status != PieceStatus.DISCARDED:
        status = PieceStatus.CONNECTED
    links = list(existing.fragment_links) if existing else []
    if visual.fragment_id and not any(link.fragment_id == visual.fragment_id for link in links):
        links.append(FragmentLink(fragment_id=visual.fragment_id, puzzle_piece_id=visual.id))
    return PuzzlePiece(
        id=visual.id,
        puzzle_id=puzzle_id,
        mode=visual.quadrant,
        category=visual.category or (existing.category if existing else None),
        text=visual.text,
        user_annotation=existing.user_annotation if existing else None,
        anchor_ids=list(existing.anchor_ids) if existing else [],
        fragment_links=links,
        source=_SOURCE_MAP[visual.source],
        status=status,
    )


def _status_for_edit(visual: VisualPiece) -> PieceStatus:
    return PieceStatus.EDITED if visual.source == VisualSource.AI_EDITED else PieceStatus.PLACED


class PuzzleSyncAdapter:
    """Keeps ``store.puzzle_pieces`` in step with a ``PieceBoard``."""

    def __init__(self, store: ContextStore, bus: EventBus, board: PieceBoard) -> None:
        self.store = store
        self.bus = bus
        self.board = board
        self._previous: dict[str, VisualPiece] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        """Start observing the board. Pieces already on it are the baseline."""
        if self._unsubscribe is not None:
            self.detach()
        self._previous = {p.id: p for p in self.board.pieces}
        self._unsubscribe = self.board.subscribe(self._on_board_change)
        logger.info(f"🔗 Sync adapter attached ({len(self._previous)} pieces on board)")

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("🔌 Sync adapter detached")

    # =========================================================================
    # Diffing
    # =========================================================================

    def _on_board_change(self, pieces: list[VisualPiece]) -> None:
        puzzle_id = self.board.current_puzzle_id
        if not puzzle_id:
            logger.debug("Board changed with no active puzzle; nothing to sync")
            return

        current = {p.id: copy.copy(p) for p in pieces}
        previous, self._previous = self._previous, current

        for piece_id, piece in current.items():
            before = previous.get(piece_id)
            if before is None:
                self._placed(piece, puzzle_id)
            elif before.text != piece.text:
                self._edited(piece, puzzle_id)
            elif before.position != piece.position:
                logger.debug(f"Piece {piece_id} moved to {piece.position}")

        for piece_id, piece in previous.items():
            if piece_id not in current:
                self._removed(piece, puzzle_id)

    def _upsert(self, visual: VisualPiece, puzzle_id: str, status: PieceStatus) -> PuzzlePiece:
        existing = self.store.get_state().get_piece(visual.id)
        domain = visual_to_domain_piece(visual, puzzle_id, status, existing)
        if domain.category is None:
            puzzle = self.store.get_state().get_puzzle(puzzle_id)
            if puzzle is not None:
                domain.category = puzzle.type
        self.store.upsert_puzzle_piece(domain)
        return domain

    def _payload(self, piece: PuzzlePiece) -> PiecePayload:
        return PiecePayload(
            piece_id=piece.id,
            puzzle_id=piece.puzzle_id,
            mode=piece.mode,
            category=piece.category,
            text=piece.text,
            source=piece.source,
        )

    def _placed(self, visual: VisualPiece, puzzle_id: str) -> None:
        domain = self._upsert(visual, puzzle_id, PieceStatus.PLACED)
        if visual.fragment_id:
            puzzle = self.store.get_state().get_puzzle(puzzle_id)
            if puzzle is not None:
                self.store.add_fragment_puzzle_link(visual.fragment_id, puzzle_id, puzzle.type)
        self.bus.emit_type(UIEventType.PIECE_PLACED, self._payload(domain))

    def _edited(self, visual: VisualPiece, puzzle_id: str) -> None:
        domain = self._upsert(visual, puzzle_id, _status_for_edit(visual))
        self.bus.emit_type(UIEventType.PIECE_EDITED, self._payload(domain))

    def _removed(self, visual: VisualPiece, puzzle_id: str) -> None:
        existing = self.store.get_state().get_piece(visual.id)
        if existing is not None:
            self.store.set_piece_status(visual.id, PieceStatus.DISCARDED)
            payload = self._payload(existing)
        else:
            payload = PiecePayload(piece_id=visual.id, puzzle_id=puzzle_id, mode=visual.quadrant, text=visual.text)
        self.bus.emit_type(UIEventType.PIECE_DELETED, payload)

    # =========================================================================
    # Force flush
    # =========================================================================

    def sync_all_to_domain(self) -> int:
        """Write every board piece to the store. Returns the number written."""
        puzzle_id = self.board.current_puzzle_id
        if not puzzle_id:
            logger.warning("⚠️ sync_all_to_domain called with no active puzzle")
            return 0
        pieces = self.board.pieces
        for visual in pieces:
            self._upsert(visual, puzzle_id, _status_for_edit(visual))
        self._previous = {p.id: p for p in pieces}
        logger.info(f"💾 Synced {len(pieces)} board pieces to the store")
        return len(pieces)

    def get_placed_piece_ids(self) -> list[str]:
        return [p.id for p in self.board.pieces]
