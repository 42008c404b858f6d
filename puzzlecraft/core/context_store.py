"""
Versioned ContextStore for puzzlecraft.

This is the **authoritative source of truth** for a project. Every other
component reads it through ``get_state()`` and writes it through a named
command; the subscriber notification is the only channel back out.

Key principles:
1. The whole ``ProjectStore`` is the unit of versioning - a commit replaces it
2. Every commit pushes the previous snapshot onto history and clears redo
3. Commands validate before committing; a rejected draft leaves no trace
4. Notification is synchronous and isolated per subscriber

Architecture:
    ContextStore
        ├── current ProjectStore (never mutated in place)
        ├── history (undo stack, optionally bounded)
        ├── future (redo stack)
        └── StorageAdapter (optional, best-effort persist/hydrate)
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from puzzlecraft.core.errors import StoreInvariantError
from puzzlecraft.models.base import now_ms
from puzzlecraft.models.domain import (
    Anchor,
    Cluster,
    Fragment,
    FragmentPuzzleLink,
    FragmentType,
    PieceEvent,
    PieceStatus,
    Project,
    ProjectStore,
    Puzzle,
    PuzzlePiece,
    PuzzleSummary,
    PuzzleType,
    UserPreferenceProfile,
)
from puzzlecraft.storage import StorageAdapter

logger = logging.getLogger(__name__)

StoreUpdater = Callable[[ProjectStore], None]
Subscriber = Callable[[], None]


# =============================================================================
# Fragment defaults
# =============================================================================

def default_fragment_title(fragment: Fragment) -> str:
    """Readable title synthesized from a fragment's type and content."""
    if fragment.type == FragmentType.IMAGE:
        created = fragment.created_at or now_ms()
        date = datetime.fromtimestamp(created / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
        return f"Image {date}"
    if fragment.type == FragmentType.LINK:
        host = urlparse(fragment.content.strip()).hostname
        return f"Link: {host}" if host else "Link Reference"
    if fragment.type == FragmentType.TEXT:
        words = fragment.content.split()[:4]
        if not words:
            return "Text Fragment"
        title = " ".join(words)
        return title[:27] + "..." if len(title) > 30 else title
    return "Untitled Fragment"


def default_fragment_summary(fragment: Fragment) -> str:
    if fragment.type == FragmentType.IMAGE:
        return "Image content for visual reference"
    if fragment.type == FragmentType.LINK:
        return f"External link: {fragment.content[:100]}"
    content = fragment.content
    return content[:150] + "..." if len(content) > 150 else content


def validate_fragment(fragment: Fragment) -> Fragment:
    """Fill in a missing title/summary. Returns a new fragment."""
    return fragment.model_copy(
        update={
            "title": fragment.title or default_fragment_title(fragment),
            "summary": fragment.summary or default_fragment_summary(fragment),
        },
        deep=True,
    )


def _merge_fragment(existing: Fragment, incoming: Fragment) -> Fragment:
    """Upsert merge: AI-derived summary/tags survive writes that omit them.

    The title is re-derived from the new content unless the write carries one.
    """
    validated = validate_fragment(incoming)
    labels = list(existing.labels)
    labels.extend(label for label in incoming.labels if label not in labels)
    return validated.model_copy(
        update={
            "title": validated.title,
            "summary": incoming.summary or existing.summary or validated.summary,
            "tags": list(incoming.tags) if incoming.tags else list(existing.tags),
            "labels": labels,
            "created_at": existing.created_at or incoming.created_at,
            "updated_at": now_ms(),
        }
    )


# =============================================================================
# Store
# =============================================================================

class ContextStore:
    """
    Versioned, undo-capable container for one ``ProjectStore``.

    Usage:
        store = ContextStore(ProjectStore(project=project))
        unsubscribe = store.subscribe(lambda: render(store.get_state()))
        store.upsert_fragment(Fragment(content="warm analog hum"))
        store.undo()
    """

    def __init__(
        self,
        initial: ProjectStore | Project,
        *,
        storage: Optional[StorageAdapter] = None,
        history_limit: int = 0,
    ):
        if isinstance(initial, Project):
            initial = ProjectStore(project=initial)
        self._state = initial.model_copy(deep=True)
        self._history: deque[ProjectStore] = deque(maxlen=history_limit or None)
        self._future: list[ProjectStore] = []
        self._subscribers: list[Subscriber] = []
        self._storage = storage
        self.version = 0

    # =========================================================================
    # Core: read, commit, undo/redo
    # =========================================================================

    def get_state(self) -> ProjectStore:
        """Current snapshot. Treat as read-only; write through commands."""
        return self._state

    def set_state(self, updater: StoreUpdater) -> ProjectStore:
        """
        Apply ``updater`` to a deep copy of the current state and commit it.

        If the updater raises, nothing is committed and the error propagates.
        """
        draft = self._state.model_copy(deep=True)
        updater(draft)
        self._history.append(self._state)
        self._future.clear()
        self._state = draft
        self.version += 1
        self._notify()
        return self._state

    def undo(self) -> Optional[ProjectStore]:
        if not self._history:
            return None
        self._future.append(self._state)
        self._state = self._history.pop()
        self.version += 1
        logger.debug(f"↩️ Undo (history={len(self._history)}, future={len(self._future)})")
        self._notify()
        return self._state

    def redo(self) -> Optional[ProjectStore]:
        if not self._future:
            return None
        self._history.append(self._state)
        self._state = self._future.pop()
        self.version += 1
        logger.debug(f"↪️ Redo (history={len(self._history)}, future={len(self._future)})")
        self._notify()
        return self._state

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._subscribers.append(fn)

        def unsubscribe() -> None:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

        return unsubscribe

    def _notify(self) -> None:
        for fn in list(self._subscribers):
            try:
                fn()
            except Exception as e:
                logger.error(f"Store subscriber failed: {e}", exc_info=True)

    # =========================================================================
    # Persistence (best effort)
    # =========================================================================

    async def persist(self) -> bool:
        """Save the current snapshot. Failures are logged, never raised."""
        if self._storage is None:
            return False
        try:
            await self._storage.save(self._state)
            return True
        except Exception as e:
            logger.error(f"❌ Persist failed: {e}", exc_info=True)
            return False

    async def hydrate(self) -> bool:
        """
        Replace the current state with the stored snapshot, if any.

        Clears undo/redo. Failures are logged, never raised.
        """
        if self._storage is None:
            return False
        try:
            loaded = await self._storage.load()
        except Exception as e:
            logger.error(f"❌ Hydrate failed: {e}", exc_info=True)
            return False
        if loaded is None:
            return False
        self._state = loaded
        self._history.clear()
        self._future.clear()
        self.version += 1
        logger.info(
            f"💾 Hydrated project {loaded.project.id} "
            f"({len(loaded.fragments)} fragments, {len(loaded.puzzles)} puzzles)"
        )
        self._notify()
        return True

    # =========================================================================
    # Commands: fragments and clusters
    # =========================================================================

    def upsert_fragment(self, fragment: Fragment) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            for i, existing in enumerate(draft.fragments):
                if existing.id == fragment.id:
                    draft.fragments[i] = _merge_fragment(existing, fragment)
                    return
            created = validate_fragment(fragment)
            if created.created_at is None:
                created.created_at = now_ms()
            draft.fragments.append(created)

        return self.set_state(apply)

    def delete_fragment(self, fragment_id: str) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            draft.fragments = [f for f in draft.fragments if f.id != fragment_id]
            for cluster in draft.clusters:
                cluster.fragment_ids = [fid for fid in cluster.fragment_ids if fid != fragment_id]

        return self.set_state(apply)

    def upsert_cluster(self, cluster: Cluster) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            draft.clusters = [c for c in draft.clusters if c.id != cluster.id]
            draft.clusters.append(cluster.model_copy(deep=True))

        return self.set_state(apply)

    def replace_clusters(self, clusters: Iterable[Cluster]) -> ProjectStore:
        new_clusters = [c.model_copy(deep=True) for c in clusters]

        def apply(draft: ProjectStore) -> None:
            draft.clusters = new_clusters

        return self.set_state(apply)

    def label_fragments(self, fragment_ids: Iterable[str], puzzle_id: str) -> ProjectStore:
        """Add ``puzzle_id`` to each fragment's label set."""
        ids = set(fragment_ids)

        def apply(draft: ProjectStore) -> None:
            for fragment in draft.fragments:
                if fragment.id in ids and puzzle_id not in fragment.labels:
                    fragment.labels.append(puzzle_id)

        return self.set_state(apply)

    def update_process_aim(self, process_aim: str) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            draft.project.process_aim = process_aim

        return self.set_state(apply)

    # =========================================================================
    # Commands: puzzles, anchors, pieces
    # =========================================================================

    def add_puzzle(self, puzzle: Puzzle) -> ProjectStore:
        """Insert or replace a puzzle by id. Its type can never change."""
        def apply(draft: ProjectStore) -> None:
            _put_puzzle(draft, puzzle)

        return self.set_state(apply)

    def create_puzzle(
        self,
        puzzle: Puzzle,
        anchors: Iterable[Anchor] = (),
        pieces: Iterable[PuzzlePiece] = (),
    ) -> ProjectStore:
        """Add a puzzle with its anchors and seed pieces in one commit."""
        anchors = list(anchors)
        pieces = list(pieces)
        for entity in (*anchors, *pieces):
            if entity.puzzle_id != puzzle.id:
                raise StoreInvariantError(
                    f"{type(entity).__name__} {entity.id} belongs to puzzle "
                    f"{entity.puzzle_id}, not {puzzle.id}",
                    entity_id=entity.id,
                )

        def apply(draft: ProjectStore) -> None:
            _put_puzzle(draft, puzzle)
            draft.anchors.extend(a.model_copy(deep=True) for a in anchors)
            for piece in pieces:
                _put_piece(draft, piece)

        return self.set_state(apply)

    def add_anchor(self, anchor: Anchor) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            draft.anchors.append(anchor.model_copy(deep=True))

        return self.set_state(apply)

    def upsert_puzzle_piece(self, piece: PuzzlePiece) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            _put_piece(draft, piece)

        return self.set_state(apply)

    def set_piece_status(self, piece_id: str, status: PieceStatus) -> ProjectStore:
        if self._state.get_piece(piece_id) is None:
            logger.warning(f"set_piece_status: unknown piece {piece_id}")
            return self._state

        def apply(draft: ProjectStore) -> None:
            piece = draft.get_piece(piece_id)
            if piece is not None:
                piece.status = status

        return self.set_state(apply)

    def add_puzzle_summary(self, summary: PuzzleSummary) -> ProjectStore:
        """Upsert by puzzle id; the newest summary wins."""
        def apply(draft: ProjectStore) -> None:
            draft.puzzle_summaries = [
                s for s in draft.puzzle_summaries if s.puzzle_id != summary.puzzle_id
            ]
            draft.puzzle_summaries.append(summary.model_copy(deep=True))

        return self.set_state(apply)

    # =========================================================================
    # Commands: preference tracking
    # =========================================================================

    def add_piece_event(self, event: PieceEvent) -> ProjectStore:
        def apply(draft: ProjectStore) -> None:
            draft.piece_events.append(event.model_copy())

        return self.set_state(apply)

    def set_preference_profile(self, profile: UserPreferenceProfile) -> ProjectStore:
        new_profile = {key: stats.model_copy() for key, stats in profile.items()}

        def apply(draft: ProjectStore) -> None:
            draft.preference_profile = new_profile

        return self.set_state(apply)

    def add_fragment_puzzle_link(
        self,
        fragment_id: str,
        puzzle_id: str,
        puzzle_type: PuzzleType,
    ) -> ProjectStore:
        """Record that a fragment fed a puzzle. Duplicate pairs are ignored."""
        def apply(draft: ProjectStore) -> None:
            for link in draft.fragment_puzzle_links:
                if link.fragment_id == fragment_id and link.puzzle_id == puzzle_id:
                    return
            draft.fragment_puzzle_links.append(
                FragmentPuzzleLink(
                    fragment_id=fragment_id,
                    puzzle_id=puzzle_id,
                    puzzle_type=puzzle_type,
                )
            )

        return self.set_state(apply)

    def get_fragment_puzzle_type(self, fragment_id: str) -> Optional[PuzzleType]:
        """Type of the puzzle this fragment was most recently linked to."""
        links = [link for link in self._state.fragment_puzzle_links if link.fragment_id == fragment_id]
        if not links:
            return None
        return max(links, key=lambda link: link.linked_at).puzzle_type

    def update_mascot_state(self, **changes: object) -> ProjectStore:
        """Set fields on ``agent_state.mascot`` (e.g. ``last_proposal=...``)."""
        def apply(draft: ProjectStore) -> None:
            for name, value in changes.items():
                if name not in type(draft.agent_state.mascot).model_fields:
                    raise StoreInvariantError(f"Unknown mascot field: {name}")
                setattr(draft.agent_state.mascot, name, value)

        return self.set_state(apply)


def _put_puzzle(draft: ProjectStore, puzzle: Puzzle) -> None:
    existing = draft.get_puzzle(puzzle.id)
    if existing is not None and existing.type != puzzle.type:
        raise StoreInvariantError(
            f"Puzzle {puzzle.id} is {existing.type.value}; cannot change it to {puzzle.type.value}",
            entity_id=puzzle.id,
        )
    draft.puzzles = [p for p in draft.puzzles if p.id != puzzle.id]
    draft.puzzles.append(puzzle.model_copy(deep=True))


def _put_piece(draft: ProjectStore, piece: PuzzlePiece) -> None:
    for i, existing in enumerate(draft.puzzle_pieces):
        if existing.id == piece.id:
            draft.puzzle_pieces[i] = piece.model_copy(deep=True)
            return
    draft.puzzle_pieces.append(piece.model_copy(deep=True))
