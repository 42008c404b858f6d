"""
Orchestrator: the only component that talks to the LLM.

Subscribes to the event bus, reads the context store, runs the agents and
writes their results back through store commands.

Event routing:
    FRAGMENT_ADDED / UPDATED / DELETED  → debounced fragment context analysis
    MASCOT_CLICKED                      → mascot proposal → puzzle design → new puzzle
    PUZZLE_FINISH_CLICKED               → puzzle summary + fragment labels
    PIECE_CREATED                       → quadrant piece suggestions
    PIECE_PLACED / EDITED / DELETED     → piece event log + preference profile
    PIECE_ATTACHED / DETACHED_TO_ANCHOR → anchor links + piece event log
    PUZZLE_SESSION_STARTED              → four-quadrant puzzle session
    PUZZLE_SESSION_COMPLETED            → preference profile refresh
    QUADRANT_REGENERATE                 → single quadrant re-run
    anything else                       → ignored (debug log)

Bus dispatch is synchronous; each handler runs as its own task on the
running loop. A handler that fails reports ``AI_ERROR`` on the bus and
never raises back into ``emit``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

from puzzlecraft.agents.common import sanitize_rationale, summarize_fragment
from puzzlecraft.agents.fragment_context import run_fragment_context_agent
from puzzlecraft.agents.mascot import run_mascot_self, run_mascot_suggest
from puzzlecraft.agents.puzzle_designer import design_to_entities, run_puzzle_design, run_puzzle_summary
from puzzlecraft.agents.quadrant_piece import run_quadrant_piece_agent
from puzzlecraft.core.context_store import ContextStore
from puzzlecraft.core.debounce import DebouncedCall
from puzzlecraft.core.event_bus import EventBus
from puzzlecraft.core.fragment_ranker import select_session_fragments
from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.preferences import aggregate_preferences, format_preference_hints, preference_key
from puzzlecraft.core.puzzle_session import PuzzleSessionCoordinator
from puzzlecraft.models.base import CamelModel
from puzzlecraft.models.domain import (
    DesignMode,
    PieceEvent,
    PieceEventType,
    PieceSource,
    PieceStatus,
    ProjectStore,
    Puzzle,
    PuzzleOrigin,
    PuzzlePiece,
    PuzzleType,
)
from puzzlecraft.models.session import PuzzleSessionInput, SessionStatus
from puzzlecraft.protocol.events import (
    AIStatusPayload,
    AnchorLinkPayload,
    EventPayloadError,
    MascotClickedPayload,
    PieceCreatedPayload,
    PiecePayload,
    PuzzleCreatedPayload,
    PuzzleFinishPayload,
    QuadrantRegeneratedPayload,
    QuadrantRegeneratePayload,
    SessionCompletedPayload,
    SessionGeneratedPayload,
    SessionStartedPayload,
    UIEvent,
    UIEventType,
    parse_payload,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=CamelModel)

ACTION_START_FROM_QUESTION = "start_from_my_question"
ACTION_SUGGEST_PUZZLE = "suggest_puzzle"

FRAGMENT_EVENTS = frozenset({
    UIEventType.FRAGMENT_ADDED,
    UIEventType.FRAGMENT_UPDATED,
    UIEventType.FRAGMENT_DELETED,
})

DEFAULT_QUESTION = "What is the core question?"


def _typed_payload(event: UIEvent, model: Type[P]) -> P:
    payload = parse_payload(event)
    if not isinstance(payload, model):
        raise EventPayloadError(f"{event.type.value} payload is not a {model.__name__}")
    return payload


def _latest_puzzle(state: ProjectStore) -> Optional[Puzzle]:
    return max(state.puzzles, key=lambda p: p.created_at) if state.puzzles else None


class Orchestrator:
    """Routes bus events to agents and writes the results to the store."""

    def __init__(
        self,
        bus: EventBus,
        store: ContextStore,
        llm: BaseLLMClient,
        coordinator: Optional[PuzzleSessionCoordinator] = None,
        *,
        debounce_seconds: float = 0.5,
    ) -> None:
        self.bus = bus
        self.store = store
        self.llm = llm
        self.coordinator = coordinator or PuzzleSessionCoordinator(llm)
        self._debounced = DebouncedCall(
            self._handle_fragment_burst, debounce_seconds, name="fragment-context"
        )
        self._tasks: set[asyncio.Task[None]] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._handlers: dict[UIEventType, Callable[[UIEvent], Awaitable[None]]] = {
            UIEventType.MASCOT_CLICKED: self._handle_mascot,
            UIEventType.PUZZLE_FINISH_CLICKED: self._handle_puzzle_finish,
            UIEventType.PIECE_CREATED: self._handle_piece_created,
            UIEventType.PIECE_PLACED: self._handle_piece_lifecycle,
            UIEventType.PIECE_EDITED: self._handle_piece_lifecycle,
            UIEventType.PIECE_DELETED: self._handle_piece_lifecycle,
            UIEventType.PIECE_ATTACHED_TO_ANCHOR: self._handle_anchor_link,
            UIEventType.PIECE_DETACHED_FROM_ANCHOR: self._handle_anchor_link,
            UIEventType.PUZZLE_SESSION_STARTED: self._handle_session_started,
            UIEventType.PUZZLE_SESSION_COMPLETED: self._handle_session_completed,
            UIEventType.QUADRANT_REGENERATE: self._handle_quadrant_regenerate,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    @property
    def fragment_analysis_count(self) -> int:
        """How many debounced fragment analyses have fired."""
        return self._debounced.fire_count

    def attach(self) -> None:
        """Subscribe to the bus. Calling it again is a no-op."""
        if self._unsubscribe is not None:
            logger.debug("Orchestrator already attached")
            return
        self._unsubscribe = self.bus.subscribe(self._on_event)
        logger.info(f"🎛️ Orchestrator attached (llm={self.llm.model}, mock={self.llm.is_mock})")

    def detach(self) -> None:
        """Unsubscribe and cancel any pending fragment analysis."""
        self._debounced.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("🔌 Orchestrator detached")

    async def drain(self) -> None:
        """Wait until every handler that has started is finished."""
        while True:
            await self._debounced.wait()
            pending = list(self._tasks)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _on_event(self, event: UIEvent) -> None:
        if event.type in FRAGMENT_EVENTS:
            self._debounced.schedule()
            return
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug(f"No orchestrator route for {event.type.value}")
            return
        self._spawn(handler(event), name=event.type.value)

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(self._guarded(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guarded(self, coro: Awaitable[None], name: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.error(f"❌ {name} handler failed: {e}", exc_info=True)

    def _status(
        self,
        event_type: UIEventType,
        source: str,
        message: str,
        *,
        retry_event_type: Optional[UIEventType] = None,
        retry_payload: Optional[dict[str, Any]] = None,
    ) -> None:
        recoverable = True if event_type == UIEventType.AI_ERROR else None
        self.bus.emit_type(
            event_type,
            AIStatusPayload(
                source=source,
                message=message,
                recoverable=recoverable,
                retry_event_type=retry_event_type,
                retry_payload=retry_payload,
            ),
        )

    # =========================================================================
    # Fragments
    # =========================================================================

    async def _handle_fragment_burst(self) -> None:
        state = self.store.get_state()
        if not state.fragments:
            logger.debug("Fragment burst with no fragments; skipping analysis")
            return

        logger.info(f"🧠 Analyzing {len(state.fragments)} fragments")
        try:
            result = await run_fragment_context_agent(
                state.project.process_aim, state.fragments, self.llm
            )
        except Exception as e:
            logger.error(f"❌ Fragment context analysis failed: {e}", exc_info=True)
            self._status(
                UIEventType.AI_ERROR,
                "fragment_context",
                "Couldn't analyze your fragments.",
                retry_event_type=UIEventType.FRAGMENT_UPDATED,
                retry_payload={},
            )
            return

        insights = {insight.id: insight for insight in result.fragments}
        known = {f.id for f in state.fragments}
        matched = [fid for fid in insights if fid in known]
        clusters = [c.to_cluster() for c in result.clusters or []]
        if not matched and not clusters:
            logger.debug("Fragment analysis returned nothing to merge")
            return

        def apply(draft: ProjectStore) -> None:
            for fragment in draft.fragments:
                insight = insights.get(fragment.id)
                if insight is None:
                    continue
                fragment.summary = insight.summary
                fragment.tags = list(insight.tags)
            if clusters:
                draft.clusters = clusters

        self.store.set_state(apply)
        logger.info(f"✅ Fragment analysis merged: {len(matched)} fragments, {len(clusters)} clusters")

    # =========================================================================
    # Mascot and puzzle creation
    # =========================================================================

    async def _handle_mascot(self, event: UIEvent) -> None:
        payload = _typed_payload(event, MascotClickedPayload)
        if payload.action not in (ACTION_START_FROM_QUESTION, ACTION_SUGGEST_PUZZLE):
            logger.warning(f"⚠️ Unknown mascot action: {payload.action}")
            return

        suggest = payload.action == ACTION_SUGGEST_PUZZLE
        self._status(
            UIEventType.AI_LOADING,
            "mascot",
            "Analyzing your canvas..." if suggest else "Thinking about your question...",
        )
        try:
            if suggest:
                await self._mascot_suggest()
                self._status(UIEventType.AI_SUCCESS, "mascot", "Analysis complete!")
            else:
                await self._mascot_self(payload.user_question or "")
                self._status(UIEventType.AI_SUCCESS, "mascot", "Puzzle suggestion ready!")
        except Exception as e:
            logger.error(f"❌ Mascot failed: {e}", exc_info=True)
            self._status(
                UIEventType.AI_ERROR,
                "mascot",
                "Mascot couldn't process your request. Please try again.",
                retry_event_type=UIEventType.MASCOT_CLICKED,
                retry_payload=dict(event.payload),
            )

    async def _mascot_self(self, user_question: str) -> None:
        state = self.store.get_state()
        fragments = [summarize_fragment(f) for f in state.fragments[:5]]
        proposal = await run_mascot_self(
            state.project.process_aim,
            user_question,
            fragments[:4],
            state.puzzle_summaries[:4],
            self.llm,
            format_preference_hints(state.preference_profile),
        )
        proposal.rationale = sanitize_rationale(proposal.rationale, fragments)
        self.store.update_mascot_state(last_proposal=proposal.model_dump(mode="json"))
        logger.info(f"🐙 Mascot proposal: {proposal.puzzle_type.value} - {proposal.central_question}")

        await self._create_puzzle(
            proposal.central_question,
            proposal.puzzle_type,
            proposal.primary_modes,
            proposal.rationale,
            PuzzleOrigin.USER_REQUEST,
        )

    async def _mascot_suggest(self) -> None:
        state = self.store.get_state()
        fragments = [summarize_fragment(f) for f in state.fragments[:5]]
        suggestion = await run_mascot_suggest(
            state.project.process_aim,
            state.clusters,
            state.puzzle_summaries[:4],
            self.llm,
            format_preference_hints(state.preference_profile),
        )
        suggestion.rationale = sanitize_rationale(suggestion.rationale, fragments)
        self.store.update_mascot_state(last_suggestion=suggestion.model_dump(mode="json"))

        if suggestion.should_suggest is False or not suggestion.central_question:
            logger.info("🐙 Mascot has no puzzle to suggest right now")
            return
        await self._create_puzzle(
            suggestion.central_question,
            suggestion.puzzle_type,
            suggestion.primary_modes,
            suggestion.rationale,
            PuzzleOrigin.AI_SUGGESTED,
        )

    async def _create_puzzle(
        self,
        question: str,
        puzzle_type: PuzzleType,
        primary_modes: list[DesignMode],
        rationale: str,
        origin: PuzzleOrigin,
    ) -> Puzzle:
        """Design the puzzle, then commit it with its anchors and seed pieces."""
        state = self.store.get_state()
        design = await run_puzzle_design(
            state.project.process_aim,
            question,
            puzzle_type,
            primary_modes,
            rationale,
            state.clusters,
            state.puzzle_summaries[:3],
            self.llm,
        )
        puzzle = Puzzle(central_question=design.central_question, type=puzzle_type, created_from=origin)
        anchors, pieces = design_to_entities(design, puzzle.id, puzzle_type)
        self.store.create_puzzle(puzzle, anchors, pieces)
        for piece in pieces:
            self.store.add_piece_event(PieceEvent(piece_id=piece.id, type=PieceEventType.CREATE_SUGGESTED))
        logger.info(
            f"🧩 Puzzle created: {puzzle.id[:8]} {puzzle_type.value} "
            f"({len(anchors)} anchors, {len(pieces)} seed pieces)"
        )

        self.bus.emit_type(
            UIEventType.PUZZLE_CREATED,
            PuzzleCreatedPayload(
                puzzle_id=puzzle.id,
                central_question=puzzle.central_question,
                puzzle_type=puzzle.type,
                created_from=origin,
            ),
        )
        return puzzle

    # =========================================================================
    # Puzzle finish
    # =========================================================================

    async def _handle_puzzle_finish(self, event: UIEvent) -> None:
        payload = _typed_payload(event, PuzzleFinishPayload)
        state = self.store.get_state()
        puzzle = state.get_puzzle(payload.puzzle_id) if payload.puzzle_id else _latest_puzzle(state)
        puzzle_id = payload.puzzle_id or (puzzle.id if puzzle else None)
        if not puzzle_id:
            logger.warning("⚠️ Puzzle finish with no puzzle to summarize")
            return

        anchors = payload.anchors or state.anchors_for(puzzle_id)
        pieces = payload.pieces or state.pieces_for(puzzle_id)
        question = payload.central_question or (puzzle.central_question if puzzle else DEFAULT_QUESTION)
        fragment_ids = list(dict.fromkeys([
            *payload.fragment_ids,
            *(link.fragment_id for piece in pieces for link in piece.fragment_links),
        ]))

        self._status(UIEventType.AI_LOADING, "synthesis", "Generating puzzle summary...")
        logger.info(
            f"🏁 Finishing puzzle {puzzle_id[:8]}: {len(anchors)} anchors, "
            f"{len(pieces)} pieces, {len(fragment_ids)} fragments"
        )
        try:
            summary = await run_puzzle_summary(
                puzzle_id,
                puzzle.type if puzzle else None,
                state.project.process_aim,
                question,
                anchors,
                pieces,
                self.llm,
            )
        except Exception as e:
            logger.error(f"❌ Puzzle summary failed: {e}", exc_info=True)
            self._status(
                UIEventType.AI_ERROR,
                "synthesis",
                "Failed to generate puzzle summary.",
                retry_event_type=UIEventType.PUZZLE_FINISH_CLICKED,
                retry_payload=dict(event.payload),
            )
            return

        self.store.add_puzzle_summary(summary)
        if fragment_ids:
            self.store.label_fragments(fragment_ids, puzzle_id)
            if puzzle is not None:
                current = self.store.get_state()
                for fragment_id in fragment_ids:
                    if current.get_fragment(fragment_id) is not None:
                        self.store.add_fragment_puzzle_link(fragment_id, puzzle_id, puzzle.type)

        self._status(UIEventType.AI_SUCCESS, "synthesis", "Summary generated!")
        self.bus.emit_type(
            UIEventType.PUZZLE_SESSION_COMPLETED,
            SessionCompletedPayload(puzzle_id=puzzle_id, summary=summary),
        )

    # =========================================================================
    # Pieces
    # =========================================================================

    async def _handle_piece_created(self, event: UIEvent) -> None:
        payload = _typed_payload(event, PieceCreatedPayload)
        state = self.store.get_state()
        puzzle = state.get_puzzle(payload.puzzle_id) if payload.puzzle_id else _latest_puzzle(state)
        if puzzle is None:
            logger.warning("⚠️ PIECE_CREATED with no puzzle; ignoring")
            return

        mode = payload.mode
        anchors = payload.anchors or state.anchors_for(puzzle.id)
        existing = payload.existing_pieces_for_mode or [
            p.text for p in state.pieces_for(puzzle.id)
            if p.mode == mode and p.status != PieceStatus.DISCARDED
        ]
        hint = payload.preference_hint or ""
        stats = state.preference_profile.get(preference_key(mode.value, puzzle.type))
        if stats is not None:
            if stats.discarded > stats.placed:
                hint += " User often discards this type; keep suggestions concise."
            if stats.edited > stats.placed / 2:
                hint += " User often edits AI suggestions; provide starting points."

        fragments = [summarize_fragment(f) for f in state.fragments[:8]]
        logger.info(f"🧩 PIECE_CREATED: mode={mode.value}, type={puzzle.type.value}, fragments={len(fragments)}")
        try:
            suggestions = await run_quadrant_piece_agent(
                mode,
                puzzle.type,
                payload.central_question or puzzle.central_question,
                state.project.process_aim,
                anchors,
                existing,
                fragments,
                self.llm,
                hint.strip(),
            )
        except Exception as e:
            logger.error(f"❌ Quadrant piece generation failed: {e}", exc_info=True)
            self._status(
                UIEventType.AI_ERROR,
                "quadrant_piece",
                f"Couldn't suggest a {mode.value.lower()} piece.",
                retry_event_type=UIEventType.PIECE_CREATED,
                retry_payload=dict(event.payload),
            )
            return

        for suggestion in suggestions:
            piece = PuzzlePiece(
                puzzle_id=puzzle.id,
                mode=mode,
                category=puzzle.type,
                text=suggestion.text,
                source=PieceSource.AI,
                status=PieceStatus.SUGGESTED,
            )
            self.store.upsert_puzzle_piece(piece)
            self.store.add_piece_event(PieceEvent(piece_id=piece.id, type=PieceEventType.CREATE_SUGGESTED))
        logger.info(f"✅ {len(suggestions)} {mode.value} suggestions added to puzzle {puzzle.id[:8]}")

    async def _handle_piece_lifecycle(self, event: UIEvent) -> None:
        payload = _typed_payload(event, PiecePayload)
        if not payload.piece_id:
            logger.debug(f"{event.type.value} without pieceId; ignoring")
            return

        state = self.store.get_state()
        piece = state.get_piece(payload.piece_id)
        new_events: list[PieceEventType] = []
        if event.type == UIEventType.PIECE_PLACED:
            seen = any(e.piece_id == payload.piece_id for e in state.piece_events)
            if not seen:
                source = payload.source or (piece.source if piece else PieceSource.USER)
                new_events.append(
                    PieceEventType.CREATE_USER if source == PieceSource.USER else PieceEventType.CREATE_SUGGESTED
                )
            new_events.append(PieceEventType.PLACE)
        elif event.type == UIEventType.PIECE_EDITED:
            new_events.append(PieceEventType.EDIT_TEXT)
        else:
            new_events.append(PieceEventType.DELETE)

        for event_type in new_events:
            self.store.add_piece_event(PieceEvent(piece_id=payload.piece_id, type=event_type))
        logger.debug(f"{event.type.value}: logged {[t.value for t in new_events]} for {payload.piece_id}")
        self._refresh_preferences()

    async def _handle_anchor_link(self, event: UIEvent) -> None:
        payload = _typed_payload(event, AnchorLinkPayload)
        piece = self.store.get_state().get_piece(payload.piece_id)
        if piece is None:
            logger.warning(f"⚠️ {event.type.value} for unknown piece {payload.piece_id}")
            return

        updated = piece.model_copy(deep=True)
        if event.type == UIEventType.PIECE_ATTACHED_TO_ANCHOR:
            if payload.anchor_id not in updated.anchor_ids:
                updated.anchor_ids.append(payload.anchor_id)
            updated.status = PieceStatus.CONNECTED
            log_type = PieceEventType.ATTACH_TO_ANCHOR
        else:
            updated.anchor_ids = [a for a in updated.anchor_ids if a != payload.anchor_id]
            if not updated.anchor_ids and updated.status == PieceStatus.CONNECTED:
                updated.status = PieceStatus.PLACED
            log_type = PieceEventType.DETACH_FROM_ANCHOR

        self.store.upsert_puzzle_piece(updated)
        self.store.add_piece_event(PieceEvent(piece_id=piece.id, type=log_type))
        self._refresh_preferences()

    def _refresh_preferences(self) -> None:
        state = self.store.get_state()
        profile = aggregate_preferences(state.piece_events, state.puzzle_pieces)
        if profile != state.preference_profile:
            self.store.set_preference_profile(profile)

    # =========================================================================
    # Puzzle sessions
    # =========================================================================

    async def _handle_session_started(self, event: UIEvent) -> None:
        payload = _typed_payload(event, SessionStartedPayload)
        state = self.store.get_state()
        self._status(UIEventType.AI_LOADING, "puzzle_session", "Analyzing fragments...")
        fragments = select_session_fragments(
            state.fragments,
            state.project.process_aim,
            payload.central_question,
            state.puzzle_pieces,
        )
        self._status(UIEventType.AI_LOADING, "puzzle_session", "Generating puzzle pieces...")

        session_input = PuzzleSessionInput(
            process_aim=state.project.process_aim,
            fragments_summary=[summarize_fragment(f) for f in fragments],
            previous_puzzle_summaries=state.puzzle_summaries[:5],
            preference_profile=state.preference_profile,
            puzzle_type=payload.puzzle_type,
            anchors=payload.anchors,
            central_question=payload.central_question,
        )
        try:
            output = await self.coordinator.run(session_input)
        except Exception as e:
            logger.error(f"❌ Puzzle session failed: {e}", exc_info=True)
            self._status(
                UIEventType.AI_ERROR,
                "puzzle_session",
                "Failed to generate puzzle pieces. Please try again.",
                retry_event_type=UIEventType.PUZZLE_SESSION_STARTED,
                retry_payload=dict(event.payload),
            )
            return

        session_state = output.session_state
        puzzle_id = payload.puzzle_id or session_state.session_id
        if self.store.get_state().get_puzzle(puzzle_id) is None:
            self.store.add_puzzle(
                Puzzle(
                    id=puzzle_id,
                    central_question=session_state.central_question,
                    type=session_state.puzzle_type,
                    created_from=PuzzleOrigin.AI_SUGGESTED,
                )
            )
            logger.info(f"🧩 Session puzzle recorded: {puzzle_id[:8]} - {session_state.central_question}")

        self.bus.emit_type(
            UIEventType.PUZZLE_SESSION_GENERATED,
            SessionGeneratedPayload(session_state=session_state, errors=output.errors),
        )
        if session_state.generation_status == SessionStatus.FAILED:
            self._status(
                UIEventType.AI_ERROR,
                "puzzle_session",
                "Every quadrant failed to generate. Please try again.",
                retry_event_type=UIEventType.PUZZLE_SESSION_STARTED,
                retry_payload=dict(event.payload),
            )
        else:
            self._status(UIEventType.AI_SUCCESS, "puzzle_session", "Puzzle pieces ready!")

    async def _handle_session_completed(self, event: UIEvent) -> None:
        payload = _typed_payload(event, SessionCompletedPayload)
        logger.info(f"📊 Session completed for puzzle {payload.puzzle_id}; refreshing preferences")
        self._refresh_preferences()

    async def _handle_quadrant_regenerate(self, event: UIEvent) -> None:
        payload = _typed_payload(event, QuadrantRegeneratePayload)
        state = self.store.get_state()
        result = await self.coordinator.regenerate_quadrant(
            payload.mode,
            payload.session_state,
            [
                summarize_fragment(f)
                for f in select_session_fragments(
                    state.fragments,
                    state.project.process_aim,
                    payload.session_state.central_question,
                    state.puzzle_pieces,
                )
            ],
            state.preference_profile,
        )
        self.bus.emit_type(
            UIEventType.QUADRANT_REGENERATED,
            QuadrantRegeneratedPayload(mode=result.mode, pieces=result.pieces, error=result.error),
        )
