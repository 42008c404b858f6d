"""
Composition root.

``Runtime`` builds and owns every long-lived service: the context store,
the event bus, the LLM client, the puzzle-session coordinator, the
orchestrator and (once a board is attached) the sync adapter. Nothing in
puzzlecraft keeps module-level service instances.

Usage:
    runtime = build_runtime()
    await runtime.start()
    runtime.bus.emit_type(UIEventType.MASCOT_CLICKED, {...})
    await runtime.orchestrator.drain()
    await runtime.shutdown()
"""
from __future__ import annotations

import logging
from typing import Optional

from puzzlecraft.board import PieceBoard
from puzzlecraft.config import Settings, get_settings
from puzzlecraft.core.context_store import ContextStore
from puzzlecraft.core.event_bus import EventBus
from puzzlecraft.core.llm_client import BaseLLMClient, get_llm_client
from puzzlecraft.core.orchestrator import Orchestrator
from puzzlecraft.core.puzzle_session import PuzzleSessionCoordinator
from puzzlecraft.core.sync_adapter import PuzzleSyncAdapter
from puzzlecraft.models.domain import Project, ProjectStore
from puzzlecraft.storage import StorageAdapter, get_storage_adapter

logger = logging.getLogger(__name__)

DEFAULT_PROJECT = Project(
    id="demo-project",
    title="Sci-Fi Animation Concept",
    process_aim="Explore the tension between analog warmth and digital coldness.",
)


class Runtime:
    def __init__(
        self,
        store: ContextStore,
        bus: EventBus,
        llm: BaseLLMClient,
        coordinator: PuzzleSessionCoordinator,
        orchestrator: Orchestrator,
    ) -> None:
        self.store = store
        self.bus = bus
        self.llm = llm
        self.coordinator = coordinator
        self.orchestrator = orchestrator
        self.sync_adapter: Optional[PuzzleSyncAdapter] = None
        self._started = False

    async def start(self, *, hydrate: bool = True) -> None:
        """Load any stored snapshot and attach the orchestrator (once)."""
        if self._started:
            return
        if hydrate:
            await self.store.hydrate()
        self.orchestrator.attach()
        self._started = True
        logger.info(f"🚀 Runtime started for project {self.store.get_state().project.id}")

    def attach_board(self, board: PieceBoard) -> PuzzleSyncAdapter:
        """Sync ``board`` to the store, replacing any previous adapter."""
        if self.sync_adapter is not None:
            self.sync_adapter.detach()
        self.sync_adapter = PuzzleSyncAdapter(self.store, self.bus, board)
        self.sync_adapter.attach()
        return self.sync_adapter

    async def shutdown(self) -> None:
        """Flush live pieces, stop routing, wait for handlers, persist, close."""
        if self.sync_adapter is not None:
            self.sync_adapter.sync_all_to_domain()
            self.sync_adapter.detach()
            self.sync_adapter = None
        self.orchestrator.detach()
        await self.orchestrator.drain()
        await self.store.persist()
        await self.llm.close()
        self._started = False
        logger.info("👋 Runtime shut down")


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    project: Optional[Project] = None,
    llm: Optional[BaseLLMClient] = None,
    storage: Optional[StorageAdapter] = None,
) -> Runtime:
    """Wire up a runtime from settings. Every collaborator can be overridden."""
    settings = settings or get_settings()
    llm = llm or get_llm_client(settings)
    storage = storage or get_storage_adapter(settings.storage_path)
    store = ContextStore(
        ProjectStore(project=project or DEFAULT_PROJECT),
        storage=storage,
        history_limit=settings.history_limit,
    )
    bus = EventBus()
    coordinator = PuzzleSessionCoordinator(
        llm,
        timeout=settings.quadrant_timeout_seconds,
        pieces_per_quadrant=settings.pieces_per_quadrant,
        fragment_limit=settings.central_question_fragment_limit,
        summary_limit=settings.central_question_summary_limit,
    )
    orchestrator = Orchestrator(
        bus,
        store,
        llm,
        coordinator,
        debounce_seconds=settings.fragment_debounce_seconds,
    )
    return Runtime(store, bus, llm, coordinator, orchestrator)
