"""
Puzzle-Session Coordinator.

Produces a complete puzzle session: one central question, then four
quadrant generators (FORM, MOTION, EXPRESSION, FUNCTION) running
concurrently, each under its own timeout.

Failure isolation:
    A quadrant that raises or times out contributes an empty piece list and
    one ``"MODE: message"`` error string. The other three are unaffected.
    The session is ``completed`` unless all four quadrants failed.

A timed-out generator is cancelled by ``asyncio.wait_for``; anything it
would have returned is ignored.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from puzzlecraft.agents.central_question import generate_central_question
from puzzlecraft.agents.quadrant import run_quadrant_agent
from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.preferences import format_preference_hints
from puzzlecraft.models.domain import DesignMode, PuzzleSummary, PuzzleType, UserPreferenceProfile
from puzzlecraft.models.session import (
    FragmentSummary,
    PuzzleSessionInput,
    PuzzleSessionOutput,
    PuzzleSessionState,
    QuadrantAgentInput,
    QuadrantPiece,
    QuadrantResult,
    SessionStatus,
)

logger = logging.getLogger(__name__)

QuadrantGenerator = Callable[[QuadrantAgentInput, BaseLLMClient], Awaitable[list[QuadrantPiece]]]

QUADRANT_ORDER: tuple[DesignMode, ...] = (
    DesignMode.FORM,
    DesignMode.MOTION,
    DesignMode.EXPRESSION,
    DesignMode.FUNCTION,
)


def _describe_failure(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"timed out after {timeout:g}s"
    return str(exc) or type(exc).__name__


class PuzzleSessionCoordinator:
    """
    Fan-out/fan-in over the four quadrant generators.

    ``generator`` is the per-quadrant call; it defaults to the session
    quadrant agent and is replaceable for tests and alternative backends.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        *,
        timeout: float = 15.0,
        pieces_per_quadrant: int = 5,
        fragment_limit: int = 8,
        summary_limit: int = 3,
        generator: Optional[QuadrantGenerator] = None,
    ) -> None:
        self.llm = llm
        self.timeout = timeout
        self.pieces_per_quadrant = pieces_per_quadrant
        self.fragment_limit = fragment_limit
        self.summary_limit = summary_limit
        self._generator: QuadrantGenerator = generator or run_quadrant_agent

    async def generate_central_question(
        self,
        puzzle_type: PuzzleType,
        process_aim: str,
        fragments: list[FragmentSummary],
        previous: list[PuzzleSummary],
    ) -> str:
        return await generate_central_question(
            puzzle_type,
            process_aim,
            fragments,
            previous,
            self.llm,
            fragment_limit=self.fragment_limit,
            summary_limit=self.summary_limit,
        )

    def _quadrant_input(
        self,
        mode: DesignMode,
        state: PuzzleSessionState,
        fragments: list[FragmentSummary],
        hints: str,
    ) -> QuadrantAgentInput:
        return QuadrantAgentInput(
            mode=mode,
            puzzle_type=state.puzzle_type,
            central_question=state.central_question,
            process_aim=state.process_aim,
            anchors=state.anchors,
            relevant_fragments=fragments,
            existing_pieces=state.pieces_for(mode),
            preference_hints=hints,
            requested_count=self.pieces_per_quadrant,
        )

    def _capped(self, mode: DesignMode, pieces: list[QuadrantPiece]) -> list[QuadrantPiece]:
        if len(pieces) > self.pieces_per_quadrant:
            logger.warning(
                f"✂️ {mode.value} quadrant returned {len(pieces)} pieces; keeping {self.pieces_per_quadrant}"
            )
        return pieces[: self.pieces_per_quadrant]

    async def run(self, session_input: PuzzleSessionInput) -> PuzzleSessionOutput:
        """Central question, then all four quadrants concurrently."""
        puzzle_type = session_input.puzzle_type
        fragments = session_input.fragments_summary

        if session_input.central_question and session_input.central_question.strip():
            central_question = session_input.central_question.strip()
        else:
            central_question = await self.generate_central_question(
                puzzle_type,
                session_input.process_aim,
                fragments,
                session_input.previous_puzzle_summaries,
            )
        logger.info(f"🧩 {puzzle_type.value} session question: {central_question}")

        state = PuzzleSessionState(
            central_question=central_question,
            puzzle_type=puzzle_type,
            process_aim=session_input.process_aim,
            anchors=session_input.anchors,
            generation_status=SessionStatus.GENERATING,
        )
        hints = format_preference_hints(session_input.preference_profile)

        children = [
            asyncio.create_task(
                asyncio.wait_for(
                    self._generator(self._quadrant_input(mode, state, fragments, hints), self.llm),
                    timeout=self.timeout,
                ),
                name=f"quadrant/{mode.value}",
            )
            for mode in QUADRANT_ORDER
        ]
        logger.info(f"⏳ Waiting for {len(children)} quadrant generators ({self.timeout:g}s each)...")
        started = asyncio.get_running_loop().time()
        results: list[list[QuadrantPiece] | BaseException] = await asyncio.gather(
            *children, return_exceptions=True
        )
        elapsed = asyncio.get_running_loop().time() - started

        errors: list[str] = []
        timeouts = 0
        for mode, result in zip(QUADRANT_ORDER, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.TimeoutError):
                    timeouts += 1
                    logger.error(f"⏰ {mode.value} quadrant timed out after {self.timeout:g}s")
                else:
                    logger.error(f"💥 {mode.value} quadrant failed: {result}")
                errors.append(f"{mode.value}: {_describe_failure(result, self.timeout)}")
                continue
            state = state.with_pieces(mode, self._capped(mode, result))

        failed = len(errors)
        status = SessionStatus.FAILED if failed == len(QUADRANT_ORDER) else SessionStatus.COMPLETED
        state = state.model_copy(update={"generation_status": status})
        logger.info(
            f"🏁 Quadrants done ({elapsed:.1f}s): "
            f"✅ {len(QUADRANT_ORDER) - failed} ok, ❌ {failed - timeouts} failed, ⏰ {timeouts} timed out"
        )
        return PuzzleSessionOutput(session_state=state, errors=errors)

    async def regenerate_quadrant(
        self,
        mode: DesignMode,
        session_state: PuzzleSessionState,
        fragments: list[FragmentSummary],
        preference_profile: Optional[UserPreferenceProfile] = None,
    ) -> QuadrantResult:
        """Re-run one quadrant against the session's committed question and anchors."""
        hints = format_preference_hints(preference_profile or {})
        agent_input = self._quadrant_input(mode, session_state, fragments, hints)
        try:
            pieces = await asyncio.wait_for(self._generator(agent_input, self.llm), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"⏰ {mode.value} quadrant regeneration timed out after {self.timeout:g}s")
            return QuadrantResult(mode=mode, error=_describe_failure(e, self.timeout))
        except Exception as e:
            logger.error(f"💥 {mode.value} quadrant regeneration failed: {e}", exc_info=True)
            return QuadrantResult(mode=mode, error=_describe_failure(e, self.timeout))
        pieces = self._capped(mode, pieces)
        logger.info(f"🔄 {mode.value} quadrant regenerated with {len(pieces)} pieces")
        return QuadrantResult(mode=mode, pieces=pieces)
