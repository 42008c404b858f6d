"""
Puzzle-session contracts shared by the coordinator and quadrant agents.

These travel as snake_case JSON (they are what the LLM reads and writes),
so they use plain ``BaseModel`` rather than the camelCase base.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from puzzlecraft.models.base import new_id
from puzzlecraft.models.domain import (
    Anchor,
    DesignMode,
    FragmentType,
    PreferenceStats,
    PuzzleSummary,
    PuzzleType,
)


class SaturationLevel(str, Enum):
    """Colour intensity of a piece, derived from its priority."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SessionStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


def saturation_for_priority(priority: int) -> SaturationLevel:
    """1-2 core insights, 3-4 supporting, 5-6 subtle detail."""
    if priority <= 2:
        return SaturationLevel.HIGH
    if priority <= 4:
        return SaturationLevel.MEDIUM
    return SaturationLevel.LOW


class FragmentSummary(BaseModel):
    """Lightweight view of a fragment handed to agents."""
    id: str
    type: FragmentType = FragmentType.TEXT
    title: str = ""
    summary: str = ""
    tags: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class QuadrantPiece(BaseModel):
    """One generated statement for a quadrant (never a question)."""
    text: str
    priority: int = Field(default=3, ge=1, le=6)
    saturation_level: SaturationLevel = SaturationLevel.MEDIUM
    fragment_id: Optional[str] = None
    fragment_title: Optional[str] = None
    fragment_summary: Optional[str] = None
    reasoning: Optional[str] = None


class QuadrantAgentInput(BaseModel):
    mode: DesignMode
    puzzle_type: PuzzleType
    central_question: str
    process_aim: str = ""
    anchors: list[Anchor] = Field(default_factory=list)
    relevant_fragments: list[FragmentSummary] = Field(default_factory=list)
    existing_pieces: list[QuadrantPiece] = Field(default_factory=list)
    preference_hints: str = ""
    requested_count: int = 5
    max_total_chars: int = 300


class PuzzleSessionInput(BaseModel):
    process_aim: str = ""
    fragments_summary: list[FragmentSummary] = Field(default_factory=list)
    previous_puzzle_summaries: list[PuzzleSummary] = Field(default_factory=list)
    preference_profile: dict[str, PreferenceStats] = Field(default_factory=dict)
    puzzle_type: PuzzleType
    anchors: list[Anchor] = Field(default_factory=list)
    # Already-committed question; skips central question generation.
    central_question: Optional[str] = None


class PuzzleSessionState(BaseModel):
    session_id: str = Field(default_factory=new_id)
    central_question: str
    puzzle_type: PuzzleType
    process_aim: str = ""
    anchors: list[Anchor] = Field(default_factory=list)
    form_pieces: list[QuadrantPiece] = Field(default_factory=list)
    motion_pieces: list[QuadrantPiece] = Field(default_factory=list)
    expression_pieces: list[QuadrantPiece] = Field(default_factory=list)
    function_pieces: list[QuadrantPiece] = Field(default_factory=list)
    generation_status: SessionStatus = SessionStatus.PENDING

    def pieces_for(self, mode: DesignMode) -> list[QuadrantPiece]:
        return getattr(self, f"{mode.value.lower()}_pieces")

    def with_pieces(self, mode: DesignMode, pieces: list[QuadrantPiece]) -> PuzzleSessionState:
        """Copy of this state with one quadrant's pieces replaced."""
        return self.model_copy(update={f"{mode.value.lower()}_pieces": list(pieces)})


class PuzzleSessionOutput(BaseModel):
    session_state: PuzzleSessionState
    errors: list[str] = Field(default_factory=list)


class QuadrantResult(BaseModel):
    """Outcome of one quadrant call. ``error`` is set when it failed."""
    mode: DesignMode
    pieces: list[QuadrantPiece] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
