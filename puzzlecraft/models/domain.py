"""
Domain model for a puzzlecraft project.

Everything a project knows lives in one ``ProjectStore`` document. The
context store versions that document as a whole; nothing here holds
references across entities except by id.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field

from puzzlecraft.models.base import CamelModel, new_id, now_ms


# =============================================================================
# Enums
# =============================================================================

class FragmentType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    LINK = "LINK"
    OTHER = "OTHER"


class PuzzleType(str, Enum):
    """Operation a puzzle session performs. Fixed when the puzzle is created."""
    CLARIFY = "CLARIFY"
    EXPAND = "EXPAND"
    REFINE = "REFINE"


class DesignMode(str, Enum):
    """The four quadrants every puzzle is viewed through."""
    FORM = "FORM"
    MOTION = "MOTION"
    EXPRESSION = "EXPRESSION"
    FUNCTION = "FUNCTION"


class AnchorType(str, Enum):
    STARTING = "STARTING"
    SOLUTION = "SOLUTION"


class PuzzleOrigin(str, Enum):
    USER_REQUEST = "user_request"
    AI_SUGGESTED = "ai_suggested"


class PieceSource(str, Enum):
    AI = "AI"
    USER = "USER"
    AI_SUGGESTED_USER_EDITED = "AI_SUGGESTED_USER_EDITED"


class PieceStatus(str, Enum):
    SUGGESTED = "SUGGESTED"
    PLACED = "PLACED"
    EDITED = "EDITED"
    DISCARDED = "DISCARDED"
    CONNECTED = "CONNECTED"


class PieceEventType(str, Enum):
    CREATE_SUGGESTED = "CREATE_SUGGESTED"
    CREATE_USER = "CREATE_USER"
    PLACE = "PLACE"
    EDIT_TEXT = "EDIT_TEXT"
    DELETE = "DELETE"
    ATTACH_TO_ANCHOR = "ATTACH_TO_ANCHOR"
    DETACH_FROM_ANCHOR = "DETACH_FROM_ANCHOR"


# =============================================================================
# Entities
# =============================================================================

class Position(CamelModel):
    x: float = 0.0
    y: float = 0.0


class Size(CamelModel):
    width: float = 200.0
    height: float = 120.0


class Project(CamelModel):
    id: str
    title: str
    process_aim: str = ""


class Fragment(CamelModel):
    """A note, image or link the user dropped on the canvas."""
    id: str = Field(default_factory=new_id)
    type: FragmentType = FragmentType.TEXT
    content: str = ""
    title: Optional[str] = None
    position: Position = Field(default_factory=Position)
    size: Optional[Size] = None
    summary: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)  # puzzle ids, append-only
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class Cluster(CamelModel):
    id: str
    theme: str
    fragment_ids: list[str] = Field(default_factory=list)


class Puzzle(CamelModel):
    id: str = Field(default_factory=new_id)
    central_question: str
    type: PuzzleType
    created_from: PuzzleOrigin = PuzzleOrigin.USER_REQUEST
    created_at: int = Field(default_factory=now_ms)


class Anchor(CamelModel):
    id: str = Field(default_factory=new_id)
    puzzle_id: str
    type: AnchorType
    text: str


class FragmentLink(CamelModel):
    fragment_id: str
    puzzle_piece_id: str
    span: Optional[str] = None


class PuzzlePiece(CamelModel):
    """A single prompt or answer placed in one quadrant of a puzzle."""
    id: str = Field(default_factory=new_id)
    puzzle_id: str
    mode: DesignMode
    category: Optional[PuzzleType] = None  # copied from the owning puzzle
    text: str
    user_annotation: Optional[str] = None
    anchor_ids: list[str] = Field(default_factory=list)
    fragment_links: list[FragmentLink] = Field(default_factory=list)
    source: PieceSource = PieceSource.AI
    status: PieceStatus = PieceStatus.SUGGESTED


class PuzzleSummary(CamelModel):
    puzzle_id: str
    direction_statement: str
    reasons: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    title: Optional[str] = None
    one_line: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)


class PieceEvent(CamelModel):
    """Write-once entry in the piece lifecycle log."""
    piece_id: str
    type: PieceEventType
    timestamp: int = Field(default_factory=now_ms)


class FragmentPuzzleLink(CamelModel):
    fragment_id: str
    puzzle_id: str
    puzzle_type: PuzzleType
    linked_at: int = Field(default_factory=now_ms)


class PreferenceStats(CamelModel):
    suggested: int = 0
    placed: int = 0
    edited: int = 0
    discarded: int = 0
    connected: int = 0


UserPreferenceProfile = dict[str, PreferenceStats]


class MascotState(CamelModel):
    has_shown_onboarding: bool = False
    last_reflection_at: int = 0
    reflections_disabled: bool = False
    last_proposal: Optional[dict] = None
    last_suggestion: Optional[dict] = None


class AgentState(CamelModel):
    mascot: MascotState = Field(default_factory=MascotState)


class ProjectStore(CamelModel):
    """The single versioned document. Every commit replaces it whole."""
    project: Project
    fragments: list[Fragment] = Field(default_factory=list)
    clusters: list[Cluster] = Field(default_factory=list)
    puzzles: list[Puzzle] = Field(default_factory=list)
    anchors: list[Anchor] = Field(default_factory=list)
    puzzle_pieces: list[PuzzlePiece] = Field(default_factory=list)
    puzzle_summaries: list[PuzzleSummary] = Field(default_factory=list)
    preference_profile: UserPreferenceProfile = Field(default_factory=dict)
    piece_events: list[PieceEvent] = Field(default_factory=list)
    fragment_puzzle_links: list[FragmentPuzzleLink] = Field(default_factory=list)
    agent_state: AgentState = Field(default_factory=AgentState)

    # Lookup helpers. Read-only; mutation goes through the context store.

    def get_fragment(self, fragment_id: str) -> Optional[Fragment]:
        return next((f for f in self.fragments if f.id == fragment_id), None)

    def get_puzzle(self, puzzle_id: str) -> Optional[Puzzle]:
        return next((p for p in self.puzzles if p.id == puzzle_id), None)

    def get_piece(self, piece_id: str) -> Optional[PuzzlePiece]:
        return next((p for p in self.puzzle_pieces if p.id == piece_id), None)

    def get_summary(self, puzzle_id: str) -> Optional[PuzzleSummary]:
        return next((s for s in self.puzzle_summaries if s.puzzle_id == puzzle_id), None)

    def anchors_for(self, puzzle_id: str) -> list[Anchor]:
        return [a for a in self.anchors if a.puzzle_id == puzzle_id]

    def pieces_for(self, puzzle_id: str) -> list[PuzzlePiece]:
        return [p for p in self.puzzle_pieces if p.puzzle_id == puzzle_id]
