"""UI event models: the tagged union carried by the event bus.

Every bus message is a ``UIEvent`` with ``type``, ``payload`` and a
millisecond ``timestamp``. Payloads travel as camelCase dicts so that
UI-originated events and internally emitted ones look identical; handlers
validate them into the typed payload model registered for their type.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional, Type, Union

from pydantic import Field, ValidationError

from puzzlecraft.models.base import CamelModel, now_ms
from puzzlecraft.models.domain import (
    Anchor,
    DesignMode,
    PieceSource,
    PuzzleOrigin,
    PuzzlePiece,
    PuzzleSummary,
    PuzzleType,
)
from puzzlecraft.models.session import PuzzleSessionState, QuadrantPiece


class UIEventType(str, Enum):
    # Canvas
    FRAGMENT_ADDED = "FRAGMENT_ADDED"
    FRAGMENT_UPDATED = "FRAGMENT_UPDATED"
    FRAGMENT_DELETED = "FRAGMENT_DELETED"
    MASCOT_CLICKED = "MASCOT_CLICKED"
    # Puzzles
    PUZZLE_CREATED = "PUZZLE_CREATED"
    PUZZLE_FINISH_CLICKED = "PUZZLE_FINISH_CLICKED"
    PIECE_CREATED = "PIECE_CREATED"
    PIECE_PLACED = "PIECE_PLACED"
    PIECE_EDITED = "PIECE_EDITED"
    PIECE_DELETED = "PIECE_DELETED"
    PIECE_ATTACHED_TO_ANCHOR = "PIECE_ATTACHED_TO_ANCHOR"
    PIECE_DETACHED_FROM_ANCHOR = "PIECE_DETACHED_FROM_ANCHOR"
    # Multi-agent sessions
    PUZZLE_SESSION_STARTED = "PUZZLE_SESSION_STARTED"
    PUZZLE_SESSION_GENERATED = "PUZZLE_SESSION_GENERATED"
    PUZZLE_SESSION_COMPLETED = "PUZZLE_SESSION_COMPLETED"
    QUADRANT_REGENERATE = "QUADRANT_REGENERATE"
    QUADRANT_REGENERATED = "QUADRANT_REGENERATED"
    # AI status feedback
    AI_LOADING = "AI_LOADING"
    AI_SUCCESS = "AI_SUCCESS"
    AI_ERROR = "AI_ERROR"


class EventPayloadError(Exception):
    """Raised when an event payload does not match its registered model."""


class UIEvent(CamelModel):
    type: UIEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)


# ═══════════════════════════════════════════════════════════════════════
# Payloads
# ═══════════════════════════════════════════════════════════════════════


class FragmentEventPayload(CamelModel):
    fragment_id: Optional[str] = None


class MascotClickedPayload(CamelModel):
    """``action`` is ``start_from_my_question`` or ``suggest_puzzle``."""

    action: str
    user_question: Optional[str] = None


class PuzzleCreatedPayload(CamelModel):
    puzzle_id: str
    central_question: str
    puzzle_type: PuzzleType
    created_from: PuzzleOrigin


class PuzzleFinishPayload(CamelModel):
    puzzle_id: Optional[str] = None
    central_question: Optional[str] = None
    anchors: list[Anchor] = Field(default_factory=list)
    pieces: list[PuzzlePiece] = Field(default_factory=list)
    fragment_ids: list[str] = Field(default_factory=list)


class PiecePayload(CamelModel):
    """Piece lifecycle payload (placed, edited, deleted)."""

    piece_id: Optional[str] = None
    puzzle_id: Optional[str] = None
    mode: DesignMode
    category: Optional[PuzzleType] = None
    text: Optional[str] = None
    source: Optional[PieceSource] = None


class PieceCreatedPayload(PiecePayload):
    """Request for fresh suggestions in one quadrant."""

    central_question: Optional[str] = None
    anchors: list[Anchor] = Field(default_factory=list)
    existing_pieces_for_mode: list[str] = Field(default_factory=list)
    preference_hint: Optional[str] = None


class AnchorLinkPayload(CamelModel):
    piece_id: str
    anchor_id: str


class SessionStartedPayload(CamelModel):
    puzzle_type: PuzzleType
    puzzle_id: Optional[str] = None
    central_question: Optional[str] = None
    anchors: list[Anchor] = Field(default_factory=list)


class SessionGeneratedPayload(CamelModel):
    session_state: PuzzleSessionState
    errors: list[str] = Field(default_factory=list)


class SessionCompletedPayload(CamelModel):
    puzzle_id: Optional[str] = None
    summary: Optional[PuzzleSummary] = None


class QuadrantRegeneratePayload(CamelModel):
    mode: DesignMode
    session_state: PuzzleSessionState


class QuadrantRegeneratedPayload(CamelModel):
    mode: DesignMode
    pieces: list[QuadrantPiece] = Field(default_factory=list)
    error: Optional[str] = None


class AIStatusPayload(CamelModel):
    """Feedback for the UI status indicator.

    On ``AI_ERROR`` a ``recoverable`` error may carry the event to re-emit
    when the user presses retry.
    """

    source: str
    message: str = ""
    recoverable: Optional[bool] = None
    retry_event_type: Optional[UIEventType] = None
    retry_payload: Optional[dict[str, Any]] = None


PAYLOAD_REGISTRY: dict[UIEventType, Type[CamelModel]] = {
    UIEventType.FRAGMENT_ADDED: FragmentEventPayload,
    UIEventType.FRAGMENT_UPDATED: FragmentEventPayload,
    UIEventType.FRAGMENT_DELETED: FragmentEventPayload,
    UIEventType.MASCOT_CLICKED: MascotClickedPayload,
    UIEventType.PUZZLE_CREATED: PuzzleCreatedPayload,
    UIEventType.PUZZLE_FINISH_CLICKED: PuzzleFinishPayload,
    UIEventType.PIECE_CREATED: PieceCreatedPayload,
    UIEventType.PIECE_PLACED: PiecePayload,
    UIEventType.PIECE_EDITED: PiecePayload,
    UIEventType.PIECE_DELETED: PiecePayload,
    UIEventType.PIECE_ATTACHED_TO_ANCHOR: AnchorLinkPayload,
    UIEventType.PIECE_DETACHED_FROM_ANCHOR: AnchorLinkPayload,
    UIEventType.PUZZLE_SESSION_STARTED: SessionStartedPayload,
    UIEventType.PUZZLE_SESSION_GENERATED: SessionGeneratedPayload,
    UIEventType.PUZZLE_SESSION_COMPLETED: SessionCompletedPayload,
    UIEventType.QUADRANT_REGENERATE: QuadrantRegeneratePayload,
    UIEventType.QUADRANT_REGENERATED: QuadrantRegeneratedPayload,
    UIEventType.AI_LOADING: AIStatusPayload,
    UIEventType.AI_SUCCESS: AIStatusPayload,
    UIEventType.AI_ERROR: AIStatusPayload,
}


PayloadLike = Union[CamelModel, Mapping[str, Any], None]


def make_event(event_type: UIEventType | str, payload: PayloadLike = None) -> UIEvent:
    """Build a ``UIEvent``, serializing model payloads to camelCase dicts."""
    if isinstance(payload, CamelModel):
        data = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        data = dict(payload or {})
    return UIEvent(type=UIEventType(event_type), payload=data)


def parse_payload(event: UIEvent) -> CamelModel:
    """Validate an event's payload into the model registered for its type.

    Both camelCase and snake_case keys are accepted. Raises
    ``EventPayloadError`` for malformed payloads.
    """
    model_class = PAYLOAD_REGISTRY[event.type]
    try:
        return model_class.model_validate(event.payload)
    except ValidationError as exc:
        raise EventPayloadError(
            f"Malformed {event.type.value} payload: {exc.error_count()} error(s)"
        ) from exc
