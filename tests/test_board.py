"""Tests for the in-process piece board."""
import pytest

from puzzlecraft.board import PieceBoard, VisualPiece, VisualSource
from puzzlecraft.models.domain import DesignMode


def test_listeners_get_snapshots_until_unsubscribed():
    board = PieceBoard("pz1")
    snapshots: list[list[VisualPiece]] = []
    unsubscribe = board.subscribe(snapshots.append)

    piece = board.add(VisualPiece(DesignMode.FORM, "Warm grain"))
    board.move(piece.id, (10, 20))
    unsubscribe()
    board.remove(piece.id)

    assert len(snapshots) == 2
    assert snapshots[1][0].position == (10, 20)


def test_pieces_are_copies():
    board = PieceBoard()
    piece = board.add(VisualPiece(DesignMode.MOTION, "Slow drift"))

    board.pieces[0].text = "changed"
    piece.text = "changed too"

    assert board.get(piece.id).text == "Slow drift"


def test_editing_an_ai_piece_marks_it_edited():
    board = PieceBoard()
    ai = board.add(VisualPiece(DesignMode.FORM, "Soft edges", source=VisualSource.AI))
    user = board.add(VisualPiece(DesignMode.FORM, "Hard edges"))

    board.update_text(ai.id, "Softer edges")
    board.update_text(user.id, "Harder edges")

    assert board.get(ai.id).source == VisualSource.AI_EDITED
    assert board.get(user.id).source == VisualSource.USER


def test_unknown_piece_raises():
    board = PieceBoard()
    with pytest.raises(KeyError):
        board.update_text("ghost", "x")
    with pytest.raises(KeyError):
        board.move("ghost", (0, 0))


def test_remove_unknown_is_silent_and_clear_notifies():
    board = PieceBoard()
    calls: list[int] = []
    board.subscribe(lambda pieces: calls.append(len(pieces)))

    board.remove("ghost")
    board.add(VisualPiece(DesignMode.FUNCTION, "One-tap recall"))
    board.clear()

    assert calls == [1, 0]


def test_failing_listener_does_not_block_others():
    board = PieceBoard()
    seen: list[int] = []

    def broken(pieces):
        raise RuntimeError("boom")

    board.subscribe(broken)
    board.subscribe(lambda pieces: seen.append(len(pieces)))
    board.add(VisualPiece(DesignMode.EXPRESSION, "Quiet pride"))

    assert seen == [1]
