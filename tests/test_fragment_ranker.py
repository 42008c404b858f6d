"""Tests for session fragment ranking and selection."""
from unittest.mock import MagicMock

from puzzlecraft.core.fragment_ranker import (
    FragmentRanker,
    SelectionBudget,
    balance_fragments,
    fragment_usage_counts,
    novelty_bonus,
    relevance_score,
    select_session_fragments,
)
from puzzlecraft.models.domain import (
    DesignMode,
    Fragment,
    FragmentLink,
    FragmentType,
    PuzzlePiece,
)

AIM = "Explore the tension between analog warmth and digital coldness."


def _text(fragment_id: str, content: str, tags: list[str] | None = None) -> Fragment:
    return Fragment(id=fragment_id, content=content, tags=tags or [])


def _image(fragment_id: str) -> Fragment:
    return Fragment(id=fragment_id, type=FragmentType.IMAGE, content=f"https://img.example/{fragment_id}.png")


def _piece(piece_id: str, *fragment_ids: str) -> PuzzlePiece:
    return PuzzlePiece(
        id=piece_id,
        puzzle_id="pz1",
        mode=DesignMode.FORM,
        text="x",
        fragment_links=[FragmentLink(fragment_id=f, puzzle_piece_id=piece_id) for f in fragment_ids],
    )


class TestScoring:

    def test_aim_overlap_beats_unrelated_content(self):
        context = {"analog", "warmth", "tension", "digital", "coldness"}
        related = _text("a", "analog warmth on tape")
        unrelated = _text("b", "quarterly spreadsheet totals")
        assert relevance_score(related, context) > relevance_score(unrelated, context)

    def test_mode_aspects_add_to_relevance(self):
        fragment = _text("a", "slow rhythm and easing between scenes")
        assert relevance_score(fragment, set(), DesignMode.MOTION) > relevance_score(fragment, set())

    def test_relevance_is_capped(self):
        fragment = Fragment(id="a", content="analog warmth", summary="analog warmth " * 5, tags=["analog", "warmth"])
        assert relevance_score(fragment, {"analog", "warmth"}, DesignMode.EXPRESSION) == 1.0

    def test_novelty_decays_with_use(self):
        assert [novelty_bonus(n) for n in range(4)] == [0.2, 0.1, 0.05, 0.0]

    def test_usage_counts_once_per_piece(self):
        pieces = [_piece("p1", "f1", "f1"), _piece("p2", "f1", "f2")]
        assert fragment_usage_counts(pieces) == {"f1": 2, "f2": 1}


class TestRankAndSelect:

    def test_no_tag_is_selected_more_than_twice(self):
        fragments = [_text(f"f{i}", f"glow study {i}", tags=["glow"]) for i in range(6)]

        selection = FragmentRanker().rank_and_select(fragments, AIM)

        assert len(selection.selected_ids) == 2

    def test_per_quadrant_image_cap(self):
        fragments = [_image(f"i{i}") for i in range(20)]
        ranker = FragmentRanker(SelectionBudget(total_target=4))

        selection = ranker.rank_and_select(fragments, AIM)

        assert len(selection.global_context) == 1
        assert all(len(ranked) == 2 for ranked in selection.per_mode.values())
        assert len(selection.selected_ids) == 9

    def test_per_quadrant_text_cap(self):
        fragments = [_text(f"t{i}", f"note number {i}") for i in range(30)]
        selection = FragmentRanker().rank_and_select(fragments, AIM)
        assert all(len(ranked) == 4 for ranked in selection.per_mode.values())

    def test_unused_fragment_wins_a_tie(self):
        fragments = [_text("used", "warm hum"), _text("fresh", "warm hum")]
        ranker = FragmentRanker(SelectionBudget(total_target=4))

        selection = ranker.rank_and_select(fragments, AIM, usage_counts={"used": 3})

        assert [r.fragment.id for r in selection.global_context] == ["fresh"]

    def test_central_question_feeds_relevance(self):
        fragments = [_text("a", "spreadsheet totals"), _text("b", "pilot cockpit glow")]
        ranker = FragmentRanker(SelectionBudget(total_target=4))

        selection = ranker.rank_and_select(fragments, "", central_question="What does the pilot's glow mean?")

        assert selection.global_context[0].fragment.id == "b"


class TestSessionSelection:

    def test_keeps_canvas_order(self):
        fragments = [_text("a", "one"), _image("b"), _text("c", "analog warmth")]
        chosen = select_session_fragments(fragments, AIM)
        assert [f.id for f in chosen] == ["a", "b", "c"]

    def test_empty_canvas(self):
        assert select_session_fragments([], AIM) == []

    def test_balance_keeps_six_text_and_four_images(self):
        fragments = (
            [_text(f"t{i}", "x") for i in range(8)]
            + [_image(f"i{i}") for i in range(6)]
            + [Fragment(id="l1", type=FragmentType.LINK, content="https://example.com")]
        )
        balanced = balance_fragments(fragments)
        assert [f.id for f in balanced] == [f"t{i}" for i in range(6)] + [f"i{i}" for i in range(4)]

    def test_ranking_failure_falls_back_to_balance(self):
        ranker = MagicMock(spec=FragmentRanker)
        ranker.rank_and_select.side_effect = RuntimeError("bad features")
        fragments = [_text(f"t{i}", "x") for i in range(8)] + [_image("i0")]

        chosen = select_session_fragments(fragments, AIM, ranker=ranker)

        assert [f.id for f in chosen] == [f"t{i}" for i in range(6)] + ["i0"]
