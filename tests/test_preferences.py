"""Tests for preference aggregation and hint generation."""
from puzzlecraft.core.preferences import (
    aggregate_preferences,
    build_preference_hints,
    format_preference_hints,
    preference_key,
    rank_preferences,
)
from puzzlecraft.models.domain import (
    DesignMode,
    PieceEvent,
    PieceEventType,
    PreferenceStats,
    PuzzlePiece,
    PuzzleType,
)


def _piece(piece_id: str, mode: DesignMode, category: PuzzleType | None = PuzzleType.CLARIFY) -> PuzzlePiece:
    return PuzzlePiece(id=piece_id, puzzle_id="pz", mode=mode, category=category, text="x")


def _events(piece_id: str, *types: PieceEventType) -> list[PieceEvent]:
    return [PieceEvent(piece_id=piece_id, type=t) for t in types]


class TestPreferenceKey:

    def test_mode_and_category(self):
        assert preference_key("FORM", PuzzleType.CLARIFY) == "FORM:CLARIFY"
        assert preference_key("MOTION", "EXPAND") == "MOTION:EXPAND"

    def test_missing_category(self):
        assert preference_key("FUNCTION", None) == "FUNCTION:GENERAL"


class TestAggregate:

    def test_counts_per_mode_and_category(self):
        pieces = [_piece("a", DesignMode.FORM), _piece("b", DesignMode.MOTION, PuzzleType.EXPAND)]
        events = [
            *_events("a", PieceEventType.CREATE_SUGGESTED, PieceEventType.PLACE, PieceEventType.EDIT_TEXT),
            *_events("b", PieceEventType.CREATE_USER, PieceEventType.DELETE),
        ]

        profile = aggregate_preferences(events, pieces)

        assert profile["FORM:CLARIFY"] == PreferenceStats(suggested=1, placed=1, edited=1)
        assert profile["MOTION:EXPAND"] == PreferenceStats(suggested=1, discarded=1)

    def test_attach_counts_connected_and_detach_counts_nothing(self):
        pieces = [_piece("a", DesignMode.EXPRESSION)]
        events = _events(
            "a",
            PieceEventType.ATTACH_TO_ANCHOR,
            PieceEventType.DETACH_FROM_ANCHOR,
            PieceEventType.ATTACH_TO_ANCHOR,
        )
        profile = aggregate_preferences(events, pieces)
        assert profile["EXPRESSION:CLARIFY"] == PreferenceStats(connected=2)

    def test_events_for_unknown_pieces_are_skipped(self):
        profile = aggregate_preferences(_events("ghost", PieceEventType.PLACE), [])
        assert profile == {}

    def test_uncategorized_piece(self):
        profile = aggregate_preferences(
            _events("a", PieceEventType.PLACE),
            [_piece("a", DesignMode.FORM, category=None)],
        )
        assert "FORM:GENERAL" in profile

    def test_is_deterministic(self):
        pieces = [_piece("a", DesignMode.FORM), _piece("b", DesignMode.FUNCTION)]
        events = _events("a", PieceEventType.PLACE) + _events("b", PieceEventType.DELETE)
        assert aggregate_preferences(events, pieces) == aggregate_preferences(list(events), list(pieces))


class TestHints:

    def test_rank_by_placed_plus_connected_minus_discarded(self):
        profile = {
            "FORM:CLARIFY": PreferenceStats(placed=1),
            "MOTION:CLARIFY": PreferenceStats(placed=3, connected=1),
            "FUNCTION:CLARIFY": PreferenceStats(placed=2, discarded=5),
        }
        ranked = rank_preferences(profile, limit=2)
        assert [key for key, _ in ranked] == ["MOTION:CLARIFY", "FORM:CLARIFY"]

    def test_discard_heavy_key_gets_concise_hint(self):
        profile = {"FORM:CLARIFY": PreferenceStats(suggested=4, discarded=3)}
        hints = build_preference_hints(profile)
        assert hints == ["User often discards FORM-CLARIFY prompts; keep them short and concrete."]

    def test_one_hint_per_key_connect_before_edit(self):
        profile = {"MOTION:EXPAND": PreferenceStats(placed=1, connected=2, edited=3)}
        hints = build_preference_hints(profile)
        assert len(hints) == 1
        assert "attach MOTION-EXPAND" in hints[0]

    def test_edit_hint_when_not_connected(self):
        profile = {"MOTION:EXPAND": PreferenceStats(placed=1, edited=3)}
        hints = build_preference_hints(profile)
        assert len(hints) == 1
        assert "edits MOTION-EXPAND" in hints[0]

    def test_discards_without_suggestions_still_hint(self):
        profile = {"FORM:REFINE": PreferenceStats(discarded=3)}
        hints = build_preference_hints(profile)
        assert hints == ["User often discards FORM-REFINE prompts; keep them short and concrete."]

    def test_discard_hint_wins_over_connect(self):
        profile = {"FORM:CLARIFY": PreferenceStats(suggested=2, discarded=2, connected=3)}
        hints = build_preference_hints(profile)
        assert len(hints) == 1
        assert "discards" in hints[0]

    def test_only_top_keys_produce_hints(self):
        profile = {
            "FORM:CLARIFY": PreferenceStats(placed=5, edited=9),
            "MOTION:CLARIFY": PreferenceStats(placed=4, edited=9),
            "FUNCTION:CLARIFY": PreferenceStats(edited=9),
        }
        hints = build_preference_hints(profile, limit=2)
        assert not any("FUNCTION" in hint for hint in hints)

    def test_empty_profile_formats_to_empty_string(self):
        assert format_preference_hints({}) == ""
