"""
Tests for the agents.

Coverage:
  1. Shared helpers (fragment summaries, rationale sanitizing)
  2. Central question agent and its fallback tiers
  3. Session quadrant agent post-processing and fallbacks
  4. Quadrant piece agent
  5. Fragment & context agent
  6. Mascot agent
  7. Puzzle designer (design + summarize)
"""
import json
from unittest.mock import AsyncMock

import pytest

from puzzlecraft.agents.central_question import (
    fallback_central_question,
    generate_central_question,
    placeholder_question,
    question_from_aim,
    question_from_fragments,
)
from puzzlecraft.agents.common import sanitize_rationale, summarize_fragment
from puzzlecraft.agents.fragment_context import (
    HEURISTIC_CLUSTER_ID,
    heuristic_insight,
    run_fragment_context_agent,
)
from puzzlecraft.agents.mascot import (
    fallback_proposal,
    fallback_suggestion,
    run_mascot_self,
    run_mascot_suggest,
)
from puzzlecraft.agents.puzzle_designer import (
    DEFAULT_STARTING_ANCHOR,
    PuzzleDesign,
    design_to_entities,
    fallback_summary,
    run_puzzle_design,
    run_puzzle_summary,
)
from puzzlecraft.agents.quadrant import fallback_quadrant_pieces, run_quadrant_agent
from puzzlecraft.agents.quadrant_piece import (
    FALLBACK_STATEMENTS,
    PieceSuggestion,
    QuadrantPieceOutput,
    run_quadrant_piece_agent,
)
from puzzlecraft.core.errors import LLMError
from puzzlecraft.core.llm_client import MockLLMClient
from puzzlecraft.models.domain import (
    Anchor,
    AnchorType,
    Cluster,
    DesignMode,
    Fragment,
    FragmentType,
    PieceStatus,
    PuzzlePiece,
    PuzzleType,
)
from puzzlecraft.models.session import FragmentSummary, QuadrantAgentInput, SaturationLevel

AIM = "Explore the tension between analog warmth and digital coldness."


def _failing_llm() -> MockLLMClient:
    llm = MockLLMClient()
    llm.generate = AsyncMock(side_effect=LLMError("provider down", status_code=503))
    return llm


def _quadrant_input(mode: DesignMode, fragments: list[FragmentSummary], **kwargs) -> QuadrantAgentInput:
    return QuadrantAgentInput(
        mode=mode,
        puzzle_type=kwargs.pop("puzzle_type", PuzzleType.CLARIFY),
        central_question='What makes "analog warmth" worth keeping here?',
        process_aim=AIM,
        relevant_fragments=fragments,
        **kwargs,
    )


def _quadrant_answer(*pieces: dict) -> str:
    return json.dumps({"pieces": list(pieces)})


# ---------------------------------------------------------------------------
# 1. Shared helpers
# ---------------------------------------------------------------------------


class TestCommon:

    def test_summarize_text_fragment(self):
        summary = summarize_fragment(Fragment(id="a", content="warm hum", title="Hum"))
        assert summary.title == "Hum"
        assert summary.summary == "warm hum"
        assert summary.image_url is None

    def test_summarize_image_fragment(self):
        summary = summarize_fragment(Fragment(id="i", type=FragmentType.IMAGE, content="https://img/1.png"))
        assert summary.image_url == "https://img/1.png"
        assert summary.type == FragmentType.IMAGE

    def test_sanitize_rationale(self):
        fragment = FragmentSummary(id="0b6f3d2e-1111-2222-3333-444455556666", title="CRT Glow")
        text = (
            "Fragment 0b6f3d2e-1111-2222-3333-444455556666 and "
            "abcdef01-2345-6789-abcd-ef0123456789 point the same way"
        )
        assert sanitize_rationale(text, [fragment]) == 'Fragment "CRT Glow" and [fragment] point the same way'


# ---------------------------------------------------------------------------
# 2. Central question
# ---------------------------------------------------------------------------


class TestCentralQuestion:

    @pytest.mark.asyncio
    async def test_valid_answer_is_used(self, mock_llm, fragment_summaries):
        question = await generate_central_question(PuzzleType.CLARIFY, AIM, fragment_summaries, [], mock_llm)
        assert question == 'What makes "analog warmth" worth keeping here?'
        assert mock_llm.calls_matching("Central Question Agent") == 1

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back_to_first_fragment_title(self, fragment_summaries):
        llm = MockLLMClient(responses={"Central Question Agent": "definitely not json"})
        question = await generate_central_question(PuzzleType.CLARIFY, AIM, fragment_summaries, [], llm)
        assert question == 'What does "Nostalgic Future" mean for this project?'

    @pytest.mark.asyncio
    async def test_generic_answer_falls_back(self, fragment_summaries):
        llm = MockLLMClient(responses={
            "Central Question Agent": json.dumps({"central_question": "What else is possible?"}),
        })
        question = await generate_central_question(PuzzleType.EXPAND, AIM, fragment_summaries, [], llm)
        assert question == 'What other directions does "Nostalgic Future" suggest?'

    @pytest.mark.asyncio
    async def test_ungrounded_answer_falls_back(self, fragment_summaries):
        llm = MockLLMClient(responses={
            "Central Question Agent": json.dumps({"central_question": "How should pricing tiers work?"}),
        })
        question = await generate_central_question(PuzzleType.REFINE, AIM, fragment_summaries, [], llm)
        assert question == 'How should we prioritize "Nostalgic Future" vs other ideas?'

    @pytest.mark.asyncio
    async def test_llm_failure_never_raises(self, fragment_summaries):
        question = await generate_central_question(
            PuzzleType.CLARIFY, AIM, fragment_summaries, [], _failing_llm()
        )
        assert question == 'What does "Nostalgic Future" mean for this project?'

    @pytest.mark.asyncio
    async def test_no_fragments_uses_process_aim(self):
        question = await generate_central_question(PuzzleType.CLARIFY, AIM, [], [], _failing_llm())
        assert question == "What's the core of: Explore the tension between analog...?"

    def test_tag_tier(self):
        fragments = [FragmentSummary(id="a", title="", tags=["retro", "glow", "hum"])]
        assert question_from_fragments(PuzzleType.CLARIFY, fragments) == "What defines the retro & glow direction?"

    def test_tiers_in_order(self):
        assert question_from_fragments(PuzzleType.CLARIFY, []) is None
        assert question_from_aim(PuzzleType.EXPAND, "   ") is None
        assert fallback_central_question(PuzzleType.REFINE, [], "") == placeholder_question(PuzzleType.REFINE)
        assert "Add fragments" in placeholder_question(PuzzleType.CLARIFY)


# ---------------------------------------------------------------------------
# 3. Session quadrant agent
# ---------------------------------------------------------------------------


class TestQuadrantAgent:

    @pytest.mark.asyncio
    async def test_mock_answer_is_normalized(self, mock_llm, fragment_summaries):
        pieces = await run_quadrant_agent(_quadrant_input(DesignMode.FORM, fragment_summaries), mock_llm)

        assert [p.text for p in pieces] == [
            "Rounded silhouettes with soft edges",
            "Warm grain over clean geometry",
            "Muted palette anchors the frame",
        ]
        assert [p.saturation_level for p in pieces] == [
            SaturationLevel.HIGH,
            SaturationLevel.MEDIUM,
            SaturationLevel.LOW,
        ]
        assert all(p.fragment_summary for p in pieces)

    @pytest.mark.asyncio
    async def test_titles_are_trimmed_and_padded(self, fragment_summaries):
        llm = MockLLMClient(responses={"Quadrant Agent": _quadrant_answer(
            {"text": "A very long statement about warm analog glow", "fragment_id": "f1"},
            {"text": "Glow", "fragment_id": "f1"},
        )})
        pieces = await run_quadrant_agent(_quadrant_input(DesignMode.FORM, fragment_summaries), llm)
        assert [p.text for p in pieces] == ["A very long statement about", "Glow approach"]

    @pytest.mark.asyncio
    async def test_fragment_details_are_backfilled(self, fragment_summaries):
        llm = MockLLMClient(responses={"Quadrant Agent": _quadrant_answer(
            {"text": "Hiss as texture", "fragmentId": "f2", "priority": 9},
        )})
        pieces = await run_quadrant_agent(_quadrant_input(DesignMode.MOTION, fragment_summaries), llm)

        assert len(pieces) == 1
        piece = pieces[0]
        assert piece.fragment_title == "Tape Hiss"
        assert piece.fragment_summary.startswith('From "Tape Hiss":')
        assert piece.priority == 6
        assert piece.saturation_level == SaturationLevel.LOW

    @pytest.mark.asyncio
    async def test_questions_and_stock_phrases_are_dropped(self, fragment_summaries):
        llm = MockLLMClient(responses={"Quadrant Agent": _quadrant_answer(
            {"text": "Why so warm?", "fragment_id": "f1"},
            {"text": "Calm confidence, not excitement", "fragment_id": "f1"},
        )})
        pieces = await run_quadrant_agent(_quadrant_input(DesignMode.EXPRESSION, fragment_summaries), llm)

        assert [p.text for p in pieces] == ["CRT glow reflected on", "Tape hiss under the"]
        assert [p.priority for p in pieces] == [2, 4]

    @pytest.mark.asyncio
    async def test_invalid_json_uses_fragment_fallback(self, fragment_summaries):
        llm = MockLLMClient(responses={"Quadrant Agent": "<html>oops</html>"})
        pieces = await run_quadrant_agent(_quadrant_input(DesignMode.FORM, fragment_summaries), llm)
        assert [p.fragment_id for p in pieces] == ["f1", "f2"]
        assert pieces[0].saturation_level == SaturationLevel.HIGH

    @pytest.mark.asyncio
    async def test_requested_count_caps_output(self, mock_llm, fragment_summaries):
        agent_input = _quadrant_input(DesignMode.FUNCTION, fragment_summaries, requested_count=2)
        pieces = await run_quadrant_agent(agent_input, mock_llm)
        assert len(pieces) == 2

    @pytest.mark.asyncio
    async def test_llm_errors_propagate(self, fragment_summaries):
        with pytest.raises(LLMError):
            await run_quadrant_agent(_quadrant_input(DesignMode.FORM, fragment_summaries), _failing_llm())

    def test_fallback_without_fragments(self):
        pieces = fallback_quadrant_pieces(_quadrant_input(DesignMode.FORM, []))
        assert len(pieces) == 1
        assert pieces[0].text == "Explore geometric vs organic"
        assert "Fallback" in pieces[0].fragment_summary

    def test_fallback_for_image_fragment(self):
        image = FragmentSummary(id="img", type=FragmentType.IMAGE, title="Cockpit", image_url="https://img/1.png")
        pieces = fallback_quadrant_pieces(_quadrant_input(DesignMode.FORM, [image]))
        assert pieces[0].text == "Visual: Cockpit"


# ---------------------------------------------------------------------------
# 4. Quadrant piece agent
# ---------------------------------------------------------------------------


class TestQuadrantPieceAgent:

    @pytest.mark.asyncio
    async def test_mock_statements(self, mock_llm, fragment_summaries):
        pieces = await run_quadrant_piece_agent(
            DesignMode.FORM, PuzzleType.CLARIFY, "Q?", AIM, [], [], fragment_summaries, mock_llm
        )
        assert [p.text for p in pieces] == [
            "Soft analog textures over crisp vectors",
            "Warm palette framing cool highlights",
        ]
        assert all(p.mode == DesignMode.FORM for p in pieces)

    @pytest.mark.asyncio
    async def test_existing_texts_are_not_repeated(self, mock_llm):
        pieces = await run_quadrant_piece_agent(
            DesignMode.FORM, PuzzleType.CLARIFY, "Q?", AIM, [],
            ["soft analog textures over crisp vectors"], [], mock_llm,
        )
        assert [p.text for p in pieces] == ["Warm palette framing cool highlights"]

    @pytest.mark.asyncio
    async def test_unusable_answer_gives_fallback_statement(self):
        llm = MockLLMClient(responses={"Quadrant Piece Agent": "nope"})
        pieces = await run_quadrant_piece_agent(
            DesignMode.MOTION, PuzzleType.EXPAND, "Q?", AIM, [], [], [], llm
        )
        assert pieces == [
            PieceSuggestion(mode=DesignMode.MOTION, text=FALLBACK_STATEMENTS[PuzzleType.EXPAND][DesignMode.MOTION])
        ]

    @pytest.mark.asyncio
    async def test_image_fragments_use_vision_call(self):
        llm = MockLLMClient()
        llm.generate_structured_with_images = AsyncMock(
            return_value=QuadrantPieceOutput(pieces=[PieceSuggestion(text="Cockpit glow framing")])
        )
        image = FragmentSummary(id="img", type=FragmentType.IMAGE, title="Cockpit", image_url="https://img/1.png")

        pieces = await run_quadrant_piece_agent(
            DesignMode.FORM, PuzzleType.REFINE, "Q?", AIM, [], [], [image], llm
        )

        assert pieces[0].text == "Cockpit glow framing"
        args = llm.generate_structured_with_images.await_args.args
        assert args[1] == ["https://img/1.png"]


# ---------------------------------------------------------------------------
# 5. Fragment & context agent
# ---------------------------------------------------------------------------


class TestFragmentContext:

    @pytest.mark.asyncio
    async def test_no_fragments_skips_llm(self, mock_llm):
        result = await run_fragment_context_agent(AIM, [], mock_llm)
        assert result.fragments == []
        assert mock_llm.prompts == []

    @pytest.mark.asyncio
    async def test_valid_answer(self):
        answer = json.dumps({
            "fragments": [{"id": "a", "title": "Hum", "summary": "A warm hum.", "tags": ["audio"]}],
            "clusters": [{"id": "c1", "theme": "sound", "fragment_ids": ["a"]}],
        })
        llm = MockLLMClient(responses={"Fragment & Context Agent": answer})
        result = await run_fragment_context_agent(AIM, [Fragment(id="a", content="warm hum")], llm)
        assert result.fragments[0].tags == ["audio"]
        assert result.clusters[0].to_cluster() == Cluster(id="c1", theme="sound", fragment_ids=["a"])

    @pytest.mark.asyncio
    async def test_malformed_answer_uses_heuristic(self):
        llm = MockLLMClient(responses={"Fragment & Context Agent": "{broken"})
        fragments = [Fragment(id="a", content="warm analog hum at night"), Fragment(id="b", content="cold HUD")]
        result = await run_fragment_context_agent(AIM, fragments, llm)

        assert [i.id for i in result.fragments] == ["a", "b"]
        assert result.clusters[0].id == HEURISTIC_CLUSTER_ID
        assert result.clusters[0].fragment_ids == ["a", "b"]

    def test_heuristic_insight(self):
        insight = heuristic_insight(Fragment(id="a", content="warm analog hum at night"))
        assert insight.title == "warm analog hum at"
        assert insight.tags == ["warm", "analog", "hum"]

    @pytest.mark.asyncio
    async def test_llm_errors_propagate(self):
        with pytest.raises(LLMError):
            await run_fragment_context_agent(AIM, [Fragment(content="x")], _failing_llm())


# ---------------------------------------------------------------------------
# 6. Mascot
# ---------------------------------------------------------------------------


class TestMascot:

    @pytest.mark.asyncio
    async def test_self_proposal(self, mock_llm, fragment_summaries):
        proposal = await run_mascot_self(AIM, "What should it feel like?", fragment_summaries, [], mock_llm)
        assert proposal.puzzle_type == PuzzleType.CLARIFY
        assert proposal.primary_modes == [DesignMode.EXPRESSION]

    @pytest.mark.asyncio
    async def test_self_proposal_sanitizes_enums(self):
        llm = MockLLMClient(responses={"Mascot Agent (self)": json.dumps({
            "central_question": "Which glow?",
            "puzzle_type": "sideways",
            "primary_modes": ["FORM", "COLOR"],
        })})
        proposal = await run_mascot_self(AIM, "Which glow?", [], [], llm)
        assert proposal.puzzle_type == PuzzleType.CLARIFY
        assert proposal.primary_modes == [DesignMode.FORM]

    @pytest.mark.asyncio
    async def test_self_proposal_fallback_uses_keywords(self):
        llm = MockLLMClient(responses={"Mascot Agent (self)": "nope"})
        proposal = await run_mascot_self(AIM, "Which palette should we choose?", [], [], llm)
        assert proposal.puzzle_type == PuzzleType.REFINE
        assert proposal.central_question == "Which palette should we choose?"

    def test_keyword_fallback_prefers_expand(self):
        assert fallback_proposal("Show me other options").puzzle_type == PuzzleType.EXPAND
        assert fallback_proposal("What is warmth?").puzzle_type == PuzzleType.CLARIFY

    @pytest.mark.asyncio
    async def test_suggestion(self, mock_llm):
        suggestion = await run_mascot_suggest(AIM, [], [], mock_llm)
        assert suggestion.should_suggest is True
        assert suggestion.puzzle_type == PuzzleType.EXPAND

    @pytest.mark.asyncio
    async def test_suggestion_declined(self):
        llm = MockLLMClient(responses={"Mascot Agent (suggest)": '{"should_suggest": false}'})
        suggestion = await run_mascot_suggest(AIM, [], [], llm)
        assert suggestion.should_suggest is False
        assert suggestion.central_question is None

    @pytest.mark.asyncio
    async def test_suggestion_fallback_depends_on_context(self):
        llm = MockLLMClient(responses={"Mascot Agent (suggest)": "nope"})
        clusters = [Cluster(id=str(i), theme=f"t{i}") for i in range(4)]
        crowded = await run_mascot_suggest(AIM, clusters, [], llm)
        fresh = await run_mascot_suggest(AIM, [], [], llm)
        assert crowded.puzzle_type == PuzzleType.REFINE
        assert fresh.puzzle_type == PuzzleType.EXPAND

    def test_suggestion_fallback_with_history(self):
        assert fallback_suggestion(1, 2).puzzle_type == PuzzleType.CLARIFY


# ---------------------------------------------------------------------------
# 7. Puzzle designer
# ---------------------------------------------------------------------------


class TestPuzzleDesigner:

    @pytest.mark.asyncio
    async def test_design(self, mock_llm):
        design = await run_puzzle_design(
            AIM, "What is warmth?", PuzzleType.CLARIFY, [DesignMode.EXPRESSION], "", [], [], mock_llm
        )
        anchors, pieces = design_to_entities(design, "pz1", PuzzleType.CLARIFY)

        assert design.central_question == "How do we keep analog warmth without losing clarity?"
        assert [(a.type, a.text) for a in anchors] == [(AnchorType.STARTING, "Analog warmth as the emotional hook")]
        assert pieces == []

    @pytest.mark.asyncio
    async def test_design_fallback_keeps_question(self):
        llm = MockLLMClient(responses={'task: "design"': "nope"})
        design = await run_puzzle_design(
            AIM, "What is warmth?", PuzzleType.EXPAND, [DesignMode.MOTION, DesignMode.FORM], "", [], [], llm
        )
        anchors, pieces = design_to_entities(design, "pz1", PuzzleType.EXPAND)

        assert design.central_question == "What is warmth?"
        assert anchors[0].text == DEFAULT_STARTING_ANCHOR
        assert len(pieces) == 1
        assert pieces[0].mode == DesignMode.MOTION
        assert pieces[0].category == PuzzleType.EXPAND
        assert pieces[0].status == PieceStatus.SUGGESTED

    def test_design_to_entities_skips_blank_seeds(self):
        design = PuzzleDesign.model_validate({
            "central_question": "Q?",
            "anchors": {"starting": "Start", "solution": "Finish"},
            "seed_pieces": [{"mode": "FORM", "text": "Grain"}, {"mode": "MOTION", "text": "  "}],
        })
        anchors, pieces = design_to_entities(design, "pz1", PuzzleType.REFINE)
        assert len(anchors) == 2
        assert [p.text for p in pieces] == ["Grain"]

    @pytest.mark.asyncio
    async def test_summary(self, mock_llm):
        summary = await run_puzzle_summary("pz1", PuzzleType.CLARIFY, AIM, "Q?", [], [], mock_llm)
        assert summary.puzzle_id == "pz1"
        assert summary.title == "Analog Warmth"
        assert len(summary.reasons) == 3

    def test_summary_fallback_uses_solution_anchor_and_kept_pieces(self):
        anchors = [
            Anchor(puzzle_id="pz1", type=AnchorType.STARTING, text="Start"),
            Anchor(puzzle_id="pz1", type=AnchorType.SOLUTION, text="Go warm"),
        ]
        pieces = [
            PuzzlePiece(puzzle_id="pz1", mode=DesignMode.FORM, text="Grain", status=PieceStatus.PLACED),
            PuzzlePiece(puzzle_id="pz1", mode=DesignMode.MOTION, text="Snap", status=PieceStatus.DISCARDED),
        ]
        summary = fallback_summary("pz1", PuzzleType.REFINE, "Q?", anchors, pieces)

        assert summary.direction_statement == "Direction: Go warm"
        assert summary.reasons == ["FORM: Grain"]
        assert summary.title == "REFINE Puzzle"

    @pytest.mark.asyncio
    async def test_summary_fallback_without_anchors(self):
        llm = MockLLMClient(responses={'task: "summarize"': "nope"})
        summary = await run_puzzle_summary("pz1", None, AIM, "What is warmth?", [], [], llm)
        assert "What is warmth?" in summary.direction_statement
        assert summary.reasons == ["No pieces were placed during this session"]
        assert summary.tags == ["puzzle"]
