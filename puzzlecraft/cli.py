"""Puzzlecraft CLI: Typer application root.

Entry point for the ``puzzlecraft`` console script.

Usage::

    puzzlecraft session --type EXPAND -f "Nostalgic Future" -f "CRT glow on skin"
    puzzlecraft demo
    puzzlecraft hints --path snapshot.json

Without ``PUZZLECRAFT_OPENROUTER_API_KEY`` every command runs against the
deterministic mock LLM.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import typer

from puzzlecraft.agents.common import summarize_fragment
from puzzlecraft.config import get_settings
from puzzlecraft.core.context_store import validate_fragment
from puzzlecraft.core.preferences import aggregate_preferences, build_preference_hints
from puzzlecraft.logging_setup import configure_logging
from puzzlecraft.models.domain import Fragment, PuzzleType
from puzzlecraft.models.session import PuzzleSessionInput, PuzzleSessionOutput
from puzzlecraft.protocol.events import UIEventType
from puzzlecraft.runtime import DEFAULT_PROJECT, build_runtime
from puzzlecraft.storage import InMemoryStorageAdapter, JsonFileStorageAdapter

logger = logging.getLogger(__name__)

cli = typer.Typer(
    name="puzzlecraft",
    help="Puzzlecraft: AI-assisted design puzzles over a canvas of fragments.",
    no_args_is_help=True,
)

DEMO_FRAGMENTS: tuple[str, ...] = (
    "Nostalgic Future: CRT glow reflected on a tired pilot's face",
    "Tape hiss under the ship's computer voice, like an old answering machine",
    "Cold blue HUD overlays that flicker when the hero feels doubt",
)
DEMO_QUESTION = "How do we keep analog warmth without losing clarity?"


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    settings = get_settings()
    if verbose:
        settings = settings.model_copy(update={"debug": True})
    configure_logging(settings)


# ---------------------------------------------------------------------------
# Testable async cores
# ---------------------------------------------------------------------------


async def _run_session(
    puzzle_type: PuzzleType,
    fragments: list[str],
    process_aim: Optional[str],
) -> PuzzleSessionOutput:
    """One puzzle session over ad-hoc text fragments."""
    runtime = build_runtime(storage=InMemoryStorageAdapter())
    try:
        summaries = [
            summarize_fragment(validate_fragment(Fragment(content=text))) for text in fragments
        ]
        session_input = PuzzleSessionInput(
            process_aim=process_aim if process_aim is not None else DEFAULT_PROJECT.process_aim,
            fragments_summary=summaries,
            puzzle_type=puzzle_type,
        )
        return await runtime.coordinator.run(session_input)
    finally:
        await runtime.llm.close()


async def _run_demo() -> dict[str, Any]:
    """Fragments → analysis → mascot question → finish, on the default project."""
    runtime = build_runtime(project=DEFAULT_PROJECT.model_copy())
    await runtime.start(hydrate=False)
    settings = get_settings()

    for text in DEMO_FRAGMENTS:
        fragment = Fragment(content=text)
        runtime.store.upsert_fragment(fragment)
        runtime.bus.emit_type(UIEventType.FRAGMENT_ADDED, {"fragmentId": fragment.id})
    await asyncio.sleep(settings.fragment_debounce_seconds + 0.1)
    await runtime.orchestrator.drain()

    runtime.bus.emit_type(
        UIEventType.MASCOT_CLICKED,
        {"action": "start_from_my_question", "userQuestion": DEMO_QUESTION},
    )
    await runtime.orchestrator.drain()

    state = runtime.store.get_state()
    if state.puzzles:
        puzzle = state.puzzles[-1]
        runtime.bus.emit_type(
            UIEventType.PUZZLE_FINISH_CLICKED,
            {"puzzleId": puzzle.id, "fragmentIds": [f.id for f in state.fragments]},
        )
        await runtime.orchestrator.drain()

    await runtime.shutdown()
    return runtime.store.get_state().to_wire()


async def _load_hints(path: str, limit: int) -> Optional[list[str]]:
    snapshot = await JsonFileStorageAdapter(path).load()
    if snapshot is None:
        return None
    profile = aggregate_preferences(snapshot.piece_events, snapshot.puzzle_pieces)
    return build_preference_hints(profile, limit)


# ---------------------------------------------------------------------------
# Typer commands
# ---------------------------------------------------------------------------


@cli.command("session", help="Generate a four-quadrant puzzle session and print it as JSON.")
def session(
    puzzle_type: PuzzleType = typer.Option(PuzzleType.CLARIFY, "--type", "-t", help="Puzzle type."),
    fragment: Optional[list[str]] = typer.Option(
        None, "--fragment", "-f", help="Text fragment (repeatable)."
    ),
    aim: Optional[str] = typer.Option(None, "--aim", help="Process aim (defaults to the demo project's)."),
) -> None:
    output = asyncio.run(_run_session(puzzle_type, list(fragment or []), aim))
    typer.echo(output.model_dump_json(indent=2))
    if output.errors:
        typer.echo(f"{len(output.errors)} quadrant(s) failed: {'; '.join(output.errors)}", err=True)


@cli.command("demo", help="Run the default project end to end and print the final store.")
def demo() -> None:
    state = asyncio.run(_run_demo())
    typer.echo(json.dumps(state, indent=2))


@cli.command("hints", help="Print preference hints derived from a stored snapshot.")
def hints(
    path: Optional[str] = typer.Option(None, "--path", "-p", help="Snapshot file (defaults to PUZZLECRAFT_STORAGE_PATH)."),
    limit: int = typer.Option(2, "--limit", "-n", min=1, help="Number of preference keys to consider."),
) -> None:
    snapshot_path = path or get_settings().storage_path
    if not snapshot_path:
        typer.echo("No snapshot path given and PUZZLECRAFT_STORAGE_PATH is not set.", err=True)
        raise typer.Exit(code=1)

    result = asyncio.run(_load_hints(snapshot_path, limit))
    if result is None:
        typer.echo(f"No readable snapshot at {snapshot_path}.", err=True)
        raise typer.Exit(code=1)
    if not result:
        typer.echo("No preference hints yet.")
        return
    for line in result:
        typer.echo(f"- {line}")


if __name__ == "__main__":
    cli()
