"""Pytest configuration and fixtures."""
import logging

import pytest

from puzzlecraft.core.context_store import ContextStore
from puzzlecraft.core.event_bus import EventBus
from puzzlecraft.core.llm_client import MockLLMClient
from puzzlecraft.models.domain import Project, ProjectStore
from puzzlecraft.models.session import FragmentSummary
from puzzlecraft.protocol.events import UIEvent


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


@pytest.fixture
def project() -> Project:
    return Project(
        id="p-test",
        title="Test Project",
        process_aim="Explore the tension between analog warmth and digital coldness.",
    )


@pytest.fixture
def store(project) -> ContextStore:
    return ContextStore(ProjectStore(project=project))


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def mock_llm() -> MockLLMClient:
    return MockLLMClient()


@pytest.fixture
def recorded(bus) -> list[UIEvent]:
    """Every event emitted on ``bus``, in order."""
    events: list[UIEvent] = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def fragment_summaries() -> list[FragmentSummary]:
    return [
        FragmentSummary(
            id="f1",
            title="Nostalgic Future",
            summary="CRT glow reflected on a tired pilot's face. Warm light, cold metal.",
            tags=["retro", "glow"],
        ),
        FragmentSummary(
            id="f2",
            title="Tape Hiss",
            summary="Tape hiss under the ship's computer voice.",
            tags=["audio", "analog"],
        ),
    ]
