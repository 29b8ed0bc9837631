"""
Pytest fixtures for Fabula tests.
"""

import pytest

from ..engine_core.events import EventBus, EventRecord
from ..engine_core.state import GameState, new_game_state
from ..persistence.store import MemorySaveStore
from ..session.audio import RecordingAudioSink
from ..session.engine import EngineConfig, GameEngine
from ..stories.lantern import STORY_ID, build_repository


class FakeClock:
    """Manually advanced engine clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class EventLog:
    """Records every event published on a bus."""

    def __init__(self, bus: EventBus):
        self.records: list[EventRecord] = []
        bus.subscribe_all(self.records.append)

    def names(self) -> list[str]:
        return [r.name for r in self.records]

    def of(self, name: str) -> list[EventRecord]:
        return [r for r in self.records if r.name == name]

    def clear(self):
        self.records.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state() -> GameState:
    """A fresh state at the built-in story's gate."""
    return new_game_state(STORY_ID, "gate", player_name="Ada", state_id="test_state")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> EventLog:
    return EventLog(bus)


@pytest.fixture
def repository():
    return build_repository()


@pytest.fixture
def audio() -> RecordingAudioSink:
    return RecordingAudioSink()


@pytest.fixture
def store() -> MemorySaveStore:
    return MemorySaveStore()


@pytest.fixture
def config() -> EngineConfig:
    """Timers effectively disabled so tests drive time explicitly."""
    return EngineConfig(autosave=False, playtime_tick=3600.0)


@pytest.fixture
def engine(repository, store, audio, config, bus, clock) -> GameEngine:
    return GameEngine(
        repository,
        store=store,
        audio=audio,
        config=config,
        bus=bus,
        clock=clock,
    )
