"""
Session Module - Runs play-throughs.

- GameEngine drives one play-through: lifecycle, turns, timers, saves
- SessionManager keeps one engine per client session
- Audio sinks are the engine's fire-and-forget audio collaborators
"""

from .audio import AudioSink, NullAudioSink, RecordingAudioSink
from .engine import GameEngine, EngineConfig, EngineState, ChoiceOutcome
from .manager import SessionManager, Session

__all__ = [
    "AudioSink",
    "NullAudioSink",
    "RecordingAudioSink",
    "GameEngine",
    "EngineConfig",
    "EngineState",
    "ChoiceOutcome",
    "SessionManager",
    "Session",
]
