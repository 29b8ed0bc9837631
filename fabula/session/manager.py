"""
Session Manager - Creates and manages game sessions.

A session is one GameEngine bound to one player:
1. Client creates a session → a fresh engine is initialized
2. Client starts or loads a game through the session's engine
3. Events emitted by the engine are recorded on the session so
   stateless clients can poll them
4. Session ends → engine shut down, timers cancelled, session removed

All sessions share one content source and one save store.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable
import logging
import time
import uuid

from ..content.repository import ContentSource
from ..engine_core.events import EventRecord
from ..persistence.store import MemorySaveStore, SaveStore
from .audio import AudioSink, NullAudioSink
from .engine import EngineConfig, EngineState, GameEngine

logger = logging.getLogger(__name__)

MAX_EVENT_HISTORY = 200


@dataclass
class Session:
    """
    A game session.

    Contains:
    - The engine driving the play-through
    - A bounded history of emitted events
    - Session metadata
    """
    session_id: str
    engine: GameEngine
    created_at: float
    player_name: str = "Player"
    events: list[EventRecord] = field(default_factory=list)
    last_activity: float = 0.0

    def is_active(self) -> bool:
        return self.engine.status in {
            EngineState.INITIALIZED,
            EngineState.RUNNING,
            EngineState.PAUSED,
        }

    def record(self, event: EventRecord):
        self.events.append(event)
        if len(self.events) > MAX_EVENT_HISTORY:
            del self.events[: len(self.events) - MAX_EVENT_HISTORY]

    def drain_events(self) -> list[EventRecord]:
        """Return and clear recorded events."""
        events = self.events.copy()
        self.events.clear()
        return events

    def touch(self):
        self.last_activity = time.time()


class SessionManager:
    """
    Manages game sessions.

    Responsibilities:
    - Create sessions with their own engine
    - Track active sessions
    - Shut down ended or stale sessions
    """

    def __init__(
        self,
        content: ContentSource,
        store: SaveStore | None = None,
        config: EngineConfig | None = None,
        audio_factory: Callable[[], AudioSink] | None = None,
    ):
        self.content = content
        self.store = store if store is not None else MemorySaveStore()
        self.config = config or EngineConfig()
        self.audio_factory = audio_factory or NullAudioSink
        self._sessions: dict[str, Session] = {}

    async def create_session(self, player_name: str = "Player") -> Session:
        """Create a session with an initialized engine."""
        engine = GameEngine(
            self.content,
            store=self.store,
            audio=self.audio_factory(),
            config=self.config,
        )
        await engine.initialize()

        now = time.time()
        session = Session(
            session_id=str(uuid.uuid4()),
            engine=engine,
            created_at=now,
            player_name=player_name,
            last_activity=now,
        )
        engine.bus.subscribe_all(session.record)

        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def end_session(self, session_id: str) -> bool:
        """Shut down the session's engine and forget the session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.engine.shutdown()
        session.events.clear()
        logger.info(f"Session ended: {session_id}")
        return True

    def list_active_sessions(self) -> list[str]:
        return [
            sid for sid, session in self._sessions.items()
            if session.is_active()
        ]

    async def cleanup_stale_sessions(self, max_idle_seconds: int = 3600) -> int:
        """
        End sessions idle for longer than max_idle_seconds.

        Running games are kept regardless of idle time. Returns the number
        of sessions ended.
        """
        now = time.time()
        stale = [
            sid for sid, session in self._sessions.items()
            if now - session.last_activity > max_idle_seconds
            and session.engine.status != EngineState.RUNNING
        ]
        for session_id in stale:
            await self.end_session(session_id)
        return len(stale)

    async def shutdown(self):
        for session_id in list(self._sessions):
            await self.end_session(session_id)
