"""
Tests for session management.
"""

import asyncio

from ..engine_core.events import EventRecord
from ..session.audio import RecordingAudioSink
from ..session.engine import EngineConfig, EngineState
from ..session.manager import MAX_EVENT_HISTORY, SessionManager
from ..stories.lantern import STORY_ID, build_repository


def make_manager(**kwargs):
    return SessionManager(
        build_repository(),
        config=EngineConfig(autosave=False, playtime_tick=3600.0),
        **kwargs,
    )


class TestSessionManager:
    """Tests for SessionManager."""

    def test_create_session(self):
        """Each session gets its own initialized engine."""
        async def scenario():
            manager = make_manager()
            first = await manager.create_session("Ada")
            second = await manager.create_session("Grace")

            assert first.session_id != second.session_id
            assert first.engine is not second.engine
            assert first.engine.status == EngineState.INITIALIZED
            assert manager.list_active_sessions() == [first.session_id, second.session_id]
            await manager.shutdown()

        asyncio.run(scenario())

    def test_sessions_share_the_save_store(self):
        async def scenario():
            manager = make_manager()
            session = await manager.create_session()
            await session.engine.start_new_game(STORY_ID)
            slot = await session.engine.manual_save("Gate")

            other = await manager.create_session()
            scene = await other.engine.load_game(slot.id)
            assert scene.id == "gate"
            await manager.shutdown()

        asyncio.run(scenario())

    def test_audio_factory_per_session(self):
        async def scenario():
            sinks = []

            def factory():
                sinks.append(RecordingAudioSink())
                return sinks[-1]

            manager = make_manager(audio_factory=factory)
            await manager.create_session()
            await manager.create_session()

            assert len(sinks) == 2
            await manager.shutdown()

        asyncio.run(scenario())

    def test_end_session(self):
        """Ending shuts the engine down and forgets the session."""
        async def scenario():
            manager = make_manager()
            session = await manager.create_session()
            await session.engine.start_new_game(STORY_ID)

            assert await manager.end_session(session.session_id)
            assert manager.get_session(session.session_id) is None
            assert session.engine.status == EngineState.UNINITIALIZED
            assert not await manager.end_session(session.session_id)

        asyncio.run(scenario())

    def test_cleanup_keeps_running_games(self):
        async def scenario():
            manager = make_manager()
            idle = await manager.create_session()
            playing = await manager.create_session()
            await playing.engine.start_new_game(STORY_ID)
            idle.last_activity = 0.0
            playing.last_activity = 0.0

            assert await manager.cleanup_stale_sessions(max_idle_seconds=60) == 1
            assert manager.get_session(idle.session_id) is None
            assert manager.get_session(playing.session_id) is playing
            await manager.shutdown()

        asyncio.run(scenario())


class TestSessionEvents:
    def test_engine_events_are_recorded(self):
        async def scenario():
            manager = make_manager()
            session = await manager.create_session()
            await session.engine.start_new_game(STORY_ID)

            names = [e.name for e in session.drain_events()]
            assert "gameStarted" in names
            assert session.drain_events() == []
            await manager.shutdown()

        asyncio.run(scenario())

    def test_history_is_bounded(self):
        async def scenario():
            manager = make_manager()
            session = await manager.create_session()
            for i in range(MAX_EVENT_HISTORY + 5):
                session.record(EventRecord(name="tick", payload={"i": i}))

            assert len(session.events) == MAX_EVENT_HISTORY
            assert session.events[0].payload["i"] == 5
            await manager.shutdown()

        asyncio.run(scenario())
