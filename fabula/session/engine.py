"""
Game Engine - The lifecycle state machine that drives a play-through.

States:
    UNINITIALIZED -> INITIALIZED -> RUNNING <-> PAUSED
    RUNNING -> ENDED (no further choices)

A turn:
1. The current scene is presented with its visible choices
2. The player picks a choice; the ChoiceProcessor validates it
3. The EffectProcessor applies the choice's effects
4. The engine navigates to the target scene, or ends the story

Two background tasks run while a game is active: a playtime tick and a
fixed-interval autosave. Both take the engine's turn lock, so neither
ever runs while a choice, scene transition, item use or interaction is
in flight. Pausing cancels them without waiting for the lock, so an
in-flight choice always finishes.

A scene may also carry delayed effects (`metadata.timeEffects`). They are
applied once, under the same lock, after the scene has been shown for
their delay. Leaving the scene cancels them; pausing postpones them and
resuming restarts the full delay.

Errors are raised to the caller and also published as `error` events.
"""

from __future__ import annotations
import asyncio
import logging
import math
import os
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable

from ..content.repository import ContentSource
from ..engine_core.characters import CharacterInteraction, CharacterManager
from ..engine_core.choice_processor import ChoiceProcessor, ChoiceResult
from ..engine_core.condition import ConditionEvaluator
from ..engine_core.effect_processor import EffectProcessor, ProcessedEffect, teleport_target
from ..engine_core.errors import (
    ChoiceUnavailableError,
    FabulaError,
    PersistenceError,
    SceneInaccessibleError,
    StateError,
    ValidationError,
)
from ..engine_core.events import EventBus, GameEvent
from ..engine_core.inventory import InventoryManager, ItemUseResult
from ..engine_core.scene_processor import ProcessedScene, SceneProcessor
from ..engine_core.state import ChoiceRecord, GameState, Settings, new_game_state, utc_now_iso
from ..persistence.store import MemorySaveStore, SaveSlot, SaveStore
from ..story_schema.effects import Effect
from .audio import AudioSink, NullAudioSink

logger = logging.getLogger(__name__)

FINAL_SAVE_NAME = "Game Completed"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineConfig:
    """
    Engine configuration.

    Seeds the settings of every new game; loaded games keep their own.
    """
    autosave: bool = True
    autosave_interval: float = 30.0  # seconds
    playtime_tick: float = 1.0  # seconds per playtime unit
    sound_enabled: bool = True
    music_enabled: bool = True
    text_speed: str = "medium"
    difficulty: str = "normal"
    debug: bool = False

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Read FABULA_* environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            autosave=_env_bool("FABULA_AUTOSAVE", defaults.autosave),
            autosave_interval=float(os.getenv("FABULA_AUTOSAVE_INTERVAL", defaults.autosave_interval)),
            playtime_tick=float(os.getenv("FABULA_PLAYTIME_TICK", defaults.playtime_tick)),
            sound_enabled=_env_bool("FABULA_SOUND", defaults.sound_enabled),
            music_enabled=_env_bool("FABULA_MUSIC", defaults.music_enabled),
            text_speed=os.getenv("FABULA_TEXT_SPEED", defaults.text_speed),
            difficulty=os.getenv("FABULA_DIFFICULTY", defaults.difficulty),
            debug=_env_bool("FABULA_DEBUG", defaults.debug),
        )

    def new_settings(self) -> Settings:
        return Settings(
            autosave=self.autosave,
            autosave_interval=self.autosave_interval,
            text_speed=self.text_speed,
            sound_enabled=self.sound_enabled,
            music_enabled=self.music_enabled,
            difficulty=self.difficulty,
        )


class EngineState(Enum):
    """Lifecycle state of the engine."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass
class ChoiceOutcome:
    """
    Result of making a choice.

    `scene` is the newly entered scene, or None when the story ended.
    """
    choice: ChoiceResult
    effects: list[ProcessedEffect] = field(default_factory=list)
    scene: ProcessedScene | None = None
    ended: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "choice": self.choice.to_dict(),
            "effects": [e.to_dict() for e in self.effects],
            "scene": self.scene.to_dict() if self.scene else None,
            "ended": self.ended,
        }


class GameEngine:
    """
    Orchestrates scenes, choices, effects, timers and persistence.

    Usage:
        engine = GameEngine(StoryRepository([lantern_story()]))
        await engine.initialize()
        scene = await engine.start_new_game("lantern", player_name="Ada")
        outcome = await engine.make_choice(scene.choices[0].id)
        ...
        await engine.shutdown()
    """

    def __init__(
        self,
        content: ContentSource,
        store: SaveStore | None = None,
        audio: AudioSink | None = None,
        config: EngineConfig | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.content = content
        self.store = store if store is not None else MemorySaveStore()
        self.audio = audio or NullAudioSink()
        self.config = config or EngineConfig()
        self.bus = bus or EventBus()
        self._clock = clock or time.time

        self.evaluator = ConditionEvaluator()
        self.inventory = InventoryManager(self.bus)
        self.characters = CharacterManager(self.bus, now=self._clock)
        self.effects = EffectProcessor(
            self.bus,
            inventory=self.inventory,
            characters=self.characters,
            audio=self.audio,
            now=self._clock,
        )
        self.scenes = SceneProcessor(self.evaluator)
        self.choices = ChoiceProcessor(self.evaluator, now=self._clock)

        self.status = EngineState.UNINITIALIZED
        self.state: GameState | None = None
        self.current_scene: ProcessedScene | None = None
        self._scene_presented_at: float | None = None
        self._lock = asyncio.Lock()
        self._timers: list[asyncio.Task] = []
        self._scene_effects_task: asyncio.Task | None = None
        self._pending_scene_effects: tuple[str, Effect, float] | None = None

    @property
    def is_running(self) -> bool:
        return self.status == EngineState.RUNNING

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self):
        if self.status != EngineState.UNINITIALIZED:
            logger.debug("Engine already initialized")
            return
        if self.config.debug:
            logging.getLogger("fabula").setLevel(logging.DEBUG)
        self.status = EngineState.INITIALIZED
        logger.info("Game engine initialized")

    async def start_new_game(self, story_id: str, player_name: str = "Player") -> ProcessedScene:
        """Create a fresh state at the story's starting scene and start running."""
        self._require_initialized("start_new_game")
        await self._stop_timers()

        async with self._lock:
            try:
                starting = await self.content.get_starting_scene_id(story_id)
                self.state = new_game_state(
                    story_id, starting, player_name, settings=self.config.new_settings()
                )
                self._reset_subsystems()
                scene = await self._enter_scene(starting, record_visit=False)
            except FabulaError as e:
                self._report("start_new_game", e)
                raise

        self.status = EngineState.RUNNING
        self._start_timers()
        logger.info(f"New game started: story={story_id} state={self.state.id}")
        self.bus.emit(GameEvent.GAME_STARTED, state_id=self.state.id, story_id=story_id)
        return scene

    async def load_game(self, slot_id: str) -> ProcessedScene:
        """
        Restore a saved state and start running.

        Re-enters the saved scene without re-applying its entry effects.
        """
        self._require_initialized("load_game")
        await self._stop_timers()

        async with self._lock:
            try:
                state = await self.store.load(slot_id)
                self.state = state
                self._reset_subsystems()
                scene = await self._enter_scene(
                    state.current_scene_id,
                    apply_effects=False,
                    record_visit=False,
                    check_access=False,
                )
            except FabulaError as e:
                self._report("load_game", e)
                raise

        self.status = EngineState.RUNNING
        self._start_timers()
        logger.info(f"Game loaded from slot {slot_id}")
        self.bus.emit(GameEvent.GAME_LOADED, state_id=self.state.id, slot_id=slot_id)
        return scene

    async def pause_game(self):
        """Stop the timers and pause audio. An in-flight choice still completes."""
        if self.status == EngineState.PAUSED:
            return
        self._require(EngineState.RUNNING, operation="pause_game")
        self.status = EngineState.PAUSED
        await self._stop_timers()
        self._audio("pause_all")
        logger.info("Game paused")
        self.bus.emit(GameEvent.GAME_PAUSED)

    async def resume_game(self):
        if self.status == EngineState.RUNNING:
            return
        self._require(EngineState.PAUSED, operation="resume_game")
        self.status = EngineState.RUNNING
        self._start_timers()
        self._audio("resume_all")
        logger.info("Game resumed")
        self.bus.emit(GameEvent.GAME_RESUMED)

    async def shutdown(self):
        """Stop everything and detach all subscribers. Valid from any state."""
        await self._stop_timers()
        if self.status == EngineState.RUNNING:
            self._audio("pause_all")
        self._reset_subsystems()
        self.bus.clear()
        self.state = None
        self._pending_scene_effects = None
        self.current_scene = None
        self._scene_presented_at = None
        self.status = EngineState.UNINITIALIZED
        logger.info("Game engine shut down")

    # =========================================================================
    # Turns
    # =========================================================================

    async def make_choice(self, choice_id: str) -> ChoiceOutcome:
        """
        Resolve a choice offered by the current scene.

        Raises ChoiceUnavailableError when the choice is not offered or
        fails validation, StateError when the game is not running.
        """
        async with self._lock:
            try:
                if self.status == EngineState.ENDED:
                    raise StateError("The game has ended")
                self._require(EngineState.RUNNING, operation="make_choice")
                return await self._resolve_choice(choice_id)
            except FabulaError as e:
                self._report("make_choice", e)
                raise

    async def _resolve_choice(self, choice_id: str) -> ChoiceOutcome:
        state = self.state
        offered = {c.id: c.choice for c in self.current_scene.choices}
        choice = offered.get(choice_id)
        if choice is None:
            raise ChoiceUnavailableError(choice_id, "not offered in the current scene")

        result = self.choices.process(choice, state, started_at=self._scene_presented_at)
        if not result.success:
            raise ChoiceUnavailableError(choice_id, result.error or "")

        # The target must exist before any effect is applied
        if choice.target_scene_id:
            await self.content.get_scene(state.story_id, choice.target_scene_id)

        logger.debug(f"Choice {choice_id} accepted in scene {state.current_scene_id}")
        snapshot = state.clone()
        from_scene = state.current_scene_id
        applied = self.effects.process(result.effects, state)
        state.progress.choices_made.append(
            ChoiceRecord(choice_id=choice_id, scene_id=from_scene, text=choice.text)
        )

        target = teleport_target(applied) or choice.target_scene_id
        if target:
            try:
                scene = await self._enter_scene(target)
            except FabulaError:
                # The turn did not happen; the player stays on the old scene
                logger.warning(f"Navigation to {target} failed, rolling back choice {choice_id}")
                self.state = snapshot
                raise
            self._choice_made(choice_id, from_scene, choice.text)
            return ChoiceOutcome(result, applied, scene=scene)

        self._choice_made(choice_id, from_scene, choice.text)
        await self._end_game()
        return ChoiceOutcome(result, applied, ended=True)

    def _choice_made(self, choice_id: str, scene_id: str, text: str):
        self.bus.emit(GameEvent.CHOICE_MADE, choice_id=choice_id, scene_id=scene_id, text=text)

    async def navigate_to_scene(self, scene_id: str) -> ProcessedScene:
        async with self._lock:
            try:
                self._require(EngineState.RUNNING, operation="navigate_to_scene")
                return await self._enter_scene(scene_id)
            except FabulaError as e:
                self._report("navigate_to_scene", e)
                raise

    async def _enter_scene(
        self,
        scene_id: str,
        apply_effects: bool = True,
        record_visit: bool = True,
        check_access: bool = True,
    ) -> ProcessedScene:
        state = self.state
        self.effects.expire_timed_effects(state)

        scene = await self.content.get_scene(state.story_id, scene_id)
        if check_access and not self.scenes.is_accessible(scene, state):
            raise SceneInaccessibleError(scene_id)

        self._cancel_scene_effects()
        self._pending_scene_effects = None

        state.current_scene_id = scene_id
        if record_visit:
            state.progress.scenes_visited.append(scene_id)

        if apply_effects and not scene.effects.is_empty:
            self.effects.process(scene.effects, state)

        characters = await self.content.get_scene_characters(state.story_id, scene_id)
        self.characters.load_scene_characters(characters)

        if scene.background_music and state.settings.music_enabled:
            self._audio("play_background_music", scene.background_music)

        choices = await self.content.get_choices(state.story_id, scene.choice_ids)
        self.current_scene = self.scenes.render(scene, state, choices)
        self._scene_presented_at = self._clock()

        await self._update_progress()
        await self._check_achievements()

        logger.debug(f"Entered scene {scene_id}")
        self.bus.emit(
            GameEvent.SCENE_CHANGED,
            scene_id=scene_id,
            scene=self.current_scene.to_dict(),
        )

        if apply_effects and scene.time_effects is not None:
            self._pending_scene_effects = (scene_id, scene.time_effects, scene.time_effects_delay)
            self._arm_scene_effects()
        return self.current_scene

    async def _end_game(self):
        if self.status == EngineState.ENDED:
            return
        self.status = EngineState.ENDED
        await self._stop_timers()
        await self._check_achievements()

        try:
            await self._save(FINAL_SAVE_NAME, autosave=False)
        except PersistenceError as e:
            logger.error(f"Final save failed: {e}")
            self._report("end_game", e)

        self._audio("stop_all")
        logger.info(f"Game ended: state={self.state.id}")
        self.bus.emit(
            GameEvent.GAME_ENDED,
            state_id=self.state.id,
            scenes_visited=len(set(self.state.progress.scenes_visited)),
            achievements=list(self.state.progress.achievements_unlocked),
        )

    async def _update_progress(self):
        state = self.state
        total = await self.content.get_scene_count(state.story_id)
        visited = len(set(state.progress.scenes_visited))
        progress = math.floor(visited / total * 100 + 0.5) if total else 0
        if progress != state.progress.story_progress:
            state.progress.story_progress = progress
            self.bus.emit(GameEvent.PROGRESS_UPDATED, progress=progress)

    async def _check_achievements(self):
        state = self.state
        achievements = await self.content.get_story_achievements(state.story_id)
        for achievement in achievements:
            if achievement.id in state.progress.achievements_unlocked:
                continue
            if not self.evaluator.evaluate(achievement.conditions, state):
                continue
            state.progress.achievements_unlocked.append(achievement.id)
            logger.info(f"Achievement unlocked: {achievement.id}")
            self.bus.emit(
                GameEvent.ACHIEVEMENT_UNLOCKED,
                achievement_id=achievement.id,
                name=achievement.name,
                points=achievement.points,
            )
            if state.settings.sound_enabled:
                self._audio("play_sound", achievement.sound)

    # =========================================================================
    # Items, characters, settings
    # =========================================================================

    async def use_item(self, item_id: str) -> ItemUseResult:
        """Use an inventory item; its effect goes through the EffectProcessor."""
        async with self._lock:
            try:
                self._require(EngineState.RUNNING, operation="use_item")
                result = self.inventory.use_item(self.state, item_id)
                if result.success and not result.effect.is_empty:
                    self.effects.process(result.effect, self.state)
                    await self._check_achievements()
                return result
            except FabulaError as e:
                self._report("use_item", e)
                raise

    async def interact(self, character_id: str, kind: str) -> CharacterInteraction:
        async with self._lock:
            try:
                self._require(EngineState.RUNNING, operation="interact")
                return self.characters.interact(self.state, character_id, kind)
            except FabulaError as e:
                self._report("interact", e)
                raise

    async def update_settings(self, **changes: Any) -> Settings:
        """
        Change settings of the active game.

        Raises ValidationError for unknown setting names.
        """
        self._require_game("update_settings")
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            error = ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
            self._report("update_settings", error)
            raise error

        settings = self.state.settings
        for name, value in changes.items():
            setattr(settings, name, value)

        if self.status == EngineState.RUNNING and {"autosave", "autosave_interval"} & set(changes):
            await self._stop_timers()
            self._start_timers()

        self.bus.emit(GameEvent.SETTINGS_UPDATED, settings=settings.to_dict())
        return settings

    # =========================================================================
    # Persistence
    # =========================================================================

    async def autosave(self) -> bool:
        """
        Save to the play-through's autosave slot.

        Failures are logged and reported, never raised; the next autosave
        tick retries. Returns True on success.
        """
        if self.state is None or not self.state.settings.autosave:
            return False
        async with self._lock:
            try:
                await self._save("Autosave", autosave=True)
                logger.debug("Autosave completed")
                return True
            except PersistenceError as e:
                logger.warning(f"Autosave failed: {e}")
                self._report("autosave", e)
                return False

    async def manual_save(self, name: str) -> SaveSlot:
        """Save to a new named slot. Raises PersistenceError on failure."""
        self._require_game("manual_save")
        async with self._lock:
            try:
                return await self._save(name, autosave=False)
            except PersistenceError as e:
                self._report("manual_save", e)
                raise

    async def list_save_slots(self) -> list[SaveSlot]:
        try:
            return await self.store.list_slots()
        except PersistenceError as e:
            self._report("list_save_slots", e)
            raise

    async def _save(self, name: str, autosave: bool) -> SaveSlot:
        state = self.state
        previous = state.progress.last_saved
        state.progress.last_saved = utc_now_iso()
        state.metadata.touch()
        try:
            slot = await self.store.save(state, name, autosave=autosave)
        except PersistenceError:
            state.progress.last_saved = previous
            raise
        except Exception as e:
            state.progress.last_saved = previous
            raise PersistenceError(f"Save failed: {e}") from e

        self.bus.emit(GameEvent.GAME_SAVED, slot=slot.to_dict(), autosave=autosave)
        return slot

    # =========================================================================
    # Timers
    # =========================================================================

    def _start_timers(self):
        self._timers.append(asyncio.create_task(self._playtime_loop()))
        if self.state is not None and self.state.settings.autosave:
            self._timers.append(asyncio.create_task(self._autosave_loop()))
        self._arm_scene_effects()

    async def _stop_timers(self):
        tasks, self._timers = self._timers, []
        if self._scene_effects_task is not None:
            tasks.append(self._scene_effects_task)
            self._scene_effects_task = None
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _playtime_loop(self):
        while True:
            await asyncio.sleep(self.config.playtime_tick)
            async with self._lock:
                if self.status == EngineState.RUNNING and self.state is not None:
                    self.state.progress.playtime += 1

    async def _autosave_loop(self):
        while True:
            await asyncio.sleep(self.state.settings.autosave_interval)
            if self.status == EngineState.RUNNING:
                await self.autosave()

    def _arm_scene_effects(self):
        """Schedule the current scene's delayed effects, if any are pending."""
        if self._pending_scene_effects is None:
            return
        if self._scene_effects_task is not None and not self._scene_effects_task.done():
            return
        self._scene_effects_task = asyncio.create_task(
            self._apply_scene_effects_later(self._pending_scene_effects)
        )

    def _cancel_scene_effects(self):
        if self._scene_effects_task is not None:
            self._scene_effects_task.cancel()
            self._scene_effects_task = None

    async def _apply_scene_effects_later(self, pending: tuple[str, Effect, float]):
        scene_id, effect, delay = pending
        await asyncio.sleep(delay)
        async with self._lock:
            # Left the scene, or a newer entry replaced the schedule
            if self._pending_scene_effects is not pending or self.status != EngineState.RUNNING:
                return
            self._pending_scene_effects = None
            logger.debug(f"Applying delayed effects of scene {scene_id}")
            try:
                self.effects.process(effect, self.state)
                await self._check_achievements()
            except FabulaError as e:
                self._report("scene_time_effects", e)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_initialized(self, operation: str):
        if self.status == EngineState.UNINITIALIZED:
            error = StateError(f"{operation}: engine not initialized")
            self._report(operation, error)
            raise error

    def _require_game(self, operation: str):
        if self.state is None:
            error = StateError(f"{operation}: no active game")
            self._report(operation, error)
            raise error

    def _require(self, *allowed: EngineState, operation: str):
        if self.status not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise StateError(f"{operation} requires the engine to be {expected}, it is {self.status.value}")

    def _reset_subsystems(self):
        self.effects.reset()
        self.characters.reset()
        self.current_scene = None
        self._scene_presented_at = None

    def _audio(self, call: str, *args: Any):
        try:
            getattr(self.audio, call)(*args)
        except Exception as e:
            logger.error(f"Audio {call} failed: {e}")

    def _report(self, operation: str, error: Exception):
        logger.error(f"{operation} failed: {error}")
        self.bus.emit(
            GameEvent.ERROR,
            operation=operation,
            error_type=type(error).__name__,
            message=str(error),
        )
