"""
Effect Processor - Applies effect bundles to the game state.

Categories are applied in a fixed order:
    health -> mana -> gold -> experience -> attributes -> flags ->
    inventory-add -> inventory-remove -> relationships -> audio ->
    custom -> events

Each category is atomic and clamps its values. Custom effects are a
closed tagged set; a failing custom effect is recorded as a failed
result and the rest of the batch still applies.

A batch submitted while another is mid-application (for example from an
event subscriber) is queued and applied, in order, once the current
batch completes. Queued results are reported via effectsProcessed.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, TYPE_CHECKING
import logging
import math
import time

from .characters import CharacterManager
from .errors import EffectError
from .events import EventBus, GameEvent
from .inventory import InventoryManager
from .state import GameState, TimedEffect, check_flag_value, clamp, utc_now_iso
from ..story_schema.effects import CUSTOM_EFFECT_TYPES, CustomEffect, Effect

if TYPE_CHECKING:
    from ..session.audio import AudioSink

logger = logging.getLogger(__name__)

CRITICAL_HEALTH_RATIO = 0.2

DEFAULT_TIMED_DURATION = 3600.0  # seconds


def level_for_experience(experience: int) -> int:
    return math.floor(math.sqrt(max(0, experience) / 100)) + 1


@dataclass
class ProcessedEffect:
    """Result record for one applied effect category or custom effect."""
    type: str
    success: bool
    description: str = ""
    old_value: Any = None
    new_value: Any = None
    change: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "success": self.success,
            "description": self.description,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "change": self.change,
            "metadata": self.metadata,
            "error": self.error,
            "timestamp": self.timestamp,
        }


class EffectProcessor:
    """
    Applies effect bundles in a fixed category order.

    Usage:
        processor = EffectProcessor(bus)
        results = processor.process({"health": -10, "flags": {"hurt": True}}, state)
    """

    def __init__(
        self,
        bus: EventBus | None = None,
        inventory: InventoryManager | None = None,
        characters: CharacterManager | None = None,
        audio: AudioSink | None = None,
        now: Callable[[], float] | None = None,
    ):
        self.bus = bus or EventBus()
        self.inventory = inventory or InventoryManager(self.bus)
        self.characters = characters or CharacterManager(self.bus)
        self.audio = audio
        self._now = now or time.time
        self._processing = False
        self._queue: deque[tuple[Effect, GameState]] = deque()

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def queued(self) -> int:
        return len(self._queue)

    def process(self, effect: Effect | dict[str, Any] | None, state: GameState) -> list[ProcessedEffect]:
        """
        Apply a bundle to the state.

        Returns the results, or [] when the bundle was queued behind a
        batch that is still being applied.
        """
        if effect is None:
            return []
        if isinstance(effect, dict):
            effect = Effect.from_dict(effect)

        if self._processing:
            logger.debug("Effect batch queued behind the current batch")
            self._queue.append((effect, state))
            return []

        try:
            results = self._run(effect, state)
        except Exception:
            if self._queue:
                logger.warning(f"Dropping {len(self._queue)} queued effect batch(es) after failure")
                self._queue.clear()
            raise

        while self._queue:
            queued_effect, queued_state = self._queue.popleft()
            self._run(queued_effect, queued_state, queued=True)
        return results

    def _run(self, effect: Effect, state: GameState, queued: bool = False) -> list[ProcessedEffect]:
        self._processing = True
        try:
            results = self._apply(effect, state)
        finally:
            self._processing = False
        state.metadata.touch()
        self.bus.emit(
            GameEvent.EFFECTS_PROCESSED,
            results=[r.to_dict() for r in results],
            queued=queued,
        )
        return results

    def _apply(self, effect: Effect, state: GameState) -> list[ProcessedEffect]:
        results: list[ProcessedEffect] = []

        def record(result: ProcessedEffect | None):
            if result is None:
                return
            results.append(result)
            self.bus.emit(GameEvent.EFFECT_PROCESSED, result=result.to_dict())

        if effect.health is not None:
            record(self._apply_health(effect.health, state))
        if effect.mana is not None:
            record(self._apply_mana(effect.mana, state))
        if effect.gold is not None:
            record(self._apply_gold(effect.gold, state))
        if effect.experience is not None:
            record(self._apply_experience(effect.experience, state))
        if effect.attributes:
            record(self._apply_attributes(effect.attributes, state))
        if effect.flags:
            record(self._apply_flags(effect.flags, state))
        if effect.add_items:
            record(self._apply_add_items(effect, state))
        if effect.remove_items:
            record(self._apply_remove_items(effect, state))
        if effect.relationships:
            record(self._apply_relationships(effect.relationships, state))
        if effect.sound:
            record(self._apply_sound(effect, state))
        if effect.music:
            record(self._apply_music(effect, state))
        for custom in effect.custom:
            record(self._apply_custom(custom, state))
        if effect.events:
            record(self._apply_events(effect.events, state))

        return results

    # =========================================================================
    # Stats
    # =========================================================================

    def _apply_health(self, delta: int, state: GameState) -> ProcessedEffect:
        player = state.player
        old = player.health
        new = int(clamp(old + delta, 0, player.max_health))
        player.health = new

        if new <= player.max_health * CRITICAL_HEALTH_RATIO:
            self.bus.emit(GameEvent.CRITICAL_HEALTH, health=new, max_health=player.max_health)
        if new <= 0:
            self.bus.emit(GameEvent.PLAYER_DEATH, cause="health")

        description = f"Restored {new - old} health" if delta > 0 else f"Took {old - new} damage"
        return ProcessedEffect("health", True, description, old, new, new - old)

    def _apply_mana(self, delta: int, state: GameState) -> ProcessedEffect:
        player = state.player
        old = player.mana
        new = int(clamp(old + delta, 0, player.max_mana))
        player.mana = new
        description = f"Restored {new - old} mana" if delta > 0 else f"Spent {old - new} mana"
        return ProcessedEffect("mana", True, description, old, new, new - old)

    def _apply_gold(self, delta: int, state: GameState) -> ProcessedEffect:
        old = state.player.gold
        new = max(0, old + delta)
        state.player.gold = new
        description = f"Gained {new - old} gold" if delta > 0 else f"Spent {old - new} gold"
        return ProcessedEffect("gold", True, description, old, new, new - old)

    def _apply_experience(self, delta: int, state: GameState) -> ProcessedEffect:
        player = state.player
        old = player.experience
        new = max(0, old + delta)
        player.experience = new

        old_level = player.level
        new_level = max(old_level, level_for_experience(new))
        metadata: dict[str, Any] = {}
        description = f"Gained {new - old} experience" if delta > 0 else f"Lost {old - new} experience"

        if new_level > old_level:
            player.level = new_level
            player.health = player.max_health
            player.mana = player.max_mana
            metadata = {"levelUp": True, "newLevel": new_level}
            description = f"{description} - reached level {new_level}!"
            logger.info(f"Level up: {old_level} -> {new_level}")
            self.bus.emit(
                GameEvent.LEVEL_UP,
                old_level=old_level,
                new_level=new_level,
                experience=new,
            )

        return ProcessedEffect("experience", True, description, old, new, new - old, metadata)

    def _apply_attributes(self, deltas: dict[str, int], state: GameState) -> ProcessedEffect:
        attributes = state.player.attributes
        old = dict(attributes)
        ignored = [name for name in deltas if name not in attributes]
        for name, delta in deltas.items():
            if name in attributes:
                attributes[name] = max(1, attributes[name] + delta)

        changes = ", ".join(f"{k} {'+' if v > 0 else ''}{v}" for k, v in deltas.items() if k not in ignored)
        metadata = {"ignored": ignored} if ignored else {}
        return ProcessedEffect("attributes", True, f"Attributes changed: {changes}", old, dict(attributes), metadata=metadata)

    def _apply_flags(self, flags: dict[str, Any], state: GameState) -> ProcessedEffect:
        # Validate all values before writing any
        for key, value in flags.items():
            check_flag_value(key, value)

        changed = {}
        for key, value in flags.items():
            changed[key] = {"old": state.flags.get(key), "new": value}
            state.flags[key] = value
        return ProcessedEffect(
            "flags",
            True,
            f"Flags set: {', '.join(flags)}",
            metadata={"changedFlags": changed},
        )

    # =========================================================================
    # Inventory and relationships
    # =========================================================================

    def _apply_add_items(self, effect: Effect, state: GameState) -> ProcessedEffect:
        names = [item.name for item in effect.add_items]
        if not self.inventory.add_items(state, effect.add_items):
            return ProcessedEffect(
                "addItems",
                False,
                "Inventory full",
                error="inventory full",
                metadata={"itemsAdded": 0},
            )
        return ProcessedEffect(
            "addItems",
            True,
            f"Items received: {', '.join(names)}",
            metadata={"itemsAdded": len(names)},
        )

    def _apply_remove_items(self, effect: Effect, state: GameState) -> ProcessedEffect:
        names = [r.name or r.item_id for r in effect.remove_items]
        if not self.inventory.remove_items(state, effect.remove_items):
            return ProcessedEffect(
                "removeItems",
                False,
                "No items removed",
                error="missing items",
                metadata={"itemsRemoved": 0},
            )
        return ProcessedEffect(
            "removeItems",
            True,
            f"Items removed: {', '.join(names)}",
            metadata={"itemsRemoved": len(names)},
        )

    def _apply_relationships(self, deltas: dict[str, int], state: GameState) -> ProcessedEffect:
        changed = {}
        for character_id, delta in deltas.items():
            old = state.get_relationship(character_id)
            new = self.characters.adjust_relationship(state, character_id, delta)
            changed[character_id] = {"old": old, "new": new, "change": new - old}
        return ProcessedEffect(
            "relationships",
            True,
            f"Relationships changed: {', '.join(deltas)}",
            metadata={"changedRelationships": changed},
        )

    # =========================================================================
    # Audio
    # =========================================================================

    def _apply_sound(self, effect: Effect, state: GameState) -> ProcessedEffect:
        cue = effect.sound
        if not state.settings.sound_enabled or self.audio is None:
            return ProcessedEffect("sound", True, "Sound muted", metadata={"file": cue.file})
        try:
            self.audio.play_sound(cue.file, volume=cue.volume, loop=cue.loop)
        except Exception as e:
            logger.error(f"Sound effect failed: {e}")
            return ProcessedEffect("sound", False, f"Could not play {cue.file}", error=str(e))
        return ProcessedEffect("sound", True, f"Played {cue.file}", metadata={"file": cue.file})

    def _apply_music(self, effect: Effect, state: GameState) -> ProcessedEffect:
        cue = effect.music
        if not state.settings.music_enabled or self.audio is None:
            return ProcessedEffect("music", True, "Music muted", metadata={"file": cue.file})
        try:
            self.audio.play_background_music(cue.file, volume=cue.volume)
        except Exception as e:
            logger.error(f"Music effect failed: {e}")
            return ProcessedEffect("music", False, f"Could not play {cue.file}", error=str(e))
        return ProcessedEffect("music", True, f"Playing {cue.file}", metadata={"file": cue.file})

    # =========================================================================
    # Custom effects
    # =========================================================================

    def _apply_custom(self, custom: CustomEffect, state: GameState) -> ProcessedEffect:
        handlers: dict[str, Callable[[CustomEffect, GameState], ProcessedEffect]] = {
            "teleport": self._custom_teleport,
            "transform": self._custom_transform,
            "summon": self._custom_summon,
            "curse": self._custom_timed,
            "blessing": self._custom_timed,
        }
        try:
            handler = handlers.get(custom.type)
            if handler is None:
                raise EffectError(custom.type, f"unknown custom effect (expected one of {', '.join(CUSTOM_EFFECT_TYPES)})")
            return handler(custom, state)
        except Exception as e:
            logger.error(f"Custom effect '{custom.type}' failed: {e}")
            return ProcessedEffect(
                "custom",
                False,
                f"Custom effect {custom.type} failed",
                metadata={"customType": custom.type},
                error=str(e),
            )

    def _custom_teleport(self, custom: CustomEffect, state: GameState) -> ProcessedEffect:
        target = custom.get("targetScene")
        if not target:
            raise EffectError("teleport", "missing targetScene")
        self.bus.emit(GameEvent.TELEPORT, target_scene=target)
        return ProcessedEffect(
            "custom",
            True,
            f"Teleported to {target}",
            metadata={"customType": "teleport", "targetScene": target},
        )

    def _custom_transform(self, custom: CustomEffect, state: GameState) -> ProcessedEffect:
        form = custom.get("form")
        if not form:
            raise EffectError("transform", "missing form")
        old = state.flags.get("transformed_form")
        state.flags["transformed_form"] = form
        return ProcessedEffect(
            "custom", True, f"Transformed into {form}", old, form,
            metadata={"customType": "transform"},
        )

    def _custom_summon(self, custom: CustomEffect, state: GameState) -> ProcessedEffect:
        creature = custom.get("creature")
        if not creature:
            raise EffectError("summon", "missing creature")
        state.flags["summoned_creature"] = creature
        return ProcessedEffect(
            "custom", True, f"Summoned {creature}",
            metadata={"customType": "summon", "creature": creature},
        )

    def _custom_timed(self, custom: CustomEffect, state: GameState) -> ProcessedEffect:
        kind = custom.type
        timed = TimedEffect(
            kind=kind,
            type=str(custom.get(f"{kind}Type") or "unknown"),
            start_time=self._now(),
            duration=float(custom.get("duration") or DEFAULT_TIMED_DURATION),
            effects=dict(custom.get("effects") or {}),
        )
        if timed.duration <= 0:
            raise EffectError(kind, f"duration must be positive, got {timed.duration}")

        state.timed_effects[timed.key] = timed
        state.flags[timed.key] = True
        verb = "Cursed" if kind == "curse" else "Blessed"
        return ProcessedEffect(
            "custom",
            True,
            f"{verb} with {timed.type}",
            metadata={"customType": kind, "key": timed.key, "expiresAt": timed.expires_at()},
        )

    def expire_timed_effects(self, state: GameState, now: float | None = None) -> list[TimedEffect]:
        """
        Remove curses and blessings whose duration has elapsed.

        Clears their flags and emits timedEffectExpired for each.
        """
        now = self._now() if now is None else now
        expired = [t for t in state.timed_effects.values() if t.is_expired(now)]
        for timed in expired:
            del state.timed_effects[timed.key]
            state.flags.pop(timed.key, None)
            logger.debug(f"Timed effect {timed.key} expired")
            self.bus.emit(GameEvent.TIMED_EFFECT_EXPIRED, key=timed.key, kind=timed.kind, type=timed.type)
        return expired

    # =========================================================================
    # Events
    # =========================================================================

    def _apply_events(self, events: list[str], state: GameState) -> ProcessedEffect:
        for name in events:
            self.bus.emit(GameEvent.GAME_EVENT, name=name, state_id=state.id)
        return ProcessedEffect("events", True, f"Events triggered: {', '.join(events)}", metadata={"events": list(events)})

    def reset(self):
        self._queue.clear()
        self._processing = False


def teleport_target(results: list[ProcessedEffect]) -> str | None:
    """The last successful teleport target in a batch, if any."""
    target = None
    for result in results:
        if result.success and result.metadata.get("customType") == "teleport":
            target = result.metadata["targetScene"]
    return target
