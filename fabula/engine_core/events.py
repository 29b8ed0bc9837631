"""
Event Bus - Explicit observer registration for engine events.

Subsystems do not inherit from an emitter. They receive a shared EventBus
by composition and publish to it; presentation layers subscribe to the
same bus. Subscriber failures are logged and never propagate into the
engine.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable
import logging
import time

logger = logging.getLogger(__name__)


class GameEvent(str, Enum):
    """Names of events published on the bus."""
    # Core events
    SCENE_CHANGED = "sceneChanged"
    CHOICE_MADE = "choiceMade"
    EFFECT_PROCESSED = "effectProcessed"
    ACHIEVEMENT_UNLOCKED = "achievementUnlocked"
    LEVEL_UP = "levelUp"
    CRITICAL_HEALTH = "criticalHealth"
    PLAYER_DEATH = "playerDeath"
    GAME_SAVED = "gameSaved"
    GAME_PAUSED = "gamePaused"
    GAME_RESUMED = "gameResumed"
    GAME_ENDED = "gameEnded"

    # Lifecycle
    GAME_STARTED = "gameStarted"
    GAME_LOADED = "gameLoaded"
    SETTINGS_UPDATED = "settingsUpdated"
    PROGRESS_UPDATED = "progressUpdated"

    # Effects
    EFFECTS_PROCESSED = "effectsProcessed"
    GAME_EVENT = "gameEvent"
    TELEPORT = "teleport"
    TIMED_EFFECT_EXPIRED = "timedEffectExpired"

    # Inventory and characters
    INVENTORY_CHANGED = "inventoryChanged"
    INVENTORY_FULL = "inventoryFull"
    ITEM_USED = "itemUsed"
    RELATIONSHIP_CHANGED = "relationshipChanged"
    CHARACTER_INTERACTION = "characterInteraction"

    # Failures
    ERROR = "error"


Handler = Callable[["EventRecord"], Any]


@dataclass
class EventRecord:
    """A single published event."""
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class EventBus:
    """
    Publish/subscribe channel shared by all engine subsystems.

    Usage:
        bus = EventBus()
        bus.subscribe(GameEvent.LEVEL_UP, on_level_up)
        bus.subscribe_all(forward_to_ui)
        bus.emit(GameEvent.LEVEL_UP, new_level=3)
    """

    WILDCARD = "*"

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: GameEvent | str, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        name = _event_name(event)
        self._handlers[name].append(handler)
        return lambda: self.unsubscribe(name, handler)

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for every event."""
        return self.subscribe(self.WILDCARD, handler)

    def unsubscribe(self, event: GameEvent | str, handler: Handler) -> bool:
        name = _event_name(event)
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event: GameEvent | str, **payload: Any) -> EventRecord:
        """Deliver an event to its subscribers, then to wildcard subscribers."""
        record = EventRecord(name=_event_name(event), payload=payload)
        targets = list(self._handlers.get(record.name, []))
        targets.extend(self._handlers.get(self.WILDCARD, []))

        for handler in targets:
            try:
                handler(record)
            except Exception as e:
                logger.error(f"Event handler for '{record.name}' failed: {e}")
        return record

    def clear(self):
        """Detach every subscriber."""
        self._handlers.clear()

    def subscriber_count(self, event: GameEvent | str | None = None) -> int:
        if event is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(_event_name(event), []))


def _event_name(event: GameEvent | str) -> str:
    return event.value if isinstance(event, GameEvent) else str(event)
