"""
Engine Core - Game state, condition evaluation and effect application.

The core is the runtime that:
1. Holds the GameState
2. Evaluates condition trees against it
3. Applies effect bundles in a fixed order
4. Resolves scenes, choices, items and character interactions

Processors that consume story records (effect_processor, inventory,
characters, scene_processor, choice_processor) are imported from their
own modules.
"""

from .errors import (
    FabulaError,
    ValidationError,
    UnknownConditionError,
    SceneNotFoundError,
    SceneInaccessibleError,
    ChoiceUnavailableError,
    StateError,
    PersistenceError,
    EffectError,
)
from .events import EventBus, EventRecord, GameEvent
from .state import (
    GameState,
    PlayerState,
    InventoryItem,
    FlagMap,
    Progress,
    Settings,
    TimedEffect,
    ChoiceRecord,
    new_game_state,
)
from .condition import ConditionEvaluator

__all__ = [
    "FabulaError",
    "ValidationError",
    "UnknownConditionError",
    "SceneNotFoundError",
    "SceneInaccessibleError",
    "ChoiceUnavailableError",
    "StateError",
    "PersistenceError",
    "EffectError",
    "EventBus",
    "EventRecord",
    "GameEvent",
    "GameState",
    "PlayerState",
    "InventoryItem",
    "FlagMap",
    "Progress",
    "Settings",
    "TimedEffect",
    "ChoiceRecord",
    "new_game_state",
    "ConditionEvaluator",
]
