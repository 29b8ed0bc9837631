"""
Game State - The mutable data model for one play-through.

Design principles:
- Owned by the GameEngine; mutated only by the EffectProcessor and the
  inventory/character managers
- Serializable: round-trips through a camelCase JSON document
- Typed flags: flag values are validated when written
"""

from __future__ import annotations
from collections.abc import MutableMapping
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator
import uuid

from .errors import ValidationError

STATE_VERSION = "1.0.0"

RELATIONSHIP_MIN = -100
RELATIONSHIP_MAX = 100

FlagValue = bool | int | float | str


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_relationship(value: int) -> int:
    return int(clamp(value, RELATIONSHIP_MIN, RELATIONSHIP_MAX))


def check_flag_value(key: str, value: Any) -> FlagValue:
    """Validate a flag value, returning it unchanged."""
    if not isinstance(key, str) or not key:
        raise ValidationError(f"Flag key must be a non-empty string, got {key!r}")
    if not isinstance(value, (bool, int, float, str)):
        raise ValidationError(
            f"Flag '{key}' must be bool, number or string, got {type(value).__name__}"
        )
    return value


class FlagMap(MutableMapping):
    """
    String-keyed map of typed flag values (bool, int, float, str).

    Writes are validated; anything else raises ValidationError.
    """

    def __init__(self, initial: dict[str, FlagValue] | None = None):
        self._values: dict[str, FlagValue] = {}
        for key, value in (initial or {}).items():
            self[key] = value

    def __getitem__(self, key: str) -> FlagValue:
        return self._values[key]

    def __setitem__(self, key: str, value: FlagValue):
        self._values[key] = check_flag_value(key, value)

    def __delitem__(self, key: str):
        del self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"FlagMap({self._values!r})"

    def is_set(self, key: str) -> bool:
        """True when the flag exists and is not False."""
        return key in self._values and self._values[key] is not False

    def to_dict(self) -> dict[str, FlagValue]:
        return dict(self._values)


@dataclass
class InventoryItem:
    """An item held by the player (or equipped in a slot)."""
    id: str
    name: str
    type: str = "misc"
    rarity: str = "common"
    value: int = 0
    quantity: int = 1
    stackable: bool = False
    max_stack: int | None = None
    description: str = ""
    properties: dict[str, Any] = field(default_factory=dict)

    def copy(self, quantity: int | None = None) -> InventoryItem:
        item = deepcopy(self)
        if quantity is not None:
            item.quantity = quantity
        return item

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "rarity": self.rarity,
            "value": self.value,
            "quantity": self.quantity,
            "stackable": self.stackable,
            "description": self.description,
            "properties": deepcopy(self.properties),
        }
        if self.max_stack is not None:
            data["maxStack"] = self.max_stack
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventoryItem:
        if not data.get("id"):
            raise ValidationError(f"Item is missing an id: {data!r}")
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            type=data.get("type", "misc"),
            rarity=data.get("rarity", "common"),
            value=int(data.get("value", 0) or 0),
            quantity=int(data.get("quantity", 1) or 1),
            stackable=bool(data.get("stackable", False)),
            max_stack=data.get("maxStack", data.get("max_stack")),
            description=data.get("description", ""),
            properties=deepcopy(data.get("properties") or {}),
        )


@dataclass
class PlayerState:
    """Player stats, attributes and equipped items."""
    name: str = "Player"
    level: int = 1
    health: int = 100
    max_health: int = 100
    mana: int = 50
    max_mana: int = 50
    experience: int = 0
    gold: int = 0
    attributes: dict[str, int] = field(default_factory=lambda: {
        "strength": 10,
        "intelligence": 10,
        "dexterity": 10,
        "charisma": 10,
        "luck": 10,
    })
    equipment: dict[str, InventoryItem] = field(default_factory=dict)
    inventory_capacity: int = 50

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "level": self.level,
            "health": self.health,
            "maxHealth": self.max_health,
            "mana": self.mana,
            "maxMana": self.max_mana,
            "experience": self.experience,
            "gold": self.gold,
            "attributes": dict(self.attributes),
            "equipment": {slot: item.to_dict() for slot, item in self.equipment.items()},
            "inventoryCapacity": self.inventory_capacity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlayerState:
        player = cls()
        player.name = data.get("name", player.name)
        player.level = int(data.get("level", player.level))
        player.max_health = int(data.get("maxHealth", player.max_health))
        player.health = int(data.get("health", player.max_health))
        player.max_mana = int(data.get("maxMana", player.max_mana))
        player.mana = int(data.get("mana", player.max_mana))
        player.experience = int(data.get("experience", 0))
        player.gold = int(data.get("gold", 0))
        if "attributes" in data:
            player.attributes = {k: int(v) for k, v in data["attributes"].items()}
        player.equipment = {
            slot: InventoryItem.from_dict(item)
            for slot, item in (data.get("equipment") or {}).items()
        }
        player.inventory_capacity = int(data.get("inventoryCapacity", player.inventory_capacity))
        return player


@dataclass
class ChoiceRecord:
    """A choice the player made, for history conditions and saves."""
    choice_id: str
    scene_id: str
    text: str = ""
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "choiceId": self.choice_id,
            "sceneId": self.scene_id,
            "text": self.text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChoiceRecord:
        return cls(
            choice_id=data["choiceId"],
            scene_id=data.get("sceneId", ""),
            text=data.get("text", ""),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class Progress:
    scenes_visited: list[str] = field(default_factory=list)
    choices_made: list[ChoiceRecord] = field(default_factory=list)
    achievements_unlocked: list[str] = field(default_factory=list)
    playtime: int = 0  # seconds
    story_progress: int = 0  # percent
    last_saved: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenesVisited": list(self.scenes_visited),
            "choicesMade": [c.to_dict() for c in self.choices_made],
            "achievementsUnlocked": list(self.achievements_unlocked),
            "playtime": self.playtime,
            "storyProgress": self.story_progress,
            "lastSaved": self.last_saved,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Progress:
        return cls(
            scenes_visited=list(data.get("scenesVisited", [])),
            choices_made=[ChoiceRecord.from_dict(c) for c in data.get("choicesMade", [])],
            achievements_unlocked=list(data.get("achievementsUnlocked", [])),
            playtime=int(data.get("playtime", 0)),
            story_progress=int(data.get("storyProgress", 0)),
            last_saved=data.get("lastSaved"),
        )


@dataclass
class Settings:
    autosave: bool = True
    autosave_interval: float = 30.0  # seconds
    text_speed: str = "medium"
    sound_enabled: bool = True
    music_enabled: bool = True
    difficulty: str = "normal"

    def to_dict(self) -> dict[str, Any]:
        return {
            "autosave": self.autosave,
            "autosaveInterval": self.autosave_interval,
            "textSpeed": self.text_speed,
            "soundEnabled": self.sound_enabled,
            "musicEnabled": self.music_enabled,
            "difficulty": self.difficulty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        defaults = cls()
        return cls(
            autosave=bool(data.get("autosave", defaults.autosave)),
            autosave_interval=float(data.get("autosaveInterval", defaults.autosave_interval)),
            text_speed=data.get("textSpeed", defaults.text_speed),
            sound_enabled=bool(data.get("soundEnabled", defaults.sound_enabled)),
            music_enabled=bool(data.get("musicEnabled", defaults.music_enabled)),
            difficulty=data.get("difficulty", defaults.difficulty),
        )


@dataclass
class TimedEffect:
    """
    A curse or blessing with a start time and duration.

    Times are seconds on the engine clock.
    """
    kind: str  # "curse" or "blessing"
    type: str
    start_time: float
    duration: float
    effects: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.kind}_{self.type}"

    def expires_at(self) -> float:
        return self.start_time + self.duration

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "type": self.type,
            "startTime": self.start_time,
            "duration": self.duration,
            "effects": deepcopy(self.effects),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimedEffect:
        return cls(
            kind=data["kind"],
            type=data["type"],
            start_time=float(data["startTime"]),
            duration=float(data["duration"]),
            effects=deepcopy(data.get("effects") or {}),
        )


@dataclass
class StateMetadata:
    created_at: str = field(default_factory=utc_now_iso)
    last_modified: str = field(default_factory=utc_now_iso)
    version: str = STATE_VERSION

    def touch(self):
        self.last_modified = utc_now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateMetadata:
        return cls(
            created_at=data.get("createdAt") or utc_now_iso(),
            last_modified=data.get("lastModified") or utc_now_iso(),
            version=data.get("version", STATE_VERSION),
        )


@dataclass
class GameState:
    """
    Complete state of one play-through.

    This is the canonical state that the engine operates on.
    """
    id: str
    story_id: str
    current_scene_id: str

    player: PlayerState = field(default_factory=PlayerState)
    inventory: list[InventoryItem] = field(default_factory=list)
    flags: FlagMap = field(default_factory=FlagMap)
    relationships: dict[str, int] = field(default_factory=dict)
    progress: Progress = field(default_factory=Progress)
    settings: Settings = field(default_factory=Settings)
    timed_effects: dict[str, TimedEffect] = field(default_factory=dict)
    metadata: StateMetadata = field(default_factory=StateMetadata)

    def get_relationship(self, character_id: str) -> int:
        return self.relationships.get(character_id, 0)

    def find_item(self, item_id: str) -> InventoryItem | None:
        for item in self.inventory:
            if item.id == item_id:
                return item
        return None

    def item_quantity(self, id_or_name: str) -> int:
        """Total quantity of items matching an id or a name."""
        return sum(
            item.quantity for item in self.inventory
            if item.id == id_or_name or item.name == id_or_name
        )

    def has_visited(self, scene_id: str) -> bool:
        return scene_id in self.progress.scenes_visited

    def has_made_choice(self, choice_id: str) -> bool:
        return any(c.choice_id == choice_id for c in self.progress.choices_made)

    def clone(self) -> GameState:
        """Deep copy the state."""
        return deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "storyId": self.story_id,
            "currentSceneId": self.current_scene_id,
            "player": self.player.to_dict(),
            "inventory": [item.to_dict() for item in self.inventory],
            "flags": self.flags.to_dict(),
            "relationships": dict(self.relationships),
            "progress": self.progress.to_dict(),
            "settings": self.settings.to_dict(),
            "timedEffects": {k: t.to_dict() for k, t in self.timed_effects.items()},
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GameState:
        """
        Build a state from its persisted document.

        Raises ValidationError when required fields are missing.
        """
        missing = [k for k in ("id", "storyId", "currentSceneId", "player") if not data.get(k)]
        if missing:
            raise ValidationError(f"Invalid game state, missing: {', '.join(missing)}")
        if not isinstance(data.get("inventory", []), list):
            raise ValidationError("Invalid game state, inventory must be a list")

        return cls(
            id=data["id"],
            story_id=data["storyId"],
            current_scene_id=data["currentSceneId"],
            player=PlayerState.from_dict(data["player"]),
            inventory=[InventoryItem.from_dict(i) for i in data.get("inventory", [])],
            flags=FlagMap(data.get("flags") or {}),
            relationships={
                k: clamp_relationship(int(v))
                for k, v in (data.get("relationships") or {}).items()
            },
            progress=Progress.from_dict(data.get("progress") or {}),
            settings=Settings.from_dict(data.get("settings") or {}),
            timed_effects={
                k: TimedEffect.from_dict(t)
                for k, t in (data.get("timedEffects") or {}).items()
            },
            metadata=StateMetadata.from_dict(data.get("metadata") or {}),
        )


def new_game_state(
    story_id: str,
    starting_scene_id: str,
    player_name: str = "Player",
    settings: Settings | None = None,
    state_id: str | None = None,
) -> GameState:
    """Create a fresh state positioned at the story's starting scene."""
    return GameState(
        id=state_id or str(uuid.uuid4()),
        story_id=story_id,
        current_scene_id=starting_scene_id,
        player=PlayerState(name=player_name),
        progress=Progress(scenes_visited=[starting_scene_id]),
        settings=settings or Settings(),
    )
