"""
Effect bundles - Declarative descriptions of state mutations.

An Effect may carry any combination of:
- Stat deltas: health, mana, gold, experience
- Attribute deltas (strength, charisma, ...)
- Flag assignments
- Inventory additions and removals
- Relationship deltas
- Audio cues
- Tagged custom effects (teleport, transform, summon, curse, blessing)
- Named game events to broadcast

Bundles are parsed from authored JSON (camelCase keys) and applied by the
EffectProcessor in a fixed order.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import uuid

from ..engine_core.errors import ValidationError
from ..engine_core.state import FlagValue, InventoryItem, check_flag_value

CUSTOM_EFFECT_TYPES = ("teleport", "transform", "summon", "curse", "blessing")

_KEY_ALIASES = {
    "stats": "attributes",
    "addItems": "add_items",
    "removeItems": "remove_items",
}

_KNOWN_KEYS = {
    "health", "mana", "gold", "experience", "attributes", "flags",
    "add_items", "remove_items", "relationships", "sound", "music",
    "custom", "events",
}


@dataclass
class CustomEffect:
    """
    A tagged custom effect.

    Examples:
    - CustomEffect("teleport", {"targetScene": "crypt"})
    - CustomEffect("curse", {"curseType": "frailty", "duration": 600})
    """
    type: str
    params: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.params}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomEffect:
        if not isinstance(data, dict) or not data.get("type"):
            raise ValidationError(f"Custom effect needs a 'type': {data!r}")
        params = {k: v for k, v in data.items() if k != "type"}
        return cls(type=str(data["type"]), params=params)


@dataclass
class ItemRemoval:
    item_id: str
    quantity: int = 1
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.item_id, "quantity": self.quantity}
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class AudioCue:
    """A sound or music cue; `file` is the asset name."""
    file: str
    volume: float | None = None
    loop: bool = False

    @classmethod
    def parse(cls, value: Any) -> AudioCue:
        if isinstance(value, str):
            return cls(file=value)
        if isinstance(value, dict) and value.get("file"):
            return cls(
                file=value["file"],
                volume=value.get("volume"),
                loop=bool(value.get("loop", False)),
            )
        raise ValidationError(f"Invalid audio cue: {value!r}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"file": self.file}
        if self.volume is not None:
            data["volume"] = self.volume
        if self.loop:
            data["loop"] = True
        return data


@dataclass
class Effect:
    """A bundle of state mutations applied together."""
    health: int | None = None
    mana: int | None = None
    gold: int | None = None
    experience: int | None = None
    attributes: dict[str, int] = field(default_factory=dict)
    flags: dict[str, FlagValue] = field(default_factory=dict)
    add_items: list[InventoryItem] = field(default_factory=list)
    remove_items: list[ItemRemoval] = field(default_factory=list)
    relationships: dict[str, int] = field(default_factory=dict)
    sound: AudioCue | None = None
    music: AudioCue | None = None
    custom: list[CustomEffect] = field(default_factory=list)
    events: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any([
            self.health is not None,
            self.mana is not None,
            self.gold is not None,
            self.experience is not None,
            self.attributes,
            self.flags,
            self.add_items,
            self.remove_items,
            self.relationships,
            self.sound,
            self.music,
            self.custom,
            self.events,
        ])

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Effect:
        """
        Parse an authored effect bundle.

        Raises ValidationError for unknown keys or malformed values.
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError(f"Effect must be an object, got {type(data).__name__}")

        normalized = {_KEY_ALIASES.get(k, k): v for k, v in data.items()}
        unknown = set(normalized) - _KNOWN_KEYS
        if unknown:
            raise ValidationError(f"Unknown effect keys: {', '.join(sorted(unknown))}")

        effect = cls()
        for stat in ("health", "mana", "gold", "experience"):
            if normalized.get(stat) is not None:
                setattr(effect, stat, _as_int(stat, normalized[stat]))

        effect.attributes = {
            k: _as_int(f"attributes.{k}", v)
            for k, v in (normalized.get("attributes") or {}).items()
        }
        effect.flags = {
            k: check_flag_value(k, v) for k, v in (normalized.get("flags") or {}).items()
        }
        effect.add_items = [_parse_added_item(i) for i in normalized.get("add_items") or []]
        effect.remove_items = [_parse_removal(i) for i in normalized.get("remove_items") or []]
        effect.relationships = {
            k: _as_int(f"relationships.{k}", v)
            for k, v in (normalized.get("relationships") or {}).items()
        }
        if normalized.get("sound"):
            effect.sound = AudioCue.parse(normalized["sound"])
        if normalized.get("music"):
            effect.music = AudioCue.parse(normalized["music"])
        effect.custom = [CustomEffect.from_dict(c) for c in normalized.get("custom") or []]
        effect.events = [str(e) for e in normalized.get("events") or []]
        return effect

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for stat in ("health", "mana", "gold", "experience"):
            value = getattr(self, stat)
            if value is not None:
                data[stat] = value
        if self.attributes:
            data["attributes"] = dict(self.attributes)
        if self.flags:
            data["flags"] = dict(self.flags)
        if self.add_items:
            data["addItems"] = [i.to_dict() for i in self.add_items]
        if self.remove_items:
            data["removeItems"] = [r.to_dict() for r in self.remove_items]
        if self.relationships:
            data["relationships"] = dict(self.relationships)
        if self.sound:
            data["sound"] = self.sound.to_dict()
        if self.music:
            data["music"] = self.music.to_dict()
        if self.custom:
            data["custom"] = [c.to_dict() for c in self.custom]
        if self.events:
            data["events"] = list(self.events)
        return data


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Effect value '{name}' must be a number, got bool")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Effect value '{name}' must be a number, got {value!r}")


def _parse_added_item(data: Any) -> InventoryItem:
    if not isinstance(data, dict):
        raise ValidationError(f"Item to add must be an object: {data!r}")
    if not data.get("id"):
        if not data.get("name"):
            raise ValidationError(f"Item to add needs an id or a name: {data!r}")
        data = {**data, "id": f"item_{uuid.uuid4().hex[:8]}"}
    return InventoryItem.from_dict(data)


def _parse_removal(data: Any) -> ItemRemoval:
    if isinstance(data, str):
        return ItemRemoval(item_id=data)
    if isinstance(data, dict) and data.get("id"):
        return ItemRemoval(
            item_id=str(data["id"]),
            quantity=_as_int("removeItems.quantity", data.get("quantity", 1)),
            name=data.get("name"),
        )
    raise ValidationError(f"Item to remove needs an id: {data!r}")
