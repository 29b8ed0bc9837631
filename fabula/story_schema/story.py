"""
Story definitions - Scenes, choices, characters and achievements.

These are the read-only content records a story is authored in. They are
parsed from camelCase JSON and handed to the engine by a content source.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..engine_core.errors import ValidationError
from ..engine_core.state import FlagValue
from .effects import Effect


class ChoiceType(Enum):
    PLAIN = "plain"
    CONDITIONAL = "conditional"
    TIMED = "timed"


# Requirement type -> builder for the equivalent condition leaf
_REQUIREMENT_LEAVES = {
    "level": lambda r: {"playerLevel": r.value},
    "health": lambda r: {"playerHealth": r.value},
    "mana": lambda r: {"playerMana": r.value},
    "gold": lambda r: {"playerGold": r.value},
    "experience": lambda r: {"playerExperience": r.value},
    "stat": lambda r: {"playerStat": r.key, "value": r.value},
    "item": lambda r: {"itemCount": r.value if r.value is not None else 1, "itemCountId": r.key},
    "flag": lambda r: {"flag": r.key, "flagValue": r.value if r.value is not None else True},
    "relationship": lambda r: {"relationship": r.key, "relationshipValue": r.value},
    "achievement": lambda r: {"hasAchievement": r.key},
    "visited": lambda r: {"visitedScene": r.key},
}


@dataclass
class Requirement:
    """
    A structured, human-readable reason a choice may be ineligible.

    Examples:
    - Requirement("level", value=3, error_message="You must be level 3")
    - Requirement("item", key="iron_key", error_message="The door is locked")
    """
    type: str
    key: str | None = None
    operator: str | None = None
    value: Any = None
    error_message: str = ""

    def to_condition(self) -> dict[str, Any]:
        builder = _REQUIREMENT_LEAVES.get(self.type)
        if builder is None:
            raise ValidationError(f"Unknown requirement type '{self.type}'")
        condition = builder(self)
        if self.operator:
            condition["op"] = self.operator
        return condition

    def describe(self) -> str:
        if self.error_message:
            return self.error_message
        parts = [self.type, self.key, self.value]
        return "Requires " + " ".join(str(p) for p in parts if p not in (None, ""))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.key is not None:
            data["key"] = self.key
        if self.operator:
            data["operator"] = self.operator
        if self.value is not None:
            data["value"] = self.value
        if self.error_message:
            data["errorMessage"] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Requirement:
        if not isinstance(data, dict) or not data.get("type"):
            raise ValidationError(f"Requirement needs a 'type': {data!r}")
        return cls(
            type=data["type"],
            key=data.get("key"),
            operator=data.get("operator"),
            value=data.get("value"),
            error_message=data.get("errorMessage", data.get("error_message", "")),
        )


@dataclass
class Choice:
    """A player-selectable transition between scenes."""
    id: str
    text: str
    target_scene_id: str | None = None  # None ends the story
    conditions: dict[str, Any] | None = None
    effects: Effect = field(default_factory=Effect)
    requirements: list[Requirement] = field(default_factory=list)
    type: ChoiceType = ChoiceType.PLAIN
    is_available: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ends_story(self) -> bool:
        return not self.target_scene_id

    @property
    def time_limit(self) -> float:
        return float(self.metadata.get("timeLimit", self.metadata.get("time_limit", 30)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "targetSceneId": self.target_scene_id,
            "conditions": self.conditions,
            "effects": self.effects.to_dict(),
            "requirements": [r.to_dict() for r in self.requirements],
            "type": self.type.value,
            "isAvailable": self.is_available,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Choice:
        _require(data, "id", "choice")
        try:
            choice_type = ChoiceType(data.get("type", "plain"))
        except ValueError:
            raise ValidationError(f"Choice '{data['id']}' has unknown type '{data.get('type')}'")
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            target_scene_id=data.get("targetSceneId", data.get("target_scene_id")),
            conditions=data.get("conditions") or None,
            effects=Effect.from_dict(data.get("effects")),
            requirements=[Requirement.from_dict(r) for r in data.get("requirements") or []],
            type=choice_type,
            is_available=bool(data.get("isAvailable", data.get("is_available", True))),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Scene:
    """A narrative content unit with gating conditions and a choice list."""
    id: str
    title: str = ""
    content: str = ""
    conditions: dict[str, Any] | None = None
    effects: Effect = field(default_factory=Effect)
    choice_ids: list[str] = field(default_factory=list)
    character_ids: list[str] = field(default_factory=list)
    background_music: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    # Parsed from metadata.timeEffects; delay in seconds
    time_effects: Effect | None = None
    time_effects_delay: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "conditions": self.conditions,
            "effects": self.effects.to_dict(),
            "choiceIds": list(self.choice_ids),
            "characterIds": list(self.character_ids),
            "backgroundMusic": self.background_music,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scene:
        _require(data, "id", "scene")
        metadata = dict(data.get("metadata") or {})
        time_effects, delay = _parse_time_effects(metadata.get("timeEffects"), data["id"])
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            conditions=data.get("conditions") or None,
            effects=Effect.from_dict(data.get("effects")),
            choice_ids=list(data.get("choiceIds", data.get("choices", [])) or []),
            character_ids=list(data.get("characterIds", data.get("characters", [])) or []),
            background_music=data.get("backgroundMusic"),
            metadata=metadata,
            time_effects=time_effects,
            time_effects_delay=delay,
        )


@dataclass
class Achievement:
    id: str
    name: str
    description: str = ""
    conditions: dict[str, Any] | None = None
    points: int = 0
    sound: str = "achievement-unlock"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "conditions": self.conditions,
            "points": self.points,
            "sound": self.sound,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Achievement:
        _require(data, "id", "achievement")
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            conditions=data.get("conditions") or None,
            points=int(data.get("points", 0)),
            sound=data.get("sound", "achievement-unlock"),
        )


@dataclass
class DialogueLine:
    """
    One line a character may say.

    Lines are filtered by `min_relationship` and `required_flags`, then the
    highest priority line closest to `optimal_relationship` is chosen.
    """
    text: str
    responses: list[str] = field(default_factory=list)
    min_relationship: int | None = None
    required_flags: dict[str, FlagValue] = field(default_factory=dict)
    priority: int = 0
    optimal_relationship: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DialogueLine:
        return cls(
            text=data.get("text", ""),
            responses=list(data.get("responses") or []),
            min_relationship=data.get("minRelationship"),
            required_flags=dict(data.get("requiredFlags") or {}),
            priority=int(data.get("priority", 0)),
            optimal_relationship=int(data.get("optimalRelationship", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "responses": list(self.responses),
            "minRelationship": self.min_relationship,
            "requiredFlags": dict(self.required_flags),
            "priority": self.priority,
            "optimalRelationship": self.optimal_relationship,
        }


@dataclass
class Quest:
    id: str
    description: str
    prerequisites: list[str] = field(default_factory=list)  # flag keys
    required_relationship: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Quest:
        _require(data, "id", "quest")
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            prerequisites=list(data.get("prerequisites") or []),
            required_relationship=int(data.get("requiredRelationship", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "prerequisites": list(self.prerequisites),
            "requiredRelationship": self.required_relationship,
        }


@dataclass
class Character:
    """A non-player character met in one or more scenes."""
    id: str
    name: str
    description: str = ""
    traits: list[str] = field(default_factory=list)
    preferences: dict[str, Any] = field(default_factory=dict)
    dialogue: list[DialogueLine] = field(default_factory=list)
    trade_items: list[dict[str, Any]] = field(default_factory=list)
    quests: list[Quest] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "traits": list(self.traits),
            "preferences": dict(self.preferences),
            "dialogue": [d.to_dict() for d in self.dialogue],
            "tradeItems": list(self.trade_items),
            "quests": [q.to_dict() for q in self.quests],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Character:
        _require(data, "id", "character")
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            traits=list(data.get("traits") or []),
            preferences=dict(data.get("preferences") or {}),
            dialogue=[DialogueLine.from_dict(d) for d in data.get("dialogue") or []],
            trade_items=list(data.get("tradeItems") or []),
            quests=[Quest.from_dict(q) for q in data.get("quests") or []],
        )


@dataclass
class Story:
    """
    A complete authored story.

    Scenes, choices and characters are keyed by id; scene order follows
    the authored document.
    """
    id: str
    title: str
    starting_scene_id: str
    scenes: dict[str, Scene] = field(default_factory=dict)
    choices: dict[str, Choice] = field(default_factory=dict)
    characters: dict[str, Character] = field(default_factory=dict)
    achievements: list[Achievement] = field(default_factory=list)
    description: str = ""
    version: str = "1.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "version": self.version,
            "startingSceneId": self.starting_scene_id,
            "scenes": [s.to_dict() for s in self.scenes.values()],
            "choices": [c.to_dict() for c in self.choices.values()],
            "characters": [c.to_dict() for c in self.characters.values()],
            "achievements": [a.to_dict() for a in self.achievements],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Story:
        """
        Parse a story document.

        Raises ValidationError on malformed records. Cross-references are
        checked separately by validate_story.
        """
        if not isinstance(data, dict):
            raise ValidationError("Story document must be an object")
        _require(data, "id", "story")
        scenes = [Scene.from_dict(s) for s in data.get("scenes") or []]
        if not scenes:
            raise ValidationError(f"Story '{data['id']}' has no scenes")

        starting = data.get("startingSceneId") or scenes[0].id
        return cls(
            id=data["id"],
            title=data.get("title", data["id"]),
            description=data.get("description", ""),
            version=str(data.get("version", "1.0")),
            starting_scene_id=starting,
            scenes=_index(scenes, "scene"),
            choices=_index([Choice.from_dict(c) for c in data.get("choices") or []], "choice"),
            characters=_index(
                [Character.from_dict(c) for c in data.get("characters") or []], "character"
            ),
            achievements=[Achievement.from_dict(a) for a in data.get("achievements") or []],
        )


def _require(data: Any, key: str, kind: str):
    if not isinstance(data, dict) or not data.get(key):
        raise ValidationError(f"Invalid {kind}: missing '{key}' in {data!r}")


def _parse_time_effects(data: Any, scene_id: str) -> tuple[Effect | None, float]:
    """Split metadata.timeEffects into an effect bundle and its delay (authored in ms)."""
    if not data:
        return None, 0.0
    if not isinstance(data, dict):
        raise ValidationError(f"Scene {scene_id}: timeEffects must be an object")
    bundle = {k: v for k, v in data.items() if k != "delay"}
    try:
        delay = float(data.get("delay") or 0) / 1000
    except (TypeError, ValueError):
        raise ValidationError(f"Scene {scene_id}: invalid timeEffects delay {data.get('delay')!r}") from None
    if delay < 0:
        raise ValidationError(f"Scene {scene_id}: timeEffects delay must not be negative")
    return Effect.from_dict(bundle), delay


def _index(records: list, kind: str) -> dict:
    indexed = {}
    for record in records:
        if record.id in indexed:
            raise ValidationError(f"Duplicate {kind} id '{record.id}'")
        indexed[record.id] = record
    return indexed
