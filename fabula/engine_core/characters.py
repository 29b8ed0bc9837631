"""
Character Manager - NPC interactions gated by relationship and flags.

Interaction kinds:
- talk: best matching dialogue line
- trade: trade goods with a relationship-based price modifier
- quest: first quest not yet active or completed
- gift: at most once per 24 hours of engine clock per character
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable
import logging
import time

from .errors import ValidationError
from .events import EventBus, GameEvent
from .state import GameState, clamp, clamp_relationship
from ..story_schema.story import Character, DialogueLine, Quest

logger = logging.getLogger(__name__)

GIFT_COOLDOWN = 24 * 60 * 60  # seconds

TRADE_REFUSAL_THRESHOLD = -50


class InteractionKind(Enum):
    TALK = "talk"
    TRADE = "trade"
    QUEST = "quest"
    GIFT = "gift"


@dataclass
class CharacterState:
    """Per-character runtime state, kept for the current session."""
    mood: str = "neutral"
    last_interaction: str | None = None
    last_gift_at: float | None = None


@dataclass
class CharacterInteraction:
    """Result of one interaction with a character."""
    kind: InteractionKind
    success: bool
    message: str
    character_id: str
    options: list[str] = field(default_factory=list)
    trade_items: list[dict[str, Any]] = field(default_factory=list)
    quest: Quest | None = None
    preferences: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "success": self.success,
            "message": self.message,
            "characterId": self.character_id,
            "options": list(self.options),
            "tradeItems": list(self.trade_items),
            "quest": self.quest.to_dict() if self.quest else None,
            "preferences": dict(self.preferences),
            "metadata": dict(self.metadata),
        }


class CharacterManager:
    """Tracks the characters of the current scene and resolves interactions."""

    def __init__(self, bus: EventBus | None = None, now: Callable[[], float] | None = None):
        self.bus = bus or EventBus()
        self._now = now or time.time
        self._characters: dict[str, Character] = {}
        self._states: dict[str, CharacterState] = {}

    def load_scene_characters(self, characters: list[Character]) -> list[Character]:
        """Register the characters present in the scene being entered."""
        self._characters = {c.id: c for c in characters}
        for character in characters:
            self._states.setdefault(character.id, CharacterState())
        return characters

    @property
    def loaded(self) -> list[Character]:
        return list(self._characters.values())

    def get_state(self, character_id: str) -> CharacterState | None:
        return self._states.get(character_id)

    def interact(self, state: GameState, character_id: str, kind: str | InteractionKind) -> CharacterInteraction:
        """
        Interact with a character in the current scene.

        Raises ValidationError for an unknown character or interaction kind.
        """
        character = self._characters.get(character_id)
        if character is None:
            raise ValidationError(f"Character not present: {character_id}")
        try:
            kind = InteractionKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown interaction type: {kind}")

        char_state = self._states.setdefault(character_id, CharacterState())
        relationship = state.get_relationship(character_id)

        handlers: dict[InteractionKind, Callable] = {
            InteractionKind.TALK: self._talk,
            InteractionKind.TRADE: self._trade,
            InteractionKind.QUEST: self._quest,
            InteractionKind.GIFT: self._gift,
        }
        interaction = handlers[kind](character, char_state, relationship, state)

        char_state.mood = self.mood(character, relationship, kind)
        char_state.last_interaction = kind.value
        interaction.metadata.setdefault("mood", char_state.mood)

        self.bus.emit(
            GameEvent.CHARACTER_INTERACTION,
            character_id=character_id,
            kind=kind.value,
            success=interaction.success,
        )
        return interaction

    def _talk(self, character: Character, char_state: CharacterState, relationship: int, state: GameState) -> CharacterInteraction:
        lines = self.available_dialogue(character, relationship, state)
        if not lines:
            return CharacterInteraction(
                InteractionKind.TALK, False, f"{character.name} has nothing to say.", character.id
            )
        line = _best_line(lines, relationship)
        return CharacterInteraction(
            InteractionKind.TALK,
            True,
            line.text,
            character.id,
            options=list(line.responses),
            metadata={"relationship": relationship},
        )

    def _trade(self, character: Character, char_state: CharacterState, relationship: int, state: GameState) -> CharacterInteraction:
        if not character.trade_items or relationship < TRADE_REFUSAL_THRESHOLD:
            return CharacterInteraction(
                InteractionKind.TRADE, False, f"{character.name} does not want to trade.", character.id
            )
        return CharacterInteraction(
            InteractionKind.TRADE,
            True,
            f"{character.name} shows their wares.",
            character.id,
            trade_items=list(character.trade_items),
            metadata={
                "relationship": relationship,
                "priceModifier": price_modifier(relationship),
            },
        )

    def _quest(self, character: Character, char_state: CharacterState, relationship: int, state: GameState) -> CharacterInteraction:
        quests = self.available_quests(character, relationship, state)
        if not quests:
            return CharacterInteraction(
                InteractionKind.QUEST, False, f"{character.name} has no tasks for you.", character.id
            )
        quest = quests[0]
        return CharacterInteraction(
            InteractionKind.QUEST,
            True,
            quest.description,
            character.id,
            quest=quest,
            metadata={"questId": quest.id, "requiredRelationship": quest.required_relationship},
        )

    def _gift(self, character: Character, char_state: CharacterState, relationship: int, state: GameState) -> CharacterInteraction:
        now = self._now()
        last = char_state.last_gift_at
        if last is not None and now - last < GIFT_COOLDOWN:
            return CharacterInteraction(
                InteractionKind.GIFT,
                False,
                f"{character.name} does not want any more gifts today.",
                character.id,
                metadata={"lastGift": last},
            )
        char_state.last_gift_at = now
        return CharacterInteraction(
            InteractionKind.GIFT,
            True,
            f"{character.name} is delighted by gifts.",
            character.id,
            preferences=dict(character.preferences),
            metadata={"relationship": relationship, "lastGift": last},
        )

    def available_dialogue(self, character: Character, relationship: int, state: GameState) -> list[DialogueLine]:
        lines = []
        for line in character.dialogue:
            if line.min_relationship is not None and relationship < line.min_relationship:
                continue
            if any(
                state.flags.get(flag) != value or isinstance(state.flags.get(flag), bool) != isinstance(value, bool)
                for flag, value in line.required_flags.items()
            ):
                continue
            lines.append(line)
        return lines

    def available_quests(self, character: Character, relationship: int, state: GameState) -> list[Quest]:
        quests = []
        for quest in character.quests:
            if state.flags.is_set(f"quest_{quest.id}_completed"):
                continue
            if state.flags.is_set(f"quest_{quest.id}_active"):
                continue
            if not all(state.flags.is_set(flag) for flag in quest.prerequisites):
                continue
            if relationship < quest.required_relationship:
                continue
            quests.append(quest)
        return quests

    def mood(self, character: Character, relationship: int, kind: InteractionKind) -> str:
        if relationship > 50:
            return "happy"
        if relationship < -50:
            return "angry"
        if "shy" in character.traits and kind == InteractionKind.TALK:
            return "nervous"
        if "greedy" in character.traits and kind == InteractionKind.TRADE:
            return "excited"
        return "neutral"

    def adjust_relationship(self, state: GameState, character_id: str, delta: int) -> int:
        """Apply a relationship delta, clamped to [-100, 100]. Returns the new value."""
        old = state.get_relationship(character_id)
        new = clamp_relationship(old + delta)
        state.relationships[character_id] = new
        if new != old:
            self.bus.emit(
                GameEvent.RELATIONSHIP_CHANGED,
                character_id=character_id,
                old_value=old,
                new_value=new,
                change=new - old,
            )
        return new

    def reset(self):
        self._characters.clear()
        self._states.clear()


def price_modifier(relationship: int) -> float:
    """Better relationships mean cheaper prices, within [0.5, 1.5]."""
    return clamp(1.0 - relationship / 1000, 0.5, 1.5)


def _best_line(lines: list[DialogueLine], relationship: int) -> DialogueLine:
    return sorted(
        lines,
        key=lambda line: (-line.priority, abs(line.optimal_relationship - relationship)),
    )[0]
