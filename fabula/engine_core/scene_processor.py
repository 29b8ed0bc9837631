"""
Scene Processor - Resolves a scene's visibility, content and choices.

Content templating is a single, non-recursive pass over:
- {player.<field>}   player stats, name and attributes
- {flag.<name>}      current flag value
- {inventory.count.<id or name>}   total quantity held

Placeholders that cannot be resolved are left in the text as written.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import logging
import re

from .condition import ConditionEvaluator
from .errors import SceneInaccessibleError
from .state import GameState, utc_now_iso
from ..story_schema.story import Choice, Scene

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{(player|flag|inventory\.count)\.([^{}]+)\}")

REQUIREMENT_HINT = re.compile(r"\{require:([^{}]+)\}")

_PLAYER_FIELDS = {
    "name": "name",
    "level": "level",
    "health": "health",
    "maxHealth": "max_health",
    "max_health": "max_health",
    "mana": "mana",
    "maxMana": "max_mana",
    "max_mana": "max_mana",
    "experience": "experience",
    "gold": "gold",
}


@dataclass
class ProcessedChoice:
    """A choice that is visible in the current state, with rendered text."""
    choice: Choice
    text: str

    @property
    def id(self) -> str:
        return self.choice.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.choice.id,
            "text": self.text,
            "type": self.choice.type.value,
            "targetSceneId": self.choice.target_scene_id,
            "requirements": [r.describe() for r in self.choice.requirements],
        }


@dataclass
class ProcessedScene:
    """A scene ready for presentation."""
    scene: Scene
    content: str
    choices: list[ProcessedChoice] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.scene.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.scene.id,
            "title": self.scene.title,
            "content": self.content,
            "choices": [c.to_dict() for c in self.choices],
            "backgroundMusic": self.scene.background_music,
            "characterIds": list(self.scene.character_ids),
            "metadata": dict(self.metadata),
        }


class SceneProcessor:
    """Filters scene content and choices through the condition evaluator."""

    def __init__(self, evaluator: ConditionEvaluator | None = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def is_accessible(self, scene: Scene, state: GameState) -> bool:
        return self.evaluator.evaluate(scene.conditions, state)

    def process(self, scene: Scene, state: GameState, choices: list[Choice] | None = None) -> ProcessedScene:
        """
        Render a scene for the current state.

        Raises SceneInaccessibleError when the scene's conditions fail.
        `choices` are the scene's choice records in authored order.
        """
        if not self.is_accessible(scene, state):
            raise SceneInaccessibleError(scene.id)
        return self.render(scene, state, choices)

    def render(self, scene: Scene, state: GameState, choices: list[Choice] | None = None) -> ProcessedScene:
        """Render content and visible choices without the accessibility gate."""
        content = render_template(scene.content, state)
        visible = [
            ProcessedChoice(choice=choice, text=render_choice_text(choice.text, state))
            for choice in choices or []
            if self.evaluator.evaluate(choice.conditions, state)
        ]
        logger.debug(f"Scene {scene.id}: {len(visible)} of {len(choices or [])} choices visible")

        return ProcessedScene(
            scene=scene,
            content=content,
            choices=visible,
            metadata={
                **scene.metadata,
                "processedAt": utc_now_iso(),
                "availableChoices": len(visible),
                "contentLength": len(content),
            },
        )


def render_template(text: str, state: GameState) -> str:
    """Substitute placeholders in one pass; substituted values are not re-scanned."""
    if not text:
        return ""

    def replace(match: re.Match) -> str:
        namespace, key = match.group(1), match.group(2)
        value = _resolve(namespace, key, state)
        return match.group(0) if value is None else _format(value)

    return PLACEHOLDER.sub(replace, text)


def render_choice_text(text: str, state: GameState) -> str:
    hinted = REQUIREMENT_HINT.sub(lambda m: f"[Requires: {m.group(1)}]", text or "")
    return render_template(hinted, state)


def _resolve(namespace: str, key: str, state: GameState) -> Any:
    if namespace == "player":
        if key in _PLAYER_FIELDS:
            return getattr(state.player, _PLAYER_FIELDS[key])
        return state.player.attributes.get(key)
    if namespace == "flag":
        return state.flags.get(key)
    if namespace == "inventory.count":
        return state.item_quantity(key)
    return None


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
