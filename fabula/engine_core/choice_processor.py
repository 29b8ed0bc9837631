"""
Choice Processor - Validates a choice and previews its consequences.

Validation order:
1. Choice-level conditions
2. The explicit availability flag
3. Structured requirements (each unmet one is reported)
4. Type rules: conditional choices re-check metadata conditions, timed
   choices must be made within their time limit (fail closed)

Validation never mutates the GameState.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable
import logging
import time

from .condition import ConditionEvaluator
from .state import GameState, utc_now_iso
from ..story_schema.effects import Effect
from ..story_schema.story import Choice, ChoiceType

logger = logging.getLogger(__name__)

DEFAULT_TIME_LIMIT = 30.0  # seconds


@dataclass
class Consequence:
    """An anticipated effect of a choice, for display."""
    type: str
    description: str
    change: Any = None
    key: str | None = None
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = {"type": self.type, "description": self.description}
        if self.change is not None:
            data["change"] = self.change
        if self.key is not None:
            data["key"] = self.key
        if self.value is not None:
            data["value"] = self.value
        return data


@dataclass
class ChoiceResult:
    choice_id: str
    success: bool
    target_scene_id: str | None = None
    effects: Effect = field(default_factory=Effect)
    consequences: list[Consequence] = field(default_factory=list)
    error: str | None = None
    unmet_requirements: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "choiceId": self.choice_id,
            "success": self.success,
            "targetSceneId": self.target_scene_id,
            "effects": self.effects.to_dict(),
            "consequences": [c.to_dict() for c in self.consequences],
            "error": self.error,
            "unmetRequirements": list(self.unmet_requirements),
            "timestamp": self.timestamp,
        }


class ChoiceProcessor:
    """Validates choices against the current state."""

    def __init__(
        self,
        evaluator: ConditionEvaluator | None = None,
        now: Callable[[], float] | None = None,
    ):
        self.evaluator = evaluator or ConditionEvaluator()
        self._now = now or time.time

    def process(self, choice: Choice, state: GameState, started_at: float | None = None) -> ChoiceResult:
        """
        Validate a choice.

        `started_at` is when the choice was presented; timed choices fall
        back to it when their metadata carries no startTime.
        """
        error, unmet = self.validate(choice, state, started_at)
        if error:
            logger.info(f"Choice {choice.id} rejected: {error}")
            return ChoiceResult(
                choice_id=choice.id,
                success=False,
                error=error,
                unmet_requirements=unmet,
            )

        return ChoiceResult(
            choice_id=choice.id,
            success=True,
            target_scene_id=choice.target_scene_id,
            effects=choice.effects,
            consequences=self.preview(choice),
        )

    def validate(self, choice: Choice, state: GameState, started_at: float | None = None) -> tuple[str | None, list[str]]:
        """Returns (error, unmet requirement messages); error is None when valid."""
        if not self.evaluator.evaluate(choice.conditions, state):
            return "Conditions not met", []

        if not choice.is_available:
            return "Choice is not available", []

        unmet = [
            requirement.describe()
            for requirement in choice.requirements
            if not self.evaluator.evaluate(requirement.to_condition(), state)
        ]
        if unmet:
            return f"Requirements not met: {'; '.join(unmet)}", unmet

        if choice.type == ChoiceType.CONDITIONAL:
            if not self.evaluator.evaluate(choice.metadata.get("conditions"), state):
                return "Conditional requirements not met", []

        if choice.type == ChoiceType.TIMED:
            error = self._check_time_limit(choice, started_at)
            if error:
                return error, []

        return None, []

    def _check_time_limit(self, choice: Choice, started_at: float | None) -> str | None:
        start = choice.metadata.get("startTime", started_at)
        if start is None:
            return "Timed choice has no start time"
        limit = float(choice.metadata.get("timeLimit", DEFAULT_TIME_LIMIT))
        elapsed = self._now() - float(start)
        if elapsed >= limit:
            return f"Time limit of {limit:g}s exceeded"
        return None

    def preview(self, choice: Choice) -> list[Consequence]:
        """Anticipated consequences of a choice. Read-only."""
        effects = choice.effects
        consequences: list[Consequence] = []

        stat_descriptions = {
            "health": ("Health restored", "Health lost"),
            "mana": ("Mana restored", "Mana spent"),
            "gold": ("Gold gained", "Gold spent"),
            "experience": ("Experience gained", "Experience lost"),
        }
        for stat, (gain, loss) in stat_descriptions.items():
            change = getattr(effects, stat)
            if change:
                consequences.append(Consequence(stat, gain if change > 0 else loss, change=change))

        for flag, value in effects.flags.items():
            consequences.append(Consequence("flag", f"Flag {flag} set to {value}", key=flag, value=value))

        for character_id, change in effects.relationships.items():
            description = "Relationship improved" if change > 0 else "Relationship worsened"
            consequences.append(Consequence("relationship", description, change=change, key=character_id))

        for item in effects.add_items:
            consequences.append(Consequence("item", f"Receive {item.name}", change=item.quantity, key=item.id))
        for removal in effects.remove_items:
            consequences.append(Consequence(
                "item", f"Lose {removal.name or removal.item_id}", change=-removal.quantity, key=removal.item_id
            ))

        return consequences
