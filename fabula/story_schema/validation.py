"""
Story Validation - Load-time checks for authored stories.

Validates that:
1. The starting scene exists
2. References are valid (choice ids, target scenes, characters)
3. Every condition tree is well-formed and uses only known leaf keys
4. Custom effects and requirements use known types

Unknown condition keys are authoring bugs, so ensure_valid raises
UnknownConditionError for them rather than letting them deny at runtime.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from ..engine_core.condition import ConditionEvaluator, ConditionProblem
from ..engine_core.errors import UnknownConditionError, ValidationError
from .effects import CUSTOM_EFFECT_TYPES, Effect
from .story import ChoiceType, Requirement, Story


class StoryValidationError(ValidationError):
    """Raised when story validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Story validation failed with {len(errors)} error(s)")


@dataclass
class ValidationResult:
    """Result of validation, with errors and warnings."""
    valid: bool
    errors: list[str]
    warnings: list[str]
    unknown_conditions: list[ConditionProblem] = field(default_factory=list)


def validate_story(story: Story) -> ValidationResult:
    """
    Validate a complete story.

    Returns ValidationResult with errors and warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []
    unknown: list[ConditionProblem] = []
    evaluator = ConditionEvaluator()

    def check_condition(condition: Any, path: str):
        for problem in evaluator.validate(condition, path):
            if problem.unknown_key is not None:
                unknown.append(problem)
            errors.append(f"{problem.path}: {problem.message}")

    if story.starting_scene_id not in story.scenes:
        errors.append(f"Starting scene '{story.starting_scene_id}' does not exist")

    referenced_choices: set[str] = set()
    reachable = {story.starting_scene_id}

    for scene in story.scenes.values():
        where = f"scene '{scene.id}'"
        check_condition(scene.conditions, f"{where}.conditions")
        errors.extend(_validate_effect(scene.effects, where, story, reachable))
        if scene.time_effects is not None:
            # Delayed effects never navigate, so they add no reachable scenes
            errors.extend(_validate_effect(scene.time_effects, f"{where}.timeEffects", story, set()))

        for choice_id in scene.choice_ids:
            referenced_choices.add(choice_id)
            if choice_id not in story.choices:
                errors.append(f"{where} references unknown choice '{choice_id}'")
        for character_id in scene.character_ids:
            if character_id not in story.characters:
                errors.append(f"{where} references unknown character '{character_id}'")
        if not scene.choice_ids:
            warnings.append(f"{where} has no choices")

    for choice in story.choices.values():
        where = f"choice '{choice.id}'"
        check_condition(choice.conditions, f"{where}.conditions")
        errors.extend(_validate_effect(choice.effects, where, story, reachable))

        if choice.target_scene_id:
            reachable.add(choice.target_scene_id)
            if choice.target_scene_id not in story.scenes:
                errors.append(
                    f"{where} targets unknown scene '{choice.target_scene_id}'"
                )

        for i, requirement in enumerate(choice.requirements):
            errors.extend(_validate_requirement(requirement, f"{where}.requirements[{i}]"))

        if choice.type == ChoiceType.CONDITIONAL:
            nested = choice.metadata.get("conditions")
            if not nested:
                warnings.append(f"{where} is conditional but has no metadata conditions")
            check_condition(nested, f"{where}.metadata.conditions")
        if choice.type == ChoiceType.TIMED and "timeLimit" not in choice.metadata:
            warnings.append(f"{where} is timed without a timeLimit, defaulting to 30s")

        if choice.id not in referenced_choices:
            warnings.append(f"{where} is not offered by any scene")

    for character in story.characters.values():
        for i, line in enumerate(character.dialogue):
            if not line.text:
                errors.append(f"character '{character.id}'.dialogue[{i}] has no text")

    for achievement in story.achievements:
        check_condition(achievement.conditions, f"achievement '{achievement.id}'.conditions")

    for scene_id in story.scenes:
        if scene_id not in reachable:
            warnings.append(f"scene '{scene_id}' is unreachable")

    if not story.achievements:
        warnings.append("No achievements defined")
    if not any(c.ends_story for c in story.choices.values()):
        warnings.append("No choice ends the story")

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        unknown_conditions=unknown,
    )


def ensure_valid(story: Story) -> ValidationResult:
    """
    Validate a story, raising on the first class of problem found.

    Raises UnknownConditionError for unknown condition keys, otherwise
    StoryValidationError if any error exists.
    """
    result = validate_story(story)
    if result.unknown_conditions:
        problem = result.unknown_conditions[0]
        raise UnknownConditionError(problem.unknown_key or "", problem.path)
    if not result.valid:
        raise StoryValidationError(result.errors)
    return result


def _validate_effect(effect: Effect, where: str, story: Story, reachable: set[str]) -> list[str]:
    errors = []
    for custom in effect.custom:
        if custom.type not in CUSTOM_EFFECT_TYPES:
            errors.append(f"{where} uses unknown custom effect '{custom.type}'")
        if custom.type == "teleport":
            target = custom.get("targetScene")
            if not target:
                errors.append(f"{where} teleport has no targetScene")
            elif target not in story.scenes:
                errors.append(f"{where} teleports to unknown scene '{target}'")
            else:
                reachable.add(target)
    return errors


def _validate_requirement(requirement: Requirement, where: str) -> list[str]:
    try:
        requirement.to_condition()
    except ValidationError as e:
        return [f"{where}: {e}"]
    return []
