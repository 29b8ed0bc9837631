"""Story schema - content definitions and load-time validation."""

from .effects import Effect, CustomEffect, ItemRemoval, AudioCue, CUSTOM_EFFECT_TYPES
from .story import (
    Story,
    Scene,
    Choice,
    ChoiceType,
    Requirement,
    Achievement,
    Character,
    DialogueLine,
    Quest,
)
from .validation import validate_story, ensure_valid, StoryValidationError, ValidationResult

__all__ = [
    "Effect",
    "CustomEffect",
    "ItemRemoval",
    "AudioCue",
    "CUSTOM_EFFECT_TYPES",
    "Story",
    "Scene",
    "Choice",
    "ChoiceType",
    "Requirement",
    "Achievement",
    "Character",
    "DialogueLine",
    "Quest",
    "validate_story",
    "ensure_valid",
    "StoryValidationError",
    "ValidationResult",
]
