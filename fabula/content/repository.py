"""
Story Repository - Read-only content source backed by story documents.

The engine only depends on the ContentSource protocol. StoryRepository is
the reference implementation: stories are parsed from dicts or JSON files
and validated once, when they are added.
"""

from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from ..engine_core.errors import SceneNotFoundError, ValidationError
from ..story_schema.story import Achievement, Character, Choice, Scene, Story
from ..story_schema.validation import ValidationResult, ensure_valid

logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    """Read-only story content, keyed by stable string ids."""

    async def get_scene(self, story_id: str, scene_id: str) -> Scene: ...

    async def get_choices(self, story_id: str, choice_ids: list[str]) -> list[Choice]: ...

    async def get_scene_characters(self, story_id: str, scene_id: str) -> list[Character]: ...

    async def get_story_achievements(self, story_id: str) -> list[Achievement]: ...

    async def get_scene_count(self, story_id: str) -> int: ...

    async def get_starting_scene_id(self, story_id: str) -> str: ...


class StoryRepository:
    """
    In-memory ContentSource holding one or more stories.

    Usage:
        repo = StoryRepository.from_json_file("stories/lantern.json")
        scene = await repo.get_scene("lantern", "crossroads")
    """

    def __init__(self, stories: list[Story] | None = None, validate: bool = True):
        self._stories: dict[str, Story] = {}
        self._validation: dict[str, ValidationResult] = {}
        for story in stories or []:
            self.add_story(story, validate=validate)

    @classmethod
    def from_dict(cls, data: dict[str, Any], validate: bool = True) -> StoryRepository:
        """Build from one story document or {"stories": [...]}."""
        documents = data["stories"] if "stories" in data else [data]
        return cls([Story.from_dict(d) for d in documents], validate=validate)

    @classmethod
    def from_json_file(cls, path: str | Path, validate: bool = True) -> StoryRepository:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{path} is not valid JSON: {e}")
        logger.info(f"Loading stories from {path}")
        return cls.from_dict(data, validate=validate)

    def add_story(self, story: Story, validate: bool = True):
        """
        Register a story.

        Raises UnknownConditionError or StoryValidationError when
        validation is on and the story has errors.
        """
        if validate:
            result = ensure_valid(story)
            self._validation[story.id] = result
            for warning in result.warnings:
                logger.warning(f"Story '{story.id}': {warning}")
        self._stories[story.id] = story

    def get_story(self, story_id: str) -> Story:
        story = self._stories.get(story_id)
        if story is None:
            raise ValidationError(f"Story not found: {story_id}")
        return story

    def list_stories(self) -> list[Story]:
        return list(self._stories.values())

    def validation_result(self, story_id: str) -> ValidationResult | None:
        return self._validation.get(story_id)

    # =========================================================================
    # ContentSource
    # =========================================================================

    async def get_scene(self, story_id: str, scene_id: str) -> Scene:
        scene = self.get_story(story_id).scenes.get(scene_id)
        if scene is None:
            raise SceneNotFoundError(scene_id)
        return scene

    async def get_choices(self, story_id: str, choice_ids: list[str]) -> list[Choice]:
        story = self.get_story(story_id)
        choices = []
        for choice_id in choice_ids:
            choice = story.choices.get(choice_id)
            if choice is None:
                logger.warning(f"Story '{story_id}' has no choice '{choice_id}'")
                continue
            choices.append(choice)
        return choices

    async def get_scene_characters(self, story_id: str, scene_id: str) -> list[Character]:
        story = self.get_story(story_id)
        scene = await self.get_scene(story_id, scene_id)
        return [story.characters[c] for c in scene.character_ids if c in story.characters]

    async def get_story_achievements(self, story_id: str) -> list[Achievement]:
        return list(self.get_story(story_id).achievements)

    async def get_scene_count(self, story_id: str) -> int:
        return len(self.get_story(story_id).scenes)

    async def get_starting_scene_id(self, story_id: str) -> str:
        return self.get_story(story_id).starting_scene_id
