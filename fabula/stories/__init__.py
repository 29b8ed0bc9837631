"""Built-in stories."""

from .lantern import LANTERN, STORY_ID, lantern_story, build_repository

__all__ = ["LANTERN", "STORY_ID", "lantern_story", "build_repository"]
