"""Content sources - read-only access to authored stories."""

from .repository import ContentSource, StoryRepository

__all__ = [
    "ContentSource",
    "StoryRepository",
]
