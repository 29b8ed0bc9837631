"""
Engine errors.

Every failure the engine surfaces derives from FabulaError so callers
can catch engine failures without catching programming errors.
"""


class FabulaError(Exception):
    """Base class for engine errors."""


class ValidationError(FabulaError):
    """Content or input is not valid for the current game state."""


class UnknownConditionError(ValidationError):
    """A condition uses a leaf key the evaluator does not recognise."""

    def __init__(self, key: str, path: str = ""):
        self.key = key
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"Unknown condition key '{key}'{where}")


class SceneNotFoundError(ValidationError):
    """The content source has no scene with the requested id."""

    def __init__(self, scene_id: str):
        self.scene_id = scene_id
        super().__init__(f"Scene not found: {scene_id}")


class SceneInaccessibleError(ValidationError):
    """The scene's conditions are not met."""

    def __init__(self, scene_id: str):
        self.scene_id = scene_id
        super().__init__(f"Scene {scene_id} is not accessible under current conditions")


class ChoiceUnavailableError(ValidationError):
    """The choice is missing from the current scene or fails validation."""

    def __init__(self, choice_id: str, reason: str = ""):
        self.choice_id = choice_id
        self.reason = reason
        message = f"Choice {choice_id} is not available"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StateError(FabulaError):
    """Operation is not valid in the engine's current lifecycle state."""


class PersistenceError(FabulaError):
    """Saving or loading a game failed."""


class EffectError(FabulaError):
    """A single custom effect handler failed."""

    def __init__(self, effect_type: str, message: str):
        self.effect_type = effect_type
        super().__init__(f"{effect_type}: {message}")
