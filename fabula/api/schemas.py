"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the contract between a presentation client and the
engine. All responses include explicit types for OpenAPI schema generation.

Error Codes:
- SESSION_NOT_FOUND: Session does not exist or has ended
- STORY_NOT_FOUND: Story id is not in the repository
- CHOICE_UNAVAILABLE: Choice is not offered or its requirements are unmet
- SCENE_NOT_FOUND / SCENE_INACCESSIBLE: Navigation target missing or gated
- INVALID_STATE: Operation not allowed in the engine's current state
- PERSISTENCE_ERROR: Save store failure
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class EngineStatus(str, Enum):
    """Engine lifecycle status."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


class InteractionType(str, Enum):
    """Character interaction kinds."""
    TALK = "talk"
    TRADE = "trade"
    QUEST = "quest"
    GIFT = "gift"


class ErrorCode(str, Enum):
    """Structured error codes."""
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    STORY_NOT_FOUND = "STORY_NOT_FOUND"
    CHOICE_UNAVAILABLE = "CHOICE_UNAVAILABLE"
    SCENE_NOT_FOUND = "SCENE_NOT_FOUND"
    SCENE_INACCESSIBLE = "SCENE_INACCESSIBLE"
    INVALID_STATE = "INVALID_STATE"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Shared Models
# =============================================================================

class ChoiceInfo(BaseModel):
    """A visible choice, with rendered text."""
    id: str
    text: str
    type: str = "plain"
    target_scene_id: Optional[str] = None
    requirements: list[str] = Field(default_factory=list)


class SceneInfo(BaseModel):
    """The current scene, ready for display."""
    scene_id: str
    title: str
    content: str
    choices: list[ChoiceInfo] = Field(default_factory=list)
    background_music: Optional[str] = None
    character_ids: list[str] = Field(default_factory=list)


class PlayerInfo(BaseModel):
    """Player stats for display."""
    name: str
    level: int
    health: int
    max_health: int
    mana: int
    max_mana: int
    experience: int
    gold: int
    attributes: dict[str, int] = Field(default_factory=dict)
    equipment: dict[str, str] = Field(default_factory=dict, description="slot -> item id")

    model_config = {"from_attributes": True}


class ItemInfo(BaseModel):
    """An inventory entry."""
    id: str
    name: str
    type: str
    rarity: str = "common"
    quantity: int = 1
    value: int = 0
    description: str = ""

    model_config = {"from_attributes": True}


class EffectInfo(BaseModel):
    """One applied effect category."""
    type: str
    success: bool
    description: str = ""
    change: Optional[Any] = None
    error: Optional[str] = None


class SaveSlotInfo(BaseModel):
    """Summary of a save slot."""
    id: str
    name: str
    story_id: str
    scene_id: str
    player_level: int
    playtime: int
    story_progress: int
    is_autosave: bool
    saved_at: str

    model_config = {"from_attributes": True}


class EventInfo(BaseModel):
    """An event emitted by the engine."""
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: float


class StoryInfo(BaseModel):
    """A story available to play."""
    story_id: str
    title: str
    description: str = ""
    scene_count: int = 0
    achievement_count: int = 0


# =============================================================================
# Request Models
# =============================================================================

class CreateSessionRequest(BaseModel):
    """Request to create a new session."""
    player_name: str = Field("Player", min_length=1, description="Display name for the player")


class StartGameRequest(BaseModel):
    """Request to start a new play-through."""
    story_id: str = Field(..., description="Story to play")
    player_name: Optional[str] = Field(None, description="Overrides the session's player name")


class LoadGameRequest(BaseModel):
    slot_id: str = Field(..., description="Save slot to restore")


class ChoiceRequest(BaseModel):
    choice_id: str = Field(..., description="Choice offered by the current scene")


class UseItemRequest(BaseModel):
    item_id: str = Field(..., description="Inventory item to use")


class InteractRequest(BaseModel):
    character_id: str = Field(..., description="Character in the current scene")
    interaction: InteractionType = Field(InteractionType.TALK, description="talk, trade, quest or gift")


class SaveRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Name for the save slot")


class SettingsRequest(BaseModel):
    """Partial settings update; omitted fields keep their value."""
    autosave: Optional[bool] = None
    autosave_interval: Optional[float] = Field(None, gt=0, description="Seconds between autosaves")
    text_speed: Optional[str] = None
    sound_enabled: Optional[bool] = None
    music_enabled: Optional[bool] = None
    difficulty: Optional[str] = None


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class SessionResponse(BaseModel):
    """Response containing session information."""
    session_id: str
    status: EngineStatus
    player_name: str
    story_id: Optional[str] = None
    created_at: float = 0.0
    api_version: str = "v1"


class SessionListResponse(BaseModel):
    sessions: list[str] = Field(default_factory=list)
    count: int = 0
    api_version: str = "v1"


class EndSessionResponse(BaseModel):
    success: bool
    session_id: str
    api_version: str = "v1"


class SceneResponse(BaseModel):
    """The scene entered by starting, loading or navigating."""
    session_id: str
    status: EngineStatus
    scene: SceneInfo
    api_version: str = "v1"


class GameStateResponse(BaseModel):
    """Complete game state for display."""
    session_id: str
    status: EngineStatus
    story_id: str
    scene: Optional[SceneInfo] = None
    player: PlayerInfo
    inventory: list[ItemInfo] = Field(default_factory=list)
    flags: dict[str, Any] = Field(default_factory=dict)
    relationships: dict[str, int] = Field(default_factory=dict)
    achievements: list[str] = Field(default_factory=list)
    scenes_visited: list[str] = Field(default_factory=list)
    story_progress: int = 0
    playtime: int = 0
    api_version: str = "v1"


class ChoiceResponse(BaseModel):
    """Outcome of making a choice."""
    session_id: str
    choice_id: str
    status: EngineStatus
    effects: list[EffectInfo] = Field(default_factory=list)
    consequences: list[str] = Field(default_factory=list)
    scene: Optional[SceneInfo] = None
    ended: bool = False
    api_version: str = "v1"


class ItemUseResponse(BaseModel):
    session_id: str
    item_id: str
    success: bool
    message: str
    consumed: bool = False
    equipped: bool = False
    api_version: str = "v1"


class InteractionResponse(BaseModel):
    session_id: str
    character_id: str
    interaction: InteractionType
    success: bool
    message: str
    options: list[str] = Field(default_factory=list)
    trade_items: list[dict[str, Any]] = Field(default_factory=list)
    quest_id: Optional[str] = None
    mood: Optional[str] = None
    price_modifier: Optional[float] = None
    api_version: str = "v1"


class SaveResponse(BaseModel):
    session_id: str
    slot: SaveSlotInfo
    api_version: str = "v1"


class SaveListResponse(BaseModel):
    slots: list[SaveSlotInfo] = Field(default_factory=list)
    count: int = 0
    api_version: str = "v1"


class SettingsResponse(BaseModel):
    session_id: str
    settings: dict[str, Any]
    api_version: str = "v1"


class StoryListResponse(BaseModel):
    stories: list[StoryInfo] = Field(default_factory=list)
    count: int = 0
    api_version: str = "v1"


class EventListResponse(BaseModel):
    session_id: str
    events: list[EventInfo] = Field(default_factory=list)
    api_version: str = "v1"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    service: str = "fabula-engine"
    version: str = "0.1.0"
    environment: str = "development"
