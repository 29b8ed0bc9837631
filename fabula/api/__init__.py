"""
API Module - REST interface over the game engine.

A presentation client:
1. Creates a session
2. Starts or loads a story
3. Makes choices, uses items and talks to characters
4. Receives engine events over a WebSocket or by polling

The adapter defines no protocol of its own; each endpoint is one engine
operation.
"""

from .schemas import (
    # Requests
    CreateSessionRequest,
    StartGameRequest,
    LoadGameRequest,
    ChoiceRequest,
    UseItemRequest,
    InteractRequest,
    SaveRequest,
    SettingsRequest,
    # Responses
    ErrorResponse,
    SessionResponse,
    SceneResponse,
    GameStateResponse,
    ChoiceResponse,
    ItemUseResponse,
    InteractionResponse,
    SaveResponse,
    SaveListResponse,
    SettingsResponse,
    # Shared
    ChoiceInfo,
    SceneInfo,
    PlayerInfo,
    ItemInfo,
    EffectInfo,
    SaveSlotInfo,
    EventInfo,
    # Enums
    EngineStatus,
    ErrorCode,
    InteractionType,
)
from .service import APIService
from .app import create_app

__all__ = [
    # Requests
    "CreateSessionRequest",
    "StartGameRequest",
    "LoadGameRequest",
    "ChoiceRequest",
    "UseItemRequest",
    "InteractRequest",
    "SaveRequest",
    "SettingsRequest",
    # Responses
    "ErrorResponse",
    "SessionResponse",
    "SceneResponse",
    "GameStateResponse",
    "ChoiceResponse",
    "ItemUseResponse",
    "InteractionResponse",
    "SaveResponse",
    "SaveListResponse",
    "SettingsResponse",
    # Shared
    "ChoiceInfo",
    "SceneInfo",
    "PlayerInfo",
    "ItemInfo",
    "EffectInfo",
    "SaveSlotInfo",
    "EventInfo",
    # Enums
    "EngineStatus",
    "ErrorCode",
    "InteractionType",
    # Service
    "APIService",
    "create_app",
]
