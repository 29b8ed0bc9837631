"""
API Service - Business logic layer between API and engine.

The service:
1. Translates API requests to engine calls
2. Manages sessions
3. Converts engine errors to ErrorResponse with an ErrorCode
4. Formats engine results for presentation clients

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging

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
    StoryListResponse,
    EventListResponse,
    # Shared
    ChoiceInfo,
    SceneInfo,
    PlayerInfo,
    ItemInfo,
    EffectInfo,
    SaveSlotInfo,
    EventInfo,
    StoryInfo,
    # Enums
    EngineStatus,
    ErrorCode,
    InteractionType,
)
from ..content.repository import StoryRepository
from ..engine_core.errors import (
    ChoiceUnavailableError,
    FabulaError,
    PersistenceError,
    SceneInaccessibleError,
    SceneNotFoundError,
    StateError,
    ValidationError,
)
from ..engine_core.scene_processor import ProcessedScene
from ..persistence.store import MemorySaveStore, SaveSlot, SaveStore
from ..session.engine import EngineConfig
from ..session.manager import Session, SessionManager
from ..stories.lantern import build_repository

logger = logging.getLogger(__name__)

# Most specific first
_ERROR_CODES: list[tuple[type[FabulaError], ErrorCode]] = [
    (ChoiceUnavailableError, ErrorCode.CHOICE_UNAVAILABLE),
    (SceneNotFoundError, ErrorCode.SCENE_NOT_FOUND),
    (SceneInaccessibleError, ErrorCode.SCENE_INACCESSIBLE),
    (ValidationError, ErrorCode.VALIDATION_ERROR),
    (StateError, ErrorCode.INVALID_STATE),
    (PersistenceError, ErrorCode.PERSISTENCE_ERROR),
]


def error_code_for(error: FabulaError) -> ErrorCode:
    for error_type, code in _ERROR_CODES:
        if isinstance(error, error_type):
            return code
    return ErrorCode.INTERNAL_ERROR


@dataclass
class APIService:
    """
    Main API service.

    Usage:
        service = APIService()

        session = await service.create_session(CreateSessionRequest(player_name="Ada"))
        scene = await service.start_game(session.session_id, StartGameRequest(story_id="lantern"))
        outcome = await service.make_choice(session.session_id, ChoiceRequest(choice_id="enter_courtyard"))
    """
    repository: StoryRepository = field(default_factory=build_repository)
    store: SaveStore = field(default_factory=MemorySaveStore)
    config: EngineConfig = field(default_factory=EngineConfig)
    session_manager: SessionManager | None = None

    def __post_init__(self):
        if self.session_manager is None:
            self.session_manager = SessionManager(self.repository, store=self.store, config=self.config)

    # =========================================================================
    # Stories and sessions
    # =========================================================================

    def list_stories(self) -> StoryListResponse:
        stories = [
            StoryInfo(
                story_id=story.id,
                title=story.title,
                description=story.description,
                scene_count=len(story.scenes),
                achievement_count=len(story.achievements),
            )
            for story in self.repository.list_stories()
        ]
        return StoryListResponse(stories=stories, count=len(stories))

    async def create_session(self, request: CreateSessionRequest) -> SessionResponse:
        session = await self.session_manager.create_session(player_name=request.player_name)
        return self._session_to_response(session)

    def get_session(self, session_id: str) -> SessionResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)
        return self._session_to_response(session)

    async def end_session(self, session_id: str) -> bool:
        return await self.session_manager.end_session(session_id)

    def list_sessions(self) -> list[str]:
        return self.session_manager.list_active_sessions()

    # =========================================================================
    # Game loop
    # =========================================================================

    async def start_game(self, session_id: str, request: StartGameRequest) -> SceneResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        try:
            self.repository.get_story(request.story_id)
        except ValidationError:
            return ErrorResponse(
                error=f"Story not found: {request.story_id}",
                error_code=ErrorCode.STORY_NOT_FOUND,
            )

        session.touch()
        if request.player_name:
            session.player_name = request.player_name
        try:
            scene = await session.engine.start_new_game(request.story_id, session.player_name)
        except FabulaError as e:
            return _error(e)
        return self._scene_response(session, scene)

    async def load_game(self, session_id: str, request: LoadGameRequest) -> SceneResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        session.touch()
        try:
            scene = await session.engine.load_game(request.slot_id)
        except FabulaError as e:
            return _error(e)
        return self._scene_response(session, scene)

    async def make_choice(self, session_id: str, request: ChoiceRequest) -> ChoiceResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        session.touch()
        try:
            outcome = await session.engine.make_choice(request.choice_id)
        except FabulaError as e:
            return _error(e)

        return ChoiceResponse(
            session_id=session_id,
            choice_id=request.choice_id,
            status=_status(session),
            effects=[
                EffectInfo(
                    type=e.type,
                    success=e.success,
                    description=e.description,
                    change=e.change,
                    error=e.error,
                )
                for e in outcome.effects
            ],
            consequences=[c.description for c in outcome.choice.consequences],
            scene=_scene_info(outcome.scene) if outcome.scene else None,
            ended=outcome.ended,
        )

    def get_game_state(self, session_id: str) -> GameStateResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        engine = session.engine
        state = engine.state
        if state is None:
            return ErrorResponse(
                error="No game in progress",
                error_code=ErrorCode.INVALID_STATE,
            )

        player = state.player
        return GameStateResponse(
            session_id=session_id,
            status=_status(session),
            story_id=state.story_id,
            scene=_scene_info(engine.current_scene) if engine.current_scene else None,
            player=PlayerInfo(
                name=player.name,
                level=player.level,
                health=player.health,
                max_health=player.max_health,
                mana=player.mana,
                max_mana=player.max_mana,
                experience=player.experience,
                gold=player.gold,
                attributes=dict(player.attributes),
                equipment={slot: item.id for slot, item in player.equipment.items()},
            ),
            inventory=[ItemInfo.model_validate(item) for item in state.inventory],
            flags=state.flags.to_dict(),
            relationships=dict(state.relationships),
            achievements=list(state.progress.achievements_unlocked),
            scenes_visited=list(state.progress.scenes_visited),
            story_progress=state.progress.story_progress,
            playtime=state.progress.playtime,
        )

    async def pause(self, session_id: str) -> SessionResponse | ErrorResponse:
        return await self._lifecycle(session_id, "pause_game")

    async def resume(self, session_id: str) -> SessionResponse | ErrorResponse:
        return await self._lifecycle(session_id, "resume_game")

    async def _lifecycle(self, session_id: str, operation: str) -> SessionResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)
        session.touch()
        try:
            await getattr(session.engine, operation)()
        except FabulaError as e:
            return _error(e)
        return self._session_to_response(session)

    # =========================================================================
    # Items and characters
    # =========================================================================

    async def use_item(self, session_id: str, request: UseItemRequest) -> ItemUseResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        session.touch()
        try:
            result = await session.engine.use_item(request.item_id)
        except FabulaError as e:
            return _error(e)
        return ItemUseResponse(
            session_id=session_id,
            item_id=request.item_id,
            success=result.success,
            message=result.message,
            consumed=result.consumed,
            equipped=result.equipped,
        )

    async def interact(self, session_id: str, request: InteractRequest) -> InteractionResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        session.touch()
        try:
            result = await session.engine.interact(request.character_id, request.interaction.value)
        except FabulaError as e:
            return _error(e)
        return InteractionResponse(
            session_id=session_id,
            character_id=request.character_id,
            interaction=InteractionType(result.kind.value),
            success=result.success,
            message=result.message,
            options=result.options,
            trade_items=result.trade_items,
            quest_id=result.quest.id if result.quest else None,
            mood=result.metadata.get("mood"),
            price_modifier=result.metadata.get("priceModifier"),
        )

    # =========================================================================
    # Saves and settings
    # =========================================================================

    async def save_game(self, session_id: str, request: SaveRequest) -> SaveResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        session.touch()
        try:
            slot = await session.engine.manual_save(request.name)
        except FabulaError as e:
            return _error(e)
        return SaveResponse(session_id=session_id, slot=_slot_info(slot))

    async def list_saves(self) -> SaveListResponse | ErrorResponse:
        try:
            slots = await self.store.list_slots()
        except PersistenceError as e:
            return _error(e)
        return SaveListResponse(slots=[_slot_info(s) for s in slots], count=len(slots))

    async def update_settings(self, session_id: str, request: SettingsRequest) -> SettingsResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)

        changes = request.model_dump(exclude_none=True)
        try:
            settings = await session.engine.update_settings(**changes)
        except FabulaError as e:
            return _error(e)
        return SettingsResponse(session_id=session_id, settings=settings.to_dict())

    def drain_events(self, session_id: str) -> EventListResponse | ErrorResponse:
        session = self.session_manager.get_session(session_id)
        if not session:
            return _session_not_found(session_id)
        events = [
            EventInfo(name=e.name, payload=e.payload, timestamp=e.timestamp)
            for e in session.drain_events()
        ]
        return EventListResponse(session_id=session_id, events=events)

    async def shutdown(self):
        await self.session_manager.shutdown()

    # =========================================================================
    # Conversion helpers
    # =========================================================================

    def _session_to_response(self, session: Session) -> SessionResponse:
        state = session.engine.state
        return SessionResponse(
            session_id=session.session_id,
            status=_status(session),
            player_name=session.player_name,
            story_id=state.story_id if state else None,
            created_at=session.created_at,
        )

    def _scene_response(self, session: Session, scene: ProcessedScene) -> SceneResponse:
        return SceneResponse(
            session_id=session.session_id,
            status=_status(session),
            scene=_scene_info(scene),
        )


def _status(session: Session) -> EngineStatus:
    return EngineStatus(session.engine.status.value)


def _scene_info(scene: ProcessedScene) -> SceneInfo:
    return SceneInfo(
        scene_id=scene.id,
        title=scene.scene.title,
        content=scene.content,
        choices=[
            ChoiceInfo(
                id=c.id,
                text=c.text,
                type=c.choice.type.value,
                target_scene_id=c.choice.target_scene_id,
                requirements=[r.describe() for r in c.choice.requirements],
            )
            for c in scene.choices
        ],
        background_music=scene.scene.background_music,
        character_ids=list(scene.scene.character_ids),
    )


def _slot_info(slot: SaveSlot) -> SaveSlotInfo:
    return SaveSlotInfo.model_validate(slot)


def _session_not_found(session_id: str) -> ErrorResponse:
    return ErrorResponse(
        error=f"Session not found: {session_id}",
        error_code=ErrorCode.SESSION_NOT_FOUND,
    )


def _error(error: FabulaError) -> ErrorResponse:
    details = None
    if isinstance(error, ChoiceUnavailableError):
        details = {"choice_id": error.choice_id, "reason": error.reason}
    return ErrorResponse(
        error=str(error),
        error_code=error_code_for(error),
        details=details,
    )
