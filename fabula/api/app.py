"""
FastAPI Application - REST adapter over the game engine.

Endpoints:
    GET    /api/v1/stories                         List playable stories
    POST   /api/v1/sessions                        Create session
    GET    /api/v1/sessions                        List active sessions
    GET    /api/v1/sessions/{id}                   Get session status
    DELETE /api/v1/sessions/{id}                   End session
    POST   /api/v1/sessions/{id}/start             Start a new game
    POST   /api/v1/sessions/{id}/load              Load a saved game
    POST   /api/v1/sessions/{id}/choices           Make a choice
    GET    /api/v1/sessions/{id}/state             Get game state
    POST   /api/v1/sessions/{id}/pause             Pause
    POST   /api/v1/sessions/{id}/resume            Resume
    POST   /api/v1/sessions/{id}/items             Use an item
    POST   /api/v1/sessions/{id}/interactions      Interact with a character
    POST   /api/v1/sessions/{id}/saves             Manual save
    PATCH  /api/v1/sessions/{id}/settings          Update settings
    GET    /api/v1/sessions/{id}/events            Drain recorded events
    GET    /api/v1/saves                           List save slots
    WS     /api/v1/sessions/{id}/ws                WebSocket event stream

Every engine operation maps one-to-one onto an endpoint; engine errors
come back as ErrorResponse with an ErrorCode.
"""

from contextlib import asynccontextmanager
from typing import Union
import asyncio
import json
import logging
import os

# Environment configuration
FABULA_ENV = os.getenv("FABULA_ENV", "development")
FABULA_SAVE_DIR = os.getenv("FABULA_SAVE_DIR", None)
FABULA_STORIES = os.getenv("FABULA_STORIES", None)
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

logger = logging.getLogger(__name__)


def create_app(service=None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (creates new if not provided)

    Returns:
        FastAPI application instance
    """
    from fastapi import FastAPI, WebSocket, WebSocketDisconnect
    from fastapi.middleware.cors import CORSMiddleware
    from fastapi.responses import JSONResponse

    from .schemas import (
        # Request models
        CreateSessionRequest,
        StartGameRequest,
        LoadGameRequest,
        ChoiceRequest,
        UseItemRequest,
        InteractRequest,
        SaveRequest,
        SettingsRequest,
        # Response models
        ErrorResponse,
        SessionResponse,
        SessionListResponse,
        EndSessionResponse,
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
        HealthResponse,
        # Enums
        ErrorCode,
    )

    api_service = service or _default_service()

    @asynccontextmanager
    async def lifespan(app):
        yield
        await api_service.shutdown()

    app = FastAPI(
        title="Fabula Engine API",
        description="""
Interactive fiction rule engine.

## Play loop

1. `POST /sessions` creates a session
2. `POST /sessions/{id}/start` starts a story and returns the first scene
3. `POST /sessions/{id}/choices` resolves a choice and returns the next scene
4. The game ends when a choice has no target scene (`ended=true`)

## Error Codes

| Code | Description |
|------|-------------|
| `SESSION_NOT_FOUND` | Session does not exist |
| `STORY_NOT_FOUND` | Story is not in the repository |
| `CHOICE_UNAVAILABLE` | Choice not offered, or requirements unmet |
| `SCENE_NOT_FOUND` | Navigation target does not exist |
| `SCENE_INACCESSIBLE` | Navigation target's conditions are not met |
| `INVALID_STATE` | Operation not allowed right now (paused, ended, ...) |
| `PERSISTENCE_ERROR` | Save store failure |
        """,
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # WebSocket connections
    ws_connections: dict[str, list[WebSocket]] = {}

    # =========================================================================
    # Error helpers
    # =========================================================================

    status_codes = {
        ErrorCode.SESSION_NOT_FOUND: 404,
        ErrorCode.STORY_NOT_FOUND: 404,
        ErrorCode.SCENE_NOT_FOUND: 404,
        ErrorCode.INVALID_STATE: 409,
        ErrorCode.PERSISTENCE_ERROR: 500,
        ErrorCode.INTERNAL_ERROR: 500,
    }

    def make_error_response(error: ErrorResponse) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(
            status_code=status_codes.get(error.error_code, 400),
            content=error.model_dump(mode="json"),
        )

    def respond(response):
        if isinstance(response, ErrorResponse):
            return make_error_response(response)
        return response

    # =========================================================================
    # Stories and sessions
    # =========================================================================

    @app.get(
        "/api/v1/stories",
        response_model=StoryListResponse,
        tags=["Stories"],
        summary="List playable stories",
    )
    async def list_stories() -> StoryListResponse:
        return api_service.list_stories()

    @app.post(
        "/api/v1/sessions",
        response_model=SessionResponse,
        tags=["Sessions"],
        summary="Create a new session",
    )
    async def create_session(request: CreateSessionRequest) -> SessionResponse:
        return await api_service.create_session(request)

    @app.get(
        "/api/v1/sessions",
        response_model=SessionListResponse,
        tags=["Sessions"],
        summary="List active sessions",
    )
    async def list_sessions() -> SessionListResponse:
        sessions = api_service.list_sessions()
        return SessionListResponse(sessions=sessions, count=len(sessions))

    @app.get(
        "/api/v1/sessions/{session_id}",
        response_model=SessionResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Sessions"],
        summary="Get session status",
    )
    async def get_session(session_id: str) -> Union[SessionResponse, JSONResponse]:
        return respond(api_service.get_session(session_id))

    @app.delete(
        "/api/v1/sessions/{session_id}",
        response_model=EndSessionResponse,
        tags=["Sessions"],
        summary="End a session",
    )
    async def end_session(session_id: str) -> EndSessionResponse:
        """End a session, stopping its timers and releasing its engine."""
        success = await api_service.end_session(session_id)
        for ws in ws_connections.pop(session_id, []):
            await ws.close()
        return EndSessionResponse(success=success, session_id=session_id)

    # =========================================================================
    # Game loop
    # =========================================================================

    @app.post(
        "/api/v1/sessions/{session_id}/start",
        response_model=SceneResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Game Loop"],
        summary="Start a new game",
    )
    async def start_game(session_id: str, request: StartGameRequest) -> Union[SceneResponse, JSONResponse]:
        return respond(await api_service.start_game(session_id, request))

    @app.post(
        "/api/v1/sessions/{session_id}/load",
        response_model=SceneResponse,
        responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
        tags=["Game Loop"],
        summary="Load a saved game",
    )
    async def load_game(session_id: str, request: LoadGameRequest) -> Union[SceneResponse, JSONResponse]:
        return respond(await api_service.load_game(session_id, request))

    @app.post(
        "/api/v1/sessions/{session_id}/choices",
        response_model=ChoiceResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Choice unavailable"},
            404: {"model": ErrorResponse, "description": "Session not found"},
            409: {"model": ErrorResponse, "description": "Game paused or ended"},
        },
        tags=["Game Loop"],
        summary="Make a choice",
    )
    async def make_choice(session_id: str, request: ChoiceRequest) -> Union[ChoiceResponse, JSONResponse]:
        """
        Resolve a choice offered by the current scene.

        Returns the applied effects and the next scene, or `ended=true`
        when the choice finishes the story.
        """
        return respond(await api_service.make_choice(session_id, request))

    @app.get(
        "/api/v1/sessions/{session_id}/state",
        response_model=GameStateResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Game Loop"],
        summary="Get game state",
    )
    async def get_game_state(session_id: str) -> Union[GameStateResponse, JSONResponse]:
        return respond(api_service.get_game_state(session_id))

    @app.post(
        "/api/v1/sessions/{session_id}/pause",
        response_model=SessionResponse,
        tags=["Game Loop"],
        summary="Pause the game",
    )
    async def pause_game(session_id: str) -> Union[SessionResponse, JSONResponse]:
        return respond(await api_service.pause(session_id))

    @app.post(
        "/api/v1/sessions/{session_id}/resume",
        response_model=SessionResponse,
        tags=["Game Loop"],
        summary="Resume the game",
    )
    async def resume_game(session_id: str) -> Union[SessionResponse, JSONResponse]:
        return respond(await api_service.resume(session_id))

    @app.post(
        "/api/v1/sessions/{session_id}/items",
        response_model=ItemUseResponse,
        tags=["Game Loop"],
        summary="Use an inventory item",
    )
    async def use_item(session_id: str, request: UseItemRequest) -> Union[ItemUseResponse, JSONResponse]:
        return respond(await api_service.use_item(session_id, request))

    @app.post(
        "/api/v1/sessions/{session_id}/interactions",
        response_model=InteractionResponse,
        tags=["Game Loop"],
        summary="Interact with a character in the current scene",
    )
    async def interact(session_id: str, request: InteractRequest) -> Union[InteractionResponse, JSONResponse]:
        return respond(await api_service.interact(session_id, request))

    # =========================================================================
    # Saves and settings
    # =========================================================================

    @app.post(
        "/api/v1/sessions/{session_id}/saves",
        response_model=SaveResponse,
        tags=["Saves"],
        summary="Save to a new named slot",
    )
    async def save_game(session_id: str, request: SaveRequest) -> Union[SaveResponse, JSONResponse]:
        return respond(await api_service.save_game(session_id, request))

    @app.get(
        "/api/v1/saves",
        response_model=SaveListResponse,
        tags=["Saves"],
        summary="List save slots, newest first",
    )
    async def list_saves() -> Union[SaveListResponse, JSONResponse]:
        return respond(await api_service.list_saves())

    @app.patch(
        "/api/v1/sessions/{session_id}/settings",
        response_model=SettingsResponse,
        tags=["Saves"],
        summary="Update game settings",
    )
    async def update_settings(session_id: str, request: SettingsRequest) -> Union[SettingsResponse, JSONResponse]:
        return respond(await api_service.update_settings(session_id, request))

    @app.get(
        "/api/v1/sessions/{session_id}/events",
        response_model=EventListResponse,
        tags=["Events"],
        summary="Drain events recorded since the last call",
    )
    async def drain_events(session_id: str) -> Union[EventListResponse, JSONResponse]:
        return respond(api_service.drain_events(session_id))

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/api/v1/sessions/{session_id}/ws")
    async def websocket_endpoint(websocket: WebSocket, session_id: str):
        """
        WebSocket event stream.

        Messages from server:
        - event: an engine event {name, payload, timestamp}
        - error: session missing or invalid client message

        Messages from client:
        - ping: Keep-alive
        """
        await websocket.accept()

        session = api_service.session_manager.get_session(session_id)
        if session is None:
            await websocket.send_json({
                "type": "error",
                "payload": {"message": f"Session not found: {session_id}"},
            })
            await websocket.close()
            return

        ws_connections.setdefault(session_id, []).append(websocket)
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = session.engine.bus.subscribe_all(queue.put_nowait)

        async def forward_events():
            while True:
                record = await queue.get()
                await websocket.send_json({
                    "type": "event",
                    "payload": {
                        "name": record.name,
                        "payload": record.payload,
                        "timestamp": record.timestamp,
                    },
                })

        sender = asyncio.create_task(forward_events())
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_json({
                        "type": "error",
                        "payload": {"message": "Invalid JSON"},
                    })
                    continue
                if message.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            logger.debug(f"WebSocket closed for session {session_id}")
        finally:
            sender.cancel()
            unsubscribe()
            connections = ws_connections.get(session_id, [])
            if websocket in connections:
                connections.remove(websocket)

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers."""
        return HealthResponse(
            status="healthy",
            service="fabula-engine",
            version="0.1.0",
            environment=FABULA_ENV,
        )

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Fabula Engine API",
            "version": "0.1.0",
            "docs": "/api/docs",
            "health": "/health",
        }

    return app


def _default_service():
    from ..content.repository import StoryRepository
    from ..persistence.store import FileSaveStore, MemorySaveStore
    from ..session.engine import EngineConfig
    from ..stories.lantern import build_repository
    from .service import APIService

    repository = StoryRepository.from_json_file(FABULA_STORIES) if FABULA_STORIES else build_repository()
    store = FileSaveStore(FABULA_SAVE_DIR) if FABULA_SAVE_DIR else MemorySaveStore()
    return APIService(repository=repository, store=store, config=EngineConfig.from_env())


# For running directly: uvicorn fabula.api.app:app
app = create_app()
