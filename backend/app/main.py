"""Chat Room Backend Application.

This is the main entry point for the chat room service. One process serves
one room: the room coordinator is created at startup, after its history has
been loaded from the DuckDB store, and is shared by every connection.

Modules:
    - chat: Room coordinator, WebSocket channel and router
    - store: DuckDB-backed durable store and cleanup wake-ups
    - config: YAML + pydantic settings
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.chat.coordinator import RoomCoordinator
from app.chat.errors import ChatRoomError
from app.chat.router import router as chat_router
from app.config import AppSettings, get_config
from app.store import DuckDBStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-connection chatter from the ASGI server and its libraries.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use. Defaults to get_config() at startup.

    Returns:
        The configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store and load the room before serving; close on shutdown."""
        config = settings or get_config()

        # Apply configured log level to root logger so that
        # `logging.level: "debug"` in chatroom.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        store = DuckDBStore(config.storage.db_path)
        try:
            # Fatal on failure: serving with lost history is worse than not serving
            coordinator = await RoomCoordinator.create(store, config.chat)
        except Exception:
            await store.close()
            raise

        app.state.store = store
        app.state.coordinator = coordinator
        logger.info(
            f"Chat room ready on http://{config.server.host}:{config.server.port} "
            f"(db={config.storage.db_path})"
        )

        yield  # Application runs here

        # Shutdown
        await coordinator.close()
        await store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Chat Room API",
        description="Single-room chat coordinator with persisted history",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(chat_router)

    @app.exception_handler(ChatRoomError)
    async def chat_room_error_handler(request: Request, exc: ChatRoomError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object with the number of live sessions.
        """
        coordinator: RoomCoordinator = app.state.coordinator
        return {"status": "ok", "sessions": coordinator.session_count}

    return app


app = create_app()
