"""FastAPI application entrypoint for the ShelfSync control API."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shelfsync.api.errors import register_exception_handlers
from shelfsync.api.routes import connection, ebooks, health, library, player, settings
from shelfsync.api.routes.settings import load_preferences
from shelfsync.core.config import Settings, get_settings
from shelfsync.db.session import async_session_maker, create_db_and_tables
from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.cover_cache import CoverCache
from shelfsync.services.playback_manager import PlaybackManager
from shelfsync.services.reader import EbookReader
from shelfsync.services.websocket_manager import WebSocketManager

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Settings) -> None:
    """Log to stdout, and append to log_file when one is configured."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=config.log_level.upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )

    # Also configure uvicorn's logger to avoid duplicates
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


configure_logging(get_settings())

logger = logging.getLogger(__name__)


def init_services(app: FastAPI, abs_client: AudiobookshelfClient) -> PlaybackManager:
    """Construct the long-lived services and store them on app.state."""
    cover_cache = CoverCache(abs_client)
    manager = PlaybackManager(abs_client, cover_cache=cover_cache)
    ws_manager = WebSocketManager()
    manager.subscribe(ws_manager.create_playback_listener())

    app.state.abs_client = abs_client
    app.state.cover_cache = cover_cache
    app.state.playback_manager = manager
    app.state.reader = EbookReader(abs_client)
    app.state.ws_manager = ws_manager
    return manager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager for startup/shutdown events."""
    # Startup
    logger.info("Starting ShelfSync...")
    config = get_settings()
    config.ensure_directories()
    await create_db_and_tables()

    abs_client = AudiobookshelfClient()
    manager = init_services(app, abs_client)

    async with async_session_maker() as session:
        preferences = await load_preferences(session)
    if preferences.abs_host and not abs_client.host:
        abs_client.configure(preferences.abs_host, abs_client.api_key)
    manager.preferred_rate = preferences.playback_rate

    if not abs_client.is_configured:
        logger.info("No server configured yet; POST /connection to connect")

    logger.info("Startup complete")
    yield

    # Shutdown - close the session before the HTTP client goes away
    logger.info("Initiating graceful shutdown...")
    try:
        await manager.shutdown()
    except Exception as e:
        logger.warning("Error during playback shutdown: %s", e)
    await app.state.ws_manager.close()
    await abs_client.aclose()
    logger.info("Graceful shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_settings()

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        description="Local control API for Audiobookshelf playback and reading",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(connection.router, prefix="/connection", tags=["Connection"])
    app.include_router(library.router, tags=["Library"])
    app.include_router(player.router, prefix="/player", tags=["Player"])
    app.include_router(ebooks.router, prefix="/ebooks", tags=["Ebooks"])
    app.include_router(settings.router, prefix="/settings", tags=["Settings"])

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    config = get_settings()
    uvicorn.run(
        "shelfsync.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
    )


if __name__ == "__main__":
    run()
