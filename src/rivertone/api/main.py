"""FastAPI application entry point for the rivertone server.

This module wires the library service into the HTTP layer. On startup the
lifespan handler resolves the external tools (a missing probe or transcode
tool aborts startup before any request is served), loads the persisted index
and, unless disabled, reconciles the library once.

Endpoints:
- ``/songs``: sorted listing (GET) and reload (PUT)
- ``/songs/{id}``: one track with all tags
- ``/songs/{id}/{format}``: the track's audio, transcoded on demand
- ``/system``: health, configuration and cache statistics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from starlette.concurrency import run_in_threadpool

from rivertone import __version__
from rivertone.api.middleware import RequestIDMiddleware, TimingMiddleware
from rivertone.api.routers import songs, system
from rivertone.core.config import settings
from rivertone.core.logger import setup_logging
from rivertone.core.tools import resolve_tools
from rivertone.library import Library


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    # Startup
    setup_logging()
    tools = resolve_tools(settings)  # ToolNotFound is fatal here
    library = Library.from_settings(settings, tools)
    library.open()
    if settings.RELOAD_ON_STARTUP:
        await run_in_threadpool(library.reload)
    app.state.library = library
    logger.info(f"Serving {library.library_path} ({len(library.index)} tracks)")

    yield
    # Shutdown


app = FastAPI(
    title="rivertone",
    version=__version__,
    description="Personal audio library server with on-demand transcoding",
    lifespan=lifespan,
)

app.add_middleware(
    TimingMiddleware, slow_request_threshold=settings.SLOW_REQUEST_THRESHOLD
)
app.add_middleware(RequestIDMiddleware)

# Include Routers
app.include_router(songs.router, prefix="/songs", tags=["Songs"])
app.include_router(system.router, prefix="/system", tags=["System"])


@app.get("/")
async def root():
    return {"message": "rivertone is running"}
