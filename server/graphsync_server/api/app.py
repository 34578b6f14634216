"""
FastAPI application factory for GraphSync.

This module creates the app with:
- Store, router, resolver and engine created in the lifespan and kept on app.state
- CORS configuration for browser clients
- Exception handlers mapping the error taxonomy onto HTTP statuses
- REST routes under /api and the realtime endpoint at /ws
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..auth import SessionResolver
from ..config import ServerConfig
from ..errors import GraphSyncError
from ..realtime import BroadcastRouter
from ..store import GraphStore
from ..sync import SyncEngine
from .routes import router, ws_router

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "UNAUTHORIZED": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "PERSISTENCE_FAILURE": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the server components and drop realtime state on shutdown."""
    config: ServerConfig = app.state.config

    store = GraphStore(
        data_dir=config.storage.data_dir,
        db_filename=config.storage.db_filename,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
    )
    await store.initialize()

    broadcast = BroadcastRouter(send_timeout_seconds=config.realtime.send_timeout_seconds)
    app.state.store = store
    app.state.router = broadcast
    app.state.resolver = SessionResolver(store)
    app.state.engine = SyncEngine(store, broadcast)

    logger.info("GraphSync app started", extra={"db_path": str(store.db_path)})

    yield

    broadcast.reset()
    logger.info("GraphSync app stopped")


def _format_validation_errors(exc: RequestValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return errors


async def graphsync_error_handler(request: Request, exc: GraphSyncError) -> JSONResponse:
    status = STATUS_BY_CODE.get(exc.code, 500)
    if status >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error_code": exc.code, "error": exc.message},
        )
    return JSONResponse(status_code=status, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = _format_validation_errors(exc)
    message = "Invalid request data"
    if errors:
        message = f"{message}: {'; '.join(errors)}"
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "error_code": "VALIDATION_ERROR"},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "error_code": "INTERNAL"},
    )


def create_app(config: ServerConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration, loaded from the environment if omitted

    Returns:
        The configured app; components are built when its lifespan starts
    """
    config = config or ServerConfig.from_env()

    app = FastAPI(
        title="GraphSync",
        description="Realtime collaborative graph editing backend.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.http.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GraphSyncError, graphsync_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router, prefix="/api")
    app.include_router(ws_router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "graphsync"}

    return app
