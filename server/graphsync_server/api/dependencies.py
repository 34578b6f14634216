"""
FastAPI dependencies: app-state components and the resolved session.
"""

from __future__ import annotations

from fastapi import Header, Request

from ..auth import SessionContext, SessionResolver
from ..realtime import BroadcastRouter
from ..store import GraphStore
from ..sync import SyncEngine


def get_store(request: Request) -> GraphStore:
    """Get the graph store from app state."""
    return request.app.state.store


def get_engine(request: Request) -> SyncEngine:
    """Get the sync engine from app state."""
    return request.app.state.engine


def get_router(request: Request) -> BroadcastRouter:
    """Get the broadcast router from app state."""
    return request.app.state.router


def get_resolver(request: Request) -> SessionResolver:
    """Get the session resolver from app state."""
    return request.app.state.resolver


async def get_session(
    request: Request,
    authorization: str | None = Header(None),
    x_session_token: str | None = Header(None),
) -> SessionContext:
    """Resolve the caller's session token.

    The token is read from ``Authorization: Bearer <token>`` or, failing
    that, ``X-Session-Token``.

    Raises:
        UnauthorizedError: No token supplied
        ForbiddenError: Unknown token
    """
    token = SessionResolver.extract_token(authorization, x_session_token)
    return await get_resolver(request).resolve(token)
