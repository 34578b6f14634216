"""
Per-connection realtime state machine.

ConnectionHandler drives one client connection through
Unjoined -> Joined(project_id) -> Unjoined. It is transport-agnostic: the
WebSocket endpoint feeds it decoded frames and it replies through
``send_json``. Whether the connection is joined is read from the router, so
an eviction or a room closure is reflected immediately.

Invariants:
    - A failed join leaves the state unchanged and answers only the caller
    - The joiner is counted before its snapshot is read, so a write that
      races the join is seen through the snapshot or the broadcast
    - Malformed frames get an error event and change nothing
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..auth import SessionResolver, token_hint
from ..errors import GraphSyncError
from ..sync import SyncEngine
from .protocol import (
    ERROR,
    INITIAL_DATA,
    JOIN_PROJECT,
    LEAVE_PROJECT,
    LEFT_PROJECT,
    PING,
    PONG,
    ClientFrame,
    frame,
)
from .router import BroadcastRouter, RealtimeConnection

logger = logging.getLogger(__name__)


class ConnectionHandler:
    """Handles the frames of one realtime connection.

    Example:
        >>> handler = ConnectionHandler(websocket, router, resolver, engine)
        >>> handler.open()
        >>> await handler.handle_frame({"event": "joinProject", "data": {"token": t}})
        >>> await handler.close()
    """

    def __init__(
        self,
        connection: RealtimeConnection,
        router: BroadcastRouter,
        resolver: SessionResolver,
        engine: SyncEngine,
        connection_id: str | None = None,
    ) -> None:
        self.connection = connection
        self.router = router
        self.resolver = resolver
        self.engine = engine
        self.connection_id = connection_id or uuid.uuid4().hex

    @property
    def project_id(self) -> str | None:
        return self.router.project_of(self.connection_id)

    @property
    def joined(self) -> bool:
        return self.project_id is not None

    def open(self) -> None:
        self.router.register(self.connection_id)
        logger.debug("Realtime connection opened", extra={"connection_id": self.connection_id})

    async def close(self) -> None:
        """Leave any joined room and forget the connection."""
        project_id = self.project_id
        await self.router.unregister(self.connection_id)
        logger.debug(
            "Realtime connection closed",
            extra={"connection_id": self.connection_id, "project_id": project_id},
        )

    async def send(self, event: str, data: Any) -> None:
        await self.connection.send_json(frame(event, data))

    async def send_error(self, message: str, code: str) -> None:
        await self.send(ERROR, {"message": message, "code": code})

    async def handle_frame(self, raw: Any) -> None:
        """Dispatch one decoded client frame."""
        try:
            message = ClientFrame.model_validate(raw)
        except PydanticValidationError:
            await self.send_error("Malformed frame", "VALIDATION_ERROR")
            return

        if message.event == JOIN_PROJECT:
            await self.join_project(message.data.get("token"))
        elif message.event == LEAVE_PROJECT:
            await self.leave_project()
        elif message.event == PING:
            await self.send(PONG, {"ts": int(time.time() * 1000)})
        else:
            await self.send_error(f"Unknown event: {message.event}", "VALIDATION_ERROR")

    async def join_project(self, token: Any) -> None:
        """Resolve the token, move into the project's room and send the snapshot."""
        if token is not None and not isinstance(token, str):
            await self.send_error("Session token must be a string", "VALIDATION_ERROR")
            return

        try:
            context = await self.resolver.resolve(token)
        except GraphSyncError as e:
            logger.info(
                "Realtime join rejected",
                extra={
                    "connection_id": self.connection_id,
                    "token_hint": token_hint(token) if token else None,
                    "error_code": e.code,
                },
            )
            await self.send_error(e.message, e.code)
            return

        project_id = context.project_id
        await self.router.join(project_id, self.connection_id, self.connection)

        try:
            graph = await self.engine.snapshot(project_id)
        except GraphSyncError as e:
            await self.router.leave(project_id, self.connection_id)
            await self.send_error(e.message, e.code)
            return

        await self.send(
            INITIAL_DATA,
            {
                "project": context.project.to_dict(),
                "nodes": [n.to_dict() for n in graph.nodes],
                "edges": [e.to_dict() for e in graph.edges],
                "timestamp": graph.timestamp,
            },
        )

    async def leave_project(self) -> None:
        project_id = self.project_id
        if project_id is not None:
            await self.router.leave(project_id, self.connection_id)
        await self.send(LEFT_PROJECT, {"project_id": project_id})
