"""
Project rooms and mutation fan-out.

BroadcastRouter owns the only shared mutable realtime state: which live
connections are joined to which project. It is created once per app and
injected, never held at module level, so tests can build and reset their own.

Invariants:
    - A connection is a member of at most one room
    - A room's live count is the size of its member set, so leaving twice
      cannot push it below zero
    - Membership changes for one project are serialized by that room's lock
    - A failed or timed-out send evicts the connection, it never raises to
      the caller and never affects persisted data

How to change safely:
    - Never await a send while holding a room lock
    - Notify counts from the member set at send time, not from a cached value
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .protocol import CLIENTS_UPDATED, frame

logger = logging.getLogger(__name__)


class RealtimeConnection(Protocol):
    """Anything that can deliver a JSON frame to one client."""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Room:
    project_id: str
    members: dict[str, RealtimeConnection] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class BroadcastRouter:
    """Per-project room membership, live counts and broadcast.

    Example:
        >>> router = BroadcastRouter(send_timeout_seconds=5.0)
        >>> router.register(conn_id)
        >>> await router.join(project_id, conn_id, websocket)
        >>> await router.broadcast_to_project(project_id, "nodeUpdated", node)
    """

    def __init__(self, send_timeout_seconds: float = 5.0) -> None:
        self.send_timeout_seconds = send_timeout_seconds
        self._rooms: dict[str, Room] = {}
        self._membership: dict[str, str] = {}
        self._connections: set[str] = set()

    def _room(self, project_id: str) -> Room:
        room = self._rooms.get(project_id)
        if room is None:
            room = Room(project_id=project_id)
            self._rooms[project_id] = room
        return room

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def register(self, connection_id: str) -> None:
        """Record a live connection (joined or not)."""
        self._connections.add(connection_id)

    async def unregister(self, connection_id: str) -> None:
        """Forget a connection, leaving its room first."""
        project_id = self._membership.get(connection_id)
        if project_id is not None:
            await self.leave(project_id, connection_id)
        self._connections.discard(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def project_of(self, connection_id: str) -> str | None:
        """Project the connection is joined to, or None when unjoined."""
        return self._membership.get(connection_id)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def count(self, project_id: str) -> int:
        room = self._rooms.get(project_id)
        return len(room.members) if room else 0

    def counts(self) -> dict[str, int]:
        return {pid: len(room.members) for pid, room in self._rooms.items() if room.members}

    async def join(
        self,
        project_id: str,
        connection_id: str,
        connection: RealtimeConnection,
    ) -> int:
        """Add a connection to a room and notify every member of the new count.

        A connection joined elsewhere leaves that room first.

        Returns:
            The room's live count after the join
        """
        previous = self._membership.get(connection_id)
        if previous is not None and previous != project_id:
            await self.leave(previous, connection_id)

        room = self._room(project_id)
        async with room.lock:
            room.members[connection_id] = connection
            self._membership[connection_id] = project_id
            count = len(room.members)

        logger.info(
            "Connection joined project",
            extra={"project_id": project_id, "connection_id": connection_id, "count": count},
        )
        await self._notify_count(project_id)
        return count

    async def leave(self, project_id: str, connection_id: str) -> int:
        """Remove a connection from a room and notify the remaining members.

        Leaving a room the connection is not in changes nothing.

        Returns:
            The room's live count after the leave
        """
        room = self._rooms.get(project_id)
        if room is None:
            return 0

        async with room.lock:
            removed = room.members.pop(connection_id, None) is not None
            if self._membership.get(connection_id) == project_id:
                del self._membership[connection_id]
            count = len(room.members)
            if not room.members:
                self._rooms.pop(project_id, None)

        if removed:
            logger.info(
                "Connection left project",
                extra={"project_id": project_id, "connection_id": connection_id, "count": count},
            )
            if count:
                await self._notify_count(project_id)
        return count

    async def close_room(self, project_id: str) -> list[str]:
        """Drop a room and return all its members to unjoined.

        Returns:
            IDs of the connections that were in the room
        """
        room = self._rooms.pop(project_id, None)
        if room is None:
            return []

        async with room.lock:
            members = list(room.members)
            room.members.clear()
            for connection_id in members:
                if self._membership.get(connection_id) == project_id:
                    del self._membership[connection_id]

        logger.info("Closed project room", extra={"project_id": project_id, "members": len(members)})
        return members

    def reset(self) -> None:
        """Drop all rooms and connections."""
        self._rooms.clear()
        self._membership.clear()
        self._connections.clear()

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _send(self, connection_id: str, connection: RealtimeConnection, message: dict) -> bool:
        try:
            await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Realtime send timed out",
                extra={"connection_id": connection_id, "event": message["event"]},
            )
        except Exception as e:
            logger.warning(
                "Realtime send failed",
                extra={"connection_id": connection_id, "event": message["event"], "error": str(e)},
            )
        return False

    async def broadcast_to_project(
        self,
        project_id: str,
        event: str,
        payload: Any,
        exclude: str | None = None,
    ) -> int:
        """Send an event to every member of a project's room.

        The originator is included unless named in ``exclude``. Members whose
        send fails are evicted and the survivors get a fresh count.

        Returns:
            Number of members the event was delivered to
        """
        room = self._rooms.get(project_id)
        if room is None:
            return 0

        targets = [(cid, conn) for cid, conn in room.members.items() if cid != exclude]
        if not targets:
            return 0

        message = frame(event, payload)
        results = await asyncio.gather(*(self._send(cid, conn, message) for cid, conn in targets))

        failed = [cid for (cid, _), ok in zip(targets, results) if not ok]
        for connection_id in failed:
            await self.leave(project_id, connection_id)

        logger.debug(
            "Broadcast event",
            extra={
                "project_id": project_id,
                "event": event,
                "delivered": len(targets) - len(failed),
                "evicted": len(failed),
            },
        )
        return len(targets) - len(failed)

    async def _notify_count(self, project_id: str) -> None:
        await self.broadcast_to_project(
            project_id,
            CLIENTS_UPDATED,
            {"project_id": project_id, "count": self.count(project_id)},
        )
