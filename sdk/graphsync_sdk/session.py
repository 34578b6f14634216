"""
Project session: the client reconciliation loop for one open project.

ProjectSession owns a GraphMirror and keeps it converged with the server
through three inputs: optimistic local mutations, realtime broadcasts and a
periodic delta sync. It also polls server health so connectivity is reported
separately from data errors.

Invariants:
    - last_sync_timestamp only ever takes a server watermark (snapshot or
      delta timestamp), never the local clock
    - Optimistic mutations are never rolled back; a failed write is reported
      in sync_status and the mirror stays ahead of the server
    - close() stops every background task before the mirror is discarded,
      and responses arriving after close() are dropped
    - projectDeleted, or a Forbidden answer, closes the session

How to change safely:
    - Route every await that can outlive the session through _alive() checks
    - Keep status strings stable, UIs display them verbatim
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Iterable

from .client import GraphClient
from .config import ClientSettings
from .errors import ForbiddenError, GraphSyncClientError, NetworkError
from .mirror import MUTATION_EVENTS, PROJECT_DELETED, GraphMirror
from .models import Edge, EdgeLike, GraphData, Node, NodeLike, Project
from .realtime import CONNECT, DISCONNECT, RECONNECT, RealtimeChannel

logger = logging.getLogger(__name__)

CONNECTED = "connected"
DISCONNECTED = "disconnected"
RECONNECTED = "reconnected"


class ProjectSession:
    """One open project on the client side.

    Attributes:
        client: REST client carrying the session token
        channel: Realtime channel, or None for a polling-only session
        mirror: Local graph
        project: The resolved project, set by open()
        last_sync_timestamp: Delta-sync cursor (server watermark)
        sync_status: Human-readable status of the last data operation
        connection_state: connected, disconnected or reconnected

    Example:
        >>> session = ProjectSession(client, channel, token)
        >>> await session.open()
        >>> await session.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})
        >>> await session.close()
    """

    def __init__(
        self,
        client: GraphClient,
        channel: RealtimeChannel | None,
        token: str,
        *,
        settings: ClientSettings | None = None,
        on_closed: Callable[[str], Any] | None = None,
    ) -> None:
        self.client = client
        self.channel = channel
        self.token = token
        self.settings = settings or client.settings
        self.on_closed = on_closed

        self.mirror = GraphMirror()
        self.project: Project | None = None
        self.last_sync_timestamp = 0
        self.sync_status = "Not synced"
        self.connection_state = DISCONNECTED
        self.closed_reason: str | None = None

        self._opened = False
        self._closed = False
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def _alive(self) -> bool:
        return not self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> Project:
        """Resolve the token, load the snapshot, join the room, start polling.

        Raises:
            ForbiddenError: If the token is unknown
            NetworkError: If the server is unreachable
        """
        self.client.token = self.token
        project = await self.client.current_project()
        graph = await self.client.get_graph()

        self.project = project
        self._load(graph)
        self.connection_state = CONNECTED
        self.sync_status = f"Loaded {len(graph.nodes)} nodes, {len(graph.edges)} edges"

        if self.channel is not None:
            self._subscribe(self.channel)
            await self.channel.join_project(self.token)

        self._opened = True
        self._spawn(self._sync_loop(), "delta-sync")
        self._spawn(self._health_loop(), "health")

        logger.info(
            "Opened project session",
            extra={"project_id": project.id, "nodes": len(graph.nodes), "edges": len(graph.edges)},
        )
        return project

    async def close(self, reason: str = "closed") -> None:
        """Stop background work, leave the room and discard the mirror."""
        if self._closed:
            return
        self._closed = True
        self.closed_reason = reason

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        if self.channel is not None and self.channel.connected:
            try:
                await self.channel.leave_project()
            except NetworkError as e:
                logger.debug("Leave on close failed", extra={"error": e.message})

        self.mirror.clear()
        logger.info(
            "Closed project session",
            extra={"project_id": self.project.id if self.project else None, "reason": reason},
        )
        if self.on_closed is not None:
            self.on_closed(reason)

    async def __aenter__(self) -> ProjectSession:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _load(self, graph: GraphData) -> None:
        self.mirror.load_snapshot(graph)
        self.last_sync_timestamp = graph.timestamp

    # ------------------------------------------------------------------
    # Realtime input
    # ------------------------------------------------------------------

    def _subscribe(self, channel: RealtimeChannel) -> None:
        for event in MUTATION_EVENTS:
            self._unsubscribers.append(channel.on(event, self._make_event_handler(event)))
        self._unsubscribers.extend(
            [
                channel.on("initialData", self._on_initial_data),
                channel.on("error", self._on_error),
                channel.on(CONNECT, lambda _: self._set_connection(CONNECTED)),
                channel.on(DISCONNECT, lambda _: self._set_connection(DISCONNECTED)),
                channel.on(RECONNECT, self._on_reconnect),
            ]
        )

    def _make_event_handler(self, event: str) -> Callable[[Any], Any]:
        async def handle(data: Any) -> None:
            if not self._alive():
                return
            self.mirror.apply_event(event, data or {})
            if event == PROJECT_DELETED:
                await self.close("project deleted")

        return handle

    def _on_initial_data(self, data: Any) -> None:
        if not self._alive() or not isinstance(data, dict):
            return
        self._load(GraphData.from_dict(data))
        if data.get("project"):
            self.project = Project.from_dict(data["project"])

    async def _on_error(self, data: Any) -> None:
        if not self._alive() or not isinstance(data, dict):
            return
        logger.warning("Realtime error", extra={"error_code": data.get("code"), "error": data.get("message")})
        if data.get("code") == "FORBIDDEN":
            await self.close("token invalidated")

    def _set_connection(self, state: str) -> None:
        if self._alive():
            self.connection_state = state

    def _on_reconnect(self, _: Any) -> None:
        if not self._alive():
            return
        self.connection_state = RECONNECTED
        self._spawn(self.sync_now(), "reconnect-sync")

    # ------------------------------------------------------------------
    # Delta sync and health
    # ------------------------------------------------------------------

    async def sync_now(self) -> bool:
        """Run one delta-sync round.

        Returns:
            True if the delta was merged, False on failure or after close()
        """
        if not self._alive():
            return False
        since = self.last_sync_timestamp
        try:
            changes = await self.client.get_changes(since)
        except ForbiddenError:
            await self.close("token invalidated")
            return False
        except GraphSyncClientError as e:
            if self._alive():
                self.sync_status = "Sync failed"
            logger.warning("Delta sync failed", extra={"since": since, "error_code": e.code})
            return False

        if not self._alive():
            return False

        node_count, edge_count = self.mirror.merge_changes(changes.nodes, changes.edges)
        self.last_sync_timestamp = changes.timestamp
        if node_count or edge_count:
            self.sync_status = f"Synced {node_count} nodes, {edge_count} edges"
        else:
            self.sync_status = "No changes to sync"
        return True

    async def _sync_loop(self) -> None:
        while self._alive():
            await asyncio.sleep(self.settings.sync_interval)
            await self.sync_now()

    async def check_health(self) -> bool:
        """Poll server status and update connection_state."""
        try:
            await self.client.status()
        except GraphSyncClientError as e:
            if self._alive():
                self.connection_state = DISCONNECTED
            logger.debug("Health check failed", extra={"error_code": e.code})
            return False
        if self._alive() and self.connection_state == DISCONNECTED:
            self.connection_state = RECONNECTED
        return True

    async def _health_loop(self) -> None:
        while self._alive():
            await asyncio.sleep(self.settings.health_interval)
            await self.check_health()

    # ------------------------------------------------------------------
    # Optimistic mutations
    # ------------------------------------------------------------------

    async def _write(self, action: Callable[[], Coroutine[Any, Any, Any]], failure: str) -> Any:
        """Send a write after the mirror was updated; report but keep local state on failure."""
        try:
            result = await action()
        except ForbiddenError:
            self.sync_status = failure
            await self.close("token invalidated")
            return None
        except GraphSyncClientError as e:
            if self._alive():
                self.sync_status = failure
            logger.warning(failure, extra={"error_code": e.code, "error": e.message})
            return None
        return result

    async def save_node(self, node: NodeLike) -> bool:
        node = self.mirror.upsert_node(node)
        saved = await self._write(lambda: self.client.save_node(node), "Failed to save node")
        if saved is None:
            return False
        if self._alive():
            self.mirror.upsert_node(saved)
        return True

    async def delete_node(self, node_id: str) -> bool:
        self.mirror.remove_node(node_id)
        result = await self._write(lambda: self.client.delete_node(node_id), "Failed to delete node")
        return result is not None

    async def save_edge(self, edge: EdgeLike) -> bool:
        edge = self.mirror.upsert_edge(edge)
        saved = await self._write(lambda: self.client.save_edge(edge), "Failed to save edge")
        return saved is not None

    async def delete_edge(self, edge_id: str) -> bool:
        self.mirror.remove_edge(edge_id)
        result = await self._write(lambda: self._delete_edge(edge_id), "Failed to delete edge")
        return result is not None

    async def _delete_edge(self, edge_id: str) -> bool:
        await self.client.delete_edge(edge_id)
        return True

    async def import_graph(self, nodes: Iterable[NodeLike], edges: Iterable[EdgeLike]) -> bool:
        nodes = [Node.coerce(n) for n in nodes]
        edges = [Edge.coerce(e) for e in edges]
        self.mirror.replace(nodes, edges)
        result = await self._write(lambda: self.client.import_graph(nodes, edges), "Import failed")
        return result is not None

    async def clear(self) -> bool:
        self.mirror.clear()
        result = await self._write(self.client.clear, "Failed to clear project")
        return result is not None
