"""
Synchronization engine for GraphSync.

SyncEngine is the single write path for graph mutations: every create,
update, delete, import and clear is persisted through the store and then
fanned out through the broadcast router. It also serves the two retrieval
modes clients use to converge: the full snapshot and the delta since a
watermark.

Invariants:
    - A mutation is broadcast only after its transaction committed
    - A broadcast failure never undoes or fails a committed mutation
    - Snapshot and delta responses carry the watermark read alongside the
      rows, so a client that stores it as its cursor never skips a write

How to change safely:
    - New mutation kinds need a store method, an event name in
      realtime.protocol, and a client-side handler in the SDK mirror
    - Do not widen delta queries to >=, clients rely on the strict bound
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..realtime import BroadcastRouter
from ..realtime.protocol import (
    DATA_CLEARED,
    DATA_IMPORTED,
    EDGE_DELETED,
    EDGE_UPDATED,
    NODE_DELETED,
    NODE_UPDATED,
    PROJECT_DELETED,
)
from ..store import (
    ChangeSet,
    DeleteResult,
    Edge,
    GraphSnapshot,
    GraphStore,
    ImportResult,
    Node,
)

logger = logging.getLogger(__name__)


def parse_since(value: Any) -> int:
    """Parse a client-supplied watermark, falling back to 0.

    Negative and non-numeric values both mean "from the beginning".
    """
    try:
        since = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return max(since, 0)


class SyncEngine:
    """Persists mutations, broadcasts them and answers sync queries.

    Example:
        >>> engine = SyncEngine(store, router)
        >>> node = await engine.save_node({"id": "n1", "label": "A", "x": 0, "y": 0}, pid)
        >>> changes = await engine.changes_since(0, pid)
    """

    def __init__(self, store: GraphStore, router: BroadcastRouter) -> None:
        self.store = store
        self.router = router

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def snapshot(self, project_id: str) -> GraphSnapshot:
        return await self.store.get_graph(project_id)

    async def changes_since(self, since: Any, project_id: str) -> ChangeSet:
        """Rows written strictly after ``since``.

        Args:
            since: Previous watermark, parsed leniently
            project_id: Resolved project

        Returns:
            ChangeSet whose ``timestamp`` the client should store as its new cursor
        """
        changes = await self.store.get_changes_since(parse_since(since), project_id)
        logger.debug(
            "Delta sync",
            extra={
                "project_id": project_id,
                "since": changes.since,
                "timestamp": changes.timestamp,
                "nodes": len(changes.nodes),
                "edges": len(changes.edges),
            },
        )
        return changes

    async def watermark(self, project_id: str) -> int:
        return await self.store.get_watermark(project_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def save_node(self, node: Mapping[str, Any], project_id: str) -> Node:
        saved = await self.store.upsert_node(node, project_id)
        await self.router.broadcast_to_project(project_id, NODE_UPDATED, saved.to_dict())
        return saved

    async def save_nodes(self, nodes: Iterable[Mapping[str, Any]], project_id: str) -> int:
        """Write a batch of nodes atomically, then broadcast each one."""
        batch = list(nodes)
        count = await self.store.bulk_upsert_nodes(batch, project_id)
        for node in await self._fetch_nodes(project_id, {n["id"] for n in batch}):
            await self.router.broadcast_to_project(project_id, NODE_UPDATED, node.to_dict())
        return count

    async def delete_node(self, node_id: str, project_id: str) -> DeleteResult:
        result = await self.store.delete_node(node_id, project_id)
        await self.router.broadcast_to_project(
            project_id,
            NODE_DELETED,
            {"id": node_id, "edges_deleted": result.edges_deleted},
        )
        return result

    async def save_edge(self, edge: Mapping[str, Any], project_id: str) -> Edge:
        saved = await self.store.upsert_edge(edge, project_id)
        await self.router.broadcast_to_project(project_id, EDGE_UPDATED, saved.to_dict())
        return saved

    async def save_edges(self, edges: Iterable[Mapping[str, Any]], project_id: str) -> int:
        """Write a batch of edges atomically, then broadcast each one."""
        batch = list(edges)
        count = await self.store.bulk_upsert_edges(batch, project_id)
        for edge in batch:
            payload = {"id": edge["id"], "source": edge["source"], "target": edge["target"]}
            await self.router.broadcast_to_project(project_id, EDGE_UPDATED, payload)
        return count

    async def delete_edge(self, edge_id: str, project_id: str) -> None:
        await self.store.delete_edge(edge_id, project_id)
        await self.router.broadcast_to_project(project_id, EDGE_DELETED, {"id": edge_id})

    async def import_graph(
        self,
        nodes: Iterable[Mapping[str, Any]],
        edges: Iterable[Mapping[str, Any]],
        project_id: str,
    ) -> ImportResult:
        """Replace the project's graph and broadcast the stored result."""
        result = await self.store.import_into_project(nodes, edges, project_id)
        graph = await self.store.get_graph(project_id)
        await self.router.broadcast_to_project(
            project_id,
            DATA_IMPORTED,
            {
                "nodes": [n.to_dict() for n in graph.nodes],
                "edges": [e.to_dict() for e in graph.edges],
            },
        )
        return result

    async def clear(self, project_id: str) -> int:
        watermark = await self.store.clear_project(project_id)
        await self.router.broadcast_to_project(project_id, DATA_CLEARED, {})
        return watermark

    async def delete_project(self, project_id: str) -> None:
        """Delete the project, tell its room, then close the room."""
        await self.store.delete_project(project_id)
        await self.router.broadcast_to_project(project_id, PROJECT_DELETED, {"id": project_id})
        await self.router.close_room(project_id)

    async def _fetch_nodes(self, project_id: str, node_ids: set[str]) -> list[Node]:
        return [n for n in await self.store.get_nodes(project_id) if n.id in node_ids]
