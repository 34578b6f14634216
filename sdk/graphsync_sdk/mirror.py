"""
Client-side mirror of one project's graph.

GraphMirror holds id-keyed node and edge maps. Optimistic local edits,
realtime broadcasts and delta-sync results all land here through the same
upsert-by-id and remove-by-id operations, so applying any of them twice is a
no-op and arrival order only decides which write is visible last.

Invariants:
    - Removing a node removes every edge that references it, in the same call
    - Upserts overwrite unconditionally (last write wins, no version check)
    - Deleted rows never come back through merge_changes: deltas carry no
      tombstones, only a full snapshot drops rows a client missed deletes for
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from .models import Edge, EdgeLike, GraphData, Node, NodeLike

NODE_UPDATED = "nodeUpdated"
NODE_DELETED = "nodeDeleted"
EDGE_UPDATED = "edgeUpdated"
EDGE_DELETED = "edgeDeleted"
DATA_IMPORTED = "dataImported"
DATA_CLEARED = "dataCleared"
PROJECT_DELETED = "projectDeleted"

MUTATION_EVENTS = (
    NODE_UPDATED,
    NODE_DELETED,
    EDGE_UPDATED,
    EDGE_DELETED,
    DATA_IMPORTED,
    DATA_CLEARED,
    PROJECT_DELETED,
)


class GraphMirror:
    """Local copy of a project's nodes and edges.

    Example:
        >>> mirror = GraphMirror()
        >>> mirror.load_snapshot(await client.get_graph())
        >>> mirror.apply_event("nodeDeleted", {"id": "n1"})
    """

    def __init__(self) -> None:
        self.nodes: dict[str, Node] = {}
        self.edges: dict[str, Edge] = {}

    def __len__(self) -> int:
        return len(self.nodes) + len(self.edges)

    def load_snapshot(self, graph: GraphData) -> None:
        """Replace the mirror with a full snapshot."""
        self.replace(graph.nodes, graph.edges)

    def replace(self, nodes: Iterable[NodeLike], edges: Iterable[EdgeLike]) -> None:
        self.nodes = {}
        self.edges = {}
        for node in nodes:
            self.upsert_node(node)
        for edge in edges:
            self.upsert_edge(edge)

    def clear(self) -> None:
        self.nodes.clear()
        self.edges.clear()

    def upsert_node(self, node: NodeLike) -> Node:
        node = Node.coerce(node)
        self.nodes[node.id] = node
        return node

    def remove_node(self, node_id: str) -> list[str]:
        """Remove a node and every edge touching it.

        Returns:
            IDs of the edges removed with the node
        """
        self.nodes.pop(node_id, None)
        dangling = [
            edge_id
            for edge_id, edge in self.edges.items()
            if edge.source == node_id or edge.target == node_id
        ]
        for edge_id in dangling:
            del self.edges[edge_id]
        return dangling

    def upsert_edge(self, edge: EdgeLike) -> Edge:
        edge = Edge.coerce(edge)
        self.edges[edge.id] = edge
        return edge

    def remove_edge(self, edge_id: str) -> bool:
        return self.edges.pop(edge_id, None) is not None

    def merge_changes(
        self,
        nodes: Iterable[NodeLike],
        edges: Iterable[EdgeLike],
    ) -> tuple[int, int]:
        """Upsert a delta-sync result.

        Returns:
            Tuple of (nodes merged, edges merged)
        """
        node_count = edge_count = 0
        for node in nodes:
            self.upsert_node(node)
            node_count += 1
        for edge in edges:
            self.upsert_edge(edge)
            edge_count += 1
        return node_count, edge_count

    def apply_event(self, event: str, data: Mapping[str, Any]) -> bool:
        """Apply one realtime mutation event.

        Returns:
            True if the event was a graph mutation, False if it was ignored
        """
        if event == NODE_UPDATED:
            self.upsert_node(data)
        elif event == NODE_DELETED:
            self.remove_node(data["id"])
        elif event == EDGE_UPDATED:
            self.upsert_edge(data)
        elif event == EDGE_DELETED:
            self.remove_edge(data["id"])
        elif event == DATA_IMPORTED:
            self.replace(data.get("nodes") or [], data.get("edges") or [])
        elif event in (DATA_CLEARED, PROJECT_DELETED):
            self.clear()
        else:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": [e.to_dict() for e in self.edges.values()],
        }
