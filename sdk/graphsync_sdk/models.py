"""
Client-side data types for GraphSync.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union


@dataclass
class Project:
    """A project as seen by the client.

    Attributes:
        id: Project identifier
        name: Display name
        description: Free text description
        created_at: Creation timestamp (Unix ms)
        updated_at: Last write timestamp (Unix ms)
        connected_clients: Live realtime connections (project listings only)
    """

    id: str
    name: str
    description: str = ""
    created_at: int = 0
    updated_at: int = 0
    connected_clients: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Project:
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            created_at=data.get("created_at") or 0,
            updated_at=data.get("updated_at") or 0,
            connected_clients=data.get("connected_clients") or 0,
        )


@dataclass
class Node:
    """A graph node.

    Attributes:
        id: Node identifier, unique within the project
        label: Display label
        x: Horizontal position
        y: Vertical position
        description: Free text description
        icon: Icon name
        updated_at: Server watermark of the last write, None until confirmed
    """

    id: str
    label: str
    x: float
    y: float
    description: str = ""
    icon: str = "circle"
    updated_at: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Node:
        return cls(
            id=data["id"],
            label=data["label"],
            x=data["x"],
            y=data["y"],
            description=data.get("description") or "",
            icon=data.get("icon") or "circle",
            updated_at=data.get("updated_at"),
        )

    @classmethod
    def coerce(cls, value: NodeLike) -> Node:
        return value if isinstance(value, Node) else cls.from_dict(value)

    def to_dict(self) -> dict[str, Any]:
        """Payload sent to the server; updated_at is server-assigned."""
        return {
            "id": self.id,
            "label": self.label,
            "x": self.x,
            "y": self.y,
            "description": self.description,
            "icon": self.icon,
        }


@dataclass
class Edge:
    """A graph edge between two nodes of the same project."""

    id: str
    source: str
    target: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Edge:
        return cls(id=data["id"], source=data["source"], target=data["target"])

    @classmethod
    def coerce(cls, value: EdgeLike) -> Edge:
        return value if isinstance(value, Edge) else cls.from_dict(value)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "source": self.source, "target": self.target}


NodeLike = Union[Node, Mapping[str, Any]]
EdgeLike = Union[Edge, Mapping[str, Any]]


@dataclass
class GraphData:
    """Nodes and edges plus the server watermark they were read at.

    Used for both full snapshots and delta responses.
    """

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    timestamp: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GraphData:
        return cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
            timestamp=data.get("timestamp") or 0,
        )


@dataclass
class DeleteResult:
    nodes_deleted: int
    edges_deleted: int


@dataclass
class ImportResult:
    node_count: int
    edge_count: int
