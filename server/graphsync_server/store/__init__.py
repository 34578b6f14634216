"""
Store module for GraphSync - durable projects, sessions and graphs.

Invariants:
    - One SQLite database holds every project
    - Mutations and watermark bumps share a transaction
    - SQLite uses WAL mode for concurrent reads during writes

How to change safely:
    - Use transactions for all multi-statement operations
    - Test cascade behavior whenever the schema changes
"""

from .graph_store import (
    ChangeSet,
    DeleteResult,
    Edge,
    GraphSnapshot,
    GraphStore,
    ImportResult,
    Node,
    Project,
)

__all__ = [
    "ChangeSet",
    "DeleteResult",
    "Edge",
    "GraphSnapshot",
    "GraphStore",
    "ImportResult",
    "Node",
    "Project",
]
