"""
GraphSync Python SDK - client library for the GraphSync server.

This SDK provides:
- GraphClient for the REST API
- RealtimeChannel for project rooms over WebSocket
- GraphMirror, the local id-keyed copy of a project's graph
- ProjectSession, which keeps a mirror converged with the server

Example:
    >>> from graphsync_sdk import GraphClient, ProjectSession, RealtimeChannel
    >>>
    >>> async with GraphClient("http://localhost:3001") as client:
    ...     project, token = await client.create_project("Demo")
    ...     channel = RealtimeChannel("ws://localhost:3001/ws")
    ...     await channel.connect()
    ...     session = ProjectSession(client, channel, token)
    ...     await session.open()
    ...     await session.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})

Invariants:
    - Every graph call is scoped by the project the session token resolves to
    - Local state is last-write-wins, the server's copy wins on sync

Version: 0.1.0
"""

__version__ = "0.1.0"

from .client import GraphClient
from .config import ClientSettings
from .errors import (
    ForbiddenError,
    GraphSyncClientError,
    HttpError,
    NetworkError,
    NotFoundError,
    ServerError,
    UnauthorizedError,
    ValidationError,
)
from .mirror import GraphMirror
from .models import DeleteResult, Edge, GraphData, ImportResult, Node, Project
from .realtime import RealtimeChannel
from .session import ProjectSession

__all__ = [
    "ClientSettings",
    "DeleteResult",
    "Edge",
    "ForbiddenError",
    "GraphClient",
    "GraphData",
    "GraphMirror",
    "GraphSyncClientError",
    "HttpError",
    "ImportResult",
    "NetworkError",
    "Node",
    "NotFoundError",
    "Project",
    "ProjectSession",
    "RealtimeChannel",
    "ServerError",
    "UnauthorizedError",
    "ValidationError",
    "__version__",
]
