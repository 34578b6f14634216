"""
Wire format of the realtime channel.

Every frame in either direction is a JSON object {"event": <name>, "data": <payload>}.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Client -> server
JOIN_PROJECT = "joinProject"
LEAVE_PROJECT = "leaveProject"
PING = "ping"

# Server -> client
INITIAL_DATA = "initialData"
CLIENTS_UPDATED = "clientsUpdated"
NODE_UPDATED = "nodeUpdated"
NODE_DELETED = "nodeDeleted"
EDGE_UPDATED = "edgeUpdated"
EDGE_DELETED = "edgeDeleted"
DATA_IMPORTED = "dataImported"
DATA_CLEARED = "dataCleared"
PROJECT_DELETED = "projectDeleted"
LEFT_PROJECT = "leftProject"
PONG = "pong"
ERROR = "error"


class ClientFrame(BaseModel):
    """A frame received from a client."""

    model_config = ConfigDict(extra="ignore")

    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


def frame(event: str, data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}
