"""
Request models for the GraphSync REST API.

These are the structural contract at the API boundary: required fields,
their types and non-emptiness are enforced here so no handler re-checks them.
Unknown fields are ignored, in particular a client-supplied project id never
reaches the store.
"""

from __future__ import annotations

from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt

# Coordinates must survive the trip through a SQLite REAL and back out as JSON.
MAX_COORDINATE = 10**15

# Strict so that "0" and true are rejected as coordinates.
Coordinate = Union[
    Annotated[StrictInt, Field(ge=-MAX_COORDINATE, le=MAX_COORDINATE)],
    Annotated[StrictFloat, Field(ge=-MAX_COORDINATE, le=MAX_COORDINATE, allow_inf_nan=False)],
]


class NodeIn(BaseModel):
    """A node as written by a client."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Node ID, unique within the project")
    label: str = Field(..., min_length=1, description="Display label")
    x: Coordinate = Field(..., description="Horizontal position")
    y: Coordinate = Field(..., description="Vertical position")
    description: str | None = Field("", description="Free text description")
    icon: str | None = Field("circle", description="Icon name")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump()


class EdgeIn(BaseModel):
    """An edge as written by a client."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Edge ID, unique within the project")
    source: str = Field(..., min_length=1, description="Source node ID")
    target: str = Field(..., min_length=1, description="Target node ID")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump()


class ImportIn(BaseModel):
    """A full graph replacing the project's current one."""

    nodes: list[NodeIn] = Field(..., description="Nodes to import")
    edges: list[EdgeIn] = Field(..., description="Edges to import")


class ProjectCreateIn(BaseModel):
    """Request to create a project."""

    name: str = Field(..., min_length=1, description="Project name")
    description: str | None = Field(None, description="Project description")
