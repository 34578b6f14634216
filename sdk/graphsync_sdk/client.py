"""
REST client for the GraphSync server.

GraphClient wraps every REST endpoint with bearer-token auth and bounded
timeouts. It raises typed errors from errors.py and never retries: the
caller decides what a failure means.

Example:
    >>> async with GraphClient("http://localhost:3001") as client:
    ...     project, token = await client.create_project("Demo")
    ...     client.token = token
    ...     await client.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from .config import ClientSettings
from .errors import NetworkError, error_from_response
from .models import (
    DeleteResult,
    Edge,
    EdgeLike,
    GraphData,
    ImportResult,
    Node,
    NodeLike,
    Project,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


class GraphClient:
    """Async client for the GraphSync REST API.

    Attributes:
        base_url: Server base URL
        token: Session token sent as a bearer credential, if any
        settings: Client settings (timeouts)
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        settings: ClientSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Server URL (defaults to settings.base_url)
            token: Session token for authorized calls
            settings: Client settings (loaded from env if not provided)
            transport: Optional httpx transport, e.g. ASGITransport in tests
        """
        self.settings = settings or ClientSettings()
        self.base_url = (base_url or self.settings.base_url).rstrip("/")
        self.token = token
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                self.settings.request_timeout,
                connect=self.settings.connect_timeout,
            ),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> GraphClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        prefix: str = API_PREFIX,
    ) -> Any:
        """Send one request and decode the JSON body.

        Raises:
            NetworkError: On transport failure or timeout
            HttpError: Typed subclass for any status >= 400
        """
        await self.connect()
        assert self._http is not None
        url = f"{prefix}{path}"

        try:
            response = await self._http.request(method, url, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {method} {url}", url=url) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Request failed: {method} {url}: {e}", url=url) from e

        if response.status_code >= 400:
            error = error_from_response(response)
            logger.debug(
                "Request rejected",
                extra={"method": method, "url": url, "status": response.status_code, "error_code": error.code},
            )
            raise error
        return response.json()

    # --- Server ---

    async def status(self) -> dict[str, Any]:
        """Server liveness and total realtime connections."""
        return await self._request("GET", "/status")

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health", prefix="")

    # --- Projects ---

    async def create_project(self, name: str, description: str | None = None) -> tuple[Project, str]:
        """Create a project.

        Returns:
            Tuple of (project, its first session token)
        """
        body = await self._request("POST", "/projects", {"name": name, "description": description})
        return Project.from_dict(body["project"]), body["token"]

    async def list_projects(self) -> list[Project]:
        body = await self._request("GET", "/projects")
        return [Project.from_dict(p) for p in body["projects"]]

    async def join_project(self, project_id: str) -> tuple[Project, str]:
        """Mint a new session token for an existing project."""
        body = await self._request("POST", f"/projects/{project_id}/join")
        return Project.from_dict(body["project"]), body["token"]

    async def current_project(self) -> Project:
        """Resolve this client's token to its project."""
        body = await self._request("GET", "/projects/current")
        return Project.from_dict(body["project"])

    async def delete_project(self, project_id: str) -> None:
        await self._request("DELETE", f"/projects/{project_id}")

    async def get_stats(self) -> dict[str, int]:
        return await self._request("GET", "/stats")

    # --- Graph ---

    async def get_graph(self) -> GraphData:
        return GraphData.from_dict(await self._request("GET", "/graph"))

    async def get_nodes(self) -> list[Node]:
        body = await self._request("GET", "/nodes")
        return [Node.from_dict(n) for n in body["nodes"]]

    async def get_edges(self) -> list[Edge]:
        body = await self._request("GET", "/edges")
        return [Edge.from_dict(e) for e in body["edges"]]

    async def save_node(self, node: NodeLike) -> Node:
        """Create or replace a node."""
        body = await self._request("POST", "/nodes", Node.coerce(node).to_dict())
        return Node.from_dict(body["node"])

    async def update_node(self, node: NodeLike) -> Node:
        node = Node.coerce(node)
        body = await self._request("PUT", f"/nodes/{node.id}", node.to_dict())
        return Node.from_dict(body["node"])

    async def delete_node(self, node_id: str) -> DeleteResult:
        """Delete a node; the server also deletes its edges."""
        body = await self._request("DELETE", f"/nodes/{node_id}")
        return DeleteResult(nodes_deleted=body["nodes_deleted"], edges_deleted=body["edges_deleted"])

    async def save_edge(self, edge: EdgeLike) -> Edge:
        body = await self._request("POST", "/edges", Edge.coerce(edge).to_dict())
        return Edge.from_dict(body["edge"])

    async def update_edge(self, edge: EdgeLike) -> Edge:
        edge = Edge.coerce(edge)
        body = await self._request("PUT", f"/edges/{edge.id}", edge.to_dict())
        return Edge.from_dict(body["edge"])

    async def delete_edge(self, edge_id: str) -> None:
        await self._request("DELETE", f"/edges/{edge_id}")

    # --- Sync ---

    async def get_changes(self, since: int) -> GraphData:
        """Rows written after ``since``; store the result's timestamp as the next cursor."""
        return GraphData.from_dict(await self._request("GET", f"/changes/{since}"))

    async def get_sync_timestamp(self) -> int:
        body = await self._request("GET", "/sync/timestamp")
        return body["timestamp"]

    async def import_graph(self, nodes: Iterable[NodeLike], edges: Iterable[EdgeLike]) -> ImportResult:
        """Replace the project's graph."""
        body = await self._request(
            "POST",
            "/import",
            {
                "nodes": [Node.coerce(n).to_dict() for n in nodes],
                "edges": [Edge.coerce(e).to_dict() for e in edges],
            },
        )
        return ImportResult(node_count=body["node_count"], edge_count=body["edge_count"])

    async def clear(self) -> int:
        """Delete every node and edge; returns the new watermark."""
        body = await self._request("POST", "/clear")
        return body["timestamp"]
