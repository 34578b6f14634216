"""
Error taxonomy for the GraphSync server.

Every failure surfaced to a caller is one of these types. The HTTP layer maps
them onto status codes; the realtime layer maps them onto ``error`` events.

Invariants:
    - All errors inherit from GraphSyncError
    - Each error carries a stable machine-readable code
    - Messages are safe to show to end users (no tokens, no SQL)

How to change safely:
    - Never change an existing code string, clients branch on it
    - New error types must also be registered in api.app.STATUS_BY_CODE
"""

from __future__ import annotations

from typing import Any


class GraphSyncError(Exception):
    """Base exception for all GraphSync server errors.

    Attributes:
        message: Human-readable reason
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "GRAPHSYNC_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "error_code": self.code}


class UnauthorizedError(GraphSyncError):
    """No session credential was supplied."""

    def __init__(self, message: str = "Session token is required") -> None:
        super().__init__(message, code="UNAUTHORIZED")


class ForbiddenError(GraphSyncError):
    """A credential was supplied but does not grant access.

    Raised when:
    - The session token is unknown (never issued, or its project was deleted)
    - The caller targets a project other than the one its token resolves to
    """

    def __init__(self, message: str = "Invalid session token") -> None:
        super().__init__(message, code="FORBIDDEN")


InvalidTokenError = ForbiddenError


class NotFoundError(GraphSyncError):
    """Referenced resource does not exist."""

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}", "project", project_id)


class NodeNotFoundError(NotFoundError):
    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node not found: {node_id}", "node", node_id)


class EdgeNotFoundError(NotFoundError):
    def __init__(self, edge_id: str) -> None:
        super().__init__(f"Edge not found: {edge_id}", "edge", edge_id)


class ValidationError(GraphSyncError):
    """Payload is malformed.

    Raised when:
    - A required field is missing
    - A field has the wrong type
    - Path and body identifiers disagree
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details={"errors": errors or []})
        self.errors = errors or []


class PersistenceError(GraphSyncError):
    """The storage transaction failed and was rolled back."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message, code="PERSISTENCE_FAILURE", details={"operation": operation})
        self.operation = operation
