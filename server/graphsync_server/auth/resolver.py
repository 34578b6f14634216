"""
Session token resolution for GraphSync.

Every authorized REST call and every realtime join goes through
SessionResolver. Resolution yields a SessionContext whose project id is the
only project scope downstream components may use.

Invariants:
    - A missing credential is UnauthorizedError, an unknown one ForbiddenError
    - Tokens are never logged in full
    - Callers never trust a client-supplied project id without require_project

How to change safely:
    - Keep the resolver stateless, the session table is the only state
    - New credential carriers must go through extract_token
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import ForbiddenError, UnauthorizedError
from ..store import GraphStore, Project

logger = logging.getLogger(__name__)

BEARER_SCHEME = "bearer"


def token_hint(token: str) -> str:
    """Short, log-safe prefix of a token."""
    return f"{token[:6]}..." if len(token) > 6 else "***"


@dataclass(frozen=True)
class SessionContext:
    """A resolved session.

    Attributes:
        token: The presented session token
        project: Project the token is bound to
    """

    token: str
    project: Project

    @property
    def project_id(self) -> str:
        return self.project.id


class SessionResolver:
    """Maps session tokens to projects.

    Example:
        >>> resolver = SessionResolver(store)
        >>> ctx = await resolver.resolve(token)
        >>> resolver.require_project(ctx, path_project_id)
    """

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    @staticmethod
    def extract_token(
        authorization: str | None,
        session_token: str | None = None,
    ) -> str | None:
        """Pull a token out of request headers.

        Args:
            authorization: Value of the Authorization header ("Bearer <token>")
            session_token: Value of the X-Session-Token header

        Returns:
            The token, or None if neither header carries one
        """
        if authorization:
            scheme, _, rest = authorization.strip().partition(" ")
            value = rest.strip() if scheme.lower() == BEARER_SCHEME else authorization.strip()
            if value:
                return value
        if session_token and session_token.strip():
            return session_token.strip()
        return None

    async def resolve(self, token: str | None) -> SessionContext:
        """Resolve a token.

        Raises:
            UnauthorizedError: If no token was supplied
            ForbiddenError: If the token is unknown
        """
        if not token:
            raise UnauthorizedError()

        try:
            project = await self.store.resolve_session(token)
        except ForbiddenError:
            logger.info("Rejected unknown session token", extra={"token_hint": token_hint(token)})
            raise

        logger.debug(
            "Resolved session",
            extra={"project_id": project.id, "token_hint": token_hint(token)},
        )
        return SessionContext(token=token, project=project)

    @staticmethod
    def require_project(context: SessionContext, project_id: str) -> None:
        """Check that a caller-named project is the session's own project.

        Raises:
            ForbiddenError: If the ids differ
        """
        if context.project_id != project_id:
            logger.warning(
                "Cross-project access rejected",
                extra={"session_project": context.project_id, "requested_project": project_id},
            )
            raise ForbiddenError("Session does not grant access to this project")
