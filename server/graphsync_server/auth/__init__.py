"""
Auth module for GraphSync - session token resolution.

Invariants:
    - Resolution is a pure lookup against the session table
    - The resolved project id is the only project scope used downstream
"""

from .resolver import SessionContext, SessionResolver, token_hint

__all__ = ["SessionContext", "SessionResolver", "token_hint"]
