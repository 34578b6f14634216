"""
API module for GraphSync - the HTTP and WebSocket surface.
"""

from .app import STATUS_BY_CODE, create_app

__all__ = ["STATUS_BY_CODE", "create_app"]
