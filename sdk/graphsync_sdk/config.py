"""
Configuration for GraphSync clients.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Client configuration loaded from environment."""

    # Server
    base_url: str = Field(default="http://localhost:3001", description="GraphSync server URL")

    # Timeouts
    request_timeout: float = Field(default=10.0, description="REST request timeout seconds")
    connect_timeout: float = Field(default=5.0, description="Connection timeout seconds")

    # Background polling
    sync_interval: float = Field(default=10.0, description="Delta sync poll interval seconds")
    health_interval: float = Field(default=5.0, description="Connection health poll interval seconds")

    # Realtime reconnect backoff
    reconnect_delay: float = Field(default=1.0, description="First reconnect delay seconds")
    max_reconnect_delay: float = Field(default=30.0, description="Reconnect delay cap seconds")

    model_config = {"env_prefix": "GRAPHSYNC_"}

    @property
    def ws_url(self) -> str:
        """Realtime endpoint derived from base_url."""
        url = self.base_url.rstrip("/")
        if url.startswith("https://"):
            url = "wss://" + url[len("https://") :]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://") :]
        return f"{url}/ws"
