"""
GraphSync Server - Main entry point.

This module starts the GraphSync server: one uvicorn instance serving the
REST API under /api and the realtime channel at /ws.

Usage:
    python -m server.graphsync_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The database schema exists before the first request is accepted
    - Shutdown stops accepting connections before realtime state is dropped

How to change safely:
    - Build new components in api.app.lifespan so tests get them too
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


class Server:
    """GraphSync server orchestrator.

    Attributes:
        config: Server configuration
        app: The FastAPI application

    Example:
        >>> server = Server()
        >>> await server.start()  # returns after shutdown
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self.app = create_app(self.config)

    async def start(self) -> None:
        """Serve until uvicorn handles SIGINT or SIGTERM."""
        self.config.log_config()
        logger.info(
            "Starting GraphSync server",
            extra={"host": self.config.http.host, "port": self.config.http.port},
        )

        uvicorn_config = uvicorn.Config(
            self.app,
            host=self.config.http.host,
            port=self.config.http.port,
            log_config=None,  # keep the handlers installed by setup_logging
            ws="websockets",
        )
        server = uvicorn.Server(uvicorn_config)

        try:
            await server.serve()
        except Exception as e:
            logger.error(f"Server failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("GraphSync server stopped")


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
