"""
Realtime channel client for GraphSync.

RealtimeChannel keeps one WebSocket to the server's /ws endpoint, dispatches
incoming {"event", "data"} frames to registered handlers, and reconnects with
exponential backoff after an unexpected drop, re-joining the last project.

Connection changes are reported as the pseudo-events ``connect``,
``disconnect`` and ``reconnect`` so callers can tell them apart from
data-level ``error`` events.

Invariants:
    - A handler that raises is logged and never stops dispatch to the others
    - After disconnect() no reconnect is attempted
    - The join token is held in memory only and never logged
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import ClientSettings
from .errors import NetworkError

logger = logging.getLogger(__name__)

CONNECT = "connect"
DISCONNECT = "disconnect"
RECONNECT = "reconnect"

Handler = Callable[[Any], Any]
Connector = Callable[..., Awaitable[Any]]


class RealtimeChannel:
    """WebSocket client for project rooms.

    Example:
        >>> channel = RealtimeChannel("ws://localhost:3001/ws")
        >>> channel.on("nodeUpdated", lambda node: print(node["id"]))
        >>> await channel.connect()
        >>> await channel.join_project(token)
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        settings: ClientSettings | None = None,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            url: WebSocket URL (defaults to settings.ws_url)
            settings: Client settings (loaded from env if not provided)
            connector: Coroutine opening a connection, websockets.connect by default
        """
        self.settings = settings or ClientSettings()
        self.url = url or self.settings.ws_url
        self._connector = connector or websockets.connect
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._token: str | None = None
        self._closing = False
        self.connected = False

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler.

        Returns:
            A function that unregisters the handler
        """
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return unsubscribe

    async def dispatch(self, event: str, data: Any) -> None:
        """Call every handler registered for ``event``."""
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Realtime handler failed", extra={"event": event})

    async def _handle_raw(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropped non-JSON realtime frame")
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            logger.warning("Dropped malformed realtime frame")
            return
        await self.dispatch(message["event"], message.get("data"))

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        self._ws = await self._connector(self.url, open_timeout=self.settings.connect_timeout)
        self.connected = True

    async def connect(self) -> None:
        """Open the connection and start the receive loop.

        Raises:
            NetworkError: If the first connection attempt fails
        """
        if self._task is not None:
            return
        self._closing = False
        try:
            await self._open()
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise NetworkError(f"Realtime connection failed: {e}", url=self.url) from e

        logger.info("Realtime channel connected", extra={"url": self.url})
        await self.dispatch(CONNECT, None)
        self._task = asyncio.create_task(self._run())

    async def disconnect(self) -> None:
        """Close the connection for good."""
        self._closing = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        if self.connected:
            self.connected = False
            await self.dispatch(DISCONNECT, None)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Error closing realtime socket", extra={"error": str(e)})

    async def _receive(self) -> None:
        try:
            async for raw in self._ws:
                await self._handle_raw(raw)
        except ConnectionClosed as e:
            logger.info("Realtime connection closed", extra={"code": e.rcvd.code if e.rcvd else None})
        except OSError as e:
            logger.warning("Realtime connection lost", extra={"error": str(e)})

    async def _run(self) -> None:
        while not self._closing:
            await self._receive()
            if self._closing:
                break

            self.connected = False
            await self._close_socket()
            await self.dispatch(DISCONNECT, None)
            await self._reconnect()

    async def _reconnect(self) -> None:
        """Reconnect with exponential backoff, then re-join the last project."""
        delay = self.settings.reconnect_delay
        attempt = 0
        while not self._closing:
            await asyncio.sleep(delay)
            attempt += 1
            try:
                await self._open()
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning(
                    "Realtime reconnect failed",
                    extra={"attempt": attempt, "retry_in": delay, "error": str(e)},
                )
                delay = min(delay * 2, self.settings.max_reconnect_delay)
                continue

            logger.info("Realtime channel reconnected", extra={"attempt": attempt})
            if self._token is not None:
                try:
                    await self._send("joinProject", {"token": self._token})
                except NetworkError as e:
                    # The receive loop sees the closed socket and retries.
                    logger.warning("Realtime re-join failed", extra={"error": e.message})
            await self.dispatch(RECONNECT, None)
            return

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _send(self, event: str, data: dict[str, Any]) -> None:
        if self._ws is None or not self.connected:
            raise NetworkError("Realtime channel is not connected", url=self.url)
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except (ConnectionClosed, OSError) as e:
            raise NetworkError(f"Realtime send failed: {e}", url=self.url) from e

    async def join_project(self, token: str) -> None:
        """Join the room of the project ``token`` resolves to.

        The token is kept so a reconnect joins the same room again.
        """
        self._token = token
        await self._send("joinProject", {"token": token})

    async def leave_project(self) -> None:
        self._token = None
        await self._send("leaveProject", {})

    async def ping(self) -> None:
        await self._send("ping", {})
