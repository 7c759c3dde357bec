"""
Realtime channel to the world simulation backend.

Opens one websocket per client at ``/ws/{world_id}``, dispatches inbound JSON
events to a handler and keeps the connection alive with application-level
``{"type": "ping"}`` messages. The channel never reconnects by itself: a
dropped connection stays CLOSED until ``connect()`` is called again.

The transport is abstracted behind the ``Connection`` protocol so the
keepalive and dispatch logic can run against a fake in tests; the default
connector wraps the ``websockets`` client.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from .config import ClientConfig
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger("spelltale.realtime")

PING_MESSAGE = {"type": "ping"}
REQUEST_STATE_MESSAGE = {"type": "request_state"}

MessageHandler = Callable[[dict[str, Any]], Any]


class ConnectionState(str, Enum):
    """Lifecycle of the realtime connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Transport abstraction
# ---------------------------------------------------------------------------


class Connection(Protocol):
    """A bidirectional text message connection."""

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, message: str) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        """Yield inbound messages until the connection closes."""
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[str], Awaitable[Connection]]


class WebsocketConnection:
    """``Connection`` over a ``websockets`` client connection."""

    def __init__(self, ws: Any) -> None:
        self._ws = ws

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def send(self, message: str) -> None:
        await self._ws.send(message)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        try:
            async for message in self._ws:
                yield message
        except ConnectionClosed as e:
            logger.warning(f"Websocket closed abnormally: {e}")

    async def close(self) -> None:
        await self._ws.close()


async def websockets_connector(url: str) -> WebsocketConnection:
    """Default connector: open a websocket with the ``websockets`` client."""
    ws = await websockets.connect(url, open_timeout=10)
    return WebsocketConnection(ws)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


@dataclass
class ChannelHandle:
    """The connection opened by one ``connect()`` call.

    Attributes:
        world_id: World the connection is scoped to.
        url: Websocket URL that was opened.
        state: Current lifecycle state.
        pings_sent: Number of keepalive pings written to the connection.
    """
    world_id: str
    url: str
    on_message: MessageHandler
    state: ConnectionState = ConnectionState.CONNECTING
    pings_sent: int = 0
    connection: Connection | None = None
    reader: asyncio.Task | None = None
    keepalive: TimerHandle | None = None
    tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def is_open(self) -> bool:
        return (
            self.state is ConnectionState.OPEN
            and self.connection is not None
            and self.connection.is_open
        )


class RealtimeChannel:
    """Single live connection to the simulation backend.

    Args:
        config: Client configuration; ``ws_url`` and ``keepalive_interval`` are used.
        scheduler: Timer capability for the keepalive.
        connector: Coroutine function opening a Connection for a URL.

    Usage:
        channel = RealtimeChannel(config)
        await channel.connect("world-42", event_log.handle_message)
        ...
        await channel.disconnect()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        scheduler: Scheduler | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self.connector = connector or websockets_connector
        self.keepalive_interval = self.config.keepalive_interval
        self._handle: ChannelHandle | None = None

    @property
    def state(self) -> ConnectionState:
        if self._handle is None:
            return ConnectionState.DISCONNECTED
        return self._handle.state

    @property
    def handle(self) -> ChannelHandle | None:
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle is not None and self._handle.is_open

    async def connect(self, world_id: str, on_message: MessageHandler) -> ChannelHandle:
        """Open a connection to ``world_id``, replacing any existing one.

        Connection failures are logged and leave the returned handle CLOSED.

        Args:
            world_id: World to subscribe to.
            on_message: Called with every inbound JSON object.

        Returns:
            The handle of the new connection.
        """
        await self.disconnect()

        url = f"{self.config.ws_url}/ws/{world_id}"
        handle = ChannelHandle(world_id=world_id, url=url, on_message=on_message)
        self._handle = handle
        logger.info(f"Connecting to world {world_id} at {url}")

        try:
            connection = await self.connector(url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Failed to connect to world {world_id}: {e}")
            handle.state = ConnectionState.CLOSED
            return handle
        except Exception as e:
            logger.error(
                f"Failed to connect to world {world_id}: {e} ({type(e).__name__})",
                exc_info=True,
            )
            handle.state = ConnectionState.CLOSED
            return handle

        if self._handle is not handle:
            # disconnect() or another connect() ran while the handshake was pending
            await connection.close()
            return handle

        handle.connection = connection
        handle.state = ConnectionState.OPEN
        logger.info(f"Connected to world {world_id}")

        await self._send_ping(handle)
        if handle.is_open:
            self._schedule_keepalive(handle)
            handle.reader = asyncio.get_running_loop().create_task(self._read_loop(handle))
        return handle

    async def disconnect(self) -> None:
        """Close the active connection, if any. Safe to call repeatedly."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None

        self._stop_timers(handle)
        current = asyncio.current_task()
        for task in [handle.reader, *handle.tasks]:
            if task is not None and task is not current and not task.done():
                task.cancel()
        handle.tasks.clear()

        if handle.connection is not None and handle.connection.is_open:
            try:
                await handle.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection to world {handle.world_id}: {e}")

        handle.state = ConnectionState.DISCONNECTED
        logger.info(f"Disconnected from world {handle.world_id}")

    async def send(self, message: dict[str, Any]) -> bool:
        """Send a JSON message on the open connection.

        Returns:
            True if sent, False if there is no open connection or the send failed.
        """
        handle = self._handle
        if handle is None or not handle.is_open:
            logger.warning(f"Cannot send {message.get('type')!r}: not connected")
            return False
        return await self._send(handle, message)

    async def request_state(self) -> bool:
        """Ask the backend to push the current world state."""
        return await self.send(REQUEST_STATE_MESSAGE)

    async def drain(self) -> None:
        """Wait for keepalive sends that are already in flight."""
        handle = self._handle
        while handle is not None and handle.tasks:
            await asyncio.gather(*list(handle.tasks), return_exceptions=True)
            await asyncio.sleep(0)

    # -- Internals -----------------------------------------------------------

    async def _send(self, handle: ChannelHandle, message: dict[str, Any]) -> bool:
        connection = handle.connection
        if connection is None or not handle.is_open:
            return False
        try:
            await connection.send(json.dumps(message))
            return True
        except Exception as e:
            logger.error(f"Send to world {handle.world_id} failed: {e}")
            self._mark_closed(handle)
            return False

    async def _send_ping(self, handle: ChannelHandle) -> None:
        if await self._send(handle, PING_MESSAGE):
            handle.pings_sent += 1
            logger.debug(f"Ping sent to world {handle.world_id}")

    def _schedule_keepalive(self, handle: ChannelHandle) -> None:
        handle.keepalive = self.scheduler.call_later(
            self.keepalive_interval, lambda: self._keepalive(handle)
        )

    def _keepalive(self, handle: ChannelHandle) -> None:
        handle.keepalive = None
        if handle is not self._handle or not handle.is_open:
            logger.debug(f"Keepalive for world {handle.world_id} stopped")
            return

        self._track(handle, asyncio.get_running_loop().create_task(self._send_ping(handle)))
        self._schedule_keepalive(handle)

    async def _read_loop(self, handle: ChannelHandle) -> None:
        connection = handle.connection
        try:
            async for raw in connection:
                self._dispatch(handle, raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Connection to world {handle.world_id} failed: {e}")
        finally:
            if handle.state is ConnectionState.OPEN:
                self._mark_closed(handle)
                logger.info(f"Connection to world {handle.world_id} closed")

    def _dispatch(self, handle: ChannelHandle, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to parse message from world {handle.world_id}: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(
                f"Dropped non-object message from world {handle.world_id}: {data!r}"
            )
            return

        try:
            result = handle.on_message(data)
        except Exception as e:
            logger.error(f"Message handler failed for {data.get('type')!r}: {e}", exc_info=True)
            return

        if inspect.isawaitable(result):
            self._track(handle, asyncio.ensure_future(result))

    def _track(self, handle: ChannelHandle, task: asyncio.Future) -> None:
        handle.tasks.add(task)

        def _done(t: asyncio.Future) -> None:
            handle.tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Background task for world {handle.world_id} failed: {t.exception()}")

        task.add_done_callback(_done)

    def _mark_closed(self, handle: ChannelHandle) -> None:
        handle.state = ConnectionState.CLOSED
        self._stop_timers(handle)

    def _stop_timers(self, handle: ChannelHandle) -> None:
        if handle.keepalive is not None:
            handle.keepalive.cancel()
            handle.keepalive = None


__all__ = [
    "RealtimeChannel",
    "ChannelHandle",
    "ConnectionState",
    "Connection",
    "Connector",
    "WebsocketConnection",
    "websockets_connector",
    "PING_MESSAGE",
]
