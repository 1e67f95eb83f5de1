"""
Transport abstraction for the cross-process bridge.

A transport is a duplex text channel. The bridge only needs to connect,
send, receive and close, so anything with that shape works: a WebSocket,
an IPC pipe, or the in-process MemoryTransport used for tests.
"""
from typing import Protocol, Optional, Tuple, Union
import asyncio
import logging

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The connection could not be made or was lost."""


class Transport(Protocol):
    """Protocol defining the transport interface. Implement this for new channels."""

    async def connect(self) -> None:
        """Open the connection. Raises TransportError on failure."""
        ...

    async def send(self, message: str) -> None:
        """Send one serialized message."""
        ...

    async def receive(self) -> Union[str, bytes]:
        """Wait for the next message. Raises TransportError when the connection drops."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call when already closed."""
        ...


class WebSocketTransport:
    """
    WebSocket client transport.

    Connects to a relay hub (see overlaybus.main) or any server speaking the
    bridge's JSON messages.
    """

    def __init__(self, url: str, open_timeout: float = 10.0):
        self.url = url
        self.open_timeout = open_timeout
        self._websocket = None

    async def connect(self) -> None:
        try:
            self._websocket = await websockets.connect(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Could not connect to {self.url}: {e}") from e
        logger.info(f"Connected to {self.url}")

    async def send(self, message: str) -> None:
        if self._websocket is None:
            raise TransportError("Not connected")
        try:
            await self._websocket.send(message)
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def receive(self) -> Union[str, bytes]:
        """Next frame as received; binary frames are left for the bridge to validate."""
        if self._websocket is None:
            raise TransportError("Not connected")
        try:
            return await self._websocket.recv()
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Connection lost: {e}") from e

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error closing websocket: {e}")


_CLOSED = None


class MemoryTransport:
    """
    One end of an in-process transport pair.

    Messages sent on one end are received on the other. Closing either end
    makes the peer's receive() raise TransportError; both ends can connect
    again afterwards.
    """

    def __init__(self, name: str = "memory"):
        self.name = name
        self.peer: Optional["MemoryTransport"] = None
        self.connected = False
        self.connect_attempts = 0
        self.fail_connects = 0
        self._inbox: asyncio.Queue = asyncio.Queue()

    @classmethod
    def pair(cls, first: str = "a", second: str = "b") -> Tuple["MemoryTransport", "MemoryTransport"]:
        """Create two linked ends."""
        a, b = cls(first), cls(second)
        a.peer, b.peer = b, a
        return a, b

    async def connect(self) -> None:
        self.connect_attempts += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise TransportError(f"{self.name}: connection refused")
        self._inbox = asyncio.Queue()
        self.connected = True

    async def send(self, message: str) -> None:
        if not self.connected:
            raise TransportError(f"{self.name}: not connected")
        if self.peer is None or not self.peer.connected:
            raise TransportError(f"{self.name}: peer not connected")
        self.peer._inbox.put_nowait(message)

    async def receive(self) -> str:
        if not self.connected:
            raise TransportError(f"{self.name}: not connected")
        message = await self._inbox.get()
        if message is _CLOSED:
            raise TransportError(f"{self.name}: connection closed")
        return message

    async def close(self) -> None:
        if not self.connected:
            return
        self.connected = False
        self._inbox.put_nowait(_CLOSED)
        if self.peer is not None and self.peer.connected:
            self.peer._inbox.put_nowait(_CLOSED)


def create_transport(settings) -> Transport:
    """Build the transport named in settings."""
    if settings.transport == "websocket":
        return WebSocketTransport(settings.hub_url)
    else:
        raise ValueError(f"Unknown transport: {settings.transport}")
