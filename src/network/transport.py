from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import cast

import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.asyncio.connection import Connection
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from pake.errors import ProtocolViolation, TransportError
from pake.messages import ProtocolMessage

log = structlog.get_logger(__name__)

MAX_FRAME_SIZE = 4096


class Transport(ABC):
    """
    Ordered, reliable delivery of opaque byte messages over one connection.
    Any failure, including the peer closing, surfaces as TransportError.
    """

    @abstractmethod
    async def send(self, data: bytes) -> None: ...

    @abstractmethod
    async def receive(self) -> bytes: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def send_message(self, message: ProtocolMessage) -> None:
        await self.send(message.to_bytes())

    async def receive_message(self) -> ProtocolMessage:
        return ProtocolMessage.from_bytes(await self.receive())


_CLOSED = object()


class MemoryTransport(Transport):
    """One end of an in-process pipe; see memory_pipe()."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.peer: MemoryTransport | None = None
        self.closed = False
        self._inbox: asyncio.Queue[object] = asyncio.Queue()

    async def send(self, data: bytes) -> None:
        if self.closed or self.peer is None or self.peer.closed:
            raise TransportError(f"{self.name}: connection closed")
        log.debug("memory_transport_send", sender=self.name, size=len(data))
        await self.peer._inbox.put(bytes(data))

    async def receive(self) -> bytes:
        if self.closed:
            raise TransportError(f"{self.name}: connection closed")
        item = await self._inbox.get()
        if item is _CLOSED:
            self.closed = True
            raise TransportError(f"{self.name}: peer closed the connection")
        return cast(bytes, item)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.peer is not None and not self.peer.closed:
            await self.peer._inbox.put(_CLOSED)


def memory_pipe(a: str = "client", b: str = "server") -> tuple[MemoryTransport, MemoryTransport]:
    left, right = MemoryTransport(a), MemoryTransport(b)
    left.peer, right.peer = right, left
    return left, right


class WebSocketTransport(Transport):
    """One protocol message per binary WebSocket frame."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    async def send(self, data: bytes) -> None:
        try:
            await self.connection.send(data)
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e

    async def receive(self) -> bytes:
        try:
            frame = await self.connection.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e
        if isinstance(frame, str):
            raise ProtocolViolation("Expected a binary frame")
        return frame

    async def close(self) -> None:
        await self.connection.close()


async def connect(url: str, timeout: float = 30.0) -> WebSocketTransport:
    try:
        connection = await ws_connect(url, max_size=MAX_FRAME_SIZE, open_timeout=timeout)
    except (OSError, InvalidHandshake, InvalidURI, TimeoutError) as e:
        raise TransportError(f"Cannot connect to {url}: {e}") from e
    return WebSocketTransport(connection)
