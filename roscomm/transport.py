"""
Byte-stream transport used by Comm.

Transport is the contract (state notifications, readiness notification,
non-blocking read/write, connect / graceful disconnect / abort).
AsyncioTransport is the TCP implementation on top of an asyncio Protocol.
"""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Protocol

from .errors import TransportError

log = logging.getLogger("Transport")


class SocketState(Enum):
    UNCONNECTED = "unconnected"
    HOST_LOOKUP = "host-lookup"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BOUND = "bound"
    LISTENING = "listening"
    CLOSING = "closing"


class TransportListener(Protocol):
    def on_state_changed(self, state: SocketState) -> None: ...

    def on_ready_read(self) -> None: ...

    def on_error(self, message: str) -> None: ...


class Transport(ABC):

    def __init__(self):
        self._state = SocketState.UNCONNECTED
        self._listener: Optional[TransportListener] = None

    def set_listener(self, listener: TransportListener | None):
        self._listener = listener

    @property
    def state(self) -> SocketState:
        return self._state

    # ─── Contract ─────────────────────────────────────────────────────────────

    @abstractmethod
    def connect_to(self, address: str, port: int):
        ...

    @abstractmethod
    def disconnect_gracefully(self):
        ...

    @abstractmethod
    def abort(self):
        """Drop the connection now, discarding buffered data in both directions."""
        ...

    @abstractmethod
    def read(self, max_bytes: int) -> bytes:
        """Return up to max_bytes already received bytes; b"" if none."""
        ...

    @abstractmethod
    def write(self, data: bytes):
        ...

    # ─── Notifications ────────────────────────────────────────────────────────

    def _set_state(self, state: SocketState):
        if state == self._state:
            return
        self._state = state
        log.debug(f"Socket state: {state.value}")
        if self._listener:
            self._listener.on_state_changed(state)

    def _notify_ready_read(self):
        if self._listener:
            self._listener.on_ready_read()

    def _notify_error(self, message: str):
        if self._listener:
            self._listener.on_error(message)


class _StreamProtocol(asyncio.Protocol):

    def __init__(self, owner: "AsyncioTransport", gen: int):
        self._owner = owner
        self._gen = gen

    def connection_made(self, transport):
        self._owner._connection_made(self._gen, transport)

    def data_received(self, data):
        self._owner._data_received(self._gen, data)

    def connection_lost(self, exc):
        self._owner._connection_lost(self._gen, exc)


class AsyncioTransport(Transport):
    """
    TCP transport driven by the running asyncio loop.

    Usage (inside a coroutine):
        transport = AsyncioTransport(connect_timeout=10.0)
        comm = Comm(transport, credentials_provider)
        comm.connect("192.168.88.1", 8728)
    """

    def __init__(self, connect_timeout: float = 10.0):
        super().__init__()
        self.connect_timeout = connect_timeout
        self._transport: Optional[asyncio.Transport] = None
        self._buf = bytearray()
        self._task: Optional[asyncio.Task] = None
        # Incremented on each connect/abort so callbacks from a dropped
        # connection cannot touch the current one.
        self._gen = 0

    # ─── Contract ─────────────────────────────────────────────────────────────

    def connect_to(self, address: str, port: int):
        if self._state != SocketState.UNCONNECTED:
            raise TransportError("Transport is already in use")
        loop = asyncio.get_running_loop()
        self._gen += 1
        self._buf = bytearray()
        # HOST_LOOKUP is entered here, not in _open, so abort() and connect_to()
        # see a busy socket before the task first runs.
        self._set_state(SocketState.HOST_LOOKUP)
        self._task = loop.create_task(self._open(address, port, self._gen))

    def disconnect_gracefully(self):
        if self._transport is None:
            return
        self._set_state(SocketState.CLOSING)
        # close() flushes the write buffer, connection_lost follows
        self._transport.close()

    def abort(self):
        self._gen += 1
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._transport is not None:
            self._transport.abort()
            self._transport = None
        self._buf = bytearray()
        self._set_state(SocketState.UNCONNECTED)

    def read(self, max_bytes: int) -> bytes:
        if not self._buf or max_bytes <= 0:
            return b""
        data = bytes(self._buf[:max_bytes])
        del self._buf[:max_bytes]
        return data

    def write(self, data: bytes):
        if self._transport is None or self._transport.is_closing():
            raise TransportError("Not connected")
        self._transport.write(data)

    # ─── Internal ─────────────────────────────────────────────────────────────

    async def _open(self, address: str, port: int, gen: int):
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(address, port, type=socket.SOCK_STREAM),
                timeout=self.connect_timeout,
            )
            if gen != self._gen:
                return
            self._set_state(SocketState.CONNECTING)
            family, _, _, _, sockaddr = infos[0]
            await asyncio.wait_for(
                loop.create_connection(
                    lambda: _StreamProtocol(self, gen),
                    host=sockaddr[0], port=sockaddr[1], family=family,
                ),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            if gen != self._gen:
                return
            reason = str(e) or "Connection timed out"
            log.warning(f"Cannot connect to {address}:{port}: {reason}")
            self._notify_error(reason)
            self._set_state(SocketState.UNCONNECTED)

    def _connection_made(self, gen: int, transport):
        if gen != self._gen:
            transport.abort()
            return
        self._transport = transport
        self._set_state(SocketState.CONNECTED)

    def _data_received(self, gen: int, data: bytes):
        if gen != self._gen:
            return
        self._buf.extend(data)
        self._notify_ready_read()

    def _connection_lost(self, gen: int, exc: Exception | None):
        if gen != self._gen:
            return
        self._transport = None
        if exc is not None:
            self._notify_error(str(exc) or exc.__class__.__name__)
        elif self._state == SocketState.CONNECTED:
            log.info("Remote host closed the connection")
        self._set_state(SocketState.UNCONNECTED)
