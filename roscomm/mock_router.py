"""
Mock Router – an in-memory RouterOS API peer with realistic fake data.
Used when no real router is available (development / demo mode) and by the tests.

FakeRouter speaks the wire protocol from raw bytes (MD5 challenge login,
a handful of read-only commands). MockTransport plugs a Comm into it
without any socket.
"""

import asyncio
import logging
import os
from collections import deque
from datetime import datetime, timedelta

from .api_protocol import md5_challenge_response
from .errors import TransportError
from .framer import SentenceAssembler, WordFramer
from .sentence import Sentence
from .transport import SocketState, Transport

log = logging.getLogger("MockRouter")


class _ByteBuffer:

    def __init__(self):
        self._data = bytearray()

    def write(self, data: bytes):
        self._data.extend(data)

    def read(self, max_bytes: int) -> bytes:
        data = bytes(self._data[:max_bytes])
        del self._data[:max_bytes]
        return data

    def drain(self) -> bytes:
        data, self._data = bytes(self._data), bytearray()
        return data

    def clear(self):
        self._data = bytearray()


class FakeRouter:

    def __init__(
        self,
        username: str = "admin",
        password: str = "",
        identity: str = "MikroTik",
        challenge: bytes | None = None,
        encoding: str = "utf-8",
    ):
        self.username = username
        self.password = password
        self.identity = identity
        self.encoding = encoding
        self._fixed_challenge = challenge
        self._inbox = _ByteBuffer()
        self._outbox = _ByteBuffer()
        self._framer = WordFramer(self._inbox, self._outbox)
        self._assembler = SentenceAssembler(self._framer)
        self._uptime_start = datetime.now() - timedelta(days=2, hours=4, minutes=33)
        self._interfaces = [
            {".id": "*1", "name": "ether1", "type": "ether", "running": "true", "disabled": "false",
             "mac-address": "AA:BB:CC:DD:EE:01", "comment": "WAN"},
            {".id": "*2", "name": "ether2", "type": "ether", "running": "true", "disabled": "false",
             "mac-address": "AA:BB:CC:DD:EE:02", "comment": "LAN"},
            {".id": "*3", "name": "wlan1", "type": "wlan", "running": "true", "disabled": "false",
             "mac-address": "AA:BB:CC:DD:EE:03", "comment": "WiFi 2.4GHz"},
            {".id": "*4", "name": "wlan2", "type": "wlan", "running": "false", "disabled": "true",
             "mac-address": "AA:BB:CC:DD:EE:04", "comment": "WiFi 5GHz"},
        ]
        self._ip_addresses = [
            {".id": "*1", "address": "192.168.88.1/24", "network": "192.168.88.0", "interface": "ether2"},
            {".id": "*2", "address": "10.0.0.2/30", "network": "10.0.0.0", "interface": "ether1"},
        ]
        self._log = [
            {".id": "*A1", "time": "10:00:01", "topics": "system,info", "message": "router rebooted"},
            {".id": "*A2", "time": "10:00:05", "topics": "dhcp,info", "message": "dhcp1 assigned 192.168.88.10"},
            {".id": "*A3", "time": "10:02:17", "topics": "system,error,critical", "message": "login failure for user root"},
        ]
        self.reset()

    def reset(self):
        """New TCP session: drop partial input and forget the login."""
        self._inbox.clear()
        self._outbox.clear()
        self._framer.reset()
        self._assembler.clear()
        self.logged_in = False
        self.closed = False
        self.challenge = b""
        self.received: list[Sentence] = []

    # ─── Wire ─────────────────────────────────────────────────────────────────

    def receive(self, data: bytes) -> bytes:
        """Consume client bytes, return the router's answer bytes (maybe b"")."""
        self._inbox.write(data)
        while not self.closed and self._assembler.feed():
            words = [w.decode(self.encoding, errors="replace") for w in self._assembler.take()]
            request = Sentence.from_words(words)
            self.received.append(request)
            for reply in self._handle(request):
                if request.tag:
                    reply.append(f".tag={request.tag}")
                self._framer.write_sentence([w.encode(self.encoding) for w in reply])
        return self._outbox.drain()

    # ─── Commands ─────────────────────────────────────────────────────────────

    def _handle(self, request: Sentence) -> list[list[str]]:
        cmd = request.command
        if cmd == "/login":
            return self._login(request)
        if cmd == "/quit":
            self.closed = True
            return [["!fatal", "=message=session terminated on request"]]
        if not self.logged_in:
            return [["!trap", "=message=not logged in"], ["!done"]]
        if cmd == "/cancel":
            return [["!done"]]

        rows = self._print(cmd)
        if rows is None:
            log.debug(f"Unknown command {cmd}")
            return [["!trap", "=category=0", "=message=no such command prefix"], ["!done"]]
        rows = [r for r in rows if _matches(r, request.queries)]
        if not rows:
            return [["!empty"], ["!done"]]
        return [["!re"] + [f"={k}={v}" for k, v in r.items()] for r in rows] + [["!done"]]

    def _login(self, request: Sentence) -> list[list[str]]:
        name = request.attribute("name")
        if name is None:
            self.challenge = self._fixed_challenge or os.urandom(16)
            return [["!done", f"=ret={self.challenge.hex()}"]]

        password = request.attribute("password")
        response = request.attribute("response")
        if password is not None:
            ok = name == self.username and password == self.password
        elif response is not None and self.challenge:
            expected = "00" + md5_challenge_response(self.password, self.challenge.hex(), self.encoding)
            ok = name == self.username and response == expected
        else:
            ok = False

        if not ok:
            return [["!trap", "=message=cannot log in"], ["!done"]]
        self.logged_in = True
        return [["!done"]]

    def _print(self, cmd: str) -> list[dict] | None:
        if cmd == "/system/identity/print":
            return [{"name": self.identity}]
        if cmd == "/system/resource/print":
            uptime = datetime.now() - self._uptime_start
            return [{
                "uptime": f"{uptime.days}d{uptime.seconds // 3600}h{uptime.seconds % 3600 // 60}m",
                "version": "6.49.10 (long-term)",
                "cpu-load": "7",
                "free-memory": "45678592",
                "total-memory": "67108864",
                "board-name": "hAP ac lite",
                "architecture-name": "mipsbe",
            }]
        if cmd == "/interface/print":
            return self._interfaces
        if cmd == "/ip/address/print":
            return self._ip_addresses
        if cmd == "/log/print":
            return self._log
        return None


def _matches(row: dict, queries: list[str]) -> bool:
    # Only the simple "?name=value" and "?name" forms are supported.
    for q in queries:
        key, sep, value = q[1:].partition("=")
        if sep:
            if row.get(key) != value:
                return False
        elif key not in row:
            return False
    return True


class MockTransport(Transport):
    """
    Transport wired to a FakeRouter.

    Router answers are queued and delivered by pump(), so every readiness
    notification happens outside of Comm's own write calls. With
    auto_pump=True, pump() is scheduled on the running asyncio loop.
    """

    def __init__(self, router: FakeRouter | None = None, auto_pump: bool = False):
        super().__init__()
        self.router = router or FakeRouter()
        self.auto_pump = auto_pump
        self.refuse_connections = False
        self.written: list[bytes] = []
        self._incoming: deque[bytes] = deque()
        self._buf = bytearray()

    # ─── Contract ─────────────────────────────────────────────────────────────

    def connect_to(self, address: str, port: int):
        if self._state != SocketState.UNCONNECTED:
            raise TransportError("Transport is already in use")
        self._set_state(SocketState.HOST_LOOKUP)
        self._set_state(SocketState.CONNECTING)
        if self.refuse_connections:
            self._notify_error("Connection refused")
            self._set_state(SocketState.UNCONNECTED)
            return
        self.router.reset()
        self._buf = bytearray()
        self._incoming.clear()
        self._set_state(SocketState.CONNECTED)

    def disconnect_gracefully(self):
        if self._state != SocketState.CONNECTED:
            return
        self._set_state(SocketState.CLOSING)
        self._incoming.clear()
        self._set_state(SocketState.UNCONNECTED)

    def abort(self):
        self._incoming.clear()
        self._buf = bytearray()
        self._set_state(SocketState.UNCONNECTED)

    def read(self, max_bytes: int) -> bytes:
        data = bytes(self._buf[:max_bytes])
        del self._buf[:max_bytes]
        return data

    def write(self, data: bytes):
        if self._state not in (SocketState.CONNECTED, SocketState.CLOSING):
            raise TransportError("Not connected")
        self.written.append(data)
        answer = self.router.receive(data)
        if answer:
            self._incoming.append(answer)
            if self.auto_pump:
                asyncio.get_running_loop().call_soon(self.pump)

    # ─── Test / demo helpers ──────────────────────────────────────────────────

    def pump(self):
        """Deliver queued router answers until the router has nothing more to say."""
        while self._incoming and self._state == SocketState.CONNECTED:
            self.feed(self._incoming.popleft())
        if self.router.closed and self._state == SocketState.CONNECTED:
            self._set_state(SocketState.UNCONNECTED)

    def feed(self, data: bytes):
        """Inject raw bytes as if they had just arrived from the network."""
        self._buf.extend(data)
        self._notify_ready_read()

    def drop(self, message: str = "Connection reset by peer"):
        """Simulate the peer resetting the connection."""
        self._incoming.clear()
        self._notify_error(message)
        self._set_state(SocketState.UNCONNECTED)
