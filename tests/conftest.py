"""
Pytest configuration for roscomm tests.

PipeTransport is a bare Transport double: tests drive its state and feed it
raw bytes by hand. MockTransport / FakeRouter (roscomm.mock_router) are used
where a whole conversation with a router is needed.
"""
import hashlib
import sys
from pathlib import Path

import pytest

# Ensure roscomm package is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from roscomm.api_protocol import build_sentence, decode_length  # noqa: E402
from roscomm.comm import Comm, Credentials  # noqa: E402
from roscomm.transport import SocketState, Transport  # noqa: E402

CHALLENGE = bytes.fromhex("0f1e2d3c4b5a69788796a5b4c3d2e1f0")


class PipeTransport(Transport):

    def __init__(self):
        super().__init__()
        self.written: list[bytes] = []
        self.connected_to = None
        self.aborted = 0
        self.graceful = 0
        self._buf = bytearray()

    def connect_to(self, address, port):
        self.connected_to = (address, port)
        self._set_state(SocketState.HOST_LOOKUP)

    def disconnect_gracefully(self):
        self.graceful += 1
        self._set_state(SocketState.CLOSING)

    def abort(self):
        self.aborted += 1
        self._buf = bytearray()
        self._set_state(SocketState.UNCONNECTED)

    def read(self, max_bytes):
        data = bytes(self._buf[:max_bytes])
        del self._buf[:max_bytes]
        return data

    def write(self, data):
        self.written.append(data)

    # test helpers

    def reach(self, state: SocketState):
        self._set_state(state)

    def feed(self, data: bytes):
        self._buf.extend(data)
        self._notify_ready_read()

    def fail(self, message: str):
        self._notify_error(message)

    def sentences(self) -> list[list[str]]:
        return decode_sentences(b"".join(self.written))


def decode_sentences(data: bytes) -> list[list[str]]:
    sentences, words, offset = [], [], 0
    while offset < len(data):
        length, offset = decode_length(data, offset)
        if length == 0:
            sentences.append(words)
            words = []
            continue
        words.append(data[offset:offset + length].decode())
        offset += length
    return sentences


def sentence_bytes(*words: str) -> bytes:
    return build_sentence([w.encode() for w in words])


def expected_response(password: str, challenge: bytes = CHALLENGE) -> str:
    return "00" + hashlib.md5(b"\x00" + password.encode() + challenge).hexdigest()


@pytest.fixture
def pipe():
    return PipeTransport()


@pytest.fixture
def comm(pipe):
    return Comm(pipe, lambda: Credentials("admin", "secret"))


@pytest.fixture
def errors(comm):
    collected: list[str] = []
    comm.error.connect(collected.append)
    return collected


def open_connection(comm: Comm, pipe: PipeTransport):
    assert comm.connect("192.168.88.1", 8728)
    pipe.reach(SocketState.CONNECTING)
    pipe.reach(SocketState.CONNECTED)


def log_in(comm: Comm, pipe: PipeTransport):
    open_connection(comm, pipe)
    pipe.feed(sentence_bytes("!done", f"=ret={CHALLENGE.hex()}"))
    pipe.feed(sentence_bytes("!done"))
    assert comm.is_logged_in
    pipe.written.clear()


@pytest.fixture
def logged_in(comm, pipe):
    log_in(comm, pipe)
    return comm
