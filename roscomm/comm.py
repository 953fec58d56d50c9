"""
RouterOS API connection: connection state machine, login handshake and
sentence sending on top of a Transport.

Comm is driven entirely by transport notifications (on_state_changed,
on_ready_read, on_error). Reaching CONNECTED starts the MD5 challenge login
automatically:

  client                          router
  /login                    ->
                            <-    !done =ret=<32 hex chars challenge>
  /login =name=<user>
         =response=00<md5>  ->
                            <-    !done             (or !trap =message=...)

Until the login is done, completed sentences are consumed by the login state
machine; afterwards they are emitted through Comm.received.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .api_protocol import md5_challenge_response
from .errors import (
    FramingError,
    InternalConsistencyFault,
    LoginFailed,
    NotLoggedIn,
    RosError,
    TransportError,
)
from .events import Signal
from .framer import SentenceAssembler, WordFramer
from .sentence import ResultType, Sentence
from .transport import SocketState, Transport

log = logging.getLogger("Comm")


class ConnectionState(Enum):
    UNCONNECTED = "unconnected"
    HOST_LOOKUP = "host-lookup"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class LoginState(Enum):
    NOT_LOGGED_IN = "not-logged-in"
    LOGIN_REQUESTED = "login-requested"
    USER_PASS_SENT = "user-pass-sent"
    LOGGED_IN = "logged-in"


_SOCKET_STATES: dict[SocketState, ConnectionState] = {
    SocketState.UNCONNECTED: ConnectionState.UNCONNECTED,
    SocketState.HOST_LOOKUP: ConnectionState.HOST_LOOKUP,
    SocketState.CONNECTING: ConnectionState.CONNECTING,
    SocketState.CONNECTED: ConnectionState.CONNECTED,
    SocketState.CLOSING: ConnectionState.CLOSING,
}

CHALLENGE_LENGTH = 32


@dataclass
class Credentials:
    username: str = ""
    password: str = field(default="", repr=False)


class TagCounter:
    """Source of .tag values. Share one instance to keep tags unique across connections."""

    def __init__(self, start: int = 0):
        self._value = start

    def next(self) -> int:
        self._value += 1
        return self._value

    @property
    def value(self) -> int:
        return self._value


class SentenceSender:

    def __init__(self, framer: WordFramer, counter: TagCounter | None = None, encoding: str = "utf-8"):
        self._framer = framer
        self.counter = counter or TagCounter()
        self.encoding = encoding

    def send(self, sentence: Sentence, add_tag: bool = True) -> str:
        """
        Write one sentence and return the tag used ("" if add_tag is False).
        Uses sentence.tag when set, otherwise the next counter value.
        """
        words = sentence.to_words()
        tag = ""
        if add_tag:
            tag = sentence.tag or str(self.counter.next())
            words.append(f".tag={tag}")

        for word in words:
            log.debug(f"<<< {word}")
        # one write per sentence, sentences never interleave on the wire
        self._framer.write_sentence([w.encode(self.encoding) for w in words])
        return tag


class Comm:
    """
    Usage:
        comm = Comm(AsyncioTransport(), lambda: Credentials("admin", "secret"))
        comm.login_state_changed.connect(on_login_state)
        comm.received.connect(on_sentence)
        comm.error.connect(on_error)
        comm.connect("192.168.88.1", 8728)
        ...
        tag = comm.send(Sentence("/system/identity/print"))
    """

    def __init__(
        self,
        transport: Transport,
        credentials_provider: Optional[Callable[[], Credentials]] = None,
        encoding: str = "utf-8",
        tag_counter: TagCounter | None = None,
    ):
        self.credentials_provider = credentials_provider
        self.encoding = encoding
        self.address = ""
        self.port = 0
        self.last_error: Optional[Exception] = None

        self.error = Signal("error")
        self.received = Signal("received")
        self.state_changed = Signal("state_changed")
        self.login_state_changed = Signal("login_state_changed")

        self._state = ConnectionState.UNCONNECTED
        self._login_state = LoginState.NOT_LOGGED_IN
        self._credentials = Credentials()

        self._transport = transport
        self._framer = WordFramer(transport, transport)
        self._assembler = SentenceAssembler(self._framer)
        self._sender = SentenceSender(self._framer, tag_counter, encoding)
        transport.set_listener(self)

    # ─── State ────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def login_state(self) -> LoginState:
        return self._login_state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def is_logged_in(self) -> bool:
        return self.is_connected and self._login_state == LoginState.LOGGED_IN

    @property
    def is_closing(self) -> bool:
        return self._state == ConnectionState.CLOSING

    @property
    def is_connecting(self) -> bool:
        return self._state == ConnectionState.CONNECTING

    @property
    def framer(self) -> WordFramer:
        return self._framer

    @property
    def assembler(self) -> SentenceAssembler:
        return self._assembler

    @property
    def tag_counter(self) -> TagCounter:
        return self._sender.counter

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        self._state = state
        log.debug(f"Connection state: {state.value}")
        self.state_changed.emit(state)

    def _set_login_state(self, state: LoginState):
        if state == self._login_state:
            return
        self._login_state = state
        log.debug(f"Login state: {state.value}")
        self.login_state_changed.emit(state)

    # ─── Public API ───────────────────────────────────────────────────────────

    def connect(self, address: str, port: int = 8728) -> bool:
        if self._state != ConnectionState.UNCONNECTED:
            self._surface(TransportError("Trying to connect an already opened socket"))
            return False
        self.address, self.port = address, port
        self.last_error = None
        try:
            self._transport.connect_to(address, port)
        except TransportError as e:
            self._surface(e)
            return False
        return True

    def close(self, force: bool = False):
        """
        Graceful close flushes pending output and lets the transport drive
        CLOSING -> UNCONNECTED. Forced close drops everything immediately.
        """
        if not force:
            if self.is_connected:
                self._transport.disconnect_gracefully()
            return

        if self._state == ConnectionState.UNCONNECTED and self._transport.state == SocketState.UNCONNECTED:
            self._reset_session()
            return
        self._drop()
        self._surface(TransportError("forced abort/close on socket"))

    def send(self, sentence: Sentence, add_tag: bool = True) -> str:
        if not self.is_connected:
            raise NotLoggedIn("Not connected")
        if self._login_state != LoginState.LOGGED_IN:
            raise NotLoggedIn("Login not completed")
        return self._sender.send(sentence, add_tag)

    # ─── Transport notifications ──────────────────────────────────────────────

    def on_state_changed(self, s: SocketState):
        state = _SOCKET_STATES.get(s)
        if state is None:
            # BOUND / LISTENING only happen on server sockets
            return
        self._set_state(state)
        if state == ConnectionState.CONNECTED:
            self._start_login()
        elif state == ConnectionState.UNCONNECTED:
            self._reset_session()

    def on_error(self, message: str):
        if self._state != ConnectionState.CONNECTED:
            self._set_state(ConnectionState.UNCONNECTED)
        self._surface(TransportError(message))

    def on_ready_read(self):
        try:
            while self._state in (ConnectionState.CONNECTED, ConnectionState.CLOSING):
                if not self._assembler.feed():
                    break
                sentence = self._decode(self._assembler.take())
                if self._login_state != LoginState.LOGGED_IN:
                    self.handle_login_sentence(sentence)
                else:
                    self.received.emit(sentence)
        except LoginFailed as e:
            self._set_login_state(LoginState.NOT_LOGGED_IN)
            self._surface(e)
            if e.remote_message:
                self.error.emit(f"remote msg: {e.remote_message}")
            self._drop()
        except FramingError as e:
            self._surface(e)
            self._drop()

    # ─── Login ────────────────────────────────────────────────────────────────

    def _start_login(self):
        self._set_login_state(LoginState.NOT_LOGGED_IN)
        self._credentials = self.credentials_provider() if self.credentials_provider else Credentials()
        self._set_login_state(LoginState.LOGIN_REQUESTED)
        self._assembler.clear()
        log.debug(f"Requesting login challenge for '{self._credentials.username}'")
        try:
            self._sender.send(Sentence("/login"), add_tag=False)
        except TransportError as e:
            self._surface(e)
            self._drop()

    def handle_login_sentence(self, sentence: Sentence):
        state = self._login_state
        if state == LoginState.NOT_LOGGED_IN:
            log.debug(f"Ignoring {sentence.command} received before login started")

        elif state == LoginState.LOGIN_REQUESTED:
            challenge = self._check_challenge(sentence)
            digest = md5_challenge_response(self._credentials.password, challenge, self.encoding)
            self._sender.send(Sentence("/login", attributes={
                "name": self._credentials.username,
                "response": f"00{digest}",
            }), add_tag=False)
            self._assembler.clear()
            self._set_login_state(LoginState.USER_PASS_SENT)

        elif state == LoginState.USER_PASS_SENT:
            if sentence.result_type != ResultType.DONE:
                raise LoginFailed(
                    "invalid username or password",
                    remote_message=sentence.attribute("message") or "",
                )
            self._assembler.clear()
            self._set_login_state(LoginState.LOGGED_IN)
            log.info(f"Logged in to {self.address}:{self.port} as '{self._credentials.username}'")

        else:
            raise InternalConsistencyFault("Router is logged in already")

    @staticmethod
    def _check_challenge(sentence: Sentence) -> str:
        if sentence.result_type != ResultType.DONE:
            # only a rejected username / password re-emits the router's message
            log.debug(f"Challenge request refused: {sentence.attribute('message')}")
            raise LoginFailed("cannot login")
        if not sentence.attributes:
            raise LoginFailed("malformed challenge: no attributes")
        if len(sentence.attributes) != 1:
            raise LoginFailed(f"malformed challenge: expected 1 attribute, got {len(sentence.attributes)}")
        ret = sentence.attribute("ret")
        if ret is None:
            raise LoginFailed("malformed challenge: missing 'ret'")
        if len(ret) != CHALLENGE_LENGTH:
            raise LoginFailed(f"malformed challenge: 'ret' must be {CHALLENGE_LENGTH} characters, got {len(ret)}")
        try:
            bytes.fromhex(ret)
        except ValueError:
            raise LoginFailed("malformed challenge: 'ret' is not hexadecimal") from None
        return ret

    # ─── Internal ─────────────────────────────────────────────────────────────

    def _decode(self, words: list[bytes]) -> Sentence:
        sentence = Sentence()
        for raw in words:
            word = raw.decode(self.encoding, errors="replace")
            log.debug(f">>> {word}")
            sentence.add_word(word)
        return sentence

    def _reset_session(self):
        self._framer.reset()
        self._assembler.clear()
        self._set_login_state(LoginState.NOT_LOGGED_IN)

    def _drop(self):
        self._transport.abort()
        self._reset_session()
        self._set_state(ConnectionState.UNCONNECTED)

    def _surface(self, exc: RosError):
        self.last_error = exc
        log.warning(f"{self.address or 'router'}: {exc}")
        self.error.emit(str(exc))
