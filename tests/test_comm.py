import hashlib

import pytest

from conftest import (
    CHALLENGE,
    PipeTransport,
    expected_response,
    log_in,
    open_connection,
    sentence_bytes,
)
from roscomm.comm import Comm, ConnectionState, Credentials, LoginState, TagCounter
from roscomm.errors import (
    AuthenticationError,
    FramingError,
    InternalConsistencyFault,
    LoginFailed,
    NotLoggedIn,
    TransportError,
)
from roscomm.sentence import Sentence
from roscomm.transport import SocketState


# ─── Connection state machine ─────────────────────────────────────────────────

def test_state_follows_transport(comm, pipe):
    states = []
    comm.state_changed.connect(states.append)
    open_connection(comm, pipe)
    assert states == [ConnectionState.HOST_LOOKUP, ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert pipe.connected_to == ("192.168.88.1", 8728)
    assert comm.is_connected and not comm.is_logged_in


def test_bound_and_listening_ignored(comm, pipe):
    open_connection(comm, pipe)
    pipe.reach(SocketState.BOUND)
    pipe.reach(SocketState.LISTENING)
    assert comm.state == ConnectionState.CONNECTED


def test_connected_sends_login_request(comm, pipe):
    logins = []
    comm.login_state_changed.connect(logins.append)
    open_connection(comm, pipe)
    assert pipe.sentences() == [["/login"]]
    assert comm.login_state == LoginState.LOGIN_REQUESTED
    assert logins == [LoginState.LOGIN_REQUESTED]


def test_credentials_requested_once_per_connection(pipe):
    calls = []

    def provider():
        calls.append(1)
        return Credentials("admin", "secret")

    comm = Comm(pipe, provider)
    assert comm.connect("router", 8728)
    assert calls == []
    pipe.reach(SocketState.CONNECTED)
    assert calls == [1]


def test_connect_rejected_when_not_unconnected(comm, pipe, errors):
    assert comm.connect("192.168.88.1", 8728)
    assert comm.state == ConnectionState.HOST_LOOKUP
    assert comm.connect("192.168.88.1", 8728) is False
    assert errors == ["Trying to connect an already opened socket"]
    assert isinstance(comm.last_error, TransportError)


def test_error_before_connected_forces_unconnected(comm, pipe, errors):
    comm.connect("192.168.88.1", 8728)
    pipe.reach(SocketState.CONNECTING)
    pipe.fail("Connection refused")
    assert comm.state == ConnectionState.UNCONNECTED
    assert errors == ["Connection refused"]


def test_error_while_connected_keeps_state(comm, pipe, errors):
    open_connection(comm, pipe)
    pipe.fail("Broken pipe")
    assert comm.state == ConnectionState.CONNECTED
    assert errors == ["Broken pipe"]


def test_graceful_close(logged_in, pipe):
    logged_in.close()
    assert pipe.graceful == 1
    assert logged_in.is_closing
    pipe.reach(SocketState.UNCONNECTED)
    assert logged_in.state == ConnectionState.UNCONNECTED
    assert logged_in.login_state == LoginState.NOT_LOGGED_IN


def test_graceful_close_when_not_connected_is_noop(comm, pipe, errors):
    comm.close()
    comm.connect("192.168.88.1", 8728)
    comm.close()
    assert pipe.graceful == 0
    assert comm.state == ConnectionState.HOST_LOOKUP
    assert errors == []


@pytest.mark.parametrize("state", [
    SocketState.HOST_LOOKUP,
    SocketState.CONNECTING,
    SocketState.CONNECTED,
    SocketState.CLOSING,
])
def test_force_close_from_any_state(comm, pipe, errors, state):
    comm.connect("192.168.88.1", 8728)
    pipe.reach(state)
    # leave half a length prefix in flight
    pipe.feed(b"\xc0\x01")
    comm.close(force=True)
    assert comm.state == ConnectionState.UNCONNECTED
    assert comm.login_state == LoginState.NOT_LOGGED_IN
    assert comm.framer.pending.idle
    assert comm.assembler.words == []
    assert pipe.aborted == 1
    assert errors[-1] == "forced abort/close on socket"


def test_force_close_when_unconnected(comm, pipe, errors):
    comm.close(force=True)
    assert comm.state == ConnectionState.UNCONNECTED
    assert pipe.aborted == 0
    assert errors == []


def test_reconnect_after_force_close(logged_in, pipe):
    logged_in.close(force=True)
    pipe.written.clear()
    log_in(logged_in, pipe)
    assert logged_in.is_logged_in


# ─── Login state machine ──────────────────────────────────────────────────────

def test_login_happy_path(comm, pipe):
    logins = []
    comm.login_state_changed.connect(logins.append)
    open_connection(comm, pipe)

    pipe.feed(sentence_bytes("!done", f"=ret={CHALLENGE.hex()}"))
    assert comm.login_state == LoginState.USER_PASS_SENT
    assert pipe.sentences() == [
        ["/login"],
        ["/login", "=name=admin", f"=response={expected_response('secret')}"],
    ]

    pipe.feed(sentence_bytes("!done"))
    assert comm.is_logged_in
    assert logins == [LoginState.LOGIN_REQUESTED, LoginState.USER_PASS_SENT, LoginState.LOGGED_IN]


def test_login_challenge_byte_by_byte(comm, pipe):
    open_connection(comm, pipe)
    data = sentence_bytes("!done", f"=ret={CHALLENGE.hex()}")
    for b in data[:-1]:
        pipe.feed(bytes([b]))
        assert comm.login_state == LoginState.LOGIN_REQUESTED
    pipe.feed(data[-1:])
    assert comm.login_state == LoginState.USER_PASS_SENT
    assert pipe.sentences()[-1][2] == f"=response={expected_response('secret')}"


@pytest.mark.parametrize("ret", ["a" * 31, "a" * 33])
def test_challenge_wrong_length(comm, pipe, errors, ret):
    open_connection(comm, pipe)
    pipe.feed(sentence_bytes("!done", f"=ret={ret}"))
    assert isinstance(comm.last_error, LoginFailed)
    assert isinstance(comm.last_error, AuthenticationError)
    assert "32 characters" in errors[0]
    assert pipe.sentences() == [["/login"]]
    assert comm.state == ConnectionState.UNCONNECTED
    assert comm.login_state == LoginState.NOT_LOGGED_IN


@pytest.mark.parametrize("words, message", [
    (["!done"], "malformed challenge: no attributes"),
    (["!done", "=message=hello"], "malformed challenge: missing 'ret'"),
    (["!done", "=ret=" + "zz" * 16], "malformed challenge: 'ret' is not hexadecimal"),
    (["!done", "=ret=" + "a" * 32, "=extra=1"], "malformed challenge: expected 1 attribute, got 2"),
    (["!trap", "=message=not allowed"], "cannot login"),
])
def test_malformed_challenge(comm, pipe, errors, words, message):
    open_connection(comm, pipe)
    pipe.feed(sentence_bytes(*words))
    assert errors[0] == message
    assert isinstance(comm.last_error, LoginFailed)
    assert pipe.aborted == 1
    assert len(pipe.sentences()) == 1


def test_refused_challenge_has_no_remote_message(comm, pipe, errors):
    open_connection(comm, pipe)
    pipe.feed(sentence_bytes("!trap", "=message=not allowed") + sentence_bytes("!done"))
    assert errors == ["cannot login"]
    assert comm.last_error.remote_message == ""
    assert comm.state == ConnectionState.UNCONNECTED


def test_wrong_password(comm, pipe, errors):
    open_connection(comm, pipe)
    pipe.feed(sentence_bytes("!done", f"=ret={CHALLENGE.hex()}"))
    pipe.feed(sentence_bytes("!trap", "=message=cannot log in") + sentence_bytes("!done"))
    assert errors == ["invalid username or password", "remote msg: cannot log in"]
    assert comm.last_error.remote_message == "cannot log in"
    assert comm.state == ConnectionState.UNCONNECTED
    assert comm.login_state == LoginState.NOT_LOGGED_IN
    assert comm.framer.pending.idle


def test_login_machine_while_logged_in_is_a_bug(logged_in):
    with pytest.raises(InternalConsistencyFault):
        logged_in.handle_login_sentence(Sentence("!done"))


def test_sentence_before_login_started_is_ignored(comm, pipe):
    comm.handle_login_sentence(Sentence("!done"))
    assert comm.login_state == LoginState.NOT_LOGGED_IN
    assert pipe.written == []


def test_latin1_password(pipe):
    comm = Comm(pipe, lambda: Credentials("admin", "päss"), encoding="latin-1")
    open_connection(comm, pipe)
    pipe.feed(sentence_bytes("!done", f"=ret={CHALLENGE.hex()}"))
    response = "00" + hashlib.md5(b"\x00" + "päss".encode("latin-1") + CHALLENGE).hexdigest()
    assert pipe.sentences()[-1][2] == f"=response={response}"


# ─── After login ──────────────────────────────────────────────────────────────

def test_received_only_after_login(comm, pipe):
    received = []
    comm.received.connect(received.append)
    log_in(comm, pipe)
    assert received == []

    pipe.feed(sentence_bytes("!re", "=name=MikroTik", ".tag=1") + sentence_bytes("!done", ".tag=1"))
    assert [s.command for s in received] == ["!re", "!done"]
    assert received[0].attribute("name") == "MikroTik"
    assert received[0].tag == "1"


def test_framing_error_drops_connection(logged_in, pipe, errors):
    pipe.feed(b"\xf5garbage")
    assert isinstance(logged_in.last_error, FramingError)
    assert logged_in.state == ConnectionState.UNCONNECTED
    assert logged_in.framer.pending.idle


def test_send_requires_login(comm, pipe):
    with pytest.raises(NotLoggedIn):
        comm.send(Sentence("/system/identity/print"))
    open_connection(comm, pipe)
    with pytest.raises(NotLoggedIn):
        comm.send(Sentence("/system/identity/print"))
    assert pipe.sentences() == [["/login"]]


# ─── Sentence sender / tags ───────────────────────────────────────────────────

def test_auto_tags_increase(logged_in, pipe):
    first = logged_in.send(Sentence("/interface/print"))
    second = logged_in.send(Sentence("/interface/print"))
    assert int(second) > int(first) >= 1
    assert pipe.sentences() == [
        ["/interface/print", f".tag={first}"],
        ["/interface/print", f".tag={second}"],
    ]


def test_explicit_tag_reused(logged_in, pipe):
    before = logged_in.tag_counter.value
    assert logged_in.send(Sentence("/ip/address/print", tag="mine")) == "mine"
    assert pipe.sentences() == [["/ip/address/print", ".tag=mine"]]
    assert logged_in.tag_counter.value == before


def test_untagged_send(logged_in, pipe):
    assert logged_in.send(Sentence("/quit"), add_tag=False) == ""
    assert pipe.sentences() == [["/quit"]]


def test_word_group_order_on_wire(logged_in, pipe):
    s = Sentence("/interface/print", queries=["?type=ether"], api_attributes={"proplist": "name"})
    s.attributes["detail"] = ""
    tag = logged_in.send(s)
    assert pipe.sentences() == [["/interface/print", "=detail=", ".proplist=name", "?type=ether", f".tag={tag}"]]


def test_sentence_is_one_write(logged_in, pipe):
    logged_in.send(Sentence("/interface/print", attributes={"a": "1", "b": "2"}))
    assert len(pipe.written) == 1


def test_shared_tag_counter():
    counter = TagCounter()
    pipes = [PipeTransport(), PipeTransport()]
    comms = [Comm(p, lambda: Credentials("admin", "secret"), tag_counter=counter) for p in pipes]
    for c, p in zip(comms, pipes):
        log_in(c, p)
    tags = [comms[0].send(Sentence("/a")), comms[1].send(Sentence("/b")), comms[0].send(Sentence("/c"))]
    assert tags == ["1", "2", "3"]
