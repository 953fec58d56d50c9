"""
Async RouterOS API client on top of Comm.

Features:
  - connect() waits for the MD5 challenge login, with a timeout
  - Request tag multiplexing (multiple concurrent commands)
  - Streaming command support (e.g., /log/print follow=yes)
  - Per-command timeouts; a peer that stops answering gets force-closed
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from .comm import Comm, ConnectionState, Credentials, LoginState, TagCounter
from .errors import APIError, NotLoggedIn, TransportError
from .sentence import ResultType, Sentence
from .transport import AsyncioTransport, Transport

log = logging.getLogger("RouterClient")


class RouterAPIClient:
    """
    Usage:
        client = RouterAPIClient("192.168.88.1", "admin", "", port=8728)
        await client.connect()
        results = await client.command("/ip/address/print")
        async for row in client.stream("/log/print", {"follow": ""}):
            print(row)
        await client.close()
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 8728,
        timeout: float = 10.0,
        encoding: str = "utf-8",
        transport: Optional[Transport] = None,
        tag_counter: Optional[TagCounter] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

        self._comm = Comm(
            transport or AsyncioTransport(connect_timeout=timeout),
            self._credentials,
            encoding=encoding,
            tag_counter=tag_counter,
        )
        self._comm.received.connect(self._dispatch)
        self._comm.login_state_changed.connect(self._on_login_state)
        self._comm.state_changed.connect(self._on_state)
        self._comm.error.connect(self._on_error)

        # tag -> asyncio.Queue for multiplexed responses
        self._pending: dict[str, asyncio.Queue] = {}
        self._login_waiter: Optional[asyncio.Future] = None
        self._closed_waiter: Optional[asyncio.Future] = None

    # ─── Connection ───────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        if self._comm.is_logged_in:
            return True
        if self._comm.state != ConnectionState.UNCONNECTED:
            self._comm.close(force=True)

        waiter = asyncio.get_running_loop().create_future()
        self._login_waiter = waiter
        if not self._comm.connect(self.host, self.port):
            self._login_waiter = None
            return False

        try:
            await asyncio.wait_for(waiter, timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning(f"Login to {self.host}:{self.port} timed out after {self.timeout}s")
            self._comm.close(force=True)
            return False
        except Exception as e:
            log.warning(f"Cannot connect to {self.host}:{self.port}: {self._comm.last_error or e}")
            return False
        finally:
            self._login_waiter = None

        log.info(f"Connected to {self.host}:{self.port}")
        return True

    async def close(self):
        if self._comm.state == ConnectionState.UNCONNECTED:
            return
        if not self._comm.is_connected:
            self._comm.close(force=True)
            return

        self._closed_waiter = asyncio.get_running_loop().create_future()
        self._comm.close()
        try:
            await asyncio.wait_for(self._closed_waiter, timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning(f"Graceful close of {self.host}:{self.port} timed out, aborting")
            self._comm.close(force=True)
        finally:
            self._closed_waiter = None

    @property
    def connected(self) -> bool:
        return self._comm.is_connected

    @property
    def logged_in(self) -> bool:
        return self._comm.is_logged_in

    @property
    def comm(self) -> Comm:
        return self._comm

    @property
    def last_error(self) -> Exception | None:
        return self._comm.last_error

    # ─── Command Execution ────────────────────────────────────────────────────

    async def command(
        self,
        path: str,
        params: dict | None = None,
        queries: list[str] | None = None,
    ) -> list[dict]:
        """Execute a command and return all !re responses."""
        tag, q = self._submit(path, params, queries)
        try:
            results = []
            while True:
                resp = await self._next(q)
                rt = resp.result_type
                if rt == ResultType.REPLY:
                    results.append(dict(resp.attributes))
                elif rt == ResultType.DONE:
                    break
                elif rt in (ResultType.TRAP, ResultType.FATAL):
                    msg = resp.attribute("message") or str(resp.attributes)
                    raise APIError(msg, resp.attribute("category") or "")
            return results
        finally:
            self._pending.pop(tag, None)

    async def stream(
        self,
        path: str,
        params: dict | None = None,
        queries: list[str] | None = None,
    ) -> AsyncIterator[dict]:
        """
        Stream !re responses (for follow=yes commands).
        Yields attr dicts until !done, cancellation or a dropped connection.
        """
        tag, q = self._submit(path, params, queries)
        try:
            while True:
                resp = await q.get()
                rt = resp.result_type
                if rt == ResultType.REPLY:
                    yield dict(resp.attributes)
                elif rt == ResultType.DONE:
                    break
                elif rt in (ResultType.TRAP, ResultType.FATAL):
                    raise APIError(resp.attribute("message") or str(resp.attributes))
        finally:
            self._pending.pop(tag, None)
            # Send /cancel to stop the streaming command
            if self._comm.is_logged_in:
                try:
                    self._comm.send(Sentence("/cancel", attributes={"tag": tag}))
                except (NotLoggedIn, TransportError) as e:
                    log.debug(f"Cannot cancel stream {tag}: {e}")

    async def command_one(self, path: str, params: dict | None = None) -> dict | None:
        """Execute and return first result or None."""
        results = await self.command(path, params)
        return results[0] if results else None

    # ─── Internal ─────────────────────────────────────────────────────────────

    def _credentials(self) -> Credentials:
        return Credentials(self.username, self.password)

    @staticmethod
    def _build_sentence(path: str, params: dict | None, queries: list[str] | None) -> Sentence:
        sentence = Sentence(path)
        for k, v in (params or {}).items():
            sentence.attributes[k] = "" if v is None else str(v)
        sentence.queries.extend(queries or [])
        return sentence

    def _submit(self, path, params, queries) -> tuple[str, asyncio.Queue]:
        sentence = self._build_sentence(path, params, queries)
        sentence.tag = str(self._comm.tag_counter.next())
        q: asyncio.Queue = asyncio.Queue()
        self._pending[sentence.tag] = q
        try:
            self._comm.send(sentence)
        except Exception:
            self._pending.pop(sentence.tag, None)
            raise
        return sentence.tag, q

    async def _next(self, q: asyncio.Queue) -> Sentence:
        try:
            return await asyncio.wait_for(q.get(), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning(f"{self.host}: no answer within {self.timeout}s, dropping connection")
            self._comm.close(force=True)
            raise

    def _dispatch(self, sentence: Sentence):
        q = self._pending.get(sentence.tag)
        if q is not None:
            q.put_nowait(sentence)
        else:
            # Untagged or unknown – log it
            log.debug(f"Untagged response: {sentence.command} {sentence.attributes}")

    def _on_login_state(self, state: LoginState):
        if state == LoginState.LOGGED_IN and self._login_waiter and not self._login_waiter.done():
            self._login_waiter.set_result(True)

    def _on_error(self, message: str):
        if self._login_waiter and not self._login_waiter.done():
            self._login_waiter.set_exception(self._comm.last_error or TransportError(message))

    def _on_state(self, state: ConnectionState):
        if state != ConnectionState.UNCONNECTED:
            return
        if self._login_waiter and not self._login_waiter.done():
            self._login_waiter.set_exception(TransportError("Connection closed during login"))
        if self._closed_waiter and not self._closed_waiter.done():
            self._closed_waiter.set_result(True)
        # Unblock all waiters with fatal
        for q in self._pending.values():
            q.put_nowait(Sentence("!fatal", attributes={"message": "disconnected"}))
