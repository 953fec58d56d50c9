import asyncio

from diagnose import try_login
from roscomm.client import RouterAPIClient
from roscomm.mock_router import FakeRouter, MockTransport


class NoIdentityRouter(FakeRouter):
    def _print(self, cmd):
        if cmd == "/system/identity/print":
            return None
        return super()._print(cmd)


class SilentAfterLoginRouter(FakeRouter):
    def receive(self, data):
        answer = super().receive(data)
        return answer if self.received and self.received[-1].command == "/login" else b""


def run_login(router: FakeRouter, timeout: float = 2.0):
    async def scenario():
        client = RouterAPIClient(
            "mock", "admin", "secret",
            timeout=timeout,
            transport=MockTransport(router, auto_pump=True),
        )
        return await try_login(client), client

    return asyncio.run(scenario())


def test_try_login_reports_identity(capsys):
    ok, client = run_login(FakeRouter("admin", "secret", identity="core-sw"))
    assert ok
    assert "router identity: core-sw" in capsys.readouterr().out
    assert not client.connected


def test_try_login_reports_trap(capsys):
    ok, client = run_login(NoIdentityRouter("admin", "secret"))
    assert ok is False
    assert "no such command prefix" in capsys.readouterr().out
    assert not client.connected


def test_try_login_reports_timeout(capsys):
    ok, client = run_login(SilentAfterLoginRouter("admin", "secret"), timeout=0.05)
    assert ok is False
    assert "did not answer within 0.05s" in capsys.readouterr().out
    assert not client.connected


def test_try_login_reports_rejected_password(capsys):
    ok, _ = run_login(FakeRouter("admin", "other"))
    assert ok is False
    assert "invalid username or password" in capsys.readouterr().out
