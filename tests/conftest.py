"""Shared fakes for relaybridge tests."""

import asyncio
import time
from typing import Callable, Optional

import pytest
import websockets
from websockets.protocol import State

from relaybridge.host import HostStatus, SerialExecutorHost


class FakeHost(SerialExecutorHost):
    """Records console actions instead of talking to a game server.

    With ``inline=True`` submitted work runs immediately on the caller's
    thread; otherwise it runs on the single host-exec worker like a real host.
    With ``hold=True`` submitted work is parked until ``run_pending()``.
    """

    def __init__(self, ready: bool = True, inline: bool = False, hold: bool = False):
        super().__init__(thread_name="fake-host")
        self.ready = ready
        self.inline = inline
        self.hold = hold
        self.calls: list[tuple[str, str]] = []
        self.command_output: list[str] = []
        self.fail_with: Optional[BaseException] = None
        self.status: Optional[HostStatus] = HostStatus(player_count=0, mean_tick_ms=50.0)
        self.pending: list[Callable[[], None]] = []

    def is_ready(self) -> bool:
        return self.ready

    def submit(self, fn: Callable[[], None]) -> None:
        if self.hold:
            self.pending.append(fn)
        elif self.inline:
            fn()
        else:
            super().submit(fn)

    def run_pending(self) -> None:
        pending, self.pending = self.pending, []
        for fn in pending:
            fn()

    def _record(self, action: str, arg: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append((action, arg))

    def add_to_whitelist(self, name: str) -> None:
        self._record("whitelist_add", name)

    def remove_from_whitelist(self, name: str) -> None:
        self._record("whitelist_remove", name)

    def broadcast(self, message: str) -> None:
        self._record("broadcast", message)

    def kick(self, name: str) -> None:
        self._record("kick", name)

    def run_command(self, command: str) -> list[str]:
        self._record("command", command)
        return list(self.command_output)

    def sample_status(self) -> Optional[HostStatus]:
        return self.status


class FakeConnection:
    """Stands in for a websockets ClientConnection on the tunnel's loop."""

    def __init__(self):
        self.state = State.OPEN
        self.sent: list[str] = []
        self.inbound: list[list[str]] = []
        self.fail_send: Optional[BaseException] = None
        self.send_delay = 0.0
        self.closed_with: Optional[tuple[int, str]] = None

    def push(self, *fragments: str) -> None:
        """Queue one inbound message, delivered as the given fragments."""
        self.inbound.append(list(fragments))

    async def recv_streaming(self):
        while self.state is State.OPEN and not self.inbound:
            await asyncio.sleep(0.01)
        if self.state is not State.OPEN:
            raise websockets.ConnectionClosedOK(None, None)
        for fragment in self.inbound.pop(0):
            yield fragment

    async def send(self, message: str) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self.state = State.CLOSED


class FakeConnector:
    """Replacement for websockets.connect.

    Fails the first ``failures`` attempts, and blocks while ``blocked`` is set.
    """

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.blocked = False
        self.hang = False
        self.calls = 0
        self.connections: list[FakeConnection] = []

    async def __call__(self, url: str, open_timeout: float = 10.0) -> FakeConnection:
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.blocked or self.failures > 0:
            if self.failures > 0:
                self.failures -= 1
            raise ConnectionRefusedError("refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


def wait_until(condition: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll ``condition`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


@pytest.fixture
def host():
    fake = FakeHost()
    yield fake
    fake.close_executor(wait=False)


@pytest.fixture
def connector():
    return FakeConnector()
