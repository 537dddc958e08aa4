"""Game server interface used by the bridge.

The bridge never knows what a command does. It only needs a host that can
say whether it is ready, run work on its own serialized execution context,
and perform the handful of console actions the relay issues.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

MAX_TPS = 20.0


class HostError(RuntimeError):
    """A host operation failed."""


@dataclass
class HostStatus:
    """A health sample taken from the host."""
    player_count: int = 0
    mean_tick_ms: Optional[float] = None

    @property
    def tps(self) -> Optional[float]:
        if not self.mean_tick_ms:
            return None
        return min(1000.0 / self.mean_tick_ms, MAX_TPS)


class GameHost(ABC):
    """Everything the bridge needs from the game server."""

    @abstractmethod
    def is_ready(self) -> bool:
        """True once the server can execute commands."""

    @abstractmethod
    def submit(self, fn: Callable[[], None]) -> None:
        """Run ``fn`` later on the host's serialized execution context.

        Must not block the caller.
        """

    @abstractmethod
    def add_to_whitelist(self, name: str) -> None: ...

    @abstractmethod
    def remove_from_whitelist(self, name: str) -> None: ...

    @abstractmethod
    def broadcast(self, message: str) -> None: ...

    @abstractmethod
    def kick(self, name: str) -> None: ...

    @abstractmethod
    def run_command(self, command: str) -> list[str]:
        """Execute a raw console command and return its output lines."""

    def sample_status(self) -> Optional[HostStatus]:
        """Return a health sample, or None if the host cannot provide one."""
        return None


class SerialExecutorHost(GameHost):
    """GameHost base whose execution context is a single worker thread."""

    def __init__(self, thread_name: str = "host-exec"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name)

    def submit(self, fn: Callable[[], None]) -> None:
        self._executor.submit(fn)

    def close_executor(self, wait: bool = True) -> None:
        """Stop accepting work. Pending work still runs if ``wait`` is True."""
        self._executor.shutdown(wait=wait)
