"""Periodic server status heartbeat.

Samples the host every ``interval`` seconds and publishes a ``status`` event
such as ``TPS: 19.87  | Online: 3``. Status events are never shed, so the relay
can use them as a liveness signal.
"""

import logging
import threading
from typing import Callable, Optional

from .backpressure import STATUS_TOPIC
from .host import GameHost, HostStatus

logger = logging.getLogger(__name__)


def format_status(status: HostStatus) -> str:
    """Render a status sample the way the relay displays it."""
    tps = status.tps
    value = f"{tps:.2f}" if tps is not None else "n/a"
    online = f" | Online: {status.player_count}" if status.player_count > 0 else ""
    # Same layout the relay already receives from the in-game reporter,
    # including the separator space: "TPS: 20.00 " and "TPS: 19.87  | Online: 3"
    return f"TPS: {value} {online}"


class StatusReporter:
    """Publishes host health on a fixed interval from a daemon thread."""

    def __init__(
        self,
        host: GameHost,
        publish: Callable[[str, str], bool],
        interval: float = 20.0,
    ):
        self.host = host
        self.publish = publish
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="relay-status", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def report_once(self) -> Optional[str]:
        """Sample and publish one status line. Returns the text, if any was sent."""
        if not self.host.is_ready():
            return None
        status = self.host.sample_status()
        if status is None:
            return None
        text = format_status(status)
        self.publish(STATUS_TOPIC, text)
        return text

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.report_once()
            except Exception:
                logger.exception("Status report failed")
