"""Event shedding while commands are executing.

Status heartbeats always go through so the relay keeps seeing the server as
alive. Every other event topic is discarded at the producer while at least one
command is in flight, which keeps the control queue responsive.
"""

import threading

STATUS_TOPIC = "status"


class CommandTracker:
    """Counts commands currently executing on the host.

    A counter rather than a single flag: two overlapping commands must both
    finish before shedding stops.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0

    def begin(self) -> None:
        with self._lock:
            self._count += 1

    def end(self) -> None:
        with self._lock:
            if self._count > 0:
                self._count -= 1

    @property
    def count(self) -> int:
        return self._count

    @property
    def active(self) -> bool:
        return self._count > 0

    def should_shed(self, topic: str) -> bool:
        """True if an event on ``topic`` should be dropped right now."""
        return self.active and topic != STATUS_TOPIC
