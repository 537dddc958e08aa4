"""Outbound frame queues.

Two bounded FIFO channels feed the single writer:

- control: command results and errors (small, always preferred)
- events: status and telemetry (large, best-effort)

Producers may call from any thread. Only the writer thread consumes.
"""

import logging
import queue
import threading
from typing import Optional

logger = logging.getLogger(__name__)

CONTROL_CAPACITY = 1000
EVENT_CAPACITY = 10000
CONTROL_OFFER_TIMEOUT = 0.2
POLL_TIMEOUT = 0.2


class OutboundQueues:
    """Control and event queues with priority draining."""

    def __init__(
        self,
        control_capacity: int = CONTROL_CAPACITY,
        event_capacity: int = EVENT_CAPACITY,
    ):
        self.control: queue.Queue[str] = queue.Queue(maxsize=control_capacity)
        self.events: queue.Queue[str] = queue.Queue(maxsize=event_capacity)
        self.control_dropped = 0
        self.events_dropped = 0
        self._drop_lock = threading.Lock()

    def offer_control(self, line: str, timeout: float = CONTROL_OFFER_TIMEOUT) -> bool:
        """Queue a control line, waiting up to ``timeout`` for room.

        Returns False (and drops the line) if the queue stays saturated. A
        ``timeout`` of 0 never waits.
        """
        try:
            if timeout > 0:
                self.control.put(line, timeout=timeout)
            else:
                self.control.put_nowait(line)
        except queue.Full:
            with self._drop_lock:
                self.control_dropped += 1
            logger.warning("Control queue saturated, dropping control frame: %s", line)
            return False
        logger.debug("Enqueue control: %s", line)
        return True

    def offer_event(self, line: str) -> bool:
        """Queue an event line without blocking. Drops it if the queue is full."""
        try:
            self.events.put_nowait(line)
        except queue.Full:
            with self._drop_lock:
                self.events_dropped += 1
            logger.warning("Event queue full, dropping EVT")
            return False
        return True

    def next_line(self, poll_timeout: float = POLL_TIMEOUT) -> Optional[str]:
        """Take the next line to send, control first.

        Waits up to ``poll_timeout`` on each queue in turn; returns None when
        both stayed empty. Lines already waiting are taken without any wait.
        """
        for channel in (self.control, self.events):
            try:
                return channel.get_nowait()
            except queue.Empty:
                pass
        try:
            return self.control.get(timeout=poll_timeout)
        except queue.Empty:
            pass
        try:
            return self.events.get(timeout=poll_timeout)
        except queue.Empty:
            return None

    @property
    def control_depth(self) -> int:
        return self.control.qsize()

    @property
    def event_depth(self) -> int:
        return self.events.qsize()
