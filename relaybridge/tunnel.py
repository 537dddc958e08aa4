"""WebSocket tunnel to the chat relay.

This is the core of the bridge. It:
1. Keeps one WebSocket connection to the relay, re-establishing it on a fixed
   interval whenever it is missing
2. Receives command frames and hands them to the game server
3. Sends command replies ahead of events from two bounded queues
4. Sheds non-status events while a command is executing

Threads:
- relay-ws-loop: asyncio loop running the supervisor and the reader
- relay-ws-writer: sole consumer of the outbound queues
- the host's own execution context, which runs commands and enqueues replies
"""

import asyncio
import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.protocol import State

from .backpressure import CommandTracker
from .commands import CommandHandler
from .config import BridgeSettings
from .dispatcher import InboundDispatcher
from .frames import Frame, encode
from .host import GameHost
from .queues import CONTROL_CAPACITY, CONTROL_OFFER_TIMEOUT, EVENT_CAPACITY, POLL_TIMEOUT, OutboundQueues

logger = logging.getLogger(__name__)

IDLE_WAIT = 0.2
CLOSE_NORMAL = 1000

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def is_open(ws: Any) -> bool:
    """True if ``ws`` is a connection that can still be written to."""
    return ws is not None and ws.state is State.OPEN


class ConnectionSlot:
    """Holds the single active connection.

    Values are only ever replaced or cleared as a whole. ``clear`` takes the
    connection the caller saw fail, so a stale failure never removes a newer
    connection.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ws: Any = None

    def get(self) -> Any:
        with self._lock:
            return self._ws

    def install(self, ws: Any) -> None:
        with self._lock:
            self._ws = ws

    def clear(self, expected: Any = None) -> bool:
        """Clear the slot; with ``expected``, only if it still holds that value."""
        with self._lock:
            if self._ws is None:
                return False
            if expected is not None and self._ws is not expected:
                return False
            self._ws = None
            return True

    def take(self) -> Any:
        with self._lock:
            ws, self._ws = self._ws, None
            return ws


@dataclass
class TunnelStats:
    """Counters for operator logging. Updated from several threads through ``incr``."""
    connects: int = 0
    connect_failures: int = 0
    frames_sent: int = 0
    send_failures: int = 0
    commands: int = 0
    events_shed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)


class RelayTunnel:
    """
    Bridges a game server to the chat relay over one WebSocket.

    Commands from the relay are executed on the host and answered with exactly
    one RES or ERR frame. Events published by the host are fire-and-forget.
    Nothing here blocks the caller of ``publish_event`` or the host's
    execution context beyond a bounded queue offer.
    """

    def __init__(
        self,
        url: str,
        host: GameHost,
        reconnect_interval: float = 5.0,
        connect_timeout: float = 5.0,
        send_timeout: float = 5.0,
        control_capacity: int = CONTROL_CAPACITY,
        event_capacity: int = EVENT_CAPACITY,
        connect: Callable[..., Awaitable[Any]] | None = None,
        log_callback: Callable[[str, str], None] | None = None,
        on_connection_change: Callable[[bool], None] | None = None,
    ):
        self.url = url
        self.host = host
        self.reconnect_interval = reconnect_interval
        self.connect_timeout = connect_timeout
        self.send_timeout = send_timeout
        self.log_callback = log_callback
        self.on_connection_change = on_connection_change

        self.queues = OutboundQueues(control_capacity, event_capacity)
        self.tracker = CommandTracker()
        self.commands = CommandHandler(host, self._enqueue_control, self.tracker)
        self.stats = TunnelStats()

        self._connect = connect or websockets.connect
        self._slot = ConnectionSlot()
        self._connect_lock = asyncio.Lock()
        self._stop = threading.Event()
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None
        self._writer_thread: threading.Thread | None = None
        self._supervisor_task: asyncio.Task | None = None
        self._reader_tasks: set[asyncio.Task] = set()
        self._closing: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: BridgeSettings, host: GameHost, **kwargs) -> "RelayTunnel":
        return cls(
            settings.url,
            host,
            reconnect_interval=settings.reconnect_interval,
            connect_timeout=settings.connect_timeout,
            send_timeout=settings.send_timeout,
            control_capacity=settings.control_queue_size,
            event_capacity=settings.event_queue_size,
            **kwargs,
        )

    def _log(self, message: str, level: str = "info"):
        """Log a lifecycle message, mirroring it to the callback if one is set."""
        logger.log(_LEVELS.get(level, logging.INFO), message)
        if self.log_callback:
            self.log_callback(message, level)

    # =========================================================================
    # Host-facing API
    # =========================================================================

    def start(self) -> None:
        """Start the connection loop and the writer thread."""
        if self._running:
            return
        self._running = True
        self._stop.clear()

        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._run_loop, name="relay-ws-loop", daemon=True
        )
        self._loop_thread.start()

        self._writer_thread = threading.Thread(
            target=self._write_loop, name="relay-ws-writer", daemon=True
        )
        self._writer_thread.start()

    def is_connected(self) -> bool:
        return is_open(self._slot.get())

    @property
    def running(self) -> bool:
        return self._running

    def publish_event(self, topic: str, body: str) -> bool:
        """Queue an event for the relay. Fire-and-forget.

        Returns True if the event was queued, False if it was shed or dropped.
        """
        if self.tracker.should_shed(topic):
            self.stats.incr("events_shed")
            logger.debug("Shedding '%s' event while a command is in flight", topic)
            return False
        return self.queues.offer_event(encode(Frame.event(topic, body)))

    def send_chat(self, message: str) -> bool:
        """Relay an in-game chat line."""
        return self.publish_event("chat", message)

    def shutdown(self, timeout: float = 2.0) -> None:
        """Stop everything. Frames still queued are lost.

        Sends a best-effort close frame on the active connection.
        """
        if not self._running:
            return
        self._running = False
        self._stop.set()

        loop = self._loop
        if loop is not None and not loop.is_closed():
            if loop.is_running():
                future = asyncio.run_coroutine_threadsafe(self._close_active(), loop)
                try:
                    future.result(timeout=timeout)
                except Exception as e:
                    logger.debug("Close during shutdown failed: %s", e)
            loop.call_soon_threadsafe(loop.stop)
        self._slot.take()

        current = threading.current_thread()
        for thread in (self._writer_thread, self._loop_thread):
            if thread is not None and thread is not current:
                thread.join(timeout=timeout)

        self._log("Relay bridge stopped", "warn")

    # =========================================================================
    # Connection supervision (runs on relay-ws-loop)
    # =========================================================================

    def _run_loop(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        self._supervisor_task = loop.create_task(self._supervise())
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()

    async def _supervise(self) -> None:
        """Attempt a connection now, then every ``reconnect_interval``."""
        while not self._stop.is_set():
            try:
                await self.ensure_connected()
            except Exception:
                logger.exception("Connection supervisor error")
            await asyncio.sleep(self.reconnect_interval)

    async def ensure_connected(self) -> bool:
        """Make sure a live connection exists. Returns True if one does.

        Serialized by a lock, so concurrent calls never open two connections.
        """
        async with self._connect_lock:
            ws = self._slot.get()
            if ws is not None and not is_open(ws):
                self._drop_connection(ws)
                ws = None
            if ws is not None:
                return True
            if self._stop.is_set():
                return False

            self._log(f"Connecting to relay at {self.url}...", "info")
            try:
                ws = await asyncio.wait_for(
                    self._connect(self.url, open_timeout=self.connect_timeout),
                    timeout=self.connect_timeout + 1.0,
                )
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.connect_timeout}s"
            except websockets.exceptions.InvalidURI as e:
                last_error = f"invalid relay URL: {e}"
            except websockets.exceptions.InvalidHandshake as e:
                last_error = f"handshake failed: {e}"
            except ConnectionRefusedError:
                last_error = "connection refused - relay unreachable"
            except OSError as e:
                last_error = f"network error: {e}"
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                last_error = ""

            if last_error:
                self.stats.incr("connect_failures")
                self._log(f"Relay connect failed: {last_error}", "warn")
                return False

            if self._stop.is_set():
                await self._close_quietly(ws)
                return False

            self._slot.install(ws)
            self.stats.incr("connects")
            reader = asyncio.create_task(self._read_messages(ws))
            self._reader_tasks.add(reader)
            reader.add_done_callback(self._reader_tasks.discard)
            self._log("Relay connected.", "success")
            self._notify_connection(True)
            return True

    async def _read_messages(self, ws: Any) -> None:
        """Feed inbound fragments to this connection's dispatcher until it ends."""

        def on_command(id: str, text: str) -> None:
            if self._slot.get() is not ws:
                logger.warning("Ignoring command id=%s from a replaced connection", id)
                return
            self._on_command(id, text)

        dispatcher = InboundDispatcher(on_command)
        try:
            while True:
                # Hold back one fragment so the dispatcher learns which is last
                pending = None
                async for fragment in ws.recv_streaming():
                    if pending is not None:
                        dispatcher.on_fragment(pending, last=False)
                    pending = fragment
                dispatcher.on_fragment(pending if pending is not None else "", last=True)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            self._log(f"Relay connection closed: {e}", "warn")
        except Exception as e:
            logger.exception("Relay reader failed")
            self._log(f"Relay reader error: {e}", "error")
        finally:
            self._drop_connection(ws)

    async def _close_active(self) -> None:
        for task in (self._supervisor_task, *self._reader_tasks):
            if task is not None:
                task.cancel()
        ws = self._slot.take()
        if ws is not None:
            self._notify_connection(False)
            await self._close_quietly(ws)

    async def _close_quietly(self, ws: Any, reason: str = "shutdown") -> None:
        try:
            await ws.close(code=CLOSE_NORMAL, reason=reason)
        except Exception as e:
            logger.debug("Ignoring close error: %s", e)

    def _drop_connection(self, ws: Any) -> None:
        """Forget ``ws`` and close it so the supervisor replaces it.

        Safe from any thread. Closing ends the connection's reader, so at most
        one connection is ever live.
        """
        if self._slot.clear(ws):
            self._log("Relay connection invalidated; reconnecting on next tick", "warn")
            self._notify_connection(False)
            self._schedule_close(ws)

    def _schedule_close(self, ws: Any) -> None:
        close = self._close_quietly(ws, reason="invalidated")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None:
            task = running.create_task(close)
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
            return
        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            close.close()
            return
        asyncio.run_coroutine_threadsafe(close, loop)

    def _notify_connection(self, connected: bool) -> None:
        if not self.on_connection_change:
            return
        try:
            self.on_connection_change(connected)
        except Exception:
            logger.exception("Connection change callback failed")

    # =========================================================================
    # Inbound / outbound plumbing
    # =========================================================================

    def _on_command(self, id: str, text: str) -> None:
        self.stats.incr("commands")
        self.commands.on_command(id, text)

    def _enqueue_control(self, frame: Frame) -> None:
        # Replies produced on the event loop (not-ready errors) must never wait
        try:
            asyncio.get_running_loop()
            timeout = 0.0
        except RuntimeError:
            timeout = CONTROL_OFFER_TIMEOUT
        self.queues.offer_control(encode(frame), timeout=timeout)

    def _write_loop(self) -> None:
        """Drain control then events onto the active connection."""
        while not self._stop.is_set():
            ws = self._slot.get()
            if not is_open(ws):
                if ws is not None:
                    self._drop_connection(ws)
                self._stop.wait(IDLE_WAIT)
                continue

            line = self.queues.next_line(POLL_TIMEOUT)
            if line is None:
                continue
            self._send_line(ws, line)

    def _send_line(self, ws: Any, line: str) -> bool:
        """Send one line and wait for completion. The line is not retried."""
        logger.debug("WS send: %s", line)
        future = None
        try:
            future = asyncio.run_coroutine_threadsafe(ws.send(line), self._loop)
            future.result(timeout=self.send_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "WebSocket send timed out after %ss - connection may be blocked",
                self.send_timeout,
            )
        except Exception as e:
            logger.warning("Writer error: %s", e)
        else:
            self.stats.incr("frames_sent")
            return True

        self.stats.incr("send_failures")
        self._drop_connection(ws)
        return False
