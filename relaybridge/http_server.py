"""Embedded HTTP server for local tooling.

Runs alongside the bridge so operators and local scripts can check the relay
link and inject events without speaking the relay protocol:

    GET  /health        link state and queue depths
    POST /api/events    {"topic": "...", "body": "..."} -> publish_event

Uses a socket-first approach so the port is reserved before uvicorn starts,
and runs uvicorn on its own event loop in a background thread.
"""

import asyncio
import logging
import socket
import threading
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .runtime import RuntimeInfo, get_version, write_runtime_info

logger = logging.getLogger(__name__)


class EventIn(BaseModel):
    """An event to forward to the relay."""
    topic: str = Field(min_length=1)
    body: str = ""


def create_app(tunnel: Any) -> FastAPI:
    """Build the FastAPI app for a RelayTunnel."""
    app = FastAPI(title="relaybridge", version=get_version())

    @app.get("/health")
    async def health():
        try:
            return {
                "status": "ok",
                "relay_connected": tunnel.is_connected(),
                "control_queue": tunnel.queues.control_depth,
                "event_queue": tunnel.queues.event_depth,
                "commands_in_flight": tunnel.tracker.count,
            }
        except Exception as e:
            return JSONResponse(
                status_code=500,
                content={"status": "error", "error": str(e)},
            )

    @app.post("/api/events")
    async def publish(event: EventIn):
        queued = tunnel.publish_event(event.topic, event.body)
        return {"queued": queued}

    return app


class EmbeddedHTTPServer:
    """Health/event server running in a background thread.

    The tunnel is only touched through its thread-safe methods, so no
    cross-loop scheduling is needed.
    """

    def __init__(self, tunnel: Any, host: str = "127.0.0.1", port: int = 0):
        self.tunnel = tunnel
        self.host = host
        self.requested_port = port
        self.actual_port: Optional[int] = None
        self._server: Optional[Any] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._bound_socket: Optional[socket.socket] = None
        self._ready_event = threading.Event()
        self._running = False

    def start(self) -> int:
        """Start serving. Returns the actual port."""
        if self._running:
            return self.actual_port or 0

        # Bind now so the port is reserved before uvicorn starts
        self._bound_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._bound_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._bound_socket.bind((self.host, self.requested_port))
        self._bound_socket.listen(100)
        self._bound_socket.setblocking(False)
        self.actual_port = self._bound_socket.getsockname()[1]

        self._ready_event.clear()
        self._thread = threading.Thread(target=self._run_server, name="relay-http", daemon=True)
        self._thread.start()

        if not self._ready_event.wait(timeout=10.0):
            raise RuntimeError("HTTP server failed to start within 10 seconds")

        write_runtime_info(port=self.actual_port, relay_url=self.tunnel.url)
        return self.actual_port

    def stop(self) -> None:
        """Stop the HTTP server."""
        self._running = False
        RuntimeInfo.clear()

        if self._server is not None:
            self._server.should_exit = True
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None

    def _run_server(self) -> None:
        """Run uvicorn (called in background thread)."""
        import uvicorn

        config = uvicorn.Config(
            app=create_app(self.tunnel),
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        # Signal handlers only work on the main thread
        self._server.install_signal_handlers = lambda: None

        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._running = True
        self._ready_event.set()
        try:
            self._loop.run_until_complete(self._server.serve(sockets=[self._bound_socket]))
        except Exception:
            logger.exception("HTTP server failed")
        finally:
            self._running = False
            if self._bound_socket:
                self._bound_socket.close()
                self._bound_socket = None
            self._loop.close()
