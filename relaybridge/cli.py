#!/usr/bin/env python3
"""relaybridge CLI - headless bridge between a game server and the chat relay.

Usage:
    relaybridge --server-cmd "java -Xmx4G -jar server.jar nogui" --workdir /srv/game
    relaybridge --server-cmd "./run.sh" --relay-host relay.local --relay-port 8765

Environment variables (alternative to args):
    RELAY_HOST          Relay host (default: 127.0.0.1)
    RELAY_PORT          Relay port (default: 8765)
    RELAY_PATH          Relay WebSocket path (default: /mc)
    RELAY_SERVER_CMD    Command line that starts the game server
    RELAY_SERVER_DIR    Working directory for the game server
    RELAY_HTTP_PORT     Local health server port (default: auto)
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from .config import BridgeSettings
from .runtime import update_relay_status

console = Console(stderr=True)
log = logging.getLogger("relaybridge")

STATS_EVERY = 60  # seconds


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[RichHandler(console=console, show_path=False)],
    )


class BridgeCLI:
    """Runs the game server, the relay tunnel and the local health server."""

    def __init__(self, settings: BridgeSettings, http_enabled: bool = True):
        self.settings = settings
        self.http_enabled = http_enabled

        self._host = None
        self._tunnel = None
        self._reporter = None
        self._http = None
        self._running = False
        self._start_time: Optional[datetime] = None

    async def run(self) -> int:
        """Run the bridge. Returns exit code."""
        self._start_time = datetime.now()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._shutdown)

        log.info("=" * 50)
        log.info("relaybridge - Starting")
        log.info("=" * 50)

        try:
            if not self._start_server():
                return 1
            self._start_tunnel()
            if self.http_enabled and not self._start_http():
                return 1

            self._running = True
            log.info("Ready! Relaying %s", self.settings.url)
            log.info("Press Ctrl+C to stop")

            elapsed = 0
            while self._running:
                await asyncio.sleep(1)
                elapsed += 1
                if elapsed % STATS_EVERY == 0:
                    self._log_stats(elapsed)
                if self._host and not self._host.is_running():
                    log.error("Game server exited")
                    return 1

            return 0

        except Exception as e:
            log.error(f"Fatal error: {e}")
            return 1
        finally:
            self._cleanup()

    def _start_server(self) -> bool:
        """Launch the dedicated game server."""
        from .server_process import ServerProcessHost

        if not self.settings.server_cmd:
            log.error("No server command. Use --server-cmd or set RELAY_SERVER_CMD")
            return False

        workdir = Path(self.settings.server_dir) if self.settings.server_dir else None
        self._host = ServerProcessHost(
            self.settings.server_cmd,
            cwd=workdir,
            on_chat=self._on_chat,
        )
        try:
            self._host.start()
        except (OSError, RuntimeError) as e:
            log.error(f"Failed to start game server: {e}")
            return False
        return True

    def _start_tunnel(self) -> None:
        from .status_reporter import StatusReporter
        from .tunnel import RelayTunnel

        self._tunnel = RelayTunnel.from_settings(
            self.settings,
            self._host,
            on_connection_change=self._on_connection_change,
        )
        self._tunnel.start()

        self._reporter = StatusReporter(
            self._host, self._tunnel.publish_event, interval=self.settings.status_interval
        )
        self._reporter.start()

    def _start_http(self) -> bool:
        from .http_server import EmbeddedHTTPServer

        self._http = EmbeddedHTTPServer(self._tunnel, port=self.settings.http_port)
        try:
            port = self._http.start()
        except (OSError, RuntimeError) as e:
            log.error(f"Failed to start health server: {e}")
            return False
        log.info(f"Health server listening on 127.0.0.1:{port}")
        return True

    def _on_chat(self, name: str, text: str) -> None:
        if self._tunnel:
            self._tunnel.send_chat(f"<{name}> {text}")

    def _on_connection_change(self, connected: bool) -> None:
        if self._http:
            update_relay_status(connected)

    def _log_stats(self, elapsed: int) -> None:
        if not self._tunnel:
            return
        stats = self._tunnel.stats
        log.info(
            f"Stats: {elapsed // 60}m uptime | "
            f"{'connected' if self._tunnel.is_connected() else 'disconnected'} | "
            f"{stats.commands} commands | {stats.frames_sent} frames sent | "
            f"{stats.events_shed} shed | {self._tunnel.queues.events_dropped} dropped"
        )

    def _shutdown(self) -> None:
        """Graceful shutdown."""
        if not self._running:
            return
        log.info("Shutting down...")
        self._running = False

    def _cleanup(self) -> None:
        """Cleanup resources in reverse start order."""
        if self._http:
            self._http.stop()
        if self._reporter:
            self._reporter.stop()
        if self._tunnel:
            self._tunnel.shutdown()
        if self._host:
            self._host.stop()
        log.info("Goodbye!")


def main():
    """CLI entry point."""
    load_dotenv()
    defaults = BridgeSettings.from_env()

    parser = argparse.ArgumentParser(
        description="relaybridge - connect a game server to the chat relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  relaybridge --server-cmd "java -jar server.jar nogui" --workdir /srv/game
  relaybridge --server-cmd ./run.sh --relay-host 10.0.0.5 --relay-port 9000
  relaybridge status                 # Show whether a bridge is running
        """,
    )
    parser.add_argument(
        "--server-cmd",
        default=defaults.server_cmd,
        help="Command line that starts the game server (or set RELAY_SERVER_CMD)",
    )
    parser.add_argument(
        "--workdir",
        default=defaults.server_dir,
        help="Working directory for the game server",
    )
    parser.add_argument("--relay-host", default=defaults.relay_host, help="Relay host")
    parser.add_argument("--relay-port", type=int, default=defaults.relay_port, help="Relay port")
    parser.add_argument("--relay-path", default=defaults.relay_path, help="Relay WebSocket path")
    parser.add_argument(
        "--http-port",
        type=int,
        default=defaults.http_port,
        help="Local health server port (default: auto-assign)",
    )
    parser.add_argument(
        "--no-http",
        action="store_true",
        help="Do not start the local health server",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging (includes every frame sent and received)",
    )

    args = parser.parse_args()
    setup_logging(args.verbose)

    settings = replace(
        defaults,
        server_cmd=args.server_cmd,
        server_dir=args.workdir,
        relay_host=args.relay_host,
        relay_port=args.relay_port,
        relay_path=args.relay_path,
        http_port=args.http_port,
    )

    cli = BridgeCLI(settings, http_enabled=not args.no_http)
    exit_code = asyncio.run(cli.run())
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
