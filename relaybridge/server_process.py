"""Dedicated game server process management.

Runs the server as a subprocess and drives it through its console. Commands
are written to stdin; stdout is tailed on a reader thread to learn when the
server is ready, who is online, and what players say in chat.
"""

import logging
import re
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Callable, Optional

from .host import HostError, HostStatus, SerialExecutorHost

logger = logging.getLogger(__name__)

# "[12:00:00] [Server thread/INFO]: " and "[12:00:00] [Server thread/INFO] [minecraft/DedicatedServer]: "
LOG_PREFIX = re.compile(r"^\[[^\]]*\](?:\s*\[[^\]]*\])*:\s*")
READY_LINE = re.compile(r"Done \([^)]*\)! For help")
JOINED_LINE = re.compile(r"^(\S+) joined the game$")
LEFT_LINE = re.compile(r"^(\S+) left the game$")
CHAT_LINE = re.compile(r"^<([^>]+)> (.*)$")

# Extra time to collect trailing lines after a command's first output line
OUTPUT_GRACE = 0.1


def strip_log_prefix(line: str) -> str:
    """Remove the timestamp/thread prefix from a console line."""
    return LOG_PREFIX.sub("", line, count=1)


class ServerProcessHost(SerialExecutorHost):
    """Game host backed by a dedicated server subprocess."""

    def __init__(
        self,
        command: str | list[str],
        cwd: Optional[Path] = None,
        response_window: float = 0.5,
        on_chat: Callable[[str, str], None] | None = None,
    ):
        super().__init__()
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.cwd = cwd
        self.response_window = response_window
        self.on_chat = on_chat
        self.process: Optional[subprocess.Popen] = None

        self._ready = threading.Event()
        self._players: set[str] = set()
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._capture: Optional[list[str]] = None
        self._got_output = threading.Event()
        self._reader: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the server process."""
        if self.process is not None:
            raise RuntimeError("Server already running")
        if not self.command:
            raise RuntimeError("No server command configured")

        logger.info("Starting server: %s", " ".join(self.command))
        self.process = subprocess.Popen(
            self.command,
            cwd=self.cwd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
        self._reader = threading.Thread(
            target=self._read_output, args=(self.process,), name="server-stdout", daemon=True
        )
        self._reader.start()

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the server: console ``stop`` first, then terminate, then kill."""
        process = self.process
        if process:
            if process.poll() is None:
                try:
                    self._write("stop")
                except HostError as e:
                    logger.debug("Could not send stop command: %s", e)
                try:
                    process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    process.terminate()
                    try:
                        process.wait(timeout=5)
                    except subprocess.TimeoutExpired:
                        process.kill()
            self.process = None
        self._ready.clear()
        with self._lock:
            self._players.clear()
        self.close_executor(wait=False)

    def is_running(self) -> bool:
        """Check if the server process is alive."""
        if self.process is None:
            return False
        return self.process.poll() is None

    def wait_for_ready(self, timeout: float) -> bool:
        return self._ready.wait(timeout)

    # =========================================================================
    # GameHost
    # =========================================================================

    def is_ready(self) -> bool:
        return self.is_running() and self._ready.is_set()

    def add_to_whitelist(self, name: str) -> None:
        self._write(f"whitelist add {self._player_name(name)}")

    def remove_from_whitelist(self, name: str) -> None:
        self._write(f"whitelist remove {self._player_name(name)}")

    def broadcast(self, message: str) -> None:
        self._write(f"say {message}")

    def kick(self, name: str) -> None:
        self._write(f"kick {self._player_name(name)}")

    def run_command(self, command: str) -> list[str]:
        """Send a console command and collect the output that follows it."""
        with self._lock:
            self._capture = []
            self._got_output.clear()
        try:
            self._write(command)
            if self._got_output.wait(self.response_window):
                self._got_output.clear()
                # keep collecting while lines keep arriving
                while self._got_output.wait(OUTPUT_GRACE):
                    self._got_output.clear()
        finally:
            with self._lock:
                lines, self._capture = self._capture or [], None
        return lines

    def sample_status(self) -> Optional[HostStatus]:
        # The console does not expose tick timings
        with self._lock:
            return HostStatus(player_count=len(self._players))

    @property
    def players(self) -> list[str]:
        with self._lock:
            return sorted(self._players)

    # =========================================================================
    # Console I/O
    # =========================================================================

    @staticmethod
    def _player_name(name: str) -> str:
        name = name.strip()
        if not name or any(c.isspace() for c in name):
            raise HostError(f"Invalid player name: '{name}'")
        return name

    def _write(self, line: str) -> None:
        if "\n" in line or "\r" in line:
            raise HostError("Console commands must be a single line")
        process = self.process
        if process is None or process.poll() is not None or process.stdin is None:
            raise HostError("server process not running")
        with self._write_lock:
            try:
                process.stdin.write(line + "\n")
                process.stdin.flush()
            except OSError as e:
                raise HostError(f"Console write failed: {e}") from e

    def _read_output(self, process: subprocess.Popen) -> None:
        for raw in process.stdout:
            line = raw.rstrip("\r\n")
            logger.debug("[server] %s", line)
            try:
                self._handle_line(line)
            except Exception:
                logger.exception("Failed to handle server output line")
        self._ready.clear()
        logger.warning("Server process exited (code %s)", process.wait())

    def _handle_line(self, line: str) -> None:
        message = strip_log_prefix(line)

        if READY_LINE.search(message):
            self._ready.set()
            logger.info("Server ready")

        chat = None
        with self._lock:
            if match := JOINED_LINE.match(message):
                self._players.add(match.group(1))
            elif match := LEFT_LINE.match(message):
                self._players.discard(match.group(1))
            elif match := CHAT_LINE.match(message):
                chat = (match.group(1), match.group(2))

            if self._capture is not None:
                self._capture.append(message)
                self._got_output.set()

        if chat and self.on_chat:
            self.on_chat(*chat)
