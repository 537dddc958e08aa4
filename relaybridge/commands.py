"""Relay command execution.

A command frame becomes one unit of work on the host's execution context and
exactly one reply frame: RES with the command output, or ERR with the reason.
"""

import logging
from functools import partial
from typing import Callable

from .backpressure import CommandTracker
from .frames import Frame
from .host import GameHost

logger = logging.getLogger(__name__)

OK = "ok"
NOT_READY = "server not ready"


class CommandHandler:
    """Routes command text to host actions and replies with the outcome."""

    def __init__(
        self,
        host: GameHost,
        reply: Callable[[Frame], None],
        tracker: CommandTracker,
    ):
        self.host = host
        self.reply = reply
        self.tracker = tracker

        # Checked in order; matching is case-insensitive on the prefix only.
        self._prefixes: list[tuple[str, Callable[[str], str]]] = [
            ("whitelist add ", self._whitelist_add),
            ("unwhitelist ", self._unwhitelist),
            ("say ", self._say),
            ("kick ", self._kick),
            ("commandexec ", self._command_exec),
        ]

    def on_command(self, id: str, text: str) -> None:
        """Accept a command from the dispatcher. Never blocks on execution."""
        command = text.strip()

        if not self.host.is_ready():
            self.reply(Frame.error(id, NOT_READY))
            return

        logger.debug("CMD id=%s body='%s'", id, command)
        self.tracker.begin()
        try:
            self.host.submit(partial(self._run, id, command))
        except Exception as e:
            # Host refused the work (e.g. shutting down); _run will never execute
            self.tracker.end()
            logger.warning("CMD id=%s could not be dispatched: %s", id, e)
            self.reply(Frame.error(id, str(e) or "error"))

    def _run(self, id: str, command: str) -> None:
        """Unit of work executed on the host context."""
        try:
            output = self.execute(command)
            logger.debug("CMD id=%s complete body='%s'", id, output)
            frame = Frame.result(id, output)
        except Exception as e:
            message = str(e) or "error"
            logger.warning("CMD id=%s error %s", id, message, exc_info=True)
            frame = Frame.error(id, message)
        finally:
            self.tracker.end()
        self.reply(frame)

    def execute(self, command: str) -> str:
        """Run ``command`` against the host and return the reply body."""
        lower = command.lower()
        for prefix, action in self._prefixes:
            if lower.startswith(prefix):
                return action(command[len(prefix):])
        if lower == "list":
            return self._first_line(self.host.run_command("list"))
        # Unrecognized text is relayed chat
        self.host.broadcast(command)
        return OK

    def _whitelist_add(self, arg: str) -> str:
        self.host.add_to_whitelist(arg.strip())
        return OK

    def _unwhitelist(self, arg: str) -> str:
        self.host.remove_from_whitelist(arg.strip())
        return OK

    def _say(self, arg: str) -> str:
        self.host.broadcast(arg)
        return OK

    def _kick(self, arg: str) -> str:
        self.host.kick(arg.strip())
        return OK

    def _command_exec(self, arg: str) -> str:
        return self._first_line(self.host.run_command(arg))

    @staticmethod
    def _first_line(lines: list[str]) -> str:
        return lines[0] if lines else OK
