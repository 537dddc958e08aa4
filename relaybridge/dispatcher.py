"""Inbound frame routing.

Runs on the WebSocket reader's context, so it only reassembles, decodes and
routes. Command execution itself is handed to the host by the CommandHandler.
"""

import logging
from typing import Callable

from .frames import DecodeError, FrameType, decode

logger = logging.getLogger(__name__)


class InboundDispatcher:
    """Reassembles fragmented messages and routes decoded frames."""

    def __init__(self, on_command: Callable[[str, str], None]):
        self.on_command = on_command
        self._fragments: list[str] = []

    def on_fragment(self, data: str | bytes, last: bool) -> None:
        """Buffer one fragment; handle the message once ``last`` arrives."""
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        self._fragments.append(data)
        if not last:
            return
        text = "".join(self._fragments)
        self._fragments.clear()
        self.handle_message(text)

    def reset(self) -> None:
        """Drop any partially received message."""
        self._fragments.clear()

    def handle_message(self, text: str) -> None:
        """Decode and route one complete message. Never raises."""
        text = text.strip()
        if not text:
            return
        logger.debug("WS recv: %s", text)

        try:
            frame = decode(text)
        except DecodeError as e:
            logger.warning("Discarding inbound frame (%s): %s", e, text)
            return

        if frame.type == FrameType.COMMAND.value:
            try:
                self.on_command(frame.id or "", frame.body or "")
            except Exception:
                logger.exception("Command handler failed for id=%s", frame.id)
        else:
            logger.warning("Unknown frame type: %s", frame.type)
