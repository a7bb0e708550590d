"""Writes monitor events to the outbound line stream."""

import sys
from typing import TextIO

from ..events import (
    ErrorEvent,
    ListeningSocket,
    PortAction,
    PortEvent,
    encode_event,
)


class EventEmitter:
    """Serializes each event as one newline-terminated JSON record."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout

    def emit(self, event: PortEvent | ErrorEvent) -> None:
        """Write one event and flush so the reader sees it immediately.

        Raises:
            BrokenPipeError: If the reading side has gone away
        """
        self._stream.write(encode_event(event) + "\n")
        self._stream.flush()

    def emit_port(self, action: PortAction, socket: ListeningSocket) -> None:
        self.emit(PortEvent.for_key(action, socket.key))

    def emit_error(self, message: str) -> None:
        self.emit(ErrorEvent(message=message))
