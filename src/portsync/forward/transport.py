"""Event transport: framing, decoding and draining of the monitor's line stream."""

import queue
import threading
from collections.abc import Callable, Iterator
from typing import TextIO

from ..common.exceptions import EventDecodeError, UnknownEventTypeError
from ..common.logging import get_logger
from ..events import ErrorEvent, PortEvent, decode_event

logger = get_logger(__name__)


class _Closed:
    def __repr__(self) -> str:
        return "CLOSED"


CLOSED = _Closed()
"""Queue sentinel: the event source has closed."""


class LineTransport:
    """Yields complete newline-terminated records from a text stream.

    A record is only handed out once its terminator has arrived. End of
    stream means the source closed; any unterminated remainder is dropped.
    """

    def __init__(self, stream: TextIO):
        self._stream = stream
        self.closed = False

    def lines(self) -> Iterator[str]:
        buffer = ""
        while True:
            chunk = self._stream.readline()
            if not chunk:
                if buffer:
                    logger.warning(
                        "Discarding incomplete record at end of stream",
                        size=len(buffer),
                    )
                logger.info("Event source closed")
                self.closed = True
                return

            buffer += chunk
            if not buffer.endswith("\n"):
                continue

            line, buffer = buffer.rstrip("\r\n"), ""
            if line.strip():
                yield line

    def events(self) -> Iterator[PortEvent | ErrorEvent]:
        """Decoded events; malformed and unknown records are logged and skipped."""
        for line in self.lines():
            try:
                yield decode_event(line)
            except UnknownEventTypeError as e:
                logger.warning("Ignoring unknown event type", event_type=e.event_type)
            except EventDecodeError as e:
                logger.warning("Discarding malformed event", line=line, error=str(e))


class TransportReader(threading.Thread):
    """Drains a transport into a queue on a daemon thread.

    The stream is opened lazily on the thread so that a blocking open (a
    FIFO with no writer yet) never stalls the consumer.
    """

    def __init__(
        self,
        open_stream: Callable[[], TextIO],
        events: "queue.Queue[object]",
    ):
        super().__init__(name="portsync-transport", daemon=True)
        self._open_stream = open_stream
        self._events = events
        self._stopped = threading.Event()

    def run(self) -> None:
        try:
            stream = self._open_stream()
            with stream:
                for event in LineTransport(stream).events():
                    if self._stopped.is_set():
                        break
                    self._events.put(event)
        except OSError as e:
            logger.error("Event transport failed", error=str(e))
        finally:
            self._events.put(CLOSED)

    def stop(self) -> None:
        """Stop handing events to the consumer."""
        self._stopped.set()
