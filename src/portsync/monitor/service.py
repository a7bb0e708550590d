"""Remote-side monitoring loop: sampler -> differ -> emitter."""

import signal
import threading
import time
from collections.abc import Callable
from types import FrameType

from ..common.config import MonitorConfig
from ..common.exceptions import SamplerError
from ..common.logging import get_logger
from ..events import ListeningSocket, PortEvent
from .differ import LifecycleDiffer
from .emitter import EventEmitter
from .sampler import SocketSampler

logger = get_logger(__name__)


class PortMonitor:
    """Runs the continuous and full-reconciliation passes on independent timers."""

    def __init__(
        self,
        sampler: SocketSampler,
        emitter: EventEmitter,
        config: MonitorConfig | None = None,
        differ: LifecycleDiffer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sampler = sampler
        self.emitter = emitter
        self.config = config or MonitorConfig()
        self.differ = differ or LifecycleDiffer()
        self._clock = clock
        self._stop = threading.Event()
        self._stop_reason: str | None = None
        self.stream_closed = False

    def sample_pass(self) -> list[PortEvent]:
        """Continuous pass: report newly bound ports."""
        sockets = self._take_sample()
        if sockets is None:
            return []
        return self._emit_all(self.differ.observe(sockets))

    def reconcile_pass(self) -> list[PortEvent]:
        """Full pass: report newly bound and no-longer-bound ports."""
        sockets = self._take_sample()
        if sockets is None:
            return []
        return self._emit_all(self.differ.reconcile(sockets))

    def _take_sample(self) -> list[ListeningSocket] | None:
        try:
            return self.sampler.list_listening_sockets()
        except SamplerError as e:
            logger.warning("Sampling failed", error=str(e))
            self.emitter.emit_error(f"Failed to list listening sockets: {e}")
            return None

    def _emit_all(self, events: list[PortEvent]) -> list[PortEvent]:
        for event in events:
            self.emitter.emit(event)
            logger.info(
                "Port event", action=event.action.value, key=str(event.key)
            )
        return events

    def run(self) -> int:
        """Run until stopped or until the reader closes the stream.

        Returns:
            Process exit code
        """
        try:
            self.emitter.emit_error("Port monitor starting...")
            now = self._clock()
            next_sample = now
            next_reconcile = now + self.config.reconcile_interval

            while not self._stop.is_set():
                now = self._clock()
                if now >= next_sample:
                    self.sample_pass()
                    next_sample = now + self.config.sample_interval
                if now >= next_reconcile:
                    self.reconcile_pass()
                    next_reconcile = now + self.config.reconcile_interval

                delay = min(next_sample, next_reconcile) - self._clock()
                self._stop.wait(max(0.0, delay))

            if self._stop_reason:
                self.emitter.emit_error(self._stop_reason)
        except BrokenPipeError:
            self.stream_closed = True
            logger.info("Event stream closed by reader, exiting")

        logger.info("Port monitor stopped")
        return 0

    def stop(self, reason: str | None = None) -> None:
        """Ask the loop to exit after the current pass."""
        if reason and self._stop_reason is None:
            self._stop_reason = reason
        self._stop.set()

    def install_signal_handlers(self) -> None:
        """Stop cleanly on SIGINT and SIGTERM."""

        def _handle(signum: int, frame: FrameType | None) -> None:
            name = signal.Signals(signum).name
            self.stop(f"{name} received, shutting down port monitor...")

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)
