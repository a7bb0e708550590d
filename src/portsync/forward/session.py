"""The local forwarding session: owns the transport, tunnels and helpers."""

import atexit
import os
import queue
import signal
import stat
import subprocess
import threading
import time
from collections.abc import Callable
from types import FrameType
from typing import TextIO

from ..common.config import ForwarderConfig
from ..common.exceptions import ProcessError, SetupError
from ..common.logging import get_logger
from ..common.process import ProcessManager
from .reconciler import ForwardingReconciler
from .records import RecordStore
from .supervisor import TunnelSupervisor
from .transport import CLOSED, TransportReader

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_SETUP_FAILURE = 1
EXIT_INTERRUPTED = 130
EXIT_TERMINATED = 143

_SIGNAL_EXIT_CODES = {
    signal.SIGINT: EXIT_INTERRUPTED,
    signal.SIGTERM: EXIT_TERMINATED,
}


class SessionInterrupted(BaseException):
    """Raised in the main thread when the session receives a termination signal."""

    def __init__(self, signum: int):
        self.signum = signum
        self.exit_code = _SIGNAL_EXIT_CODES.get(signum, 128 + signum)
        super().__init__(signal.Signals(signum).name)


class ForwardingSession:
    """Drains monitor events into the reconciler until the source closes.

    Shutdown runs at most once no matter how many paths trigger it
    (signal, normal exit, atexit). It proceeds in order: stop accepting
    events, stop every recorded tunnel, remove the record store and
    channel, then stop the monitor and helper processes.
    """

    def __init__(
        self,
        config: ForwarderConfig,
        store: RecordStore | None = None,
        supervisor: TunnelSupervisor | None = None,
        reconciler: ForwardingReconciler | None = None,
        open_stream: Callable[[], TextIO] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store or RecordStore(config.record_store)
        self.supervisor = supervisor or TunnelSupervisor(config)
        self.reconciler = reconciler or ForwardingReconciler(
            self.store, self.supervisor, config.reserved_ports
        )
        self.exit_code = EXIT_OK
        self._open_stream = open_stream
        self._clock = clock
        self._events: queue.Queue[object] = queue.Queue()
        self._reader: TransportReader | None = None
        self._monitor: ProcessManager | None = None
        self._helpers: list[ProcessManager] = []
        self._accepting = False
        self._busy = False
        self._pending_signal: int | None = None
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown_started

    def setup(self) -> TransportReader:
        """Start helpers and open the event source.

        Returns:
            The reader that will drain the event source

        Raises:
            SetupError: If a required channel or binary is missing
        """
        for command in self.config.helper_commands:
            helper = self._spawn(command, name=f"helper:{os.path.basename(command[0])}")
            self._helpers.append(helper)

        if self._open_stream is None:
            self._open_stream = self._event_source()
        self._reader = TransportReader(self._open_stream, self._events)
        return self._reader

    def _event_source(self) -> Callable[[], TextIO]:
        channel = self.config.channel
        if channel is not None:
            if not channel.exists():
                raise SetupError(f"Event channel not found: {channel}")
            logger.info("Reading events from channel", channel=str(channel))
            return lambda: open(channel, encoding="utf-8", errors="replace")

        command = self.config.resolved_monitor_command()
        self._monitor = self._spawn(command, name="monitor", stdout=subprocess.PIPE)
        stream = self._monitor.stdout
        if stream is None:
            raise SetupError("Monitor process has no stdout")
        return lambda: stream

    def _spawn(
        self, command: list[str], name: str, stdout: int = subprocess.DEVNULL
    ) -> ProcessManager:
        try:
            process = ProcessManager(command, name=name, stdout=stdout)
            process.start()
        except ProcessError as e:
            raise SetupError(f"Cannot start {name}: {e}") from e
        return process

    def run(self) -> int:
        """Run the session to completion.

        Returns:
            Exit code: 0 when the source closed, 130/143 on SIGINT/SIGTERM

        Raises:
            SetupError: If setup fails (after cleaning up what was started)
        """
        try:
            reader = self._reader if self._reader is not None else self.setup()
            self._loop(reader)
        except SessionInterrupted as e:
            self.exit_code = e.exit_code
            logger.info("Session interrupted", signal=str(e))
        finally:
            self.shutdown()
        return self.exit_code

    def _loop(self, reader: TransportReader) -> None:
        self._accepting = True
        reader.start()

        self._guarded(self.reconciler.reconcile_stale)
        interval = self.config.reconcile_interval
        next_pass = self._clock() + interval

        while self._accepting:
            timeout = max(0.0, next_pass - self._clock())
            try:
                item = self._events.get(timeout=timeout)
            except queue.Empty:
                item = None

            if item is CLOSED:
                logger.info("Event source closed, ending session")
                break
            if item is not None:
                self._guarded(self.reconciler.handle, item)

            if self._clock() >= next_pass:
                self._guarded(self.reconciler.reconcile_stale)
                next_pass = self._clock() + interval

    def _guarded(self, func: Callable[..., object], *args: object) -> None:
        """Run one reconciliation step; defer signals until it completes."""
        self._busy = True
        try:
            func(*args)
        finally:
            self._busy = False
        if self._pending_signal is not None:
            raise SessionInterrupted(self._pending_signal)

    def handle_signal(self, signum: int, frame: FrameType | None = None) -> None:
        """Signal handler: interrupt the loop, or defer while a step is in flight."""
        if self._shutdown_started:
            logger.warning(
                "Signal received during shutdown, ignoring",
                signal=signal.Signals(signum).name,
            )
            return
        self._pending_signal = signum
        if not self._busy:
            raise SessionInterrupted(signum)

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM and interpreter exit to the shutdown routine."""
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)
        atexit.register(self.shutdown)

    def shutdown(self) -> None:
        """Stop everything the session owns. Safe to call more than once."""
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        logger.info("Shutting down forwarding session")

        self._accepting = False
        if self._reader is not None:
            self._reader.stop()

        failed = self.reconciler.stop_all()
        if failed:
            logger.warning(
                "Some tunnels are still running; keeping record store for cleanup",
                ports=failed,
                record_store=str(self.store.path),
            )

        self._remove_artifacts(keep_store=bool(failed))

        for process in [self._monitor, *self._helpers]:
            if process is None:
                continue
            try:
                process.stop(timeout=self.config.stop_timeout)
            except ProcessError as e:
                logger.warning("Process refused to stop", name=process.name, error=str(e))

        logger.info("Forwarding session stopped")

    def _remove_artifacts(self, keep_store: bool) -> None:
        if not keep_store:
            try:
                self.store.delete()
            except OSError as e:
                logger.warning("Cannot remove record store", error=str(e))

        channel = self.config.channel
        if channel is None:
            return
        try:
            if stat.S_ISFIFO(channel.stat().st_mode):
                channel.unlink()
                logger.info("Removed event channel", channel=str(channel))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Cannot remove event channel", error=str(e))
