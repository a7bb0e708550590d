"""Tunnel process supervision: spawn, liveness check, graceful stop."""

import os
from dataclasses import dataclass
from enum import Enum

import psutil

from ..common.config import ForwarderConfig
from ..common.exceptions import ProcessError, TunnelStartError, TunnelStopError
from ..common.logging import get_logger
from ..common.process import ProcessManager
from ..common.utils import pid_is_alive

logger = get_logger(__name__)


class StopResult(str, Enum):
    """Outcome of a successful stop request."""

    STOPPED = "stopped"
    ALREADY_DEAD = "already_dead"


@dataclass
class TunnelHandle:
    """A tunnel process started by this supervisor."""

    port: int
    pid: int
    process: ProcessManager


class TunnelSupervisor:
    """Owns one OS process per forwarded port.

    The supervisor never bridges traffic itself; the configured tunnel
    command (``ssh -L`` by default) does.
    """

    def __init__(self, config: ForwarderConfig):
        self.config = config
        self._handles: dict[int, TunnelHandle] = {}

    def build_command(self, port: int) -> list[str]:
        """Render the tunnel command template for a port."""
        return [
            part.format(port=port, target=self.config.target)
            for part in self.config.tunnel_command
        ]

    def start(self, port: int) -> TunnelHandle:
        """Launch a tunnel for ``localhost:port`` <-> remote ``localhost:port``.

        The process must still be alive after the startup grace period.

        Raises:
            TunnelStartError: If the process cannot be launched or exits early
        """
        logger.debug("Starting tunnel", port=port)
        try:
            process = ProcessManager(self.build_command(port), name=f"tunnel-{port}")
            process.start()
        except ProcessError as e:
            raise TunnelStartError(port, f"Cannot launch tunnel for port {port}: {e}") from e

        pid = process.pid
        if pid is None or not process.wait_for_startup(self.config.startup_grace_period):
            detail = process.read_stderr()
            message = (
                f"Tunnel for port {port} exited during startup "
                f"(code {process.returncode})"
            )
            if detail:
                message = f"{message}: {detail}"
            raise TunnelStartError(port, message)

        handle = TunnelHandle(port=port, pid=pid, process=process)
        self._handles[port] = handle
        logger.info("Tunnel started", port=port, pid=pid)
        return handle

    def stop(self, port: int, pid: int | None = None) -> StopResult:
        """Gracefully stop the tunnel for a port and wait for it to exit.

        Args:
            port: Forwarded port
            pid: Process id from the record store; needed for tunnels this
                supervisor did not start itself

        Raises:
            TunnelStopError: If the process ignores SIGTERM within the stop timeout
        """
        handle = self._handles.get(port)
        if handle is not None and (pid is None or handle.pid == pid):
            return self._stop_own(handle)

        if pid is None:
            logger.debug("No tunnel known for port", port=port)
            return StopResult.ALREADY_DEAD
        return self._stop_foreign(port, pid)

    def _stop_own(self, handle: TunnelHandle) -> StopResult:
        try:
            stopped = handle.process.stop(timeout=self.config.stop_timeout)
        except ProcessError as e:
            raise TunnelStopError(handle.port, str(e)) from e

        del self._handles[handle.port]
        if not stopped:
            logger.info("Tunnel had already exited", port=handle.port, pid=handle.pid)
            return StopResult.ALREADY_DEAD
        logger.info("Tunnel stopped", port=handle.port, pid=handle.pid)
        return StopResult.STOPPED

    def _stop_foreign(self, port: int, pid: int) -> StopResult:
        """Stop a tunnel recorded by an earlier session."""
        try:
            process = psutil.Process(pid)
            if not self._runs_tunnel(process, port):
                logger.warning(
                    "Recorded pid no longer runs a tunnel, not signalling it",
                    port=port,
                    pid=pid,
                )
                return StopResult.ALREADY_DEAD
            process.terminate()
            process.wait(timeout=self.config.stop_timeout)
        except psutil.NoSuchProcess:
            logger.info("Tunnel had already exited", port=port, pid=pid)
            return StopResult.ALREADY_DEAD
        except psutil.TimeoutExpired as e:
            raise TunnelStopError(
                port,
                f"Tunnel for port {port} (pid {pid}) did not exit within "
                f"{self.config.stop_timeout}s of SIGTERM",
            ) from e
        except psutil.AccessDenied as e:
            raise TunnelStopError(
                port, f"Not permitted to stop tunnel for port {port} (pid {pid})"
            ) from e

        logger.info("Tunnel stopped", port=port, pid=pid)
        return StopResult.STOPPED

    def is_alive(self, pid: int, port: int | None = None) -> bool:
        """Check whether a tunnel process is still running.

        For a pid this supervisor did not start, ``port`` makes the check
        also require that the process still runs the tunnel for that port;
        a reused pid then counts as dead.
        """
        for handle in self._handles.values():
            if handle.pid == pid:
                return handle.process.is_running()
        if not pid_is_alive(pid):
            return False
        if port is None:
            return True
        try:
            return self._runs_tunnel(psutil.Process(pid), port)
        except psutil.NoSuchProcess:
            return False

    def _runs_tunnel(self, process: psutil.Process, port: int) -> bool:
        """Match a process command line against the tunnel command for a port."""
        try:
            cmdline = process.cmdline()
        except psutil.AccessDenied:
            return False
        if not cmdline:
            return False

        # Target-independent parts identify the tunnel, e.g. 3000:localhost:3000
        markers = [
            part.format(port=port)
            for part in self.config.tunnel_command
            if "{port}" in part and "{target}" not in part
        ]
        if markers:
            return all(marker in cmdline for marker in markers)
        program = os.path.basename(self.config.tunnel_command[0])
        return os.path.basename(cmdline[0]) == program

    def handle_for(self, port: int) -> TunnelHandle | None:
        return self._handles.get(port)
