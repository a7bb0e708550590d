"""Process management for tunnel and helper commands."""

import os
import shutil
import subprocess
import threading
import time
from collections import deque
from types import TracebackType
from typing import IO, Literal

from .exceptions import BinaryNotFoundError, ProcessError
from .logging import get_logger

logger = get_logger(__name__)

# Lines of child stderr kept for error reports
STDERR_TAIL_LINES = 20
STDERR_LINE_LIMIT = 4096


class ProcessManager:
    """Manages one child process lifecycle with context manager support"""

    def __init__(
        self,
        command: list[str],
        name: str | None = None,
        stdout: int | IO[str] | None = subprocess.DEVNULL,
    ):
        """Initialize ProcessManager with the command to run

        Args:
            command: Program and arguments
            name: Label used in log messages (default: program name)
            stdout: Where the child's stdout goes (subprocess.PIPE to read it)

        Raises:
            BinaryNotFoundError: If the program doesn't exist or isn't executable
            ValueError: If command is empty
        """
        if not command:
            raise ValueError("Command cannot be empty")
        self.command = list(command)
        self.name = name or os.path.basename(command[0])
        self._stdout = stdout
        self._process: subprocess.Popen[str] | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_thread: threading.Thread | None = None
        self.binary_path = self._resolve_binary()
        logger.debug("ProcessManager initialized", name=self.name, command=self.command)

    def _resolve_binary(self) -> str:
        """Resolve the program against PATH"""
        program = self.command[0]
        resolved = shutil.which(program)
        if resolved is None:
            if os.path.sep in program and os.path.exists(program):
                raise BinaryNotFoundError(f"Binary is not executable: {program}")
            raise BinaryNotFoundError(f"Binary not found: {program}")
        return resolved

    def start(self) -> bool:
        """Start the process

        Returns:
            True if started (or already running)

        Raises:
            ProcessError: If process fails to start
        """
        if self.is_running():
            logger.debug("Process already running", name=self.name, pid=self.pid)
            return True

        logger.info("Starting process", name=self.name)
        try:
            self._process = subprocess.Popen(
                [self.binary_path, *self.command[1:]],
                stdin=subprocess.DEVNULL,
                stdout=self._stdout,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
            self._start_stderr_drain()
            logger.info("Process started", name=self.name, pid=self._process.pid)
            return True
        except OSError as e:
            logger.error("Failed to start process", name=self.name, error=str(e))
            raise ProcessError(f"Failed to start {self.name}: {e}") from e

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop the process gracefully and reap it

        Sends SIGTERM and waits up to ``timeout`` seconds. A process that
        ignores the signal is left running and reported, never killed.

        Returns:
            True if a running process was stopped, False if it had already exited

        Raises:
            ProcessError: If the process did not exit within the timeout
        """
        if self._process is None:
            return False

        if not self.is_running():
            logger.debug("Process not running, nothing to stop", name=self.name)
            self._process.wait()
            return False

        pid = self._process.pid
        logger.info("Stopping process", name=self.name, pid=pid)
        try:
            self._process.terminate()
            self._process.wait(timeout=timeout)
        except ProcessLookupError:
            self._process.wait()
            return False
        except subprocess.TimeoutExpired as e:
            logger.warning(
                "Process did not terminate gracefully", name=self.name, pid=pid
            )
            raise ProcessError(
                f"{self.name} (pid {pid}) did not exit within {timeout}s of SIGTERM"
            ) from e

        logger.info("Process terminated gracefully", name=self.name, pid=pid)
        return True

    def is_running(self) -> bool:
        """Check if process is currently running"""
        if self._process is None:
            return False

        return self._process.poll() is None

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self.is_running() and self._process:
            return self._process.pid
        return None

    @property
    def returncode(self) -> int | None:
        """Exit status once the process has exited"""
        if self._process is None:
            return None
        return self._process.poll()

    @property
    def stdout(self) -> IO[str] | None:
        """The child's stdout stream when started with stdout=PIPE"""
        if self._process is None:
            return None
        return self._process.stdout

    def _start_stderr_drain(self) -> None:
        """Read the child's stderr continuously so a full pipe never blocks it"""
        stream = self._process.stderr if self._process else None
        if stream is None:
            return
        self._stderr_tail.clear()
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(stream,),
            name=f"portsync-stderr-{self.name}",
            daemon=True,
        )
        self._stderr_thread.start()

    def _drain_stderr(self, stream: IO[str]) -> None:
        try:
            for line in stream:
                line = line.rstrip("\r\n")[:STDERR_LINE_LIMIT]
                if not line:
                    continue
                self._stderr_tail.append(line)
                logger.debug("Child stderr", name=self.name, line=line)
        except (OSError, ValueError) as e:
            logger.debug("Stopped reading child stderr", name=self.name, error=str(e))

    def read_stderr(self, timeout: float = 1.0) -> str:
        """Last lines a process wrote to stderr, once it has exited"""
        if self._process is None or self.is_running():
            return ""
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout)
        return "\n".join(self._stderr_tail).strip()

    def wait_for_startup(self, grace_period: float = 0.5) -> bool:
        """Wait a fixed grace period and report whether the process survived it"""
        if not self.is_running():
            return False

        time.sleep(grace_period)
        return self.is_running()

    def __enter__(self) -> "ProcessManager":
        """Context manager entry - start the process

        Raises:
            ProcessError: If process exits during its startup grace period
        """
        self.start()
        if not self.wait_for_startup():
            raise ProcessError(f"{self.name} exited during startup")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Context manager exit - stop the process"""
        try:
            self.stop()
        except ProcessError as e:
            logger.error("Error during context exit", name=self.name, error=str(e))
        return False  # Don't suppress exceptions
