"""Socket sampling through platform-native listing commands."""

import re
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..common.exceptions import ConfigurationError, SamplerError
from ..common.logging import get_logger
from ..common.utils import is_monitored_port
from ..events import ListeningSocket, PortKey, Protocol

logger = get_logger(__name__)

ErrorCallback = Callable[[str], None]


class SocketSampler(ABC):
    """Produces the current set of listening sockets on this host."""

    def __init__(self, on_error: ErrorCallback | None = None):
        self._on_error = on_error

    @abstractmethod
    def list_listening_sockets(self) -> list[ListeningSocket]:
        """Return listening sockets above the well-known range, without duplicates.

        Raises:
            SamplerError: If the sample could not be taken at all
        """

    def _report(self, message: str) -> None:
        logger.debug("Sampler error", message=message)
        if self._on_error is not None:
            self._on_error(message)


class CommandSampler(SocketSampler):
    """Sampler that shells out to a listing command and parses its text output."""

    command: tuple[str, ...] = ()
    line_pattern: re.Pattern[str]
    default_protocol = Protocol.TCP
    ok_returncodes: tuple[int, ...] = (0,)

    def __init__(self, on_error: ErrorCallback | None = None, timeout: float = 10.0):
        super().__init__(on_error)
        self.timeout = timeout

    def list_listening_sockets(self) -> list[ListeningSocket]:
        return self.parse_output(self._run())

    def _run(self) -> str:
        name = self.command[0]
        try:
            result = subprocess.run(
                list(self.command),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise SamplerError(f"Socket listing command not found: {name}") from e
        except subprocess.TimeoutExpired as e:
            raise SamplerError(f"{name} timed out after {self.timeout}s") from e
        except OSError as e:
            raise SamplerError(f"Failed to run {name}: {e}") from e

        if result.returncode not in self.ok_returncodes:
            raise SamplerError(
                f"{name} exited with code {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    def parse_output(self, output: str) -> list[ListeningSocket]:
        """Parse command output, skipping lines that fail to parse."""
        sockets: dict[PortKey, ListeningSocket] = {}
        for line in output.splitlines():
            try:
                socket = self.parse_line(line)
            except ValueError as e:
                self._report(f"Failed to parse line: {line.strip()} ({e})")
                continue
            if socket is not None:
                sockets.setdefault(socket.key, socket)
        return list(sockets.values())

    def parse_line(self, line: str) -> ListeningSocket | None:
        """Parse one output line.

        Returns:
            The socket, or None for lines that are not monitored listeners

        Raises:
            ValueError: If a listener line carries an invalid port
        """
        match = self.line_pattern.search(line)
        if match is None:
            return None

        port = int(match.group("port"))
        if not is_monitored_port(port):
            return None

        protocol = match.group("protocol")
        return ListeningSocket(
            protocol=Protocol(protocol.lower()) if protocol else self.default_protocol,
            port=port,
        )


class LinuxSocketSampler(CommandSampler):
    """Parses ``ss -tulpn``: ``tcp LISTEN 0 128 0.0.0.0:8080 0.0.0.0:*``."""

    command = ("ss", "-tulpn")
    line_pattern = re.compile(
        r"^(?:(?P<protocol>tcp|udp)\s+)?LISTEN\s+\d+\s+\d+\s+\S*:(?P<port>\d+)\s",
        re.IGNORECASE,
    )


class DarwinSocketSampler(CommandSampler):
    """Parses ``lsof -i -P -n``: ``node 1234 me 12u IPv4 0x0 0t0 TCP *:8080 (LISTEN)``."""

    command = ("lsof", "-i", "-P", "-n")
    line_pattern = re.compile(
        r"\s(?P<protocol>TCP|UDP)\s+\S*:(?P<port>\d+)\s+\(LISTEN\)", re.IGNORECASE
    )
    # lsof exits 1 when nothing matched
    ok_returncodes = (0, 1)


class WindowsSocketSampler(CommandSampler):
    """Parses ``netstat -n -a -p TCP``: ``TCP 127.0.0.1:8080 0.0.0.0:0 LISTENING``."""

    command = ("netstat", "-n", "-a", "-p", "TCP")
    line_pattern = re.compile(
        r"^\s*(?P<protocol>TCP|UDP)\s+\S*:(?P<port>\d+)\s+\S+\s+LISTENING",
        re.IGNORECASE,
    )


def get_sampler(
    platform: str | None = None,
    on_error: ErrorCallback | None = None,
    timeout: float = 10.0,
) -> CommandSampler:
    """Pick the sampler implementation for a platform.

    Args:
        platform: ``sys.platform``-style name (default: the running platform)
        on_error: Callback for per-line parse failures
        timeout: Listing command timeout in seconds

    Raises:
        ConfigurationError: If the platform is not supported
    """
    platform = platform or sys.platform
    sampler_cls: type[CommandSampler]
    if platform.startswith("linux"):
        sampler_cls = LinuxSocketSampler
    elif platform == "darwin":
        sampler_cls = DarwinSocketSampler
    elif platform in ("win32", "cygwin"):
        sampler_cls = WindowsSocketSampler
    else:
        raise ConfigurationError(f"Unsupported platform: {platform}")
    return sampler_cls(on_error=on_error, timeout=timeout)
