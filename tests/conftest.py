"""Shared pytest fixtures for portsync tests."""

import io
from unittest.mock import Mock

import pytest

from portsync.common.config import ForwarderConfig
from portsync.common.exceptions import TunnelStartError, TunnelStopError
from portsync.events import ListeningSocket, PortAction, PortEvent
from portsync.forward.records import RecordStore
from portsync.forward.supervisor import StopResult, TunnelHandle
from portsync.monitor.sampler import SocketSampler


def tcp(port: int) -> ListeningSocket:
    return ListeningSocket(protocol="tcp", port=port)


def bound(port: int, protocol: str = "tcp") -> PortEvent:
    return PortEvent(action=PortAction.BOUND, port=port, protocol=protocol)


def unbound(port: int, protocol: str = "tcp") -> PortEvent:
    return PortEvent(action=PortAction.UNBOUND, port=port, protocol=protocol)


class FakeSampler(SocketSampler):
    """Returns canned samples in order, repeating the last one.

    An exception instance in the list is raised instead of returned.
    """

    def __init__(self, samples, on_call=None):
        super().__init__()
        self.samples = list(samples)
        self.calls = 0
        self.on_call = on_call

    def list_listening_sockets(self):
        self.calls += 1
        if self.on_call is not None:
            self.on_call(self.calls)
        sample = self.samples.pop(0) if len(self.samples) > 1 else self.samples[0]
        if isinstance(sample, Exception):
            raise sample
        return list(sample)


class FakeSupervisor:
    """In-memory stand-in for TunnelSupervisor; no OS processes involved."""

    def __init__(self):
        self.alive: set[int] = set()
        self.started: list[int] = []
        self.stopped: list[int] = []
        self.fail_start: set[int] = set()
        self.refuse_stop: set[int] = set()
        self.on_start = None
        self._next_pid = 1000

    def start(self, port):
        if port in self.fail_start:
            raise TunnelStartError(port, f"Tunnel for port {port} exited during startup")
        self._next_pid += 1
        pid = self._next_pid
        self.alive.add(pid)
        self.started.append(port)
        if self.on_start is not None:
            self.on_start(port)
        return TunnelHandle(port=port, pid=pid, process=Mock())

    def stop(self, port, pid=None):
        if port in self.refuse_stop:
            raise TunnelStopError(port, f"Tunnel for port {port} ignored SIGTERM")
        self.stopped.append(port)
        if pid in self.alive:
            self.alive.discard(pid)
            return StopResult.STOPPED
        return StopResult.ALREADY_DEAD

    def is_alive(self, pid, port=None):
        return pid in self.alive


@pytest.fixture
def fake_supervisor():
    """Supervisor double that records start/stop calls."""
    return FakeSupervisor()


@pytest.fixture
def store(tmp_path):
    """Record store in a temporary directory."""
    return RecordStore(tmp_path / "state" / "forwarded-ports")


@pytest.fixture
def forwarder_config(tmp_path):
    """Forwarder configuration with fast timings for tests."""
    return ForwarderConfig(
        target="devbox",
        record_store=tmp_path / "state" / "forwarded-ports",
        startup_grace_period=0.0,
        stop_timeout=1.0,
        reconcile_interval=0.1,
    )


@pytest.fixture
def mock_subprocess(monkeypatch):
    """Mock subprocess.Popen for testing process management.

    Returns:
        Mock: Mocked Popen class
    """
    mock_popen = Mock()
    monkeypatch.setattr("subprocess.Popen", mock_popen)
    return mock_popen


@pytest.fixture
def mock_process():
    """Create a mock process object for testing.

    Returns:
        Mock: Mock process with common attributes
    """
    process = Mock()
    process.pid = 12345
    process.poll.return_value = None  # Process is running
    process.terminate.return_value = None
    process.wait.return_value = 0
    process.stdout = Mock()
    process.stderr = io.StringIO("")
    return process


@pytest.fixture
def mock_which(monkeypatch):
    """Resolve every program to /usr/bin/<name>."""

    def _which(program):
        return f"/usr/bin/{program.rsplit('/', 1)[-1]}"

    monkeypatch.setattr("portsync.common.process.shutil.which", _which)
    return _which
