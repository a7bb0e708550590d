"""Unit tests for ProcessManager class."""

import io
import os
import subprocess
import sys
import tempfile
import time
from unittest.mock import patch

import pytest

from portsync.common.exceptions import BinaryNotFoundError, ProcessError
from portsync.common.process import ProcessManager


class TestProcessManager:
    """Test cases for ProcessManager class"""

    @pytest.fixture
    def temp_binary(self):
        """Create a temporary executable file for testing"""
        with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".sh") as f:
            f.write('#!/bin/sh\necho "test binary"')
            temp_path = f.name
        os.chmod(temp_path, 0o755)
        yield temp_path
        os.unlink(temp_path)

    def test_requires_existing_binary(self):
        """ProcessManager should reject a program that isn't on PATH"""
        with pytest.raises(BinaryNotFoundError, match="not found"):
            ProcessManager(["/nonexistent/binary", "-N"])

    def test_requires_executable_binary(self):
        """ProcessManager should reject a path that exists but can't run"""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".txt") as f:
            with pytest.raises(BinaryNotFoundError, match="not executable"):
                ProcessManager([f.name])

    def test_rejects_empty_command(self):
        with pytest.raises(ValueError):
            ProcessManager([])

    def test_initialization_success(self, temp_binary):
        """ProcessManager should initialize with a resolvable program"""
        pm = ProcessManager([temp_binary, "--flag"])
        assert pm.binary_path == temp_binary
        assert pm.name == os.path.basename(temp_binary)
        assert not pm.is_running()
        assert pm.pid is None
        assert pm.returncode is None

    def test_starts_process(self, mock_which, mock_subprocess, mock_process):
        """ProcessManager should start the resolved program with its arguments"""
        mock_subprocess.return_value = mock_process

        pm = ProcessManager(["ssh", "-N", "devbox"], name="tunnel-3000")
        result = pm.start()

        assert result is True
        assert pm.is_running()
        assert pm.pid == 12345
        args, kwargs = mock_subprocess.call_args
        assert args[0] == ["/usr/bin/ssh", "-N", "devbox"]
        assert kwargs["stdin"] == subprocess.DEVNULL
        assert kwargs["stdout"] == subprocess.DEVNULL
        assert kwargs["stderr"] == subprocess.PIPE
        assert kwargs["errors"] == "replace"

    def test_start_passes_stdout_target(self, mock_which, mock_subprocess, mock_process):
        mock_subprocess.return_value = mock_process

        ProcessManager(["ssh"], stdout=subprocess.PIPE).start()

        assert mock_subprocess.call_args.kwargs["stdout"] == subprocess.PIPE

    def test_start_when_already_running(self, mock_which, mock_subprocess, mock_process):
        """Starting twice should not spawn a second process"""
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])

        pm.start()
        assert pm.start() is True
        mock_subprocess.assert_called_once()

    def test_handles_start_failure(self, mock_which, mock_subprocess):
        """ProcessManager should wrap OS errors from Popen"""
        mock_subprocess.side_effect = OSError("Failed to start process")
        pm = ProcessManager(["ssh"])

        with pytest.raises(ProcessError, match="Failed to start ssh"):
            pm.start()

    def test_stops_process_gracefully(self, mock_which, mock_subprocess, mock_process):
        """ProcessManager should terminate and reap the process"""
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()

        assert pm.stop(timeout=2.0) is True

        mock_process.terminate.assert_called_once()
        mock_process.wait.assert_called_once_with(timeout=2.0)
        mock_process.kill.assert_not_called()

    def test_unresponsive_process_is_not_killed(
        self, mock_which, mock_subprocess, mock_process
    ):
        """A process ignoring SIGTERM is reported, never escalated"""
        mock_process.wait.side_effect = subprocess.TimeoutExpired("ssh", 1.0)
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()

        with pytest.raises(ProcessError, match="did not exit"):
            pm.stop(timeout=1.0)
        mock_process.kill.assert_not_called()

    def test_stop_already_exited_process(self, mock_which, mock_subprocess, mock_process):
        """Stopping an exited process reaps it and reports False"""
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()
        mock_process.poll.return_value = 255

        assert pm.stop() is False
        mock_process.terminate.assert_not_called()
        assert pm.returncode == 255

    def test_stop_process_vanished_during_terminate(
        self, mock_which, mock_subprocess, mock_process
    ):
        mock_process.terminate.side_effect = ProcessLookupError()
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()

        assert pm.stop() is False

    def test_stop_without_start(self, mock_which):
        assert ProcessManager(["ssh"]).stop() is False

    @patch("portsync.common.process.time.sleep")
    def test_wait_for_startup_survives(
        self, mock_sleep, mock_which, mock_subprocess, mock_process
    ):
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()

        assert pm.wait_for_startup(0.5) is True
        mock_sleep.assert_called_once_with(0.5)

    @patch("portsync.common.process.time.sleep")
    def test_wait_for_startup_detects_early_exit(
        self, mock_sleep, mock_which, mock_subprocess, mock_process
    ):
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()
        mock_sleep.side_effect = lambda _: setattr(mock_process.poll, "return_value", 255)

        assert pm.wait_for_startup(0.5) is False

    def test_read_stderr_after_exit(self, mock_which, mock_subprocess, mock_process):
        mock_process.stderr = io.StringIO("debug1: connecting\nbind: Address already in use\n")
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"])
        pm.start()

        assert pm.read_stderr() == ""  # still running
        mock_process.poll.return_value = 255
        assert pm.read_stderr() == "debug1: connecting\nbind: Address already in use"

    def test_stdout_property(self, mock_which, mock_subprocess, mock_process):
        mock_subprocess.return_value = mock_process
        pm = ProcessManager(["ssh"], stdout=subprocess.PIPE)
        assert pm.stdout is None

        pm.start()
        assert pm.stdout is mock_process.stdout

    @patch("portsync.common.process.time.sleep")
    def test_context_manager(self, mock_sleep, mock_which, mock_subprocess, mock_process):
        """ProcessManager should start on entry and stop on exit"""
        mock_subprocess.return_value = mock_process

        with ProcessManager(["ssh"]) as pm:
            assert pm.is_running()

        mock_process.terminate.assert_called_once()

    @patch("portsync.common.process.time.sleep")
    def test_context_manager_raises_on_early_exit(
        self, mock_sleep, mock_which, mock_subprocess, mock_process
    ):
        mock_process.poll.return_value = 1
        mock_subprocess.return_value = mock_process

        with pytest.raises(ProcessError, match="exited during startup"):
            with ProcessManager(["ssh"]):
                pass


def wait_for_exit(pm, timeout=10.0):
    deadline = time.monotonic() + timeout
    while pm.is_running() and time.monotonic() < deadline:
        time.sleep(0.05)
    return not pm.is_running()


class TestProcessManagerStderr:
    """Test stderr handling with real child processes"""

    def test_chatty_child_never_blocks_on_stderr(self):
        """A child writing far more than a pipe buffer to stderr still runs to completion"""
        script = (
            "import sys\n"
            "for _ in range(5000):\n"
            "    sys.stderr.write('channel 3: open failed: connect failed\\n')\n"
            "sys.stderr.write('last words\\n')\n"
        )
        pm = ProcessManager([sys.executable, "-c", script], name="chatty")
        pm.start()

        assert wait_for_exit(pm), "child blocked writing to stderr"
        assert pm.read_stderr().endswith("last words")
        assert len(pm.read_stderr().splitlines()) <= 20

    def test_undecodable_stderr_is_replaced(self):
        script = "import sys; sys.stderr.buffer.write(b'bad \\xff byte\\n')"
        pm = ProcessManager([sys.executable, "-c", script], name="binary-noise")
        pm.start()

        assert wait_for_exit(pm)
        assert pm.read_stderr() == "bad � byte"
