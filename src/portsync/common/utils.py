"""Utility functions for portsync."""

from datetime import datetime, timezone

import psutil

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

# Ports at or below this value are never reported or forwarded
WELL_KNOWN_PORT_MAX = 1023


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def is_monitored_port(port: int) -> bool:
    """Return True for ports outside the well-known range."""
    return port > WELL_KNOWN_PORT_MAX


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def pid_is_alive(pid: int) -> bool:
    """Check whether a process id refers to a live, non-zombie process.

    Args:
        pid: Process id to check

    Returns:
        True if the process exists and has not exited
    """
    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        # ZombieProcess is a NoSuchProcess subclass
        return False
    except psutil.AccessDenied:
        return psutil.pid_exists(pid)
