"""Common utilities and shared functionality."""

from .config import ForwarderConfig, MonitorConfig
from .exceptions import (
    BinaryNotFoundError,
    ConfigurationError,
    EventDecodeError,
    PortSyncError,
    ProcessError,
    RecordStoreError,
    SamplerError,
    SetupError,
    TunnelError,
    TunnelStartError,
    TunnelStopError,
    UnknownEventTypeError,
)
from .logging import get_logger, setup_logging
from .process import ProcessManager
from .utils import (
    MAX_PORT,
    MIN_PORT,
    WELL_KNOWN_PORT_MAX,
    is_monitored_port,
    pid_is_alive,
    utc_now,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Configuration
    "MonitorConfig",
    "ForwarderConfig",
    # Process management
    "ProcessManager",
    # Exceptions
    "PortSyncError",
    "ConfigurationError",
    "SetupError",
    "ProcessError",
    "BinaryNotFoundError",
    "SamplerError",
    "EventDecodeError",
    "UnknownEventTypeError",
    "RecordStoreError",
    "TunnelError",
    "TunnelStartError",
    "TunnelStopError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "is_monitored_port",
    "pid_is_alive",
    "utc_now",
    "MIN_PORT",
    "MAX_PORT",
    "WELL_KNOWN_PORT_MAX",
]
