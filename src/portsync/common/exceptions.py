"""Custom exceptions for portsync."""


class PortSyncError(Exception):
    """Base exception for all portsync errors."""

    pass


class ConfigurationError(PortSyncError):
    """Raised when configuration is invalid."""

    pass


class SetupError(PortSyncError):
    """Raised when a required channel or artifact is missing at startup."""

    pass


class ProcessError(PortSyncError):
    """Raised when child process operations fail."""

    pass


class BinaryNotFoundError(ProcessError):
    """Raised when a command's binary is not found or not executable."""

    pass


class SamplerError(PortSyncError):
    """Raised when a socket-listing invocation fails."""

    pass


class EventDecodeError(PortSyncError):
    """Raised when a transport line is not a well-formed event."""

    pass


class UnknownEventTypeError(EventDecodeError):
    """Raised when a transport line carries an unrecognized event type."""

    def __init__(self, event_type: object):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")


class RecordStoreError(PortSyncError):
    """Raised for record store operations."""

    pass


class TunnelError(PortSyncError):
    """Base exception for tunnel operations."""

    def __init__(self, port: int, message: str):
        self.port = port
        super().__init__(message)


class TunnelStartError(TunnelError):
    """Raised when a tunnel process never starts or exits during startup."""

    pass


class TunnelStopError(TunnelError):
    """Raised when a tunnel process ignores the graceful stop signal."""

    pass
