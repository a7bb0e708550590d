"""portsync - Forward remote listening ports to localhost as they appear."""

from .common.config import ForwarderConfig, MonitorConfig
from .common.exceptions import (
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
from .common.logging import get_logger, setup_logging
from .common.process import ProcessManager
from .events import (
    ErrorEvent,
    ListeningSocket,
    PortAction,
    PortEvent,
    PortKey,
    Protocol,
    decode_event,
    encode_event,
)
from .forward import (
    ForwardingReconciler,
    ForwardingSession,
    ForwardRecord,
    ForwardState,
    LineTransport,
    RecordStore,
    StopResult,
    TunnelSupervisor,
)
from .monitor import EventEmitter, LifecycleDiffer, PortMonitor, SocketSampler, get_sampler

__version__ = "0.1.0"


__all__ = [
    # Events
    "Protocol",
    "PortAction",
    "PortKey",
    "ListeningSocket",
    "PortEvent",
    "ErrorEvent",
    "encode_event",
    "decode_event",
    # Monitor side
    "SocketSampler",
    "get_sampler",
    "LifecycleDiffer",
    "EventEmitter",
    "PortMonitor",
    # Forwarding side
    "LineTransport",
    "ForwardRecord",
    "RecordStore",
    "TunnelSupervisor",
    "StopResult",
    "ForwardingReconciler",
    "ForwardState",
    "ForwardingSession",
    "ProcessManager",
    # Configuration
    "MonitorConfig",
    "ForwarderConfig",
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
    # Utilities
    "get_logger",
    "setup_logging",
]
