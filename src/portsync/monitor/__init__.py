"""Remote-side port monitoring: sampling, diffing and event emission."""

from .differ import LifecycleDiffer
from .emitter import EventEmitter
from .sampler import (
    CommandSampler,
    DarwinSocketSampler,
    LinuxSocketSampler,
    SocketSampler,
    WindowsSocketSampler,
    get_sampler,
)
from .service import PortMonitor

__all__ = [
    "SocketSampler",
    "CommandSampler",
    "LinuxSocketSampler",
    "DarwinSocketSampler",
    "WindowsSocketSampler",
    "get_sampler",
    "LifecycleDiffer",
    "EventEmitter",
    "PortMonitor",
]
