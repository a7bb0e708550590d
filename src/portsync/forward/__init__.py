"""Local-side forwarding: transport, record store, supervisor and reconciler."""

from .reconciler import ForwardingReconciler, ForwardState
from .records import ForwardRecord, RecordStore
from .session import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_SETUP_FAILURE,
    EXIT_TERMINATED,
    ForwardingSession,
    SessionInterrupted,
)
from .supervisor import StopResult, TunnelHandle, TunnelSupervisor
from .transport import CLOSED, LineTransport, TransportReader

__all__ = [
    "LineTransport",
    "TransportReader",
    "CLOSED",
    "ForwardRecord",
    "RecordStore",
    "TunnelSupervisor",
    "TunnelHandle",
    "StopResult",
    "ForwardingReconciler",
    "ForwardState",
    "ForwardingSession",
    "SessionInterrupted",
    "EXIT_OK",
    "EXIT_SETUP_FAILURE",
    "EXIT_INTERRUPTED",
    "EXIT_TERMINATED",
]
