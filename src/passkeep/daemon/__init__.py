# Daemon module - session daemon, IPC protocol and client side

from .client import DaemonClient, SocketTransport, Transport, bounded_call
from .discovery import DaemonDiscovery, ProbeState
from .service import DaemonPhase, DaemonService

__all__ = [
    "DaemonClient",
    "DaemonDiscovery",
    "DaemonPhase",
    "DaemonService",
    "ProbeState",
    "SocketTransport",
    "Transport",
    "bounded_call",
]
