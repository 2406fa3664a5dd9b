# Session module - state persisted across processes and OS session tracking

from .key_cache import KeyCache
from .monitor import SessionMonitor, SessionStatus, get_session_status
from .sidecar import FIXED_KEY, SidecarFile
from .state_store import SessionState, SessionStateStore

__all__ = [
    "FIXED_KEY",
    "KeyCache",
    "SessionMonitor",
    "SessionState",
    "SessionStateStore",
    "SessionStatus",
    "SidecarFile",
    "get_session_status",
]
