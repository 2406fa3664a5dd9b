# Core module - shared utilities
#
# - Configuration (paths, timeouts)
# - Exception hierarchy
# - Audit logging
# - Atomic file writes

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_logging,
    get_audit_logger,
    init_audit_logger,
)
from .config import Settings
from .exceptions import (
    ConfigError,
    DaemonStartupError,
    DaemonTimeoutError,
    DecryptionError,
    EncryptionError,
    IPCError,
    KeyDerivationError,
    PasskeepError,
    ProtocolError,
    StateInconsistentError,
    VaultIOError,
    VaultLockedError,
)

__all__ = [
    # Configuration
    "Settings",
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_logging",
    "get_audit_logger",
    "init_audit_logger",
    # Errors
    "PasskeepError",
    "KeyDerivationError",
    "EncryptionError",
    "DecryptionError",
    "VaultIOError",
    "IPCError",
    "DaemonTimeoutError",
    "ProtocolError",
    "DaemonStartupError",
    "StateInconsistentError",
    "VaultLockedError",
    "ConfigError",
]
