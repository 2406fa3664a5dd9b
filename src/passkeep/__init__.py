# passkeep - Main Package
#
# Local encrypted password store. Entries live in one AES-256-GCM vault
# file; a background session daemon holds the derived key so short-lived
# CLI invocations share one unlock, and locks it when the OS session goes
# inactive.

__version__ = "0.3.0"
__author__ = "passkeep developers"
__description__ = "Local encrypted password store with a session daemon"

from .core import (
    EventSeverity,
    EventType,
    PasskeepError,
    Settings,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventSeverity",
    "EventType",
    "PasskeepError",
    "Settings",
    "get_audit_logger",
]
