# Audit logging for vault and daemon security events
#
# Append-only JSON lines, one file per day, rendered by structlog.
# Passwords and key material must never be passed in details.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "passkeep.audit"


class EventType(str, Enum):
    """Types of security events that can be logged."""
    # Vault Events
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_SAVED = "vault.saved"
    VAULT_IMPORTED = "vault.imported"
    ENTRY_ADDED = "vault.entry.added"
    ENTRY_REMOVED = "vault.entry.removed"

    # Daemon Events
    DAEMON_STARTED = "daemon.started"
    DAEMON_STOPPED = "daemon.stopped"
    DAEMON_COMMAND_REJECTED = "daemon.command.rejected"
    SESSION_CHANGED = "session.changed"

    # Client state
    STATE_INCONSISTENT = "state.inconsistent"


class EventSeverity(str, Enum):
    """
    Severity levels for security events.

    - INFO: Normal activity (logged only)
    - INVESTIGATE: Something unusual worth a look (bad password, junk on the socket)
    - ALERT: passkeep acted on its own (auto-lock)
    - CRITICAL: Local state cannot be trusted
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for security events.

    Each call to ``log_event`` writes one JSON line with an event id,
    timestamp, severity and OS user context.
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir or "./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"audit_{datetime.now().strftime('%Y-%m-%d')}.log"

        self._stdlib_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self._stdlib_logger.setLevel(logging.INFO)
        self._stdlib_logger.propagate = False
        self._setup_file_handler()

        self.logger = structlog.wrap_logger(
            self._stdlib_logger,
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
        )

    def _setup_file_handler(self):
        """Attach a file handler for today's log, replacing any earlier one."""
        for handler in list(self._stdlib_logger.handlers):
            self._stdlib_logger.removeHandler(handler)
            handler.close()

        file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(message)s"))  # structlog renders
        self._stdlib_logger.addHandler(file_handler)

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a security event.

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never passwords or keys)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        self.logger.info(
            "security_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            recorded_at=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            user_context=self._get_default_user_context(),
        )
        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """Log a vault event. Vault events are always logged."""
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Vault: {message}",
            details=details,
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        """OS user, hostname, pid and platform."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "pid": os.getpid(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def init_audit_logger(log_dir: Path) -> AuditLogger:
    """Point the global audit logger at ``log_dir``."""
    global _audit_logger
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger


def configure_logging(level: int = logging.WARNING, log_file: Optional[Path] = None) -> None:
    """Configure stdlib logging for the CLI or the daemon process.

    The CLI logs warnings to stderr. The daemon passes its own log file so
    operational messages end up next to the detached process's output.
    """
    handlers = []
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
