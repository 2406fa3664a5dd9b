"""Session Daemon: owns the unlocked key and serves it over a Unix socket.

Lifecycle: STOPPED -> STARTING -> LISTENING -> STOPPING -> STOPPED.
While LISTENING, the session is either locked or unlocked.

Threads:
  - accept loop     : 1s accept() timeout so the run flag is observed
  - one per client  : a single request/response exchange, then close
  - session monitor : locks the vault when the OS session goes inactive

One mutex guards the session state and the run flag. It is held for a
single read or mutation, never across socket I/O or key derivation.
"""

import logging
import os
import signal
import socket
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Set

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..core.config import Settings
from ..core.exceptions import DaemonStartupError, PasskeepError, ProtocolError
from ..core.log_throttle import LogThrottler
from ..core.secure_io import remove_if_exists
from ..session.key_cache import KeyCache
from ..session.monitor import SessionMonitor, SessionStatus
from ..session.state_store import SessionState, SessionStateStore
from ..vault.vault_file import load_vault
from .protocol import (
    Command,
    ErrorResponse,
    ExitCommand,
    GetStateCommand,
    LockCommand,
    Response,
    StateInfoResponse,
    SuccessResponse,
    UnlockCommand,
    decode_command,
    encode_response,
    read_message,
    write_message,
)

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

ACCEPT_TIMEOUT = 1.0  # accept() timeout for clean shutdown loop
CONNECTION_TIMEOUT = 5.0  # per-client read/write timeout
STALE_PROBE_TIMEOUT = 0.5
HANDLER_DRAIN_TIMEOUT = 2.0
LISTEN_BACKLOG = 16
INVALID_COMMAND_MESSAGE = "invalid command"

MonitorFactory = Callable[[Callable[[SessionStatus], None]], SessionMonitor]


class DaemonPhase(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"


class DaemonService:
    """The long-running session daemon.

    Args:
        settings: Paths and intervals
        vault_path: Vault to unlock (default: ``settings.vault_path``)
        state_store: Session mirror (default: at ``settings.state_path``)
        key_cache: Key cache deleted on lock (default: at ``settings.key_path``)
        monitor_factory: Builds the session monitor from a callback
        accept_backoff: Seconds to wait after a failed accept()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        vault_path: Optional[Path] = None,
        state_store: Optional[SessionStateStore] = None,
        key_cache: Optional[KeyCache] = None,
        monitor_factory: Optional[MonitorFactory] = None,
        accept_backoff: float = 1.0,
    ):
        self.settings = settings
        self.vault_path = Path(vault_path or settings.vault_path)
        self.socket_path = settings.socket_path
        self.state_store = state_store or SessionStateStore(settings.state_path)
        self.key_cache = key_cache or KeyCache(settings.key_path)
        self._monitor_factory = monitor_factory or (
            lambda cb: SessionMonitor(cb, interval=settings.session_poll_interval)
        )
        self._accept_backoff = accept_backoff

        self._lock = threading.Lock()
        self._state = self.state_store.load()
        self._running = False
        self._stop_event = threading.Event()
        self.phase = DaemonPhase.STOPPED

        self._server_sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._monitor: Optional[SessionMonitor] = None
        self._handlers: Set[threading.Thread] = set()
        self._handlers_lock = threading.Lock()
        self._throttler = LogThrottler(min_interval_seconds=60.0)

        if self._state.unlocked:
            logger.info("Resuming unlocked session from %s", self.state_store.path)

    # ── State ────────────────────────────────────────────────────────

    @property
    def is_unlocked(self) -> bool:
        with self._lock:
            return self._state.unlocked

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def snapshot(self) -> SessionState:
        """A copy of the current session state."""
        with self._lock:
            return self._state.copy()

    # ── Commands ─────────────────────────────────────────────────────

    def handle_command(self, command: Command) -> Response:
        """Apply one decoded command and build its response."""
        if isinstance(command, GetStateCommand):
            state = self.snapshot()
            return StateInfoResponse(
                unlocked=state.unlocked, encryption_key=state.encryption_key, salt=state.salt
            )
        if isinstance(command, UnlockCommand):
            return self._unlock(command.password)
        if isinstance(command, LockCommand):
            self.lock()
            return SuccessResponse()
        if isinstance(command, ExitCommand):
            logger.info("Exit requested over IPC")
            self.request_stop()
            return SuccessResponse()
        return ErrorResponse(INVALID_COMMAND_MESSAGE)

    def _unlock(self, password: str) -> Response:
        # Key derivation is slow; keep it outside the mutex
        try:
            _entries, key, salt = load_vault(self.vault_path, password)
        except PasskeepError as e:
            get_audit_logger().log_vault_event(
                EventType.VAULT_UNLOCK_FAILED,
                "Daemon unlock rejected",
                details={"reason": str(e)},
                severity=EventSeverity.INVESTIGATE,
            )
            return ErrorResponse(str(e))

        new_state = SessionState.unlocked_with(key, salt)
        with self._lock:
            old_state, self._state = self._state, new_state
            self._persist(new_state)
        old_state.wipe()

        get_audit_logger().log_vault_event(
            EventType.VAULT_UNLOCKED, "Daemon session unlocked", details={"source": "ipc"}
        )
        return SuccessResponse()

    def _persist(self, state: SessionState) -> None:
        # caller holds self._lock
        try:
            if state.unlocked:
                self.state_store.save(state)
            else:
                self.state_store.clear()
        except (PasskeepError, OSError) as e:
            logger.error("Failed to update session mirror %s: %s", self.state_store.path, e)

    def lock(self, reason: str = "command") -> bool:
        """Wipe the key, clear the mirror and key cache. Idempotent.

        Returns:
            True if the session was unlocked before the call.
        """
        with self._lock:
            was_unlocked = self._state.unlocked
            self._state.wipe()
            self._state = SessionState.locked()
            self._persist(self._state)
            try:
                self.key_cache.delete()
            except OSError as e:
                logger.error("Failed to delete key cache %s: %s", self.key_cache.path, e)

        if was_unlocked:
            if reason == "session_inactive":
                get_audit_logger().log_vault_event(
                    EventType.VAULT_AUTO_LOCKED,
                    "Session became inactive, vault locked",
                    severity=EventSeverity.ALERT,
                )
            else:
                get_audit_logger().log_vault_event(
                    EventType.VAULT_LOCKED, "Daemon session locked", details={"reason": reason}
                )
        return was_unlocked

    def on_session_change(self, status: SessionStatus) -> None:
        """Session monitor callback. Locks on inactivity, never unlocks."""
        get_audit_logger().log_event(
            EventType.SESSION_CHANGED,
            EventSeverity.INFO,
            f"Session is now {status.value}",
            details={"status": status.value},
        )
        if status is SessionStatus.INACTIVE:
            if self.lock(reason="session_inactive"):
                logger.info("Session inactive: vault locked")

    # ── Lifecycle ────────────────────────────────────────────────────

    def _prepare_socket_path(self) -> None:
        """Refuse to start over a live daemon; clear a stale socket file."""
        if not os.path.lexists(self.socket_path):
            return
        probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        probe.settimeout(STALE_PROBE_TIMEOUT)
        try:
            probe.connect(str(self.socket_path))
        except OSError:
            logger.info("Removing stale socket %s", self.socket_path)
            remove_if_exists(self.socket_path)
            return
        finally:
            probe.close()
        raise DaemonStartupError(f"another daemon is already listening on {self.socket_path}")

    def start(self) -> None:
        """Bind the listener and start the accept loop and session monitor.

        Raises:
            DaemonStartupError: If the listener cannot be bound
        """
        with self._lock:
            if self.phase is not DaemonPhase.STOPPED:
                raise DaemonStartupError(f"daemon is already {self.phase.value}")
            self.phase = DaemonPhase.STARTING

        try:
            if not hasattr(socket, "AF_UNIX"):
                raise DaemonStartupError("Unix domain sockets are not available on this platform")
            self.socket_path.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(self.socket_path.parent, 0o700)
            self._prepare_socket_path()

            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.bind(str(self.socket_path))
                os.chmod(self.socket_path, 0o600)
                sock.listen(LISTEN_BACKLOG)
            except OSError as e:
                sock.close()
                raise DaemonStartupError(f"cannot bind {self.socket_path}: {e}") from e
            sock.settimeout(ACCEPT_TIMEOUT)
        except (DaemonStartupError, OSError) as e:
            with self._lock:
                self.phase = DaemonPhase.STOPPED
            if isinstance(e, DaemonStartupError):
                raise
            raise DaemonStartupError(f"cannot prepare {self.socket_path.parent}: {e}") from e

        self._server_sock = sock
        self._stop_event.clear()
        with self._lock:
            self._running = True

        self._monitor = self._monitor_factory(self.on_session_change)
        self._monitor.start()
        if self._monitor.last_status is SessionStatus.INACTIVE:
            # A resumed session must not outlive an already inactive login
            self.lock(reason="session_inactive")

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="daemon-accept", daemon=True
        )
        self._accept_thread.start()

        with self._lock:
            self.phase = DaemonPhase.LISTENING
        logger.info("Daemon listening on %s", self.socket_path)
        get_audit_logger().log_event(
            EventType.DAEMON_STARTED,
            EventSeverity.INFO,
            "Session daemon started",
            details={"socket": str(self.socket_path), "unlocked": self.is_unlocked},
        )

    def request_stop(self) -> None:
        """Flip the run flag. In-flight handlers are allowed to finish."""
        with self._lock:
            self._running = False
        self._stop_event.set()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until a stop is requested. Returns False on timeout."""
        return self._stop_event.wait(timeout)

    def stop(self) -> None:
        """Stop accepting, drain handlers and release the socket."""
        with self._lock:
            if self.phase in (DaemonPhase.STOPPED, DaemonPhase.STOPPING):
                return
            self.phase = DaemonPhase.STOPPING
        self.request_stop()

        if self._accept_thread is not None:
            self._accept_thread.join(timeout=ACCEPT_TIMEOUT * 3)
            self._accept_thread = None

        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler.join(timeout=HANDLER_DRAIN_TIMEOUT)

        if self._server_sock is not None:
            self._server_sock.close()
            self._server_sock = None
        remove_if_exists(self.socket_path)

        if self._monitor is not None:
            self._monitor.stop()
            self._monitor = None

        # The mirror stays on disk so a restarted daemon resumes the session
        with self._lock:
            self._state.wipe()
            self.phase = DaemonPhase.STOPPED

        logger.info("Daemon stopped")
        get_audit_logger().log_event(
            EventType.DAEMON_STOPPED, EventSeverity.INFO, "Session daemon stopped"
        )

    def serve_forever(self) -> None:
        """Start, then block until Exit or a termination signal, then stop."""
        self.start()
        self.run_until_stopped()

    def run_until_stopped(self) -> None:
        """Block a started daemon until Exit or SIGTERM/SIGINT, then stop it."""
        if threading.current_thread() is threading.main_thread():
            def _sig(signum, frame):
                logger.info("Received signal %d, shutting down", signum)
                self.request_stop()

            signal.signal(signal.SIGTERM, _sig)
            signal.signal(signal.SIGINT, _sig)
        try:
            # Short waits so signal handlers run promptly on the main thread
            while not self._stop_event.wait(0.5):
                pass
        finally:
            self.stop()

    # ── Connections ──────────────────────────────────────────────────

    def _accept_loop(self) -> None:
        while self.is_running:
            try:
                conn, _ = self._server_sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self.is_running:
                    break
                should_log, note = self._throttler.should_log("accept", str(e), "warning")
                if should_log:
                    logger.warning("accept() failed: %s%s", e, f" {note}" if note else "")
                self._stop_event.wait(self._accept_backoff)
                continue

            conn.settimeout(CONNECTION_TIMEOUT)
            handler = threading.Thread(
                target=self._handle_connection, args=(conn,), name="daemon-client", daemon=True
            )
            with self._handlers_lock:
                self._handlers.add(handler)
            handler.start()

    def _handle_connection(self, conn: socket.socket) -> None:
        try:
            with conn:
                try:
                    raw = read_message(conn)
                    command = decode_command(raw)
                except ProtocolError as e:
                    logger.warning("Rejected IPC request: %s", e)
                    get_audit_logger().log_event(
                        EventType.DAEMON_COMMAND_REJECTED,
                        EventSeverity.INVESTIGATE,
                        "Unparseable daemon request",
                        details={"error": str(e)},
                    )
                    response: Response = ErrorResponse(INVALID_COMMAND_MESSAGE)
                else:
                    logger.debug("IPC request: %r", command)
                    response = self.handle_command(command)
                write_message(conn, encode_response(response))
        except OSError as e:
            logger.debug("Client connection error: %s", e)
        except Exception:
            logger.exception("Unexpected error handling daemon request")
        finally:
            with self._handlers_lock:
                self._handlers.discard(threading.current_thread())
