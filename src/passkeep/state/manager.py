"""State Manager: the client-side view of the unlock session.

Each CLI process builds one ``StateManager`` and passes it to its command
handlers. Local state is a best-effort cache. When a daemon is reachable it
decides *whether* the vault is unlocked and with *which key*; the entries
are always re-read from the vault file here, never sent over the socket.

Daemon calls on the query path are bounded by ``settings.daemon_timeout``
(about 100ms). A slow, dead or missing daemon degrades to local-only
behavior and never fails the command.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..core.config import Settings
from ..core.exceptions import (
    DecryptionError,
    IPCError,
    PasskeepError,
    StateInconsistentError,
    VaultIOError,
    VaultLockedError,
)
from ..daemon.client import DaemonClient, SocketTransport
from ..daemon.discovery import DaemonDiscovery, ProbeState
from ..daemon.protocol import StateInfoResponse
from ..session.key_cache import KeyCache
from ..session.state_store import SessionStateStore
from ..vault.models import Entry
from ..vault.vault_file import create_vault, load_vault, load_vault_with_key, save_vault, vault_exists

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """An unlocked vault as seen by this process.

    The key and salt are private ``bytearray`` copies, zeroed by ``wipe()``.
    """

    unlocked: bool
    entries: List[Entry] = field(default_factory=list)
    encryption_key: Optional[bytearray] = None
    salt: Optional[bytearray] = None

    def __post_init__(self):
        if self.encryption_key is not None:
            self.encryption_key = bytearray(self.encryption_key)
        if self.salt is not None:
            self.salt = bytearray(self.salt)

    def wipe(self) -> None:
        for material in (self.encryption_key, self.salt):
            if material is not None:
                for i in range(len(material)):
                    material[i] = 0
        self.unlocked = False
        self.entries = []
        self.encryption_key = None
        self.salt = None


class StateManager:
    """Arbitrates between this process's cached state and the daemon.

    Args:
        settings: Paths and timeouts
        client: Daemon client (default: Unix socket at ``settings.socket_path``)
        discovery: Daemon discovery sharing the client's transport
        key_cache: Cached master password
        state_store: Session mirror, cleared directly when no daemon answers a lock
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[DaemonClient] = None,
        discovery: Optional[DaemonDiscovery] = None,
        key_cache: Optional[KeyCache] = None,
        state_store: Optional[SessionStateStore] = None,
    ):
        self.settings = settings
        self.vault_path: Path = settings.vault_path
        transport = client.transport if client is not None else SocketTransport(settings.socket_path)
        self.client = client or DaemonClient(transport, default_timeout=settings.daemon_timeout)
        self.discovery = discovery or DaemonDiscovery(transport, settings.daemon_timeout)
        self.key_cache = key_cache or KeyCache(settings.key_path)
        self.state_store = state_store or SessionStateStore(settings.state_path)
        self._lock = threading.Lock()
        self._local: Optional[AppState] = None
        # Set when a reachable daemon refused this process's unlock push
        self._push_rejected = False

    # ── Local cache ──────────────────────────────────────────────────

    @property
    def has_local_state(self) -> bool:
        with self._lock:
            return self._local is not None and self._local.unlocked

    def _set_local(self, state: Optional[AppState]) -> None:
        with self._lock:
            old, self._local = self._local, state
        if old is not None and old is not state:
            old.wipe()

    def _invalidate(self, reason: str) -> None:
        logger.info("Dropping local unlock state: %s", reason)
        self._set_local(None)
        self._push_rejected = False
        self.key_cache.delete()

    # ── Queries ──────────────────────────────────────────────────────

    def _probe(self) -> Optional[StateInfoResponse]:
        """StateInfo from a reachable daemon, or None."""
        if self.discovery.probe() is ProbeState.REACHABLE:
            return self.discovery.last_info
        return None

    def is_unlocked(self) -> bool:
        """Whether this process may read the vault right now.

        Never blocks longer than the daemon timeout, and never prompts.
        """
        info = self._probe()

        if self.has_local_state:
            if info is not None and not info.unlocked:
                if self._push_rejected:
                    # The daemon never took this unlock; it cannot revoke it
                    return True
                # Daemon auto-locked (or was locked by another client)
                self._invalidate("daemon reports locked")
                return False
            return True

        if info is None or not info.unlocked:
            return False
        try:
            self.sync_from_daemon(info)
        except PasskeepError as e:
            logger.warning("Could not resume daemon session: %s", e)
            return False
        return True

    def sync_from_daemon(self, info: Optional[StateInfoResponse] = None) -> AppState:
        """
        Adopt the daemon's key and decrypt the vault file locally.

        Raises:
            IPCError: If the daemon cannot be asked
            VaultLockedError: If the daemon is locked
            StateInconsistentError: If the vault file is missing or unreadable
            DecryptionError: If the daemon's key does not open the vault
        """
        if info is None:
            info = self.client.get_state()
        if not info.unlocked or info.encryption_key is None or info.salt is None:
            raise VaultLockedError("daemon session is locked")
        try:
            entries = load_vault_with_key(self.vault_path, info.encryption_key)
        except VaultIOError as e:
            raise StateInconsistentError(
                f"daemon is unlocked but the vault cannot be read: {e}"
            ) from e
        state = AppState(
            unlocked=True, entries=entries, encryption_key=info.encryption_key, salt=info.salt
        )
        self._set_local(state)
        logger.debug("Resumed daemon session (%d entries)", len(entries))
        return state

    def get_state(self) -> AppState:
        """
        The unlocked vault.

        Raises:
            VaultLockedError: If neither this process nor the daemon is unlocked
            StateInconsistentError: If the vault file vanished while unlocked
        """
        if not self.is_unlocked():
            raise VaultLockedError("vault is locked")
        if not self.vault_path.is_file():
            self._invalidate("vault file missing")
            get_audit_logger().log_event(
                EventType.STATE_INCONSISTENT,
                EventSeverity.CRITICAL,
                "Unlocked state without a vault file",
                details={"vault_path": str(self.vault_path)},
            )
            raise StateInconsistentError(
                f"vault file {self.vault_path} is missing; unlock again"
            )
        with self._lock:
            return self._local

    # ── Mutations ────────────────────────────────────────────────────

    def unlock(
        self,
        entries: List[Entry],
        key: bytes,
        salt: bytes,
        password: Optional[str] = None,
    ) -> None:
        """
        Record an unlock done by this process.

        With a plaintext ``password``, the key cache is refreshed and the
        password is pushed to a reachable daemon. A failed push is logged,
        not raised, and this unlock then stands even while the daemon
        reports locked, until the next ``lock()``.
        """
        self._set_local(AppState(unlocked=True, entries=list(entries), encryption_key=key, salt=salt))
        get_audit_logger().log_vault_event(
            EventType.VAULT_UNLOCKED, "Vault unlocked", details={"source": "local"}
        )
        if password is None:
            return

        try:
            self.key_cache.save(password)
        except PasskeepError as e:
            logger.warning("Could not write key cache: %s", e)

        if self._probe() is None:
            logger.debug("No daemon reachable; unlock is local only")
            return
        try:
            self.client.unlock(password, timeout=self.settings.unlock_timeout)
        except IPCError as e:
            logger.warning("Daemon did not accept unlock, keeping it local: %s", e)
            self._push_rejected = True
        else:
            self._push_rejected = False

    def lock(self) -> None:
        """Lock locally and, when reachable, in the daemon.

        Always succeeds locally even if the daemon round trip fails.
        """
        self._set_local(None)
        self._push_rejected = False
        self.key_cache.delete()
        get_audit_logger().log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

        if self._probe() is not None:
            try:
                self.client.lock(timeout=self.settings.unlock_timeout)
                return
            except IPCError as e:
                logger.warning("Daemon lock failed: %s", e)
        # No daemon to do it: make sure a future daemon does not resume
        self.state_store.clear()

    def save_entries(self, entries: List[Entry]) -> None:
        """Write ``entries`` to the vault with the unlocked key and update local state."""
        state = self.get_state()
        save_vault(self.vault_path, entries, state.encryption_key, state.salt)
        with self._lock:
            if self._local is not None:
                self._local.entries = list(entries)
        get_audit_logger().log_vault_event(
            EventType.VAULT_SAVED, "Vault saved", details={"entries": len(entries)}
        )

    def ensure_unlocked(self, prompt: Callable[[], str]) -> AppState:
        """
        Return the unlocked vault, prompting only as a last resort.

        Order: already unlocked (locally or via daemon), then the key cache,
        then ``prompt()``. A missing vault is created with the prompted
        password.

        Raises:
            DecryptionError: Wrong password, verbatim
        """
        if self.is_unlocked():
            return self.get_state()

        if vault_exists(self.vault_path):
            cached = self.key_cache.load()
            if cached is not None:
                try:
                    entries, key, salt = load_vault(self.vault_path, cached)
                except DecryptionError:
                    logger.info("Cached key no longer opens the vault; discarding it")
                    self.key_cache.delete()
                else:
                    self.unlock(entries, key, salt, password=cached)
                    return self.get_state()

        password = prompt()
        if vault_exists(self.vault_path):
            try:
                entries, key, salt = load_vault(self.vault_path, password)
            except DecryptionError:
                get_audit_logger().log_vault_event(
                    EventType.VAULT_UNLOCK_FAILED,
                    "Wrong password or corrupt vault",
                    severity=EventSeverity.INVESTIGATE,
                )
                raise
        else:
            entries, key, salt = create_vault(self.vault_path, password)
        self.unlock(entries, key, salt, password=password)
        return self.get_state()
