"""Session Monitor: polls OS session/screen-lock state.

The probe is best-effort. When it cannot tell, it reports UNKNOWN, which
is never treated as a transition, so a failed probe can only keep the vault
unlocked for longer. It can never unlock it.
"""

import logging
import os
import subprocess
import sys
import threading
from enum import Enum
from typing import Callable, Optional

import psutil

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0  # seconds
PROBE_TIMEOUT = 5.0  # seconds per external command


class SessionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


def _run(cmd) -> Optional[str]:
    """Run a probe command, returning stdout or None if it could not run."""
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=PROBE_TIMEOUT, check=False
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Session probe %s failed: %s", cmd[0], e)
        return None
    if result.returncode != 0:
        logger.debug("Session probe %s exited %d", cmd[0], result.returncode)
        return None
    return result.stdout


def _linux_status() -> SessionStatus:
    out = _run(["loginctl", "show-user", str(os.getuid()), "--property=State"])
    if out is not None:
        state = out.strip().partition("=")[2].strip()
        if state == "active":
            return SessionStatus.ACTIVE
        if state in ("online", "closing", "lingering", "offline"):
            return SessionStatus.INACTIVE
        return SessionStatus.UNKNOWN

    # No systemd-logind: all we can tell is whether anyone is logged in
    try:
        users = psutil.users()
    except (OSError, psutil.Error) as e:
        logger.debug("psutil.users() failed: %s", e)
        return SessionStatus.UNKNOWN
    return SessionStatus.INACTIVE if not users else SessionStatus.UNKNOWN


def _macos_status() -> SessionStatus:
    out = _run(["ioreg", "-n", "Root", "-d1", "-a"])
    if out is None:
        return SessionStatus.UNKNOWN
    marker = out.find("CGSSessionScreenIsLocked")
    if marker == -1:
        return SessionStatus.ACTIVE
    # plist: <key>CGSSessionScreenIsLocked</key> followed by <true/> or <false/>
    following = out[marker:marker + 80]
    return SessionStatus.INACTIVE if "<true/>" in following else SessionStatus.ACTIVE


def _windows_status() -> SessionStatus:
    out = _run(["query", "session"])
    if out is None:
        return SessionStatus.UNKNOWN
    return SessionStatus.ACTIVE if "Active" in out else SessionStatus.INACTIVE


def get_session_status() -> SessionStatus:
    """Probe the current platform's session state."""
    if sys.platform.startswith("linux"):
        return _linux_status()
    if sys.platform == "darwin":
        return _macos_status()
    if sys.platform == "win32":
        return _windows_status()
    return SessionStatus.UNKNOWN


class SessionMonitor:
    """Polls session state on a background thread and reports transitions.

    The callback fires only when the status moves between ACTIVE and
    INACTIVE. UNKNOWN readings are ignored and do not reset the last known
    status. The status seen at ``start()`` is recorded without a callback.

    Uses threading.Event.wait(interval) for interruptible sleep.
    """

    def __init__(
        self,
        callback: Callable[[SessionStatus], None],
        interval: float = DEFAULT_POLL_INTERVAL,
        probe: Callable[[], SessionStatus] = get_session_status,
    ):
        self._callback = callback
        self._interval = interval
        self._probe = probe
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_status: SessionStatus = SessionStatus.UNKNOWN

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self.last_status = self._safe_probe()
        logger.info("Initial session status: %s", self.last_status.value)
        self._thread = threading.Thread(
            target=self._run, name="session-monitor", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _safe_probe(self) -> SessionStatus:
        try:
            return self._probe()
        except Exception:
            logger.exception("Session probe raised")
            return SessionStatus.UNKNOWN

    def poll_once(self) -> Optional[SessionStatus]:
        """Probe once; returns the new status if a transition was reported."""
        current = self._safe_probe()
        if current is SessionStatus.UNKNOWN or current is self.last_status:
            logger.debug("Session status check: still %s", self.last_status.value)
            return None

        previous, self.last_status = self.last_status, current
        if previous is SessionStatus.UNKNOWN:
            # First definite reading: nothing to transition from
            logger.info("Session status now known: %s", current.value)
            return None

        logger.info("Session status changed from %s to %s", previous.value, current.value)
        try:
            self._callback(current)
        except Exception:
            logger.exception("Session change callback failed")
        return current

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.poll_once()
