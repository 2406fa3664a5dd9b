"""Background daemon process management: spawn, pid file, status."""

import logging
import os
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from ..core.config import Settings
from ..core.exceptions import DaemonStartupError
from ..core.secure_io import atomic_write_text, remove_if_exists
from .client import DaemonClient, SocketTransport

logger = logging.getLogger(__name__)

SPAWN_POLL_INTERVAL = 0.1


def write_pid_file(path: Path, pid: Optional[int] = None) -> None:
    atomic_write_text(path, f"{pid or os.getpid()}\n")


def read_pid(path: Path) -> Optional[int]:
    """PID recorded in ``path``, or None if absent or garbage."""
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Unreadable pid file %s: %s", path, e)
        return None


def remove_pid_file(path: Path) -> None:
    remove_if_exists(path)


def spawn_daemon(settings: Settings, wait: float = 3.0) -> int:
    """
    Start ``python -m passkeep daemon run`` detached from this terminal.

    Waits until the new daemon answers on its socket, so a bind failure is
    reported here instead of vanishing with the child.

    Returns:
        PID of the daemon process

    Raises:
        DaemonStartupError: If the child exits early or never answers
    """
    settings.ensure_dirs()
    log_file = open(settings.daemon_log_path, "ab")
    try:
        child = subprocess.Popen(
            [sys.executable, "-m", "passkeep", "daemon", "run"],
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            close_fds=True,
        )
    except OSError as e:
        raise DaemonStartupError(f"cannot launch daemon: {e}") from e
    finally:
        log_file.close()

    client = DaemonClient(SocketTransport(settings.socket_path))
    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        code = child.poll()
        if code is not None:
            raise DaemonStartupError(
                f"daemon exited with code {code}; see {settings.daemon_log_path}"
            )
        if settings.socket_path.exists() and client.ping(timeout=SPAWN_POLL_INTERVAL * 5):
            logger.info("Daemon started with pid %d", child.pid)
            return child.pid
        time.sleep(SPAWN_POLL_INTERVAL)

    raise DaemonStartupError(
        f"daemon did not start listening within {wait:.1f}s; see {settings.daemon_log_path}"
    )


def debug_info(settings: Settings) -> Dict[str, Any]:
    """Paths and liveness of the daemon's on-disk artifacts."""
    pid = read_pid(settings.pid_path)
    return {
        "socket_path": str(settings.socket_path),
        "socket_exists": settings.socket_path.exists(),
        "state_path": str(settings.state_path),
        "state_exists": settings.state_path.exists(),
        "key_cache_exists": settings.key_path.exists(),
        "pid_file": str(settings.pid_path),
        "pid": pid,
        "process_alive": bool(pid) and psutil.pid_exists(pid),
        "vault_path": str(settings.vault_path),
        "vault_exists": settings.vault_path.exists(),
    }
