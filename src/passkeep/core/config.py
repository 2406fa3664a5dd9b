# Runtime configuration
#
# All paths and timeouts come from PASSKEEP_* environment variables, with a
# .env file in the working directory honored through python-dotenv.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

APP_NAME = "passkeep"

DEFAULT_DAEMON_TIMEOUT_MS = 100
DEFAULT_UNLOCK_TIMEOUT_MS = 5000
DEFAULT_SESSION_POLL_INTERVAL = 10.0  # seconds

VAULT_FILENAME = "passwords.json"
STATE_FILENAME = "state.enc"
KEY_FILENAME = "key.enc"
SOCKET_FILENAME = "daemon.sock"
PID_FILENAME = "daemon.pid"
DAEMON_LOG_FILENAME = "daemon.log"


def _default_data_dir(env: Mapping[str, str]) -> Path:
    xdg = env.get("XDG_DATA_HOME", "")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path(os.path.expanduser("~")) / ".local" / "share" / APP_NAME


def _read_ms(env: Mapping[str, str], name: str, default_ms: int) -> float:
    raw = env.get(name, "")
    if not raw:
        return default_ms / 1000.0
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer number of milliseconds, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value / 1000.0


def _read_seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass
class Settings:
    """Filesystem locations and timeouts shared by the CLI and the daemon.

    Timeouts are stored in seconds.
    """

    data_dir: Path
    runtime_dir: Path
    vault_path: Path
    log_dir: Path
    daemon_timeout: float = DEFAULT_DAEMON_TIMEOUT_MS / 1000.0
    unlock_timeout: float = DEFAULT_UNLOCK_TIMEOUT_MS / 1000.0
    session_poll_interval: float = DEFAULT_SESSION_POLL_INTERVAL

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment.

        Args:
            env: Mapping to read instead of ``os.environ``. When omitted, a
                ``.env`` file is loaded first (existing variables win).
        """
        if env is None:
            load_dotenv(override=False)
            env = os.environ

        data_dir = Path(env.get("PASSKEEP_DATA_DIR", "") or _default_data_dir(env))

        runtime_dir = env.get("PASSKEEP_RUNTIME_DIR", "")
        if not runtime_dir:
            xdg_runtime = env.get("XDG_RUNTIME_DIR", "")
            runtime_dir = Path(xdg_runtime) / APP_NAME if xdg_runtime else data_dir

        vault_path = env.get("PASSKEEP_VAULT_PATH", "") or data_dir / VAULT_FILENAME
        log_dir = env.get("PASSKEEP_LOG_DIR", "") or data_dir / "logs"

        return cls(
            data_dir=data_dir,
            runtime_dir=Path(runtime_dir),
            vault_path=Path(vault_path),
            log_dir=Path(log_dir),
            daemon_timeout=_read_ms(env, "PASSKEEP_DAEMON_TIMEOUT_MS", DEFAULT_DAEMON_TIMEOUT_MS),
            unlock_timeout=_read_ms(env, "PASSKEEP_UNLOCK_TIMEOUT_MS", DEFAULT_UNLOCK_TIMEOUT_MS),
            session_poll_interval=_read_seconds(
                env, "PASSKEEP_SESSION_POLL_INTERVAL", DEFAULT_SESSION_POLL_INTERVAL
            ),
        )

    @property
    def socket_path(self) -> Path:
        return self.runtime_dir / SOCKET_FILENAME

    @property
    def pid_path(self) -> Path:
        return self.runtime_dir / PID_FILENAME

    @property
    def state_path(self) -> Path:
        return self.data_dir / STATE_FILENAME

    @property
    def key_path(self) -> Path:
        return self.data_dir / KEY_FILENAME

    @property
    def daemon_log_path(self) -> Path:
        return self.log_dir / DAEMON_LOG_FILENAME

    def ensure_dirs(self) -> None:
        """Create the data, runtime and log directories (owner-only)."""
        for directory in (self.data_dir, self.runtime_dir, self.log_dir):
            directory.mkdir(parents=True, exist_ok=True)
            os.chmod(directory, 0o700)
