"""Key Cache: the master password, kept for short-lived client processes.

A CLI process started while the vault is already unlocked can read the
password from here and derive the key itself instead of prompting again.
The file is a fixed-key ``SidecarFile`` and so only as private as its 0600
mode (see ``sidecar.py``). It is written on unlock and deleted on lock.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from ..core.exceptions import DecryptionError, VaultIOError
from .sidecar import SidecarFile

logger = logging.getLogger(__name__)


class KeyCache:

    def __init__(self, path: Union[str, Path]):
        self._file = SidecarFile(path)

    @property
    def path(self) -> Path:
        return self._file.path

    def exists(self) -> bool:
        return self._file.exists()

    def save(self, password: str) -> None:
        self._file.write(password.encode("utf-8"))

    def load(self) -> Optional[str]:
        """The cached password, or None if absent or unreadable."""
        try:
            raw = self._file.read()
        except (DecryptionError, VaultIOError) as e:
            logger.warning("Ignoring unreadable key cache %s: %s", self.path, e)
            return None
        if raw is None:
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Ignoring key cache %s with invalid text", self.path)
            return None

    def delete(self) -> bool:
        return self._file.delete()
