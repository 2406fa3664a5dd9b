"""Session State Store.

Persists the daemon's ``{unlocked, encryption_key, salt}`` tuple so a
restarted daemon resumes the session it had. The mirror is a
``SidecarFile`` (fixed-key obfuscation, see ``sidecar.py``).
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..core.exceptions import DecryptionError, VaultIOError
from ..vault.encryption import EncryptionService
from .sidecar import SidecarFile

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Canonical unlock state.

    ``encryption_key`` and ``salt`` are set if and only if ``unlocked``.
    Both are held as private ``bytearray`` copies so ``wipe()`` can zero
    them in place.
    """

    unlocked: bool = False
    encryption_key: Optional[bytearray] = None
    salt: Optional[bytearray] = None

    def __post_init__(self):
        if self.encryption_key is not None:
            self.encryption_key = bytearray(self.encryption_key)
        if self.salt is not None:
            self.salt = bytearray(self.salt)

    @classmethod
    def locked(cls) -> "SessionState":
        return cls()

    @classmethod
    def unlocked_with(cls, key: bytes, salt: bytes) -> "SessionState":
        return cls(unlocked=True, encryption_key=key, salt=salt)

    def validate(self) -> None:
        """Raise ValueError if the key/salt presence does not match ``unlocked``."""
        has_material = self.encryption_key is not None and self.salt is not None
        if self.unlocked and not has_material:
            raise ValueError("unlocked session state without key and salt")
        if not self.unlocked and (self.encryption_key is not None or self.salt is not None):
            raise ValueError("locked session state still carries key material")
        if self.unlocked and len(self.encryption_key) != EncryptionService.KEY_LENGTH:
            raise ValueError("session key has the wrong length")

    def copy(self) -> "SessionState":
        """An independent copy; wiping one leaves the other intact."""
        return SessionState(self.unlocked, self.encryption_key, self.salt)

    def wipe(self) -> None:
        """Zero the key material in place and return to the locked state."""
        for material in (self.encryption_key, self.salt):
            if material is not None:
                for i in range(len(material)):
                    material[i] = 0
        self.unlocked = False
        self.encryption_key = None
        self.salt = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unlocked": self.unlocked,
            "encryption_key": (
                EncryptionService.encode_for_storage(self.encryption_key)
                if self.encryption_key is not None else None
            ),
            "salt": EncryptionService.encode_for_storage(self.salt) if self.salt is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionState":
        """Parse and validate. Raises ValueError on malformed input."""
        if not isinstance(data, dict) or not isinstance(data.get("unlocked"), bool):
            raise ValueError("Invalid session state")
        key = data.get("encryption_key")
        salt = data.get("salt")
        state = cls(
            unlocked=data["unlocked"],
            encryption_key=EncryptionService.decode_from_storage(key) if key else None,
            salt=EncryptionService.decode_from_storage(salt) if salt else None,
        )
        state.validate()
        return state


class SessionStateStore:
    """On-disk mirror of the daemon's session state."""

    def __init__(self, path: Union[str, Path]):
        self._file = SidecarFile(path)

    @property
    def path(self) -> Path:
        return self._file.path

    def save(self, state: SessionState) -> None:
        state.validate()
        self._file.write(json.dumps(state.to_dict()).encode("utf-8"))

    def load(self) -> SessionState:
        """Load the mirror. Absent or unreadable content means locked."""
        try:
            raw = self._file.read()
        except (DecryptionError, VaultIOError) as e:
            logger.warning("Ignoring unreadable session state %s: %s", self.path, e)
            return SessionState.locked()
        if raw is None:
            return SessionState.locked()
        try:
            return SessionState.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("Ignoring invalid session state %s: %s", self.path, e)
            return SessionState.locked()

    def clear(self) -> None:
        self._file.delete()
