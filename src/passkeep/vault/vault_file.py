# Vault - file format and load/save operations
#
# One vault per file: {"salt": b64, "nonce": b64, "encrypted_data": b64}
# The ciphertext holds the JSON entry list. A new nonce is drawn on every save.

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..core.exceptions import DecryptionError, VaultIOError
from ..core.secure_io import atomic_write_text
from .encryption import EncryptionService
from .models import Entry, entries_from_json, entries_to_json

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

INVALID_PASSWORD_MESSAGE = "invalid password or corrupt file"

LoadResult = Tuple[List[Entry], bytes, bytes]


@dataclass
class VaultFile:
    """The on-disk vault container, with all fields as raw bytes."""

    salt: bytes
    nonce: bytes
    encrypted_data: bytes

    def to_json(self) -> str:
        return json.dumps({
            "salt": EncryptionService.encode_for_storage(self.salt),
            "nonce": EncryptionService.encode_for_storage(self.nonce),
            "encrypted_data": EncryptionService.encode_for_storage(self.encrypted_data),
        })

    @classmethod
    def from_json(cls, text: str) -> "VaultFile":
        """Parse the container. Raises ValueError on any malformed field."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid vault JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Invalid vault JSON: expected an object")
        fields = {}
        for key in ("salt", "nonce", "encrypted_data"):
            value = data.get(key)
            if not isinstance(value, str):
                raise ValueError(f"Missing vault field: {key}")
            fields[key] = EncryptionService.decode_from_storage(value)
        return cls(**fields)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e
    except OSError as e:
        raise VaultIOError(
            f"cannot read vault {path}: {e.strerror or e}", path=path, reason=e.strerror or str(e)
        ) from e


def vault_exists(path: PathLike) -> bool:
    """True if ``path`` is a non-empty file."""
    path = Path(path)
    return path.is_file() and path.stat().st_size > 0


def read_vault_file(path: PathLike) -> VaultFile:
    """Read and parse the vault container without decrypting it.

    Raises:
        VaultIOError: If the file cannot be read
        DecryptionError: If the container is malformed
    """
    text = _read_text(Path(path))
    try:
        return VaultFile.from_json(text)
    except ValueError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e


def _decrypt_entries(container: VaultFile, key: bytes) -> List[Entry]:
    plaintext = EncryptionService.decrypt(container.encrypted_data, key, container.nonce)
    try:
        return entries_from_json(plaintext)
    except ValueError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e


def load_vault(path: PathLike, password: str) -> LoadResult:
    """
    Open the vault with the master password.

    Returns:
        (entries, key, salt)

    Raises:
        VaultIOError: If the file is missing or unreadable
        KeyDerivationError: If the stored salt is unusable
        DecryptionError: Wrong password or corrupt file; the two are not
            distinguished
    """
    container = read_vault_file(path)
    key = EncryptionService.derive_key(password, container.salt)
    try:
        entries = _decrypt_entries(container, key)
    except DecryptionError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e
    return entries, key, container.salt


def load_vault_with_key(path: PathLike, key: bytes) -> List[Entry]:
    """Decrypt the vault with an already derived key (no KDF run)."""
    container = read_vault_file(path)
    try:
        return _decrypt_entries(container, key)
    except DecryptionError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e


def save_vault(path: PathLike, entries: List[Entry], key: bytes, salt: bytes) -> None:
    """
    Encrypt ``entries`` and replace the vault file atomically.

    A fresh nonce is generated on every call, never reused from the last
    decryption. The file is left readable by the owner only.
    """
    path = Path(path)
    nonce, ciphertext = EncryptionService.encrypt(entries_to_json(entries), key)
    container = VaultFile(salt=bytes(salt), nonce=nonce, encrypted_data=ciphertext)
    try:
        atomic_write_text(path, container.to_json())
    except OSError as e:
        raise VaultIOError(
            f"cannot write vault {path}: {e.strerror or e}", path=path, reason=e.strerror or str(e)
        ) from e
    logger.debug("Saved vault %s (%d entries)", path, len(entries))


def create_vault(path: PathLike, password: str) -> LoadResult:
    """
    Create an empty vault protected by ``password``.

    Returns:
        ([], key, salt)

    Raises:
        VaultIOError: If a non-empty file already exists at ``path``
    """
    path = Path(path)
    if vault_exists(path):
        raise VaultIOError(f"vault already exists: {path}", path=path, reason="file exists")

    salt = EncryptionService.generate_salt()
    key = EncryptionService.derive_key(password, salt)
    save_vault(path, [], key, salt)

    get_audit_logger().log_vault_event(
        EventType.VAULT_CREATED, "Vault created", details={"path": str(path)}
    )
    return [], key, salt


def import_plaintext_vault(path: PathLike, password: str) -> LoadResult:
    """
    Encrypt a legacy plaintext vault in place.

    Older installs kept the entry list as a bare JSON array. This reads that
    array, derives a key under a new salt and overwrites the file with the
    encrypted container.

    Raises:
        VaultIOError: If the file is unreadable or already encrypted
        DecryptionError: If the file is neither format
    """
    path = Path(path)
    text = _read_text(path)
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e
    if isinstance(raw, dict) and "encrypted_data" in raw:
        raise VaultIOError(f"vault is already encrypted: {path}", path=path, reason="already encrypted")
    try:
        entries = entries_from_json(text.encode("utf-8"))
    except ValueError as e:
        raise DecryptionError(INVALID_PASSWORD_MESSAGE) from e

    salt = EncryptionService.generate_salt()
    key = EncryptionService.derive_key(password, salt)
    save_vault(path, entries, key, salt)

    get_audit_logger().log_vault_event(
        EventType.VAULT_IMPORTED,
        "Plaintext vault encrypted",
        details={"path": str(path), "entries": len(entries)},
        severity=EventSeverity.INVESTIGATE,
    )
    return entries, key, salt
