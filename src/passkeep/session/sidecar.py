"""Fixed-key encrypted side files.

The session mirror and the key cache are stored as ``{nonce, encrypted_data}``
JSON blobs, AES-GCM encrypted under ``FIXED_KEY``. That key is the SHA-256
of a constant string compiled into this module.

THIS IS OBFUSCATION, NOT CONFIDENTIALITY. Anyone who can read these files
and this source can decrypt them. What protects the contents is the
owner-only file mode (0600) and the owner-only directory they live in. The
encryption only keeps the cached master password from appearing as plain
text in backups and casual greps.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional, Union

from ..core.exceptions import DecryptionError, VaultIOError
from ..core.secure_io import atomic_write_text, remove_if_exists
from ..vault.encryption import EncryptionService

logger = logging.getLogger(__name__)

FIXED_KEY_SEED = b"passkeep_state_key_v1"
FIXED_KEY = hashlib.sha256(FIXED_KEY_SEED).digest()


class SidecarFile:
    """One fixed-key encrypted file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def write(self, plaintext: bytes) -> None:
        nonce, ciphertext = EncryptionService.encrypt(plaintext, FIXED_KEY)
        blob = json.dumps({
            "nonce": EncryptionService.encode_for_storage(nonce),
            "encrypted_data": EncryptionService.encode_for_storage(ciphertext),
        })
        try:
            atomic_write_text(self.path, blob)
        except OSError as e:
            raise VaultIOError(
                f"cannot write {self.path}: {e.strerror or e}",
                path=self.path,
                reason=e.strerror or str(e),
            ) from e

    def read(self) -> Optional[bytes]:
        """
        Returns:
            The decrypted content, or None if the file does not exist.

        Raises:
            DecryptionError: If the file is corrupt
            VaultIOError: If the file exists but cannot be read
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise DecryptionError(f"corrupt side file {self.path}") from e
        except OSError as e:
            raise VaultIOError(
                f"cannot read {self.path}: {e.strerror or e}",
                path=self.path,
                reason=e.strerror or str(e),
            ) from e

        try:
            blob = json.loads(text)
            nonce = EncryptionService.decode_from_storage(blob["nonce"])
            ciphertext = EncryptionService.decode_from_storage(blob["encrypted_data"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise DecryptionError(f"corrupt side file {self.path}") from e
        return EncryptionService.decrypt(ciphertext, FIXED_KEY, nonce)

    def delete(self) -> bool:
        removed = remove_if_exists(self.path)
        if removed:
            logger.debug("Removed %s", self.path)
        return removed
