# Vault - Encryption Service
#
# Master password -> encryption key (legacy shift + Argon2id)
# Vault payload encryption (AES-256-GCM)
# Fresh random nonce on every encryption

import base64
import binascii
import os
from typing import Tuple

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.exceptions import DecryptionError, EncryptionError, KeyDerivationError
from .legacy_transform import shift_password


class EncryptionService:
    """
    Handles key derivation and encryption for the vault file.

    Flow:
    1. User enters master password
    2. The password is passed through the legacy shift
    3. Argon2id derives a 256-bit key from the shifted password + salt
    4. AES-256-GCM encrypts/decrypts the serialized entry list
    5. Every save uses a new nonce
    """

    # Argon2id parameters (argon2 v0x13 defaults: 19 MiB, 2 passes, 1 lane)
    ARGON2_TIME_COST = 2
    ARGON2_MEMORY_COST = 19456  # KiB
    ARGON2_PARALLELISM = 1
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16
    MIN_SALT_LENGTH = 8
    MAX_SALT_LENGTH = 48  # 64 base64 characters in the stored PHC salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM

    @staticmethod
    def derive_key(master_password: str, salt: bytes) -> bytes:
        """
        Derive the vault key from the master password.

        Args:
            master_password: User's master password
            salt: Salt stored in the vault file (8 to 48 bytes)

        Returns:
            256-bit encryption key

        Raises:
            KeyDerivationError: If the salt is rejected or Argon2 fails
        """
        if not (EncryptionService.MIN_SALT_LENGTH <= len(salt) <= EncryptionService.MAX_SALT_LENGTH):
            raise KeyDerivationError(
                f"salt must be {EncryptionService.MIN_SALT_LENGTH}-"
                f"{EncryptionService.MAX_SALT_LENGTH} bytes, got {len(salt)}"
            )

        shifted = shift_password(master_password)
        try:
            return hash_secret_raw(
                secret=shifted.encode("utf-8"),
                salt=bytes(salt),
                time_cost=EncryptionService.ARGON2_TIME_COST,
                memory_cost=EncryptionService.ARGON2_MEMORY_COST,
                parallelism=EncryptionService.ARGON2_PARALLELISM,
                hash_len=EncryptionService.KEY_LENGTH,
                type=Type.ID,
            )
        except HashingError as e:
            raise KeyDerivationError(f"key derivation failed: {e}") from e

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Serialized data to encrypt
            key: 256-bit encryption key (from derive_key)

        Returns:
            Tuple of (nonce, ciphertext). Both are needed for decryption.

        Raises:
            EncryptionError: If the key is unusable
        """
        # Generate random nonce (must be unique per encryption)
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        try:
            ciphertext = AESGCM(bytes(key)).encrypt(nonce, plaintext, None)
        except (ValueError, TypeError, OverflowError) as e:
            raise EncryptionError(f"encryption failed: {e}") from e
        return nonce, ciphertext

    @staticmethod
    def decrypt(ciphertext: bytes, key: bytes, nonce: bytes) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM.

        Raises:
            DecryptionError: If authentication fails (wrong key, tampered
                data) or the key or nonce has the wrong length
        """
        if len(nonce) != EncryptionService.NONCE_LENGTH:
            raise DecryptionError(f"nonce must be {EncryptionService.NONCE_LENGTH} bytes")
        try:
            return AESGCM(bytes(key)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError("authentication failed") from e
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"decryption failed: {e}") from e

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data for JSON storage (standard base64)."""
        return base64.b64encode(data).decode("ascii")

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64 from storage. Raises ValueError on malformed input."""
        try:
            return base64.b64decode(data.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise ValueError(f"invalid base64: {e}") from e
