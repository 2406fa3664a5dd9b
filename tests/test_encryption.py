"""Tests for the vault encryption service and the legacy password shift.

Covers:
  - Legacy shift: known values, inversion for ASCII, 7-bit folding
  - derive_key: determinism, salt sensitivity, salt bounds, shift applied
  - AES-256-GCM: round trip, fresh nonces, wrong key/nonce, tampering
  - Storage encoding: strict base64
"""

import pytest
from argon2.low_level import Type, hash_secret_raw

from passkeep.core.exceptions import DecryptionError, EncryptionError, KeyDerivationError
from passkeep.vault.encryption import EncryptionService
from passkeep.vault.legacy_transform import (
    FIBONACCI,
    NUMERIC_KEY,
    shift_password,
    unshift_password,
)


# ── Legacy shift ─────────────────────────────────────────────────────


class TestLegacyShift:
    """Keyless character shift applied before the KDF."""

    def test_first_characters(self):
        # index 0 -> NUMERIC_KEY[0]=14 -> FIBONACCI[13]=233
        # index 1 -> NUMERIC_KEY[1]=7  -> FIBONACCI[6]=8
        assert shift_password("a") == chr((ord("a") + 233) % 128)
        assert shift_password("ab")[1] == chr((ord("b") + 8) % 128)

    def test_shift_cycles_every_twenty_characters(self):
        shifted = shift_password("a" * 21)
        assert shifted[0] == shifted[20]

    def test_unshift_inverts_ascii(self):
        password = "correct-horse battery staple 123!"
        assert unshift_password(shift_password(password)) == password

    def test_output_is_seven_bit(self):
        assert all(ord(c) < 128 for c in shift_password("pässwörd€"))

    def test_empty_password(self):
        assert shift_password("") == ""

    def test_tables(self):
        assert len(NUMERIC_KEY) == 20
        assert sorted(NUMERIC_KEY) == list(range(1, 21))
        assert FIBONACCI[:5] == [0, 1, 1, 2, 3]


# ── Key derivation ───────────────────────────────────────────────────


class TestDeriveKey:
    """Argon2id over the shifted password."""

    def test_key_length(self):
        key = EncryptionService.derive_key("pw", b"0123456789abcdef")
        assert len(key) == 32

    def test_deterministic(self):
        salt = b"0123456789abcdef"
        assert EncryptionService.derive_key("pw", salt) == EncryptionService.derive_key("pw", salt)

    def test_salt_changes_key(self):
        a = EncryptionService.derive_key("pw", b"0123456789abcdef")
        b = EncryptionService.derive_key("pw", b"fedcba9876543210")
        assert a != b

    def test_password_changes_key(self):
        salt = b"0123456789abcdef"
        assert EncryptionService.derive_key("pw1", salt) != EncryptionService.derive_key("pw2", salt)

    def test_uses_shifted_password(self):
        salt = b"0123456789abcdef"
        expected = hash_secret_raw(
            secret=shift_password("correct-horse").encode("utf-8"),
            salt=salt,
            time_cost=2,
            memory_cost=19456,
            parallelism=1,
            hash_len=32,
            type=Type.ID,
        )
        assert EncryptionService.derive_key("correct-horse", salt) == expected

    def test_short_salt_rejected(self):
        with pytest.raises(KeyDerivationError, match="salt"):
            EncryptionService.derive_key("pw", b"short")

    def test_long_salt_rejected(self):
        with pytest.raises(KeyDerivationError):
            EncryptionService.derive_key("pw", b"x" * 49)

    def test_longest_salt_accepted(self):
        # 48 raw bytes encode to the 64 base64 characters a PHC salt allows
        assert len(EncryptionService.derive_key("pw", b"x" * 48)) == EncryptionService.KEY_LENGTH

    def test_generate_salt(self):
        a = EncryptionService.generate_salt()
        b = EncryptionService.generate_salt()
        assert len(a) == 16
        assert a != b


# ── AES-GCM ──────────────────────────────────────────────────────────


class TestCipher:
    """AES-256-GCM encrypt/decrypt."""

    KEY = bytes(range(32))

    def test_roundtrip(self):
        nonce, ct = EncryptionService.encrypt(b"secret payload", self.KEY)
        assert len(nonce) == 12
        assert EncryptionService.decrypt(ct, self.KEY, nonce) == b"secret payload"

    def test_fresh_nonce_each_call(self):
        nonces = {EncryptionService.encrypt(b"x", self.KEY)[0] for _ in range(200)}
        assert len(nonces) == 200

    def test_wrong_key(self):
        nonce, ct = EncryptionService.encrypt(b"data", self.KEY)
        with pytest.raises(DecryptionError):
            EncryptionService.decrypt(ct, bytes(32), nonce)

    def test_wrong_nonce(self):
        nonce, ct = EncryptionService.encrypt(b"data", self.KEY)
        other = bytes(12) if nonce != bytes(12) else b"\x01" * 12
        with pytest.raises(DecryptionError):
            EncryptionService.decrypt(ct, self.KEY, other)

    def test_tampered_ciphertext(self):
        nonce, ct = EncryptionService.encrypt(b"data", self.KEY)
        tampered = bytes([ct[0] ^ 0x01]) + ct[1:]
        with pytest.raises(DecryptionError):
            EncryptionService.decrypt(tampered, self.KEY, nonce)

    def test_bad_nonce_length(self):
        with pytest.raises(DecryptionError, match="nonce"):
            EncryptionService.decrypt(b"whatever", self.KEY, b"123")

    def test_bad_key_length_on_encrypt(self):
        with pytest.raises(EncryptionError):
            EncryptionService.encrypt(b"data", b"short")

    def test_bad_key_length_on_decrypt(self):
        nonce, ct = EncryptionService.encrypt(b"data", self.KEY)
        with pytest.raises(DecryptionError):
            EncryptionService.decrypt(ct, b"short", nonce)


class TestStorageEncoding:

    def test_roundtrip(self):
        data = bytes(range(256))
        encoded = EncryptionService.encode_for_storage(data)
        assert EncryptionService.decode_from_storage(encoded) == data

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            EncryptionService.decode_from_storage("not base64!!")
