"""Tests for fixed-key side files: session state mirror and key cache."""

import json
import os
import stat
import sys

import pytest

from passkeep.core.exceptions import DecryptionError
from passkeep.session.key_cache import KeyCache
from passkeep.session.sidecar import FIXED_KEY, SidecarFile
from passkeep.session.state_store import SessionState, SessionStateStore
from passkeep.vault.encryption import EncryptionService

KEY = bytes(range(32))
SALT = b"0123456789abcdef"


class TestSidecarFile:
    """{nonce, encrypted_data} blobs under the fixed key."""

    def test_write_read(self, tmp_path):
        side = SidecarFile(tmp_path / "s.enc")
        side.write(b"hello")
        assert side.read() == b"hello"

    def test_blob_layout(self, tmp_path):
        side = SidecarFile(tmp_path / "s.enc")
        side.write(b"hello")
        blob = json.loads((tmp_path / "s.enc").read_text())
        assert set(blob) == {"nonce", "encrypted_data"}
        nonce = EncryptionService.decode_from_storage(blob["nonce"])
        ct = EncryptionService.decode_from_storage(blob["encrypted_data"])
        # Anyone holding the source can decrypt it: obfuscation only
        assert EncryptionService.decrypt(ct, FIXED_KEY, nonce) == b"hello"

    def test_missing_returns_none(self, tmp_path):
        assert SidecarFile(tmp_path / "none.enc").read() is None

    def test_corrupt_raises(self, tmp_path):
        path = tmp_path / "s.enc"
        path.write_text("garbage")
        with pytest.raises(DecryptionError):
            SidecarFile(path).read()

    def test_delete(self, tmp_path):
        side = SidecarFile(tmp_path / "s.enc")
        side.write(b"x")
        assert side.delete() is True
        assert side.delete() is False
        assert not side.exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_owner_only(self, tmp_path):
        side = SidecarFile(tmp_path / "s.enc")
        side.write(b"x")
        assert stat.S_IMODE(os.stat(side.path).st_mode) == 0o600


class TestSessionState:

    def test_locked_default(self):
        state = SessionState()
        assert not state.unlocked
        state.validate()

    def test_unlocked_requires_material(self):
        with pytest.raises(ValueError):
            SessionState(unlocked=True).validate()

    def test_locked_must_not_carry_material(self):
        with pytest.raises(ValueError):
            SessionState(unlocked=False, encryption_key=KEY, salt=SALT).validate()

    def test_wipe(self):
        state = SessionState.unlocked_with(KEY, SALT)
        state.wipe()
        assert state == SessionState.locked()

    def test_wipe_zeroes_key_in_place(self):
        state = SessionState.unlocked_with(KEY, SALT)
        held_key, held_salt = state.encryption_key, state.salt
        state.wipe()
        assert held_key == bytearray(len(KEY))
        assert held_salt == bytearray(len(SALT))

    def test_copy_survives_wipe(self):
        state = SessionState.unlocked_with(KEY, SALT)
        snapshot = state.copy()
        state.wipe()
        assert snapshot.encryption_key == KEY
        assert snapshot.salt == SALT

    def test_dict_roundtrip(self):
        state = SessionState.unlocked_with(KEY, SALT)
        assert SessionState.from_dict(state.to_dict()) == state

    def test_from_dict_rejects_inconsistent(self):
        with pytest.raises(ValueError):
            SessionState.from_dict({"unlocked": True, "encryption_key": None, "salt": None})


class TestSessionStateStore:

    def test_absent_is_locked(self, tmp_path):
        assert SessionStateStore(tmp_path / "state.enc").load() == SessionState.locked()

    def test_save_load_unlocked(self, tmp_path):
        store = SessionStateStore(tmp_path / "state.enc")
        store.save(SessionState.unlocked_with(KEY, SALT))
        loaded = store.load()
        assert loaded.unlocked
        assert loaded.encryption_key == KEY
        assert loaded.salt == SALT

    def test_corrupt_is_locked(self, tmp_path):
        path = tmp_path / "state.enc"
        path.write_text('{"nonce": "AAAA", "encrypted_data": "AAAA"}')
        assert SessionStateStore(path).load() == SessionState.locked()

    def test_invalid_content_is_locked(self, tmp_path):
        path = tmp_path / "state.enc"
        SidecarFile(path).write(b'{"unlocked": true}')
        assert SessionStateStore(path).load() == SessionState.locked()

    def test_clear(self, tmp_path):
        store = SessionStateStore(tmp_path / "state.enc")
        store.save(SessionState.unlocked_with(KEY, SALT))
        store.clear()
        assert not store.path.exists()
        store.clear()  # idempotent

    def test_refuses_invalid_state(self, tmp_path):
        store = SessionStateStore(tmp_path / "state.enc")
        with pytest.raises(ValueError):
            store.save(SessionState(unlocked=True))


class TestKeyCache:

    def test_save_load_delete(self, tmp_path):
        cache = KeyCache(tmp_path / "key.enc")
        assert cache.load() is None
        cache.save("correct-horse")
        assert cache.exists()
        assert cache.load() == "correct-horse"
        # not stored as plain text
        assert "correct-horse" not in cache.path.read_text()
        assert cache.delete() is True
        assert cache.load() is None

    def test_unicode_password(self, tmp_path):
        cache = KeyCache(tmp_path / "key.enc")
        cache.save("pässwörd€")
        assert cache.load() == "pässwörd€"

    def test_corrupt_returns_none(self, tmp_path):
        path = tmp_path / "key.enc"
        path.write_text("{}")
        assert KeyCache(path).load() is None
