"""
Shared pytest fixtures for the passkeep test suite.

Autouse fixtures below isolate tests from the user's real data:
  - Audit logger -> temp directory (no test events in the real audit log)

``settings`` points every path at a temp directory. The runtime directory
is created with a short mkdtemp() name because Unix socket paths are
limited to about 100 bytes and pytest's tmp_path can be longer.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from passkeep.core.config import Settings


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import passkeep.core.audit_log as audit_mod

    # Reset the singleton so the next call to get_audit_logger() creates
    # a fresh instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture
def runtime_dir():
    path = Path(tempfile.mkdtemp(prefix="pk"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def settings(tmp_path, runtime_dir):
    s = Settings(
        data_dir=tmp_path / "data",
        runtime_dir=runtime_dir,
        vault_path=tmp_path / "data" / "passwords.json",
        log_dir=tmp_path / "logs",
        daemon_timeout=0.1,
        unlock_timeout=5.0,
        session_poll_interval=0.05,
    )
    s.ensure_dirs()
    return s


@pytest.fixture
def vault_password():
    return "correct-horse"


@pytest.fixture
def created_vault(settings, vault_password):
    """An empty vault at settings.vault_path. Returns (entries, key, salt)."""
    from passkeep.vault.vault_file import create_vault

    return create_vault(settings.vault_path, vault_password)
