# Vault module - encrypted credential storage
#
# Master password -> Argon2id key -> AES-256-GCM over the JSON entry list.

from .encryption import EncryptionService
from .models import Entry, EntryMetadata, validate_entry
from .vault_file import (
    INVALID_PASSWORD_MESSAGE,
    VaultFile,
    create_vault,
    import_plaintext_vault,
    load_vault,
    load_vault_with_key,
    read_vault_file,
    save_vault,
    vault_exists,
)

__all__ = [
    "EncryptionService",
    "Entry",
    "EntryMetadata",
    "validate_entry",
    "INVALID_PASSWORD_MESSAGE",
    "VaultFile",
    "create_vault",
    "import_plaintext_vault",
    "load_vault",
    "load_vault_with_key",
    "read_vault_file",
    "save_vault",
    "vault_exists",
]
