"""FinTrack Session.

Encrypted on-device persistence for the FinTrack personal finance tracker:
password-derived session keys, the local credential record, the legacy
encrypted blob store, the structured record store and the one-shot
migration between them.
"""
from .version import __version__
from .exceptions import (
    FinTrackError,
    AuthenticationFailed,
    DecryptionFailed,
    MalformedData,
    StorageUnavailable,
    SessionStateError,
)
from .data import SessionData
from .vault import (
    VaultConfig,
    EncryptedBlob,
    CredentialRecord,
    encrypt,
    decrypt,
    derive_key,
    generate_salt,
    create_account,
    verify_password,
    change_password,
)
from .storage import (
    FileKeyValueStore,
    LegacyBlobStore,
    MemoryKeyValueStore,
    RecordStore,
)
from .migration import MigrationFlag, MigrationManager, MigrationResult, MigrationState
from .backup import export_backup, parse_backup, restore_backup
from .session import SessionController, SessionState

__all__ = (
    "__version__",
    "FinTrackError",
    "AuthenticationFailed",
    "DecryptionFailed",
    "MalformedData",
    "StorageUnavailable",
    "SessionStateError",
    "SessionData",
    "VaultConfig",
    "EncryptedBlob",
    "CredentialRecord",
    "encrypt",
    "decrypt",
    "derive_key",
    "generate_salt",
    "create_account",
    "verify_password",
    "change_password",
    "FileKeyValueStore",
    "LegacyBlobStore",
    "MemoryKeyValueStore",
    "RecordStore",
    "MigrationFlag",
    "MigrationManager",
    "MigrationResult",
    "MigrationState",
    "export_backup",
    "parse_backup",
    "restore_backup",
    "SessionController",
    "SessionState",
)
