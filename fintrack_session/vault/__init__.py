"""FinTrack Vault — password-derived keys and encrypted local blobs.

Security Note (Threat Model):
    The storage medium is untrusted; the running process is not. Legacy
    collection blobs are encrypted at rest with a key derived from the
    user's password. After migration, records live decrypted in the
    structured record store: once the user has signed in, device storage
    is assumed non-hostile. Keeping that store encrypted per record is
    possible at a performance cost and is deliberately not done here.
    Session keys exist only in process memory during a session; a memory
    dump of the process could expose them, which is an accepted limitation.
"""

from .config import VaultConfig
from .crypto import (
    EncryptedBlob,
    decrypt,
    decrypt_json,
    derive_key,
    encrypt,
    encrypt_json,
    generate_salt,
)
from .credentials import (
    CredentialRecord,
    change_password,
    create_account,
    verify_password,
)
from .key_rotation import rotate_legacy_blobs

__all__ = [
    "VaultConfig",
    "EncryptedBlob",
    "encrypt",
    "decrypt",
    "encrypt_json",
    "decrypt_json",
    "derive_key",
    "generate_salt",
    "CredentialRecord",
    "create_account",
    "verify_password",
    "change_password",
    "rotate_legacy_blobs",
]
