"""
Vault Crypto Core — Password key derivation, authenticated encryption and
blob serialization.

- Key derivation: PBKDF2-HMAC-SHA256(password, salt) → 32-byte key
- Codec: AES-256-GCM, random 96-bit IV per call → EncryptedBlob{iv, ciphertext}

The GCM tag makes decryption fail loudly on a wrong key or tampered
ciphertext; credential verification relies on this.

Security Note:
    Never log plaintext, ciphertext, passwords or key material.
    IVs are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import binascii
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ConfigDict, ValidationError, field_serializer, field_validator

from ..exceptions import DecryptionFailed, MalformedData
from .config import MIN_KDF_ITERATIONS, MIN_SALT_SIZE

logger = logging.getLogger("fintrack.vault")

NONCE_SIZE = 12  # 96-bit IV
TAG_SIZE = 16    # GCM tag appended to the ciphertext
KEY_LENGTH = 32  # AES-256

# Iteration count used by records that predate the stored kdfIterations field.
LEGACY_KDF_ITERATIONS = MIN_KDF_ITERATIONS


def decode_bytes(value: Any) -> bytes:
    """Coerce a persisted byte field into ``bytes``.

    Accepts raw bytes, base64 text, a list of byte values, or the
    index-keyed object a serialized typed array turns into.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as err:
            raise ValueError(f"invalid base64 data: {err}") from err
    if isinstance(value, dict):
        try:
            value = [value[k] for k in sorted(value, key=int)]
        except (TypeError, ValueError) as err:
            raise ValueError("byte object keys must be integer indexes") from err
    if isinstance(value, (list, tuple)):
        if not all(isinstance(b, int) and not isinstance(b, bool) for b in value):
            raise ValueError("byte list must contain integers only")
        return bytes(value)  # ValueError when a value is outside 0..255
    raise ValueError(f"cannot decode bytes from {type(value).__name__}")


def encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class EncryptedBlob(BaseModel):
    """IV + ciphertext pair produced by :func:`encrypt`.

    Opaque outside the codec; serialized as base64 strings.
    """

    model_config = ConfigDict(frozen=True)

    iv: bytes
    ciphertext: bytes

    @field_validator("iv", "ciphertext", mode="before")
    @classmethod
    def decode_fields(cls, v: Any) -> bytes:
        return decode_bytes(v)

    @field_serializer("iv", "ciphertext")
    def encode_fields(self, v: bytes) -> str:
        return encode_bytes(v)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} iv={len(self.iv)}B "
            f"ciphertext={len(self.ciphertext)}B>"
        )


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt(size: int = MIN_SALT_SIZE) -> bytes:
    """Return ``size`` bytes from the OS CSPRNG.

    Raises:
        ValueError: If ``size`` is below 16 bytes.
    """
    if size < MIN_SALT_SIZE:
        raise ValueError(
            f"salt must be at least {MIN_SALT_SIZE} bytes, got {size}"
        )
    return os.urandom(size)


def derive_key(
    password: str,
    salt: bytes,
    iterations: int = LEGACY_KDF_ITERATIONS,
) -> bytes:
    """Derive a 32-byte AES key from a password using PBKDF2-HMAC-SHA256.

    Deterministic for a given (password, salt, iterations), so sign-in can
    re-derive the key without storing it.

    Args:
        password: User password.
        salt: Random per-account salt.
        iterations: PBKDF2 work factor (at least 100,000).

    Returns:
        32-byte derived key.
    """
    if iterations < MIN_KDF_ITERATIONS:
        raise ValueError(
            f"iterations must be at least {MIN_KDF_ITERATIONS}, got {iterations}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def encrypt(plaintext: str, key: bytes) -> EncryptedBlob:
    """Encrypt a JSON string with AES-GCM under a fresh random IV.

    Args:
        plaintext: Text to protect, usually a JSON document.
        key: 32-byte session key.

    Returns:
        EncryptedBlob with the IV and ciphertext (payload + tag).
    """
    cipher = AESGCM(bytes(key))
    iv = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(iv, plaintext.encode("utf-8"), None)
    return EncryptedBlob(iv=iv, ciphertext=ct)


def decrypt(blob: EncryptedBlob, key: bytes) -> str:
    """Decrypt an EncryptedBlob.

    Raises:
        DecryptionFailed: Wrong key, tampered/truncated blob or non UTF-8
            payload. Altered plaintext is never returned.
    """
    if len(blob.iv) != NONCE_SIZE:
        raise DecryptionFailed(
            f"iv must be {NONCE_SIZE} bytes, got {len(blob.iv)}"
        )
    if len(blob.ciphertext) < TAG_SIZE:
        raise DecryptionFailed(
            f"ciphertext too short: {len(blob.ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    cipher = AESGCM(bytes(key))
    try:
        data = cipher.decrypt(blob.iv, blob.ciphertext, None)
    except InvalidTag as err:
        raise DecryptionFailed("authentication tag mismatch") from err
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecryptionFailed("decrypted payload is not valid UTF-8") from err


def encrypt_json(value: Any, key: bytes) -> EncryptedBlob:
    """Serialize ``value`` with orjson and encrypt it."""
    return encrypt(orjson.dumps(value).decode("utf-8"), key)


def decrypt_json(blob: EncryptedBlob, key: bytes) -> Any:
    """Decrypt ``blob`` and parse the JSON payload.

    Raises:
        DecryptionFailed: see :func:`decrypt`.
        MalformedData: The decrypted payload is not valid JSON.
    """
    text = decrypt(blob, key)
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError as err:
        raise MalformedData(f"decrypted payload is not JSON: {err}") from err


# ---------------------------------------------------------------------------
# Wire form
# ---------------------------------------------------------------------------

def dump_blob(blob: EncryptedBlob) -> str:
    """Serialize a blob (or envelope) to its persisted JSON string."""
    return orjson.dumps(blob.model_dump(exclude_none=True)).decode("utf-8")


def load_blob(data: Any, model: type[EncryptedBlob] = EncryptedBlob) -> EncryptedBlob:
    """Parse a persisted blob from a JSON string or an already decoded dict.

    Raises:
        MalformedData: The input is not a valid blob.
    """
    try:
        if isinstance(data, (str, bytes)):
            data = orjson.loads(data)
        if not isinstance(data, dict):
            raise MalformedData(
                f"encrypted blob must be a JSON object, got {type(data).__name__}"
            )
        return model.model_validate(data)
    except orjson.JSONDecodeError as err:
        raise MalformedData(f"encrypted blob is not JSON: {err}") from err
    except ValidationError as err:
        raise MalformedData(
            f"invalid encrypted blob: {err.error_count()} error(s)"
        ) from err
