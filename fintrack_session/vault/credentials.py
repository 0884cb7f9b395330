"""
Credential Records — the single local account.

A credential record holds the username, the PBKDF2 salt and a known
marker encrypted under the password-derived key. No password or key is
ever persisted: a password is verified by re-deriving the key and
decrypting the marker.

Security Note:
    Callers only ever see AuthenticationFailed; whether the password was
    wrong or the record corrupted is logged at DEBUG level only.
"""
import logging
from typing import Any, NamedTuple, Optional

import orjson
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from ..conf import (
    CREDENTIALS_KEY,
    LEGACY_CREDENTIALS_KEYS,
    PASSWORD_CHECK_MARKER,
)
from ..exceptions import AuthenticationFailed, DecryptionFailed, MalformedData
from .config import DEFAULT_KDF_ITERATIONS, MIN_SALT_SIZE
from .crypto import (
    LEGACY_KDF_ITERATIONS,
    EncryptedBlob,
    decode_bytes,
    decrypt_json,
    derive_key,
    dump_blob,
    encode_bytes,
    encrypt_json,
    generate_salt,
)

logger = logging.getLogger("fintrack.vault")

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


class CredentialRecord(BaseModel):
    """Persisted account record.

    Extra profile fields (avatar, settings, ...) are kept as-is.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    username: str
    salt: bytes
    password_check: EncryptedBlob = Field(alias="passwordCheck")
    kdf_iterations: int = Field(
        default=LEGACY_KDF_ITERATIONS, alias="kdfIterations"
    )

    @field_validator("salt", mode="before")
    @classmethod
    def decode_salt(cls, v: Any) -> bytes:
        return decode_bytes(v)

    @field_validator("password_check", mode="before")
    @classmethod
    def parse_password_check(cls, v: Any) -> Any:
        # stored as a stringified {iv, ciphertext} object
        if isinstance(v, (str, bytes)):
            return orjson.loads(v)
        return v

    @field_serializer("salt")
    def encode_salt(self, v: bytes) -> str:
        return encode_bytes(v)

    @field_serializer("password_check")
    def encode_password_check(self, v: EncryptedBlob) -> str:
        return dump_blob(v)

    def __repr__(self) -> str:
        return f"<CredentialRecord username={self.username!r}>"

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode("utf-8")

    @classmethod
    def from_json(cls, raw: Any) -> "CredentialRecord":
        """Parse a stored record.

        Raises:
            MalformedData: The record is not valid JSON or lacks fields.
        """
        try:
            if isinstance(raw, (str, bytes)):
                raw = orjson.loads(raw)
            return cls.model_validate(raw)
        except orjson.JSONDecodeError as err:
            raise MalformedData(f"Credential record is not JSON: {err}") from err
        except ValidationError as err:
            raise MalformedData(
                f"Invalid credential record: {err.error_count()} error(s)"
            ) from err


class PasswordChange(NamedTuple):
    record: CredentialRecord
    old_key: bytes
    new_key: bytes


def validate_credentials(username: str, password: str) -> str:
    """Check sign-up input and return the normalized username.

    Raises:
        ValueError: Username or password too short.
    """
    username = username.strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValueError(
            f"Username must be at least {MIN_USERNAME_LENGTH} characters long"
        )
    validate_password(password)
    return username


def validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def _seal(
    username: str,
    password: str,
    iterations: int,
    salt_size: int,
    extra: Optional[dict[str, Any]] = None,
) -> tuple[CredentialRecord, bytes]:
    """Build a record with a fresh salt; return it with the derived key."""
    salt = generate_salt(salt_size)
    key = derive_key(password, salt, iterations)
    record = CredentialRecord(
        **(extra or {}),
        username=username,
        salt=salt,
        password_check=encrypt_json(PASSWORD_CHECK_MARKER, key),
        kdf_iterations=iterations,
    )
    return record, key


def open_account(
    username: str,
    password: str,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
    salt_size: int = MIN_SALT_SIZE,
) -> tuple[CredentialRecord, bytes]:
    """Create a credential record and return it with its session key."""
    username = validate_credentials(username, password)
    record, key = _seal(username, password, iterations, salt_size)
    logger.info("Credential record created for user=%s", username)
    return record, key


def create_account(
    username: str,
    password: str,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
    salt_size: int = MIN_SALT_SIZE,
) -> CredentialRecord:
    """Create the credential record for a new account.

    Args:
        username: At least 3 characters (surrounding whitespace dropped).
        password: At least 6 characters.
        iterations: PBKDF2 work factor stored in the record.
        salt_size: Salt length in bytes.

    Returns:
        The record to persist; it contains no password or key.
    """
    record, _ = open_account(
        username, password, iterations=iterations, salt_size=salt_size,
    )
    return record


def verify_password(record: CredentialRecord, password: str) -> bytes:
    """Re-derive the key from ``password`` and check the stored marker.

    Returns:
        The session key.

    Raises:
        AuthenticationFailed: Wrong password or corrupted record.
    """
    key = derive_key(password, record.salt, record.kdf_iterations)
    try:
        marker = decrypt_json(record.password_check, key)
    except DecryptionFailed as err:
        logger.debug("Password check for user=%s: decryption failed", record.username)
        raise AuthenticationFailed() from err
    except MalformedData as err:
        logger.debug("Password check for user=%s: marker is not JSON", record.username)
        raise AuthenticationFailed() from err
    if marker != PASSWORD_CHECK_MARKER:
        logger.debug("Password check for user=%s: marker mismatch", record.username)
        raise AuthenticationFailed()
    return key


def change_password(
    record: CredentialRecord,
    old_password: str,
    new_password: str,
    *,
    iterations: Optional[int] = None,
    salt_size: int = MIN_SALT_SIZE,
) -> PasswordChange:
    """Verify ``old_password`` and reseal the record for ``new_password``.

    A fresh salt is always generated. The caller must re-encrypt every
    blob protected by ``old_key`` under ``new_key`` before persisting the
    new record.

    Raises:
        AuthenticationFailed: ``old_password`` is wrong.
        ValueError: ``new_password`` is too short.
    """
    old_key = verify_password(record, old_password)
    validate_password(new_password)
    extra = dict(record.model_extra or {})
    new_record, new_key = _seal(
        record.username,
        new_password,
        iterations or max(record.kdf_iterations, DEFAULT_KDF_ITERATIONS),
        salt_size,
        extra,
    )
    logger.info("Credential record resealed for user=%s", record.username)
    return PasswordChange(new_record, old_key, new_key)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

async def load_credentials(kv) -> Optional[CredentialRecord]:
    """Read the credential record from the key-value store.

    Returns:
        The record, or None when no account exists.

    Raises:
        MalformedData: The stored record cannot be parsed.
    """
    for key in (CREDENTIALS_KEY, *LEGACY_CREDENTIALS_KEYS):
        raw = await kv.get_item(key)
        if raw is not None:
            return CredentialRecord.from_json(raw)
    return None


async def save_credentials(kv, record: CredentialRecord) -> None:
    await kv.set_item(CREDENTIALS_KEY, record.to_json())
    for key in LEGACY_CREDENTIALS_KEYS:
        await kv.remove_item(key)


async def delete_credentials(kv) -> None:
    for key in (CREDENTIALS_KEY, *LEGACY_CREDENTIALS_KEYS):
        await kv.remove_item(key)


async def has_credentials(kv) -> bool:
    for key in (CREDENTIALS_KEY, *LEGACY_CREDENTIALS_KEYS):
        if await kv.get_item(key) is not None:
            return True
    return False
