"""
Session Lifecycle — sign-up, sign-in, sign-out and password change.

The SessionController is the only owner of the session key. Other
components receive the key as a call argument and never keep it.

State machine::

    SIGNED_OUT -> AUTHENTICATING -> SIGNED_IN -> SIGNED_OUT

While AUTHENTICATING, further sign-in / sign-up / password-change calls
are rejected. sign_out is always honoured: an in-flight call that finishes
after it discards its result and leaves the controller SIGNED_OUT.

Storage and key derivation run inline on the event loop; the stores are
local and single-user. A session is only handed out after the legacy
migration has run (or terminally failed), so record store reads are
authoritative from then on.
"""
import logging
from enum import Enum
from typing import Any, Optional, Union

from .backup import BackupFile, export_backup, restore_backup
from .data import SessionData
from .exceptions import AuthenticationFailed, MalformedData, SessionStateError
from .migration import MigrationManager, MigrationResult
from .storage.legacy import FileKeyValueStore, KeyValueStore, LegacyBlobStore
from .storage.records import RecordStore
from .vault.config import VaultConfig
from .vault.credentials import (
    CredentialRecord,
    change_password,
    delete_credentials,
    has_credentials,
    load_credentials,
    open_account,
    save_credentials,
    verify_password,
)
from .vault.crypto import EncryptedBlob, decrypt_json, encrypt_json
from .vault.key_rotation import rotate_legacy_blobs

logger = logging.getLogger("fintrack.session")


class SessionState(str, Enum):
    SIGNED_OUT = "signed_out"
    AUTHENTICATING = "authenticating"
    SIGNED_IN = "signed_in"


class SessionController:
    """Own the credential record, the session key and the migration trigger.

    Args:
        kv: Key-value store holding the credential record, the legacy
            collections and the migration flag.
        records: Structured record store.
        config: Key derivation settings; defaults to ``VaultConfig()``.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        records: RecordStore,
        config: Optional[VaultConfig] = None,
    ):
        self.config = config or VaultConfig()
        self._kv = kv
        self.legacy = LegacyBlobStore(kv)
        self.records = records
        self.migration = MigrationManager(self.legacy, records)
        self._state = SessionState.SIGNED_OUT
        self._session: Optional[SessionData] = None
        self._record: Optional[CredentialRecord] = None
        self._signouts = 0
        self.last_migration: Optional[MigrationResult] = None

    @classmethod
    def from_config(cls, config: Optional[VaultConfig] = None) -> "SessionController":
        """Build a controller over the file-backed stores named in ``config``."""
        config = config or VaultConfig.from_env()
        return cls(
            FileKeyValueStore(config.legacy_dir),
            RecordStore(config.records_path),
            config,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_signed_in(self) -> bool:
        return self._state is SessionState.SIGNED_IN

    @property
    def session(self) -> Optional[SessionData]:
        return self._session

    @property
    def username(self) -> Optional[str]:
        return self._record.username if self._record else None

    async def has_account(self) -> bool:
        return await has_credentials(self._kv)

    def _begin(self) -> None:
        if self._state is SessionState.AUTHENTICATING:
            raise SessionStateError("Authentication already in progress")
        self._state = SessionState.AUTHENTICATING

    def _signed_out_since(self, mark: int) -> bool:
        return self._signouts != mark

    def _require_session(self) -> SessionData:
        if self._state is not SessionState.SIGNED_IN or self._session is None:
            raise SessionStateError("No active session")
        return self._session

    async def _open_session(
        self, record: CredentialRecord, key: bytes, mark: int
    ) -> SessionData:
        session = SessionData(username=record.username)
        session.set_key(key)
        try:
            if not await self.migration.flag.is_completed():
                result = await self.migration.migrate(key)
                self.last_migration = result
                session['migration'] = result
            if self._signed_out_since(mark):
                raise SessionStateError("Signed out during authentication")
        except BaseException:
            session.invalidate()
            raise
        self._record = record
        self._session = session
        self._state = SessionState.SIGNED_IN
        logger.info("Session opened for user=%s", record.username)
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def sign_up(self, username: str, password: str) -> SessionData:
        """Create the local account and open a session for it.

        Leftover legacy collections cannot be read with the new key and
        are discarded.

        Raises:
            SessionStateError: An account already exists, a session is
                open, or another authentication is in progress.
            ValueError: Username or password too short.
        """
        if self._state is SessionState.SIGNED_IN:
            raise SessionStateError("Sign out before creating an account")
        self._begin()
        mark = self._signouts
        try:
            if await has_credentials(self._kv):
                raise SessionStateError("An account already exists on this device")
            record, key = open_account(
                username,
                password,
                iterations=self.config.kdf_iterations,
                salt_size=self.config.salt_size,
            )
            for name in await self.legacy.collections():
                await self.legacy.clear_collection(name)
            await save_credentials(self._kv, record)
            return await self._open_session(record, key, mark)
        except BaseException:
            if not self._signed_out_since(mark):
                self._state = SessionState.SIGNED_OUT
            raise

    async def sign_in(
        self, password: str, username: Optional[str] = None
    ) -> SessionData:
        """Verify ``password`` against the stored record and open a session.

        Raises:
            AuthenticationFailed: Wrong password (or username), or the
                stored record is corrupted.
            SessionStateError: No account exists, a session is already
                open, or another authentication is in progress.
        """
        if self._state is SessionState.SIGNED_IN:
            raise SessionStateError("Already signed in")
        self._begin()
        mark = self._signouts
        try:
            try:
                record = await load_credentials(self._kv)
            except MalformedData as err:
                logger.warning("Stored credential record is unreadable: %s", err)
                raise AuthenticationFailed() from err
            if record is None:
                raise SessionStateError("No account exists on this device")
            if username is not None and username.strip() != record.username:
                logger.debug("Sign-in for unknown user=%s", username)
                raise AuthenticationFailed()
            key = verify_password(record, password)
            return await self._open_session(record, key, mark)
        except BaseException:
            if not self._signed_out_since(mark):
                self._state = SessionState.SIGNED_OUT
            raise

    def sign_out(self) -> None:
        """Wipe the session key and drop all in-memory session state."""
        if self._session is not None:
            self._session.invalidate()
            logger.info("Session closed for user=%s", self.username)
        self._session = None
        self._record = None
        self._state = SessionState.SIGNED_OUT
        self._signouts += 1

    async def change_password(self, old_password: str, new_password: str) -> dict:
        """Change the password, re-encrypting legacy data under the new key.

        Returns:
            Rotation stats (total, rotated, errors, skipped).

        A sign-out while the change is running does not undo it: the new
        record is still saved, but the session stays closed.

        Raises:
            AuthenticationFailed: ``old_password`` is wrong.
            SessionStateError: No active session, or signed out before
                the change finished.
        """
        session = self._require_session()
        previous = self._state
        self._begin()
        mark = self._signouts
        try:
            change = change_password(
                self._record,
                old_password,
                new_password,
                iterations=self.config.kdf_iterations,
                salt_size=self.config.salt_size,
            )
            stats = await rotate_legacy_blobs(
                self.legacy, change.old_key, change.new_key,
            )
            # blobs are already under the new key; the record must follow
            await save_credentials(self._kv, change.record)
            logger.info("Password changed for user=%s", change.record.username)
            if self._signed_out_since(mark):
                raise SessionStateError("Signed out during password change")
            self._record = change.record
            session.set_key(change.new_key)
            return stats
        finally:
            if not self._signed_out_since(mark):
                self._state = previous

    async def reset_account(self) -> None:
        """Delete the account, all legacy data, all records and the flag."""
        if self._state is SessionState.AUTHENTICATING:
            raise SessionStateError("Authentication in progress")
        self.sign_out()
        await delete_credentials(self._kv)
        for name in await self.legacy.collections():
            await self.legacy.clear_collection(name)
        await self.records.clear_all()
        await self.migration.flag.reset()
        logger.warning("Account reset: all local data removed")

    # ------------------------------------------------------------------
    # Session-scoped helpers
    # ------------------------------------------------------------------

    def encrypt(self, value: Any) -> EncryptedBlob:
        """Encrypt a JSON-serializable value under the session key."""
        session = self._require_session()
        return encrypt_json(value, session.key)

    def decrypt(self, blob: EncryptedBlob) -> Any:
        session = self._require_session()
        return decrypt_json(blob, session.key)

    async def export_backup(self) -> dict[str, Any]:
        self._require_session()
        return await export_backup(self.records, self._record)

    async def restore_backup(
        self, backup: Union[BackupFile, str, bytes, dict]
    ) -> dict[str, int]:
        """Replace the collections present in ``backup``.

        The account record is left unchanged.
        """
        self._require_session()
        return await restore_backup(self.records, backup)
