"""
Legacy Migration — one-shot move of the encrypted legacy collections into
the structured record store.

The migration state is a two-valued persisted flag (PENDING → COMPLETED).
``mark_completed`` is the only forward transition; ``reset`` exists for
operators and tests who want to run the migration again.

Per-collection failures (wrong key, tampered blob, bad JSON, invalid
records) are isolated: the collection is skipped and the rest continue.
Storage failures abort the migration and leave the flag PENDING.
"""
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .conf import COLLECTIONS, MIGRATION_FLAG_KEY
from .exceptions import DecryptionFailed, MalformedData, StorageUnavailable
from .storage.legacy import KeyValueStore, LegacyBlobStore
from .storage.records import RecordStore
from .vault.crypto import decrypt_json

logger = logging.getLogger("fintrack.migration")


class MigrationState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class MigrationFlag:
    """Persisted migration state, kept apart from any encrypted data."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    async def state(self) -> MigrationState:
        raw = await self._kv.get_item(MIGRATION_FLAG_KEY)
        if raw == "true":
            return MigrationState.COMPLETED
        return MigrationState.PENDING

    async def is_completed(self) -> bool:
        return await self.state() is MigrationState.COMPLETED

    async def mark_completed(self) -> None:
        await self._kv.set_item(MIGRATION_FLAG_KEY, "true")

    async def reset(self) -> None:
        """Return to PENDING. Manual / test-only operation."""
        await self._kv.remove_item(MIGRATION_FLAG_KEY)
        logger.warning("Migration flag reset to pending")


class MigrationResult(BaseModel):
    """Outcome of :meth:`MigrationManager.migrate`."""

    migrated_counts: dict[str, int] = Field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.migrated_counts.values())


class MigrationStatus(BaseModel):
    state: MigrationState
    legacy_collections: list[str]
    record_counts: dict[str, int]

    @property
    def has_legacy_data(self) -> bool:
        return bool(self.legacy_collections)

    @property
    def has_record_data(self) -> bool:
        return any(self.record_counts.values())


class MigrationManager:
    """Move every legacy collection into the record store, once.

    Args:
        legacy: Legacy blob store to read from.
        records: Structured store to load into.
        flag: Migration flag; defaults to one kept in the legacy
            key-value store.
    """

    def __init__(
        self,
        legacy: LegacyBlobStore,
        records: RecordStore,
        flag: Optional[MigrationFlag] = None,
    ):
        self._legacy = legacy
        self._records = records
        self.flag = flag or MigrationFlag(legacy.kv)

    async def _migrate_collection(self, name: str, session_key: bytes) -> int:
        envelope = await self._legacy.read_collection(name)
        if envelope is None:
            return 0
        data = decrypt_json(envelope, session_key)
        if not isinstance(data, list):
            raise MalformedData(
                f"expected a JSON array, got {type(data).__name__}"
            )
        if not data:
            return 0
        return await self._records[name].replace(data, strict=False)

    async def migrate(self, session_key: bytes) -> MigrationResult:
        """Decrypt every legacy collection and load it into the record store.

        Safe to call twice: each collection is replaced, never appended to.
        Callers should still check :attr:`flag` first, since a second run
        repeats all the work.

        Raises:
            StorageUnavailable: A store cannot be read or written; the flag
                is left PENDING.
        """
        result = MigrationResult()
        present = 0
        logger.info("Starting migration of legacy collections")
        try:
            for name, export_key, *_ in COLLECTIONS:
                if await self._legacy.has_collection(name):
                    present += 1
                try:
                    count = await self._migrate_collection(name, session_key)
                except (DecryptionFailed, MalformedData) as err:
                    logger.error("Error migrating collection=%s: %s", name, err)
                    result.errors[export_key] = str(err)
                    count = 0
                result.migrated_counts[export_key] = count
                if count:
                    logger.info("Migrated %d %s", count, name)

            await self.flag.mark_completed()
        except StorageUnavailable:
            logger.exception("Migration aborted: storage unavailable")
            raise
        except Exception as err:
            logger.exception("Migration failed")
            result.success = False
            result.error = str(err) or type(err).__name__
            return result

        if present and len(result.errors) == present:
            result.success = False
            result.error = (
                f"All {present} legacy collection(s) failed to migrate"
            )
            logger.error(result.error)
        else:
            logger.info("Migration completed: %s", result.migrated_counts)
        return result

    async def status(self) -> MigrationStatus:
        return MigrationStatus(
            state=await self.flag.state(),
            legacy_collections=await self._legacy.collections(),
            record_counts=await self._records.counts(),
        )

    async def cleanup_legacy(self) -> list[str]:
        """Remove legacy collections once migration has completed.

        Returns:
            Names of the collections removed.

        Raises:
            RuntimeError: Migration is still pending.
        """
        if not await self.flag.is_completed():
            raise RuntimeError("Refusing to remove legacy data before migration")
        removed = await self._legacy.collections()
        for name in removed:
            await self._legacy.clear_collection(name)
        logger.info("Removed %d legacy collection(s)", len(removed))
        return removed
