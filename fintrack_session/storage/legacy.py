"""
Legacy Blob Store — first-generation local storage.

The first storage generation is a flat key-value store of strings (one
entry per collection, each an encrypted JSON array). It also keeps the
credential record and the migration flag. This module only shuttles
strings and envelopes; encryption lives in :mod:`fintrack_session.vault`.
"""
import os
import re
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from pydantic import field_validator

from ..conf import COLLECTION_NAMES, get_collection
from ..exceptions import MalformedData, StorageUnavailable
from ..vault.crypto import EncryptedBlob, dump_blob, load_blob

logger = logging.getLogger("fintrack.storage")

ENVELOPE_VERSION = 1
_SUPPORTED_VERSIONS = (0, ENVELOPE_VERSION)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,200}$")


class CollectionEnvelope(EncryptedBlob):
    """Tagged, versioned form of a legacy collection blob.

    Version 0 is the bare ``{iv, ciphertext}`` object written by the first
    storage generation; version 1 adds the version and collection tags.
    """

    version: int = 0
    collection: Optional[str] = None

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v not in _SUPPORTED_VERSIONS:
            raise ValueError(f"Unsupported envelope version: {v}")
        return v


# ---------------------------------------------------------------------------
# Key-value backends
# ---------------------------------------------------------------------------

class KeyValueStore(ABC):
    """String key-value storage, the shape of a browser's local storage."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored string, or None when the key was never written."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove ``key``. Missing keys are ignored."""

    @abstractmethod
    async def keys(self) -> list[str]:
        ...


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store; contents vanish with the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._items)


class FileKeyValueStore(KeyValueStore):
    """One UTF-8 file per key inside ``directory``.

    Writes go to a temporary file that is atomically renamed over the
    target, so a crash never leaves a half-written entry.
    """

    def __init__(self, directory: Union[str, Path]):
        self._dir = Path(directory)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise StorageUnavailable(
                f"Cannot create storage directory {self._dir}: {err}"
            ) from err

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._dir / key

    async def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as err:
            raise StorageUnavailable(f"Cannot read {key}: {err}") from err

    async def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(value)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as err:
            raise StorageUnavailable(f"Cannot write {key}: {err}") from err

    async def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as err:
            raise StorageUnavailable(f"Cannot remove {key}: {err}") from err

    async def keys(self) -> list[str]:
        try:
            return sorted(
                p.name for p in self._dir.iterdir()
                if p.is_file() and not p.name.startswith(".tmp-")
            )
        except OSError as err:
            raise StorageUnavailable(f"Cannot list {self._dir}: {err}") from err


# ---------------------------------------------------------------------------
# Collection adapter
# ---------------------------------------------------------------------------

class LegacyBlobStore:
    """Read/write encrypted collection envelopes by collection name."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    async def _locate(self, name: str) -> tuple[Optional[str], Optional[str]]:
        """Return (storage_key, raw_value) of the first entry present."""
        for key in get_collection(name).legacy_keys:
            raw = await self._kv.get_item(key)
            if raw is not None:
                return key, raw
        return None, None

    async def read_collection(self, name: str) -> Optional[CollectionEnvelope]:
        """Return the envelope for ``name``, or None if never written.

        Raises:
            KeyError: Unknown collection name.
            MalformedData: The stored entry is not a valid envelope.
        """
        key, raw = await self._locate(name)
        if raw is None:
            return None
        envelope = load_blob(raw, CollectionEnvelope)
        if envelope.collection is not None and envelope.collection != name:
            raise MalformedData(
                f"Entry {key} holds collection {envelope.collection!r}, "
                f"expected {name!r}"
            )
        return envelope

    async def write_collection(self, name: str, blob: EncryptedBlob) -> None:
        """Persist ``blob`` as the current-version envelope of ``name``.

        Older alias entries are removed so a single entry remains.
        """
        spec = get_collection(name)
        envelope = CollectionEnvelope(
            iv=blob.iv,
            ciphertext=blob.ciphertext,
            version=ENVELOPE_VERSION,
            collection=name,
        )
        await self._kv.set_item(spec.legacy_keys[0], dump_blob(envelope))
        for alias in spec.legacy_keys[1:]:
            await self._kv.remove_item(alias)
        logger.debug("Legacy collection written: %s", name)

    async def clear_collection(self, name: str) -> None:
        for key in get_collection(name).legacy_keys:
            await self._kv.remove_item(key)
        logger.debug("Legacy collection cleared: %s", name)

    async def has_collection(self, name: str) -> bool:
        key, _ = await self._locate(name)
        return key is not None

    async def collections(self) -> list[str]:
        """Names of the collections currently present."""
        return [
            name for name in COLLECTION_NAMES
            if await self.has_collection(name)
        ]
