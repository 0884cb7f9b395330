"""Local storage generations: the legacy key-value blob store and the
structured record store that replaces it."""

from .legacy import (
    CollectionEnvelope,
    FileKeyValueStore,
    KeyValueStore,
    LegacyBlobStore,
    MemoryKeyValueStore,
)
from .records import RecordCollection, RecordStore

__all__ = [
    "CollectionEnvelope",
    "FileKeyValueStore",
    "KeyValueStore",
    "LegacyBlobStore",
    "MemoryKeyValueStore",
    "RecordCollection",
    "RecordStore",
]
