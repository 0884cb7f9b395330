import uuid
from typing import Any, Optional
from datetime import datetime, timezone
from collections.abc import Iterator, Mapping, MutableMapping
from pydantic import BaseModel
from .conf import SESSION_KEY_NAME


class SessionData(MutableMapping[str, Any]):
    """Session dict-like object.

    Holds the context of one authenticated session. Serializable values
    (usernames, counts, timestamps, pydantic models) live in _data;
    everything else, including the session key, lives in _objects and is
    never serialized or persisted.

    Non-serializable objects are routed to _objects automatically when
    assigned via session.key = value or session['key'] = value.
    """

    _internal_attrs = frozenset({
        '_data', '_objects', '_id_', '_username', '_created', '_now',
    })

    def __init__(
        self,
        *,
        username: str,
        data: Optional[Mapping[str, Any]] = None,
        id: Optional[str] = None,
    ) -> None:
        object.__setattr__(self, '_data', {})
        object.__setattr__(self, '_objects', {})
        self._id_ = id or uuid.uuid4().hex
        self._username = username
        self._now = datetime.now(timezone.utc)
        self._created = int(self._now.timestamp())
        if data is not None:
            self._data.update(data)

    def __repr__(self) -> str:
        # never include object values: the session key lives there
        return (
            f'<FinTrack-Session [user:{self._username}, created:{self._created}] '
            f'data={self._data!r}, objects={list(self._objects.keys())}>'
        )

    # --- Serialization helpers ---

    def _is_serializable(self, value: Any) -> bool:
        """Return True for values that may be exported with the session data.

        bytearray is mutable key material and is always kept in-memory.
        """
        if value is None or isinstance(value, (bool, int, float, str)):
            return True
        if isinstance(value, dict):
            return all(self._is_serializable(v) for v in value.values())
        if isinstance(value, (list, tuple)):
            return all(self._is_serializable(v) for v in value)
        if isinstance(value, (BaseModel, datetime)):
            return True
        return False

    def _get_value(self, key: str) -> Any:
        if key in self._objects:
            return self._objects[key]
        if key in self._data:
            return self._data[key]
        raise KeyError(key)

    def _set_value(self, key: str, value: Any) -> None:
        if self._is_serializable(value):
            self._objects.pop(key, None)
            self._data[key] = value
        else:
            self._data.pop(key, None)
            self._objects[key] = value

    def _del_value(self, key: str) -> None:
        deleted = False
        if key in self._objects:
            del self._objects[key]
            deleted = True
        if key in self._data:
            del self._data[key]
            deleted = True
        if not deleted:
            raise KeyError(key)

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def username(self) -> str:
        return self._username

    @property
    def created(self) -> int:
        return self._created

    @property
    def logon_time(self) -> datetime:
        return self._now

    @property
    def empty(self) -> bool:
        return not bool(self._data) and not bool(self._objects)

    @property
    def key(self) -> Optional[bytearray]:
        """The in-memory session key, or None once invalidated."""
        return self._objects.get(SESSION_KEY_NAME)

    def set_key(self, key: bytes) -> None:
        """Replace the session key, wiping the previous one."""
        self._wipe_key()
        self._objects[SESSION_KEY_NAME] = bytearray(key)

    def _wipe_key(self) -> None:
        old = self._objects.pop(SESSION_KEY_NAME, None)
        if isinstance(old, bytearray):
            old[:] = bytes(len(old))

    def session_data(self) -> dict:
        """Return only serializable data."""
        return self._data

    def session_objects(self) -> dict:
        """Return in-memory objects (never persisted)."""
        return self._objects

    def invalidate(self) -> None:
        """Wipe the session key and clear all data and objects."""
        self._wipe_key()
        self._data = {}
        self._objects = {}

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data) + len(self._objects)

    def __iter__(self) -> Iterator[str]:
        seen = set()
        for key in self._data:
            seen.add(key)
            yield key
        for key in self._objects:
            if key not in seen:
                yield key

    def __contains__(self, key: object) -> bool:
        return key in self._objects or key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._get_value(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self._set_value(key, value)

    def __delitem__(self, key: str) -> None:
        self._del_value(key)

    def __getattr__(self, key: str) -> Any:
        if key.startswith('_'):
            raise AttributeError(key)
        try:
            return self._get_value(key)
        except KeyError:
            raise AttributeError(key) from None

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self._internal_attrs or key.startswith('_'):
            object.__setattr__(self, key, value)
        else:
            self._set_value(key, value)
