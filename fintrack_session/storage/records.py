"""
Structured Record Store — second-generation local storage.

One sqlite table per entity collection. Each row keeps the record id and
its JSON payload; lookup fields are served by expression indexes over the
payload. Records are stored decrypted: once the user is signed in the
device storage is trusted (see the threat model in ``fintrack_session.vault``).

Bulk writes are all-or-nothing: a failing batch is rolled back and the
error is raised to the caller. Single-record writes validate against the
entity models; bulk loads of existing data (migration, restore) may skip
that and only require an id.

sqlite calls are blocking and run on the event loop thread.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import orjson
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ..conf import COLLECTIONS, get_collection
from ..exceptions import MalformedData, StorageUnavailable
from ..models import MODELS, Record, RecordLike

logger = logging.getLogger("fintrack.storage")

SCHEMA_VERSION = 1

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    payload TEXT NOT NULL
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_{table}_{field}
ON {table} (json_extract(payload, '$.{field}'))
"""


def _field_name(name: str) -> str:
    return to_camel(name) if "_" in name else name


class RecordCollection:
    """Table-like access to one entity collection."""

    def __init__(self, conn: sqlite3.Connection, name: str):
        self._conn = conn
        self.name = name
        self._spec = get_collection(name)
        self._model: type[Record] = MODELS[name]

    def __repr__(self) -> str:
        return f"<RecordCollection {self.name}>"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _prepare(self, record: RecordLike) -> tuple[str, str]:
        """Validate a record and return its (id, payload) row."""
        try:
            if not isinstance(record, self._model):
                record = self._model.model_validate(
                    record.to_json() if isinstance(record, Record) else record
                )
        except ValidationError as err:
            raise MalformedData(
                f"Invalid {self.name} record: {err.error_count()} error(s)"
            ) from err
        return record.id, orjson.dumps(record.to_json()).decode("utf-8")

    def _prepare_loose(self, record: RecordLike) -> tuple[str, str]:
        """Return the (id, payload) row of a record, checking only its id."""
        if isinstance(record, Record):
            record = record.to_json()
        if not isinstance(record, dict):
            raise MalformedData(
                f"{self.name} record must be an object, got {type(record).__name__}"
            )
        record_id = record.get("id")
        if isinstance(record_id, int) and not isinstance(record_id, bool):
            record_id = str(record_id)
        if not isinstance(record_id, str) or not record_id:
            raise MalformedData(f"{self.name} record without a valid id")
        try:
            payload = orjson.dumps({**record, "id": record_id})
        except orjson.JSONEncodeError as err:
            raise MalformedData(f"Invalid {self.name} record: {err}") from err
        return record_id, payload.decode("utf-8")

    def _rows(
        self, records: Iterable[RecordLike], strict: bool = True
    ) -> list[tuple[str, str]]:
        prepare = self._prepare if strict else self._prepare_loose
        return [prepare(r) for r in records]

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.Error as err:
            raise StorageUnavailable(
                f"Record store error on {self.name}: {err}"
            ) from err

    def _write(self, statements: list[tuple[str, Any]]) -> None:
        """Run statements in one transaction; roll back on any failure."""
        try:
            with self._conn:
                for sql, params in statements:
                    if isinstance(params, list):
                        self._conn.executemany(sql, params)
                    else:
                        self._conn.execute(sql, params)
        except sqlite3.IntegrityError as err:
            raise MalformedData(
                f"Rejected write to {self.name}: {err}"
            ) from err
        except sqlite3.Error as err:
            raise StorageUnavailable(
                f"Record store error on {self.name}: {err}"
            ) from err

    def _where_clause(self, filters: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses = []
        params: list[Any] = []
        for name, value in filters.items():
            field = _field_name(name)
            if field == "id":
                clauses.append("id = ?")
            else:
                clauses.append(f"json_extract(payload, '$.{field}') = ?")
            params.append(value)
        sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return sql, params

    def _order_clause(self, order_by: Optional[str], reverse: bool) -> str:
        direction = "DESC" if reverse else "ASC"
        if order_by is None:
            return f" ORDER BY rowid {direction}"
        return (
            f" ORDER BY json_extract(payload, '$.{_field_name(order_by)}') "
            f"{direction}, rowid {direction}"
        )

    @staticmethod
    def _validate_field(name: str) -> None:
        if not name.replace("_", "").isalnum():
            raise ValueError(f"Invalid field name: {name!r}")

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        self._write([(f"DELETE FROM {self.name}", ())])
        logger.debug("Cleared %s", self.name)

    async def bulk_insert(
        self, records: Iterable[RecordLike], strict: bool = True
    ) -> int:
        """Insert all records or none.

        With ``strict=False`` only the id is checked and records are stored
        as given.

        Raises:
            MalformedData: A record fails validation or reuses an id.
            StorageUnavailable: The database cannot be written.
        """
        rows = self._rows(records, strict)
        self._write([
            (f"INSERT INTO {self.name} (id, payload) VALUES (?, ?)", rows),
        ])
        logger.debug("Inserted %d record(s) into %s", len(rows), self.name)
        return len(rows)

    async def replace(
        self, records: Iterable[RecordLike], strict: bool = True
    ) -> int:
        """Clear the collection and insert ``records`` in one transaction."""
        rows = self._rows(records, strict)
        self._write([
            (f"DELETE FROM {self.name}", ()),
            (f"INSERT INTO {self.name} (id, payload) VALUES (?, ?)", rows),
        ])
        logger.debug("Replaced %s with %d record(s)", self.name, len(rows))
        return len(rows)

    async def count(self) -> int:
        cur = self._execute(f"SELECT COUNT(*) FROM {self.name}")
        return cur.fetchone()[0]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, record_id: str) -> Optional[dict[str, Any]]:
        cur = self._execute(
            f"SELECT payload FROM {self.name} WHERE id = ?", (record_id,)
        )
        row = cur.fetchone()
        return orjson.loads(row[0]) if row else None

    async def all(
        self, order_by: Optional[str] = None, reverse: bool = False
    ) -> list[dict[str, Any]]:
        if order_by is not None:
            self._validate_field(order_by)
        cur = self._execute(
            f"SELECT payload FROM {self.name}"
            + self._order_clause(order_by, reverse)
        )
        return [orjson.loads(row[0]) for row in cur.fetchall()]

    async def where(
        self,
        order_by: Optional[str] = None,
        reverse: bool = False,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        """Return records whose fields equal the given values.

        Field names may be given in snake_case or camelCase.
        """
        for name in filters:
            self._validate_field(name)
        if order_by is not None:
            self._validate_field(order_by)
        clause, params = self._where_clause(filters)
        cur = self._execute(
            f"SELECT payload FROM {self.name}{clause}"
            + self._order_clause(order_by, reverse),
            params,
        )
        return [orjson.loads(row[0]) for row in cur.fetchall()]

    # ------------------------------------------------------------------
    # Single-record mutations
    # ------------------------------------------------------------------

    async def add(self, record: RecordLike) -> str:
        """Insert a new record and return its id.

        Raises:
            MalformedData: Invalid record or id already present.
        """
        record_id, payload = self._prepare(record)
        self._write([
            (f"INSERT INTO {self.name} (id, payload) VALUES (?, ?)",
             (record_id, payload)),
        ])
        return record_id

    async def put(self, record: RecordLike) -> str:
        """Insert or overwrite a record and return its id."""
        record_id, payload = self._prepare(record)
        self._write([
            (f"INSERT OR REPLACE INTO {self.name} (id, payload) VALUES (?, ?)",
             (record_id, payload)),
        ])
        return record_id

    async def update(self, record_id: str, **changes: Any) -> int:
        """Merge ``changes`` into a stored record.

        Returns:
            1 if the record was updated, 0 if it does not exist.
        """
        current = await self.get(record_id)
        if current is None:
            return 0
        current.update({_field_name(k): v for k, v in changes.items()})
        current["id"] = record_id
        _, payload = self._prepare(current)
        self._write([
            (f"UPDATE {self.name} SET payload = ? WHERE id = ?",
             (payload, record_id)),
        ])
        return 1

    async def delete(self, record_id: str) -> None:
        self._write([(f"DELETE FROM {self.name} WHERE id = ?", (record_id,))])

    async def delete_where(self, **filters: Any) -> int:
        """Delete the records matching ``filters``; returns how many."""
        if not filters:
            raise ValueError("delete_where requires at least one filter")
        for name in filters:
            self._validate_field(name)
        clause, params = self._where_clause(filters)
        before = await self.count()
        self._write([(f"DELETE FROM {self.name}{clause}", tuple(params))])
        return before - await self.count()


class RecordStore:
    """sqlite-backed structured store with one table per collection.

    Args:
        path: Database file, or ``":memory:"`` for a private in-memory store.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self._path = str(path)
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path)
            self._create_schema()
        except (OSError, sqlite3.Error) as err:
            raise StorageUnavailable(
                f"Cannot open record store {self._path}: {err}"
            ) from err
        self._collections = {
            spec.name: RecordCollection(self._conn, spec.name)
            for spec in COLLECTIONS
        }

    def _create_schema(self) -> None:
        with self._conn:
            for spec in COLLECTIONS:
                self._conn.execute(_CREATE_TABLE.format(table=spec.name))
                for field in spec.indexes:
                    self._conn.execute(
                        _CREATE_INDEX.format(table=spec.name, field=field)
                    )
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def __getitem__(self, name: str) -> RecordCollection:
        get_collection(name)
        return self._collections[name]

    def __getattr__(self, name: str) -> RecordCollection:
        collections = self.__dict__.get("_collections", {})
        if name in collections:
            return collections[name]
        raise AttributeError(name)

    def __iter__(self):
        return iter(self._collections.values())

    @property
    def path(self) -> str:
        return self._path

    async def counts(self) -> dict[str, int]:
        return {name: await c.count() for name, c in self._collections.items()}

    async def clear_all(self) -> None:
        """Empty every collection in a single transaction."""
        try:
            with self._conn:
                for name in self._collections:
                    self._conn.execute(f"DELETE FROM {name}")
        except sqlite3.Error as err:
            raise StorageUnavailable(f"Cannot clear record store: {err}") from err
        logger.info("Record store cleared")

    async def replace_many(
        self, data: dict[str, Iterable[RecordLike]], strict: bool = True
    ) -> dict[str, int]:
        """Replace several collections in one transaction.

        Either every listed collection is replaced or none is.

        Raises:
            KeyError: Unknown collection name.
            MalformedData: A record is invalid or an id is repeated.
        """
        rows = {
            name: self[name]._rows(records, strict)
            for name, records in data.items()
        }
        try:
            with self._conn:
                for name, batch in rows.items():
                    self._conn.execute(f"DELETE FROM {name}")
                    self._conn.executemany(
                        f"INSERT INTO {name} (id, payload) VALUES (?, ?)", batch,
                    )
        except sqlite3.IntegrityError as err:
            raise MalformedData(f"Rejected restore: {err}") from err
        except sqlite3.Error as err:
            raise StorageUnavailable(f"Cannot write record store: {err}") from err
        return {name: len(batch) for name, batch in rows.items()}

    async def export_all(self) -> dict[str, list[dict[str, Any]]]:
        return {name: await c.all() for name, c in self._collections.items()}

    def close(self) -> None:
        self._conn.close()
