"""Backup files: a JSON snapshot of the account record and every collection.

Restoring a backup replaces each collection it contains (clear + bulk
insert), all in one transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .conf import BACKUP_VERSION, COLLECTIONS
from .exceptions import MalformedData
from .storage.records import RecordStore
from .vault.credentials import CredentialRecord

logger = logging.getLogger("fintrack.storage")

_Rows = list[dict[str, Any]]


class BackupFile(BaseModel):
    """Parsed backup file.

    ``user``, ``transactions``, ``goals`` and ``bills`` are mandatory;
    the remaining collections are optional.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    user: dict[str, Any]
    transactions: _Rows
    goals: _Rows
    bills: _Rows
    budgets: Optional[_Rows] = None
    recurring_transactions: Optional[_Rows] = None
    notifications: Optional[_Rows] = None
    goal_contributions: Optional[_Rows] = None
    bill_payments: Optional[_Rows] = None
    version: Optional[str] = None
    exported_at: Optional[str] = None

    def collections(self) -> dict[str, _Rows]:
        """Collections present in the file, keyed by record store name."""
        return {
            spec.name: getattr(self, spec.name)
            for spec in COLLECTIONS
            if getattr(self, spec.name) is not None
        }


async def export_backup(
    records: RecordStore,
    user: Optional[CredentialRecord] = None,
) -> dict[str, Any]:
    """Snapshot the record store (and the account record) as a backup dict."""
    data = await records.export_all()
    backup: dict[str, Any] = {
        "user": user.model_dump(by_alias=True) if user is not None else {},
    }
    for spec in COLLECTIONS:
        backup[spec.export_key] = data[spec.name]
    backup["version"] = BACKUP_VERSION
    backup["exportedAt"] = datetime.now(timezone.utc).isoformat()
    logger.info(
        "Backup exported: %d record(s)", sum(len(v) for v in data.values())
    )
    return backup


def dump_backup(backup: dict[str, Any]) -> bytes:
    return orjson.dumps(backup, option=orjson.OPT_INDENT_2)


def parse_backup(raw: Union[str, bytes, dict]) -> BackupFile:
    """Parse and validate a backup file.

    Raises:
        MalformedData: Not JSON, or mandatory sections missing or not arrays.
    """
    try:
        if isinstance(raw, (str, bytes)):
            raw = orjson.loads(raw)
        return BackupFile.model_validate(raw)
    except orjson.JSONDecodeError as err:
        raise MalformedData(f"Backup file is not JSON: {err}") from err
    except ValidationError as err:
        raise MalformedData(
            f"Invalid backup file format: {err.error_count()} error(s)"
        ) from err


async def restore_backup(
    records: RecordStore,
    backup: Union[BackupFile, str, bytes, dict],
) -> dict[str, int]:
    """Replace every collection present in ``backup``.

    Returns:
        Number of records restored per collection.
    """
    if not isinstance(backup, BackupFile):
        backup = parse_backup(backup)
    counts = await records.replace_many(backup.collections(), strict=False)
    logger.info("Backup restored: %s", counts)
    return counts
