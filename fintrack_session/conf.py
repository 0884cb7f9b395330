"""FinTrack Session storage constants.

Key names used in the local key-value store and the table layout of the
structured record store.
"""
from typing import NamedTuple


class CollectionSpec(NamedTuple):
    """Describe one entity collection across both storage generations."""
    name: str          # table name in the record store
    export_key: str    # camelCase name used in migration counts and backups
    legacy_keys: tuple[str, ...]  # key-value entries, preferred name first
    indexes: tuple[str, ...]      # record fields mirrored into columns


def _legacy(camel: str) -> tuple[str, ...]:
    return (f"fintrack{camel}", f"financeFlow{camel}")


COLLECTIONS: tuple[CollectionSpec, ...] = (
    CollectionSpec(
        "transactions", "transactions", _legacy("Transactions"),
        ("date", "type", "category"),
    ),
    CollectionSpec(
        "goals", "goals", _legacy("Goals"),
        ("isActive", "category", "priority"),
    ),
    CollectionSpec(
        "bills", "bills", _legacy("Bills"),
        ("dayOfMonth", "category", "name"),
    ),
    CollectionSpec(
        "budgets", "budgets", _legacy("Budgets"),
        ("category", "month"),
    ),
    CollectionSpec(
        "recurring_transactions", "recurringTransactions",
        _legacy("RecurringTransactions"),
        ("nextDueDate", "frequency", "type", "category"),
    ),
    CollectionSpec(
        "notifications", "notifications", _legacy("Notifications"),
        ("date", "read", "type", "relatedId"),
    ),
    CollectionSpec(
        "goal_contributions", "goalContributions",
        _legacy("GoalContributions"),
        ("goalId", "transactionId", "date"),
    ),
    CollectionSpec(
        "bill_payments", "billPayments", _legacy("BillPayments"),
        ("billId", "month", "paidDate"),
    ),
)

COLLECTION_NAMES: tuple[str, ...] = tuple(c.name for c in COLLECTIONS)

_BY_NAME = {c.name: c for c in COLLECTIONS}


def get_collection(name: str) -> CollectionSpec:
    """Return the CollectionSpec for ``name``.

    Raises:
        KeyError: If ``name`` is not a known collection.
    """
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown collection: {name}") from None


# Credential record (username, salt, password check).
CREDENTIALS_KEY = "fintrackUser"
LEGACY_CREDENTIALS_KEYS = ("financeFlowUser",)

# Single boolean entry marking the one-shot legacy migration as done.
MIGRATION_FLAG_KEY = "fintrack_indexeddb_migration_complete"

# Known plaintext encrypted into the credential record.
PASSWORD_CHECK_MARKER = {"check": "ok"}

BACKUP_VERSION = "1.3.0"

# In-memory slot of SessionData holding the session key.
SESSION_KEY_NAME = "session_key"
