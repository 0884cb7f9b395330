"""Shared fixtures for the fintrack_session test-suite."""
import pytest

from fintrack_session.storage import LegacyBlobStore, MemoryKeyValueStore, RecordStore
from fintrack_session.vault import VaultConfig, derive_key

# Lowest allowed PBKDF2 work factor keeps the suite fast.
TEST_ITERATIONS = 100_000
TEST_PASSWORD = "correct-horse-1"
TEST_SALT = bytes(range(16))


def make_transaction(tid: str = "t1", **overrides) -> dict:
    record = {
        "id": tid,
        "date": "2024-01-05T10:00:00.000Z",
        "description": "Coffee",
        "amount": 4.5,
        "type": "expense",
        "category": "Food",
    }
    record.update(overrides)
    return record


def make_goal(gid: str = "g1", **overrides) -> dict:
    record = {
        "id": gid,
        "name": "Emergency fund",
        "targetAmount": 1000,
        "currentAmount": 250,
        "priority": "high",
        "category": "emergency",
        "isActive": True,
    }
    record.update(overrides)
    return record


SAMPLE_RECORDS: dict[str, list[dict]] = {
    "transactions": [
        make_transaction("t1", amount=50),
        make_transaction("t2", type="income", category="Salary", amount=2500),
        make_transaction("t3"),
    ],
    "goals": [make_goal("g1"), make_goal("g2", name="Holiday", isActive=False)],
    "bills": [
        {"id": "b1", "name": "Rent", "amount": 900, "dayOfMonth": 1, "category": "Housing"},
    ],
    "budgets": [
        {"id": "bu1", "category": "Food", "amount": 300, "month": "2024-01"},
        {"id": "bu2", "category": "Fun", "amount": 100, "month": "2024-01"},
    ],
    "recurring_transactions": [
        {
            "id": "r1", "description": "Gym", "amount": 30, "type": "expense",
            "category": "Health", "frequency": "monthly",
            "startDate": "2024-01-01", "nextDueDate": "2024-02-01",
        },
    ],
    "notifications": [
        {"id": "n1", "title": "Welcome", "message": "Hello", "date": "2024-01-01", "read": False},
    ],
    "goal_contributions": [
        {"id": "gc1", "goalId": "g1", "transactionId": "t2", "amount": 100, "date": "2024-01-06", "type": "auto"},
        {"id": "gc2", "goalId": "g1", "amount": 50, "date": "2024-01-07"},
    ],
    "bill_payments": [
        {"id": "bp1", "billId": "b1", "month": "2024-01", "paidDate": "2024-01-01", "amount": 900},
    ],
}


@pytest.fixture(scope="session")
def key() -> bytes:
    return derive_key(TEST_PASSWORD, TEST_SALT, TEST_ITERATIONS)


@pytest.fixture(scope="session")
def other_key() -> bytes:
    return derive_key("another-password", TEST_SALT, TEST_ITERATIONS)


@pytest.fixture
def config(tmp_path) -> VaultConfig:
    return VaultConfig(kdf_iterations=TEST_ITERATIONS, data_dir=tmp_path)


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def legacy(kv) -> LegacyBlobStore:
    return LegacyBlobStore(kv)


@pytest.fixture
def records():
    store = RecordStore()
    yield store
    store.close()
