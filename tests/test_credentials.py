"""
Tests for credential records.

Tests cover:
- Account creation and input validation
- Password verification (right, wrong, corrupted record)
- Password change with a fresh salt
- Record (de)serialization, including the older record layout
- Persistence helpers over a key-value store
"""
import orjson
import pytest

from fintrack_session.conf import CREDENTIALS_KEY
from fintrack_session.exceptions import AuthenticationFailed, MalformedData
from fintrack_session.storage import MemoryKeyValueStore
from fintrack_session.vault.credentials import (
    CredentialRecord,
    change_password,
    create_account,
    delete_credentials,
    has_credentials,
    load_credentials,
    open_account,
    save_credentials,
    verify_password,
)
from fintrack_session.vault.crypto import (
    decrypt_json,
    derive_key,
    dump_blob,
    encode_bytes,
    encrypt_json,
    generate_salt,
)

from .conftest import TEST_ITERATIONS, TEST_PASSWORD


@pytest.fixture(scope="module")
def record():
    """Account 'alice' protected by TEST_PASSWORD."""
    return create_account("alice", TEST_PASSWORD, iterations=TEST_ITERATIONS)


class TestCreateAccount:
    """Tests for create_account / open_account."""

    def test_record_fields(self, record):
        assert record.username == "alice"
        assert len(record.salt) == 16
        assert record.kdf_iterations == TEST_ITERATIONS

    def test_record_holds_no_secret(self, record):
        raw = record.to_json()
        assert TEST_PASSWORD not in raw
        assert set(orjson.loads(raw)) == {
            "username", "salt", "passwordCheck", "kdfIterations",
        }

    def test_username_is_stripped(self):
        record = create_account("  bob  ", "secret-1", iterations=TEST_ITERATIONS)
        assert record.username == "bob"

    def test_open_account_returns_session_key(self):
        record, key = open_account("carol", "secret-1", iterations=TEST_ITERATIONS)
        assert key == derive_key("secret-1", record.salt, TEST_ITERATIONS)

    def test_salts_differ_between_accounts(self):
        first = create_account("dave", "secret-1", iterations=TEST_ITERATIONS)
        second = create_account("dave", "secret-1", iterations=TEST_ITERATIONS)
        assert first.salt != second.salt

    @pytest.mark.parametrize("username,password", [
        ("al", "secret-1"),
        ("   al   ", "secret-1"),
        ("alice", "12345"),
        ("alice", ""),
    ])
    def test_invalid_input(self, username, password):
        with pytest.raises(ValueError):
            create_account(username, password, iterations=TEST_ITERATIONS)


class TestVerifyPassword:
    """Tests for verify_password."""

    def test_correct_password(self, record):
        key = verify_password(record, TEST_PASSWORD)
        assert key == derive_key(TEST_PASSWORD, record.salt, record.kdf_iterations)

    def test_key_opens_existing_data(self, record):
        """The verified key decrypts data written under the same password."""
        key = derive_key(TEST_PASSWORD, record.salt, record.kdf_iterations)
        blob = encrypt_json([{"id": "t1"}], key)
        assert decrypt_json(blob, verify_password(record, TEST_PASSWORD)) == [{"id": "t1"}]

    @pytest.mark.parametrize("password", ["wrong", "correct-horse-2", "", "CORRECT-HORSE-1"])
    def test_wrong_password(self, record, password):
        with pytest.raises(AuthenticationFailed):
            verify_password(record, password)

    def test_corrupted_check(self, record):
        tampered = record.model_copy(update={
            "password_check": record.password_check.model_copy(
                update={"ciphertext": bytes(len(record.password_check.ciphertext))}
            ),
        })
        with pytest.raises(AuthenticationFailed):
            verify_password(tampered, TEST_PASSWORD)

    def test_unexpected_marker(self, record):
        key = derive_key(TEST_PASSWORD, record.salt, record.kdf_iterations)
        forged = record.model_copy(update={
            "password_check": encrypt_json({"check": "nope"}, key),
        })
        with pytest.raises(AuthenticationFailed):
            verify_password(forged, TEST_PASSWORD)

    def test_error_message_is_generic(self, record):
        with pytest.raises(AuthenticationFailed, match="Incorrect password"):
            verify_password(record, "wrong")


class TestChangePassword:
    """Tests for change_password."""

    def test_reseal(self, record):
        change = change_password(
            record, TEST_PASSWORD, "new-secret-9", iterations=TEST_ITERATIONS,
        )
        assert change.record.username == "alice"
        assert change.record.salt != record.salt
        assert change.old_key == verify_password(record, TEST_PASSWORD)
        assert change.new_key == verify_password(change.record, "new-secret-9")
        with pytest.raises(AuthenticationFailed):
            verify_password(change.record, TEST_PASSWORD)

    def test_wrong_old_password(self, record):
        with pytest.raises(AuthenticationFailed):
            change_password(record, "wrong", "new-secret-9", iterations=TEST_ITERATIONS)

    def test_short_new_password(self, record):
        with pytest.raises(ValueError):
            change_password(record, TEST_PASSWORD, "short", iterations=TEST_ITERATIONS)

    def test_profile_fields_preserved(self, record):
        data = orjson.loads(record.to_json())
        data["avatar"] = "cat.png"
        profiled = CredentialRecord.from_json(data)
        change = change_password(
            profiled, TEST_PASSWORD, "new-secret-9", iterations=TEST_ITERATIONS,
        )
        assert orjson.loads(change.record.to_json())["avatar"] == "cat.png"


class TestRecordSerialization:
    """Tests for CredentialRecord.to_json / from_json."""

    def test_round_trip(self, record):
        restored = CredentialRecord.from_json(record.to_json())
        assert restored.username == record.username
        assert restored.salt == record.salt
        assert restored.password_check == record.password_check
        verify_password(restored, TEST_PASSWORD)

    def test_password_check_is_stringified(self, record):
        data = orjson.loads(record.to_json())
        assert isinstance(data["passwordCheck"], str)
        assert set(orjson.loads(data["passwordCheck"])) == {"iv", "ciphertext"}

    def test_older_record_layout(self):
        """Records without kdfIterations and with byte-list salts still verify."""
        salt = generate_salt()
        key = derive_key("hunter22", salt, 100_000)
        check = encrypt_json({"check": "ok"}, key)
        raw = orjson.dumps({
            "username": "alice",
            "salt": list(salt),
            "passwordCheck": dump_blob(check),
        })
        record = CredentialRecord.from_json(raw)
        assert record.kdf_iterations == 100_000
        assert verify_password(record, "hunter22") == key

    def test_base64_salt(self, record):
        data = orjson.loads(record.to_json())
        assert data["salt"] == encode_bytes(record.salt)

    @pytest.mark.parametrize("raw", [
        "not json",
        "{}",
        '{"username": "alice"}',
        '{"username": "alice", "salt": "AAAA", "passwordCheck": "oops"}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedData):
            CredentialRecord.from_json(raw)

    def test_repr_hides_salt(self, record):
        assert encode_bytes(record.salt) not in repr(record)


class TestPersistence:
    """Tests for the key-value persistence helpers."""

    async def test_save_and_load(self, record):
        kv = MemoryKeyValueStore()
        assert await load_credentials(kv) is None
        assert await has_credentials(kv) is False
        await save_credentials(kv, record)
        assert await has_credentials(kv) is True
        loaded = await load_credentials(kv)
        assert loaded.username == "alice"
        verify_password(loaded, TEST_PASSWORD)

    async def test_older_key_name(self, record):
        kv = MemoryKeyValueStore({"financeFlowUser": record.to_json()})
        loaded = await load_credentials(kv)
        assert loaded.salt == record.salt
        await save_credentials(kv, loaded)
        assert await kv.keys() == [CREDENTIALS_KEY]

    async def test_delete(self, record):
        kv = MemoryKeyValueStore()
        await save_credentials(kv, record)
        await delete_credentials(kv)
        assert await has_credentials(kv) is False

    async def test_corrupted_entry(self):
        kv = MemoryKeyValueStore({CREDENTIALS_KEY: "{broken"})
        with pytest.raises(MalformedData):
            await load_credentials(kv)
