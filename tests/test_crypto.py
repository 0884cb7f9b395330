"""
Tests for the vault crypto core.

Tests cover:
- Salt generation and PBKDF2 key derivation
- AES-GCM round-trip, fresh IVs, wrong-key rejection
- Tamper detection on every byte of IV and ciphertext
- JSON helpers and the persisted blob wire form
"""
import base64

import orjson
import pytest

from fintrack_session.exceptions import DecryptionFailed, MalformedData
from fintrack_session.vault.crypto import (
    KEY_LENGTH,
    NONCE_SIZE,
    EncryptedBlob,
    decrypt,
    decrypt_json,
    derive_key,
    dump_blob,
    encrypt,
    encrypt_json,
    generate_salt,
    load_blob,
)

from .conftest import TEST_ITERATIONS, TEST_PASSWORD, TEST_SALT


def _flip(data: bytes, index: int) -> bytes:
    return bytes(b ^ 0x01 if i == index else b for i, b in enumerate(data))


# --- Key derivation ---

class TestKeyDerivation:
    """Tests for generate_salt and derive_key."""

    def test_salt_length(self):
        assert len(generate_salt()) == 16
        assert len(generate_salt(32)) == 32

    def test_salts_do_not_repeat(self):
        salts = {generate_salt() for _ in range(50)}
        assert len(salts) == 50

    def test_short_salt_rejected(self):
        with pytest.raises(ValueError):
            generate_salt(8)

    def test_key_length(self, key):
        assert len(key) == KEY_LENGTH

    def test_derivation_is_deterministic(self, key):
        """Same password and salt give a key that opens earlier ciphertext."""
        blob = encrypt('{"a": 1}', key)
        again = derive_key(TEST_PASSWORD, TEST_SALT, TEST_ITERATIONS)
        assert again == key
        assert decrypt(blob, again) == '{"a": 1}'

    def test_salt_changes_key(self, key):
        other = derive_key(TEST_PASSWORD, bytes(16), TEST_ITERATIONS)
        assert other != key

    def test_password_changes_key(self, key, other_key):
        assert other_key != key

    def test_low_iteration_count_rejected(self):
        with pytest.raises(ValueError):
            derive_key(TEST_PASSWORD, TEST_SALT, 1000)


# --- Codec ---

class TestCodec:
    """Tests for encrypt / decrypt."""

    @pytest.mark.parametrize("payload", [
        "",
        "[]",
        '{"id": "t1", "amount": 50}',
        '["café", "€", "\U0001f4b8"]',
        "x" * 10_000,
    ])
    def test_round_trip(self, key, payload):
        assert decrypt(encrypt(payload, key), key) == payload

    def test_fresh_iv_per_call(self, key):
        first = encrypt("same", key)
        second = encrypt("same", key)
        assert len(first.iv) == NONCE_SIZE
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_wrong_key_fails(self, key, other_key):
        blob = encrypt("secret", key)
        with pytest.raises(DecryptionFailed):
            decrypt(blob, other_key)

    def test_ciphertext_tampering_detected(self, key):
        blob = encrypt('{"amount": 50}', key)
        for index in range(len(blob.ciphertext)):
            tampered = EncryptedBlob(iv=blob.iv, ciphertext=_flip(blob.ciphertext, index))
            with pytest.raises(DecryptionFailed):
                decrypt(tampered, key)

    def test_iv_tampering_detected(self, key):
        blob = encrypt('{"amount": 50}', key)
        for index in range(len(blob.iv)):
            tampered = EncryptedBlob(iv=_flip(blob.iv, index), ciphertext=blob.ciphertext)
            with pytest.raises(DecryptionFailed):
                decrypt(tampered, key)

    def test_truncated_ciphertext(self, key):
        blob = encrypt("secret", key)
        with pytest.raises(DecryptionFailed):
            decrypt(EncryptedBlob(iv=blob.iv, ciphertext=blob.ciphertext[:8]), key)

    def test_bad_iv_length(self, key):
        blob = encrypt("secret", key)
        with pytest.raises(DecryptionFailed):
            decrypt(EncryptedBlob(iv=blob.iv[:8], ciphertext=blob.ciphertext), key)

    def test_accepts_bytearray_key(self, key):
        blob = encrypt("secret", bytearray(key))
        assert decrypt(blob, key) == "secret"


class TestJsonHelpers:
    """Tests for encrypt_json / decrypt_json."""

    def test_round_trip(self, key):
        value = [{"id": "t1", "amount": 50, "tags": ["a", "b"], "paid": True}]
        assert decrypt_json(encrypt_json(value, key), key) == value

    def test_non_json_payload(self, key):
        blob = encrypt("not json {", key)
        with pytest.raises(MalformedData):
            decrypt_json(blob, key)


# --- Wire form ---

class TestBlobWireForm:
    """Tests for dump_blob / load_blob and EncryptedBlob coercion."""

    def test_dump_uses_base64(self, key):
        blob = encrypt("secret", key)
        data = orjson.loads(dump_blob(blob))
        assert set(data) == {"iv", "ciphertext"}
        assert base64.b64decode(data["iv"]) == blob.iv

    def test_load_dumped(self, key):
        blob = encrypt("secret", key)
        assert load_blob(dump_blob(blob)) == blob

    def test_load_byte_lists(self, key):
        blob = encrypt("secret", key)
        raw = orjson.dumps({"iv": list(blob.iv), "ciphertext": list(blob.ciphertext)})
        assert decrypt(load_blob(raw), key) == "secret"

    def test_load_index_keyed_objects(self, key):
        blob = encrypt("secret", key)
        raw = {
            "iv": {str(i): b for i, b in enumerate(blob.iv)},
            "ciphertext": {str(i): b for i, b in enumerate(blob.ciphertext)},
        }
        assert decrypt(load_blob(raw), key) == "secret"

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2, 3]",
        '{"iv": "AAAA"}',
        '{"iv": "!!not-base64!!", "ciphertext": "AAAA"}',
        '{"iv": [1, 2, 300], "ciphertext": "AAAA"}',
    ])
    def test_invalid_blobs(self, raw):
        with pytest.raises(MalformedData):
            load_blob(raw)

    def test_repr_hides_content(self, key):
        blob = encrypt("secret", key)
        text = repr(blob)
        assert base64.b64encode(blob.ciphertext).decode() not in text
        assert "12B" in text
