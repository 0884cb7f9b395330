"""
Vault Key Rotation — Re-encryption of legacy collection blobs when the
password (and therefore the session key) changes.

Every blob is decrypted with the old key and re-encrypted with the new
one in memory first; nothing is written until all decryptable blobs have
been re-encrypted, so a failure part-way never leaves live data split
across two keys. Blobs the old key cannot open are not live data under
that key: they are counted as errors and left untouched.

Security Note:
    Plaintext exists in memory only during re-encryption of each blob.
    Never log plaintext or ciphertext values.
"""
import logging

from ..conf import COLLECTION_NAMES
from ..exceptions import DecryptionFailed, MalformedData
from .crypto import EncryptedBlob, decrypt, encrypt

logger = logging.getLogger("fintrack.vault")


async def rotate_legacy_blobs(
    legacy,
    old_key: bytes,
    new_key: bytes,
) -> dict:
    """Re-encrypt every present legacy collection from old_key to new_key.

    Args:
        legacy: LegacyBlobStore holding the collections.
        old_key: Key the blobs are currently encrypted with.
        new_key: Key to re-encrypt them with.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.
    """
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
    pending: list[tuple[str, EncryptedBlob]] = []

    logger.info("Starting legacy blob rotation")

    for name in COLLECTION_NAMES:
        try:
            envelope = await legacy.read_collection(name)
        except MalformedData as err:
            logger.error("Cannot rotate collection=%s: %s", name, err)
            stats["total"] += 1
            stats["errors"] += 1
            continue
        if envelope is None:
            stats["skipped"] += 1
            continue
        stats["total"] += 1
        try:
            plaintext = decrypt(envelope, old_key)
        except DecryptionFailed as err:
            logger.error(
                "Cannot rotate collection=%s: %s", name, err,
            )
            stats["errors"] += 1
            continue
        pending.append((name, encrypt(plaintext, new_key)))

    for name, blob in pending:
        await legacy.write_collection(name, blob)
        stats["rotated"] += 1

    logger.info("Legacy blob rotation complete: %s", stats)
    return stats
