"""Error taxonomy for the FinTrack persistence core.

Cryptographic and parse errors are recoverable per unit of work;
storage errors are fatal for the operation that hit them.
"""


class FinTrackError(Exception):
    """Base class for all errors raised by fintrack_session."""


class AuthenticationFailed(FinTrackError):
    """Wrong password or corrupted credential record.

    The two causes are never distinguished to callers.
    """

    def __init__(self, message: str = "Incorrect password"):
        super().__init__(message)


class DecryptionFailed(FinTrackError):
    """AEAD decryption failed: wrong key, tampered or truncated blob."""


class MalformedData(FinTrackError, ValueError):
    """Persisted data could not be parsed or does not match its schema."""


class StorageUnavailable(FinTrackError, OSError):
    """The persisted store cannot be read or written."""


class SessionStateError(FinTrackError, RuntimeError):
    """Operation not allowed in the current session state."""
