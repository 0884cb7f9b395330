"""
Vault Configuration — Key derivation parameters and storage locations.

Reads settings from environment variables:
    FINTRACK_KDF_ITERATIONS = <int, at least 100000>
    FINTRACK_SALT_SIZE = <int, at least 16>
    FINTRACK_DATA_DIR = <directory holding the local stores>

Security Note:
    No key material is ever part of the configuration. Session keys are
    derived from the user's password at sign-in and live only in memory.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("fintrack.vault")

MIN_KDF_ITERATIONS = 100_000
DEFAULT_KDF_ITERATIONS = 310_000
MIN_SALT_SIZE = 16


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS)
    salt_size: int = Field(default=MIN_SALT_SIZE)
    data_dir: Path = Field(default=Path("fintrack_data"))
    legacy_dir: Optional[Path] = None
    records_path: Optional[Path] = None

    @field_validator("kdf_iterations")
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        """PBKDF2 must stay deliberately slow."""
        if v < MIN_KDF_ITERATIONS:
            raise ValueError(
                f"kdf_iterations must be at least {MIN_KDF_ITERATIONS}, got {v}"
            )
        return v

    @field_validator("salt_size")
    @classmethod
    def validate_salt_size(cls, v: int) -> int:
        if v < MIN_SALT_SIZE:
            raise ValueError(
                f"salt_size must be at least {MIN_SALT_SIZE} bytes, got {v}"
            )
        return v

    @model_validator(mode="after")
    def fill_storage_paths(self) -> "VaultConfig":
        """Place the stores under data_dir unless set explicitly."""
        if self.legacy_dir is None:
            self.legacy_dir = self.data_dir / "local_storage"
        if self.records_path is None:
            self.records_path = self.data_dir / "records.sqlite3"
        return self

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict = {}
        iterations = os.environ.get("FINTRACK_KDF_ITERATIONS")
        if iterations is not None:
            values["kdf_iterations"] = int(iterations)
        salt_size = os.environ.get("FINTRACK_SALT_SIZE")
        if salt_size is not None:
            values["salt_size"] = int(salt_size)
        data_dir = os.environ.get("FINTRACK_DATA_DIR")
        if data_dir:
            values["data_dir"] = Path(data_dir)
        config = cls(**values)
        logger.debug(
            "Vault config: iterations=%d salt_size=%d data_dir=%s",
            config.kdf_iterations, config.salt_size, config.data_dir,
        )
        return config
