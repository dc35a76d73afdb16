# stoneledger/config.py
"""Environment-backed settings for :mod:`stoneledger`."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["LedgerSettings", "get_settings"]


class LedgerSettings(BaseSettings):
    """
    Configuration passed explicitly to the issuer, store and CLI.
    Every field reads its STONE_LEDGER_* environment variable; the private
    key is only needed for signing.
    """

    # entries/, ledger/, index/ and keys/keys.json live under root by default
    root: Path = Field(default_factory=Path.cwd, alias="STONE_LEDGER_ROOT")
    keys_file: Path | None = Field(default=None, alias="STONE_LEDGER_KEYS")
    storage: str | None = Field(default=None, alias="STONE_LEDGER_STORAGE")
    private_key_b64: SecretStr | None = Field(default=None, alias="STONE_LEDGER_PRIVATE_KEY_B64")
    log_level: str = Field(default="INFO", alias="STONE_LEDGER_LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=None, extra="ignore", populate_by_name=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: object) -> str:
        if value in (None, ""):
            return "INFO"
        return str(value).strip().upper()

    @field_validator("storage", mode="before")
    @classmethod
    def _blank_storage(cls, value: object) -> str | None:
        if value in (None, ""):
            return None
        return str(value)

    @property
    def registry_path(self) -> Path:
        return self.keys_file or self.root / "keys" / "keys.json"

    @property
    def storage_uri(self) -> str:
        return self.storage or f"file://{self.root}"


def get_settings(**overrides: object) -> LedgerSettings:
    """Return settings parsed from the environment, with keyword overrides applied."""

    values = {k: v for k, v in overrides.items() if v is not None}
    return LedgerSettings(**values)
