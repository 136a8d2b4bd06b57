"""
Configuration Management for Ledger Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.

The admin whitelist is configuration, not code. It is read here once
and handed to the identity layer at construction.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ledger_core.models.ledger import AdminWhitelistEntry


class FirestoreSettings(BaseSettings):
    """Firestore document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        extra="ignore"
    )

    project_id: Optional[str] = Field(
        default=None,
        description="GCP project hosting the Firestore database"
    )
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON; Application Default Credentials are used when unset"
    )
    database: str = Field(
        default="(default)",
        description="Firestore database id"
    )
    collection_prefix: str = Field(
        default="",
        description="Prefix prepended to every collection name (e.g. for staging data)"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firestore credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LedgerSettings(BaseSettings):
    """Engine behavior: identity whitelist, timeouts, batch sizes."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # JSON list, e.g. LEDGER_ADMIN_WHITELIST='[{"phoneNumber": "+91 9161293962", "adminName": "Vaibhav"}]'
    admin_whitelist: list[AdminWhitelistEntry] = Field(
        default_factory=list,
        description="Phones that resolve to an admin identity"
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Upper bound for every single store call"
    )
    delete_batch_size: int = Field(
        default=400,
        ge=1,
        le=500,
        description="Documents per batched delete (Firestore caps a batch at 500)"
    )
    access_code_length: int = Field(
        default=8,
        ge=6,
        le=16,
        description="Length of generated recipient access codes"
    )
    fallback_recipient_name: str = Field(
        default="Recipient",
        min_length=1,
        description="Name snapshot used when neither caller nor recipient provides one"
    )

    @property
    def admin_phones(self) -> frozenset[str]:
        """Normalized whitelist phones."""
        return frozenset(entry.phone_normalized for entry in self.admin_whitelist)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Root log level"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Loaded lazily to allow partial configuration

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
