"""Configuration package."""

from ledger_core.config.settings import (
    AppSettings,
    FirestoreSettings,
    LedgerSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "FirestoreSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
]
