"""Input validation package."""

from ledger_core.validation.amounts import (
    require_positive_cents,
    require_text,
    to_cents,
)
from ledger_core.validation.phone import MIN_PHONE_DIGITS, normalize_phone

__all__ = [
    "MIN_PHONE_DIGITS",
    "normalize_phone",
    "require_positive_cents",
    "require_text",
    "to_cents",
]
