"""
Phone Normalization

Every identity lookup is keyed by the normalized phone, so two spellings
of the same number ("+91 91612 93962", "919161293962") must collapse to
the same key. Normalization keeps digits only; nothing else is inferred
(no country code is added or stripped).
"""

import re

from ledger_core.errors import InvalidPhoneError

MIN_PHONE_DIGITS = 10

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(phone_raw: str) -> str:
    """
    Canonicalize a phone string to its digits.

    Raises:
        InvalidPhoneError: If fewer than 10 digits remain
    """
    if not isinstance(phone_raw, str):
        raise InvalidPhoneError("Phone number must be a string")

    normalized = _NON_DIGITS.sub("", phone_raw)
    if len(normalized) < MIN_PHONE_DIGITS:
        raise InvalidPhoneError("Enter a valid phone number.")
    return normalized
