"""
Argument checks shared by the write paths.

IMPORTANT: These run before any I/O. A request that fails here never
reaches the store.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from ledger_core.errors import InvalidArgumentError

_CENT = Decimal("0.01")


def require_text(value: object, field: str) -> str:
    """Return the stripped string, or fail if it is missing or blank."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{field} is required.")
    return value.strip()


def require_positive_cents(amount_cents: object) -> int:
    """Money is an integer count of minor units, strictly positive."""
    # bool is an int subclass; True is not one cent
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidArgumentError("Amount must be an integer number of cents.")
    if amount_cents <= 0:
        raise InvalidArgumentError("Amount must be greater than zero cents.")
    return amount_cents


def to_cents(amount: Union[Decimal, int, str]) -> int:
    """
    Convert a major-unit amount (e.g. rupees) to integer cents.

    Rounds half-up to the nearest cent. Floats are refused; pass a string
    or Decimal so the caller's digits are kept exactly.
    """
    if isinstance(amount, (float, bool)):
        raise InvalidArgumentError("Pass amounts as Decimal or str, not float.")
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgumentError(f"Not a valid amount: {amount!r}")
    if not value.is_finite():
        raise InvalidArgumentError(f"Not a valid amount: {amount!r}")

    cents = int((value.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    return require_positive_cents(cents)
