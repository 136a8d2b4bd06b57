"""Tests for phone normalization and amount checks."""

from decimal import Decimal

import pytest

from ledger_core.errors import InvalidArgumentError, InvalidPhoneError
from ledger_core.validation import (
    normalize_phone,
    require_positive_cents,
    require_text,
    to_cents,
)


class TestNormalizePhone:
    """Tests for the digits-only phone key."""

    def test_strips_formatting(self):
        assert normalize_phone("+91 91612-93962") == "919161293962"
        assert normalize_phone("(916) 129.3962") == "9161293962"

    def test_spellings_collapse_to_same_key(self):
        assert normalize_phone("+91 9161293962") == normalize_phone("919161293962")

    def test_no_country_code_inferred(self):
        """Ten digits stay ten digits."""
        assert normalize_phone("9161293962") == "9161293962"

    def test_rejects_short_numbers(self):
        with pytest.raises(InvalidPhoneError):
            normalize_phone("+91 12345")

    def test_rejects_empty_and_non_string(self):
        with pytest.raises(InvalidPhoneError):
            normalize_phone("")
        with pytest.raises(InvalidPhoneError):
            normalize_phone(9161293962)

    def test_invalid_phone_is_invalid_argument(self):
        with pytest.raises(InvalidArgumentError):
            normalize_phone("abc")


class TestAmounts:
    """Tests for integer-cent money handling."""

    def test_positive_cents_accepted(self):
        assert require_positive_cents(500) == 500

    @pytest.mark.parametrize("bad", [0, -1, 1.5, "500", True, None])
    def test_bad_cents_rejected(self, bad):
        with pytest.raises(InvalidArgumentError):
            require_positive_cents(bad)

    def test_to_cents_rounds_half_up(self):
        assert to_cents("12.345") == 1235
        assert to_cents(Decimal("0.005")) == 1
        assert to_cents(7) == 700

    def test_to_cents_refuses_float(self):
        with pytest.raises(InvalidArgumentError):
            to_cents(12.5)

    def test_to_cents_refuses_garbage_and_zero(self):
        with pytest.raises(InvalidArgumentError):
            to_cents("twelve")
        with pytest.raises(InvalidArgumentError):
            to_cents("0.001")
        with pytest.raises(InvalidArgumentError):
            to_cents("NaN")

    def test_require_text(self):
        assert require_text("  ledger_1 ", "Ledger id") == "ledger_1"
        with pytest.raises(InvalidArgumentError):
            require_text("   ", "Ledger id")
        with pytest.raises(InvalidArgumentError):
            require_text(None, "Ledger id")
