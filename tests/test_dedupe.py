"""Tests for dedupe signature and file hash computation."""

from decimal import Decimal

import pytest

from statement_intake.schemas import (
    Direction,
    compute_file_hash,
    compute_signature,
    normalize_amount,
    normalize_description,
)


class TestSignature:
    """compute_signature."""

    def test_format(self):
        sig = compute_signature("2024-01-01", "GROCERY STORE PURCHASE", Decimal("125.5"), "debit")

        assert sig == "2024-01-01|grocery store purchase|125.50|debit"

    def test_formatting_differences_collapse(self):
        a = compute_signature("2024-01-02", "Direct  Deposit PAYROLL", "3,500.00", Direction.CREDIT)
        b = compute_signature("2024-01-02", " direct deposit payroll ", Decimal("3500"), "CREDIT")

        assert a == b

    def test_direction_distinguishes(self):
        debit = compute_signature("2024-01-01", "TRANSFER", "10.00", Direction.DEBIT)
        credit = compute_signature("2024-01-01", "TRANSFER", "10.00", Direction.CREDIT)

        assert debit != credit

    def test_deterministic(self):
        args = ("2024-03-09", "PAYMENT RECEIVED", Decimal("250.00"), Direction.CREDIT)

        assert compute_signature(*args) == compute_signature(*args)

    @pytest.mark.parametrize("bad_date", ["", "01/05/2024", "2024-1-5", "20240105"])
    def test_rejects_unresolved_date(self, bad_date):
        with pytest.raises(ValueError):
            compute_signature(bad_date, "X", "1.00", "debit")


class TestNormalizers:
    """Component normalization."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (Decimal("5"), "5.00"),
            ("1,234.5", "1234.50"),
            (12.3, "12.30"),
        ],
    )
    def test_normalize_amount(self, value, expected):
        assert normalize_amount(value) == expected

    def test_normalize_amount_rejects_other_types(self):
        with pytest.raises(ValueError):
            normalize_amount(5)

    def test_normalize_description(self):
        assert normalize_description("  Coffee\tSHOP  #12 ") == "coffee shop #12"
        assert normalize_description(None) == ""


class TestFileHash:
    def test_sha256_hex(self):
        digest = compute_file_hash(b"statement")

        assert len(digest) == 64
        assert digest == compute_file_hash(b"statement")
        assert digest != compute_file_hash(b"statement2")
