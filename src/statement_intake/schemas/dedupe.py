"""
Dedupe signature generation (CRITICAL).

This module defines THE deterministic transaction signature.
This is the ONLY way to compute a dedup key in the system.

Signature format:
    {iso_date}|{description}|{amount}|{direction}

- iso_date = YYYY-MM-DD (resolved calendar date, not the raw statement text)
- description = whitespace-collapsed, case-folded
- amount = normalized to 2 decimal places with dot separator
- direction = debit | credit

Signatures are compared instead of database ids so that a re-extracted
logical duplicate with minor formatting differences ("1/5/24" vs
"01/05/2024", "3,500.00" vs "3500.00", double spaces) is still recognized.
The persistence layer enforces UNIQUE(statement_id, signature).
"""

import hashlib
import re
from decimal import Decimal

from .statement import Direction

# Separator between signature components
SIGNATURE_SEPARATOR = "|"

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_amount(amount: Decimal | str | float) -> str:
    """
    Normalize amount to consistent format for signatures.

    Args:
        amount: Amount in various formats

    Returns:
        Normalized amount string with 2 decimal places
    """
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", ""))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{amount:.2f}"


def normalize_description(description: str | None) -> str:
    """Normalize a description for signatures (collapse whitespace, case-fold)."""
    if not description:
        return ""
    return _WHITESPACE_RE.sub(" ", description.strip()).casefold()


def compute_signature(
    date: str,
    description: str,
    amount: Decimal | str | float,
    direction: Direction | str,
) -> str:
    """
    Compute the dedup signature for a transaction.

    Args:
        date: Resolved transaction date (YYYY-MM-DD)
        description: Transaction description
        amount: Positive transaction amount
        direction: debit or credit

    Returns:
        Signature string

    Raises:
        ValueError: If the date is not ISO formatted

    Examples:
        >>> compute_signature("2024-01-01", "GROCERY STORE PURCHASE", Decimal("125.5"), "debit")
        '2024-01-01|grocery store purchase|125.50|debit'
    """
    if not date or len(date) != 10 or date[4] != "-" or date[7] != "-":
        raise ValueError(f"date must be in YYYY-MM-DD format, got: {date}")

    direction_value = direction.value if isinstance(direction, Direction) else str(direction)

    return SIGNATURE_SEPARATOR.join(
        [
            date,
            normalize_description(description),
            normalize_amount(amount),
            direction_value.lower(),
        ]
    )


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Args:
        file_bytes: Raw file content

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()
