"""
Statement text parsing.
"""

from .statement_parser import (
    CREDIT_KEYWORDS,
    DEBIT_KEYWORDS,
    KNOWN_BANKS,
    TRANSACTION_PATTERNS,
    CandidateParseError,
    LinePattern,
    StatementParser,
    infer_direction,
    parse_amount,
)

__all__ = [
    "StatementParser",
    "LinePattern",
    "TRANSACTION_PATTERNS",
    "CandidateParseError",
    "parse_amount",
    "infer_direction",
    "CREDIT_KEYWORDS",
    "DEBIT_KEYWORDS",
    "KNOWN_BANKS",
]
