"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .dedupe import (
    SIGNATURE_SEPARATOR,
    compute_file_hash,
    compute_signature,
    normalize_amount,
    normalize_description,
)
from .statement import (
    ALLOWED_TRANSITIONS,
    RETRYABLE_STATUSES,
    TERMINAL_STATUSES,
    Direction,
    DirectionSource,
    InvalidTransitionError,
    ParsedStatement,
    StatementDocument,
    StatementStatus,
    TransactionCandidate,
    TransactionRecord,
    can_transition,
    transition,
)

__all__ = [
    # Statement lifecycle
    "StatementStatus",
    "StatementDocument",
    "ALLOWED_TRANSITIONS",
    "RETRYABLE_STATUSES",
    "TERMINAL_STATUSES",
    "InvalidTransitionError",
    "can_transition",
    "transition",
    # Transactions
    "Direction",
    "DirectionSource",
    "ParsedStatement",
    "TransactionCandidate",
    "TransactionRecord",
    # Dedupe
    "SIGNATURE_SEPARATOR",
    "compute_signature",
    "compute_file_hash",
    "normalize_amount",
    "normalize_description",
]
