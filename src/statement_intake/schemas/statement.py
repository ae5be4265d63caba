"""
Canonical statement and transaction objects (SSOT).

This is THE single source of truth for statement processing data.
The parser, normalizer, processor and state store all map into/out of
these types; no other module may define a competing shape.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class StatementStatus(str, Enum):
    """Lifecycle status of an uploaded statement."""

    UPLOADED = "uploaded"
    EXTRACTED = "extracted"
    NEEDS_REVIEW = "needs_review"
    COMPLETED = "completed"
    FAILED = "failed"


class Direction(str, Enum):
    """Money flow of a transaction relative to the account."""

    DEBIT = "debit"
    CREDIT = "credit"


class DirectionSource(str, Enum):
    """How a candidate's direction was decided."""

    SIGN = "sign"
    KEYWORD = "keyword"
    DEFAULT = "default"


class InvalidTransitionError(Exception):
    """Raised when a status change is not in the transition table."""

    def __init__(self, current: StatementStatus, target: StatementStatus):
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition: {current.value} -> {target.value}")


# Closed transition table. Every status must have an entry.
# needs_review/failed/completed only leave through an explicit retry.
ALLOWED_TRANSITIONS: dict[StatementStatus, frozenset[StatementStatus]] = {
    StatementStatus.UPLOADED: frozenset(
        {StatementStatus.EXTRACTED, StatementStatus.NEEDS_REVIEW, StatementStatus.FAILED}
    ),
    StatementStatus.EXTRACTED: frozenset({StatementStatus.COMPLETED, StatementStatus.FAILED}),
    StatementStatus.NEEDS_REVIEW: frozenset({StatementStatus.UPLOADED}),
    StatementStatus.FAILED: frozenset({StatementStatus.UPLOADED}),
    StatementStatus.COMPLETED: frozenset({StatementStatus.UPLOADED}),
}

if set(ALLOWED_TRANSITIONS) != set(StatementStatus):
    raise RuntimeError("ALLOWED_TRANSITIONS must cover every StatementStatus")

# Statuses from which an explicit retry may restart the pipeline
RETRYABLE_STATUSES: frozenset[StatementStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if StatementStatus.UPLOADED in targets
)

# Statuses a pipeline run may finish in
TERMINAL_STATUSES: frozenset[StatementStatus] = frozenset(
    {StatementStatus.NEEDS_REVIEW, StatementStatus.COMPLETED, StatementStatus.FAILED}
)


def can_transition(current: StatementStatus, target: StatementStatus) -> bool:
    """Check whether current -> target is an allowed transition."""
    return target in ALLOWED_TRANSITIONS[current]


def transition(current: StatementStatus, target: StatementStatus) -> StatementStatus:
    """
    Validate a status change and return the new status.

    Raises:
        InvalidTransitionError: If the change is not in the transition table
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target


@dataclass
class TransactionCandidate:
    """
    Unvalidated transaction parsed from one line of statement text.

    Scoped to one pipeline run, never persisted. Dates and amounts are kept
    as the raw strings; resolution happens in the normalizer.
    """

    raw_date: str
    raw_description: str
    raw_amount: str
    amount: Decimal
    direction: Direction
    direction_source: DirectionSource = DirectionSource.DEFAULT
    sign: Optional[str] = None  # "+", "-" or None
    raw_balance: Optional[str] = None
    balance: Optional[Decimal] = None
    check_number: Optional[str] = None
    pattern: str = ""  # Name of the line recognizer that matched
    line_number: int = 0


@dataclass
class ParsedStatement:
    """Statement fields and transaction candidates parsed from raw text."""

    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    period: Optional[str] = None
    opening_balance: Optional[Decimal] = None
    closing_balance: Optional[Decimal] = None
    transactions: list[TransactionCandidate] = field(default_factory=list)

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (t.amount for t in self.transactions if t.direction == Direction.DEBIT),
            Decimal("0.00"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (t.amount for t in self.transactions if t.direction == Direction.CREDIT),
            Decimal("0.00"),
        )

    def summary(self) -> dict[str, Any]:
        """Summary stored on the statement (JSON-safe, no candidates)."""
        return {
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "period": self.period,
            "opening_balance": _decimal_str(self.opening_balance),
            "closing_balance": _decimal_str(self.closing_balance),
            "total_debits": _decimal_str(self.total_debits),
            "total_credits": _decimal_str(self.total_credits),
            "candidate_count": len(self.transactions),
        }


@dataclass
class TransactionRecord:
    """
    Canonical persisted transaction.

    amount is always positive; the money flow lives in direction.
    """

    statement_id: int
    date: str  # ISO format YYYY-MM-DD
    description: str
    amount: Decimal
    direction: Direction
    signature: str
    confidence: float
    balance: Optional[Decimal] = None
    check_number: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-safe dict."""
        return {
            "id": self.id,
            "statement_id": self.statement_id,
            "date": self.date,
            "description": self.description,
            "amount": _decimal_str(self.amount),
            "direction": self.direction.value,
            "balance": _decimal_str(self.balance),
            "check_number": self.check_number,
            "confidence": self.confidence,
            "signature": self.signature,
            "created_at": self.created_at,
        }


@dataclass
class StatementDocument:
    """
    One uploaded statement and its processing metadata.

    The uploader-declared fields (account_name, bank_name, month, year,
    currency) are stored verbatim and never replaced by parsed values;
    parsed values live in parsed_summary.
    """

    id: int
    storage_path: str
    account_name: str
    bank_name: str
    month: int
    year: int
    currency: str
    original_filename: str
    mime_type: str
    file_size: int
    source_hash: str  # SHA256 of the uploaded bytes
    status: StatementStatus
    current_run_id: str
    created_at: str
    updated_at: str
    extracted_text: Optional[str] = None
    parsed_summary: Optional[dict[str, Any]] = None
    extraction_provider: Optional[str] = None
    extraction_confidence: Optional[float] = None
    extracted_at: Optional[str] = None
    transactions_found: int = 0
    transactions_imported: int = 0
    processing_errors: list[str] = field(default_factory=list)

    @property
    def is_retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-safe dict (extracted text omitted)."""
        return {
            "id": self.id,
            "storage_path": self.storage_path,
            "account_name": self.account_name,
            "bank_name": self.bank_name,
            "month": self.month,
            "year": self.year,
            "currency": self.currency,
            "original_filename": self.original_filename,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "source_hash": self.source_hash,
            "status": self.status.value,
            "parsed_summary": self.parsed_summary,
            "extraction_provider": self.extraction_provider,
            "extraction_confidence": self.extraction_confidence,
            "extracted_at": self.extracted_at,
            "transactions_found": self.transactions_found,
            "transactions_imported": self.transactions_imported,
            "processing_errors": list(self.processing_errors),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return f"{value:.2f}"
