"""
Statement field parser.

Turns raw statement text into singleton statement fields (bank, account,
period, balances) and transaction candidates.

Lines are trimmed, empty lines dropped, and each line is handled on its own
in original order. Singleton fields are first-match-wins. Transaction lines
go through an ordered list of LinePattern recognizers; the first pattern
that matches a line decides how it is read.

Supported transaction line shapes (in priority order):
- date_first:              01/05 COFFEE SHOP 4.50 -
- date_first_with_balance: 01/05 COFFEE SHOP 4.50 1,234.56
- date_last:               COFFEE SHOP 4.50 - 01/05
- currency_marked:         01/05 COFFEE SHOP $4.50
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from ..schemas.statement import (
    Direction,
    DirectionSource,
    ParsedStatement,
    TransactionCandidate,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200

# M/D, M/D/YY, M/D/YYYY with slash or dash separators (kept verbatim)
DATE = r"\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?"
# 1,234.56 - thousands separators allowed, exactly two decimals
AMOUNT = r"\d[\d,]*\.\d{2}"
# Description may not end in an amount (optionally signed)
_DESC_END = r"(?<!\.\d\d)(?<!\.\d\d\s[+-])"


class CandidateParseError(ValueError):
    """A single line or field could not be parsed; the candidate is dropped."""

    pass


@dataclass(frozen=True)
class LinePattern:
    """One transaction line recognizer: a regex plus the function reading its match."""

    name: str
    regex: re.Pattern
    extractor: Callable[[re.Match], dict[str, Optional[str]]]


def _read_groups(match: re.Match) -> dict[str, Optional[str]]:
    groups = match.groupdict()
    return {
        "date": groups["date"],
        "description": groups["description"],
        "amount": groups["amount"],
        "sign": groups.get("sign") or None,
        "balance": groups.get("balance"),
    }


# Order matters: the first matching pattern wins.
TRANSACTION_PATTERNS: list[LinePattern] = [
    LinePattern(
        "date_first",
        re.compile(
            rf"^(?P<date>{DATE})\s+(?P<description>.+?){_DESC_END}\s+"
            rf"(?P<amount>{AMOUNT})\s*(?P<sign>[+-])?$"
        ),
        _read_groups,
    ),
    LinePattern(
        "date_first_with_balance",
        re.compile(
            rf"^(?P<date>{DATE})\s+(?P<description>.+?)\s+"
            rf"(?P<amount>{AMOUNT})\s*(?P<sign>[+-])?\s+(?P<balance>-?{AMOUNT})$"
        ),
        _read_groups,
    ),
    LinePattern(
        "date_last",
        re.compile(
            rf"^(?P<description>.+?)\s+(?P<amount>{AMOUNT})\s*(?P<sign>[+-])?\s+"
            rf"(?P<date>{DATE})$"
        ),
        _read_groups,
    ),
    LinePattern(
        "currency_marked",
        # Loose amount token: "$N/A" matches and is rejected by parse_amount
        re.compile(
            rf"^(?P<date>{DATE})\s+(?P<description>.+?)\s+\$\s?(?P<amount>\S+?)\s*(?P<sign>[+-])?$"
        ),
        _read_groups,
    ),
]

# Description of totals, balances, summaries and page footers
NON_TRANSACTION_RE = re.compile(
    r"\b(?:sub)?totals?\b|\bbalance\b|\bsummary\b|\bpage\s+\d+",
    re.IGNORECASE,
)

CREDIT_KEYWORDS = ("deposit", "credit", "payment received", "refund", "transfer in", "interest")
DEBIT_KEYWORDS = ("withdrawal", "debit", "payment", "purchase", "fee", "charge", "transfer out")

# Each keyword word may carry a plural or past-tense ending ("DEPOSITS", "CREDITED")
_INFLECTION = r"(?:s|es|d|ed)?"


def _keyword_regex(keywords: tuple[str, ...]) -> re.Pattern:
    alternatives = [
        (_INFLECTION + r"\s+").join(re.escape(word) for word in keyword.split())
        for keyword in keywords
    ]
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")" + _INFLECTION + r"\b", re.IGNORECASE)


_CREDIT_RE = _keyword_regex(CREDIT_KEYWORDS)
_DEBIT_RE = _keyword_regex(DEBIT_KEYWORDS)

CHECK_NUMBER_RE = re.compile(r"\b(?:check|chk)\s*(?:no\.?)?\s*#?\s*(\d{3,})\b", re.IGNORECASE)

KNOWN_BANKS = (
    "Chase",
    "Bank of America",
    "Wells Fargo",
    "Citibank",
    "Capital One",
    "PNC",
    "TD Bank",
    "US Bank",
    "JPMorgan",
    "Truist",
    "Fifth Third",
    "Huntington",
    "Regions Bank",
    "KeyBank",
    "Citizens Bank",
    "M&T Bank",
    "Ally Bank",
    "Discover Bank",
    "Synchrony",
    "American Express",
)
BANK_PATTERNS = [
    re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE) for name in KNOWN_BANKS
]

ACCOUNT_PATTERNS = [
    re.compile(r"\b(?:account|acct|card)\s+ending\s+in\s*:?\s*(\d{4,})", re.IGNORECASE),
    re.compile(
        r"\b(?:account|acct)\.?\s*(?:number|no\.?|#)?\s*[:#]?\s*((?:[*xX]{2,}[-\s]?)?\d{4,})",
        re.IGNORECASE,
    ),
    re.compile(r"(?<![\w*])([*xX]{4,}\d{4})\b"),
]

_MONTH = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"
PERIOD_PATTERNS = [
    re.compile(r"\bstatement\s+period\s*:?\s*(.+)$", re.IGNORECASE),
    re.compile(r"\bperiod\s+ending\s*:?\s*(.+)$", re.IGNORECASE),
    re.compile(r"\bfor\s+the\s+month\s+of\s*:?\s*(.+)$", re.IGNORECASE),
    re.compile(
        rf"({_MONTH}\s+\d{{1,2}},?\s+\d{{4}}\s*(?:-|to|through)\s*{_MONTH}\s+\d{{1,2}},?\s+\d{{4}})",
        re.IGNORECASE,
    ),
]

_BALANCE_VALUE = r".*?\$?\s*(?<![\d,.])(-?\d[\d,]*\.\d{2})\b"
OPENING_BALANCE_RE = re.compile(
    r"\b(?:(?:opening|beginning|previous)\s+balance|balance\s+forward)\b" + _BALANCE_VALUE,
    re.IGNORECASE,
)
CLOSING_BALANCE_RE = re.compile(
    r"\b(?:closing|ending|new|current)\s+balance\b" + _BALANCE_VALUE,
    re.IGNORECASE,
)

_CURRENCY_CHARS_RE = re.compile(r"[$€£,\s]")


def parse_amount(raw: str) -> Decimal:
    """
    Parse a transaction amount string.

    Currency symbols and thousands separators are stripped.

    Raises:
        CandidateParseError: If the amount is not a positive number
    """
    cleaned = _CURRENCY_CHARS_RE.sub("", raw or "")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise CandidateParseError(f"Unparseable amount: {raw!r}")
    if not amount.is_finite() or amount <= 0:
        raise CandidateParseError(f"Amount must be positive: {raw!r}")
    return amount.quantize(Decimal("0.01"))


def _parse_balance(raw: str) -> Decimal:
    cleaned = _CURRENCY_CHARS_RE.sub("", raw)
    try:
        return Decimal(cleaned).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise CandidateParseError(f"Unparseable balance: {raw!r}")


def infer_direction(description: str, sign: Optional[str]) -> tuple[Direction, DirectionSource]:
    """
    Decide debit/credit for a candidate.

    Order: explicit sign, then credit keywords, then debit keywords,
    otherwise debit.
    """
    if sign == "+":
        return Direction.CREDIT, DirectionSource.SIGN
    if sign == "-":
        return Direction.DEBIT, DirectionSource.SIGN
    if _CREDIT_RE.search(description):
        return Direction.CREDIT, DirectionSource.KEYWORD
    if _DEBIT_RE.search(description):
        return Direction.DEBIT, DirectionSource.KEYWORD
    return Direction.DEBIT, DirectionSource.DEFAULT


def _first_group(patterns: list[re.Pattern], line: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(line)
        if match:
            return match.group(1).strip()
    return None


class StatementParser:
    """
    Parse raw statement text.

    Pure and deterministic: the same text always yields the same result.
    """

    def __init__(self, patterns: Optional[list[LinePattern]] = None):
        self.patterns = list(patterns) if patterns is not None else list(TRANSACTION_PATTERNS)

    def parse(self, raw_text: str) -> ParsedStatement:
        """Parse statement text into fields and transaction candidates."""
        result = ParsedStatement()
        lines = [line.strip() for line in (raw_text or "").splitlines()]
        lines = [line for line in lines if line]

        dropped = 0
        for line_number, line in enumerate(lines, start=1):
            self._scan_fields(line, result)

            try:
                candidate = self.parse_line(line, line_number)
            except CandidateParseError as e:
                dropped += 1
                logger.debug(f"Line {line_number} dropped: {e}")
                continue

            if candidate is not None:
                result.transactions.append(candidate)

        logger.debug(
            f"Parsed {len(lines)} lines: {len(result.transactions)} candidates, {dropped} dropped"
        )
        return result

    def parse_line(self, line: str, line_number: int = 0) -> Optional[TransactionCandidate]:
        """
        Read one line as a transaction candidate.

        Returns:
            TransactionCandidate, or None if no pattern matches or the line
            is a total/balance/summary line

        Raises:
            CandidateParseError: If a pattern matched but the amount is unusable
        """
        for pattern in self.patterns:
            match = pattern.regex.match(line)
            if not match:
                continue
            fields = pattern.extractor(match)
            return self._build_candidate(fields, pattern.name, line_number)
        return None

    def _build_candidate(
        self, fields: dict[str, Any], pattern_name: str, line_number: int
    ) -> Optional[TransactionCandidate]:
        description = " ".join(fields["description"].split())
        if NON_TRANSACTION_RE.search(description):
            return None

        amount = parse_amount(fields["amount"])
        sign = fields["sign"]
        direction, source = infer_direction(description, sign)

        raw_balance = fields["balance"]
        balance = _parse_balance(raw_balance) if raw_balance else None

        check_match = CHECK_NUMBER_RE.search(description)

        return TransactionCandidate(
            raw_date=fields["date"],
            raw_description=description[:MAX_DESCRIPTION_LENGTH].strip(),
            raw_amount=fields["amount"],
            amount=amount,
            direction=direction,
            direction_source=source,
            sign=sign,
            raw_balance=raw_balance,
            balance=balance,
            check_number=check_match.group(1) if check_match else None,
            pattern=pattern_name,
            line_number=line_number,
        )

    def _scan_fields(self, line: str, result: ParsedStatement) -> None:
        """Fill singleton fields still unset from this line (any line, first match wins)."""
        if result.bank_name is None:
            result.bank_name = self._match_bank(line)
        if result.account_number is None:
            result.account_number = _first_group(ACCOUNT_PATTERNS, line)
        if result.period is None:
            result.period = _first_group(PERIOD_PATTERNS, line)
        if result.opening_balance is None:
            match = OPENING_BALANCE_RE.search(line)
            if match:
                result.opening_balance = _parse_balance(match.group(1))
        if result.closing_balance is None:
            match = CLOSING_BALANCE_RE.search(line)
            if match:
                result.closing_balance = _parse_balance(match.group(1))

    @staticmethod
    def _match_bank(line: str) -> Optional[str]:
        for pattern in BANK_PATTERNS:
            match = pattern.search(line)
            if match:
                return match.group(0)
        return None
