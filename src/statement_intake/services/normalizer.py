"""
Transaction normalizer and deduplicator.

Turns parser candidates into canonical TransactionRecords:
- resolves raw dates against a reference year
- computes the dedup signature
- skips candidates already persisted for the statement, and repeats within
  the same run

Pure given the pre-loaded set of existing signatures; persistence happens
in the processor.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from ..schemas.dedupe import compute_signature
from ..schemas.statement import TransactionCandidate, TransactionRecord

logger = logging.getLogger(__name__)

DEFAULT_BASE_CONFIDENCE = 0.8

_DATE_SEPARATOR_RE = re.compile(r"[/-]")


class DateResolutionError(ValueError):
    """Raw date could not be resolved to a calendar date."""

    pass


def resolve_date(raw_date: str, reference_year: int) -> str:
    """
    Resolve a raw statement date to YYYY-MM-DD.

    - M/D uses reference_year
    - M/D/YY adds 2000 to the year
    - M/D/YYYY is used as is

    Raises:
        DateResolutionError: For any other shape or an invalid calendar date
    """
    parts = _DATE_SEPARATOR_RE.split((raw_date or "").strip())
    if not all(part.isdigit() for part in parts):
        raise DateResolutionError(f"Unrecognized date: {raw_date!r}")

    if len(parts) == 2:
        month, day = parts
        year = reference_year
    elif len(parts) == 3:
        month, day, year_str = parts
        if len(year_str) == 2:
            year = 2000 + int(year_str)
        elif len(year_str) == 4:
            year = int(year_str)
        else:
            raise DateResolutionError(f"Unrecognized year in date: {raw_date!r}")
    else:
        raise DateResolutionError(f"Unrecognized date: {raw_date!r}")

    try:
        return date(year, int(month), int(day)).isoformat()
    except ValueError as e:
        raise DateResolutionError(f"Invalid calendar date {raw_date!r}: {e}")


@dataclass
class NormalizationResult:
    """Records surviving normalization and what happened to the rest."""

    records: list[TransactionRecord] = field(default_factory=list)
    found: int = 0  # Raw candidate count
    duplicates: int = 0
    dropped: int = 0  # Unresolvable dates

    @property
    def imported(self) -> int:
        return len(self.records)


class TransactionNormalizer:
    """Normalize and deduplicate transaction candidates for one statement."""

    def __init__(
        self,
        reference_year: Optional[int] = None,
        base_confidence: float = DEFAULT_BASE_CONFIDENCE,
    ):
        self.reference_year = reference_year
        self.base_confidence = base_confidence

    def normalize(
        self,
        statement_id: int,
        candidates: list[TransactionCandidate],
        existing_signatures: Iterable[str],
        extraction_confidence: Optional[float] = None,
    ) -> NormalizationResult:
        """
        Build records for candidates not already persisted.

        Args:
            statement_id: Owning statement
            candidates: Parser output, in line order
            existing_signatures: Signatures already stored for the statement
            extraction_confidence: OCR confidence (0..1) if the provider reported one

        Returns:
            NormalizationResult with survivors in candidate order
        """
        reference_year = self.reference_year or datetime.now().year
        seen = set(existing_signatures)
        result = NormalizationResult(found=len(candidates))

        confidence = self.base_confidence
        if extraction_confidence is not None:
            confidence = round(self.base_confidence * extraction_confidence, 4)

        for candidate in candidates:
            try:
                iso_date = resolve_date(candidate.raw_date, reference_year)
            except DateResolutionError as e:
                result.dropped += 1
                logger.debug(f"Dropping candidate on line {candidate.line_number}: {e}")
                continue

            signature = compute_signature(
                iso_date,
                candidate.raw_description,
                candidate.amount,
                candidate.direction,
            )
            if signature in seen:
                result.duplicates += 1
                continue
            seen.add(signature)

            result.records.append(
                TransactionRecord(
                    statement_id=statement_id,
                    date=iso_date,
                    description=candidate.raw_description,
                    amount=candidate.amount,
                    direction=candidate.direction,
                    signature=signature,
                    confidence=confidence,
                    balance=candidate.balance,
                    check_number=candidate.check_number,
                )
            )

        logger.info(
            f"Statement {statement_id}: {result.found} candidates, "
            f"{result.imported} new, {result.duplicates} duplicates, {result.dropped} dropped"
        )
        return result
