"""
Statement processing state machine.

Runs one pipeline run for a statement: extraction chain, parser,
normalizer, then the terminal transition with the atomic bulk insert.

Terminal outcomes:
- needs_review: a provider succeeded but the text is below the minimum length
- failed: every provider failed, persistence failed, or anything else raised
- completed: text extracted, parsed, normalized and persisted (zero new
  transactions is a valid completion)

A run never leaves its statement in uploaded or extracted. Every write is
conditional on the statement's current_run_id; a run that was superseded by
a retry is abandoned without touching the statement.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..extractors.chain import (
    ExtractionChain,
    ExtractionExhausted,
    LowContentExtraction,
    ProviderAttempt,
)
from ..parsing import StatementParser
from ..schemas.statement import StatementStatus
from ..state_store import PersistenceFailure, StaleRunError, StateStore
from ..storage import ObjectStorage
from .normalizer import TransactionNormalizer

logger = logging.getLogger(__name__)

TRIGGER_UPLOAD = "upload"
TRIGGER_RETRY = "retry"

# Outcome recorded for a run abandoned because a newer run took over
OUTCOME_STALE = "stale"


@dataclass
class ProcessingResult:
    """What one pipeline run did."""

    statement_id: int
    run_id: str
    status: Optional[StatementStatus] = None  # None when the run was abandoned
    provider_used: Optional[str] = None
    candidates_found: int = 0
    transactions_imported: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    attempts: list[ProviderAttempt] = field(default_factory=list)
    stale: bool = False

    @property
    def outcome(self) -> str:
        return OUTCOME_STALE if self.stale or self.status is None else self.status.value


class StatementProcessor:
    """
    Orchestrates extraction, parsing and normalization for one statement run.

    Only this class writes statement status, provenance, extracted text,
    parsed summary, counters and processing errors.
    """

    def __init__(
        self,
        store: StateStore,
        chain: ExtractionChain,
        parser: Optional[StatementParser] = None,
        normalizer: Optional[TransactionNormalizer] = None,
        storage: Optional[ObjectStorage] = None,
    ):
        self.store = store
        self.chain = chain
        self.parser = parser or StatementParser()
        self.normalizer = normalizer or TransactionNormalizer()
        self.storage = storage

    def run(self, statement_id: int, run_id: str, trigger: str = TRIGGER_UPLOAD) -> ProcessingResult:
        """
        Process a stored statement, reading its bytes from object storage.

        Used for uploads and retries alike; no artifact of an earlier run is reused.
        """
        if self.storage is None:
            raise RuntimeError("StatementProcessor.run requires object storage")

        statement = self.store.get_statement(statement_id)
        if statement is None:
            logger.warning(f"Statement {statement_id} disappeared before run {run_id}")
            return ProcessingResult(statement_id=statement_id, run_id=run_id, stale=True)

        try:
            data = self.storage.get(statement.storage_path)
        except Exception as e:
            self.store.start_processing_run(run_id, statement_id, trigger)
            result = self._fail(
                statement_id, run_id, [f"Could not read stored file: {type(e).__name__}: {e}"]
            )
            self._record_run(result)
            return result

        return self.process(statement_id, run_id, data, statement.mime_type, trigger=trigger)

    def process(
        self,
        statement_id: int,
        run_id: str,
        data: bytes,
        mime_type: str,
        trigger: str = TRIGGER_UPLOAD,
    ) -> ProcessingResult:
        """
        Run the full pipeline over document bytes.

        Args:
            statement_id: Statement being processed (must be in uploaded)
            run_id: Run id that owns the statement
            data: Document bytes
            mime_type: Declared MIME type
            trigger: upload or retry (audit only)

        Returns:
            ProcessingResult describing the terminal state
        """
        logger.info(f"Processing statement {statement_id} (run {run_id}, {trigger})")
        self.store.start_processing_run(run_id, statement_id, trigger)

        result = ProcessingResult(statement_id=statement_id, run_id=run_id)
        try:
            self._run_pipeline(result, data, mime_type)
        except StaleRunError as e:
            logger.warning(f"Abandoning run: {e}")
            result.stale = True
            result.status = None
        except Exception as e:
            logger.exception(f"Statement {statement_id} run {run_id} failed unexpectedly")
            failed = self._fail(statement_id, run_id, [f"{type(e).__name__}: {e}"])
            result.status = failed.status
            result.stale = failed.stale
            result.errors.extend(failed.errors)

        self._record_run(result)
        return result

    def _run_pipeline(self, result: ProcessingResult, data: bytes, mime_type: str) -> None:
        statement_id = result.statement_id
        run_id = result.run_id

        # 1. Extraction
        try:
            outcome = self.chain.extract(data, mime_type)
        except ExtractionExhausted as e:
            result.attempts = list(e.attempts)
            errors = [f"Extraction failed: {attempt.describe()}" for attempt in e.attempts]
            if not errors:
                errors = [f"Extraction failed: {e}"]
            self.store.mark_failed(statement_id, run_id, errors)
            result.status = StatementStatus.FAILED
            result.errors.extend(errors)
            logger.warning(f"Statement {statement_id}: all extraction providers failed")
            return

        result.attempts = list(outcome.attempts)
        result.provider_used = outcome.provider_used

        if isinstance(outcome, LowContentExtraction):
            message = (
                f"Extracted text too short for automatic processing "
                f"({outcome.content_length} characters via {outcome.provider_used}, "
                f"minimum {outcome.min_text_length}); likely a scanned document, "
                f"manual review required"
            )
            self.store.mark_needs_review(
                statement_id,
                run_id,
                text=outcome.text,
                provider=outcome.provider_used,
                confidence=outcome.confidence,
                error=message,
            )
            result.status = StatementStatus.NEEDS_REVIEW
            result.errors.append(message)
            logger.info(f"Statement {statement_id}: low content, needs review")
            return

        # 2. Parsing
        parsed = self.parser.parse(outcome.text)
        self.store.mark_extracted(
            statement_id,
            run_id,
            text=outcome.text,
            provider=outcome.provider_used,
            confidence=outcome.confidence,
            parsed_summary=parsed.summary(),
        )

        # 3. Normalization against signatures already stored (loaded once)
        existing = self.store.get_signatures(statement_id)
        normalized = self.normalizer.normalize(
            statement_id,
            parsed.transactions,
            existing,
            extraction_confidence=outcome.confidence,
        )

        # 4. Atomic bulk insert + counters + completed
        try:
            self.store.complete_run(
                statement_id, run_id, normalized.records, candidates_found=normalized.found
            )
        except PersistenceFailure as e:
            error = f"PersistenceFailure: {e}"
            self.store.mark_failed(statement_id, run_id, [error])
            result.status = StatementStatus.FAILED
            result.errors.append(error)
            logger.error(f"Statement {statement_id}: {error}")
            return

        result.status = StatementStatus.COMPLETED
        result.candidates_found = normalized.found
        result.transactions_imported = normalized.imported
        result.duplicates = normalized.duplicates
        logger.info(
            f"Statement {statement_id} completed: {normalized.imported} imported "
            f"of {normalized.found} found"
        )

    def _fail(self, statement_id: int, run_id: str, errors: list[str]) -> ProcessingResult:
        """Move the statement to failed, unless this run has been superseded."""
        result = ProcessingResult(statement_id=statement_id, run_id=run_id, errors=list(errors))
        try:
            self.store.mark_failed(statement_id, run_id, errors)
            result.status = StatementStatus.FAILED
        except StaleRunError as e:
            logger.warning(f"Abandoning run: {e}")
            result.stale = True
        return result

    def _record_run(self, result: ProcessingResult) -> None:
        self.store.finish_processing_run(
            result.run_id,
            outcome=result.outcome,
            provider_attempts=[attempt.to_dict() for attempt in result.attempts],
            candidates_found=result.candidates_found,
            transactions_imported=result.transactions_imported,
        )
