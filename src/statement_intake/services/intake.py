"""
Upload intake - the boundary the front end talks to.

Validates an upload, stores the bytes, creates the statement in status
uploaded and schedules its first run. Retry and delete go through here too.
Both upload and retry return as soon as the run is scheduled.
"""

import logging
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Optional

from ..config import IntakeConfig
from ..schemas.dedupe import compute_file_hash
from ..schemas.statement import RETRYABLE_STATUSES, StatementDocument
from ..state_store import RetryConflictError, StatementNotFoundError, StateStore
from ..storage import ObjectStorage
from .processor import TRIGGER_RETRY, TRIGGER_UPLOAD
from .supervisor import ProcessingSupervisor

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class IntakeError(Exception):
    """Base exception for intake errors."""

    pass


class IntakeValidationError(IntakeError):
    """Upload rejected before anything was stored."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid upload: " + "; ".join(errors))


class RetryNotAllowedError(IntakeError):
    """Statement is not in a retryable status."""

    def __init__(self, statement_id: int, status: str):
        self.statement_id = statement_id
        self.status = status
        allowed = ", ".join(sorted(s.value for s in RETRYABLE_STATUSES))
        super().__init__(
            f"Statement {statement_id} is {status}; retry is only allowed from {allowed}"
        )


def sanitize_filename(filename: str) -> str:
    """Reduce an uploaded filename to a safe storage key component."""
    name = PurePath(filename.replace("\\", "/")).name
    name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return name or "statement"


def new_run_id() -> str:
    return uuid.uuid4().hex


class StatementIntake:
    """
    Entry point for uploads, retries and deletes.

    The supervisor is optional: without one, statements are created and
    left in uploaded for the caller to process.
    """

    def __init__(
        self,
        store: StateStore,
        storage: ObjectStorage,
        config: Optional[IntakeConfig] = None,
        supervisor: Optional[ProcessingSupervisor] = None,
    ):
        self.store = store
        self.storage = storage
        self.config = config or IntakeConfig()
        self.supervisor = supervisor

    def validate(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        account_name: str,
        month: int,
        year: int,
    ) -> list[str]:
        """Validate an upload. Returns a list of errors (empty if valid)."""
        errors: list[str] = []

        if not data:
            errors.append("file is empty")
        elif len(data) > self.config.max_file_size:
            errors.append(
                f"file exceeds maximum size of {self.config.max_file_size // (1024 * 1024)} MB"
            )

        if mime_type not in self.config.allowed_mime_types:
            errors.append(
                f"unsupported file type {mime_type!r} "
                f"(allowed: {', '.join(self.config.allowed_mime_types)})"
            )

        if not filename or not filename.strip():
            errors.append("filename is required")
        if not account_name or not account_name.strip():
            errors.append("account_name is required")
        if not isinstance(month, int) or not 1 <= month <= 12:
            errors.append("month must be between 1 and 12")
        if not isinstance(year, int) or not 1900 <= year <= 2100:
            errors.append("year must be a four-digit year")

        return errors

    def submit(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        account_name: str,
        month: int,
        year: int,
        bank_name: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> StatementDocument:
        """
        Accept an upload and schedule its first run.

        Raises:
            IntakeValidationError: If the upload is rejected
            StorageError: If the bytes could not be stored
        """
        errors = self.validate(data, filename, mime_type, account_name, month, year)
        if errors:
            raise IntakeValidationError(errors)

        source_hash = compute_file_hash(data)
        for previous in self.store.find_statements_by_hash(source_hash):
            logger.warning(
                f"Identical file already uploaded as statement {previous.id} "
                f"({previous.status.value})"
            )

        key = (
            f"statements/{year}/{month}/"
            f"{int(time.time() * 1000)}_{sanitize_filename(filename)}"
        )
        self.storage.put(key, data)

        run_id = new_run_id()
        try:
            statement = self.store.create_statement(
                storage_path=key,
                account_name=account_name.strip(),
                bank_name=(bank_name or "").strip() or self.config.default_bank_name,
                month=month,
                year=year,
                currency=(currency or self.config.default_currency).upper(),
                original_filename=filename,
                mime_type=mime_type,
                file_size=len(data),
                source_hash=source_hash,
                run_id=run_id,
            )
        except Exception:
            self.storage.delete(key)
            raise

        logger.info(f"Statement {statement.id} uploaded: {filename} ({len(data)} bytes)")

        if self.supervisor is not None:
            self.supervisor.submit(statement.id, run_id, TRIGGER_UPLOAD)
        return statement

    def retry(self, statement_id: int) -> StatementDocument:
        """
        Re-run the full pipeline for a statement from its stored bytes.

        Raises:
            StatementNotFoundError: If the statement does not exist
            RetryNotAllowedError: If the statement is not in a retryable status
        """
        run_id = new_run_id()
        timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            statement = self.store.begin_retry(
                statement_id, run_id, marker=f"Retry requested at {timestamp}"
            )
        except RetryConflictError as e:
            raise RetryNotAllowedError(statement_id, e.status.value) from e

        logger.info(f"Statement {statement_id} queued for retry (run {run_id})")

        if self.supervisor is not None:
            self.supervisor.submit(statement_id, run_id, TRIGGER_RETRY)
        return statement

    def delete(self, statement_id: int) -> StatementDocument:
        """
        Delete a statement, its transactions and its stored file.

        Raises:
            StatementNotFoundError: If the statement does not exist
        """
        statement = self.store.delete_statement(statement_id)
        if statement is None:
            raise StatementNotFoundError(statement_id)

        if not self.storage.delete(statement.storage_path):
            logger.warning(f"Stored file for statement {statement_id} was already gone")
        logger.info(f"Statement {statement_id} deleted")
        return statement
