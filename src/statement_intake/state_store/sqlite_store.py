"""
SQLite-based state store implementation.

Tables:
- statements: Uploaded statements and their processing state
- transactions: Imported transactions, owned by a statement
- processing_runs: One audit row per pipeline run (migration 001)

Every processor write is guarded by the statement's current_run_id, so a
superseded run can never overwrite the state of a later run.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..schemas.statement import (
    Direction,
    StatementDocument,
    StatementStatus,
    TransactionRecord,
    transition,
)

logger = logging.getLogger(__name__)


class StateStoreError(Exception):
    """Base exception for state store errors."""

    pass


class StatementNotFoundError(StateStoreError):
    """Statement id does not exist."""

    def __init__(self, statement_id: int):
        self.statement_id = statement_id
        super().__init__(f"Statement {statement_id} not found")


class StaleRunError(StateStoreError):
    """A write was attempted by a run that is no longer the statement's current run."""

    def __init__(self, statement_id: int, run_id: str, current_run_id: str):
        self.statement_id = statement_id
        self.run_id = run_id
        self.current_run_id = current_run_id
        super().__init__(
            f"Run {run_id} is stale for statement {statement_id} (current run: {current_run_id})"
        )


class RetryConflictError(StateStoreError):
    """Statement is not in a retryable status."""

    def __init__(self, statement_id: int, status: StatementStatus):
        self.statement_id = statement_id
        self.status = status
        super().__init__(f"Statement {statement_id} is {status.value}, not retryable")


class PersistenceFailure(StateStoreError):
    """Bulk insert of a run's transactions failed; nothing was written."""

    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _statement_from_row(row: sqlite3.Row) -> StatementDocument:
    return StatementDocument(
        id=row["id"],
        storage_path=row["storage_path"],
        account_name=row["account_name"],
        bank_name=row["bank_name"],
        month=row["month"],
        year=row["year"],
        currency=row["currency"],
        original_filename=row["original_filename"],
        mime_type=row["mime_type"],
        file_size=row["file_size"],
        source_hash=row["source_hash"],
        status=StatementStatus(row["status"]),
        current_run_id=row["current_run_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        extracted_text=row["extracted_text"],
        parsed_summary=json.loads(row["parsed_summary"]) if row["parsed_summary"] else None,
        extraction_provider=row["extraction_provider"],
        extraction_confidence=row["extraction_confidence"],
        extracted_at=row["extracted_at"],
        transactions_found=row["transactions_found"],
        transactions_imported=row["transactions_imported"],
        processing_errors=json.loads(row["processing_errors"]) if row["processing_errors"] else [],
    )


def _transaction_from_row(row: sqlite3.Row) -> TransactionRecord:
    return TransactionRecord(
        id=row["id"],
        statement_id=row["statement_id"],
        date=row["date"],
        description=row["description"],
        amount=Decimal(row["amount"]),
        direction=Direction(row["direction"]),
        signature=row["signature"],
        confidence=row["confidence"],
        balance=Decimal(row["balance"]) if row["balance"] is not None else None,
        check_number=row["check_number"],
        created_at=row["created_at"],
    )


@dataclass
class ProcessingRunRecord:
    """Audit record of one pipeline run."""

    run_id: str
    statement_id: int
    trigger: str  # upload | retry
    started_at: str
    finished_at: str | None
    outcome: str | None  # Terminal status, None while running
    provider_attempts: list[dict[str, Any]]
    candidates_found: int
    transactions_imported: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProcessingRunRecord":
        """Create from database row."""
        return cls(
            run_id=row["run_id"],
            statement_id=row["statement_id"],
            trigger=row["trigger"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            outcome=row["outcome"],
            provider_attempts=(
                json.loads(row["provider_attempts"]) if row["provider_attempts"] else []
            ),
            candidates_found=row["candidates_found"] or 0,
            transactions_imported=row["transactions_imported"] or 0,
        )


class StateStore:
    """
    SQLite-based state store for statement processing.

    Provides persistent tracking of:
    - Statements and their lifecycle status
    - Imported transactions (UNIQUE per statement and signature)
    - Processing runs (audit trail)

    Uses one connection per operation; write transactions take the
    database write lock up front (BEGIN IMMEDIATE) so concurrent runs
    serialize their read-check-write sequences.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS statements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    storage_path TEXT NOT NULL,
                    account_name TEXT NOT NULL,
                    bank_name TEXT NOT NULL,
                    month INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    original_filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    source_hash TEXT NOT NULL,
                    status TEXT NOT NULL,
                    current_run_id TEXT NOT NULL,
                    extracted_text TEXT,
                    parsed_summary TEXT,  -- JSON object
                    extraction_provider TEXT,
                    extraction_confidence REAL,
                    extracted_at TEXT,
                    transactions_found INTEGER NOT NULL DEFAULT 0,
                    transactions_imported INTEGER NOT NULL DEFAULT 0,
                    processing_errors TEXT NOT NULL DEFAULT '[]',  -- JSON array, append-only
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (transactions_imported <= transactions_found)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    statement_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    description TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    balance TEXT,
                    check_number TEXT,
                    confidence REAL NOT NULL,
                    signature TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (statement_id, signature),
                    FOREIGN KEY (statement_id) REFERENCES statements(id) ON DELETE CASCADE
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_statements_status ON statements(status)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_statements_source_hash ON statements(source_hash)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_statement_id "
                "ON transactions(statement_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Statement methods

    def create_statement(
        self,
        storage_path: str,
        account_name: str,
        bank_name: str,
        month: int,
        year: int,
        currency: str,
        original_filename: str,
        mime_type: str,
        file_size: int,
        source_hash: str,
        run_id: str,
    ) -> StatementDocument:
        """Create a statement in status uploaded."""
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO statements (
                    storage_path, account_name, bank_name, month, year, currency,
                    original_filename, mime_type, file_size, source_hash,
                    status, current_run_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    storage_path,
                    account_name,
                    bank_name,
                    month,
                    year,
                    currency,
                    original_filename,
                    mime_type,
                    file_size,
                    source_hash,
                    StatementStatus.UPLOADED.value,
                    run_id,
                    now,
                    now,
                ),
            )
            statement_id = cursor.lastrowid
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            return _statement_from_row(row)

    def get_statement(self, statement_id: int) -> StatementDocument | None:
        """Get statement by id."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            return _statement_from_row(row) if row else None

    def list_statements(
        self, status: StatementStatus | None = None, limit: int | None = None
    ) -> list[StatementDocument]:
        """List statements, newest first, optionally filtered by status."""
        query = "SELECT * FROM statements"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_statement_from_row(row) for row in rows]

    def find_statements_by_hash(self, source_hash: str) -> list[StatementDocument]:
        """Statements uploaded with identical bytes."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM statements WHERE source_hash = ? ORDER BY id", (source_hash,)
            ).fetchall()
            return [_statement_from_row(row) for row in rows]

    def delete_statement(self, statement_id: int) -> StatementDocument | None:
        """
        Delete a statement and (by cascade) its transactions and runs.

        Returns the deleted statement, None if it did not exist.
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM statements WHERE id = ?", (statement_id,))
            return _statement_from_row(row)

    def begin_retry(self, statement_id: int, new_run_id: str, marker: str) -> StatementDocument:
        """
        Move a retryable statement back to uploaded under a new run id.

        The status check and the update happen under one write lock, so two
        concurrent retries cannot both succeed. processing_errors is never
        cleared; the marker is appended.

        Raises:
            StatementNotFoundError: If the statement does not exist
            RetryConflictError: If the statement is not in a retryable status
        """
        with self._transaction(immediate=True) as conn:
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            if not row:
                raise StatementNotFoundError(statement_id)

            statement = _statement_from_row(row)
            if not statement.is_retryable:
                raise RetryConflictError(statement_id, statement.status)
            transition(statement.status, StatementStatus.UPLOADED)

            errors = json.loads(row["processing_errors"] or "[]")
            errors.append(marker)

            conn.execute(
                """
                UPDATE statements
                SET status = ?, current_run_id = ?, processing_errors = ?, updated_at = ?
                WHERE id = ?
            """,
                (
                    StatementStatus.UPLOADED.value,
                    new_run_id,
                    json.dumps(errors),
                    _now(),
                    statement_id,
                ),
            )
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            return _statement_from_row(row)

    # Run-guarded processor writes

    def _guarded_update(
        self,
        conn: sqlite3.Connection,
        statement_id: int,
        run_id: str,
        target: StatementStatus,
        fields: dict[str, Any],
        new_errors: list[str] | None = None,
    ) -> StatementStatus:
        """
        Apply a status transition owned by run_id.

        Must be called inside an immediate transaction. Returns the previous status.
        """
        row = conn.execute(
            "SELECT status, current_run_id, processing_errors FROM statements WHERE id = ?",
            (statement_id,),
        ).fetchone()
        if not row:
            raise StatementNotFoundError(statement_id)
        if row["current_run_id"] != run_id:
            raise StaleRunError(statement_id, run_id, row["current_run_id"])

        current = StatementStatus(row["status"])
        transition(current, target)

        updates = dict(fields)
        updates["status"] = target.value
        updates["updated_at"] = _now()
        if new_errors:
            errors = json.loads(row["processing_errors"] or "[]")
            errors.extend(new_errors)
            updates["processing_errors"] = json.dumps(errors)

        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn.execute(
            f"UPDATE statements SET {assignments} WHERE id = ? AND current_run_id = ?",
            (*updates.values(), statement_id, run_id),
        )
        return current

    def mark_extracted(
        self,
        statement_id: int,
        run_id: str,
        text: str,
        provider: str,
        confidence: float | None,
        parsed_summary: dict[str, Any],
    ) -> None:
        """uploaded -> extracted, storing text, provenance and parsed summary."""
        with self._transaction(immediate=True) as conn:
            self._guarded_update(
                conn,
                statement_id,
                run_id,
                StatementStatus.EXTRACTED,
                {
                    "extracted_text": text,
                    "extraction_provider": provider,
                    "extraction_confidence": confidence,
                    "parsed_summary": json.dumps(parsed_summary),
                    "extracted_at": _now(),
                },
            )

    def mark_needs_review(
        self,
        statement_id: int,
        run_id: str,
        text: str,
        provider: str,
        confidence: float | None,
        error: str,
    ) -> None:
        """uploaded -> needs_review, keeping the short text for the reviewer."""
        with self._transaction(immediate=True) as conn:
            self._guarded_update(
                conn,
                statement_id,
                run_id,
                StatementStatus.NEEDS_REVIEW,
                {
                    "extracted_text": text,
                    "extraction_provider": provider,
                    "extraction_confidence": confidence,
                    "extracted_at": _now(),
                },
                new_errors=[error],
            )

    def mark_failed(self, statement_id: int, run_id: str, errors: list[str]) -> None:
        """uploaded/extracted -> failed, appending the errors."""
        with self._transaction(immediate=True) as conn:
            self._guarded_update(
                conn, statement_id, run_id, StatementStatus.FAILED, {}, new_errors=errors
            )

    def complete_run(
        self,
        statement_id: int,
        run_id: str,
        records: list[TransactionRecord],
        candidates_found: int,
    ) -> None:
        """
        extracted -> completed with the run's transactions, all or nothing.

        Inserts every record, increments transactions_found by the candidate
        count and transactions_imported by the number of records, and sets
        the status in a single transaction.

        Raises:
            StaleRunError: If run_id is no longer current
            PersistenceFailure: If the insert failed (nothing was written)
        """
        now = _now()
        try:
            with self._transaction(immediate=True) as conn:
                self._guarded_update(
                    conn, statement_id, run_id, StatementStatus.COMPLETED, {}
                )
                conn.executemany(
                    """
                    INSERT INTO transactions (
                        statement_id, date, description, amount, direction,
                        balance, check_number, confidence, signature, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    [
                        (
                            statement_id,
                            record.date,
                            record.description,
                            f"{record.amount:.2f}",
                            record.direction.value,
                            f"{record.balance:.2f}" if record.balance is not None else None,
                            record.check_number,
                            record.confidence,
                            record.signature,
                            now,
                        )
                        for record in records
                    ],
                )
                conn.execute(
                    """
                    UPDATE statements
                    SET transactions_found = transactions_found + ?,
                        transactions_imported = transactions_imported + ?
                    WHERE id = ?
                """,
                    (candidates_found, len(records), statement_id),
                )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Bulk insert for statement {statement_id} failed: {e}") from e

        logger.info(
            f"Statement {statement_id}: stored {len(records)} transactions "
            f"({candidates_found} candidates)"
        )

    # Transaction methods

    def get_signatures(self, statement_id: int) -> set[str]:
        """All dedup signatures already stored for a statement."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT signature FROM transactions WHERE statement_id = ?", (statement_id,)
            ).fetchall()
            return {row["signature"] for row in rows}

    def get_transactions(self, statement_id: int) -> list[TransactionRecord]:
        """Transactions of a statement in insertion order."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE statement_id = ? ORDER BY id", (statement_id,)
            ).fetchall()
            return [_transaction_from_row(row) for row in rows]

    # Processing run audit

    def start_processing_run(self, run_id: str, statement_id: int, trigger: str) -> None:
        """Record the start of a pipeline run."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO processing_runs (run_id, statement_id, trigger, started_at)
                VALUES (?, ?, ?, ?)
            """,
                (run_id, statement_id, trigger, _now()),
            )

    def finish_processing_run(
        self,
        run_id: str,
        outcome: str,
        provider_attempts: list[dict[str, Any]],
        candidates_found: int = 0,
        transactions_imported: int = 0,
    ) -> None:
        """Record the end of a pipeline run."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE processing_runs
                SET finished_at = ?, outcome = ?, provider_attempts = ?,
                    candidates_found = ?, transactions_imported = ?
                WHERE run_id = ?
            """,
                (
                    _now(),
                    outcome,
                    json.dumps(provider_attempts),
                    candidates_found,
                    transactions_imported,
                    run_id,
                ),
            )

    def get_processing_runs(self, statement_id: int) -> list[ProcessingRunRecord]:
        """Runs of a statement, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM processing_runs WHERE statement_id = ? ORDER BY started_at, rowid",
                (statement_id,),
            ).fetchall()
            return [ProcessingRunRecord.from_row(row) for row in rows]

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._transaction() as conn:
            status_rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM statements GROUP BY status"
            ).fetchall()
            totals = conn.execute(
                """
                SELECT COUNT(*) AS statements,
                       COALESCE(SUM(transactions_found), 0) AS found,
                       COALESCE(SUM(transactions_imported), 0) AS imported
                FROM statements
            """
            ).fetchone()

            by_status = {status.value: 0 for status in StatementStatus}
            for row in status_rows:
                by_status[row["status"]] = row["n"]

            return {
                "statements": totals["statements"],
                "by_status": by_status,
                "transactions_found": totals["found"],
                "transactions_imported": totals["imported"],
            }
