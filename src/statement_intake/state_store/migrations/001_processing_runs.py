"""
Migration 001: Processing runs audit table.

One row per pipeline run of a statement (upload or retry): which providers
were attempted, how the run ended, and what it imported. Rows go away with
their statement.
"""

import sqlite3

VERSION = 1
NAME = "processing_runs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create processing_runs table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS processing_runs (
            run_id TEXT PRIMARY KEY,
            statement_id INTEGER NOT NULL,
            trigger TEXT NOT NULL,             -- upload | retry
            started_at TEXT NOT NULL,
            finished_at TEXT,
            outcome TEXT,                      -- terminal status
            provider_attempts TEXT,            -- JSON array
            candidates_found INTEGER DEFAULT 0,
            transactions_imported INTEGER DEFAULT 0,
            FOREIGN KEY (statement_id) REFERENCES statements(id) ON DELETE CASCADE
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_processing_runs_statement "
        "ON processing_runs(statement_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop processing_runs table."""
    conn.execute("DROP INDEX IF EXISTS idx_processing_runs_statement")
    conn.execute("DROP TABLE IF EXISTS processing_runs")
