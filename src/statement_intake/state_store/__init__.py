"""
Persistence for statements, transactions and processing runs.
"""

from .sqlite_store import (
    PersistenceFailure,
    ProcessingRunRecord,
    RetryConflictError,
    StaleRunError,
    StatementNotFoundError,
    StateStore,
    StateStoreError,
)

__all__ = [
    "StateStore",
    "StateStoreError",
    "StatementNotFoundError",
    "StaleRunError",
    "RetryConflictError",
    "PersistenceFailure",
    "ProcessingRunRecord",
]
