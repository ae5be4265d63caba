"""
Database migrations for the SQLite state store.

Migrations are applied in version order and tracked in the migrations table.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
