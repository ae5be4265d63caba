"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- upload / retry / delete: Statement lifecycle
- status / list / transactions: Read-only views
- extract-text / parse: Run one pipeline stage on a file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
