"""
Object storage for uploaded statement files.
"""

from .base import ObjectNotFoundError, ObjectStorage, StorageError
from .local import LocalObjectStorage

__all__ = ["ObjectStorage", "LocalObjectStorage", "StorageError", "ObjectNotFoundError"]
