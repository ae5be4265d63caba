"""
Object storage interface for uploaded statement files.
"""

from abc import ABC, abstractmethod


class StorageError(Exception):
    """Base exception for object storage errors."""

    pass


class ObjectNotFoundError(StorageError):
    """No object stored under the key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")


class ObjectStorage(ABC):
    """
    Byte storage addressed by opaque keys.

    Keys are produced by the intake service and stored on the statement, so
    a retry can re-read the original bytes without a new upload.
    """

    @abstractmethod
    def put(self, key: str, data: bytes) -> str:
        """Store bytes under key. Returns the key."""
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """
        Read the bytes stored under key.

        Raises:
            ObjectNotFoundError: If nothing is stored under key
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an object. Returns True if it existed."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass
