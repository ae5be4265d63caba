"""
Filesystem-backed object storage.
"""

import logging
import os
import tempfile
from pathlib import Path

from .base import ObjectNotFoundError, ObjectStorage, StorageError

logger = logging.getLogger(__name__)


class LocalObjectStorage(ObjectStorage):
    """Stores objects as files below a root directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def put(self, key: str, data: bytes) -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file in the same directory, then rename atomically
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except OSError as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {key}")
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(key)
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()
