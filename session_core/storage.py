"""
Durable key-value backends for the token store.
Interface is get/set/delete on string keys; any failure raises StorageError.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from session_core.exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    """
    In-memory backend (tests, or when no durable path is configured).
    Set `available = False` to simulate a store that refuses every operation.
    """

    def __init__(self):
        self._data: dict[str, str] = {}
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StorageError("storage unavailable")

    def get(self, key: str) -> str | None:
        self._check()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check()
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._check()
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage:
    """
    One JSON document on disk holding every key. Each write replaces the whole
    file (temp file + rename) so a reader never sees a partial document.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StorageError(f"corrupt storage file {self.path}") from e
        if not isinstance(data, dict):
            raise StorageError(f"corrupt storage file {self.path}")
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".tokens-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"cannot write {self.path}: {e}") from e
        logger.debug("Wrote %d key(s) to %s", len(data), self.path)

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def delete(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)


def default_storage(path: str | None) -> StorageBackend:
    """FileStorage at path, or MemoryStorage when path is empty."""
    if path:
        return FileStorage(path)
    logger.info("No storage path configured; tokens kept in memory only")
    return MemoryStorage()
