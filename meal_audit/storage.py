# meal_audit/storage.py
"""
Key/value stores with a finite quota.

Both stores expose the same four operations so the cache eviction policy
does not depend on where bytes actually live.
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Protocol, Union
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


class QuotaExceededError(Exception):
    """Raised by Store.set when the write would exceed the store quota"""

    def __init__(self, key: str, needed: int, quota: int):
        super().__init__(f"Writing {needed} bytes for {key!r} exceeds quota of {quota} bytes")
        self.key = key
        self.needed = needed
        self.quota = quota


class Store(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str = "") -> list[str]: ...


class InMemoryStore:
    """Process-local store. Quota counts key and value bytes."""

    def __init__(self, quota_bytes: int = 5 * 1024 * 1024):
        self.quota_bytes = quota_bytes
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _entry_size(key: str, value: bytes) -> int:
        return len(key.encode("utf-8")) + len(value)

    def used_bytes(self) -> int:
        return sum(self._entry_size(k, v) for k, v in self._data.items())

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            used = self.used_bytes()
            if key in self._data:
                used -= self._entry_size(key, self._data[key])
            needed = used + self._entry_size(key, value)
            if needed > self.quota_bytes:
                raise QuotaExceededError(key, needed, self.quota_bytes)
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list_keys(self, prefix: str = "") -> list[str]:
        return [k for k in list(self._data) if k.startswith(prefix)]


class FileStore:
    """
    One file per key under ``directory``.

    Keys are percent-encoded into file names. Writes go through a temp file
    and ``os.replace`` so a reader never sees a half-written entry. The quota
    is the total size of entry files on disk.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path], quota_bytes: int = 5 * 1024 * 1024):
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + self.SUFFIX)

    def _entry_files(self) -> list[Path]:
        return [p for p in self.directory.iterdir() if p.is_file() and p.name.endswith(self.SUFFIX)]

    def used_bytes(self) -> int:
        total = 0
        for path in self._entry_files():
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                # Deleted by a concurrent sweep
                continue
        return total

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        used = self.used_bytes()
        if path.exists():
            used -= path.stat().st_size
        needed = used + len(value)
        if needed > self.quota_bytes:
            raise QuotaExceededError(key, needed, self.quota_bytes)

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def list_keys(self, prefix: str = "") -> list[str]:
        keys = [unquote(p.name[: -len(self.SUFFIX)]) for p in self._entry_files()]
        return sorted(k for k in keys if k.startswith(prefix))
