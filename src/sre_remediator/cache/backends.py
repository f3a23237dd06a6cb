"""In-memory and on-disk completion caches."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from sre_remediator.cache.base import CompletionCache

logger = logging.getLogger(__name__)


class MemoryCache(CompletionCache):
    """Thread-safe dict-backed cache, lives as long as the process."""

    def __init__(self, disabled: bool = False) -> None:
        super().__init__(disabled)
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> str | None:
        with self._lock:
            return self._entries.get(key)

    def _write(self, key: str, payload: str) -> None:
        with self._lock:
            self._entries[key] = payload

    def _delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class FileCache(CompletionCache):
    """One file per fingerprint under a cache directory; survives restarts."""

    def __init__(self, directory: Path | str, disabled: bool = False) -> None:
        super().__init__(disabled)
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        if not key.isalnum():
            raise ValueError(f"invalid cache key: {key!r}")
        return self.directory / key

    def _read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="ascii", errors="replace")

    def _write(self, key: str, payload: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(payload)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink(missing_ok=True)
        return True

    def clear(self) -> None:
        if not self.directory.exists():
            return
        for path in self.directory.iterdir():
            if path.is_file():
                path.unlink(missing_ok=True)
