"""Cache of previously synchronized paths for one watched folder.

The cache is what lets the reconciliation engine tell a freshly created file
from a deleted one: a path that is present on one side only is a new file if
it was never synchronized, and a deletion that must be propagated if it was.
"""

import threading
from collections.abc import Iterator
from typing import Optional

from .utils import canonical_relative_path


class SyncedFileCache:
    """Mapping of relative path to the remote id last confirmed for it.

    Presence of an entry means the path was confirmed to exist on both
    sides by a previous pass. Keys are canonical POSIX relative paths.

    A single reconciliation pass fans out across worker threads, so every
    access goes through a lock.
    """

    def __init__(self, entries: Optional[dict[str, str]] = None):
        self._lock = threading.Lock()
        self._entries: dict[str, str] = {}
        for path, remote_id in (entries or {}).items():
            self._entries[canonical_relative_path(path)] = remote_id

    def get(self, path: str) -> Optional[str]:
        """Return the remote id recorded for *path*, or None."""
        key = canonical_relative_path(path)
        with self._lock:
            return self._entries.get(key)

    def set(self, path: str, remote_id: str) -> None:
        """Record that *path* is synchronized with *remote_id*."""
        key = canonical_relative_path(path)
        with self._lock:
            self._entries[key] = remote_id

    def remove(self, path: str) -> Optional[str]:
        """Forget *path*; returns the id that was recorded, if any."""
        key = canonical_relative_path(path)
        with self._lock:
            return self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def paths(self) -> list[str]:
        """Sorted list of tracked paths."""
        with self._lock:
            return sorted(self._entries)

    def to_dict(self) -> dict[str, str]:
        """Snapshot of the cache for JSON serialization."""
        with self._lock:
            return dict(sorted(self._entries.items()))

    @classmethod
    def from_dict(cls, data: Optional[dict[str, str]]) -> "SyncedFileCache":
        return cls(entries=data or {})

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        return self.get(path) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths())

    def __repr__(self) -> str:
        return f"SyncedFileCache({len(self)} entries)"
