"""Progress events emitted during reconciliation passes.

The engine reports what it is doing through a :class:`SyncProgressTracker`;
front ends (the rich-based CLI display, tests) subscribe with a callback.
Transfers run on worker threads, so the tracker serializes its counters and
callback invocations.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SyncProgressEvent(str, Enum):
    """Kinds of progress events."""

    PASS_START = "pass_start"
    PASS_COMPLETE = "pass_complete"
    TRANSFER_START = "transfer_start"
    TRANSFER_PROGRESS = "transfer_progress"
    TRANSFER_COMPLETE = "transfer_complete"
    TRANSFER_FAILED = "transfer_failed"


@dataclass
class SyncProgressInfo:
    """Snapshot passed to progress callbacks."""

    event: SyncProgressEvent
    folder: str
    """Local root of the watched folder"""

    action: str = ""
    path: str = ""
    """Relative path of the item being transferred"""

    bytes_done: int = 0
    bytes_total: int = 0

    transfers_completed: int = 0
    transfers_failed: int = 0

    error: Optional[str] = None


class SyncProgressTracker:
    """Collects transfer progress and forwards it to a callback."""

    def __init__(self, callback: Optional[Callable[[SyncProgressInfo], None]] = None):
        self.callback = callback
        self._lock = threading.Lock()
        self.transfers_completed = 0
        self.transfers_failed = 0

    def _emit(self, info: SyncProgressInfo) -> None:
        if self.callback is None:
            return
        with self._lock:
            info.transfers_completed = self.transfers_completed
            info.transfers_failed = self.transfers_failed
            self.callback(info)

    def on_pass_start(self, folder: str) -> None:
        self._emit(SyncProgressInfo(event=SyncProgressEvent.PASS_START, folder=folder))

    def on_pass_complete(self, folder: str, error: Optional[str] = None) -> None:
        self._emit(
            SyncProgressInfo(
                event=SyncProgressEvent.PASS_COMPLETE, folder=folder, error=error
            )
        )

    def on_transfer_start(
        self, folder: str, action: str, path: str, bytes_total: int = 0
    ) -> None:
        self._emit(
            SyncProgressInfo(
                event=SyncProgressEvent.TRANSFER_START,
                folder=folder,
                action=action,
                path=path,
                bytes_total=bytes_total,
            )
        )

    def transfer_callback(
        self, folder: str, action: str, path: str
    ) -> Callable[[int, int], None]:
        """Build a ``(bytes_done, bytes_total)`` callback for one transfer."""

        def _callback(bytes_done: int, bytes_total: int) -> None:
            self._emit(
                SyncProgressInfo(
                    event=SyncProgressEvent.TRANSFER_PROGRESS,
                    folder=folder,
                    action=action,
                    path=path,
                    bytes_done=bytes_done,
                    bytes_total=bytes_total,
                )
            )

        return _callback

    def on_transfer_complete(self, folder: str, action: str, path: str) -> None:
        with self._lock:
            self.transfers_completed += 1
        self._emit(
            SyncProgressInfo(
                event=SyncProgressEvent.TRANSFER_COMPLETE,
                folder=folder,
                action=action,
                path=path,
            )
        )

    def on_transfer_failed(
        self, folder: str, action: str, path: str, error: str
    ) -> None:
        with self._lock:
            self.transfers_failed += 1
        self._emit(
            SyncProgressInfo(
                event=SyncProgressEvent.TRANSFER_FAILED,
                folder=folder,
                action=action,
                path=path,
                error=error,
            )
        )
