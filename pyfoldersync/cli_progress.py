"""CLI progress display for reconciliation passes.

This module provides a Rich-based progress display that works with the
SyncProgressTracker fed by the reconciliation engine.
"""

from typing import Optional

from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

from .models import WatchedFolder
from .sync.engine import ReconciliationEngine, SyncReport
from .sync.progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker

_ACTION_LABELS = {
    "upload_local": "Uploading",
    "download_remote": "Downloading",
    "delete_local_because_remote_gone": "Deleting local",
    "delete_remote_because_local_gone": "Deleting remote",
    "create_remote_folder_then_recurse": "Creating remote folder",
    "create_local_folder_then_recurse": "Creating local folder",
}


class SyncProgressDisplay:
    """Rich-based progress display for reconciliation passes.

    Shows one summary line per pass plus one bar per running transfer;
    transfers run concurrently so several bars can be visible at once.
    """

    def __init__(self) -> None:
        self._progress: Optional[Progress] = None
        self._summary_task: Optional[TaskID] = None
        self._tasks: dict[tuple[str, str], TaskID] = {}

    def create_tracker(self) -> SyncProgressTracker:
        """Create a SyncProgressTracker that updates this display."""
        return SyncProgressTracker(callback=self._handle_event)

    def _summary(self, info: SyncProgressInfo) -> str:
        text = f"{info.transfers_completed} done"
        if info.transfers_failed:
            text += f", {info.transfers_failed} failed"
        return text

    def _handle_event(self, info: SyncProgressInfo) -> None:
        if self._progress is None:
            return
        key = (info.folder, info.path)

        if info.event == SyncProgressEvent.PASS_START:
            if self._summary_task is not None:
                self._progress.update(
                    self._summary_task,
                    description=f"Syncing {info.folder}",
                    summary=self._summary(info),
                )

        elif info.event == SyncProgressEvent.TRANSFER_START:
            label = _ACTION_LABELS.get(info.action, info.action)
            self._tasks[key] = self._progress.add_task(
                f"{label} {info.path}",
                total=info.bytes_total or None,
                summary="",
            )

        elif info.event == SyncProgressEvent.TRANSFER_PROGRESS:
            task = self._tasks.get(key)
            if task is not None:
                self._progress.update(
                    task, completed=info.bytes_done, total=info.bytes_total or None
                )

        elif info.event in (
            SyncProgressEvent.TRANSFER_COMPLETE,
            SyncProgressEvent.TRANSFER_FAILED,
        ):
            task = self._tasks.pop(key, None)
            if task is not None:
                self._progress.remove_task(task)
            if self._summary_task is not None:
                self._progress.update(self._summary_task, summary=self._summary(info))

        elif info.event == SyncProgressEvent.PASS_COMPLETE:
            if self._summary_task is not None:
                status = "aborted" if info.error else "complete"
                self._progress.update(
                    self._summary_task,
                    description=f"Sync {status}: {info.folder}",
                    summary=self._summary(info),
                )

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TextColumn("[cyan]{task.fields[summary]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._summary_task = self._progress.add_task(
            "Preparing sync...", total=None, summary=""
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._summary_task = None
            self._tasks.clear()


def run_pass_with_progress(
    engine: ReconciliationEngine, folder: WatchedFolder
) -> SyncReport:
    """Run one reconciliation pass with a Rich progress display.

    Args:
        engine: ReconciliationEngine instance
        folder: Watched folder to reconcile

    Returns:
        SyncReport of the pass
    """
    previous = engine.progress
    with SyncProgressDisplay() as display:
        engine.progress = display.create_tracker()
        try:
            return engine.reconcile(folder)
        finally:
            engine.progress = previous
