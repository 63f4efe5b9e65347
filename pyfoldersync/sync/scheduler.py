"""Scheduling of reconciliation passes for watched folders.

Passes are triggered by filesystem changes (debounced per folder), by a
periodic poll that catches remote-side changes, or explicitly. A folder
never runs two passes at once: a request that arrives while its pass is
running is dropped, and the next change or poll picks up whatever it
would have done.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Optional

from ..models import WatchedFolder
from ..utils import DEFAULT_DEBOUNCE_SECONDS, DEFAULT_POLL_INTERVAL
from .engine import ReconciliationEngine, SyncReport
from .state import Persistence
from .watcher import ChangeSource

logger = logging.getLogger(__name__)

DEFAULT_FOLDER_WORKERS = 4


class FolderState(str, Enum):
    """Scheduling state of a watched folder."""

    IDLE = "idle"
    RECONCILING = "reconciling"


class SyncScheduler:
    """Decides when each watched folder is reconciled.

    Examples:
        >>> scheduler = SyncScheduler(engine, persistence, WatchfilesChangeSource())
        >>> for folder in persistence.load():
        ...     scheduler.add_folder(folder, persist=False)
        >>> scheduler.start()
        >>> scheduler.stop()
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        persistence: Optional[Persistence] = None,
        change_source: Optional[ChangeSource] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_workers: int = DEFAULT_FOLDER_WORKERS,
        on_report: Optional[Callable[[WatchedFolder, SyncReport], None]] = None,
    ):
        """Initialize scheduler.

        Args:
            engine: Engine running the passes
            persistence: Storage notified of added and removed folders
            change_source: Filesystem change notifications (None disables watching)
            debounce_seconds: Quiet period after the last change before a pass
            poll_interval: Seconds between periodic passes (0 disables polling)
            max_workers: Number of folders reconciled concurrently
            on_report: Called with the report of every finished pass
        """
        self.engine = engine
        self.persistence = persistence
        self.change_source = change_source
        self.debounce_seconds = debounce_seconds
        self.poll_interval = poll_interval
        self.on_report = on_report

        self._lock = threading.RLock()
        self._folders: dict[str, WatchedFolder] = {}
        self._states: dict[str, FolderState] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._handles: dict[str, Any] = {}
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="folder-sync"
        )
        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None
        self._running = False
        self._closed = False

    # =========================
    # Folder management
    # =========================

    @property
    def folders(self) -> list[WatchedFolder]:
        with self._lock:
            return list(self._folders.values())

    def get_folder(self, folder_id: str) -> Optional[WatchedFolder]:
        with self._lock:
            return self._folders.get(folder_id)

    def state(self, folder_id: str) -> Optional[FolderState]:
        with self._lock:
            return self._states.get(folder_id)

    def add_folder(self, folder: WatchedFolder, persist: bool = True) -> None:
        """Register a folder, persist it and start watching it."""
        with self._lock:
            self._folders[folder.id] = folder
            self._states.setdefault(folder.id, FolderState.IDLE)
            if self._running and folder.enabled:
                self._watch(folder)
        if persist and self.persistence is not None:
            self.persistence.save(folder)
        logger.info("Added watched folder %s", folder.display_name)

    def remove_folder(self, folder_id: str) -> Optional[WatchedFolder]:
        """Stop watching a folder and discard it with its cache.

        A pass that is already running finishes, but its result is not kept.
        """
        with self._lock:
            folder = self._folders.pop(folder_id, None)
            self._cancel_timer(folder_id)
            handle = self._handles.pop(folder_id, None)
            if self._states.get(folder_id) != FolderState.RECONCILING:
                self._states.pop(folder_id, None)
        self._unwatch(handle)
        if folder is None:
            logger.debug("Folder %s is not registered", folder_id)
            return None
        folder.synced_files.clear()
        if self.persistence is not None:
            self.persistence.remove(folder_id)
        logger.info("Removed watched folder %s", folder.local_path)
        return folder

    def enable_folder(self, folder_id: str) -> None:
        folder = self._set_enabled(folder_id, True)
        if folder is not None and self._running:
            self.request_sync(folder_id)

    def disable_folder(self, folder_id: str) -> None:
        """Disable a folder. A pass that is already running finishes."""
        self._set_enabled(folder_id, False)

    def _set_enabled(self, folder_id: str, enabled: bool) -> Optional[WatchedFolder]:
        handle = None
        with self._lock:
            folder = self._folders.get(folder_id)
            if folder is None:
                logger.warning("Cannot change unknown folder %s", folder_id)
                return None
            folder.enabled = enabled
            if enabled:
                if self._running:
                    self._watch(folder)
            else:
                self._cancel_timer(folder_id)
                handle = self._handles.pop(folder_id, None)
        self._unwatch(handle)
        if self.persistence is not None:
            self.persistence.save(folder)
        logger.info(
            "%s %s", "Enabled" if enabled else "Disabled", folder.local_path
        )
        return folder

    # =========================
    # Triggers
    # =========================

    def notify_change(self, folder_id: str) -> None:
        """Restart the debounce timer of a folder after a local change."""
        with self._lock:
            folder = self._folders.get(folder_id)
            if folder is None or not folder.enabled or self._closed:
                return
            self._cancel_timer(folder_id)
            timer = threading.Timer(
                self.debounce_seconds, self._debounce_elapsed, args=(folder_id,)
            )
            timer.daemon = True
            self._timers[folder_id] = timer
            timer.start()
        logger.debug("Change in %s, pass in %.1fs", folder.local_path, self.debounce_seconds)

    def sync_now(self, folder_id: str) -> Optional[Future]:
        """Request a pass immediately, skipping the debounce window."""
        with self._lock:
            self._cancel_timer(folder_id)
        return self.request_sync(folder_id)

    def sync_all(self) -> list[Future]:
        """Request a pass for every enabled folder."""
        futures = []
        for folder in self.folders:
            if folder.enabled:
                future = self.request_sync(folder.id)
                if future is not None:
                    futures.append(future)
        return futures

    def request_sync(self, folder_id: str) -> Optional[Future]:
        """Start a pass unless the folder is disabled or already reconciling.

        Returns:
            Future of the pass, or None if the request was dropped
        """
        with self._lock:
            folder = self._folders.get(folder_id)
            if folder is None or self._closed:
                return None
            if not folder.enabled:
                logger.debug("Skipping disabled folder %s", folder.local_path)
                return None
            if self._states.get(folder_id) == FolderState.RECONCILING:
                logger.debug("Pass already running for %s, dropping request", folder.local_path)
                return None
            self._states[folder_id] = FolderState.RECONCILING
            return self._pool.submit(self._run_pass, folder)

    def _debounce_elapsed(self, folder_id: str) -> None:
        with self._lock:
            self._timers.pop(folder_id, None)
        self.request_sync(folder_id)

    def _run_pass(self, folder: WatchedFolder) -> SyncReport:
        try:
            report = self.engine.reconcile(folder)
        except Exception as e:
            logger.exception("Pass for %s failed", folder.local_path)
            report = SyncReport(
                folder_id=folder.id,
                local_path=str(folder.local_path),
                error=f"Unexpected error: {e}",
            )
        finally:
            with self._lock:
                removed = folder.id not in self._folders
                if removed:
                    self._states.pop(folder.id, None)
                else:
                    self._states[folder.id] = FolderState.IDLE
            if removed and self.persistence is not None:
                # The pass saved the folder while it was being removed
                self.persistence.remove(folder.id)
        if self.on_report is not None:
            try:
                self.on_report(folder, report)
            except Exception:
                logger.exception("Report callback failed for %s", folder.local_path)
        return report

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> None:
        """Start watching, polling, and run an initial pass for every enabled folder."""
        with self._lock:
            if self._running:
                return
            if self._closed:
                raise RuntimeError("Scheduler has been stopped")
            self._running = True
            for folder in self._folders.values():
                if folder.enabled:
                    self._watch(folder)
        if self.poll_interval > 0:
            self._poll_thread = threading.Thread(
                target=self._poll_loop, name="folder-sync-poll", daemon=True
            )
            self._poll_thread.start()
        logger.info("Scheduler started with %d folder(s)", len(self.folders))
        self.sync_all()

    def stop(self, wait: bool = True) -> None:
        """Stop all timers, watchers and the poll loop.

        Args:
            wait: Wait for running passes to finish
        """
        with self._lock:
            self._closed = True
            self._running = False
            for folder_id in list(self._timers):
                self._cancel_timer(folder_id)
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            self._unwatch(handle)
        self._stop_event.set()
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=5)
            self._poll_thread = None
        self._pool.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            logger.debug("Periodic pass for all enabled folders")
            self.sync_all()

    # =========================
    # Helpers
    # =========================

    def _cancel_timer(self, folder_id: str) -> None:
        timer = self._timers.pop(folder_id, None)
        if timer is not None:
            timer.cancel()

    def _watch(self, folder: WatchedFolder) -> None:
        if self.change_source is None or folder.id in self._handles:
            return
        folder_id = folder.id
        try:
            self._handles[folder_id] = self.change_source.subscribe(
                folder.local_path, lambda: self.notify_change(folder_id)
            )
        except OSError as e:
            logger.warning("Cannot watch %s: %s", folder.local_path, e)

    def _unwatch(self, handle: Any) -> None:
        # Called without the lock: unsubscribing joins the watcher thread
        if handle is not None and self.change_source is not None:
            self.change_source.unsubscribe(handle)
