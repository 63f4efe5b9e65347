"""Reconciliation engine: two-way sync of one watched folder."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..exceptions import AuthError, FolderSyncError, LocalIOError, TypeConflictError
from ..models import RemoteItem, WatchedFolder
from .comparator import DirectoryComparator, ReconcileAction, ReconcileDecision
from .operations import TransferExecutor, TransferResult
from .progress import SyncProgressTracker
from .scanner import DirectoryScanner, LocalEntry
from .state import Persistence

logger = logging.getLogger(__name__)

# Maximum number of concurrent transfers started for one directory level
DEFAULT_LEVEL_WORKERS = 8


def _create_empty_stats() -> dict[str, int]:
    """Create an empty statistics dictionary."""
    return {
        "uploads": 0,
        "downloads": 0,
        "deletes_local": 0,
        "deletes_remote": 0,
        "folders_created_remote": 0,
        "folders_created_local": 0,
        "backfills": 0,
        "skips": 0,
        "conflicts": 0,
        "failures": 0,
    }


_SUCCESS_STAT = {
    ReconcileAction.UPLOAD: "uploads",
    ReconcileAction.DOWNLOAD: "downloads",
    ReconcileAction.DELETE_LOCAL: "deletes_local",
    ReconcileAction.DELETE_REMOTE: "deletes_remote",
    ReconcileAction.CREATE_REMOTE_FOLDER: "folders_created_remote",
    ReconcileAction.CREATE_LOCAL_FOLDER: "folders_created_local",
}


@dataclass
class SyncReport:
    """Outcome of one reconciliation pass."""

    folder_id: str
    local_path: str
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: Optional[str] = None
    stats: dict[str, int] = field(default_factory=_create_empty_stats)
    decisions: list[ReconcileDecision] = field(default_factory=list)
    """Every decision taken during the pass, in completion order"""

    failures: list[TransferResult] = field(default_factory=list)
    error: Optional[str] = None
    """Set when the pass was aborted"""

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def transfer_decisions(self) -> list[ReconcileDecision]:
        """Decisions that mutate one of the two sides."""
        return [d for d in self.decisions if d.action.is_transfer]

    def actions(self, action: ReconcileAction) -> list[ReconcileDecision]:
        return [d for d in self.decisions if d.action == action]


class _PassContext:
    """Mutable state shared by the threads of one pass."""

    def __init__(self, folder: WatchedFolder, report: SyncReport):
        self.folder = folder
        self.report = report
        self.lock = threading.Lock()
        self.abort = threading.Event()

    def record(self, decision: ReconcileDecision) -> None:
        with self.lock:
            self.report.decisions.append(decision)

    def count(self, stat: str) -> None:
        with self.lock:
            self.report.stats[stat] += 1

    def fail(self, result: TransferResult) -> None:
        with self.lock:
            self.report.stats["failures"] += 1
            self.report.failures.append(result)


@dataclass
class _Subtree:
    """A child folder to reconcile once its level has fanned in."""

    decision: ReconcileDecision
    local_dir: Path
    remote_id: str
    remote_children: Optional[dict[str, RemoteItem]] = None
    """Known listing (empty for a folder created this pass), None to list it"""


class ReconciliationEngine:
    """Compares a watched folder with its remote counterpart and syncs both ways.

    For every directory level the engine lists the local and remote
    children, classifies each name with :class:`DirectoryComparator`, runs
    the resulting transfers concurrently through the shared
    :class:`TransferExecutor` and, once they have all finished, descends into
    the child folders one after another. Only one level runs transfers at a
    time, so a pass never holds more than ``level_workers`` worker threads.
    The synced-file cache is updated and persisted after every successful
    mutating action.

    Examples:
        >>> engine = ReconciliationEngine(TransferExecutor(store), persistence)
        >>> report = engine.reconcile(folder)
        >>> print(f"Uploaded {report.stats['uploads']} files")
    """

    def __init__(
        self,
        executor: TransferExecutor,
        persistence: Optional[Persistence] = None,
        scanner: Optional[DirectoryScanner] = None,
        progress: Optional[SyncProgressTracker] = None,
        level_workers: int = DEFAULT_LEVEL_WORKERS,
    ):
        """Initialize reconciliation engine.

        Args:
            executor: Transfer executor (shared across folders)
            persistence: Collaborator asked to save a folder after each change
            scanner: Local directory scanner
            progress: Optional progress tracker
            level_workers: Concurrent transfers per directory level
        """
        self.executor = executor
        self.persistence = persistence
        self.scanner = scanner or DirectoryScanner()
        self.progress = progress or SyncProgressTracker()
        self.level_workers = max(1, level_workers)

    # =========================
    # Public API
    # =========================

    def reconcile(self, folder: WatchedFolder) -> SyncReport:
        """Run one complete reconciliation pass over a watched folder.

        The pass never raises for per-item failures; they are logged and
        listed in ``report.failures``. The pass is aborted (``report.error``
        set) when the folder is misconfigured, when its remote root cannot
        be listed, or on an authentication error.

        Args:
            folder: Watched folder to reconcile

        Returns:
            SyncReport for the pass
        """
        report = SyncReport(folder_id=folder.id, local_path=str(folder.local_path))
        start_time = time.time()
        folder_label = str(folder.local_path)
        self.progress.on_pass_start(folder_label)
        logger.info("Reconciling %s", folder.display_name)

        error = self._check_folder(folder)
        if error is None:
            ctx = _PassContext(folder, report)
            error = self._run_pass(ctx)

        report.error = error
        report.finished_at = datetime.now().isoformat()
        if error is None:
            # Final save once the whole tree has fanned in
            self._persist(folder)
            logger.info(
                "Reconciled %s in %.2fs: %s",
                folder_label,
                time.time() - start_time,
                _format_stats(report.stats),
            )
        else:
            logger.error("Reconciliation of %s aborted: %s", folder_label, error)
        self.progress.on_pass_complete(folder_label, error=error)
        return report

    def plan(
        self,
        folder: WatchedFolder,
        failures: Optional[list[TransferResult]] = None,
    ) -> list[ReconcileDecision]:
        """Classify the whole tree without changing anything (dry run).

        A subfolder that cannot be listed is left out of the plan, as in a
        real pass; it is logged and appended to *failures* when given.

        Raises:
            ValueError: If the folder is misconfigured
            AuthError: If the credential is rejected
            FolderSyncError: If the remote root cannot be listed
        """
        error = self._check_folder(folder)
        if error is not None:
            raise ValueError(error)
        assert folder.remote_root_id is not None
        decisions: list[ReconcileDecision] = []
        self._plan_level(
            folder,
            folder.local_path,
            self.executor.list_children(folder.remote_root_id),
            "",
            decisions,
            failures,
        )
        return decisions

    # =========================
    # Pass orchestration
    # =========================

    def _check_folder(self, folder: WatchedFolder) -> Optional[str]:
        if folder.remote_root_id is None:
            return "No remote folder configured"
        if not folder.local_path.exists():
            return f"Local directory does not exist: {folder.local_path}"
        if not folder.local_path.is_dir():
            return f"Local path is not a directory: {folder.local_path}"
        return None

    def _run_pass(self, ctx: _PassContext) -> Optional[str]:
        folder = ctx.folder
        root_id = folder.remote_root_id
        assert root_id is not None

        # Listing the root is the only fatal step of a pass
        try:
            root_children = self.executor.list_children(root_id)
        except AuthError as e:
            return f"Authentication failed: {e}"
        except Exception as e:
            return f"Cannot list remote root {root_id}: {e}"

        try:
            self._reconcile_level(ctx, folder.local_path, root_id, "", root_children)
        except AuthError as e:
            return f"Authentication failed: {e}"
        return None

    def _reconcile_level(
        self,
        ctx: _PassContext,
        local_dir: Path,
        remote_id: str,
        relative_dir: str,
        remote_children: Optional[dict[str, RemoteItem]] = None,
    ) -> None:
        """Reconcile one directory level and everything below it.

        Raises:
            AuthError: Propagated to abort the pass
        """
        if ctx.abort.is_set():
            return
        folder = ctx.folder
        level_label = relative_dir or "/"

        if remote_children is None:
            try:
                remote_children = self.executor.list_children(remote_id)
            except AuthError:
                ctx.abort.set()
                raise
            except Exception as e:
                logger.warning(
                    "[%s] Cannot list remote folder %s: %s",
                    folder.local_path,
                    level_label,
                    e,
                )
                ctx.fail(
                    TransferResult("list", relative_dir, success=False, error=str(e))
                )
                return

        try:
            local_children = self.scanner.list_children(local_dir, folder.local_path)
        except LocalIOError as e:
            logger.warning("[%s] %s", folder.local_path, e)
            ctx.fail(TransferResult("list", relative_dir, success=False, error=str(e)))
            return

        decisions = self._comparator(folder).compare(
            local_children, remote_children, relative_dir
        )

        transfers: list[ReconcileDecision] = []
        subtrees: list[_Subtree] = []
        for decision in decisions:
            ctx.record(decision)
            logger.debug(
                "[%s] %s %s: %s",
                folder.local_path,
                decision.action.value,
                decision.relative_path,
                decision.reason,
            )
            if decision.action == ReconcileAction.RECURSE:
                assert decision.local_entry is not None
                assert decision.remote_item is not None
                subtrees.append(
                    _Subtree(
                        decision,
                        decision.local_entry.path,
                        decision.remote_item.id,
                    )
                )
            elif decision.action.is_transfer:
                transfers.append(decision)
            else:
                self._handle_passive(ctx, decision)

        # Fan out the transfers of this level and fan in before descending,
        # so at most one level pool is alive per pass
        auth_error: Optional[AuthError] = None
        if transfers:
            workers = min(len(transfers), self.level_workers)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pool.submit(self._execute, ctx, decision, local_dir, remote_id): decision
                    for decision in transfers
                }
                for future in as_completed(futures):
                    decision = futures[future]
                    try:
                        subtree = future.result()
                    except AuthError as e:
                        ctx.abort.set()
                        auth_error = e
                    except Exception as e:
                        self._unexpected(ctx, decision, e)
                    else:
                        if subtree is not None:
                            subtrees.append(subtree)

        if auth_error is not None:
            raise auth_error

        for subtree in sorted(subtrees, key=lambda s: s.decision.relative_path):
            if ctx.abort.is_set():
                return
            try:
                self._reconcile_level(
                    ctx,
                    subtree.local_dir,
                    subtree.remote_id,
                    subtree.decision.relative_path,
                    subtree.remote_children,
                )
            except AuthError:
                ctx.abort.set()
                raise
            except Exception as e:
                self._unexpected(ctx, subtree.decision, e)

    def _unexpected(
        self, ctx: _PassContext, decision: ReconcileDecision, error: Exception
    ) -> None:
        logger.error(
            "[%s] Unexpected error for %s",
            ctx.folder.local_path,
            decision.relative_path,
            exc_info=error,
        )
        ctx.fail(
            TransferResult(
                decision.action.value,
                decision.relative_path,
                success=False,
                error=str(error),
            )
        )

    def _comparator(self, folder: WatchedFolder) -> DirectoryComparator:
        # Hidden names are filtered on both sides or on neither
        return DirectoryComparator(
            folder.rules,
            folder.synced_files,
            include_hidden=self.scanner.include_hidden,
        )

    def _handle_passive(self, ctx: _PassContext, decision: ReconcileDecision) -> None:
        """Handle decisions that need no transfer."""
        folder = ctx.folder
        if decision.action == ReconcileAction.BACKFILL:
            assert decision.remote_item is not None
            folder.synced_files.set(decision.relative_path, decision.remote_item.id)
            ctx.count("backfills")
            self._persist(folder)
        elif decision.action == ReconcileAction.SKIP_RULE_MISMATCH:
            ctx.count("skips")
        elif decision.action == ReconcileAction.TYPE_CONFLICT:
            ctx.count("conflicts")
            conflict = TypeConflictError(
                decision.relative_path,
                local_is_dir=decision.local_entry is not None
                and decision.local_entry.is_dir,
            )
            logger.warning("[%s] Skipping: %s", folder.local_path, conflict)

    # =========================
    # Action execution
    # =========================

    def _execute(
        self,
        ctx: _PassContext,
        decision: ReconcileDecision,
        local_dir: Path,
        remote_id: str,
    ) -> Optional["_Subtree"]:
        """Execute a single transfer decision.

        Returns the subtree to reconcile next when the decision created a
        folder, otherwise None.
        """
        if ctx.abort.is_set():
            return None

        action = decision.action
        result = self._perform(ctx, decision, local_dir, remote_id)
        if result is None:
            return None
        self._record_result(ctx, decision, result)
        if not result.success:
            return None

        if action == ReconcileAction.CREATE_REMOTE_FOLDER:
            assert decision.local_entry is not None and result.remote_id is not None
            # A folder we just created is empty, no need to list it
            return _Subtree(decision, decision.local_entry.path, result.remote_id, {})
        if action == ReconcileAction.CREATE_LOCAL_FOLDER:
            assert decision.remote_item is not None
            return _Subtree(decision, local_dir / decision.name, decision.remote_item.id)
        return None

    def _perform(
        self,
        ctx: _PassContext,
        decision: ReconcileDecision,
        local_dir: Path,
        remote_id: str,
    ) -> Optional[TransferResult]:
        """Run the I/O of a transfer decision and update the cache on success."""
        folder = ctx.folder
        cache = folder.synced_files
        action = decision.action
        path = decision.relative_path
        folder_label = str(folder.local_path)
        self.progress.on_transfer_start(
            folder_label, action.value, path, _decision_size(decision)
        )
        callback = self.progress.transfer_callback(folder_label, action.value, path)

        if action == ReconcileAction.UPLOAD:
            local_entry = _require_local(decision)
            result = self.executor.upload(local_entry.path, remote_id, path, callback)
            if result.success and result.remote_id:
                cache.set(path, result.remote_id)

        elif action == ReconcileAction.DOWNLOAD:
            remote_item = _require_remote(decision)
            result = self.executor.download(
                remote_item.id, local_dir / decision.name, path, callback
            )
            if result.success:
                cache.set(path, remote_item.id)

        elif action == ReconcileAction.DELETE_LOCAL:
            local_entry = _require_local(decision)
            result = self.executor.delete_local(local_entry.path, path)
            if result.success:
                cache.remove(path)

        elif action == ReconcileAction.DELETE_REMOTE:
            remote_item = _require_remote(decision)
            target_id = decision.cached_id or remote_item.id
            result = self.executor.delete_remote(target_id, path)
            if result.success:
                cache.remove(path)

        elif action == ReconcileAction.CREATE_REMOTE_FOLDER:
            result = self.executor.create_folder(decision.name, remote_id, path)

        elif action == ReconcileAction.CREATE_LOCAL_FOLDER:
            result = self._create_local_folder(local_dir / decision.name, path)

        else:
            return None

        if result.success and action not in (
            ReconcileAction.CREATE_REMOTE_FOLDER,
            ReconcileAction.CREATE_LOCAL_FOLDER,
        ):
            self._persist(folder)
        return result

    def _create_local_folder(self, local_path: Path, path: str) -> TransferResult:
        """Create a local directory (idempotent)."""
        try:
            local_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            error = LocalIOError(f"Cannot create {local_path}: {e}")
            logger.warning("create_local_folder failed for %s: %s", path, error)
            return TransferResult(
                "create_local_folder", path, success=False, error=str(error)
            )
        return TransferResult("create_local_folder", path, success=True)

    def _record_result(
        self, ctx: _PassContext, decision: ReconcileDecision, result: TransferResult
    ) -> None:
        folder_label = str(ctx.folder.local_path)
        if result.success:
            ctx.count(_SUCCESS_STAT[decision.action])
            logger.info(
                "[%s] %s %s: ok",
                folder_label,
                decision.action.value,
                decision.relative_path,
            )
            self.progress.on_transfer_complete(
                folder_label, decision.action.value, decision.relative_path
            )
        else:
            ctx.fail(result)
            logger.error(
                "[%s] %s %s: failed: %s",
                folder_label,
                decision.action.value,
                decision.relative_path,
                result.error,
            )
            self.progress.on_transfer_failed(
                folder_label,
                decision.action.value,
                decision.relative_path,
                result.error or "",
            )

    def _persist(self, folder: WatchedFolder) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(folder)
        except (OSError, FolderSyncError) as e:
            logger.warning("Failed to persist %s: %s", folder.local_path, e)

    # =========================
    # Dry run
    # =========================

    def _plan_level(
        self,
        folder: WatchedFolder,
        local_dir: Path,
        remote_children: dict[str, RemoteItem],
        relative_dir: str,
        decisions: list[ReconcileDecision],
        failures: Optional[list[TransferResult]],
    ) -> None:
        if local_dir.is_dir():
            try:
                local_children = self.scanner.list_children(local_dir, folder.local_path)
            except LocalIOError as e:
                self._plan_failure(folder, relative_dir, e, failures)
                return
        else:
            local_children = {}

        comparator = self._comparator(folder)
        for decision in comparator.compare(local_children, remote_children, relative_dir):
            decisions.append(decision)
            if decision.action in (
                ReconcileAction.RECURSE,
                ReconcileAction.CREATE_LOCAL_FOLDER,
            ):
                assert decision.remote_item is not None
                try:
                    children = self.executor.list_children(decision.remote_item.id)
                except AuthError:
                    raise
                except Exception as e:
                    self._plan_failure(folder, decision.relative_path, e, failures)
                    continue
            elif decision.action == ReconcileAction.CREATE_REMOTE_FOLDER:
                children = {}
            else:
                continue
            self._plan_level(
                folder,
                local_dir / decision.name,
                children,
                decision.relative_path,
                decisions,
                failures,
            )

    def _plan_failure(
        self,
        folder: WatchedFolder,
        relative_dir: str,
        error: Exception,
        failures: Optional[list[TransferResult]],
    ) -> None:
        logger.warning(
            "[%s] Cannot plan %s: %s", folder.local_path, relative_dir or "/", error
        )
        if failures is not None:
            failures.append(
                TransferResult("list", relative_dir, success=False, error=str(error))
            )


def _require_local(decision: ReconcileDecision) -> LocalEntry:
    if decision.local_entry is None:
        raise ValueError(f"{decision.action.value} requires a local entry")
    return decision.local_entry


def _require_remote(decision: ReconcileDecision) -> RemoteItem:
    if decision.remote_item is None:
        raise ValueError(f"{decision.action.value} requires a remote item")
    return decision.remote_item


def _decision_size(decision: ReconcileDecision) -> int:
    if decision.local_entry is not None and decision.local_entry.size is not None:
        return decision.local_entry.size
    if decision.remote_item is not None and decision.remote_item.size is not None:
        return decision.remote_item.size
    return 0


def _format_stats(stats: dict[str, int]) -> str:
    parts = [f"{key}={value}" for key, value in stats.items() if value]
    return ", ".join(parts) if parts else "no changes"
