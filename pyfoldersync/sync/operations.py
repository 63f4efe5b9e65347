"""Bounded-concurrency transfer operations over a remote store."""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

import send2trash

from ..exceptions import AuthError, LocalIOError, RemoteNotFoundError
from ..models import RemoteItem
from ..store import ProgressCallback, RemoteStore
from ..utils import DEFAULT_TRANSFER_WIDTH

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TransferResult:
    """Outcome of a single transfer operation."""

    action: str
    """Operation name (upload, download, delete_remote, ...)"""

    path: str
    """Relative path of the item"""

    success: bool

    remote_id: Optional[str] = None
    """Remote id to record in the cache (uploads, downloads, folders)"""

    error: Optional[str] = None

    elapsed: float = 0.0


class TransferExecutor:
    """Runs remote operations through a fixed-width limiter.

    One executor is shared by every watched folder, so the width bounds the
    total number of outstanding network operations of the process. Local
    deletions do not take a slot.

    Failures other than :class:`AuthError` are captured in the returned
    :class:`TransferResult` and logged; nothing is retried here. The next
    scheduled pass retries naturally because the cache is only updated on
    success.
    """

    def __init__(
        self,
        store: RemoteStore,
        width: int = DEFAULT_TRANSFER_WIDTH,
        use_local_trash: bool = False,
    ):
        """Initialize transfer executor.

        Args:
            store: Remote store capability
            width: Maximum number of remote operations in flight
            use_local_trash: Move deleted local files to the system trash
                instead of unlinking them
        """
        if width < 1:
            raise ValueError("Transfer width must be at least 1")
        self.store = store
        self.width = width
        self.use_local_trash = use_local_trash
        self._semaphore = threading.BoundedSemaphore(width)
        self._counter_lock = threading.Lock()
        self.in_flight = 0
        self.peak_in_flight = 0

    @contextmanager
    def _slot(self) -> Iterator[None]:
        """Hold one slot of the limiter for the duration of the block."""
        self._semaphore.acquire()
        with self._counter_lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            yield
        finally:
            with self._counter_lock:
                self.in_flight -= 1
            self._semaphore.release()

    def _run(
        self,
        action: str,
        path: str,
        operation: Callable[[], Optional[str]],
        limited: bool = True,
    ) -> TransferResult:
        """Execute an operation and convert its outcome to a TransferResult.

        Raises:
            AuthError: Propagated so the caller can abort the pass
        """
        start = time.time()
        try:
            if limited:
                with self._slot():
                    remote_id = operation()
            else:
                remote_id = operation()
        except AuthError:
            raise
        except Exception as e:
            elapsed = time.time() - start
            logger.warning("%s failed for %s: %s", action, path, e)
            return TransferResult(
                action=action, path=path, success=False, error=str(e), elapsed=elapsed
            )

        elapsed = time.time() - start
        logger.debug("%s of %s took %.2fs", action, path, elapsed)
        return TransferResult(
            action=action,
            path=path,
            success=True,
            remote_id=remote_id,
            elapsed=elapsed,
        )

    def list_children(self, folder_id: str) -> dict[str, RemoteItem]:
        """List a remote folder through the limiter.

        Errors propagate: the engine decides whether a failed listing is
        fatal (the watched folder's root) or local to one subtree.
        """
        with self._slot():
            return self.store.list_children(folder_id)

    def create_folder(self, name: str, parent_id: str, path: str) -> TransferResult:
        """Create a remote folder; the result carries the new folder id."""
        return self._run(
            "create_folder", path, lambda: self.store.create_folder(name, parent_id)
        )

    def upload(
        self,
        local_path: Path,
        parent_id: str,
        path: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """Upload a local file; the result carries the new remote id."""

        def _upload() -> str:
            if not local_path.is_file():
                raise LocalIOError(f"Local file disappeared: {local_path}")
            return self.store.upload(
                local_path, parent_id, progress_callback=progress_callback
            )

        return self._run("upload", path, _upload)

    def download(
        self,
        remote_id: str,
        dest_path: Path,
        path: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """Download a remote file; the result carries the remote id."""

        def _download() -> str:
            # Ensure parent directory exists
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            self.store.download(
                remote_id, dest_path, progress_callback=progress_callback
            )
            return remote_id

        return self._run("download", path, _download)

    def delete_remote(self, remote_id: str, path: str) -> TransferResult:
        """Delete a remote item. An item that is already gone counts as deleted."""

        def _delete() -> None:
            try:
                self.store.delete(remote_id)
            except RemoteNotFoundError:
                logger.debug("Remote item %s for %s already gone", remote_id, path)

        return self._run("delete_remote", path, _delete)

    def delete_local(self, local_path: Path, path: str) -> TransferResult:
        """Delete a local file without taking a limiter slot.

        A file that is already gone counts as deleted.
        """

        def _delete() -> None:
            if not local_path.exists():
                logger.debug("Local file %s already gone", local_path)
                return
            try:
                if self.use_local_trash:
                    send2trash.send2trash(str(local_path))
                else:
                    local_path.unlink()
            except OSError as e:
                raise LocalIOError(f"Cannot delete {local_path}: {e}") from e

        return self._run("delete_local", path, _delete, limited=False)
