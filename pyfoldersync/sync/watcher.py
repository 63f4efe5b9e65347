"""Filesystem change notification for watched folders."""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, runtime_checkable

import watchfiles

from ..utils import is_hidden

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]

# Batching window of the underlying watcher in milliseconds; the scheduler
# applies its own debounce on top.
WATCH_DEBOUNCE_MS = 200


@runtime_checkable
class ChangeSource(Protocol):
    """Notifies about changes below a local directory."""

    def subscribe(self, path: Path, callback: ChangeCallback) -> Any: ...

    def unsubscribe(self, handle: Any) -> None: ...


def _visible_change(change: watchfiles.Change, path: str) -> bool:
    return not is_hidden(Path(path).name)


@dataclass(eq=False)
class WatchHandle:
    """Subscription returned by :meth:`WatchfilesChangeSource.subscribe`."""

    path: Path
    callback: ChangeCallback
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None


class WatchfilesChangeSource:
    """Change source backed by ``watchfiles``.

    Each subscription runs ``watchfiles.watch`` in a daemon thread and
    invokes its callback once per batch of changes.
    """

    def __init__(self, debounce_ms: int = WATCH_DEBOUNCE_MS):
        self.debounce_ms = debounce_ms
        self._handles: set[WatchHandle] = set()
        self._lock = threading.Lock()

    def subscribe(self, path: Path, callback: ChangeCallback) -> WatchHandle:
        handle = WatchHandle(path=Path(path), callback=callback)
        handle.thread = threading.Thread(
            target=self._watch,
            args=(handle,),
            name=f"watch-{handle.path.name}",
            daemon=True,
        )
        with self._lock:
            self._handles.add(handle)
        handle.thread.start()
        logger.debug("Watching %s", handle.path)
        return handle

    def unsubscribe(self, handle: WatchHandle) -> None:
        handle.stop_event.set()
        with self._lock:
            self._handles.discard(handle)
        if handle.thread is not None and handle.thread is not threading.current_thread():
            handle.thread.join(timeout=5)
        logger.debug("Stopped watching %s", handle.path)

    def close(self) -> None:
        """Stop every subscription."""
        with self._lock:
            handles = list(self._handles)
        for handle in handles:
            self.unsubscribe(handle)

    def _watch(self, handle: WatchHandle) -> None:
        try:
            for changes in watchfiles.watch(
                handle.path,
                watch_filter=_visible_change,
                debounce=self.debounce_ms,
                stop_event=handle.stop_event,
                raise_interrupt=False,
            ):
                logger.debug("%d change(s) under %s", len(changes), handle.path)
                try:
                    handle.callback()
                except Exception:
                    logger.exception("Change callback failed for %s", handle.path)
        except FileNotFoundError:
            logger.warning("Cannot watch %s: directory does not exist", handle.path)
        except Exception:
            logger.exception("Watcher for %s stopped unexpectedly", handle.path)
