"""Sync engine for pyfoldersync - two-way reconciliation of watched folders."""

from .comparator import DirectoryComparator, ReconcileAction, ReconcileDecision
from .engine import ReconciliationEngine, SyncReport
from .operations import TransferExecutor, TransferResult
from .progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker
from .scanner import DirectoryScanner, LocalEntry
from .scheduler import FolderState, SyncScheduler
from .state import JsonFolderStore, Persistence
from .watcher import ChangeSource, WatchfilesChangeSource

__all__ = [
    "ReconciliationEngine",
    "SyncReport",
    "SyncScheduler",
    "FolderState",
    "TransferExecutor",
    "TransferResult",
    "DirectoryComparator",
    "ReconcileAction",
    "ReconcileDecision",
    "DirectoryScanner",
    "LocalEntry",
    "Persistence",
    "JsonFolderStore",
    "ChangeSource",
    "WatchfilesChangeSource",
    "SyncProgressEvent",
    "SyncProgressInfo",
    "SyncProgressTracker",
]
