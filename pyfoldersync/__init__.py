"""pyfoldersync - keep local folders in two-way sync with a remote drive."""

from .cache import SyncedFileCache
from .drive import GoogleDriveStore
from .exceptions import (
    AuthError,
    ConfigError,
    FolderSyncError,
    InvalidResponseError,
    LocalIOError,
    NetworkError,
    RateLimitError,
    RemoteAPIError,
    RemoteNotFoundError,
    TypeConflictError,
)
from .models import RemoteFolderRef, RemoteItem, Rule, SizeUnit, WatchedFolder
from .rules import folder_total_size, matches
from .store import RemoteStore, StaticTokenProvider, TokenProvider

__version__ = "0.1.0"

__all__ = [
    "GoogleDriveStore",
    "RemoteStore",
    "TokenProvider",
    "StaticTokenProvider",
    "SyncedFileCache",
    "Rule",
    "SizeUnit",
    "RemoteItem",
    "RemoteFolderRef",
    "WatchedFolder",
    "matches",
    "folder_total_size",
    "FolderSyncError",
    "AuthError",
    "ConfigError",
    "NetworkError",
    "RateLimitError",
    "LocalIOError",
    "TypeConflictError",
    "RemoteAPIError",
    "RemoteNotFoundError",
    "InvalidResponseError",
]
