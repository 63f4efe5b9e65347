"""Exceptions raised by pyfoldersync."""


class FolderSyncError(Exception):
    """Base exception for all pyfoldersync errors."""


class ConfigError(FolderSyncError):
    """Configuration is missing or invalid."""


class AuthError(FolderSyncError):
    """No credential, or the credential was rejected by the remote store.

    A reconciliation pass that hits this error aborts immediately; the
    token has to be refreshed by the credential collaborator first.
    """


class NetworkError(FolderSyncError):
    """Transient network failure while talking to the remote store."""


class RateLimitError(NetworkError):
    """The remote store asked us to slow down (HTTP 429)."""


class LocalIOError(FolderSyncError):
    """A local filesystem operation failed (permission, missing file, ...)."""


class TypeConflictError(FolderSyncError):
    """The same name is a file on one side and a folder on the other."""

    def __init__(self, path: str, local_is_dir: bool):
        self.path = path
        self.local_is_dir = local_is_dir
        local_kind = "folder" if local_is_dir else "file"
        remote_kind = "file" if local_is_dir else "folder"
        super().__init__(
            f"Type conflict at {path}: local {local_kind}, remote {remote_kind}"
        )


class RemoteAPIError(FolderSyncError):
    """The remote store returned an error response."""


class RemoteNotFoundError(RemoteAPIError):
    """The requested remote item does not exist."""


class InvalidResponseError(RemoteAPIError):
    """The remote store returned a response we could not decode."""
