"""Capability interfaces consumed by the sync core.

The reconciliation engine never talks HTTP itself; it is handed an object
implementing :class:`RemoteStore`. ``GoogleDriveStore`` in
:mod:`pyfoldersync.drive` is the production implementation, tests use an
in-memory fake.
"""

from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

from .exceptions import AuthError
from .models import RemoteItem

ProgressCallback = Callable[[int, int], None]
"""Called with (bytes_done, bytes_total)"""


@runtime_checkable
class RemoteStore(Protocol):
    """Hierarchical remote object store scoped to one account.

    Every method raises :class:`~pyfoldersync.exceptions.AuthError` when the
    credential is missing or stale.
    """

    def list_children(self, folder_id: str) -> dict[str, RemoteItem]:
        """Return the complete listing of a folder keyed by child name."""
        ...

    def create_folder(self, name: str, parent_id: str) -> str:
        """Create a folder and return its id."""
        ...

    def upload(
        self,
        local_path: Path,
        parent_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """Upload a local file into a folder and return the new item id."""
        ...

    def download(
        self,
        remote_id: str,
        dest_path: Path,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """Download an item to *dest_path*, replacing any existing file."""
        ...

    def delete(self, remote_id: str) -> None:
        """Delete an item."""
        ...


@runtime_checkable
class TokenProvider(Protocol):
    """Source of access tokens; refreshing them is not the core's business."""

    def get_access_token(self, account_id: Optional[str] = None) -> str: ...


class StaticTokenProvider:
    """Token provider serving a fixed token (from config or the environment)."""

    def __init__(self, token: Optional[str]):
        self._token = token

    def get_access_token(self, account_id: Optional[str] = None) -> str:
        if not self._token:
            raise AuthError(
                "No access token configured. Run 'pyfoldersync init' or set "
                "PYFOLDERSYNC_ACCESS_TOKEN."
            )
        return self._token
