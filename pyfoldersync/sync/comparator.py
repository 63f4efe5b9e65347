"""Classification of one directory level into reconciliation actions."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..cache import SyncedFileCache
from ..models import RemoteItem, Rule
from ..rules import matches
from ..utils import is_hidden, join_relative
from .scanner import LocalEntry


class ReconcileAction(str, Enum):
    """Actions that can be decided for a name at one directory level."""

    RECURSE = "recurse"
    """Folder exists on both sides - reconcile its contents"""

    CREATE_REMOTE_FOLDER = "create_remote_folder_then_recurse"
    """Create the missing remote folder, then reconcile into it"""

    CREATE_LOCAL_FOLDER = "create_local_folder_then_recurse"
    """Create the missing local directory, then reconcile into it"""

    UPLOAD = "upload_local"
    """Upload a new local file"""

    DOWNLOAD = "download_remote"
    """Download a new remote file"""

    DELETE_LOCAL = "delete_local_because_remote_gone"
    """Previously synced file was deleted remotely"""

    DELETE_REMOTE = "delete_remote_because_local_gone"
    """Previously synced file was deleted locally"""

    SKIP_RULE_MISMATCH = "skip_rule_mismatch"
    """File does not satisfy any rule of the folder"""

    NOOP = "noop_already_tracked"
    """File is present on both sides and already tracked"""

    BACKFILL = "backfill_cache"
    """File is present on both sides but not yet tracked"""

    TYPE_CONFLICT = "type_conflict"
    """Same name is a file on one side and a folder on the other"""

    @property
    def is_transfer(self) -> bool:
        """Whether the action mutates one of the two sides."""
        return self in _TRANSFER_ACTIONS

    @property
    def recurses(self) -> bool:
        return self in (
            ReconcileAction.RECURSE,
            ReconcileAction.CREATE_REMOTE_FOLDER,
            ReconcileAction.CREATE_LOCAL_FOLDER,
        )


_TRANSFER_ACTIONS = frozenset(
    {
        ReconcileAction.CREATE_REMOTE_FOLDER,
        ReconcileAction.CREATE_LOCAL_FOLDER,
        ReconcileAction.UPLOAD,
        ReconcileAction.DOWNLOAD,
        ReconcileAction.DELETE_LOCAL,
        ReconcileAction.DELETE_REMOTE,
    }
)


@dataclass
class ReconcileDecision:
    """Represents a decision about one name at one directory level."""

    action: ReconcileAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    name: str
    """Child name at this level"""

    relative_path: str
    """Path relative to the watched folder root"""

    local_entry: Optional[LocalEntry] = None
    """Local entry (if it exists)"""

    remote_item: Optional[RemoteItem] = None
    """Remote item (if it exists and is not trashed)"""

    cached_id: Optional[str] = None
    """Remote id remembered by the cache for this path"""


class DirectoryComparator:
    """Compares the children of a local directory and a remote folder.

    The comparator is pure: it reads the cache and evaluates rules but never
    performs I/O beyond reading local file sizes that the scanner already
    collected.
    """

    def __init__(
        self,
        rules: Iterable[Rule],
        cache: SyncedFileCache,
        include_hidden: bool = False,
    ):
        """Initialize directory comparator.

        Args:
            rules: Inclusion rules of the watched folder
            cache: Synced-file cache of the watched folder
            include_hidden: Whether dot-named remote items take part. Must
                match the scanner, otherwise hidden files look deleted locally
        """
        self.rules = list(rules)
        self.cache = cache
        self.include_hidden = include_hidden

    def compare(
        self,
        local_children: dict[str, LocalEntry],
        remote_children: dict[str, RemoteItem],
        relative_dir: str = "",
    ) -> list[ReconcileDecision]:
        """Classify every name found on either side.

        Args:
            local_children: Direct local children keyed by name
            remote_children: Direct remote children keyed by name
            relative_dir: Relative path of this level ("" for the root)

        Returns:
            List of ReconcileDecision objects, ordered by name
        """
        # Trashed remote items are absent; hidden ones are ignored like local ones
        remote_live = {
            name: item
            for name, item in remote_children.items()
            if not item.trashed and (self.include_hidden or not is_hidden(name))
        }

        decisions: list[ReconcileDecision] = []
        for name in sorted(set(local_children) | set(remote_live)):
            path = join_relative(relative_dir, name)
            local_entry = local_children.get(name)
            remote_item = remote_live.get(name)

            if local_entry is not None and remote_item is not None:
                decisions.append(self._handle_both(name, path, local_entry, remote_item))
            elif local_entry is not None:
                decisions.append(self._handle_local_only(name, path, local_entry))
            elif remote_item is not None:
                decisions.append(self._handle_remote_only(name, path, remote_item))

        return decisions

    def _handle_both(
        self, name: str, path: str, local_entry: LocalEntry, remote_item: RemoteItem
    ) -> ReconcileDecision:
        """Handle a name that exists on both sides."""
        if local_entry.is_dir and remote_item.is_folder:
            return ReconcileDecision(
                action=ReconcileAction.RECURSE,
                reason="Folder exists on both sides",
                name=name,
                relative_path=path,
                local_entry=local_entry,
                remote_item=remote_item,
            )

        if local_entry.is_dir != remote_item.is_folder:
            local_kind = "folder" if local_entry.is_dir else "file"
            remote_kind = "folder" if remote_item.is_folder else "file"
            return ReconcileDecision(
                action=ReconcileAction.TYPE_CONFLICT,
                reason=f"Local {local_kind} but remote {remote_kind}",
                name=name,
                relative_path=path,
                local_entry=local_entry,
                remote_item=remote_item,
            )

        cached_id = self.cache.get(path)
        if cached_id is None:
            return ReconcileDecision(
                action=ReconcileAction.BACKFILL,
                reason="Present on both sides but not tracked yet",
                name=name,
                relative_path=path,
                local_entry=local_entry,
                remote_item=remote_item,
            )
        return ReconcileDecision(
            action=ReconcileAction.NOOP,
            reason="Already tracked",
            name=name,
            relative_path=path,
            local_entry=local_entry,
            remote_item=remote_item,
            cached_id=cached_id,
        )

    def _handle_local_only(
        self, name: str, path: str, local_entry: LocalEntry
    ) -> ReconcileDecision:
        """Handle a name that only exists locally."""
        if local_entry.is_dir:
            return ReconcileDecision(
                action=ReconcileAction.CREATE_REMOTE_FOLDER,
                reason="New local folder",
                name=name,
                relative_path=path,
                local_entry=local_entry,
            )

        cached_id = self.cache.get(path)
        if cached_id is not None:
            return ReconcileDecision(
                action=ReconcileAction.DELETE_LOCAL,
                reason="File deleted from remote",
                name=name,
                relative_path=path,
                local_entry=local_entry,
                cached_id=cached_id,
            )

        if matches(local_entry, self.rules):
            return ReconcileDecision(
                action=ReconcileAction.UPLOAD,
                reason="New local file",
                name=name,
                relative_path=path,
                local_entry=local_entry,
            )
        return ReconcileDecision(
            action=ReconcileAction.SKIP_RULE_MISMATCH,
            reason="Local file matches no rule",
            name=name,
            relative_path=path,
            local_entry=local_entry,
        )

    def _handle_remote_only(
        self, name: str, path: str, remote_item: RemoteItem
    ) -> ReconcileDecision:
        """Handle a name that only exists remotely."""
        if remote_item.is_folder:
            return ReconcileDecision(
                action=ReconcileAction.CREATE_LOCAL_FOLDER,
                reason="New remote folder",
                name=name,
                relative_path=path,
                remote_item=remote_item,
            )

        cached_id = self.cache.get(path)
        if cached_id is not None:
            return ReconcileDecision(
                action=ReconcileAction.DELETE_REMOTE,
                reason="File deleted locally",
                name=name,
                relative_path=path,
                remote_item=remote_item,
                cached_id=cached_id,
            )

        if matches(remote_item, self.rules):
            return ReconcileDecision(
                action=ReconcileAction.DOWNLOAD,
                reason="New remote file",
                name=name,
                relative_path=path,
                remote_item=remote_item,
            )
        return ReconcileDecision(
            action=ReconcileAction.SKIP_RULE_MISMATCH,
            reason="Remote file matches no rule",
            name=name,
            relative_path=path,
            remote_item=remote_item,
        )
