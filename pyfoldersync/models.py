"""Data models for watched folders, inclusion rules and remote items."""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .cache import SyncedFileCache

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Upper bound used by the permissive rule (largest unsigned 64-bit size)
MAX_SIZE_BOUND: int = 2**64 - 1


class SizeUnit(str, Enum):
    """Unit of the size bounds of a rule."""

    B = "B"
    KB = "KB"
    MB = "MB"
    GB = "GB"

    @property
    def multiplier(self) -> int:
        """Number of bytes in one unit."""
        return {
            SizeUnit.B: 1,
            SizeUnit.KB: 1024,
            SizeUnit.MB: 1024 * 1024,
            SizeUnit.GB: 1024 * 1024 * 1024,
        }[self]


def _normalize_extension(ext: str) -> str:
    return ext.strip().lstrip(".").lower()


@dataclass
class Rule:
    """One inclusion policy of a watched folder.

    A file satisfies the rule when its extension is not ignored and its size
    lies within ``[lower_bound, upper_bound]`` expressed in ``unit``. Bounds
    given in the wrong order are accepted as-is and swapped when the rule
    is evaluated.
    """

    lower_bound: int = 0
    """Lower size bound in ``unit``"""

    upper_bound: int = 100
    """Upper size bound in ``unit``"""

    unit: SizeUnit = SizeUnit.MB
    """Unit of both bounds"""

    ignored_extensions: list[str] = field(default_factory=list)
    """Blacklisted extensions, lowercase without leading dot"""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if isinstance(self.unit, str) and not isinstance(self.unit, SizeUnit):
            self.unit = SizeUnit(self.unit)
        if self.lower_bound < 0 or self.upper_bound < 0:
            raise ValueError("Rule bounds must be non-negative")
        normalized = []
        for ext in self.ignored_extensions:
            ext = _normalize_extension(ext)
            if ext and ext not in normalized:
                normalized.append(ext)
        self.ignored_extensions = normalized

    @classmethod
    def permissive(cls) -> "Rule":
        """Rule that accepts every file of any size."""
        return cls(lower_bound=0, upper_bound=MAX_SIZE_BOUND, unit=SizeUnit.B)

    @property
    def is_permissive(self) -> bool:
        """Whether the rule accepts every file."""
        lower, upper = self.byte_interval()
        return lower == 0 and upper >= MAX_SIZE_BOUND and not self.ignored_extensions

    def byte_interval(self) -> tuple[int, int]:
        """Inclusive byte interval of the rule with the bounds in order."""
        lower = self.lower_bound * self.unit.multiplier
        upper = self.upper_bound * self.unit.multiplier
        return min(lower, upper), max(lower, upper)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lowerBound": self.lower_bound,
            "upperBound": self.upper_bound,
            "unit": self.unit.value,
            "ignoredExtensions": list(self.ignored_extensions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Rule":
        return cls(
            lower_bound=int(data.get("lowerBound", 0)),
            upper_bound=int(data.get("upperBound", 100)),
            unit=SizeUnit(data.get("unit", SizeUnit.MB.value)),
            ignored_extensions=list(data.get("ignoredExtensions", [])),
            id=data.get("id") or str(uuid.uuid4()),
        )


@dataclass(frozen=True)
class RemoteItem:
    """A child of a remote folder, as returned by a listing."""

    id: str
    name: str
    is_folder: bool
    mime_type: str = "application/octet-stream"
    trashed: bool = False
    size: Optional[int] = None
    """Size in bytes; None when the store does not report one"""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteItem":
        """Decode a Drive v3 file resource.

        Args:
            data: File resource with at least ``id``, ``name`` and ``mimeType``

        Returns:
            RemoteItem instance

        Raises:
            KeyError: If a required field is missing
        """
        mime_type = data["mimeType"]
        raw_size = data.get("size")
        size: Optional[int]
        try:
            size = int(raw_size) if raw_size is not None else None
        except (TypeError, ValueError):
            size = None
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            is_folder=mime_type == FOLDER_MIME_TYPE,
            mime_type=mime_type,
            trashed=bool(data.get("trashed", False)),
            size=size,
        )


@dataclass(frozen=True)
class RemoteFolderRef:
    """Remote folder a watched folder is paired with."""

    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteFolderRef":
        return cls(id=str(data["id"]), name=data.get("name", ""))


@dataclass
class WatchedFolder:
    """One local directory paired with one remote folder.

    Examples:
        >>> folder = WatchedFolder(local_path="/home/user/Documents")
        >>> len(folder.rules)
        1
    """

    local_path: Path
    """Local root directory"""

    remote_folder: Optional[RemoteFolderRef] = None
    """Remote root folder (None until the user picks one)"""

    account_id: Optional[str] = None
    """Account that owns the remote folder"""

    enabled: bool = True

    rules: list[Rule] = field(default_factory=list)
    """Inclusion rules, OR-combined; never empty"""

    synced_files: SyncedFileCache = field(default_factory=SyncedFileCache)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if isinstance(self.local_path, str):
            self.local_path = Path(self.local_path)
        self.local_path = self.local_path.expanduser()
        self.set_rules(self.rules)

    def set_rules(self, rules: list[Rule]) -> None:
        """Replace the rule list, inserting the permissive rule if it is empty."""
        if not rules:
            logger.debug(
                "Empty rule list for %s, using permissive default", self.local_path
            )
            rules = [Rule.permissive()]
        self.rules = list(rules)

    @property
    def remote_root_id(self) -> Optional[str]:
        return self.remote_folder.id if self.remote_folder else None

    @property
    def display_name(self) -> str:
        remote = self.remote_folder.name if self.remote_folder else "(no remote)"
        return f"{self.local_path} <-> {remote}"

    def to_dict(self) -> dict:
        """Convert folder to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "localPath": str(self.local_path),
            "enabled": self.enabled,
            "accountId": self.account_id,
            "remoteFolder": (
                self.remote_folder.to_dict() if self.remote_folder else None
            ),
            "rules": [rule.to_dict() for rule in self.rules],
            "syncedFiles": self.synced_files.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WatchedFolder":
        """Create WatchedFolder from dictionary."""
        remote = data.get("remoteFolder")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            local_path=Path(data["localPath"]),
            enabled=data.get("enabled", True),
            account_id=data.get("accountId"),
            remote_folder=RemoteFolderRef.from_dict(remote) if remote else None,
            rules=[Rule.from_dict(r) for r in data.get("rules", [])],
            synced_files=SyncedFileCache.from_dict(data.get("syncedFiles")),
        )

