"""Directory listing utilities for reconciliation."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import LocalIOError
from ..utils import is_hidden

logger = logging.getLogger(__name__)


@dataclass
class LocalEntry:
    """Represents a direct child of a local directory."""

    path: Path
    """Absolute path to the entry"""

    relative_path: str
    """Path relative to the watched folder root (forward slashes)"""

    is_dir: bool

    size: Optional[int] = None
    """File size in bytes (None for directories or unreadable files)"""

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, entry_path: Path, base_path: Path) -> "LocalEntry":
        """Create LocalEntry from a path.

        Args:
            entry_path: Absolute path to the entry
            base_path: Watched folder root used for the relative path

        Returns:
            LocalEntry instance
        """
        # Use as_posix() to ensure forward slashes on all platforms
        relative_path = entry_path.relative_to(base_path).as_posix()
        is_dir = entry_path.is_dir()
        size: Optional[int] = None
        if not is_dir:
            try:
                size = entry_path.stat().st_size
            except OSError:
                size = None
        return cls(
            path=entry_path,
            relative_path=relative_path,
            is_dir=is_dir,
            size=size,
        )


class DirectoryScanner:
    """Lists the direct children of local directories.

    Hidden entries (names starting with a dot) are skipped, as are symlinks
    that do not resolve.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> children = scanner.list_children(Path("/sync"), Path("/sync"))
        >>> sorted(children)
        ['a.txt', 'b']
    """

    def __init__(self, include_hidden: bool = False):
        """Initialize directory scanner.

        Args:
            include_hidden: Whether to list dot files and dot folders
        """
        self.include_hidden = include_hidden

    def list_children(self, directory: Path, base_path: Path) -> dict[str, LocalEntry]:
        """List the direct children of a directory.

        Args:
            directory: Directory to list
            base_path: Watched folder root for relative paths

        Returns:
            Dictionary mapping child name to LocalEntry

        Raises:
            LocalIOError: If the directory cannot be read
        """
        children: dict[str, LocalEntry] = {}
        try:
            items = list(directory.iterdir())
        except OSError as e:
            raise LocalIOError(f"Cannot list {directory}: {e}") from e

        for item in items:
            if not self.include_hidden and is_hidden(item.name):
                continue
            if item.is_symlink() and not item.exists():
                logger.debug("Skipping dangling symlink: %s", item)
                continue
            try:
                children[item.name] = LocalEntry.from_path(item, base_path)
            except OSError as e:
                # Entry vanished between listing and stat
                logger.debug("Skipping unreadable entry %s: %s", item, e)
                continue
        return children
