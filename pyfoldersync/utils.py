"""Utility functions for pyfoldersync."""

from pathlib import Path, PurePosixPath
from typing import Optional, Union

# =============================================================================
# Constants for transfers and scheduling
# =============================================================================

# Number of transfers allowed in flight across all watched folders
DEFAULT_TRANSFER_WIDTH: int = 4

# Delay between the last change event and the reconciliation pass (seconds)
DEFAULT_DEBOUNCE_SECONDS: float = 2.0

# Interval of the periodic poll that catches remote-only changes (seconds)
DEFAULT_POLL_INTERVAL: float = 60.0

# Chunk size used when streaming uploads and downloads (8 MB)
DEFAULT_CHUNK_SIZE: int = 8 * 1024 * 1024

# Retry configuration for transient HTTP errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds


# =============================================================================
# Path utilities
# =============================================================================


def canonical_relative_path(path: Union[str, Path]) -> str:
    """Normalize a relative path to the cache key format.

    Cache keys always use forward slashes and never start with ``./`` or
    ``/``, regardless of the platform that produced them.

    Args:
        path: Relative path (string or Path)

    Returns:
        Canonical relative path

    Examples:
        >>> canonical_relative_path("b\\\\c.txt")
        'b/c.txt'
        >>> canonical_relative_path("./a.txt")
        'a.txt'
    """
    if isinstance(path, Path):
        text = path.as_posix()
    else:
        text = str(path).replace("\\", "/")
    parts = [p for p in PurePosixPath(text).parts if p not in ("/", ".")]
    return "/".join(parts)


def join_relative(prefix: str, name: str) -> str:
    """Join a relative directory prefix and a child name."""
    if not prefix:
        return canonical_relative_path(name)
    return canonical_relative_path(f"{prefix}/{name}")


def file_extension(name: str) -> str:
    """Return the lowercase extension of a file name without the dot.

    Examples:
        >>> file_extension("Report.PDF")
        'pdf'
        >>> file_extension("archive.tar.gz")
        'gz'
        >>> file_extension(".bashrc")
        ''
    """
    return PurePosixPath(name).suffix.lstrip(".").lower()


def is_hidden(name: str) -> bool:
    """Check whether a name is hidden (dot file or dot folder)."""
    return name.startswith(".")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: Optional[int]) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes (None renders as "-")

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes is None:
        return "-"
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
