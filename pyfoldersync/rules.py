"""Inclusion rule evaluation.

A file is synchronized when it matches at least one rule of its watched
folder (OR across rules). Within a single rule the extension must not be
ignored AND the size must lie within the rule's byte interval, inclusive.
Items whose size cannot be determined never match.

Examples:
    >>> from pyfoldersync.models import RemoteItem, Rule, SizeUnit
    >>> rules = [Rule(0, 100, SizeUnit.KB, ignored_extensions=["zip"])]
    >>> matches(RemoteItem(id="1", name="a.txt", is_folder=False, size=10), rules)
    True
    >>> matches(RemoteItem(id="2", name="a.zip", is_folder=False, size=10), rules)
    False
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional

from .models import Rule
from .utils import file_extension

logger = logging.getLogger(__name__)


def _name_and_size(item: Any) -> tuple[str, Optional[int]]:
    """Extract the name and size in bytes of a local path or listed item.

    Accepts a ``Path`` (size read from the filesystem) or any object with
    ``name`` and ``size`` attributes (``RemoteItem``, ``LocalEntry``).
    """
    if isinstance(item, (str, os.PathLike)):
        path = Path(item)
        try:
            return path.name, path.stat().st_size
        except OSError as e:
            logger.debug("Cannot stat %s: %s", path, e)
            return path.name, None
    name = getattr(item, "name", "") or ""
    size = getattr(item, "size", None)
    if not isinstance(size, int) or isinstance(size, bool) or size < 0:
        size = None
    return name, size


def rule_matches(name: str, size: Optional[int], rule: Rule) -> bool:
    """Check a name and size against a single rule.

    Args:
        name: File name (only the extension is inspected)
        size: Size in bytes, or None if unknown
        rule: Rule to evaluate

    Returns:
        True if the extension is not ignored and the size is in range
    """
    if size is None:
        return False
    if file_extension(name) in rule.ignored_extensions:
        return False
    lower, upper = rule.byte_interval()
    return lower <= size <= upper


def matches(item: Any, rules: Iterable[Rule]) -> bool:
    """Check whether a local file or remote item satisfies a rule set.

    Args:
        item: Local ``Path`` or an object with ``name`` and ``size``
        rules: Rules of the watched folder (OR-combined)

    Returns:
        True if at least one rule matches; never raises
    """
    name, size = _name_and_size(item)
    for rule in rules:
        if rule_matches(name, size, rule):
            return True
    return False


def folder_total_size(path: Path) -> int:
    """Sum the sizes of all regular files below *path*.

    Unreadable entries are skipped.
    """
    total = 0
    for root, _dirs, files in os.walk(path):
        for filename in files:
            file_path = Path(root) / filename
            try:
                if file_path.is_file():
                    total += file_path.stat().st_size
            except OSError:
                continue
    return total
