"""Persistence of watched folders and their synced-file caches.

All watched folders live in one JSON document (``watched_folders.json`` in
the config directory). The engine saves a folder after every change to its
cache, so a crash mid-pass loses at most the action that was running.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from ..models import WatchedFolder

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@runtime_checkable
class Persistence(Protocol):
    """Storage for watched folders."""

    def save(self, folder: WatchedFolder) -> None: ...

    def load(self) -> list[WatchedFolder]: ...

    def remove(self, folder_id: str) -> None: ...


class JsonFolderStore:
    """Stores watched folders in a single JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the document, and are serialized by a lock because several folder
    passes may save concurrently.
    """

    def __init__(self, path: Optional[Path] = None, default_account: Optional[str] = None):
        """Initialize folder store.

        Args:
            path: JSON file to use. Defaults to the configured folders file
            default_account: Account assigned to folders that have none
        """
        if path is None:
            from ..config import config

            path = config.folders_file
            if default_account is None:
                default_account = config.default_account
        self.path = path
        self.default_account = default_account
        self._lock = threading.RLock()
        self._documents: Optional[dict[str, dict]] = None

    # =========================
    # Persistence protocol
    # =========================

    def save(self, folder: WatchedFolder) -> None:
        """Insert or replace a folder in the document."""
        data = folder.to_dict()
        with self._lock:
            documents = self._read_documents()
            documents[folder.id] = data
            self._write_documents(documents)
        logger.debug(
            "Saved folder %s (%d cached files)", folder.local_path, len(folder.synced_files)
        )

    def load(self) -> list[WatchedFolder]:
        """Load every stored folder, repairing the ones that need it.

        Folders without an account get the default account and folders
        with an empty rule list get the permissive rule; repaired folders
        are written back.
        """
        with self._lock:
            self._documents = None
            documents = self._read_documents()
            folders: list[WatchedFolder] = []
            repaired = False
            for folder_id, data in list(documents.items()):
                try:
                    folder = WatchedFolder.from_dict(data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping invalid folder entry %s: %s", folder_id, e)
                    continue

                needs_repair = not data.get("rules")
                if folder.account_id is None and self.default_account:
                    logger.info(
                        "Assigning account %s to %s", self.default_account, folder.local_path
                    )
                    folder.account_id = self.default_account
                    needs_repair = True

                if needs_repair:
                    documents[folder.id] = folder.to_dict()
                    repaired = True
                folders.append(folder)

            if repaired:
                self._write_documents(documents)
        return folders

    def remove(self, folder_id: str) -> None:
        """Remove a folder and its cache. Unknown ids are ignored."""
        with self._lock:
            documents = self._read_documents()
            if documents.pop(folder_id, None) is None:
                logger.debug("Folder %s not stored, nothing to remove", folder_id)
                return
            self._write_documents(documents)
        logger.debug("Removed folder %s", folder_id)

    # =========================
    # File handling
    # =========================

    def _read_documents(self) -> dict[str, dict]:
        if self._documents is not None:
            return self._documents

        documents: dict[str, dict] = {}
        if self.path.exists():
            try:
                with open(self.path, encoding="utf-8") as f:
                    data = json.load(f)
                for entry in data.get("folders", []):
                    if isinstance(entry, dict) and entry.get("id"):
                        documents[entry["id"]] = entry
            except (json.JSONDecodeError, AttributeError, OSError) as e:
                logger.warning("Failed to load watched folders from %s: %s", self.path, e)
                documents = {}
        self._documents = documents
        return documents

    def _write_documents(self, documents: dict[str, dict]) -> None:
        payload = {"version": STATE_VERSION, "folders": list(documents.values())}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._documents = documents
