"""Shared fixtures for pyfoldersync tests."""

import itertools
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytest

from pyfoldersync.exceptions import RemoteNotFoundError
from pyfoldersync.models import FOLDER_MIME_TYPE, RemoteFolderRef, RemoteItem, WatchedFolder

ROOT_ID = "root"


@dataclass
class FakeNode:
    id: str
    name: str
    parent_id: Optional[str]
    is_folder: bool
    content: bytes = b""
    trashed: bool = False


class FakeRemoteStore:
    """In-memory remote store with call recording and fault injection."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.nodes: dict[str, FakeNode] = {
            ROOT_ID: FakeNode(ROOT_ID, "", None, is_folder=True)
        }
        self.calls: list[tuple[str, str]] = []
        self.errors: dict[tuple[str, str], Exception] = {}
        self.in_flight = 0
        self.peak_in_flight = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # Test helpers

    def add_folder(self, name: str, parent_id: str = ROOT_ID) -> str:
        with self._lock:
            node_id = f"folder-{next(self._ids)}"
            self.nodes[node_id] = FakeNode(node_id, name, parent_id, is_folder=True)
            return node_id

    def add_file(self, name: str, content: bytes = b"data", parent_id: str = ROOT_ID) -> str:
        with self._lock:
            node_id = f"file-{next(self._ids)}"
            self.nodes[node_id] = FakeNode(
                node_id, name, parent_id, is_folder=False, content=content
            )
            return node_id

    def trash(self, node_id: str) -> None:
        self.nodes[node_id].trashed = True

    def drop(self, node_id: str) -> None:
        del self.nodes[node_id]

    def child(self, name: str, parent_id: str = ROOT_ID) -> Optional[FakeNode]:
        for node in self.nodes.values():
            if node.parent_id == parent_id and node.name == name and not node.trashed:
                return node
        return None

    def calls_of(self, method: str) -> list[str]:
        return [arg for name, arg in self.calls if name == method]

    # RemoteStore protocol

    def _enter(self, method: str, key: str) -> None:
        with self._lock:
            self.calls.append((method, key))
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            error = self.errors.get((method, key))
        try:
            if self.delay:
                time.sleep(self.delay)
            if error is not None:
                raise error
        except BaseException:
            self._leave()
            raise

    def _leave(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def list_children(self, folder_id: str) -> dict[str, RemoteItem]:
        self._enter("list_children", folder_id)
        try:
            if folder_id not in self.nodes:
                raise RemoteNotFoundError(folder_id)
            children = {}
            for node in list(self.nodes.values()):
                if node.parent_id == folder_id:
                    children[node.name] = RemoteItem(
                        id=node.id,
                        name=node.name,
                        is_folder=node.is_folder,
                        mime_type=(
                            FOLDER_MIME_TYPE if node.is_folder else "text/plain"
                        ),
                        trashed=node.trashed,
                        size=None if node.is_folder else len(node.content),
                    )
            return children
        finally:
            self._leave()

    def create_folder(self, name: str, parent_id: str) -> str:
        self._enter("create_folder", name)
        try:
            return self.add_folder(name, parent_id)
        finally:
            self._leave()

    def upload(self, local_path: Path, parent_id: str, progress_callback=None) -> str:
        self._enter("upload", local_path.name)
        try:
            content = local_path.read_bytes()
            if progress_callback:
                progress_callback(len(content), len(content))
            return self.add_file(local_path.name, content, parent_id)
        finally:
            self._leave()

    def download(self, remote_id: str, dest_path: Path, progress_callback=None) -> None:
        self._enter("download", remote_id)
        try:
            node = self.nodes.get(remote_id)
            if node is None:
                raise RemoteNotFoundError(remote_id)
            dest_path.write_bytes(node.content)
            if progress_callback:
                progress_callback(len(node.content), len(node.content))
        finally:
            self._leave()

    def delete(self, remote_id: str) -> None:
        self._enter("delete", remote_id)
        try:
            if remote_id not in self.nodes:
                raise RemoteNotFoundError(remote_id)
            del self.nodes[remote_id]
        finally:
            self._leave()


class MemoryPersistence:
    """Persistence double that records saves."""

    def __init__(self):
        self.saved: dict[str, dict] = {}
        self.save_count = 0
        self.removed: list[str] = []
        self._lock = threading.Lock()

    def save(self, folder: WatchedFolder) -> None:
        with self._lock:
            self.saved[folder.id] = folder.to_dict()
            self.save_count += 1

    def load(self) -> list[WatchedFolder]:
        return [WatchedFolder.from_dict(d) for d in self.saved.values()]

    def remove(self, folder_id: str) -> None:
        with self._lock:
            self.saved.pop(folder_id, None)
            self.removed.append(folder_id)


@pytest.fixture
def remote():
    """In-memory remote store."""
    return FakeRemoteStore()


@pytest.fixture
def persistence():
    return MemoryPersistence()


@pytest.fixture
def local_root(tmp_path):
    """Empty local directory to sync."""
    root = tmp_path / "local"
    root.mkdir()
    yield root
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def watched(local_root):
    """Watched folder pairing local_root with the fake remote root."""
    return WatchedFolder(
        local_path=local_root,
        remote_folder=RemoteFolderRef(id=ROOT_ID, name="My Drive"),
    )
