"""Tests for the local directory scanner."""

import os

import pytest

from pyfoldersync.exceptions import LocalIOError
from pyfoldersync.sync.scanner import DirectoryScanner


class TestDirectoryScanner:
    def test_lists_direct_children_only(self, tmp_path):
        (tmp_path / "a.txt").write_text("abc")
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "c.txt").write_text("c")

        children = DirectoryScanner().list_children(tmp_path, tmp_path)

        assert sorted(children) == ["a.txt", "b"]
        assert children["a.txt"].size == 3
        assert children["b"].is_dir
        assert children["b"].size is None

    def test_relative_path_from_base(self, tmp_path):
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "c.txt").write_text("c")

        children = DirectoryScanner().list_children(tmp_path / "b", tmp_path)

        assert children["c.txt"].relative_path == "b/c.txt"

    def test_hidden_entries_skipped(self, tmp_path):
        (tmp_path / ".hidden").write_text("x")
        (tmp_path / ".git").mkdir()

        assert DirectoryScanner().list_children(tmp_path, tmp_path) == {}
        assert len(DirectoryScanner(include_hidden=True).list_children(tmp_path, tmp_path)) == 2

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_dangling_symlink_skipped(self, tmp_path):
        (tmp_path / "link").symlink_to(tmp_path / "missing")

        assert DirectoryScanner().list_children(tmp_path, tmp_path) == {}

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(LocalIOError):
            DirectoryScanner().list_children(tmp_path / "missing", tmp_path)
