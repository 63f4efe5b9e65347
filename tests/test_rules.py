"""Tests for inclusion rule evaluation."""

from pathlib import Path

from pyfoldersync.models import MAX_SIZE_BOUND, RemoteItem, Rule, SizeUnit
from pyfoldersync.rules import folder_total_size, matches, rule_matches
from pyfoldersync.sync.scanner import LocalEntry

KB = 1024
MB = 1024 * 1024


def _item(name: str, size):
    return RemoteItem(id=name, name=name, is_folder=False, size=size)


class TestRuleMatches:
    """Single-rule evaluation."""

    def test_size_bounds_are_inclusive(self):
        rule = Rule(lower_bound=1, upper_bound=2, unit=SizeUnit.KB)
        assert rule_matches("a.bin", 1 * KB, rule)
        assert rule_matches("a.bin", 2 * KB, rule)
        assert not rule_matches("a.bin", 2 * KB + 1, rule)
        assert not rule_matches("a.bin", KB - 1, rule)

    def test_ignored_extension_is_case_insensitive(self):
        rule = Rule(0, 100, SizeUnit.MB, ignored_extensions=[".ZIP"])
        assert rule.ignored_extensions == ["zip"]
        assert not rule_matches("Archive.Zip", 10, rule)
        assert rule_matches("archive.tar", 10, rule)

    def test_unknown_size_never_matches(self):
        assert not rule_matches("a.txt", None, Rule.permissive())

    def test_swapped_bounds_are_normalized(self):
        """lower=100, upper=10 behaves like lower=10, upper=100."""
        swapped = Rule(lower_bound=100, upper_bound=10, unit=SizeUnit.MB)
        ordered = Rule(lower_bound=10, upper_bound=100, unit=SizeUnit.MB)
        for size in (5 * MB, 10 * MB, 50 * MB, 100 * MB, 101 * MB):
            assert rule_matches("f.dat", size, swapped) == rule_matches(
                "f.dat", size, ordered
            )

    def test_permissive_rule_accepts_everything(self):
        rule = Rule.permissive()
        assert rule.is_permissive
        assert rule_matches("huge.iso", MAX_SIZE_BOUND, rule)
        assert rule_matches("empty", 0, rule)


class TestMatches:
    """Rule sets are OR-combined."""

    def setup_method(self):
        self.rules = [
            Rule(0, 100, SizeUnit.KB, ignored_extensions=["zip"]),
            Rule(0, MAX_SIZE_BOUND, SizeUnit.B, ignored_extensions=["txt"]),
        ]

    def test_small_text_file_matches_first_rule(self):
        assert matches(_item("notes.txt", 50 * KB), self.rules)

    def test_large_zip_matches_second_rule(self):
        assert matches(_item("backup.zip", 5 * MB), self.rules)

    def test_large_text_file_matches_neither(self):
        assert not matches(_item("big.txt", 5 * MB), self.rules)

    def test_empty_rule_list_matches_nothing(self):
        assert not matches(_item("a.txt", 1), [])

    def test_missing_size_does_not_raise(self):
        assert not matches(_item("a.txt", None), self.rules)

    def test_local_path_is_stat_ed(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_bytes(b"x" * 10)
        assert matches(path, self.rules)

    def test_missing_local_path_does_not_match(self, tmp_path):
        assert not matches(tmp_path / "gone.txt", self.rules)

    def test_local_entry(self, tmp_path):
        path = tmp_path / "a.zip"
        path.write_bytes(b"x")
        entry = LocalEntry.from_path(path, tmp_path)
        assert matches(entry, self.rules)


class TestFolderTotalSize:
    def test_sums_nested_files(self, tmp_path):
        (tmp_path / "a").write_bytes(b"12345")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b").write_bytes(b"123")
        assert folder_total_size(tmp_path) == 8

    def test_missing_directory_is_empty(self, tmp_path):
        assert folder_total_size(Path(tmp_path / "nope")) == 0
