"""Tests for configuration resolution."""

import pytest

from pyfoldersync.config import DEFAULT_API_URL, Config
from pyfoldersync.exceptions import ConfigError
from pyfoldersync.utils import DEFAULT_TRANSFER_WIDTH


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("ACCESS_TOKEN", "API_URL", "TRANSFER_WIDTH", "DEBOUNCE", "CONFIG_DIR"):
        monkeypatch.delenv(f"PYFOLDERSYNC_{key}", raising=False)


class TestConfig:
    def test_defaults(self, tmp_path):
        cfg = Config(tmp_path)

        assert cfg.access_token is None
        assert cfg.api_url == DEFAULT_API_URL
        assert cfg.transfer_width == DEFAULT_TRANSFER_WIDTH
        assert cfg.folders_file == tmp_path / "watched_folders.json"

    def test_file_values(self, tmp_path):
        (tmp_path / "config").write_text(
            "# comment\nPYFOLDERSYNC_ACCESS_TOKEN='abc'\nPYFOLDERSYNC_TRANSFER_WIDTH=2\n"
        )
        cfg = Config(tmp_path)

        assert cfg.access_token == "abc"
        assert cfg.transfer_width == 2

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        (tmp_path / "config").write_text("PYFOLDERSYNC_ACCESS_TOKEN=file\n")
        monkeypatch.setenv("PYFOLDERSYNC_ACCESS_TOKEN", "env")

        assert Config(tmp_path).access_token == "env"

    def test_config_dir_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PYFOLDERSYNC_CONFIG_DIR", str(tmp_path))

        assert Config().config_file == tmp_path / "config"

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_invalid_number(self, tmp_path, monkeypatch, value):
        monkeypatch.setenv("PYFOLDERSYNC_TRANSFER_WIDTH", value)

        with pytest.raises(ConfigError):
            Config(tmp_path).transfer_width

    def test_save_access_token_keeps_other_keys(self, tmp_path):
        (tmp_path / "config").write_text("PYFOLDERSYNC_DEBOUNCE=5\n")
        cfg = Config(tmp_path)

        cfg.save_access_token("new-token")

        reread = Config(tmp_path)
        assert reread.access_token == "new-token"
        assert reread.debounce_seconds == 5.0
