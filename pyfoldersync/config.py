"""Configuration management for pyfoldersync.

Values are resolved in this order: environment variables, the
``~/.config/pyfoldersync/config`` file (``KEY=value`` lines), defaults.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError
from .utils import (
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TRANSFER_WIDTH,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.googleapis.com/drive/v3"
DEFAULT_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

ENV_PREFIX = "PYFOLDERSYNC_"


class Config:
    """Configuration resolved from the environment and the config file."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file and the folder list.
                Defaults to $PYFOLDERSYNC_CONFIG_DIR or ~/.config/pyfoldersync
        """
        self._config_dir = config_dir
        self._file_values: Optional[dict[str, str]] = None

    @property
    def config_dir(self) -> Path:
        if self._config_dir is not None:
            return self._config_dir
        env_dir = os.environ.get(f"{ENV_PREFIX}CONFIG_DIR")
        if env_dir:
            return Path(env_dir).expanduser()
        return Path.home() / ".config" / "pyfoldersync"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config"

    @property
    def folders_file(self) -> Path:
        """JSON file holding the watched folders and their caches."""
        return self.config_dir / "watched_folders.json"

    def _load_file(self) -> dict[str, str]:
        if self._file_values is not None:
            return self._file_values

        values: dict[str, str] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    for line in f:
                        line = line.strip()
                        if not line or line.startswith("#") or "=" not in line:
                            continue
                        key, value = line.split("=", 1)
                        values[key.strip()] = value.strip().strip('"').strip("'")
            except OSError as e:
                logger.warning(f"Failed to read config file {self.config_file}: {e}")
        self._file_values = values
        return values

    def _get(self, key: str) -> Optional[str]:
        env_value = os.environ.get(f"{ENV_PREFIX}{key}")
        if env_value:
            return env_value
        return self._load_file().get(f"{ENV_PREFIX}{key}")

    def _get_number(self, key: str, default: float, cast: type) -> float:
        raw = self._get(key)
        if raw is None or raw == "":
            return default
        try:
            value = cast(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {ENV_PREFIX}{key}: {raw!r}") from e
        if value <= 0:
            raise ConfigError(f"{ENV_PREFIX}{key} must be positive, got {raw!r}")
        return value

    @property
    def access_token(self) -> Optional[str]:
        return self._get("ACCESS_TOKEN")

    @property
    def default_account(self) -> Optional[str]:
        return self._get("ACCOUNT")

    @property
    def api_url(self) -> str:
        return (self._get("API_URL") or DEFAULT_API_URL).rstrip("/")

    @property
    def upload_url(self) -> str:
        return (self._get("UPLOAD_URL") or DEFAULT_UPLOAD_URL).rstrip("/")

    @property
    def transfer_width(self) -> int:
        return int(self._get_number("TRANSFER_WIDTH", DEFAULT_TRANSFER_WIDTH, int))

    @property
    def debounce_seconds(self) -> float:
        return float(self._get_number("DEBOUNCE", DEFAULT_DEBOUNCE_SECONDS, float))

    @property
    def poll_interval(self) -> float:
        return float(self._get_number("POLL_INTERVAL", DEFAULT_POLL_INTERVAL, float))

    def save_access_token(self, token: str) -> None:
        """Store the access token in the config file, keeping other keys."""
        values = dict(self._load_file())
        values[f"{ENV_PREFIX}ACCESS_TOKEN"] = token
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            for key, value in sorted(values.items()):
                f.write(f"{key}={value}\n")
        try:
            self.config_file.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions of %s", self.config_file)
        self._file_values = values


config = Config()
