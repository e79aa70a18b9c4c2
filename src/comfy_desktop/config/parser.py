"""
Desktop config store.

Settings live in desktop-config.toml under the user data directory.
Every `set` is written through to disk.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import tomli
import tomli_w

from ..errors import FatalError
from .types import DesktopSettings

logger = logging.getLogger("comfy_desktop.config")

CONFIG_FILE_NAME = "desktop-config.toml"

# Exit code used when the config file exists but cannot be read.
CONFIG_LOAD_EXIT_CODE = 20


class DesktopConfig:
    """Persistent key/value settings backed by a TOML file."""

    def __init__(self, path: Path, settings: Optional[DesktopSettings] = None):
        self.path = Path(path)
        self.settings = settings or DesktopSettings()

    @classmethod
    def load(cls, user_data_dir: Path) -> "DesktopConfig":
        """
        Load the config from a user data directory.

        A missing file yields empty settings.

        Raises:
            FatalError: If the file exists but is unreadable or malformed.
        """
        path = Path(user_data_dir) / CONFIG_FILE_NAME
        if not path.exists():
            return cls(path)
        try:
            with open(path, "rb") as f:
                data = tomli.load(f)
            return cls(path, DesktopSettings.from_dict(data))
        except (OSError, tomli.TOMLDecodeError, ValueError) as e:
            logger.error(f"Unable to load config file {path}: {e}")
            raise FatalError(
                f"Unable to read the desktop config file:\n{path}\n\n{e}",
                title="Invalid configuration file",
                exit_code=CONFIG_LOAD_EXIT_CODE,
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        self._check_key(key)
        value = getattr(self.settings, key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        self._check_key(key)
        setattr(self.settings, key, value)
        self.save()

    def delete(self, key: str) -> None:
        self.set(key, None)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(tomli_w.dumps(self.settings.to_dict()), encoding="utf-8")

    def permanently_delete(self) -> None:
        """Remove the config file and reset in-memory settings."""
        self.settings = DesktopSettings()
        if self.path.exists():
            logger.info(f"Removing desktop config [{self.path}]")
            self.path.unlink()

    @staticmethod
    def _check_key(key: str) -> None:
        if key not in DesktopSettings.field_names():
            raise KeyError(f"Unknown desktop setting: {key}")
