"""
Application context.

`AppPaths` describes where the running app lives (executable, bundled
resources, user data). `AppContext` bundles the paths with the config
stores and is passed explicitly to every component that needs them.
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .config.parser import DesktopConfig
from .config.server_config import ComfyServerConfig
from .detection.platform import is_macos, is_windows

APP_NAME = "ComfyUI"
USER_DATA_ENV_VAR = "COMFY_DESKTOP_USER_DATA"
RESOURCES_ENV_VAR = "COMFY_DESKTOP_RESOURCES"


def _default_user_data_dir(platform: str, environ: Mapping[str, str]) -> str:
    home = str(Path.home())
    if is_windows(platform):
        base = environ.get("APPDATA") or os.path.join(home, "AppData", "Roaming")
    elif is_macos(platform):
        base = os.path.join(home, "Library", "Application Support")
    else:
        base = environ.get("XDG_CONFIG_HOME") or os.path.join(home, ".config")
    return os.path.join(base, APP_NAME)


def _default_resources_dir(exe_path: str) -> str:
    # PyInstaller one-file builds unpack resources here
    meipass = getattr(sys, "_MEIPASS", None)
    if meipass:
        return str(meipass)
    return os.path.join(os.path.dirname(exe_path), "resources")


@dataclass
class AppPaths:
    """Filesystem locations of the running application.

    Paths are kept as strings in the flavour of `platform`, so a Windows
    layout can be described on any host.
    """
    exe_path: str
    resources_path: str
    user_data_dir: str
    platform: str = sys.platform
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    @classmethod
    def detect(cls, environ: Optional[Mapping[str, str]] = None) -> "AppPaths":
        """Locate the running app from sys.executable and the environment."""
        environ = dict(os.environ if environ is None else environ)
        exe_path = os.path.abspath(sys.executable)
        return cls(
            exe_path=exe_path,
            resources_path=environ.get(RESOURCES_ENV_VAR) or _default_resources_dir(exe_path),
            user_data_dir=environ.get(USER_DATA_ENV_VAR) or _default_user_data_dir(sys.platform, environ),
            platform=sys.platform,
            environ=environ,
        )

    @property
    def log_dir(self) -> Path:
        return Path(self.user_data_dir) / "logs"


@dataclass
class AppContext:
    """Explicit context shared by installation components."""
    paths: AppPaths
    config: DesktopConfig
    server_config: ComfyServerConfig

    @classmethod
    def load(cls, paths: Optional[AppPaths] = None) -> "AppContext":
        """
        Build the context for a user data directory.

        Raises:
            FatalError: If the desktop config cannot be read.
        """
        paths = paths or AppPaths.detect()
        return cls(
            paths=paths,
            config=DesktopConfig.load(Path(paths.user_data_dir)),
            server_config=ComfyServerConfig(Path(paths.user_data_dir), platform=paths.platform),
        )

    @property
    def platform(self) -> str:
        return self.paths.platform

    def close(self) -> None:
        """Flush settings on shutdown."""
        if self.config.path.exists() or self.config.settings.to_dict():
            self.config.save()
