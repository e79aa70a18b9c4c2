"""Configuration layer: desktop settings and the ComfyUI server config."""

from .types import (
    DEFAULT_PYTHON_VERSION,
    DesktopSettings,
    InstallState,
    TorchDevice,
    TorchMirror,
)
from .parser import CONFIG_FILE_NAME, CONFIG_LOAD_EXIT_CODE, DesktopConfig
from .server_config import (
    SERVER_CONFIG_FILE_NAME,
    ComfyServerConfig,
    get_base_config,
    get_base_model_paths,
    read_base_path_from_config,
)

__all__ = [
    "DEFAULT_PYTHON_VERSION",
    "DesktopSettings",
    "InstallState",
    "TorchDevice",
    "TorchMirror",
    "CONFIG_FILE_NAME",
    "CONFIG_LOAD_EXIT_CODE",
    "DesktopConfig",
    "SERVER_CONFIG_FILE_NAME",
    "ComfyServerConfig",
    "get_base_config",
    "get_base_model_paths",
    "read_base_path_from_config",
]
