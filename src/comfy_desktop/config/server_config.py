"""
ComfyUI server config (extra_models_config.yaml).

The server reads model search paths from this YAML file. The desktop app
owns the `comfyui_desktop` section, whose `base_path` points at the
installation's data directory.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger("comfy_desktop.config")

SERVER_CONFIG_FILE_NAME = "extra_models_config.yaml"
REPO_CONFIG_FILE_NAME = "extra_model_paths.yaml"
DESKTOP_SECTION = "comfyui_desktop"

MODEL_FOLDERS = [
    "checkpoints",
    "classifiers",
    "clip",
    "clip_vision",
    "configs",
    "controlnet",
    "diffusers",
    "diffusion_models",
    "embeddings",
    "gligen",
    "hypernetworks",
    "loras",
    "photomaker",
    "style_models",
    "text_encoders",
    "unet",
    "upscale_models",
    "vae",
    "vae_approx",
]

_BASE_CONFIGS = {
    "win32": {"is_default": "true", "custom_nodes": "custom_nodes/"},
    "darwin": {"is_default": "true", "custom_nodes": "custom_nodes/"},
    "linux": {"is_default": "true", "custom_nodes": "custom_nodes/"},
}


def get_base_config(platform: Optional[str] = None) -> Dict[str, str]:
    """Default `comfyui_desktop` section for a platform."""
    platform = platform or sys.platform
    key = "linux" if platform.startswith("linux") else platform
    if key not in _BASE_CONFIGS:
        raise ValueError(f"No base config found for {platform}")
    return dict(_BASE_CONFIGS[key])


def get_base_model_paths(repo_path: str) -> Dict[str, str]:
    """Model folder paths under `<repo>/models`, each with a trailing separator."""
    models_dir = os.path.join(repo_path, "models")
    return {name: os.path.join(models_dir, name) + os.sep for name in MODEL_FOLDERS}


def generate_config_file_content(config: Dict[str, Any], platform: Optional[str] = None) -> str:
    header = f"# ComfyUI extra_model_paths.yaml for {platform or sys.platform}\n"
    return header + yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


def read_config_file(path: Path) -> Optional[Dict[str, Any]]:
    """Read a YAML config, return None if missing or invalid."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading config file {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def write_config_file(path: Path, content: str) -> bool:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_text(content, encoding="utf-8")
        return True
    except OSError as e:
        logger.error(f"Error writing config file {path}: {e}")
        return False


def read_base_path_from_config(path: Path) -> Tuple[str, Optional[Any]]:
    """
    Read the desktop base path from a server config file.

    Returns:
        (status, base_path) where status is one of
        "success", "notFound", "invalid", "error".
    """
    path = Path(path)
    if not path.exists():
        return "notFound", None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Unable to read {path}: {e}")
        return "error", None
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error(f"Malformed YAML in {path}: {e}")
        return "invalid", None
    if not isinstance(data, dict):
        return "invalid", None

    # Legacy configs used a `comfyui` section
    section = data.get(DESKTOP_SECTION) or data.get("comfyui")
    base_path = section.get("base_path") if isinstance(section, dict) else None
    if base_path is None:
        return "invalid", None
    if not isinstance(base_path, str):
        return "invalid", base_path
    return "success", base_path


class ComfyServerConfig:
    """The extra_models_config.yaml owned by the desktop app."""

    def __init__(self, user_data_dir: Path, platform: Optional[str] = None):
        self.config_path = Path(user_data_dir) / SERVER_CONFIG_FILE_NAME
        self.platform = platform or sys.platform

    def exists(self) -> bool:
        return self.config_path.exists()

    def read_base_path(self) -> Tuple[str, Optional[Any]]:
        return read_base_path_from_config(self.config_path)

    def create(self, base_path: str) -> bool:
        """Write a fresh config with default model paths under base_path."""
        section = get_base_config(self.platform)
        section["base_path"] = base_path
        section.update(get_base_model_paths(base_path))
        return self.create_config_file({DESKTOP_SECTION: section})

    def create_config_file(self, config: Dict[str, Any]) -> bool:
        try:
            content = generate_config_file_content(config, self.platform)
        except yaml.YAMLError as e:
            logger.error(f"Error generating config file content: {e}")
            return False
        return write_config_file(self.config_path, content)

    def set_base_path_in_default_config(self, base_path: str) -> bool:
        """Point the desktop section at a new base path, creating the file if needed."""
        config = read_config_file(self.config_path)
        if config is None:
            return self.create(base_path)
        section = config.setdefault(DESKTOP_SECTION, {})
        if not isinstance(section, dict):
            section = config[DESKTOP_SECTION] = {}
        section["base_path"] = base_path
        return write_config_file(
            self.config_path, generate_config_file_content(config, self.platform)
        )

    def remove(self) -> None:
        if self.config_path.exists():
            logger.info(f"Removing server config [{self.config_path}]")
            self.config_path.unlink()
