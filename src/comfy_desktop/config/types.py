"""Configuration types for comfy-desktop."""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional


class InstallState(str, Enum):
    """Lifecycle of the on-disk installation."""
    STARTED = "started"      # fresh install begun, not finished
    INSTALLED = "installed"
    UPGRADED = "upgraded"    # legacy install detected, config not yet migrated


class TorchDevice(str, Enum):
    """Compute device the Python environment is built for."""
    CPU = "cpu"
    NVIDIA = "nvidia"
    MPS = "mps"
    UNSUPPORTED = "unsupported"


class TorchMirror:
    """Package indexes PyTorch is installed from."""
    DEFAULT = "https://pypi.org/simple"
    CUDA = "https://download.pytorch.org/whl/cu128"
    NIGHTLY_CPU = "https://download.pytorch.org/whl/nightly/cpu"


DEFAULT_PYTHON_VERSION = "3.12"


@dataclass
class DesktopSettings:
    """Persisted desktop settings (desktop-config.toml)."""
    install_state: Optional[InstallState] = None
    base_path: Optional[str] = None
    selected_device: Optional[TorchDevice] = None
    python_mirror: Optional[str] = None
    pypi_mirror: Optional[str] = None
    torch_mirror: Optional[str] = None

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesktopSettings":
        settings = cls()
        for name in cls.field_names():
            value = data.get(name)
            if value is None:
                continue
            if name == "install_state":
                value = InstallState(value)
            elif name == "selected_device":
                value = TorchDevice(value)
            else:
                value = str(value)
            setattr(settings, name, value)
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """TOML-ready dict; unset values are omitted."""
        data = {}
        for name in self.field_names():
            value = getattr(self, name)
            if value is None:
                continue
            data[name] = value.value if isinstance(value, Enum) else value
        return data
