"""Detection layer: platform, compute device, and disk space."""

from .platform import (
    get_executable_suffix,
    get_system_drive,
    is_linux,
    is_macos,
    is_windows,
    path_module,
)
from .device import detect_default_device, has_nvidia_gpu
from .disks import DiskInfo, list_disks

__all__ = [
    "get_executable_suffix",
    "get_system_drive",
    "is_linux",
    "is_macos",
    "is_windows",
    "path_module",
    "detect_default_device",
    "has_nvidia_gpu",
    "DiskInfo",
    "list_disks",
]
