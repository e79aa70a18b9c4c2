"""Default compute device detection for fresh installs."""

import logging
import shutil
import subprocess
from typing import Optional

from ..config.types import TorchDevice
from .platform import get_machine, is_macos

logger = logging.getLogger("comfy_desktop.detection")


def has_nvidia_gpu() -> bool:
    """Check for an NVIDIA GPU via nvidia-smi."""
    nvidia_smi = shutil.which("nvidia-smi")
    if not nvidia_smi:
        return False
    try:
        result = subprocess.run(
            [nvidia_smi, "--query-gpu=name", "--format=csv,noheader"],
            capture_output=True, text=True, timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"nvidia-smi failed: {e}")
        return False
    return result.returncode == 0 and bool(result.stdout.strip())


def detect_default_device(platform: Optional[str] = None) -> TorchDevice:
    """
    Pick the device a new environment should target.

    Apple Silicon -> mps, NVIDIA GPU present -> nvidia, otherwise cpu.
    """
    if is_macos(platform):
        return TorchDevice.MPS if get_machine() == "arm64" else TorchDevice.UNSUPPORTED
    if has_nvidia_gpu():
        return TorchDevice.NVIDIA
    return TorchDevice.CPU
