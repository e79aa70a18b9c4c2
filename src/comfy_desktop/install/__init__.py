"""Install layer: installation state machine, maintenance, and orchestration."""

from .events import EventEmitter
from .validation import ValidationReport, ValidationStatus
from .installation import ComfyInstallation
from .troubleshooting import Troubleshooting
from .manager import InstallationManager
from .window import Channels, ConsoleWindow, Window

__all__ = [
    "EventEmitter",
    "ValidationReport",
    "ValidationStatus",
    "ComfyInstallation",
    "Troubleshooting",
    "InstallationManager",
    "Channels",
    "ConsoleWindow",
    "Window",
]
