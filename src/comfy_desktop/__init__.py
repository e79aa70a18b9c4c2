"""
comfy-desktop - Installation and launch orchestration for the ComfyUI desktop app.

Features:
- Install path validation (free space, writability, restricted locations)
- uv-managed Python environment with a persistent install shell
- Installation state machine with step-by-step validation and repair
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("comfy-desktop")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"


# =============================================================================
# Primary API
# =============================================================================

from .app import start_app
from .context import AppContext, AppPaths
from .errors import (
    ComfyDesktopError,
    CommandFailedError,
    EmptyPackageOutputError,
    FatalError,
    InstallationCancelledError,
    PackageQueryError,
    PythonImportVerificationError,
    ShellSessionError,
)


# =============================================================================
# Config Layer
# =============================================================================

from .config import (
    ComfyServerConfig,
    DesktopConfig,
    DesktopSettings,
    InstallState,
    TorchDevice,
)


# =============================================================================
# Environment Layer
# =============================================================================

from .environment import (
    PathRestrictionFlags,
    PathValidationResult,
    RequirementsStatus,
    VirtualEnvironment,
    evaluate_path_restrictions,
    validate_install_path,
)


# =============================================================================
# Install Layer
# =============================================================================

from .install import (
    ComfyInstallation,
    InstallationManager,
    Troubleshooting,
    ValidationReport,
    ValidationStatus,
)


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # App
    "start_app",
    "AppContext",
    "AppPaths",
    # Errors
    "ComfyDesktopError",
    "CommandFailedError",
    "EmptyPackageOutputError",
    "FatalError",
    "InstallationCancelledError",
    "PackageQueryError",
    "PythonImportVerificationError",
    "ShellSessionError",
    # Config
    "ComfyServerConfig",
    "DesktopConfig",
    "DesktopSettings",
    "InstallState",
    "TorchDevice",
    # Environment
    "PathRestrictionFlags",
    "PathValidationResult",
    "RequirementsStatus",
    "VirtualEnvironment",
    "evaluate_path_restrictions",
    "validate_install_path",
    # Install
    "ComfyInstallation",
    "InstallationManager",
    "Troubleshooting",
    "ValidationReport",
    "ValidationStatus",
]
