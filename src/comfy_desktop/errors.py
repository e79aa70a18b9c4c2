"""
Exception types raised by comfy-desktop.

Probes (file access, executables, disk queries) never raise; they degrade to
conservative values. The types below are raised by orchestration code so
callers can match on them.
"""

from typing import Optional


class ComfyDesktopError(Exception):
    """Base class for comfy-desktop errors."""


class CommandFailedError(ComfyDesktopError, RuntimeError):
    """An install step exited with a non-zero code."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class PackageQueryError(ComfyDesktopError, RuntimeError):
    """The requirements dry-run could not be performed."""


class EmptyPackageOutputError(PackageQueryError):
    """The requirements dry-run exited cleanly but printed nothing."""

    def __init__(self):
        super().__init__("Failed to get packages: uv output was empty")


class PythonImportVerificationError(ComfyDesktopError, RuntimeError):
    """Core modules could not be imported from an existing environment."""


class ShellSessionError(ComfyDesktopError, RuntimeError):
    """The persistent shell exited before a command finished."""


class FatalError(ComfyDesktopError):
    """
    Unrecoverable startup error.

    Carries the process exit code and the title shown to the user.
    """

    def __init__(self, message: str, title: str = "Startup failed", exit_code: int = 2020):
        super().__init__(message)
        self.message = message
        self.title = title
        self.exit_code = exit_code

    @classmethod
    def wrap(cls, error: BaseException, title: str = "Startup failed", exit_code: int = 2020) -> "FatalError":
        """Wrap an arbitrary exception, keeping an existing FatalError as-is."""
        if isinstance(error, FatalError):
            return error
        fatal = cls(str(error) or type(error).__name__, title=title, exit_code=exit_code)
        fatal.__cause__ = error
        return fatal


class InstallationCancelledError(ComfyDesktopError):
    """The user backed out of installation or maintenance."""
