"""
Platform detection - OS name, executable suffix, and Windows drive helpers.

Most helpers take an optional `platform` (a `sys.platform` value) so code
can be exercised for other operating systems than the host.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import platform as platform_module
import sys
from typing import Mapping, Optional


def _get_os_name(platform: Optional[str] = None) -> str:
    """Get normalized OS name."""
    os_name = platform or sys.platform
    if os_name.startswith('linux'):
        return 'linux'
    elif os_name == 'win32':
        return 'windows'
    elif os_name == 'darwin':
        return 'darwin'
    return os_name


def is_windows(platform: Optional[str] = None) -> bool:
    """Check if running on Windows."""
    return _get_os_name(platform) == 'windows'


def is_macos(platform: Optional[str] = None) -> bool:
    """Check if running on macOS."""
    return _get_os_name(platform) == 'darwin'


def is_linux(platform: Optional[str] = None) -> bool:
    """Check if running on Linux."""
    return _get_os_name(platform) == 'linux'


def get_machine() -> str:
    return platform_module.machine().lower()


def get_executable_suffix(platform: Optional[str] = None) -> str:
    """Get executable suffix for a platform."""
    if is_windows(platform):
        return '.exe'
    return ''


def path_module(platform: Optional[str] = None):
    """The os.path flavour (ntpath or posixpath) for a platform."""
    return ntpath if is_windows(platform) else posixpath


def get_system_drive(environ: Optional[Mapping[str, str]] = None) -> str:
    """Windows system drive, e.g. 'C:'. Falls back to C: when unset or malformed."""
    environ = os.environ if environ is None else environ
    drive = (environ.get('SystemDrive') or environ.get('SYSTEMDRIVE') or '').strip()
    if len(drive) >= 2 and drive[0].isalpha() and drive[1] == ':':
        return drive[:2]
    return 'C:'
