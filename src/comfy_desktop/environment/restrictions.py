"""
Restricted install locations.

An installation must not live inside the app's own install directory, the
auto-updater caches, or a OneDrive-synced folder. Zones are rebuilt on every
query so environment changes are always picked up.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional

from ..context import AppPaths
from ..detection.platform import get_system_drive, is_macos, is_windows, path_module

LEGACY_INSTALL_DIR_NAME = "comfyui-electron"
UPDATER_CACHE_DIR_NAMES = ("comfyui-electron-updater", "@comfyorgcomfyui-electron-updater")


class RestrictedPathType(str, Enum):
    APP_INSTALL_DIR = "appInstallDir"
    UPDATER_CACHE = "updaterCache"
    ONE_DRIVE = "oneDrive"


@dataclass
class RestrictedPathEntry:
    type: RestrictedPathType
    path: str  # normalized


@dataclass
class PathRestrictionFlags:
    normalized_path: Optional[str] = None
    is_inside_app_install_dir: bool = False
    is_inside_updater_cache: bool = False
    is_one_drive: bool = False

    @property
    def is_restricted(self) -> bool:
        return self.is_inside_app_install_dir or self.is_inside_updater_cache or self.is_one_drive


def normalize_path_for_comparison(
    target: Optional[str],
    platform: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    Canonical form of a path for containment checks.

    Trims whitespace, roots `/x` on the system drive (Windows), resolves to an
    absolute path and case-folds on case-insensitive platforms. Blank input
    yields None.
    """
    if not target:
        return None
    trimmed = target.strip()
    if not trimmed:
        return None

    pm = path_module(platform)
    if is_windows(platform) and trimmed.startswith("/") and not trimmed.startswith("//"):
        trimmed = get_system_drive(environ) + trimmed

    resolved = pm.normpath(trimmed) if pm.isabs(trimmed) else pm.abspath(trimmed)
    if is_windows(platform) or is_macos(platform):
        return resolved.lower()
    return resolved


def is_path_inside(candidate: str, parent: str, platform: Optional[str] = None) -> bool:
    """True if candidate equals parent or lies beneath it. Both must be normalized."""
    if candidate == parent:
        return True
    pm = path_module(platform)
    try:
        relative = pm.relpath(candidate, parent)
    except ValueError:
        # Different drives
        return False
    if relative in ("", "."):
        return True
    escapes = relative == ".." or relative.startswith(".." + pm.sep)
    return not escapes and not pm.isabs(relative)


def normalize_mount_point(
    mount: Optional[str],
    platform: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Normalize a disk mount point; bare drive letters become drive roots."""
    if not mount:
        return None
    trimmed = mount.strip()
    if not trimmed:
        return None
    if len(trimmed) == 2 and trimmed[0].isalpha() and trimmed[1] == ":":
        return normalize_path_for_comparison(trimmed + "\\", platform, environ)
    if is_windows(platform) and trimmed.replace("/", "\\") == "\\":
        return normalize_path_for_comparison(get_system_drive(environ) + "\\", platform, environ)
    return normalize_path_for_comparison(trimmed, platform, environ)


def _find_app_bundle(exe_path: str, platform: str) -> Optional[str]:
    """Walk up from the executable to the enclosing .app bundle (macOS)."""
    pm = path_module(platform)
    current = exe_path
    while current and current != "/" and not current.endswith(".app"):
        parent = pm.dirname(current)
        if parent == current:
            break
        current = parent
    return current if current.endswith(".app") else None


def build_restricted_paths(app_paths: AppPaths) -> List[RestrictedPathEntry]:
    """Build the restricted zones for the running app, de-duplicated."""
    platform = app_paths.platform
    environ = app_paths.environ
    pm = path_module(platform)
    entries: List[RestrictedPathEntry] = []
    seen = set()

    def add(type_: RestrictedPathType, raw_path: Optional[str]) -> None:
        normalized = normalize_path_for_comparison(raw_path, platform, environ)
        if not normalized or normalized in seen:
            return
        seen.add(normalized)
        entries.append(RestrictedPathEntry(type_, normalized))

    exe_path = app_paths.exe_path
    install_dir = _find_app_bundle(exe_path, platform) if is_macos(platform) else None
    add(RestrictedPathType.APP_INSTALL_DIR, install_dir or pm.dirname(exe_path))
    add(RestrictedPathType.APP_INSTALL_DIR, app_paths.resources_path)

    if is_windows(platform):
        local_app_data = environ.get("LOCALAPPDATA")
        if local_app_data:
            # Legacy per-user install location
            add(RestrictedPathType.APP_INSTALL_DIR, pm.join(local_app_data, "Programs", LEGACY_INSTALL_DIR_NAME))
            for name in UPDATER_CACHE_DIR_NAMES:
                add(RestrictedPathType.UPDATER_CACHE, pm.join(local_app_data, name))
        one_drive = environ.get("OneDrive")
        if one_drive:
            add(RestrictedPathType.ONE_DRIVE, one_drive)

    return entries


def evaluate_path_restrictions(path: str, app_paths: Optional[AppPaths] = None) -> PathRestrictionFlags:
    """
    Check a candidate path against every restricted zone.

    Args:
        path: Path as entered by the user.
        app_paths: Locations of the running app. Detected when omitted.

    Returns:
        Flags for each zone type the path falls inside, plus the normalized path.
    """
    app_paths = app_paths or AppPaths.detect()
    normalized = normalize_path_for_comparison(path, app_paths.platform, app_paths.environ)
    flags = PathRestrictionFlags(normalized_path=normalized)
    if not normalized:
        return flags

    for restricted in build_restricted_paths(app_paths):
        if not is_path_inside(normalized, restricted.path, app_paths.platform):
            continue
        if restricted.type == RestrictedPathType.UPDATER_CACHE:
            flags.is_inside_updater_cache = True
        elif restricted.type == RestrictedPathType.ONE_DRIVE:
            flags.is_one_drive = True
        else:
            flags.is_inside_app_install_dir = True
    return flags
