"""
Install path validation.

Checks a user-chosen install directory for writability, free space and
restricted locations before anything is written there.
"""

import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional

from ..context import AppPaths
from ..detection.disks import DiskInfo, list_disks as default_list_disks
from ..detection.platform import get_system_drive, is_macos, is_windows
from .restrictions import evaluate_path_restrictions, is_path_inside, normalize_mount_point

logger = logging.getLogger("comfy_desktop.environment")

GIB = 1024 * 1024 * 1024
WIN_REQUIRED_SPACE = 10 * GIB
MAC_REQUIRED_SPACE = 5 * GIB


@dataclass
class PathValidationResult:
    """Outcome of validating an install path. `free_space` is -1 when unknown."""
    is_valid: bool = True
    exists: bool = False
    free_space: int = -1
    required_space: int = WIN_REQUIRED_SPACE
    is_one_drive: bool = False
    is_non_default_drive: bool = False
    parent_missing: bool = False
    cannot_write: bool = False
    is_inside_app_install_dir: bool = False
    is_inside_updater_cache: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        """camelCase payload for the GUI."""
        result = {}
        for key, value in asdict(self).items():
            head, *rest = key.split("_")
            result[head + "".join(part.title() for part in rest)] = value
        return result

    def problems(self) -> List[str]:
        """Human-readable list of blocking issues."""
        problems = []
        if self.error:
            problems.append(f"Error: {self.error}")
        if self.parent_missing:
            problems.append("The parent folder does not exist.")
        if self.cannot_write:
            problems.append("The folder is not writable.")
        if 0 <= self.free_space < self.required_space:
            problems.append(
                f"Not enough free space: {self.free_space / GIB:.1f} GB available, "
                f"{self.required_space / GIB:.0f} GB required."
            )
        if self.is_one_drive:
            problems.append("OneDrive folders are not supported.")
        if self.is_inside_app_install_dir:
            problems.append("The app's own install folder cannot be used.")
        if self.is_inside_updater_cache:
            problems.append("The updater cache folder cannot be used.")
        return problems


def required_space_for(platform: str) -> int:
    return MAC_REQUIRED_SPACE if is_macos(platform) else WIN_REQUIRED_SPACE


def _strip_trailing_separators(path: str) -> str:
    stripped = path.rstrip(os.sep + (os.altsep or ""))
    # A bare root such as "/" or "C:\\" stays as it is
    if not stripped or stripped.endswith(":"):
        return path
    return stripped


def _can_write(path: str) -> bool:
    return os.access(path, os.W_OK)


def _find_disk(disks: List[DiskInfo], normalized_path: str, app_paths: AppPaths) -> Optional[DiskInfo]:
    """The most specific mount containing the path."""
    best = None
    best_len = -1
    for disk in disks:
        mount = normalize_mount_point(disk.mount, app_paths.platform, app_paths.environ)
        if not mount or not is_path_inside(normalized_path, mount, app_paths.platform):
            continue
        if len(mount) > best_len:
            best, best_len = disk, len(mount)
    return best


async def validate_install_path(
    path: str,
    bypass_space_check: bool = False,
    *,
    app_paths: Optional[AppPaths] = None,
    list_disks: Optional[Callable[[], List[DiskInfo]]] = None,
) -> PathValidationResult:
    """
    Validate a candidate install directory.

    Never raises: unexpected failures are reported through `error`, which
    makes the result invalid.

    Args:
        path: Directory chosen by the user.
        bypass_space_check: Ignore insufficient free space.
        app_paths: Locations of the running app. Detected when omitted.
        list_disks: Disk enumeration service. Defaults to psutil.

    Returns:
        PathValidationResult with `is_valid` set.
    """
    app_paths = app_paths or AppPaths.detect()
    list_disks = list_disks or default_list_disks
    required_space = required_space_for(app_paths.platform)
    result = PathValidationResult(required_space=required_space)

    try:
        flags = evaluate_path_restrictions(path, app_paths)
        normalized = flags.normalized_path
        result.is_inside_app_install_dir = flags.is_inside_app_install_dir
        result.is_inside_updater_cache = flags.is_inside_updater_cache
        result.is_one_drive = flags.is_one_drive
        if flags.is_restricted:
            logger.warning(
                f"Restricted install path [{path}]: app install dir={flags.is_inside_app_install_dir}, "
                f"updater cache={flags.is_inside_updater_cache}, OneDrive={flags.is_one_drive}"
            )

        if is_windows(app_paths.platform):
            system_drive = get_system_drive(app_paths.environ).lower()
            if normalized and not normalized.startswith(system_drive):
                result.is_non_default_drive = True

        parent = os.path.dirname(_strip_trailing_separators(path))
        if not os.path.exists(parent):
            result.parent_missing = True

        if os.path.exists(path):
            if os.path.isdir(path):
                result.exists = len(os.listdir(path)) > 0
            else:
                result.exists = True

        if not _can_write(parent):
            result.cannot_write = True

        disks = await asyncio.to_thread(list_disks)
        if disks:
            disk = _find_disk(disks, normalized, app_paths) if normalized else None
            if disk:
                result.free_space = disk.available
        else:
            logger.warning("No disks reported. Skipping disk space check.")
            result.free_space = required_space
    except Exception as e:
        logger.error(f"Error validating install path: {e}")
        result.error = str(e) or type(e).__name__

    blocking = (
        result.cannot_write
        or result.parent_missing
        or (not bypass_space_check and 0 <= result.free_space < required_space)
        or bool(result.error)
        or result.is_one_drive
        or result.is_inside_app_install_dir
        or result.is_inside_updater_cache
    )
    result.is_valid = not blocking
    logger.debug(f"Install path validation [{path}]: {result}")
    return result
