"""Environment layer: install path checks, processes, and the Python venv."""

from .restrictions import (
    PathRestrictionFlags,
    RestrictedPathEntry,
    RestrictedPathType,
    build_restricted_paths,
    evaluate_path_restrictions,
    is_path_inside,
    normalize_mount_point,
    normalize_path_for_comparison,
)
from .install_path import (
    MAC_REQUIRED_SPACE,
    WIN_REQUIRED_SPACE,
    PathValidationResult,
    validate_install_path,
)
from .process import ProcessCallbacks, ProcessResult, run_command_async
from .shell import ExitMarkerParser, ShellSession, parse_exit_code, strip_ansi
from .requirements import (
    CORE_UPGRADE,
    MANAGER_UPGRADE,
    RequirementsClassification,
    RequirementsStatus,
    UpgradeAllowList,
    classify_requirements,
)
from .venv import VirtualEnvironment

__all__ = [
    "PathRestrictionFlags",
    "RestrictedPathEntry",
    "RestrictedPathType",
    "build_restricted_paths",
    "evaluate_path_restrictions",
    "is_path_inside",
    "normalize_mount_point",
    "normalize_path_for_comparison",
    "MAC_REQUIRED_SPACE",
    "WIN_REQUIRED_SPACE",
    "PathValidationResult",
    "validate_install_path",
    "ProcessCallbacks",
    "ProcessResult",
    "run_command_async",
    "ExitMarkerParser",
    "ShellSession",
    "parse_exit_code",
    "strip_ansi",
    "CORE_UPGRADE",
    "MANAGER_UPGRADE",
    "RequirementsClassification",
    "RequirementsStatus",
    "UpgradeAllowList",
    "classify_requirements",
    "VirtualEnvironment",
]
