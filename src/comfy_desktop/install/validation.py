"""Validation report published while an installation is checked."""

import copy
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional

from ..config.types import InstallState


class ValidationStatus(str, Enum):
    OK = "OK"
    ERROR = "error"
    WARNING = "warning"
    SKIPPED = "skipped"


# Report fields that hold a ValidationStatus, in check order
CHECK_FIELDS = (
    "base_path",
    "venv_directory",
    "python_interpreter",
    "uv",
    "python_packages",
    "upgrade_packages",
    "git",
    "vc_redist",
)


@dataclass
class ValidationReport:
    """Result of each installation check. None means not checked (yet)."""
    in_progress: bool = False
    install_state: InstallState = InstallState.STARTED
    base_path: Optional[ValidationStatus] = None
    unsafe_base_path: bool = False
    unsafe_base_path_reason: Optional[str] = None
    venv_directory: Optional[ValidationStatus] = None
    python_interpreter: Optional[ValidationStatus] = None
    uv: Optional[ValidationStatus] = None
    python_packages: Optional[ValidationStatus] = None
    upgrade_packages: Optional[ValidationStatus] = None
    git: Optional[ValidationStatus] = None
    vc_redist: Optional[ValidationStatus] = None
    error: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return any(getattr(self, name) == ValidationStatus.ERROR for name in CHECK_FIELDS)

    def errors(self):
        return [name for name in CHECK_FIELDS if getattr(self, name) == ValidationStatus.ERROR]

    def snapshot(self) -> "ValidationReport":
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        """camelCase payload for the GUI. Unset fields are omitted."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            head, *rest = f.name.split("_")
            key = head + "".join(part.title() for part in rest)
            result[key] = value.value if isinstance(value, Enum) else value
        return result
