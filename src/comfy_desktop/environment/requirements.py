"""
Classification of `uv pip install --dry-run` output.

Decides whether an existing environment satisfies the bundled requirement
manifests, or only needs a known, safe set of package additions.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

logger = logging.getLogger("comfy_desktop.environment")

_NO_CHANGES_RE = re.compile(r"\bWould make no changes\s+$")
_CHANGE_RE = re.compile(r"^\s*([+-]) ([A-Za-z0-9][A-Za-z0-9._-]*)==\S+")


class RequirementsStatus(str, Enum):
    OK = "OK"
    PACKAGE_UPGRADE = "package-upgrade"


@dataclass(frozen=True)
class UpgradeAllowList:
    """Package changes that are expected when the app ships newer manifests."""
    name: str
    packages: FrozenSet[str]
    allow_removals: bool = False       # removing (replacing) listed packages is fine
    max_installs: Optional[int] = None


def _names(*names: str) -> FrozenSet[str]:
    return frozenset(names)


# Core additions in 0.4.21 and later
CORE_UPGRADE = UpgradeAllowList(
    name="core",
    packages=_names(
        "aiohttp", "av", "yarl",
        "comfyui-workflow-templates", "comfyui-embedded-docs",
        "pydantic", "pydantic-core", "pydantic-settings",
        "annotated-types", "typing-inspection",
        "alembic", "sqlalchemy", "greenlet", "mako",
        "python-dotenv",
    ),
    allow_removals=True,
)

# Manager additions: uv + toml (0.4.18), chardet later
MANAGER_UPGRADE = UpgradeAllowList(
    name="manager",
    packages=_names("toml", "uv", "chardet"),
    max_installs=3,
)


@dataclass
class RequirementsClassification:
    status: RequirementsStatus
    core_ok: bool
    manager_ok: bool
    upgrade_core: bool = False
    upgrade_manager: bool = False

    @property
    def known_upgrade(self) -> bool:
        """True when every outstanding change is on an allow-list."""
        return (
            (self.manager_ok and self.upgrade_core)
            or (self.core_ok and self.upgrade_manager)
            or (self.upgrade_core and self.upgrade_manager)
        )


def normalize_package_name(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


def parse_changes(output: str) -> Tuple[List[str], List[str]]:
    """Split dry-run output into (installs, removals) package names."""
    installs, removals = [], []
    for line in output.splitlines():
        match = _CHANGE_RE.match(line)
        if not match:
            continue
        sign, name = match.groups()
        (installs if sign == "+" else removals).append(normalize_package_name(name))
    return installs, removals


def has_all_packages(output: str) -> bool:
    """True if the dry-run reports nothing to do."""
    ok = _NO_CHANGES_RE.search(output) is not None
    if not ok:
        logger.warning(output)
    return ok


def is_known_upgrade(output: str, allow_list: UpgradeAllowList) -> bool:
    """
    True if the dry-run only adds packages from the allow-list.

    Removals are accepted only for listed packages, and only when the
    allow-list permits them. At least one install is required.
    """
    installs, removals = parse_changes(output)
    if removals and not allow_list.allow_removals:
        return False
    if any(name not in allow_list.packages for name in removals):
        return False
    if not installs:
        return False
    if allow_list.max_installs is not None and len(installs) > allow_list.max_installs:
        return False
    return all(name in allow_list.packages for name in installs)


def classify_requirements(core_output: str, manager_output: str) -> RequirementsClassification:
    """
    Combine the core and manager dry-runs into a single status.

    Drift that matches no allow-list is still reported as a package upgrade;
    it is logged so it can be investigated.
    """
    core_ok = has_all_packages(core_output)
    manager_ok = has_all_packages(manager_output)
    result = RequirementsClassification(
        status=RequirementsStatus.OK,
        core_ok=core_ok,
        manager_ok=manager_ok,
        upgrade_core=not core_ok and is_known_upgrade(core_output, CORE_UPGRADE),
        upgrade_manager=not manager_ok and is_known_upgrade(manager_output, MANAGER_UPGRADE),
    )

    if result.known_upgrade:
        logger.info(
            f"Package update of known packages required. Core: {result.upgrade_core} "
            f"Manager: {result.upgrade_manager}"
        )
        result.status = RequirementsStatus.PACKAGE_UPGRADE
    elif not core_ok or not manager_ok:
        logger.info(
            "Requirements are out of date. Treating as package upgrade. "
            f"core_ok={core_ok} manager_ok={manager_ok} "
            f"upgrade_core={result.upgrade_core} upgrade_manager={result.upgrade_manager}"
        )
        result.status = RequirementsStatus.PACKAGE_UPGRADE
    else:
        logger.debug("Requirements check: OK")
    return result
