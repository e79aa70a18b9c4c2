"""
The desktop installation and its validation.

`ComfyInstallation` owns the recorded install state and base path, and
checks that the environment ComfyUI needs is present and usable.
"""

import asyncio
import logging
import os
from typing import Optional

from ..config.types import InstallState
from ..context import AppContext
from ..detection.platform import is_windows
from ..environment.requirements import RequirementsStatus
from ..environment.restrictions import RestrictedPathType, evaluate_path_restrictions
from ..environment.venv import VirtualEnvironment
from .events import EventEmitter
from .validation import ValidationReport, ValidationStatus

logger = logging.getLogger("comfy_desktop.install")


# =============================================================================
# Probes (never raise)
# =============================================================================

async def path_accessible(path) -> bool:
    return bool(path) and os.path.exists(path)


async def can_execute(path) -> bool:
    return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)


async def can_execute_shell_command(command: str) -> bool:
    """True if the command runs and exits 0."""
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        return await proc.wait() == 0
    except OSError as e:
        logger.debug(f"Unable to run [{command}]: {e}")
        return False


def vc_redist_path(environ) -> str:
    system_root = environ.get("SYSTEMROOT") or "C:\\Windows"
    return f"{system_root}\\System32\\vcruntime140.dll"


class ComfyInstallation:
    """
    The on-disk installation: recorded state, base path and its venv.

    Args:
        state: Recorded install state, or None if none was recorded.
        base_path: Directory holding models, custom nodes and the venv.
        context: Shared app context (config stores and app paths).
    """

    def __init__(self, state: Optional[InstallState], base_path: str, context: AppContext):
        self.state = InstallState(state) if state else None
        self.context = context
        self._base_path = base_path
        self._virtual_environment = self._create_virtual_environment(base_path)
        self.validation = ValidationReport(install_state=self.state)
        self.updates: EventEmitter[ValidationReport] = EventEmitter()

    @classmethod
    async def from_config(cls, context: AppContext) -> Optional["ComfyInstallation"]:
        """The recorded installation, or None if state or base path is missing."""
        state = context.config.get("install_state")
        base_path = context.config.get("base_path")
        if state and base_path:
            return cls(state, base_path, context)
        return None

    def _create_virtual_environment(self, base_path: str) -> VirtualEnvironment:
        config = self.context.config
        return VirtualEnvironment(
            base_path,
            app_paths=self.context.paths,
            selected_device=config.get("selected_device"),
            python_mirror=config.get("python_mirror"),
            pypi_mirror=config.get("pypi_mirror"),
            torch_mirror=config.get("torch_mirror"),
        )

    @property
    def base_path(self) -> str:
        return self._base_path

    @property
    def virtual_environment(self) -> VirtualEnvironment:
        return self._virtual_environment

    @property
    def has_issues(self) -> bool:
        return self.validation.has_errors

    @property
    def is_valid(self) -> bool:
        return self.state == InstallState.INSTALLED and not self.has_issues

    @property
    def needs_requirements_update(self) -> bool:
        return self.validation.upgrade_packages == ValidationStatus.WARNING

    def _publish(self) -> None:
        self.updates.emit(self.validation.snapshot())

    async def validate(self) -> Optional[InstallState]:
        """
        Check the installation step by step, publishing after every step.

        Returns:
            The install state, which is `upgraded` for legacy installs.
        """
        logger.info(f"Validating installation. Recorded state: [{self.state and self.state.value}]")
        validation = ValidationReport(in_progress=True, install_state=self.state)
        self.validation = validation
        self._publish()

        # Installs from before install state was recorded
        if not validation.install_state and self.context.server_config.exists():
            logger.info("Found extra_models_config.yaml but no recorded state - assuming upgrade")
            validation.install_state = InstallState.UPGRADED
            self._publish()

        await self._validate_base_path(validation)
        self._publish()

        if validation.base_path != ValidationStatus.ERROR:
            await self._validate_venv(validation)
            self._publish()

        validation.git = (
            ValidationStatus.OK if await can_execute_shell_command("git --help") else ValidationStatus.ERROR
        )
        if validation.git != ValidationStatus.OK:
            logger.warning("git not found in path.")
        self._publish()

        environ = self.context.paths.environ
        if is_windows(self.context.platform):
            dll_path = vc_redist_path(environ)
            validation.vc_redist = (
                ValidationStatus.OK if await path_accessible(dll_path) else ValidationStatus.ERROR
            )
            if validation.vc_redist != ValidationStatus.OK:
                logger.warning(f"Visual C++ Redistributable was not found [{dll_path}]")
        else:
            validation.vc_redist = ValidationStatus.SKIPPED
        self._publish()

        validation.in_progress = False
        logger.info(
            f"Validation result: is_valid:{self.is_valid}, state:{validation.install_state}, "
            f"errors:{validation.errors()}"
        )
        self._publish()
        return validation.install_state

    async def _validate_base_path(self, validation: ValidationReport) -> None:
        base_path = self.context.config.get("base_path") or self._base_path
        if not base_path or not await path_accessible(base_path):
            logger.error('"base_path" is inaccessible or undefined.')
            validation.base_path = ValidationStatus.ERROR
            return

        flags = evaluate_path_restrictions(base_path, self.context.paths)
        if flags.is_restricted:
            logger.error(
                '"base_path" is in an unsafe location (inside app install directory, updater cache, or OneDrive). '
                f"base_path={base_path} flags={flags}"
            )
            validation.base_path = ValidationStatus.ERROR
            validation.unsafe_base_path = True
            if flags.is_inside_app_install_dir:
                validation.unsafe_base_path_reason = RestrictedPathType.APP_INSTALL_DIR.value
            elif flags.is_inside_updater_cache:
                validation.unsafe_base_path_reason = RestrictedPathType.UPDATER_CACHE.value
            else:
                validation.unsafe_base_path_reason = RestrictedPathType.ONE_DRIVE.value
            return

        await self.update_base_path_and_venv(base_path)
        validation.base_path = ValidationStatus.OK

    async def _validate_venv(self, validation: ValidationReport) -> None:
        venv = self.virtual_environment
        if not await venv.exists():
            logger.warning("Virtual environment is missing.")
            validation.venv_directory = ValidationStatus.ERROR
            return
        validation.venv_directory = ValidationStatus.OK
        self._publish()

        validation.python_interpreter = (
            ValidationStatus.OK if await can_execute(venv.python_interpreter_path) else ValidationStatus.ERROR
        )
        if validation.python_interpreter != ValidationStatus.OK:
            logger.warning("Python interpreter is missing or not executable.")
        self._publish()

        if not await can_execute(venv.uv_path):
            logger.warning("uv is missing or not executable.")
            validation.uv = ValidationStatus.ERROR
            return
        validation.uv = ValidationStatus.OK
        self._publish()

        try:
            status = await venv.has_requirements()
        except Exception as e:
            logger.error(f"Failed to read venv packages: {e}")
            validation.python_packages = ValidationStatus.ERROR
            validation.error = str(e)
            return
        validation.python_packages = ValidationStatus.OK
        if status == RequirementsStatus.PACKAGE_UPGRADE:
            validation.upgrade_packages = ValidationStatus.WARNING

    def upgrade_config(self) -> None:
        """Migrate a legacy install's config and mark it installed."""
        logger.debug(f"Upgrading config to latest format. Current state: [{self.state}]")
        if self.validation.base_path != ValidationStatus.ERROR:
            self.context.config.set("base_path", self._base_path)
        else:
            logger.warning("Skipping save of base_path.")
        self.set_state(InstallState.INSTALLED)

    def set_state(self, state: InstallState) -> None:
        """Change and persist the install state."""
        self.state = InstallState(state)
        self.context.config.set("install_state", self.state)

    async def update_base_path_and_venv(self, base_path: str) -> None:
        """Point the installation at a new base path. No-op if unchanged."""
        if self._base_path == base_path:
            return
        self._base_path = base_path
        self._virtual_environment = self._create_virtual_environment(base_path)
        self.context.config.set("base_path", base_path)

    async def uninstall(self) -> None:
        """Remove the server config and the desktop config file."""
        self.context.server_config.remove()
        self.context.config.permanently_delete()
