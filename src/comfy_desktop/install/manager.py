"""
Installation orchestration.

Brings the desktop installation to a healthy state before the server is
started: fresh install, legacy upgrade, resuming an interrupted install,
and routing to the maintenance page while anything is broken.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..config.server_config import read_base_path_from_config
from ..config.types import InstallState
from ..context import AppContext
from ..detection.device import detect_default_device
from ..environment.install_path import validate_install_path
from ..environment.process import ProcessCallbacks
from ..errors import InstallationCancelledError
from .installation import ComfyInstallation
from .troubleshooting import Troubleshooting
from .validation import ValidationReport, ValidationStatus
from .window import Channels, Window

logger = logging.getLogger("comfy_desktop.install")

MaintenanceDriver = Callable[[Troubleshooting], Awaitable[None]]


def default_install_path() -> str:
    return str(Path.home() / "Documents" / "ComfyUI")


class InstallationManager:
    """
    Ensures a usable installation exists.

    Args:
        window: GUI collaborator.
        context: Shared app context.
        maintenance_driver: Optional coroutine that operates the maintenance
            page (used when there is no renderer, e.g. the CLI).
    """

    def __init__(
        self,
        window: Window,
        context: AppContext,
        maintenance_driver: Optional[MaintenanceDriver] = None,
    ):
        self.window = window
        self.context = context
        self.maintenance_driver = maintenance_driver

    def _send_update(self, report: ValidationReport) -> None:
        self.window.send(Channels.VALIDATION_UPDATE, report.to_dict())

    def _send_log(self, data: str) -> None:
        self.window.send(Channels.LOG_MESSAGE, data)

    async def ensure_installed(self) -> ComfyInstallation:
        """
        Return a validated installation with no errors.

        Raises:
            InstallationCancelledError: The user cancelled installation or maintenance.
        """
        installation = await ComfyInstallation.from_config(self.context)
        if installation is None:
            installation = self._find_legacy_installation()
        if installation is None:
            installation = await self.fresh_install()

        unsubscribe = installation.updates.subscribe(self._send_update)
        try:
            state = await installation.validate()
            if state == InstallState.UPGRADED:
                installation.upgrade_config()
            elif state == InstallState.STARTED and installation.validation.base_path == ValidationStatus.OK:
                await self._resume_installation(installation)
        finally:
            unsubscribe()

        if installation.has_issues:
            await self.window.load_page("maintenance")
            if not await self.resolve_issues(installation):
                raise InstallationCancelledError("Maintenance was cancelled")

        if installation.needs_requirements_update:
            await self.update_packages(installation)

        return installation

    def _find_legacy_installation(self) -> Optional[ComfyInstallation]:
        """An install from before state was recorded, found via the server config."""
        server_config = self.context.server_config
        if not server_config.exists():
            return None
        status, base_path = read_base_path_from_config(server_config.config_path)
        if status != "success":
            logger.warning(f"Found {server_config.config_path} but could not read base_path: {status}")
            return None
        logger.info(f"Found legacy installation at [{base_path}]")
        return ComfyInstallation(None, base_path, self.context)

    async def fresh_install(self) -> ComfyInstallation:
        """Ask for an install location, then build the environment there."""
        await self.window.load_page("welcome")
        base_path = await self._choose_install_path()

        os.makedirs(base_path, exist_ok=True)
        config = self.context.config
        if not config.get("selected_device"):
            config.set("selected_device", detect_default_device(self.context.platform))
        config.set("base_path", base_path)

        installation = ComfyInstallation(InstallState.STARTED, base_path, self.context)
        installation.set_state(InstallState.STARTED)
        self.context.server_config.set_base_path_in_default_config(base_path)

        await self.window.load_page("desktop-start")
        await installation.virtual_environment.create(
            ProcessCallbacks(on_stdout=self._send_log, on_stderr=self._send_log)
        )
        installation.set_state(InstallState.INSTALLED)
        logger.info(f"Installation completed at [{base_path}]")
        return installation

    async def _choose_install_path(self) -> str:
        default_path = self.context.config.get("base_path") or default_install_path()
        while True:
            path = await self.window.show_open_dialog(default_path)
            if not path:
                raise InstallationCancelledError("No install location selected")
            result = await validate_install_path(path, app_paths=self.context.paths)
            if result.is_valid:
                return path
            logger.warning(f"Rejected install path [{path}]: {result.problems()}")
            await self.window.show_message_box(
                "Invalid install location",
                "\n".join(result.problems()) or "This location cannot be used.",
            )
            default_path = path

    async def _resume_installation(self, installation: ComfyInstallation) -> None:
        """Finish an install that was interrupted after it started."""
        logger.info("Resuming interrupted installation")
        await installation.virtual_environment.create(
            ProcessCallbacks(on_stdout=self._send_log, on_stderr=self._send_log)
        )
        installation.set_state(InstallState.INSTALLED)
        await installation.validate()

    async def resolve_issues(self, installation: ComfyInstallation) -> bool:
        """
        Keep the maintenance page up until nothing is in error.

        Returns:
            True when resolved, False if the user cancelled.
        """
        logger.info(f"Resolving installation issues: {installation.validation.errors()}")
        with Troubleshooting(installation, self.window) as troubleshooting:
            driver = None
            if self.maintenance_driver:
                driver = asyncio.ensure_future(self._drive(troubleshooting))
            try:
                resolved = await troubleshooting.wait_for_resolution()
            finally:
                if driver:
                    if not driver.done():
                        driver.cancel()
                    (outcome,) = await asyncio.gather(driver, return_exceptions=True)
                    if isinstance(outcome, Exception):
                        raise outcome
        return resolved and not installation.has_issues

    async def _drive(self, troubleshooting: Troubleshooting) -> None:
        try:
            await self.maintenance_driver(troubleshooting)
        finally:
            # A driver that gives up without fixing anything cancels maintenance
            await troubleshooting.cancel()

    async def update_packages(self, installation: ComfyInstallation) -> None:
        """Install newly required packages. Failures are logged, not raised."""
        logger.info("Updating Python packages to match bundled requirements")
        venv = installation.virtual_environment
        callbacks = ProcessCallbacks(on_stdout=self._send_log, on_stderr=self._send_log)
        try:
            async with venv.shell_scope():
                await venv.install_comfyui_requirements(callbacks)
                await venv.install_manager_requirements(callbacks)
        except Exception as e:
            logger.error(f"Failed to update packages: {e}")
            await self.window.show_message_box(
                "Package update failed",
                "Updating Python packages failed. ComfyUI may not start correctly.\n\n"
                f"{e}",
            )
            return
        installation.validation.upgrade_packages = None
