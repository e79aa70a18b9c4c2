"""
Repair actions offered on the maintenance page.

A `Troubleshooting` session lives while the maintenance page is shown. It
forwards validation updates to the window and resolves once the
installation has no errors left (or the user cancels).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from ..environment.process import ProcessCallbacks
from ..environment.restrictions import evaluate_path_restrictions
from .installation import ComfyInstallation
from .validation import ValidationReport
from .window import Channels, Window

logger = logging.getLogger("comfy_desktop.install")


class Troubleshooting:
    """Maintenance actions bound to one installation and window."""

    def __init__(self, installation: ComfyInstallation, window: Window):
        self.installation = installation
        self.window = window
        self._resolution: asyncio.Future = asyncio.get_running_loop().create_future()
        self._unsubscribe = installation.updates.subscribe(self._forward_update)
        self.actions: Dict[str, Callable[..., Awaitable[Any]]] = {
            Channels.GET_VALIDATION_STATE: self.get_validation_state,
            Channels.VALIDATE_INSTALLATION: self.validate,
            Channels.UV_INSTALL_REQUIREMENTS: self.install_requirements,
            Channels.UV_CLEAR_CACHE: self.clear_cache,
            Channels.UV_RESET_VENV: self.reset_venv,
            Channels.SET_BASE_PATH: self.set_base_path,
            Channels.COMPLETE_VALIDATION: self.complete,
            Channels.CANCEL_VALIDATION: self.cancel,
        }

    def _forward_update(self, report: ValidationReport) -> None:
        self.window.send(Channels.VALIDATION_UPDATE, report.to_dict())

    def _send_log(self, data: str) -> None:
        logger.info(data)
        self.window.send(Channels.LOG_MESSAGE, data)

    async def handle(self, channel: str, *args) -> Any:
        """Dispatch a renderer request to its action."""
        if channel not in self.actions:
            raise KeyError(f"No troubleshooting action for channel: {channel}")
        return await self.actions[channel](*args)

    # =========================================================================
    # Actions
    # =========================================================================

    async def get_validation_state(self) -> ValidationReport:
        report = self.installation.validation.snapshot()
        self._forward_update(report)
        return report

    async def validate(self):
        return await self.installation.validate()

    async def install_requirements(self) -> bool:
        result = await self.installation.virtual_environment.reinstall_requirements(self._send_log)
        if result:
            await self.on_install_fix()
        return result

    async def clear_cache(self) -> bool:
        return await self.installation.virtual_environment.clear_cache(self._send_log)

    async def reset_venv(self) -> bool:
        venv = self.installation.virtual_environment
        if not await venv.remove_venv_directory():
            return False
        if not await venv.create_venv(self._send_log):
            return False
        result = await venv.upgrade_pip(ProcessCallbacks(on_stdout=self._send_log, on_stderr=self._send_log))
        if result:
            await self.on_install_fix()
        return result

    async def set_base_path(self) -> bool:
        """Let the user pick a new base path; unsafe locations are refused."""
        context = self.installation.context
        current = context.config.get("base_path")
        base_path = await self.window.show_open_dialog(current)
        if not base_path:
            return False

        flags = evaluate_path_restrictions(base_path, context.paths)
        if flags.is_restricted:
            logger.warning(
                "Selected base path is in an unsafe location (inside app install directory, "
                f"updater cache, or OneDrive). base_path={base_path} flags={flags}"
            )
            return False

        context.config.set("base_path", base_path)
        result = context.server_config.set_base_path_in_default_config(base_path)
        if result:
            await self.on_install_fix()
        return result

    async def complete(self) -> bool:
        """User asked to continue. Only succeeds if nothing is in error."""
        if self.installation.has_issues:
            return False
        self._resolve(True)
        return True

    async def cancel(self) -> None:
        self._resolve(False)

    # =========================================================================
    # Resolution
    # =========================================================================

    async def on_install_fix(self) -> None:
        """Re-validate after a fix; resolve the session if the install is healthy."""
        await self.installation.validate()
        if not self.installation.has_issues:
            self._resolve(True)

    def _resolve(self, value: bool) -> None:
        if not self._resolution.done():
            self._resolution.set_result(value)

    @property
    def resolved(self) -> bool:
        return self._resolution.done()

    async def wait_for_resolution(self) -> bool:
        """True once the installation is fixed, False if cancelled."""
        return await self._resolution

    def close(self) -> None:
        self._unsubscribe()
        if not self._resolution.done():
            self._resolution.cancel()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
