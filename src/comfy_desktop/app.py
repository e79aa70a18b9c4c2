"""
Application bootstrap.

Loads config, ensures the installation is healthy, and turns startup
failures into a message box plus a non-zero exit code.
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from .context import AppContext, AppPaths
from .errors import FatalError, InstallationCancelledError
from .install.installation import ComfyInstallation
from .install.manager import InstallationManager, MaintenanceDriver
from .install.window import ConsoleWindow, Window
from .logging_setup import install_logging

logger = logging.getLogger("comfy_desktop.app")

DEFAULT_PORT = 8000


async def start_app(
    context: AppContext,
    window: Window,
    maintenance_driver: Optional[MaintenanceDriver] = None,
) -> ComfyInstallation:
    """Ensure a healthy installation exists and return it."""
    manager = InstallationManager(window, context, maintenance_driver)
    installation = await manager.ensure_installed()
    logger.info(f"Installation ready at [{installation.base_path}]")
    return installation


def build_server_command(installation: ComfyInstallation, port: int = DEFAULT_PORT) -> List[str]:
    """Command line that starts the ComfyUI server from the installation's venv."""
    venv = installation.virtual_environment
    context = installation.context
    main_py = Path(context.paths.resources_path) / "ComfyUI" / "main.py"
    return [
        str(venv.python_interpreter_path),
        str(main_py),
        "--base-directory", installation.base_path,
        "--extra-model-paths-config", str(context.server_config.config_path),
        "--port", str(port),
    ]


def show_fatal_error(window: Window, error: FatalError) -> int:
    logger.error(f"Fatal error: {error.message}", exc_info=error.__cause__ or error)
    try:
        asyncio.run(window.show_message_box(error.title, error.message))
    except Exception as e:
        logger.error(f"Unable to show error dialog: {e}")
    return error.exit_code


def run(
    window: Optional[Window] = None,
    paths: Optional[AppPaths] = None,
    maintenance_driver: Optional[MaintenanceDriver] = None,
    launch: bool = False,
    port: int = DEFAULT_PORT,
) -> int:
    """
    Run the desktop startup sequence.

    Returns:
        Process exit code. 0 on success or user cancellation, 20 for an
        unreadable config, 2020 for any other startup failure.
    """
    window = window or ConsoleWindow()
    paths = paths or AppPaths.detect()
    install_logging(paths.log_dir)

    try:
        context = AppContext.load(paths)
    except FatalError as e:
        return show_fatal_error(window, e)

    try:
        installation = asyncio.run(start_app(context, window, maintenance_driver))
        if launch:
            command = build_server_command(installation, port)
            logger.info(f"Starting server: {' '.join(command)}")
            return subprocess.run(command, cwd=installation.base_path).returncode
        return 0
    except InstallationCancelledError as e:
        logger.info(f"Installation cancelled: {e}")
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as e:
        return show_fatal_error(window, FatalError.wrap(e, title="Unhandled exception during app startup"))
    finally:
        context.close()
