"""
Python virtual environment management with uv.

Install steps run in a persistent shell (one visible terminal); queries such
as the requirements dry-run run as one-shot processes so their output can be
captured whole.
"""

import asyncio
import json
import logging
import shutil
import subprocess
import sys
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config.types import DEFAULT_PYTHON_VERSION, TorchDevice, TorchMirror
from ..context import AppPaths
from ..detection.platform import is_linux, is_macos, is_windows
from ..errors import (
    CommandFailedError,
    EmptyPackageOutputError,
    PackageQueryError,
    PythonImportVerificationError,
    ShellSessionError,
)
from .process import ProcessCallbacks, ProcessResult, run_command_async
from .requirements import RequirementsStatus, classify_requirements
from .shell import ShellSession

logger = logging.getLogger("comfy_desktop.environment")

VERIFY_IMPORTS = ["yaml", "torch", "uv", "toml", "numpy", "PIL", "sqlalchemy"]

_VERIFY_SCRIPT = """
import importlib, json, sys
failed = []
for name in sys.argv[1:]:
    try:
        importlib.import_module(name)
    except Exception as e:
        failed.append({"module": name, "error": f"{type(e).__name__}: {e}"})
print(json.dumps({"success": not failed, "failed": failed}))
"""


def get_default_torch_mirror(device: Optional[TorchDevice]) -> str:
    if device == TorchDevice.MPS:
        return TorchMirror.NIGHTLY_CPU
    if device == TorchDevice.NVIDIA:
        return TorchMirror.CUDA
    return TorchMirror.DEFAULT


def fix_device_mirror_mismatch(device: Optional[TorchDevice], mirror: Optional[str]) -> Optional[str]:
    """Never install CPU torch from the default index for a GPU device."""
    if mirror == TorchMirror.DEFAULT:
        if device == TorchDevice.NVIDIA:
            return TorchMirror.CUDA
        if device == TorchDevice.MPS:
            return TorchMirror.NIGHTLY_CPU
    return mirror


def get_pip_install_args(
    packages: Optional[List[str]] = None,
    requirements_file: Optional[str] = None,
    index_url: Optional[str] = None,
    extra_index_url: Optional[str] = None,
    prerelease: bool = False,
    upgrade: bool = False,
    index_strategy: Optional[str] = None,
) -> List[str]:
    """Build `uv pip install` arguments."""
    args = ["pip", "install"]
    if upgrade:
        args.append("-U")
    if prerelease:
        args.append("--pre")
    if requirements_file:
        args += ["-r", requirements_file]
    else:
        args += list(packages or [])
    if index_url:
        args += ["--index-url", index_url]
    if extra_index_url:
        args += ["--extra-index-url", extra_index_url]
    if index_strategy:
        args += ["--index-strategy", index_strategy]
    return args


def _rmtree(path) -> None:
    """rmtree that handles read-only files and long paths on Windows."""
    if sys.platform == "win32":
        target = str(Path(path).resolve())
        empty = tempfile.mkdtemp()
        try:
            subprocess.run(
                ["robocopy", empty, target, "/MIR", "/W:0", "/R:0"],
                capture_output=True,
            )
            shutil.rmtree(target)
        finally:
            shutil.rmtree(empty, ignore_errors=True)
    else:
        shutil.rmtree(path)


class VirtualEnvironment:
    """
    A uv-managed virtual environment at `<base_path>/.venv`.

    Args:
        base_path: Installation data directory.
        app_paths: Locations of the running app (bundled uv and manifests).
        selected_device: Compute device torch is installed for.
        python_version: Managed Python version uv installs.
        python_mirror: UV_PYTHON_INSTALL_MIRROR override.
        pypi_mirror: Index for requirement manifests.
        torch_mirror: Index for torch packages.
    """

    def __init__(
        self,
        base_path,
        *,
        app_paths: AppPaths,
        selected_device: Optional[TorchDevice] = None,
        python_version: Optional[str] = None,
        python_mirror: Optional[str] = None,
        pypi_mirror: Optional[str] = None,
        torch_mirror: Optional[str] = None,
    ):
        self.app_paths = app_paths
        self.platform = app_paths.platform
        self.base_path = Path(base_path)
        self.venv_path = self.base_path / ".venv"
        self.python_version = python_version or DEFAULT_PYTHON_VERSION
        self.selected_device = TorchDevice(selected_device) if selected_device else TorchDevice.CPU
        self.python_mirror = python_mirror
        self.pypi_mirror = pypi_mirror
        self.torch_mirror = fix_device_mirror_mismatch(self.selected_device, torch_mirror)
        self.cache_dir = self.base_path / "uv-cache"

        resources = Path(app_paths.resources_path)
        self.comfyui_requirements_path = resources / "ComfyUI" / "requirements.txt"
        self.manager_requirements_path = (
            resources / "ComfyUI" / "custom_nodes" / "ComfyUI-Manager" / "requirements.txt"
        )
        variant = self._compiled_requirements_variant()
        self.requirements_compiled_path = (
            resources / "requirements" / f"{variant}.compiled" if variant else None
        )

        if is_windows(self.platform):
            self.python_interpreter_path = self.venv_path / "Scripts" / "python.exe"
            self.uv_path = resources / "uv" / "win" / "uv.exe"
        elif is_macos(self.platform):
            self.python_interpreter_path = self.venv_path / "bin" / "python"
            self.uv_path = resources / "uv" / "macos" / "uv"
        elif is_linux(self.platform):
            self.python_interpreter_path = self.venv_path / "bin" / "python"
            self.uv_path = resources / "uv" / "linux" / "uv"
        else:
            raise RuntimeError(f"Unsupported platform: {self.platform}")
        logger.info(f"Using uv at {self.uv_path}")

        self._shell: Optional[ShellSession] = None
        self._scope_depth = 0

    def _compiled_requirements_variant(self) -> Optional[str]:
        if is_macos(self.platform):
            return "macos"
        if is_windows(self.platform):
            return "windows_cpu" if self.selected_device == TorchDevice.CPU else "windows_nvidia"
        return None

    @property
    def uv_env(self) -> Dict[str, str]:
        """Environment variables uv runs with."""
        env = {"VIRTUAL_ENV": str(self.venv_path), "UV_CACHE_DIR": str(self.cache_dir)}
        # Empty strings are not valid values
        if self.python_mirror:
            env["UV_PYTHON_INSTALL_MIRROR"] = self.python_mirror
        return env

    # =========================================================================
    # Shell lifecycle
    # =========================================================================

    @property
    def shell(self) -> ShellSession:
        """The persistent shell, created on first use."""
        if self._shell is None:
            self._shell = ShellSession(cwd=str(self.base_path), env=self.uv_env, platform=self.platform)
        return self._shell

    @asynccontextmanager
    async def shell_scope(self):
        """Kill the shell when the outermost scope exits, however it exits."""
        self._scope_depth += 1
        try:
            yield self
        finally:
            self._scope_depth -= 1
            if self._scope_depth == 0 and self._shell is not None:
                shell, self._shell = self._shell, None
                await shell.close()

    # =========================================================================
    # Command execution
    # =========================================================================

    async def run_uv_command_async(
        self, args: List[str], callbacks: Optional[ProcessCallbacks] = None
    ) -> ProcessResult:
        """Run uv inside the persistent shell."""
        uv_command = f'& "{self.uv_path}"' if is_windows(self.platform) else f'"{self.uv_path}"'
        command = uv_command + " " + " ".join(f'"{arg}"' for arg in args)
        logger.info(f"Running uv command: {command}")
        on_data = callbacks.on_stdout if callbacks else None
        exit_code = await self.shell.run(command, on_data)
        return ProcessResult(exit_code=exit_code)

    async def run_uv_async(
        self, args: List[str], callbacks: Optional[ProcessCallbacks] = None
    ) -> ProcessResult:
        """Run uv as a one-shot child process."""
        logger.info(f"Running uv child process: uv {' '.join(args)}")
        return await run_command_async(
            str(self.uv_path), args, env=self.uv_env, callbacks=callbacks, cwd=str(self.base_path)
        )

    async def run_python_command_async(
        self,
        args: List[str],
        callbacks: Optional[ProcessCallbacks] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessResult:
        """Run the environment's interpreter as a one-shot child process."""
        return await run_command_async(
            str(self.python_interpreter_path),
            args,
            env={**(env or {}), "PYTHONIOENCODING": "utf8"},
            callbacks=callbacks,
            cwd=cwd or str(self.base_path),
        )

    # =========================================================================
    # Creation and installation
    # =========================================================================

    async def exists(self) -> bool:
        """True if the venv directory exists and is not empty."""
        try:
            return any(self.venv_path.iterdir())
        except OSError:
            return False

    async def create(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        """
        Create the environment, or complete an existing one.

        Raises:
            PythonImportVerificationError: An existing environment cannot import core modules.
            CommandFailedError: An install step failed.
        """
        async with self.shell_scope():
            await self._create_environment(callbacks)

    async def _create_environment(self, callbacks: Optional[ProcessCallbacks]) -> None:
        if self.selected_device == TorchDevice.UNSUPPORTED:
            logger.info("User elected to manually configure their environment. Skipping python configuration.")
            return

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            if await self.exists():
                logger.info(f"Virtual environment directory already exists: {self.venv_path}")
                status = await self.has_requirements()
                if status == RequirementsStatus.OK:
                    logger.info("Skipping requirements installation - all requirements already installed")
                else:
                    logger.info("Starting manual install - venv missing requirements")
                    await self.manual_install(callbacks)

                if await self.verify_python_imports():
                    return
                raise PythonImportVerificationError(
                    "We were unable to verify the state of your Python virtual environment. "
                    "This will likely prevent ComfyUI from starting."
                )

            await self.create_venv_with_python(callbacks)
            await self.ensure_pip(callbacks)
            await self.install_requirements(callbacks)
            logger.info(f"Successfully created virtual environment at {self.venv_path}")
        except Exception as e:
            logger.error(f"Error creating virtual environment: {e}")
            raise

    async def create_venv_with_python(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        logger.info(f"Creating virtual environment at {self.venv_path} with python {self.python_version}")
        args = ["venv", "--python", self.python_version, "--python-preference", "only-managed"]
        result = await self.run_uv_command_async(args, callbacks)
        if result.exit_code != 0:
            raise CommandFailedError(
                f"Failed to create virtual environment: exit code {result.exit_code}", result.exit_code
            )

    async def ensure_pip(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        result = await self.run_python_command_async(["-m", "ensurepip", "--upgrade"], callbacks)
        if result.exit_code != 0:
            raise CommandFailedError(f"Failed to upgrade pip: exit code {result.exit_code}", result.exit_code)

    async def install_requirements(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        """Install from the locked manifest, falling back to a manual install."""
        if self.requirements_compiled_path is None or not self.requirements_compiled_path.exists():
            logger.info("No compiled requirements for this platform. Installing requirements.txt")
            await self.manual_install(callbacks)
            return

        args = get_pip_install_args(
            requirements_file=str(self.requirements_compiled_path),
            index_url=self.pypi_mirror,
            index_strategy="unsafe-best-match",
        )
        result = await self.run_uv_command_async(args, callbacks)
        if result.exit_code != 0:
            logger.error(
                f"Failed to install requirements.compiled: exit code {result.exit_code}. "
                "Falling back to installing requirements.txt"
            )
            await self.manual_install(callbacks)

    async def manual_install(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        """Install PyTorch, ComfyUI core, and ComfyUI-Manager requirements."""
        await self.install_pytorch(callbacks)
        await self.install_comfyui_requirements(callbacks)
        await self.install_manager_requirements(callbacks)

    async def install_pytorch(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        torch_mirror = self.torch_mirror or get_default_torch_mirror(self.selected_device)
        args = get_pip_install_args(
            packages=["torch", "torchvision", "torchaudio"],
            index_url=torch_mirror,
            prerelease="nightly" in torch_mirror,
        )
        logger.info(f"Installing PyTorch from {torch_mirror}")
        result = await self.run_uv_command_async(args, callbacks)
        if result.exit_code != 0:
            raise CommandFailedError(f"Failed to install PyTorch: exit code {result.exit_code}", result.exit_code)

    async def install_comfyui_requirements(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        logger.info(f"Installing ComfyUI requirements from {self.comfyui_requirements_path}")
        args = get_pip_install_args(
            requirements_file=str(self.comfyui_requirements_path), index_url=self.pypi_mirror
        )
        result = await self.run_uv_command_async(args, callbacks)
        if result.exit_code != 0:
            raise CommandFailedError(
                f"Failed to install ComfyUI requirements.txt: exit code {result.exit_code}", result.exit_code
            )

    async def install_manager_requirements(self, callbacks: Optional[ProcessCallbacks] = None) -> None:
        logger.info(f"Installing ComfyUI-Manager requirements from {self.manager_requirements_path}")
        args = get_pip_install_args(
            requirements_file=str(self.manager_requirements_path), index_url=self.pypi_mirror
        )
        result = await self.run_uv_command_async(args, callbacks)
        if result.exit_code != 0:
            raise CommandFailedError(
                f"Failed to install ComfyUI-Manager requirements.txt: exit code {result.exit_code}",
                result.exit_code,
            )

    # =========================================================================
    # Queries
    # =========================================================================

    async def _dry_run(self, requirements_path: Path) -> str:
        args = ["pip", "install", "--dry-run", "-r", str(requirements_path)]
        chunks: List[str] = []
        callbacks = ProcessCallbacks(on_stdout=chunks.append, on_stderr=chunks.append)
        result = await self.run_uv_async(args, callbacks)
        if result.exit_code != 0:
            raise PackageQueryError(
                f"Failed to get packages: Exit code {result.exit_code}, signal {result.signal}"
            )
        output = "".join(chunks)
        if not output:
            raise EmptyPackageOutputError()
        return output

    async def has_requirements(self) -> RequirementsStatus:
        """
        Check the environment against the core and manager manifests.

        Returns:
            OK, or PACKAGE_UPGRADE if anything would be installed.

        Raises:
            PackageQueryError: The dry-run failed or printed nothing.
        """
        core_output = await self._dry_run(self.comfyui_requirements_path)
        manager_output = await self._dry_run(self.manager_requirements_path)
        return classify_requirements(core_output, manager_output).status

    async def verify_python_imports(self, modules: Optional[List[str]] = None) -> bool:
        """True if the environment can import modules that commonly break."""
        modules = modules or VERIFY_IMPORTS
        stdout: List[str] = []
        try:
            result = await self.run_python_command_async(
                ["-c", _VERIFY_SCRIPT, *modules], ProcessCallbacks(on_stdout=stdout.append)
            )
        except OSError as e:
            logger.error(f"Unable to run python import verification: {e}")
            return False

        lines = "".join(stdout).strip().splitlines()
        try:
            report = json.loads(lines[-1]) if lines else {}
        except json.JSONDecodeError:
            report = {}
        if result.exit_code == 0 and report.get("success"):
            return True
        for failure in report.get("failed", []):
            logger.error(f"Python import failed: {failure['module']} ({failure['error']})")
        if not report:
            logger.error(f"Python import verification failed: exit code {result.exit_code}")
        return False

    # =========================================================================
    # Maintenance (never raise; return success)
    # =========================================================================

    async def clear_cache(self, on_data: Optional[Callable[[str], None]] = None) -> bool:
        """Clear the uv cache used by this installation."""
        try:
            async with self.shell_scope():
                result = await self.run_uv_command_async(["cache", "clean"], ProcessCallbacks(on_stdout=on_data))
        except (OSError, ShellSessionError) as e:
            logger.error(f"Failed to clear uv cache: {e}")
            return False
        if result.exit_code != 0:
            logger.error(f"Failed to clear uv cache: exit code {result.exit_code}")
        return result.exit_code == 0

    async def remove_venv_directory(self) -> bool:
        """Remove the .venv directory. Missing is success."""
        if not self.venv_path.exists():
            logger.warning(f"Attempted to remove .venv directory, but directory does not exist [{self.venv_path}]")
            return True
        logger.info(f"Removing .venv directory [{self.venv_path}]")
        try:
            await asyncio.to_thread(_rmtree, self.venv_path)
        except OSError as e:
            logger.error(f"Error removing .venv directory: {e}")
            return False
        return True

    async def create_venv(self, on_data: Optional[Callable[[str], None]] = None) -> bool:
        try:
            async with self.shell_scope():
                await self.create_venv_with_python(ProcessCallbacks(on_stdout=on_data))
            return True
        except Exception as e:
            logger.error(f"Failed to create virtual environment: {e}")
            return False

    async def upgrade_pip(self, callbacks: Optional[ProcessCallbacks] = None) -> bool:
        try:
            async with self.shell_scope():
                await self.ensure_pip(callbacks)
            return True
        except Exception as e:
            logger.error(f"Failed to upgrade pip: {e}")
            return False

    async def reinstall_requirements(self, on_data: Optional[Callable[[str], None]] = None) -> bool:
        """
        Reinstall all requirements, rebuilding the venv once if that fails.

        Returns:
            True on success.
        """
        callbacks = ProcessCallbacks(on_stdout=on_data)
        try:
            async with self.shell_scope():
                await self.manual_install(callbacks)
            return True
        except Exception as e:
            logger.error(f"Failed to reinstall requirements: {e}")

        if not await self.create_venv(on_data):
            return False
        if not await self.upgrade_pip(callbacks):
            return False
        try:
            async with self.shell_scope():
                await self.manual_install(callbacks)
        except Exception as e:
            logger.error(f"Failed to reinstall requirements after recreating venv: {e}")
            return False
        return True
