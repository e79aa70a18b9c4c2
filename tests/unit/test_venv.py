"""Tests for the uv virtual environment manager."""

import asyncio
from pathlib import Path

import pytest

from comfy_desktop.config.types import TorchDevice, TorchMirror
from comfy_desktop.context import AppPaths
from comfy_desktop.environment.process import ProcessResult
from comfy_desktop.environment.requirements import RequirementsStatus
from comfy_desktop.environment.venv import (
    VirtualEnvironment,
    fix_device_mirror_mismatch,
    get_default_torch_mirror,
    get_pip_install_args,
)
from comfy_desktop.errors import (
    CommandFailedError,
    EmptyPackageOutputError,
    PackageQueryError,
    PythonImportVerificationError,
    ShellSessionError,
)

pytestmark = pytest.mark.unit

NO_CHANGES = "Would make no changes\n"


@pytest.fixture
def venv(tmp_path, linux_paths):
    return VirtualEnvironment(tmp_path / "base", app_paths=linux_paths)


def fake_uv(outputs):
    """run_uv_async stand-in replaying (exit_code, output) pairs."""
    calls = []

    async def run_uv_async(args, callbacks=None):
        calls.append(args)
        exit_code, output = outputs[len(calls) - 1]
        if output and callbacks and callbacks.on_stdout:
            callbacks.on_stdout(output)
        return ProcessResult(exit_code=exit_code)

    run_uv_async.calls = calls
    return run_uv_async


class FakeShell:
    def __init__(self, exit_codes=None):
        self.commands = []
        self.exit_codes = list(exit_codes or [])
        self.closed = 0

    async def run(self, command, on_data=None):
        self.commands.append(command)
        outcome = self.exit_codes.pop(0) if self.exit_codes else 0
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed += 1


# =============================================================================
# Mirrors and arguments
# =============================================================================

def test_default_torch_mirror():
    assert get_default_torch_mirror(TorchDevice.NVIDIA) == TorchMirror.CUDA
    assert get_default_torch_mirror(TorchDevice.MPS) == TorchMirror.NIGHTLY_CPU
    assert get_default_torch_mirror(TorchDevice.CPU) == TorchMirror.DEFAULT
    assert get_default_torch_mirror(None) == TorchMirror.DEFAULT


def test_fix_device_mirror_mismatch():
    assert fix_device_mirror_mismatch(TorchDevice.NVIDIA, TorchMirror.DEFAULT) == TorchMirror.CUDA
    assert fix_device_mirror_mismatch(TorchDevice.MPS, TorchMirror.DEFAULT) == TorchMirror.NIGHTLY_CPU
    assert fix_device_mirror_mismatch(TorchDevice.CPU, TorchMirror.DEFAULT) == TorchMirror.DEFAULT
    assert fix_device_mirror_mismatch(TorchDevice.NVIDIA, "https://mirror.example/whl") == "https://mirror.example/whl"


def test_pip_install_args():
    assert get_pip_install_args(packages=["torch"], index_url="https://x", prerelease=True, upgrade=True) == [
        "pip", "install", "-U", "--pre", "torch", "--index-url", "https://x",
    ]
    assert get_pip_install_args(
        requirements_file="req.txt", extra_index_url="https://y", index_strategy="unsafe-best-match"
    ) == ["pip", "install", "-r", "req.txt", "--extra-index-url", "https://y", "--index-strategy", "unsafe-best-match"]


def test_constructor_fixes_torch_mirror(tmp_path, linux_paths):
    venv = VirtualEnvironment(
        tmp_path, app_paths=linux_paths, selected_device="nvidia", torch_mirror=TorchMirror.DEFAULT
    )
    assert venv.torch_mirror == TorchMirror.CUDA


def test_uv_env_skips_empty_mirror(tmp_path, linux_paths):
    venv = VirtualEnvironment(tmp_path, app_paths=linux_paths, python_mirror="")
    assert venv.uv_env == {
        "VIRTUAL_ENV": str(tmp_path / ".venv"),
        "UV_CACHE_DIR": str(tmp_path / "uv-cache"),
    }

    venv = VirtualEnvironment(tmp_path, app_paths=linux_paths, python_mirror="https://py.example")
    assert venv.uv_env["UV_PYTHON_INSTALL_MIRROR"] == "https://py.example"


def test_shell_uses_install_uv_cache(tmp_path, linux_paths):
    venv = VirtualEnvironment(tmp_path, app_paths=linux_paths)
    assert venv.shell.env["UV_CACHE_DIR"] == str(tmp_path / "uv-cache")
    assert venv.shell.cwd == str(tmp_path)


# =============================================================================
# Layout
# =============================================================================

def test_linux_layout(venv, linux_paths):
    resources = Path(linux_paths.resources_path)
    assert venv.python_interpreter_path == venv.venv_path / "bin" / "python"
    assert venv.uv_path == resources / "uv" / "linux" / "uv"
    assert venv.requirements_compiled_path is None
    assert venv.comfyui_requirements_path == resources / "ComfyUI" / "requirements.txt"


def test_windows_layout(tmp_path, win_paths):
    venv = VirtualEnvironment(tmp_path, app_paths=win_paths, selected_device=TorchDevice.NVIDIA)
    assert venv.python_interpreter_path == tmp_path / ".venv" / "Scripts" / "python.exe"
    assert venv.uv_path.name == "uv.exe"
    assert venv.requirements_compiled_path.name == "windows_nvidia.compiled"

    cpu = VirtualEnvironment(tmp_path, app_paths=win_paths, selected_device=TorchDevice.CPU)
    assert cpu.requirements_compiled_path.name == "windows_cpu.compiled"


def test_unsupported_platform(tmp_path, linux_paths):
    linux_paths.platform = "aix"
    with pytest.raises(RuntimeError):
        VirtualEnvironment(tmp_path, app_paths=linux_paths)


# =============================================================================
# Requirements check
# =============================================================================

def test_has_requirements_ok(venv, monkeypatch):
    uv = fake_uv([(0, NO_CHANGES), (0, NO_CHANGES)])
    monkeypatch.setattr(venv, "run_uv_async", uv)

    assert asyncio.run(venv.has_requirements()) == RequirementsStatus.OK
    assert uv.calls[0] == ["pip", "install", "--dry-run", "-r", str(venv.comfyui_requirements_path)]
    assert uv.calls[1][-1] == str(venv.manager_requirements_path)


def test_has_requirements_known_manager_upgrade(venv, monkeypatch):
    manager = "Would install 2 packages\n + uv==1.0.0\n + toml==1.0.0\n"
    monkeypatch.setattr(venv, "run_uv_async", fake_uv([(0, NO_CHANGES), (0, manager)]))

    assert asyncio.run(venv.has_requirements()) == RequirementsStatus.PACKAGE_UPGRADE


def test_has_requirements_nonzero_exit(venv, monkeypatch):
    monkeypatch.setattr(venv, "run_uv_async", fake_uv([(1, "error: no interpreter")]))

    with pytest.raises(PackageQueryError, match="Exit code 1"):
        asyncio.run(venv.has_requirements())


def test_has_requirements_empty_output(venv, monkeypatch):
    monkeypatch.setattr(venv, "run_uv_async", fake_uv([(0, "")]))

    with pytest.raises(EmptyPackageOutputError):
        asyncio.run(venv.has_requirements())


# =============================================================================
# Install
# =============================================================================

def test_run_uv_command_quotes_arguments(venv):
    shell = FakeShell()
    venv._shell = shell

    result = asyncio.run(venv.run_uv_command_async(["pip", "install", "-r", "a b.txt"]))

    assert result.exit_code == 0
    assert shell.commands == [f'"{venv.uv_path}" "pip" "install" "-r" "a b.txt"']


def test_install_pytorch_nightly_uses_prerelease(tmp_path, linux_paths):
    venv = VirtualEnvironment(tmp_path, app_paths=linux_paths, selected_device=TorchDevice.MPS)
    shell = FakeShell()
    venv._shell = shell

    asyncio.run(venv.install_pytorch())

    assert '"--pre"' in shell.commands[0]
    assert TorchMirror.NIGHTLY_CPU in shell.commands[0]


def test_install_step_failure_raises(venv):
    venv._shell = FakeShell(exit_codes=[2])

    with pytest.raises(CommandFailedError) as exc_info:
        asyncio.run(venv.install_comfyui_requirements())
    assert exc_info.value.exit_code == 2


def test_install_requirements_without_manifest_installs_manually(venv, monkeypatch):
    calls = []

    async def manual_install(callbacks=None):
        calls.append("manual")

    monkeypatch.setattr(venv, "manual_install", manual_install)
    asyncio.run(venv.install_requirements())
    assert calls == ["manual"]


def test_compiled_manifest_falls_back_to_manual_install(tmp_path):
    resources = tmp_path / "resources"
    (resources / "requirements").mkdir(parents=True)
    (resources / "requirements" / "macos.compiled").write_text("torch==2.5.0\n")
    paths = AppPaths(
        exe_path=str(tmp_path / "ComfyUI"),
        resources_path=str(resources),
        user_data_dir=str(tmp_path / "data"),
        platform="darwin",
        environ={},
    )
    venv = VirtualEnvironment(tmp_path / "base", app_paths=paths, selected_device=TorchDevice.MPS)
    shell = FakeShell(exit_codes=[1])
    venv._shell = shell
    calls = []

    async def manual_install(callbacks=None):
        calls.append("manual")

    venv.manual_install = manual_install
    asyncio.run(venv.install_requirements())

    assert '"unsafe-best-match"' in shell.commands[0]
    assert "macos.compiled" in shell.commands[0]
    assert calls == ["manual"]


def test_create_skips_unsupported_device(tmp_path, linux_paths):
    venv = VirtualEnvironment(tmp_path / "base", app_paths=linux_paths, selected_device=TorchDevice.UNSUPPORTED)
    asyncio.run(venv.create())
    assert not (tmp_path / "base").exists()


def test_create_fresh_environment(venv, monkeypatch):
    steps = []

    def record(name):
        async def step(callbacks=None):
            steps.append(name)
        return step

    for name in ("create_venv_with_python", "ensure_pip", "install_requirements"):
        monkeypatch.setattr(venv, name, record(name))

    asyncio.run(venv.create())

    assert steps == ["create_venv_with_python", "ensure_pip", "install_requirements"]
    assert venv.base_path.is_dir()


def test_create_existing_environment_verifies_imports(venv, monkeypatch):
    (venv.venv_path / "bin").mkdir(parents=True)
    steps = []

    async def has_requirements():
        return RequirementsStatus.PACKAGE_UPGRADE

    async def manual_install(callbacks=None):
        steps.append("manual")

    async def verify_python_imports(modules=None):
        return False

    monkeypatch.setattr(venv, "has_requirements", has_requirements)
    monkeypatch.setattr(venv, "manual_install", manual_install)
    monkeypatch.setattr(venv, "verify_python_imports", verify_python_imports)

    with pytest.raises(PythonImportVerificationError):
        asyncio.run(venv.create())
    assert steps == ["manual"]


def test_shell_scope_is_reentrant(venv):
    shell = FakeShell()

    async def scenario():
        async with venv.shell_scope():
            venv._shell = shell
            async with venv.shell_scope():
                pass
            assert shell.closed == 0
        assert shell.closed == 1
        assert venv._shell is None

    asyncio.run(scenario())


def test_shell_scope_closes_on_error(venv):
    shell = FakeShell()

    async def scenario():
        async with venv.shell_scope():
            venv._shell = shell
            raise RuntimeError("install failed")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
    assert shell.closed == 1


# =============================================================================
# Maintenance
# =============================================================================

def test_remove_venv_directory(venv):
    assert asyncio.run(venv.remove_venv_directory()) is True

    (venv.venv_path / "lib").mkdir(parents=True)
    (venv.venv_path / "lib" / "site.py").write_text("")
    assert asyncio.run(venv.exists()) is True

    assert asyncio.run(venv.remove_venv_directory()) is True
    assert not venv.venv_path.exists()
    assert asyncio.run(venv.remove_venv_directory()) is True


def test_exists_requires_non_empty_directory(venv):
    venv.venv_path.mkdir(parents=True)
    assert asyncio.run(venv.exists()) is False


def test_reinstall_requirements_never_raises(venv, monkeypatch):
    async def manual_install(callbacks=None):
        raise CommandFailedError("boom", 1)

    async def create_venv(on_data=None):
        return False

    monkeypatch.setattr(venv, "manual_install", manual_install)
    monkeypatch.setattr(venv, "create_venv", create_venv)

    assert asyncio.run(venv.reinstall_requirements()) is False


def test_reinstall_requirements_rebuilds_once(venv, monkeypatch):
    attempts = []

    async def manual_install(callbacks=None):
        attempts.append("manual")
        if len(attempts) == 1:
            raise CommandFailedError("boom", 1)

    async def ok(*args, **kwargs):
        attempts.append("rebuild")
        return True

    monkeypatch.setattr(venv, "manual_install", manual_install)
    monkeypatch.setattr(venv, "create_venv", ok)
    monkeypatch.setattr(venv, "upgrade_pip", ok)

    assert asyncio.run(venv.reinstall_requirements()) is True
    assert attempts == ["manual", "rebuild", "rebuild", "manual"]


def test_clear_cache(venv):
    shell = FakeShell(exit_codes=[0, 3])
    venv._shell = shell

    assert asyncio.run(venv.clear_cache()) is True
    venv._shell = shell
    assert asyncio.run(venv.clear_cache()) is False
    assert shell.commands[0].endswith('"cache" "clean"')


@pytest.mark.parametrize("error", [ShellSessionError("Shell exited before command completed"), OSError("no shell")])
def test_clear_cache_reports_shell_failure(venv, error):
    shell = FakeShell(exit_codes=[error])
    venv._shell = shell

    assert asyncio.run(venv.clear_cache()) is False
    assert shell.closed == 1
