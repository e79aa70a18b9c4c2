"""Shared fixtures for comfy-desktop tests."""

from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest

from comfy_desktop.config.types import InstallState
from comfy_desktop.context import AppContext, AppPaths
from comfy_desktop.environment.requirements import RequirementsStatus
from comfy_desktop.environment.venv import VirtualEnvironment
from comfy_desktop.install import installation

GIB = 1024 * 1024 * 1024

WIN_ENV = {
    "SystemDrive": "C:",
    "LOCALAPPDATA": r"C:\Users\Test\AppData\Local",
    "OneDrive": r"C:\Users\Test\OneDrive",
    "SYSTEMROOT": r"C:\Windows",
}


@pytest.fixture
def linux_paths(tmp_path) -> AppPaths:
    """App laid out under tmp_path/app with user data under tmp_path/user-data."""
    app_dir = tmp_path / "app"
    resources = app_dir / "resources"
    resources.mkdir(parents=True)
    return AppPaths(
        exe_path=str(app_dir / "comfyui-desktop"),
        resources_path=str(resources),
        user_data_dir=str(tmp_path / "user-data"),
        platform="linux",
        environ={"HOME": str(tmp_path)},
    )


@pytest.fixture
def win_paths() -> AppPaths:
    install_dir = r"C:\Users\Test\AppData\Local\Programs\ComfyUI"
    return AppPaths(
        exe_path=install_dir + r"\ComfyUI.exe",
        resources_path=install_dir + r"\resources",
        user_data_dir=r"C:\Users\Test\AppData\Roaming\ComfyUI",
        platform="win32",
        environ=dict(WIN_ENV),
    )


@pytest.fixture
def mac_paths() -> AppPaths:
    bundle = "/Applications/ComfyUI.app"
    return AppPaths(
        exe_path=bundle + "/Contents/MacOS/ComfyUI",
        resources_path=bundle + "/Contents/Resources",
        user_data_dir="/Users/test/Library/Application Support/ComfyUI",
        platform="darwin",
        environ={"HOME": "/Users/test"},
    )


@pytest.fixture
def context(linux_paths) -> AppContext:
    return AppContext.load(linux_paths)


class FakeWindow:
    """Records everything the installer asks of the window."""

    def __init__(self, dialog_answers: Optional[List[Optional[str]]] = None, message_box_answer: int = 0):
        self.sent: List[Tuple[str, Any]] = []
        self.pages: List[str] = []
        self.message_boxes: List[Tuple[str, str]] = []
        self.dialog_answers = list(dialog_answers or [])
        self.message_box_answer = message_box_answer

    def send(self, channel: str, payload: Any) -> None:
        self.sent.append((channel, payload))

    async def load_page(self, page: str) -> None:
        self.pages.append(page)

    async def show_open_dialog(self, default_path: Optional[str] = None) -> Optional[str]:
        return self.dialog_answers.pop(0) if self.dialog_answers else None

    async def show_message_box(self, title: str, message: str, buttons: Optional[List[str]] = None) -> int:
        self.message_boxes.append((title, message))
        return self.message_box_answer

    def payloads(self, channel: str) -> List[Any]:
        return [payload for sent_channel, payload in self.sent if sent_channel == channel]


@pytest.fixture
def window() -> FakeWindow:
    return FakeWindow()


def make_executable(path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755)


class Probes:
    """Controls the external checks made during validation."""

    def __init__(self):
        self.git = True
        self.requirements = "OK"
        self.requirement_checks = 0


@pytest.fixture
def probes(monkeypatch) -> Probes:
    state = Probes()

    async def can_execute_shell_command(command):
        return state.git

    async def has_requirements(self):
        state.requirement_checks += 1
        if isinstance(state.requirements, Exception):
            raise state.requirements
        return RequirementsStatus(state.requirements)

    monkeypatch.setattr(installation, "can_execute_shell_command", can_execute_shell_command)
    monkeypatch.setattr(VirtualEnvironment, "has_requirements", has_requirements)
    return state


@pytest.fixture
def healthy_install(context, tmp_path, probes):
    """A recorded, installed base path with a venv and bundled uv in place."""
    base = tmp_path / "base"
    make_executable(base / ".venv" / "bin" / "python")
    make_executable(Path(context.paths.resources_path) / "uv" / "linux" / "uv")
    context.config.set("base_path", str(base))
    context.config.set("install_state", InstallState.INSTALLED)
    return base
