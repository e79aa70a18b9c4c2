"""
GUI window collaborator.

The installer only needs a narrow slice of a window: send messages to the
renderer, load a page, and show native dialogs. `ConsoleWindow` implements
that slice on a terminal for the CLI.
"""

import json
import logging
import sys
from typing import Any, List, Optional, Protocol, TextIO


class Channels:
    """Message channels sent to the renderer."""
    VALIDATION_UPDATE = "validation-update"
    LOG_MESSAGE = "log-message"
    GET_VALIDATION_STATE = "get-validation-state"
    VALIDATE_INSTALLATION = "validate-installation"
    COMPLETE_VALIDATION = "complete-validation"
    CANCEL_VALIDATION = "cancel-validation"
    UV_INSTALL_REQUIREMENTS = "uv-install-requirements"
    UV_CLEAR_CACHE = "uv-clear-cache"
    UV_RESET_VENV = "uv-reset-venv"
    SET_BASE_PATH = "set-base-path"


class Window(Protocol):
    def send(self, channel: str, payload: Any) -> None: ...

    async def load_page(self, page: str) -> None: ...

    async def show_open_dialog(self, default_path: Optional[str] = None) -> Optional[str]:
        """Ask for a directory. None when cancelled."""
        ...

    async def show_message_box(self, title: str, message: str, buttons: Optional[List[str]] = None) -> int:
        """Show a message. Returns the index of the chosen button."""
        ...


class ConsoleWindow:
    """Terminal stand-in for the app window."""

    def __init__(
        self,
        out: TextIO = sys.stdout,
        interactive: bool = True,
        default_path: Optional[str] = None,
        json_updates: bool = False,
    ):
        self.out = out
        self.interactive = interactive
        self.default_path = default_path
        self.json_updates = json_updates
        self.page: Optional[str] = None
        self.logger = logging.getLogger("comfy_desktop.window")

    def send(self, channel: str, payload: Any) -> None:
        if channel == Channels.LOG_MESSAGE:
            self.out.write(str(payload))
            self.out.flush()
        elif channel == Channels.VALIDATION_UPDATE and self.json_updates:
            print(json.dumps(payload), file=self.out)
        else:
            self.logger.debug(f"{channel}: {payload}")

    async def load_page(self, page: str) -> None:
        self.page = page
        self.logger.info(f"Loading page: {page}")

    async def show_open_dialog(self, default_path: Optional[str] = None) -> Optional[str]:
        if not self.interactive:
            return self.default_path or default_path
        prompt = f"Install directory [{default_path}]: " if default_path else "Install directory: "
        try:
            answer = input(prompt).strip()
        except EOFError:
            return None
        return answer or default_path

    async def show_message_box(self, title: str, message: str, buttons: Optional[List[str]] = None) -> int:
        print(f"\n== {title} ==\n{message}", file=self.out)
        buttons = buttons or ["OK"]
        if not self.interactive or len(buttons) == 1:
            return 0
        for i, label in enumerate(buttons):
            print(f"  [{i}] {label}", file=self.out)
        try:
            answer = input("> ").strip()
        except EOFError:
            return len(buttons) - 1
        return int(answer) if answer.isdigit() and int(answer) < len(buttons) else 0
