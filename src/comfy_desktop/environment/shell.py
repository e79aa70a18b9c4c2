"""
Persistent shell session.

Install commands run one after another in a single long-lived shell so the
user sees one continuous terminal. Completion of each command is detected
by echoing a unique marker followed by the shell's last exit status.
"""

import asyncio
import codecs
import logging
import os
import re
import sys
import uuid
from typing import Callable, Dict, List, Optional

import psutil

from ..detection.platform import is_macos, is_windows
from ..errors import ShellSessionError

logger = logging.getLogger("comfy_desktop.environment")

ANSI_RE = re.compile(r"\x1b\[[\d;?]*[A-Za-z]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_LINE_SPLIT_RE = re.compile(r"\r\n|\n")

# PowerShell reports $? as True/False instead of a number
POWERSHELL_FAILURE_EXIT_CODE = -999
UNPARSEABLE_EXIT_CODE = -998


def default_shell(platform: Optional[str] = None) -> str:
    if is_windows(platform):
        return "powershell.exe"
    if is_macos(platform):
        return "zsh"
    return "bash"


def default_shell_args(platform: Optional[str] = None) -> List[str]:
    if is_windows(platform):
        # Read commands from stdin
        return ["-NoLogo", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", "-"]
    return []


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences."""
    return ANSI_RE.sub("", text)


def parse_exit_code(token: str) -> int:
    """Turn the text after an exit marker into an exit code."""
    token = token.strip()
    if token == "True":
        return 0
    if token == "False":
        return POWERSHELL_FAILURE_EXIT_CODE
    try:
        return int(token)
    except ValueError:
        logger.warning(f"Unable to parse exit code: {token!r}")
        return UNPARSEABLE_EXIT_CODE


class ExitMarkerParser:
    """
    Watches streamed shell output for a line that starts with the marker.

    Output may arrive in arbitrary chunks; partial lines are buffered until
    their line break arrives.
    """

    def __init__(self, marker: str):
        self.marker = marker
        self._buffer = ""

    def feed(self, chunk: str) -> Optional[int]:
        """Consume output. Returns the exit code once the marker line is complete."""
        self._buffer += chunk
        lines = _LINE_SPLIT_RE.split(self._buffer)
        self._buffer = lines.pop()
        for line in lines:
            line = strip_ansi(line).strip("\r")
            if line.startswith(self.marker):
                self._buffer = ""
                return parse_exit_code(line[len(self.marker):])
        return None

    def finish(self) -> Optional[int]:
        """Check any unterminated final line (stream closed)."""
        if not self._buffer:
            return None
        return self.feed("\n")


def make_marker() -> str:
    return f"_-end-{uuid.uuid4().hex}:"


def marker_command(marker: str, platform: Optional[str] = None) -> str:
    """
    Shell line that prints the marker and the last exit status.

    The status is saved first and the marker is printed after a line break,
    so output that lacks a trailing newline cannot swallow it.
    """
    if is_windows(platform):
        return f'$__ec = $?; [Console]::Out.Write("`n{marker}$__ec`n")'
    return f"__ec=$?; printf '\\n%s%s\\n' '{marker}' \"$__ec\""


def kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    for proc in procs:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    psutil.wait_procs(procs, timeout=5)


class ShellSession:
    """A long-lived shell that runs one command at a time."""

    def __init__(
        self,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        platform: Optional[str] = None,
        shell: Optional[str] = None,
    ):
        self.cwd = cwd
        self.env = {**os.environ, **(env or {})}
        self.platform = platform or sys.platform
        self.shell = shell or default_shell(self.platform)
        self.newline = "\r\n" if is_windows(self.platform) else "\n"
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._lock = asyncio.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        if self.running:
            return
        logger.debug(f"Starting shell {self.shell} in {self.cwd}")
        self._proc = await asyncio.create_subprocess_exec(
            self.shell, *default_shell_args(self.platform),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self.cwd,
            env=self.env,
        )

    async def run(self, command: str, on_data: Optional[Callable[[str], None]] = None) -> int:
        """
        Run a command in the shell and wait for it to finish.

        Args:
            command: Shell command line.
            on_data: Receives all output, including the marker line.

        Returns:
            Exit code. PowerShell failures report -999, unparseable status -998.

        Raises:
            ShellSessionError: If the shell exits before the command completes.
        """
        async with self._lock:
            await self.start()
            proc = self._proc
            marker = make_marker()
            parser = ExitMarkerParser(marker)
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

            try:
                line = f"{command}{self.newline}{marker_command(marker, self.platform)}{self.newline}"
                proc.stdin.write(line.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ShellSessionError(f"Shell is not accepting input: {e}") from e

            while True:
                chunk = await proc.stdout.read(4096)
                if not chunk:
                    text = decoder.decode(b"", final=True)
                    if text and on_data:
                        on_data(text)
                    exit_code = parser.feed(text) if text else None
                    if exit_code is None:
                        exit_code = parser.finish()
                    if exit_code is not None:
                        return exit_code
                    raise ShellSessionError(f"Shell exited before command completed: {command}")
                text = decoder.decode(chunk)
                if on_data and text:
                    on_data(text)
                exit_code = parser.feed(text)
                if exit_code is not None:
                    return exit_code

    async def close(self) -> None:
        """Kill the shell and anything it started."""
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.returncode is None:
            logger.debug(f"Killing shell process tree {proc.pid}")
            await asyncio.to_thread(kill_process_tree, proc.pid)
        await proc.wait()
