"""One-shot child processes with streamed output."""

import asyncio
import codecs
import logging
import os
import signal as signal_module
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("comfy_desktop.environment")

OutputCallback = Callable[[str], None]


@dataclass
class ProcessCallbacks:
    """Receivers for decoded output chunks."""
    on_stdout: Optional[OutputCallback] = None
    on_stderr: Optional[OutputCallback] = None


@dataclass
class ProcessResult:
    """Exit status. `exit_code` is None when the process died from a signal."""
    exit_code: Optional[int]
    signal: Optional[str] = None


def _signal_name(returncode: int) -> str:
    try:
        return signal_module.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


async def _pump(stream: Optional[asyncio.StreamReader], callback: Optional[OutputCallback]) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(4096)
        text = decoder.decode(chunk, final=not chunk)
        if text and callback:
            callback(text)
        if not chunk:
            break


async def run_command_async(
    command: str,
    args: List[str],
    env: Optional[Dict[str, str]] = None,
    callbacks: Optional[ProcessCallbacks] = None,
    cwd: Optional[str] = None,
) -> ProcessResult:
    """
    Spawn a process and wait for it to exit.

    Args:
        command: Executable path.
        args: Arguments.
        env: Extra environment variables, merged over os.environ.
        callbacks: Output receivers.
        cwd: Working directory.

    Returns:
        ProcessResult with the exit code or terminating signal.

    Raises:
        OSError: If the process cannot be spawned.
    """
    callbacks = callbacks or ProcessCallbacks()
    proc_env = {**os.environ, **(env or {})}
    logger.debug(f"Spawning: {command} {' '.join(args)}")
    proc = await asyncio.create_subprocess_exec(
        command, *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=proc_env,
        cwd=cwd,
    )
    await asyncio.gather(
        _pump(proc.stdout, callbacks.on_stdout),
        _pump(proc.stderr, callbacks.on_stderr),
    )
    returncode = await proc.wait()
    if returncode < 0:
        return ProcessResult(exit_code=None, signal=_signal_name(returncode))
    return ProcessResult(exit_code=returncode)
