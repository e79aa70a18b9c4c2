"""
CLI for comfy-desktop.

Provides the `comfy-desktop` command with subcommands:
- validate-path: Check a directory can hold an installation
- validate: Validate the recorded installation
- install: Ensure an installation exists (fresh install, upgrade or repair)
- launch: Ensure an installation exists, then start the ComfyUI server
- reinstall: Reinstall Python requirements into the venv
- clear-cache: Clear the uv package cache
- reset-venv: Delete and recreate the venv
- info: Show app paths, settings and detected device

Usage:
    comfy-desktop validate-path D:\\ComfyUI ---> space, writability and location checks
    comfy-desktop validate --json

    comfy-desktop install --path ~/ComfyUI --yes
    comfy-desktop launch --port 8188

    comfy-desktop info
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from . import __version__

MAINTENANCE_MENU = [
    ("Reinstall Python packages", "uv-install-requirements"),
    ("Reset the virtual environment", "uv-reset-venv"),
    ("Clear the uv cache", "uv-clear-cache"),
    ("Choose a different base path", "set-base-path"),
    ("Validate again", "validate-installation"),
    ("Continue", "complete-validation"),
    ("Cancel", "cancel-validation"),
]


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for comfy-desktop CLI."""
    parser = argparse.ArgumentParser(
        prog="comfy-desktop",
        description="Install, repair and launch the ComfyUI desktop environment",
    )
    parser.add_argument(
        "--version", action="version", version=f"comfy-desktop {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # validate-path command
    validate_path_parser = subparsers.add_parser(
        "validate-path",
        help="Check a directory can hold an installation",
        description="Check free space, writability and restricted locations for an install path",
    )
    validate_path_parser.add_argument(
        "path",
        type=str,
        help="Candidate install directory",
    )
    validate_path_parser.add_argument(
        "--bypass-space-check",
        action="store_true",
        help="Do not block on insufficient free space",
    )
    validate_path_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate the recorded installation",
        description="Run every installation check and report the result",
    )
    validate_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # install / launch commands
    for name, help_text in (
        ("install", "Ensure an installation exists"),
        ("launch", "Ensure an installation exists, then start the server"),
    ):
        sub = subparsers.add_parser(name, help=help_text, description=help_text)
        sub.add_argument(
            "--path", "-p",
            type=str,
            help="Install directory for a fresh install",
        )
        sub.add_argument(
            "--yes", "-y",
            action="store_true",
            help="Never prompt; repair automatically and cancel if that fails",
        )
        if name == "launch":
            sub.add_argument(
                "--port",
                type=int,
                default=8000,
                help="Server port (default: 8000)",
            )

    # maintenance commands
    subparsers.add_parser(
        "reinstall",
        help="Reinstall Python requirements",
        description="Reinstall requirements, rebuilding the venv if that fails",
    )
    subparsers.add_parser(
        "clear-cache",
        help="Clear the uv package cache",
    )
    subparsers.add_parser(
        "reset-venv",
        help="Delete and recreate the virtual environment",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show app paths, settings and detected device",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 0

    try:
        if parsed.command == "validate-path":
            return cmd_validate_path(parsed)
        elif parsed.command == "validate":
            return cmd_validate(parsed)
        elif parsed.command in ("install", "launch"):
            return cmd_install(parsed)
        elif parsed.command == "reinstall":
            return cmd_reinstall(parsed)
        elif parsed.command == "clear-cache":
            return cmd_clear_cache(parsed)
        elif parsed.command == "reset-venv":
            return cmd_reset_venv(parsed)
        elif parsed.command == "info":
            return cmd_info(parsed)
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _load_installation():
    from .context import AppContext
    from .install.installation import ComfyInstallation

    context = AppContext.load()
    installation = asyncio.run(ComfyInstallation.from_config(context))
    if installation is None:
        print("No installation recorded. Run `comfy-desktop install` first.", file=sys.stderr)
    return installation


def _print_log(data: str) -> None:
    sys.stdout.write(data)
    sys.stdout.flush()


def cmd_validate_path(args) -> int:
    """Handle validate-path command."""
    from .context import AppPaths
    from .environment.install_path import validate_install_path

    result = asyncio.run(
        validate_install_path(args.path, args.bypass_space_check, app_paths=AppPaths.detect())
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.is_valid else 1

    print(f"Path: {args.path}")
    print(f"  Free space: {result.free_space / 1024**3:.1f} GiB "
          f"(required {result.required_space / 1024**3:.1f} GiB)")
    if result.is_non_default_drive:
        print("  Note: not on the system drive")
    problems = result.problems()
    for problem in problems:
        print(f"  - {problem}")
    print("OK" if result.is_valid else "Not usable")
    return 0 if result.is_valid else 1


def cmd_validate(args) -> int:
    """Handle validate command."""
    installation = _load_installation()
    if installation is None:
        return 1

    asyncio.run(installation.validate())
    report = installation.validation

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 1 if installation.has_issues else 0

    print(f"Installation: {installation.base_path}")
    for name, status in report.to_dict().items():
        if name in ("inProgress", "installState"):
            continue
        print(f"  {name}: {status}")
    print("Valid" if installation.is_valid else f"Problems: {', '.join(report.errors()) or 'none'}")
    return 1 if installation.has_issues else 0


def make_console_driver(interactive: bool):
    """Operate the maintenance page from a terminal."""

    async def drive_interactive(troubleshooting) -> None:
        while not troubleshooting.resolved:
            errors = troubleshooting.installation.validation.errors()
            print(f"\nInstallation problems: {', '.join(errors) or 'none'}")
            for i, (label, _) in enumerate(MAINTENANCE_MENU):
                print(f"  [{i}] {label}")
            try:
                answer = (await asyncio.to_thread(input, "> ")).strip()
            except EOFError:
                return
            if not answer.isdigit() or int(answer) >= len(MAINTENANCE_MENU):
                continue
            label, channel = MAINTENANCE_MENU[int(answer)]
            result = await troubleshooting.handle(channel)
            if result is False:
                print(f"{label} did not succeed.")

    async def drive_unattended(troubleshooting) -> None:
        if await troubleshooting.install_requirements() or troubleshooting.resolved:
            return
        if await troubleshooting.reset_venv() and not troubleshooting.resolved:
            await troubleshooting.install_requirements()

    return drive_interactive if interactive else drive_unattended


def cmd_install(args) -> int:
    """Handle install and launch commands."""
    from .app import run
    from .install.window import ConsoleWindow

    window = ConsoleWindow(interactive=not args.yes, default_path=args.path)
    return run(
        window=window,
        maintenance_driver=make_console_driver(interactive=not args.yes),
        launch=args.command == "launch",
        port=getattr(args, "port", 8000),
    )


def cmd_reinstall(args) -> int:
    """Handle reinstall command."""
    installation = _load_installation()
    if installation is None:
        return 1
    ok = asyncio.run(installation.virtual_environment.reinstall_requirements(_print_log))
    print("Requirements reinstalled" if ok else "Reinstall failed", file=sys.stdout if ok else sys.stderr)
    return 0 if ok else 1


def cmd_clear_cache(args) -> int:
    """Handle clear-cache command."""
    installation = _load_installation()
    if installation is None:
        return 1
    ok = asyncio.run(installation.virtual_environment.clear_cache(_print_log))
    return 0 if ok else 1


def cmd_reset_venv(args) -> int:
    """Handle reset-venv command."""
    from .environment.process import ProcessCallbacks

    installation = _load_installation()
    if installation is None:
        return 1
    venv = installation.virtual_environment

    async def reset() -> bool:
        if not await venv.remove_venv_directory():
            return False
        if not await venv.create_venv(_print_log):
            return False
        return await venv.upgrade_pip(ProcessCallbacks(on_stdout=_print_log, on_stderr=_print_log))

    ok = asyncio.run(reset())
    if not ok:
        print("Failed to reset the virtual environment", file=sys.stderr)
    return 0 if ok else 1


def cmd_info(args) -> int:
    """Handle info command."""
    from .context import AppContext
    from .detection.device import detect_default_device
    from .detection.platform import get_machine

    context = AppContext.load()
    paths = context.paths
    settings = context.config.settings.to_dict()
    device = detect_default_device(paths.platform)

    if args.json:
        info = {
            "version": __version__,
            "platform": paths.platform,
            "machine": get_machine(),
            "detected_device": device.value,
            "exe_path": paths.exe_path,
            "resources_path": paths.resources_path,
            "user_data_dir": paths.user_data_dir,
            "config_path": str(context.config.path),
            "server_config_path": str(context.server_config.config_path),
            "settings": settings,
        }
        print(json.dumps(info, indent=2))
        return 0

    print("ComfyUI Desktop")
    print("=" * 40)
    print(f"  Version:         {__version__}")
    print(f"  Platform:        {paths.platform} ({get_machine()})")
    print(f"  Detected device: {device.value}")
    print()
    print("Paths")
    print("=" * 40)
    print(f"  Resources:       {paths.resources_path}")
    print(f"  User data:       {paths.user_data_dir}")
    print(f"  Config:          {context.config.path}")
    print(f"  Server config:   {context.server_config.config_path}")
    print()
    print("Settings")
    print("=" * 40)
    if not settings:
        print("  (none)")
    for key, value in settings.items():
        print(f"  {key}: {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
