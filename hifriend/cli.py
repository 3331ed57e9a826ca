"""CLI entry point for the HiFriend session supervisor.

Commands:
- hifriend serve: Supervise hi-friend sessions for workspace folders
- hifriend probe: Run the version probe for a folder
- hifriend resolve: Show how the server would be launched
- hifriend version: Show version information
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from hifriend.cli_ui.status_bar import StatusBar, StatusSurface
from hifriend.core.client import LanguageClient
from hifriend.core.config import ConfigError, SupervisorConfig, default_search_paths, load_config
from hifriend.core.models import WorkspaceFolder
from hifriend.core.prober import ProbeError, probe_version
from hifriend.core.supervisor import SessionSupervisor
from hifriend.core.versions import (
    MINIMUM_SUPPORTED,
    NOTIFICATIONS_SINCE,
    SECONDARY_FILE_CHANGES_SINCE,
    is_at_least,
)
from hifriend.process.launcher import SERVER_FLAG, VERSION_FLAG, LaunchFailedError, ProcessLauncher

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Route supervisor logs to the terminal and, optionally, an output log file."""
    root = logging.getLogger("hifriend")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    root.addHandler(RichHandler(console=Console(stderr=True), show_path=verbose, markup=False))

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(message)s"))
        root.addHandler(file_handler)


def _load_config(config_path: str | None, project_dir: Path) -> SupervisorConfig:
    paths = [Path(config_path)] if config_path else default_search_paths(project_dir)
    try:
        return load_config(paths)
    except ConfigError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


def _folders(paths: tuple[str, ...]) -> list[WorkspaceFolder]:
    return [WorkspaceFolder.from_path(p) for p in paths] or [WorkspaceFolder.from_path(Path.cwd())]


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """HiFriend - language server session supervisor.

    Starts hi-friend per workspace folder, checks it is recent enough and
    keeps one live session per folder.
    """
    pass


def _show_output_log(status: StatusSurface) -> None:
    location = status.jump_to_output()
    if location:
        console.print(f"Output log: {escape(location)}")
    else:
        console.print("Output log: terminal only (set log.file to keep a copy)")


async def _serve(supervisor: SessionSupervisor, folders: list[WorkspaceFolder]) -> None:
    loop = asyncio.get_running_loop()
    done = asyncio.Event()

    handlers = {signal.SIGINT: done.set, signal.SIGTERM: done.set}
    if hasattr(signal, "SIGHUP"):
        handlers[signal.SIGHUP] = lambda: supervisor.restart(folders)
    if hasattr(signal, "SIGUSR1"):
        handlers[signal.SIGUSR1] = supervisor.toggle_signature
    if hasattr(signal, "SIGUSR2"):
        handlers[signal.SIGUSR2] = lambda: _show_output_log(supervisor.status)
    for signum, handler in handlers.items():
        try:
            loop.add_signal_handler(signum, handler)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl-C still ends asyncio.run
            pass

    supervisor.activate(folders)
    try:
        await done.wait()
    finally:
        await supervisor.deactivate()


@main.command()
@click.argument("folders", nargs=-1, type=click.Path(exists=True, file_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def serve(folders: tuple[str, ...], config_path: str | None, verbose: bool) -> None:
    """Supervise hi-friend sessions for FOLDERS (default: current directory).

    SIGHUP restarts the sessions, SIGUSR1 toggles signature hints,
    SIGUSR2 shows where the output log is, SIGINT/SIGTERM stop everything
    and exit.
    """
    workspace = _folders(folders)
    config = _load_config(config_path, workspace[0].path)
    setup_logging(verbose, config.log_file)

    status = StatusBar(Console(stderr=True), log_location=config.log_file)
    supervisor = SessionSupervisor(ProcessLauncher(config), LanguageClient, status, config)

    names = ", ".join(folder.name for folder in workspace)
    console.print(f"[blue]Supervising: {escape(names)}[/blue]")
    asyncio.run(_serve(supervisor, workspace))


@main.command()
@click.argument("folder", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
def probe(folder: str, config_path: str | None) -> None:
    """Run `hi-friend --version` in FOLDER and check compatibility."""
    workspace = WorkspaceFolder.from_path(folder)
    config = _load_config(config_path, workspace.path)

    def stderr_line(line: str) -> None:
        console.print(f"[dim]stderr: {escape(line)}[/dim]")

    try:
        version = asyncio.run(probe_version(ProcessLauncher(config), workspace, stderr_line))
    except (LaunchFailedError, ProbeError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title=f"hi-friend {version}")
    table.add_column("Feature", style="cyan")
    table.add_column("Since")
    table.add_column("Available")
    for feature, since in (
        ("IDE support", MINIMUM_SUPPORTED),
        ("Toggle / error notifications", NOTIFICATIONS_SINCE),
        ("RBS change tracking", SECONDARY_FILE_CHANGES_SINCE),
    ):
        available = is_at_least(version, since)
        table.add_row(feature, since, "[green]yes[/green]" if available else "[yellow]no[/yellow]")
    console.print(table)


@main.command()
@click.argument("folder", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
def resolve(folder: str, config_path: str | None) -> None:
    """Show the command lines the launcher would run in FOLDER."""
    workspace = WorkspaceFolder.from_path(folder)
    config = _load_config(config_path, workspace.path)
    launcher = ProcessLauncher(config)

    table = Table(title=f"Launch plan for {escape(workspace.name)}")
    table.add_column("Mode", style="cyan")
    table.add_column("Command line")
    table.add_column("argv")
    for mode, flag in (("version", VERSION_FLAG), ("server", SERVER_FLAG)):
        table.add_row(
            mode,
            escape(launcher.command_line(workspace, flag)),
            escape(repr(launcher.argv(workspace, flag))),
        )
    console.print(table)


@main.command()
def version() -> None:
    """Show version information."""
    from hifriend import __version__

    console.print(f"HiFriend supervisor v{__version__}")
    console.print(f"Requires hi-friend {MINIMUM_SUPPORTED} or later")


if __name__ == "__main__":
    main()
