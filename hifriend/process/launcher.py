"""Launching the hi-friend executable for a workspace folder.

Resolution order for the command (first match wins):
1. ./bin/hi-friend inside the folder (binstub)
2. The configured server path override
3. `bundle exec hi-friend` when the folder has a Gemfile
4. Bare `hi-friend` from PATH

Execution goes through the user's login shell when it is bash/zsh/fish so
that version managers (rbenv, asdf, chruby) are initialized; through
cmd.exe on Windows; otherwise the command line is split and run directly.
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from hifriend.core.config import SupervisorConfig
from hifriend.core.models import WorkspaceFolder

logger = logging.getLogger(__name__)
output = logging.getLogger("hifriend.output")

SERVER_NAME = "hi-friend"
VERSION_FLAG = "--version"
SERVER_FLAG = "--lsp"

LOGIN_SHELLS = ("bash", "zsh", "fish")
BUNDLER_MANIFEST = "Gemfile"
BUNDLER_EXEC = "bundle exec"


class LaunchFailedError(Exception):
    """Server process could not be started or exited unexpectedly."""

    def __init__(self, exit_code: int | None, reason: str | None = None):
        self.exit_code = exit_code
        self.reason = reason
        if reason:
            message = f"failed to invoke {SERVER_NAME}: {reason}"
        else:
            message = f"failed to invoke {SERVER_NAME}: error code {exit_code}"
        super().__init__(message)


def resolve_command(cwd: Path, server_path: str | None = None) -> str:
    """Pick the executable command for a project directory."""
    if (cwd / "bin" / SERVER_NAME).exists():
        return f"./bin/{SERVER_NAME}"
    if server_path:
        return server_path
    if (cwd / BUNDLER_MANIFEST).exists():
        return f"{BUNDLER_EXEC} {SERVER_NAME}"
    return SERVER_NAME


def build_argv(
    command_line: str,
    shell: str | None = None,
    platform: str = sys.platform,
    system_root: str | None = None,
) -> list[str]:
    """Wrap a command line for the host platform and shell."""
    if shell and shell.endswith(LOGIN_SHELLS):
        args = [shell]
        if shell.endswith("zsh"):
            # rbenv init usually lives in .zshrc, which only interactive zsh reads
            args.append("-i")
        args.extend(["-l", "-c", command_line])
        return args

    if platform == "win32":
        root = system_root or os.environ.get("SYSTEMROOT", r"C:\Windows")
        return [root + r"\System32\cmd.exe", "/c", command_line]

    return command_line.split()


class ServerProcess:
    """A running hi-friend child with byte-stream access to stdout/stderr.

    Background reader tasks registered with attach() are cancelled on kill().
    """

    def __init__(self, process: asyncio.subprocess.Process, argv: list[str]):
        self._process = process
        self.argv = argv
        self._tasks: set[asyncio.Task] = set()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self._process.stderr

    async def wait(self) -> int:
        return await self._process.wait()

    def attach(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def kill(self) -> None:
        """Forced termination. Silent if the process already exited."""
        for task in list(self._tasks):
            task.cancel()
        if self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    def interrupt(self) -> None:
        """Graceful termination (SIGINT; terminate on Windows)."""
        if self._process.returncode is not None:
            return
        try:
            if sys.platform == "win32":
                self._process.terminate()
            else:
                self._process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            pass


class ProcessLauncher:
    """Spawns hi-friend in a workspace folder with a single flag."""

    def __init__(self, config: SupervisorConfig | None = None):
        self.config = config or SupervisorConfig()

    def command_line(self, folder: WorkspaceFolder, argument: str) -> str:
        command = resolve_command(folder.path, self.config.server_path)
        return f"{command} {argument}"

    def argv(self, folder: WorkspaceFolder, argument: str) -> list[str]:
        return build_argv(self.command_line(folder, argument), shell=os.environ.get("SHELL"))

    async def launch(self, folder: WorkspaceFolder, argument: str) -> ServerProcess:
        """Start the server; stdin/stdout/stderr are pipes, cwd is the folder.

        Raises:
            LaunchFailedError: If the OS refuses to spawn the process
        """
        argv = self.argv(folder, argument)
        logger.debug(f"Spawning {argv} in {folder.path}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=folder.path,
            )
        except OSError as e:
            output.info(f"[supervisor] HiFriend is not supported for this folder: {folder.name}")
            output.info(f"[supervisor] because: {e}")
            raise LaunchFailedError(None, reason=str(e)) from e

        return ServerProcess(process, argv)
