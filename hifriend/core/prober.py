"""Version probe: `hi-friend --version` and compatibility gating.

The probe process is always killed once a result is produced, so a probe
never outlives the call that consumed it.
"""

import asyncio
import logging
import re

from hifriend.core.models import WorkspaceFolder
from hifriend.core.utils import DiagnosticSink, collect, forward_lines
from hifriend.core.versions import MINIMUM_SUPPORTED, compare_versions
from hifriend.process.launcher import (
    SERVER_NAME,
    VERSION_FLAG,
    LaunchFailedError,
    ProcessLauncher,
    ServerProcess,
)

output = logging.getLogger("hifriend.output")

# Streams can stay open after exit when a grandchild inherited them
DRAIN_TIMEOUT = 1.0


class ProbeError(Exception):
    """Version probe did not produce a usable server."""

    pass


class UnrecognizedOutputError(ProbeError):
    """`--version` printed something other than `hi-friend X.Y.Z`."""

    def __init__(self, output_text: str):
        self.output = output_text
        super().__init__(f"{SERVER_NAME} --version showed unknown message")


class UnsupportedVersionError(ProbeError):
    """Server is older than the minimum supported version."""

    def __init__(self, found: str, minimum: str):
        self.found = found
        self.minimum = minimum
        super().__init__(
            f"HiFriend version {found} is too old; please use {minimum} or later for IDE feature"
        )


def version_pattern(server_name: str = SERVER_NAME) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(server_name)} (\d+\.\d+\.\d+)", re.ASCII)


def _log(message: str) -> None:
    output.info(f"[supervisor] {message}")


async def read_version(
    process: ServerProcess,
    on_diagnostic: DiagnosticSink | None = None,
    *,
    server_name: str = SERVER_NAME,
    minimum: str = MINIMUM_SUPPORTED,
    drain_timeout: float = DRAIN_TIMEOUT,
) -> str:
    """Wait for a launched probe process and validate what it printed.

    Args:
        process: Process started with --version
        on_diagnostic: Receives each stderr line
        server_name: Expected program name in the version line
        minimum: Oldest acceptable version

    Returns:
        The server version string (e.g. "0.21.8")

    Raises:
        LaunchFailedError: Non-zero exit
        UnrecognizedOutputError: Output is not `<server_name> X.Y.Z`
        UnsupportedVersionError: Version below minimum
    """

    def stderr_line(line: str) -> None:
        _log(f"stderr: {line}")
        if on_diagnostic is not None:
            on_diagnostic(line)

    stdout = bytearray()
    readers = [
        asyncio.create_task(collect(process.stdout, stdout)),
        asyncio.create_task(forward_lines(process.stderr, stderr_line)),
    ]
    try:
        code = await process.wait()
        await asyncio.wait(readers, timeout=drain_timeout)

        if code != 0:
            error = LaunchFailedError(code)
            _log(str(error))
            raise error

        text = stdout.decode("utf-8", errors="replace").strip()
        _log(f"HiFriend version: {text}")

        match = version_pattern(server_name).fullmatch(text)
        if not match:
            error = UnrecognizedOutputError(text)
            _log(str(error))
            raise error

        version = match.group(1)
        if compare_versions(version, minimum) < 0:
            error = UnsupportedVersionError(version, minimum)
            _log(str(error))
            raise error

        return version
    finally:
        for task in readers:
            task.cancel()
        process.kill()


async def probe_version(
    launcher: ProcessLauncher,
    folder: WorkspaceFolder,
    on_diagnostic: DiagnosticSink | None = None,
) -> str:
    """Launch `hi-friend --version` in folder and validate the reply."""
    process = await launcher.launch(folder, VERSION_FLAG)
    return await read_version(process, on_diagnostic)
