# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the HiFriend test suite.

This module provides the fakes used across test modules:
- Scripted server processes with chunked stdout/stderr
- A launcher that hands out those processes
- A protocol client and transport that record what the supervisor does
- Workspace folders and a quiet status bar

Fake processes and streams use asyncio primitives, so create them inside the
coroutine that a test drives with asyncio.run().
"""

from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from hifriend.cli_ui.status_bar import StatusBar
from hifriend.core.config import SupervisorConfig
from hifriend.core.models import ClientOptions, WorkspaceFolder
from hifriend.process.launcher import LaunchFailedError

# =============================================================================
# Process Fakes
# =============================================================================


class ChunkStream:
    """Byte stream that returns exactly the chunks it was fed, then b""."""

    def __init__(self) -> None:
        self._chunks: asyncio.Queue[bytes] = asyncio.Queue()
        self._eof = False

    def feed(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._chunks.put_nowait(data)

    def close(self) -> None:
        self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        if self._eof:
            return b""
        chunk = await self._chunks.get()
        if not chunk:
            self._eof = True
        return chunk


class FakeProcess:
    """Stands in for ServerProcess.

    With exit_on_kill=False a kill is only recorded, so a test can deliver
    a late exit afterwards.
    """

    def __init__(self, pid: int = 4242, exit_on_kill: bool = True) -> None:
        self.pid = pid
        self.argv: list[str] = []
        self.stdout = ChunkStream()
        self.stderr = ChunkStream()
        self.returncode: int | None = None
        self.signals: list[str] = []
        self.exit_on_kill = exit_on_kill
        self.on_kill: Any = None
        self._exited = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    def attach(self, task: asyncio.Task) -> None:
        self._tasks.add(task)

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.close()
        self.stderr.close()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def kill(self) -> None:
        self.signals.append("kill")
        if self.on_kill is not None:
            self.on_kill()
        for task in list(self._tasks):
            task.cancel()
        if self.exit_on_kill:
            self.exit(-9)

    def interrupt(self) -> None:
        self.signals.append("interrupt")
        self.exit(130)


def version_process(output: str = "hi-friend 0.30.1", code: int = 0) -> FakeProcess:
    """A --version process that already printed output and exited."""
    process = FakeProcess()
    process.stdout.feed(output + "\n")
    process.exit(code)
    return process


def server_process(
    host: str = "127.0.0.1", port: int = 4000, pid: int = 123, noise: str | None = None
) -> FakeProcess:
    """A --lsp process that printed its address and keeps running."""
    process = FakeProcess(pid=pid)
    if noise is not None:
        process.stdout.feed(noise)
    process.stdout.feed(json.dumps({"host": host, "port": port, "pid": pid}))
    return process


class FakeLauncher:
    """Hands out queued processes per flag; records every launch."""

    def __init__(self) -> None:
        self.queued: dict[str, list[Any]] = {"--version": [], "--lsp": []}
        self.launched: list[tuple[WorkspaceFolder, str, FakeProcess]] = []

    def queue(self, argument: str, process_or_error: Any) -> None:
        self.queued[argument].append(process_or_error)

    def queue_session(self, version: str = "0.30.1", **server: Any) -> None:
        self.queue("--version", lambda: version_process(f"hi-friend {version}"))
        self.queue("--lsp", lambda: server_process(**server))

    async def launch(self, folder: WorkspaceFolder, argument: str) -> FakeProcess:
        pending = self.queued[argument]
        item = pending.pop(0) if pending else FakeProcess()
        if isinstance(item, LaunchFailedError):
            raise item
        process = item() if callable(item) else item
        self.launched.append((folder, argument, process))
        return process

    def processes(self, argument: str) -> list[FakeProcess]:
        return [p for _, arg, p in self.launched if arg == argument]


# =============================================================================
# Client and Transport Fakes
# =============================================================================


class FakeTransport:
    def __init__(self, on_close: Any = None) -> None:
        self._on_close = on_close
        self.closed = False
        self.close_count = 0

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.close_count += 1
        if self._on_close is not None:
            self._on_close()


async def fake_open_transport(record: Any) -> FakeTransport:
    return FakeTransport(on_close=record.stop)


class FakeClient:
    """Records start/stop/commands; notifications are delivered by tests."""

    def __init__(self, options: ClientOptions) -> None:
        self.options = options
        self.transport: Any = None
        self.started = False
        self.stopped = False
        self.start_error: Exception | None = None
        self.handlers: dict[str, Any] = {}
        self.close_handlers: list[Any] = []
        self.commands: list[str] = []
        self.messages: list[str] = []

    async def start(self, transport: Any) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.transport = transport
        self.started = True

    async def stop(self) -> None:
        self.stopped = True
        self.drop()

    def drop(self) -> None:
        """Connection ends: close the transport and run close handlers once."""
        if self.transport is None or self.transport.closed:
            return
        self.transport.close()
        for handler in self.close_handlers:
            handler()

    def on_notification(self, method: str, handler: Any) -> None:
        self.handlers[method] = handler

    def on_close(self, handler: Any) -> None:
        self.close_handlers.append(handler)

    def deliver(self, method: str, params: dict | None = None) -> None:
        self.handlers[method](params or {})

    async def execute_command(self, command: str, arguments: list | None = None) -> None:
        self.commands.append(command)

    def info(self, message: str) -> None:
        self.messages.append(message)


class ClientRecorder:
    """Client factory that keeps every client it built."""

    def __init__(self) -> None:
        self.clients: list[FakeClient] = []
        self.start_error: Exception | None = None

    def __call__(self, options: ClientOptions) -> FakeClient:
        client = FakeClient(options)
        client.start_error = self.start_error
        self.clients.append(client)
        return client


# =============================================================================
# Helpers
# =============================================================================


async def settle(supervisor: Any = None, rounds: int = 10) -> None:
    """Let pending session tasks and callbacks run to completion."""
    if supervisor is not None:
        pending = list(supervisor._session_tasks.values()) + list(supervisor._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def folder_a(tmp_path: Path) -> WorkspaceFolder:
    path = tmp_path / "alpha"
    path.mkdir()
    return WorkspaceFolder(path=path, name="alpha")


@pytest.fixture
def folder_b(tmp_path: Path) -> WorkspaceFolder:
    path = tmp_path / "beta"
    path.mkdir()
    return WorkspaceFolder(path=path, name="beta")


@pytest.fixture
def fast_config() -> SupervisorConfig:
    """Short delays so timer-driven transitions happen within a test."""
    return SupervisorConfig(
        failed_status_delay=0.02,
        toggle_delay=0.02,
        progress_hide_delay=0.02,
        handshake_timeout=1.0,
    )


@pytest.fixture
def status_bar() -> StatusBar:
    return StatusBar(Console(file=io.StringIO(), width=120))


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def clients() -> ClientRecorder:
    return ClientRecorder()


@pytest.fixture
def patched_transport(mocker):
    """Replace TCP connect in the supervisor with a recording fake."""
    return mocker.patch("hifriend.core.supervisor.open_transport", side_effect=fake_open_transport)
