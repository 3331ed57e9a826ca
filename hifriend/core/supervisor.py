"""Session supervisor: one hi-friend session per workspace folder.

State machine per folder (starting Absent):

    Absent --start--> Invoking(probe) --version ok--> Invoking(server)
           --address--> Running --stop/remove/restart--> Absent

Any failure while Invoking drops the folder back to Absent, shows a
"not configured" status at once and the error indicator after a delay.

Everything runs on one asyncio loop. Each session carries a session_id and
every continuation re-checks that the map still holds that id before it
mutates anything, so a stop that lands mid-probe turns the late completion
into a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Coroutine, Sequence
from typing import Any, assert_never

from hifriend.cli_ui.status_bar import StatusSurface
from hifriend.core.client import ClientError, ClientFactory, ProtocolClient
from hifriend.core.config import SupervisorConfig
from hifriend.core.handshake import negotiate
from hifriend.core.models import (
    ClientOptions,
    DocumentFilter,
    HandshakeRecord,
    Invoking,
    Running,
    SessionState,
    WorkspaceFolder,
)
from hifriend.core.prober import ProbeError, read_version
from hifriend.core.transport import Transport, open_transport
from hifriend.core.utils import DiagnosticSink
from hifriend.core.versions import (
    NOTIFICATIONS_SINCE,
    SECONDARY_FILE_CHANGES_SINCE,
    compare_versions,
)
from hifriend.process.launcher import (
    SERVER_FLAG,
    VERSION_FLAG,
    LaunchFailedError,
    ProcessLauncher,
    ServerProcess,
)

logger = logging.getLogger(__name__)
output = logging.getLogger("hifriend.output")
server_log = logging.getLogger("hifriend.server")

ENABLE_TOGGLE_NOTIFICATION = "hi-friend.enableToggleButton"
SHOW_ERROR_NOTIFICATION = "hi-friend.showErrorStatus"
ENABLE_SIGNATURE_COMMAND = "hi-friend.enableSignature"
DISABLE_SIGNATURE_COMMAND = "hi-friend.disableSignature"


def document_selector(version: str) -> list[DocumentFilter]:
    """Documents handed to the server, narrowed for servers before 0.30.1.

    Older servers cannot react to .rbs changes, and restricting the Ruby
    filter to a *.rb pattern keeps the client from announcing them.
    """
    ruby = DocumentFilter(scheme="file", language="ruby")
    if compare_versions(version, SECONDARY_FILE_CHANGES_SINCE) < 0:
        ruby = DocumentFilter(scheme="file", language="ruby", pattern="**/*.rb")
    return [ruby, DocumentFilter(scheme="file", language="rbs")]


class SessionSupervisor:
    """Owns the folder -> session map and drives every transition.

    The map is injected so that tests (or several hosts) can each own an
    independent supervisor.
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        client_factory: ClientFactory,
        status: StatusSurface,
        config: SupervisorConfig | None = None,
        sessions: dict[WorkspaceFolder, SessionState] | None = None,
    ):
        self.launcher = launcher
        self.client_factory = client_factory
        self.status = status
        self.config = config or SupervisorConfig()
        self.sessions: dict[WorkspaceFolder, SessionState] = sessions if sessions is not None else {}

        self._session_tasks: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._latest_client: ProtocolClient | None = None

    # --- Commands exposed to the host ---

    def activate(self, folders: Sequence[WorkspaceFolder] | None) -> None:
        self.ensure_sessions(folders)

    async def deactivate(self) -> None:
        """Cancel timers, stop every session and wait for shutdowns."""
        self.status.reset()
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

        pending = list(self._session_tasks.values())
        self.stop_all()
        pending.extend(self._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._latest_client = None

    def ensure_sessions(self, folders: Sequence[WorkspaceFolder] | None) -> None:
        """Reconcile the session map with the current folder set.

        Stops sessions of folders that went away and starts at most one new
        session per pass (single active workspace).
        """
        if folders is None:
            return

        active = set(folders)
        for folder in list(self.sessions):
            if folder not in active:
                self.stop_session(folder)

        for folder in folders:
            if folder.scheme == "file" and folder not in self.sessions:
                self.start_session(folder)
                break

    def restart(self, folders: Sequence[WorkspaceFolder] | None) -> None:
        """Stop everything, then start the first eligible folder."""
        self.status.reset()
        output.info("[supervisor] Restarting HiFriend")
        if folders is None:
            return

        self.stop_all()
        for folder in folders:
            if folder.scheme == "file":
                self.start_session(folder)
                break

    def stop_all(self) -> None:
        for folder in list(self.sessions):
            self.stop_session(folder)

    def toggle_signature(self) -> bool:
        """Flip signature hints and tell the latest running server."""
        enabled = self.status.toggle()
        command = ENABLE_SIGNATURE_COMMAND if enabled else DISABLE_SIGNATURE_COMMAND
        if self._latest_client is not None:
            self._spawn(self._execute_command(self._latest_client, command))
        return enabled

    # --- Transitions ---

    def start_session(self, folder: WorkspaceFolder) -> asyncio.Task:
        """Absent -> Invoking. Must be called from the event loop."""
        if folder in self.sessions:
            self.stop_session(folder)

        session_id = uuid.uuid4().hex
        self.sessions[folder] = Invoking(folder=folder, session_id=session_id)
        self._show_status("Try to start HiFriend for IDE")

        task = asyncio.get_running_loop().create_task(self._run_session(folder, session_id))
        self._session_tasks[session_id] = task
        task.add_done_callback(lambda _: self._session_tasks.pop(session_id, None))
        return task

    def stop_session(self, folder: WorkspaceFolder) -> None:
        """(Invoking | Running) -> Absent. No-op if the folder has no session."""
        state = self.sessions.get(folder)
        if state is None:
            return

        self._release(state)
        del self.sessions[folder]

        task = self._session_tasks.pop(state.session_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        logger.debug(f"Stopped session for {folder.name}")

    # --- Session flow ---

    async def _run_session(self, folder: WorkspaceFolder, session_id: str) -> None:
        sink = self._diagnostic_sink(folder)
        try:
            probe = await self.launcher.launch(folder, VERSION_FLAG)
            if not self._adopt(folder, session_id, probe):
                return
            version = await read_version(probe, sink)
            if not self._is_current(folder, session_id):
                return

            self._show_status(f"Starting Ruby HiFriend ({version})...")
            server = await self.launcher.launch(folder, SERVER_FLAG)
            if not self._adopt(folder, session_id, server):
                return
            record = await negotiate(
                server,
                sink,
                timeout=self.config.handshake_timeout,
                cumulative=self.config.handshake_cumulative_parse,
            )
            if not self._is_current(folder, session_id):
                record.stop()
                return

            transport = await self._connect(record)
            if not self._is_current(folder, session_id):
                transport.close()
                return
        except (LaunchFailedError, ProbeError) as e:
            self._fail(folder, session_id, e)
            return

        await self._attach_client(folder, session_id, version, transport)

    async def _connect(self, record: HandshakeRecord) -> Transport:
        try:
            return await open_transport(record)
        except OSError as e:
            record.stop()
            raise LaunchFailedError(
                None, reason=f"cannot connect to {record.host}:{record.port}: {e}"
            ) from e

    async def _attach_client(
        self,
        folder: WorkspaceFolder,
        session_id: str,
        version: str,
        transport: Transport,
    ) -> None:
        """Invoking -> Running."""
        client = self.client_factory(self._client_options(folder, version))
        notifications = compare_versions(version, NOTIFICATIONS_SINCE) >= 0
        if notifications:
            client.on_notification(ENABLE_TOGGLE_NOTIFICATION, lambda _: self.status.show_toggle())
            client.on_notification(
                SHOW_ERROR_NOTIFICATION,
                lambda _: self._on_server_error(folder, session_id),
            )
        client.on_close(lambda: self._on_connection_lost(folder, session_id))

        self.sessions[folder] = Running(
            folder=folder,
            session_id=session_id,
            client=client,
            transport=transport,
            version=version,
        )
        self._latest_client = client

        try:
            await client.start(transport)
        except (ClientError, ConnectionError) as e:
            self._fail(folder, session_id, e)
            return
        if not self._is_current(folder, session_id):
            return

        self._show_status("Ruby HiFriend is running")
        if notifications:
            # restart without an open Ruby file never gets enableToggleButton
            self._later(self.config.progress_hide_delay, self.status.hide_progress)
        else:
            self._later(self.config.toggle_delay, self.status.show_toggle)

    def _fail(self, folder: WorkspaceFolder, session_id: str, error: Exception) -> None:
        """Invoking -> Absent with a visible failure."""
        if not self._is_current(folder, session_id):
            return

        output.info(f"[supervisor] HiFriend session for {folder.name} failed: {error}")
        self._show_status("Ruby HiFriend is not configured")
        state = self.sessions.pop(folder)
        self._release(state)
        self._later(self.config.failed_status_delay, lambda: self._escalate_failure(folder))

    def _escalate_failure(self, folder: WorkspaceFolder) -> None:
        if folder in self.sessions:
            return
        self.status.show_error()

    def _on_server_error(self, folder: WorkspaceFolder, session_id: str) -> None:
        self.status.show_error()
        if self._is_current(folder, session_id):
            self.stop_session(folder)

    def _on_connection_lost(self, folder: WorkspaceFolder, session_id: str) -> None:
        """Running -> Absent when the server drops the connection.

        A close caused by stop_session finds the entry already gone.
        """
        if not self._is_current(folder, session_id):
            return
        output.info(f"[supervisor] Connection to HiFriend for {folder.name} was closed")
        self.stop_session(folder)
        self.status.show_error()

    # --- Helpers ---

    def _is_current(self, folder: WorkspaceFolder, session_id: str) -> bool:
        state = self.sessions.get(folder)
        return state is not None and state.session_id == session_id

    def _adopt(self, folder: WorkspaceFolder, session_id: str, process: ServerProcess) -> bool:
        """Record the in-flight process, or kill it if the session is gone."""
        if not self._is_current(folder, session_id):
            process.kill()
            return False
        self.sessions[folder] = Invoking(folder=folder, session_id=session_id, process=process)
        return True

    def _release(self, state: SessionState) -> None:
        match state:
            case Invoking(process=None):
                pass
            case Invoking(process=process):
                process.kill()
            case Running(client=client, transport=transport):
                if client is self._latest_client:
                    self._latest_client = None
                self._spawn(self._shutdown_client(client, transport))
            case _:
                assert_never(state)

    async def _shutdown_client(self, client: ProtocolClient, transport: Transport) -> None:
        try:
            await client.stop()
        except Exception as e:
            logger.debug(f"Client already stopped: {e}")
        finally:
            transport.close()

    async def _execute_command(self, client: ProtocolClient, command: str) -> None:
        try:
            await client.execute_command(command)
        except (ClientError, ConnectionError) as e:
            logger.warning(f"Command '{command}' failed: {e}")

    def _client_options(self, folder: WorkspaceFolder, version: str) -> ClientOptions:
        trace = logging.getLogger("hifriend.trace") if self.config.trace_enabled else None
        return ClientOptions(
            folder=folder,
            version=version,
            document_selector=document_selector(version),
            trace_logger=trace,
            trace_level=self.config.trace_server,
        )

    def _diagnostic_sink(self, folder: WorkspaceFolder) -> DiagnosticSink:
        return lambda line: server_log.info(f"[{folder.name}] {line}")

    def _show_status(self, message: str) -> None:
        output.info(f"[supervisor] {message}")
        self.status.show_progress(message)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _later(self, delay: float, callback: Callable[[], None]) -> None:
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._timers.discard(handle)
            callback()

        handle = asyncio.get_running_loop().call_later(delay, fire)
        self._timers.add(handle)
