"""Protocol client boundary and the default JSON-RPC language client.

The supervisor only depends on ProtocolClient. LanguageClient is the
implementation used by the CLI: Content-Length framed JSON-RPC over the
handshake transport, enough to initialize the server, receive its
notifications, run commands and shut it down.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Callable
from typing import Any, Protocol

from hifriend.core.models import ClientOptions
from hifriend.core.transport import Transport

logger = logging.getLogger(__name__)
server_log = logging.getLogger("hifriend.server")

NotificationHandler = Callable[[dict[str, Any]], None]
CloseHandler = Callable[[], None]


class ClientError(Exception):
    """Protocol-level failure (not connected, error response, timeout)."""

    pass


class ProtocolClient(Protocol):
    """What the supervisor needs from a protocol client."""

    async def start(self, transport: Transport) -> None: ...

    async def stop(self) -> None: ...

    def on_notification(self, method: str, handler: NotificationHandler) -> None: ...

    # Runs after the transport closed, whether the server dropped it or stop() did
    def on_close(self, handler: CloseHandler) -> None: ...

    async def execute_command(self, command: str, arguments: list[Any] | None = None) -> Any: ...

    def info(self, message: str) -> None: ...


ClientFactory = Callable[[ClientOptions], ProtocolClient]


async def read_message(reader: asyncio.StreamReader) -> dict[str, Any] | None:
    """Read one Content-Length framed JSON message, or None at EOF."""
    headers: dict[str, str] = {}
    while True:
        line = await reader.readline()
        if not line:
            return None
        line_str = line.decode("ascii", errors="replace").strip()
        if not line_str:
            break
        if ":" in line_str:
            key, value = line_str.split(":", 1)
            headers[key.strip().lower()] = value.strip()

    content_length = int(headers.get("content-length", 0))
    if content_length <= 0:
        return None

    try:
        body = await reader.readexactly(content_length)
    except asyncio.IncompleteReadError:
        return None
    return json.loads(body.decode("utf-8"))


def encode_message(message: dict[str, Any]) -> bytes:
    body = json.dumps(message, separators=(",", ":")).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


class LanguageClient:
    """Minimal LSP client for a hi-friend session."""

    REQUEST_TIMEOUT = 30.0
    SHUTDOWN_TIMEOUT = 2.0

    def __init__(self, options: ClientOptions, client_id: str = "hi-friend", name: str = "Ruby HiFriend"):
        self.options = options
        self.client_id = client_id
        self.name = name
        self.capabilities: dict[str, Any] = {}
        self._transport: Transport | None = None
        self._listener: asyncio.Task | None = None
        self._handlers: dict[str, list[NotificationHandler]] = {}
        self._close_handlers: list[CloseHandler] = []
        self._pending: dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        self._handlers.setdefault(method, []).append(handler)

    def on_close(self, handler: CloseHandler) -> None:
        """Called once when the connection ends, whichever side closed it."""
        self._close_handlers.append(handler)

    def info(self, message: str) -> None:
        server_log.info(message)

    async def start(self, transport: Transport) -> None:
        """Attach to transport and run the initialize exchange.

        Raises:
            ClientError: If the server rejects or never answers initialize
        """
        self._transport = transport
        self._listener = asyncio.create_task(self._listen())

        folder = self.options.folder
        params = {
            "processId": os.getpid(),
            "clientInfo": {"name": self.name},
            "rootUri": folder.uri,
            "rootPath": str(folder.path),
            "workspaceFolders": [{"uri": folder.uri, "name": folder.name}],
            "capabilities": {},
            "trace": self.options.trace_level,
        }
        try:
            result = await self.request("initialize", params)
        except ClientError:
            transport.close()
            raise
        self.capabilities = (result or {}).get("capabilities", {})
        await self.notify("initialized", {})
        self._running = True
        logger.info(f"{self.name} initialized for {folder.name}")

    async def stop(self) -> None:
        """Shut the server down. Silent if the client already stopped."""
        self._running = False
        transport = self._transport
        if transport is None or transport.closed:
            return
        try:
            await self.request("shutdown", None, timeout=self.SHUTDOWN_TIMEOUT)
            await self.notify("exit", None)
        except (ClientError, ConnectionError) as e:
            logger.debug(f"Shutdown of {self.client_id} incomplete: {e}")
        finally:
            transport.close()
            if self._listener is not None and self._listener is not asyncio.current_task():
                self._listener.cancel()

    async def execute_command(self, command: str, arguments: list[Any] | None = None) -> Any:
        return await self.request(
            "workspace/executeCommand",
            {"command": command, "arguments": arguments or []},
        )

    async def request(self, method: str, params: Any, timeout: float | None = None) -> Any:
        if self._transport is None or self._transport.closed:
            raise ClientError(f"Cannot send '{method}': not connected")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        await self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
        try:
            return await asyncio.wait_for(future, timeout or self.REQUEST_TIMEOUT)
        except asyncio.TimeoutError:
            raise ClientError(f"Request '{method}' timed out")
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any) -> None:
        if self._transport is None or self._transport.closed:
            raise ClientError(f"Cannot send '{method}': not connected")
        await self._send({"jsonrpc": "2.0", "method": method, "params": params})

    async def _send(self, message: dict[str, Any]) -> None:
        self._trace("Sending", message)
        await self._transport.write(encode_message(message))

    def _trace(self, direction: str, message: dict[str, Any]) -> None:
        trace = self.options.trace_logger
        if trace is None:
            return
        label = message.get("method") or f"response {message.get('id')}"
        if self.options.trace_level == "verbose":
            trace.info(f"{direction} {label}: {json.dumps(message)}")
        else:
            trace.info(f"{direction} {label}")

    async def _listen(self) -> None:
        reader = self._transport.reader
        try:
            while True:
                try:
                    message = await read_message(reader)
                except (ConnectionError, json.JSONDecodeError, ValueError) as e:
                    logger.warning(f"Connection to {self.client_id} failed: {e}")
                    break
                if message is None:
                    break
                self._trace("Received", message)
                await self._dispatch(message)
        finally:
            self._running = False
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ClientError("Connection closed"))
            # Socket closed from the server side: stop the server too
            self._transport.close()
            for handler in self._close_handlers:
                try:
                    handler()
                except Exception as e:
                    logger.warning(f"Close handler for {self.client_id} failed: {e}")

    async def _dispatch(self, message: dict[str, Any]) -> None:
        msg_id = message.get("id")
        method = message.get("method")

        if method is None:
            future = self._pending.get(msg_id)
            if future is None or future.done():
                return
            if "error" in message:
                future.set_exception(ClientError(f"{self.client_id} error: {message['error']}"))
            else:
                future.set_result(message.get("result"))
            return

        if msg_id is not None:
            # Server-to-client request: acknowledge with an empty result
            await self._send({"jsonrpc": "2.0", "id": msg_id, "result": None})
            return

        params = message.get("params") or {}
        if method in ("window/logMessage", "window/showMessage"):
            self.info(str(params.get("message", "")))
        for handler in self._handlers.get(method, []):
            try:
                handler(params)
            except Exception as e:
                logger.warning(f"Handler for '{method}' failed: {e}")
