"""Handshake: start `hi-friend --lsp` and read the address it prints.

The server writes a JSON record {"host", "port", "pid"} to stdout in a single
flush. Each stdout chunk is parsed on its own; the first chunk that parses
wins. With cumulative=True the running buffer is also tried, which covers
servers that split the record across writes.
"""

import asyncio
import logging

from pydantic import ValidationError

from hifriend.core.models import HandshakeAddress, HandshakeRecord
from hifriend.core.utils import CHUNK_SIZE, DiagnosticSink, drain, forward_lines
from hifriend.process.launcher import LaunchFailedError, ServerProcess

logger = logging.getLogger(__name__)


class HandshakeTimeoutError(LaunchFailedError):
    """Server neither printed an address nor exited in time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(None, reason=f"no address record within {timeout:g}s")


def parse_address(data: bytes | str) -> HandshakeAddress | None:
    """Parse one complete address record, or None."""
    try:
        return HandshakeAddress.model_validate_json(data)
    except ValidationError:
        return None


async def _read_address(process: ServerProcess, cumulative: bool) -> HandshakeAddress:
    buffer = bytearray()
    while True:
        chunk = await process.stdout.read(CHUNK_SIZE)
        if not chunk:
            code = await process.wait()
            raise LaunchFailedError(code)

        buffer.extend(chunk)
        address = parse_address(chunk)
        if address is None and cumulative and len(buffer) > len(chunk):
            address = parse_address(bytes(buffer))
        if address is not None:
            return address
        logger.debug(f"Ignoring non-address stdout chunk ({len(chunk)} bytes)")


async def negotiate(
    process: ServerProcess,
    on_diagnostic: DiagnosticSink | None = None,
    *,
    timeout: float | None = None,
    cumulative: bool = False,
) -> HandshakeRecord:
    """Wait for the server's address record.

    Stderr lines are forwarded to on_diagnostic for the whole life of the
    server, not just the handshake.

    Raises:
        LaunchFailedError: Process exited before printing an address
        HandshakeTimeoutError: Nothing usable within timeout (process is killed)
    """
    process.attach(asyncio.create_task(forward_lines(process.stderr, on_diagnostic)))

    try:
        address = await asyncio.wait_for(_read_address(process, cumulative), timeout)
    except asyncio.TimeoutError:
        process.kill()
        raise HandshakeTimeoutError(timeout)

    # Keep the pipe flowing; later output is ignored
    process.attach(asyncio.create_task(drain(process.stdout)))

    logger.info(f"Server pid {address.pid} listening on {address.host}:{address.port}")
    return HandshakeRecord(
        host=address.host,
        port=address.port,
        pid=address.pid,
        stop=process.interrupt,
    )
