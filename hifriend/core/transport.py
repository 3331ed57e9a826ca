"""TCP transport to a connected hi-friend server."""

import asyncio
import logging
from collections.abc import Callable

from hifriend.core.models import HandshakeRecord

logger = logging.getLogger(__name__)


class Transport:
    """Bidirectional byte stream bound to the server's stop action.

    Closing the transport, from either side, also stops the server process.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        on_close: Callable[[], None] | None = None,
    ):
        self.reader = reader
        self.writer = writer
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.writer.close()
        except (ConnectionError, RuntimeError) as e:
            logger.debug(f"Ignoring error while closing transport: {e}")
        if self._on_close is not None:
            self._on_close()


async def open_transport(record: HandshakeRecord) -> Transport:
    """Connect to the address from a handshake.

    Raises:
        OSError: If the connection is refused or unreachable
    """
    reader, writer = await asyncio.open_connection(record.host, record.port)
    logger.debug(f"Connected to {record.host}:{record.port}")
    return Transport(reader, writer, on_close=record.stop)
