"""Stream helpers shared by the version prober and the handshake negotiator."""

import codecs
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

DiagnosticSink = Callable[[str], None]


class ByteStream(Protocol):
    """Anything with asyncio.StreamReader.read() semantics (b"" at EOF)."""

    async def read(self, n: int = -1) -> bytes: ...


class LineSplitter:
    """Split a byte stream on newlines, holding back a trailing partial line.

    The held fragment is prefixed to the next chunk before re-splitting.
    A UTF-8 sequence cut across chunks is held by the decoder the same way.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes) -> list[str]:
        text = self._pending + self._decoder.decode(chunk)
        *lines, self._pending = text.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        lines = [line.rstrip("\r") for line in text.split("\n")]
        if not lines[-1]:
            lines.pop()
        return lines


async def forward_lines(stream: ByteStream, sink: DiagnosticSink | None) -> None:
    """Forward complete lines from stream to sink until EOF."""
    splitter = LineSplitter()
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            break
        for line in splitter.feed(chunk):
            _emit(sink, line)
    for line in splitter.flush():
        _emit(sink, line)


def _emit(sink: DiagnosticSink | None, line: str) -> None:
    if sink is None:
        return
    try:
        sink(line)
    except Exception as e:
        logger.warning(f"Diagnostic sink failed: {e}")


async def collect(stream: ByteStream, buffer: bytearray) -> None:
    """Append everything from stream to buffer until EOF."""
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return
        buffer.extend(chunk)


async def drain(stream: ByteStream) -> None:
    """Discard stream data so the child never blocks on a full pipe."""
    while await stream.read(CHUNK_SIZE):
        pass
