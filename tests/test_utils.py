"""Tests for stream helpers."""

from __future__ import annotations

import asyncio

from hifriend.core.utils import LineSplitter, drain, forward_lines

from tests.conftest import ChunkStream


class TestLineSplitter:
    """Partial lines are held until the next chunk."""

    def test_holds_trailing_fragment(self):
        splitter = LineSplitter()
        assert splitter.feed(b"one\ntw") == ["one"]
        assert splitter.feed(b"o\nthree") == ["two"]
        assert splitter.flush() == ["three"]
        assert splitter.flush() == []

    def test_crlf_and_empty_lines(self):
        splitter = LineSplitter()
        assert splitter.feed(b"a\r\n\r\nb\r\n") == ["a", "", "b"]
        assert splitter.flush() == []

    def test_invalid_utf8_is_replaced(self):
        assert LineSplitter().feed(b"\xffok\n") == ["�ok"]

    def test_character_split_across_chunks(self):
        data = "héllo\n".encode("utf-8")
        splitter = LineSplitter()
        assert splitter.feed(data[:2]) == []
        assert splitter.feed(data[2:]) == ["héllo"]

    def test_truncated_character_at_eof_is_replaced(self):
        splitter = LineSplitter()
        assert splitter.feed(b"ok\xc3") == []
        assert splitter.flush() == ["ok�"]


class TestStreams:
    def test_forward_lines_until_eof(self):
        async def scenario():
            stream = ChunkStream()
            stream.feed("gem 1\ngem")
            stream.feed(" 2\n")
            stream.close()
            lines: list[str] = []
            await forward_lines(stream, lines.append)
            return lines

        assert asyncio.run(scenario()) == ["gem 1", "gem 2"]

    def test_forward_without_sink_consumes_stream(self):
        async def scenario():
            stream = ChunkStream()
            stream.feed("ignored\n")
            stream.close()
            await forward_lines(stream, None)
            return await stream.read()

        assert asyncio.run(scenario()) == b""

    def test_drain_reads_to_eof(self):
        async def scenario():
            stream = ChunkStream()
            for _ in range(3):
                stream.feed("x" * 10)
            stream.close()
            await drain(stream)
            return stream._chunks.qsize()

        assert asyncio.run(scenario()) == 0
