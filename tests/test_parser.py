"""Tests for the line-buffering chunk parser."""

from __future__ import annotations

from contextlib import aclosing

import pytest

from tenten_chat.stream.parser import ChunkParser, aiter_chunks


async def _stream(*parts: bytes):
    for part in parts:
        yield part


class TestLineBuffering:
    def test_complete_lines_emitted(self):
        parser = ChunkParser()
        chunks = parser.feed(b'{"a": 1}\n{"b": 2}\n')
        assert chunks == [{"a": 1}, {"b": 2}]

    def test_partial_line_held_back(self):
        parser = ChunkParser()
        assert parser.feed(b'{"content": "Hel') == []
        assert parser.feed(b'lo"}\n') == [{"content": "Hello"}]

    def test_trailing_partial_decoded_on_finish(self):
        parser = ChunkParser()
        assert parser.feed(b'{"x": 1}\n{"y": 2}') == [{"x": 1}]
        assert parser.finish() == [{"y": 2}]

    def test_trailing_garbage_dropped_on_finish(self):
        parser = ChunkParser()
        parser.feed(b'{"x": 1}\n{"y": ')
        assert parser.finish() == []
        assert parser.dropped == 1

    def test_multibyte_split_across_reads(self):
        parser = ChunkParser()
        encoded = '{"content": "বাংলা"}\n'.encode("utf-8")
        first = parser.feed(encoded[:15])
        second = parser.feed(encoded[15:])
        assert first + second == [{"content": "বাংলা"}]

    def test_crlf_lines(self):
        parser = ChunkParser()
        assert parser.feed(b'{"a": 1}\r\n\r\n') == [{"a": 1}]

    def test_finish_is_single_use(self):
        parser = ChunkParser()
        parser.feed(b'{"a": 1}')
        assert parser.finish() == [{"a": 1}]
        assert parser.finish() == []
        assert parser.feed(b'{"b": 2}\n') == []


class TestSSE:
    def test_data_prefix_stripped(self):
        parser = ChunkParser()
        chunks = parser.feed(b'data: {"choices": [{"delta": {"content": "hi"}}]}\n\n')
        assert chunks == [{"choices": [{"delta": {"content": "hi"}}]}]

    def test_done_sentinel_ends_stream(self):
        parser = ChunkParser()
        chunks = parser.feed(b'data: {"a": 1}\ndata: [DONE]\ndata: {"b": 2}\n')
        assert chunks == [{"a": 1}]
        assert parser.done
        assert parser.dropped == 0

    def test_event_line_tags_following_data(self):
        parser = ChunkParser(tag_events=True)
        chunks = parser.feed(b'event: message\ndata: {"delta": "Hi"}\n\n')
        assert chunks == [{"event": "message", "data": {"delta": "Hi"}}]

    def test_event_line_left_untagged_by_default(self):
        parser = ChunkParser()
        chunks = parser.feed(b'event: delta\ndata: {"text": "Hi"}\n\n')
        assert chunks == [{"text": "Hi"}]

    def test_comment_and_control_lines_ignored(self):
        parser = ChunkParser()
        assert parser.feed(b": keep-alive\nid: 7\nretry: 100\n") == []
        assert parser.dropped == 0


class TestMalformedChunks:
    def test_invalid_line_between_valid_lines(self):
        parser = ChunkParser()
        chunks = parser.feed(b'{"content": "a"}\nnot json\n{"content": "b"}\n')
        assert chunks == [{"content": "a"}, {"content": "b"}]
        assert parser.dropped == 1

    def test_drop_callback_invoked(self):
        seen = []
        parser = ChunkParser(on_drop=lambda line, err: seen.append(line))
        parser.feed(b"{broken\n")
        assert seen == ["{broken"]

    def test_failing_drop_callback_does_not_raise(self):
        def boom(line, err):
            raise RuntimeError("handler bug")

        parser = ChunkParser(on_drop=boom)
        assert parser.feed(b'oops\n{"ok": true}\n') == [{"ok": True}]


class TestAsyncIteration:
    @pytest.mark.asyncio
    async def test_chunks_independent_of_read_boundaries(self):
        payload = b'{"content": "Hello"}\n{"content": " world"}\n'
        whole = [c async for c in aiter_chunks(_stream(payload))]
        bytewise = [c async for c in aiter_chunks(_stream(*(payload[i:i + 1] for i in range(len(payload)))))]
        assert whole == bytewise == [{"content": "Hello"}, {"content": " world"}]

    @pytest.mark.asyncio
    async def test_stops_reading_after_sentinel(self):
        reads = []

        async def stream():
            for part in (b"data: {\"a\": 1}\n", b"data: [DONE]\n", b"data: {\"b\": 2}\n"):
                reads.append(part)
                yield part

        chunks = [c async for c in aiter_chunks(stream())]
        assert chunks == [{"a": 1}]
        assert len(reads) == 2

    @pytest.mark.asyncio
    async def test_closing_early_closes_source_stream(self):
        closed = []

        async def stream():
            try:
                yield b'{"event": "end"}\n'
                yield b'{"content": "never read"}\n'
            finally:
                closed.append(True)

        async with aclosing(aiter_chunks(stream())) as chunks:
            async for chunk in chunks:
                assert chunk == {"event": "end"}
                break
            assert closed == []

        assert closed == [True]
