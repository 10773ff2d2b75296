"""Chunk Parser: raw stream bytes -> decoded JSON chunks.

Accepts newline-delimited JSON, SSE ``data:`` lines and event-tagged JSON
objects on the same line buffer.  Malformed lines are dropped and counted;
they never abort the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterator, Callable

_logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
_SSE_CONTROL_PREFIXES = ("event:", "id:", "retry:", ":")

DropHandler = Callable[[str, Exception], Any]


class ChunkParser:
    """Line-buffering state machine over a single stream.

    States:
      accumulating - default; complete lines are decoded as they arrive
      done         - terminal sentinel seen; further input is ignored
      closed       - ``finish()`` was called; not restartable

    Decoded values are emitted as-is.  With ``tag_events`` an SSE
    ``event:`` name is folded into the following ``data:`` object as
    ``{"event": name, "data": value}``; only event-tagged backends want this.
    """

    def __init__(
        self,
        on_drop: DropHandler | None = None,
        tag_events: bool = False,
    ) -> None:
        self.state = "accumulating"
        self.dropped = 0
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._sse_event: str | None = None
        self._on_drop = on_drop
        self._tag_events = tag_events

    @property
    def done(self) -> bool:
        return self.state != "accumulating"

    def feed(self, data: bytes | str) -> list[Any]:
        """Append *data* and return chunks decoded from complete lines."""
        if self.state != "accumulating":
            return []
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        *lines, self._buffer = self._buffer.split("\n")
        chunks: list[Any] = []
        for line in lines:
            if self.state != "accumulating":
                break
            chunks.extend(self._parse_line(line))
        return chunks

    def finish(self) -> list[Any]:
        """Flush the trailing partial line.  The parser cannot be reused."""
        if self.state == "closed":
            return []
        chunks: list[Any] = []
        if self.state == "accumulating":
            rest = self._buffer + self._decoder.decode(b"", final=True)
            if rest.strip():
                chunks.extend(self._parse_line(rest))
        self._buffer = ""
        self.state = "closed"
        return chunks

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_line(self, line: str) -> list[Any]:
        line = line.strip()
        if not line:
            self._sse_event = None
            return []

        if line.startswith(SSE_DATA_PREFIX):
            line = line[len(SSE_DATA_PREFIX):].strip()
            if not line:
                return []
        elif line.startswith(_SSE_CONTROL_PREFIXES):
            if line.startswith("event:"):
                self._sse_event = line[len("event:"):].strip() or None
            return []

        if line == DONE_SENTINEL:
            self.state = "done"
            return []

        try:
            value = json.loads(line)
        except json.JSONDecodeError as e:
            self._drop(line, e)
            return []

        if (
            self._tag_events
            and self._sse_event
            and isinstance(value, dict)
            and "event" not in value
        ):
            value = {"event": self._sse_event, "data": value}
        return [value]

    def _drop(self, line: str, error: Exception) -> None:
        self.dropped += 1
        _logger.warning("Dropping malformed stream chunk: %.80r (%s)", line, error)
        if self._on_drop is not None:
            try:
                self._on_drop(line, error)
            except Exception:
                _logger.exception("Chunk drop handler failed")


async def aiter_chunks(
    stream: AsyncIterator[bytes],
    parser: ChunkParser | None = None,
) -> AsyncIterator[Any]:
    """Lazily decode chunks from *stream* until it ends or the sentinel arrives.

    Closing this generator also closes *stream* when it supports ``aclose``.
    """
    parser = parser or ChunkParser()
    try:
        async for data in stream:
            for chunk in parser.feed(data):
                yield chunk
            if parser.done:
                break
        for chunk in parser.finish():
            yield chunk
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
