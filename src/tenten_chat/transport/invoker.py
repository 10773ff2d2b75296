"""Transport Invoker: one POST per exchange with a bounded timeout and an
explicit cancellation handle.

The invoker does not interpret payloads.  It hands back either a byte
stream or a fully-buffered text body and translates ``httpx`` failures
into the exchange error taxonomy.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, TypeVar

import httpx

from tenten_chat.config import REQUEST_TIMEOUT, ApiConfig
from tenten_chat.errors import NetworkError, RequestTimeoutError, TransportError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_STREAM_CONTENT_TYPES = (
    "text/event-stream",
    "application/x-ndjson",
    "application/jsonl",
    "application/stream+json",
)


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class CancelToken:
    """Explicit cancellation handle shared by an exchange and its transport."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class TransportResponse:
    """Outcome of a successful POST: a byte stream or a buffered body."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    stream: AsyncIterator[bytes] | None = None
    body: str | None = None

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


def _wants_stream(headers: httpx.Headers) -> bool:
    content_type = headers.get("content-type", "").lower()
    return any(t in content_type for t in _STREAM_CONTENT_TYPES)


class TransportInvoker:
    """Issues exchange requests over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30),
            transport=transport,
        )

    @asynccontextmanager
    async def invoke(
        self,
        config: ApiConfig,
        body: dict[str, Any],
        token: CancelToken | None = None,
        stream: bool | None = None,
    ) -> AsyncIterator[TransportResponse]:
        """POST *body* to the configured endpoint.

        ``stream=None`` decides from the response content type; ``True``
        always exposes the byte stream, ``False`` always buffers.

        Raises ``TransportError`` on non-2xx, ``RequestTimeoutError`` on
        timeout or cancellation, ``NetworkError`` on connection failure.
        """
        token = token or CancelToken()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + min(config.timeout, self._timeout)

        request = self._client.build_request(
            "POST", config.api_url(), json=body, headers=config.headers(),
        )
        _logger.debug("POST %s (%s)", request.url, config.mode)
        resp = await self._guard(self._client.send(request, stream=True), token, deadline)

        try:
            if not resp.is_success:
                raw = await self._guard(resp.aread(), token, deadline)
                _logger.warning(
                    "Chat API returned %d: %s",
                    resp.status_code, raw[:200].decode(errors="replace"),
                )
                raise TransportError(
                    resp.status_code, raw.decode(errors="replace"),
                )

            headers = dict(resp.headers)
            use_stream = _wants_stream(resp.headers) if stream is None else stream
            if use_stream:
                yield TransportResponse(
                    status_code=resp.status_code,
                    headers=headers,
                    stream=self._iter_bytes(resp, token, deadline),
                )
            else:
                raw = await self._guard(resp.aread(), token, deadline)
                yield TransportResponse(
                    status_code=resp.status_code,
                    headers=headers,
                    body=raw.decode(resp.encoding or "utf-8", errors="replace"),
                )
        finally:
            await resp.aclose()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _iter_bytes(
        self,
        resp: httpx.Response,
        token: CancelToken,
        deadline: float,
    ) -> AsyncIterator[bytes]:
        iterator = resp.aiter_bytes().__aiter__()
        while True:
            chunk = await self._guard(_next_chunk(iterator), token, deadline)
            if chunk is None:
                return
            if chunk:
                yield chunk

    @staticmethod
    async def _guard(aw: Awaitable[T], token: CancelToken, deadline: float) -> T:
        """Await *aw*, racing it against *token* and the wall-clock deadline."""
        if token.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise RequestTimeoutError(token.reason or "cancelled", cancelled=True)

        loop = asyncio.get_running_loop()
        work = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=max(0.0, deadline - loop.time()),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work not in done:
            work.cancel()
            # Let the pending read unwind before the response is closed
            await asyncio.wait({work})
            if token.cancelled:
                raise RequestTimeoutError(token.reason or "cancelled", cancelled=True)
            raise RequestTimeoutError("request exceeded its time limit")

        try:
            return work.result()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(str(e) or "request timed out") from e
        except httpx.HTTPError as e:
            _logger.warning("Chat API network error: %s", e)
            raise NetworkError(str(e) or type(e).__name__) from e
