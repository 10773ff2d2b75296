"""Exchange driver: Submit / Cancel / new chat.

    submit -> transport -> chunk parser -> normalizer -> reducer (+ reconciler)

``ChatSession`` owns the transcript and is its only writer.  Each exchange
gets its own target message, cancellation token and waiting-time clock;
updates for one exchange are applied strictly in the order they were
parsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Sequence

from tenten_chat.cleaner import clean_response
from tenten_chat.config import ApiConfig
from tenten_chat.errors import (
    ExchangeError,
    NetworkError,
    RequestTimeoutError,
    TransportError,
    explain_error,
    notification_for,
)
from tenten_chat.events.bus import EventBus
from tenten_chat.payload import build_payload, provisional_session_id
from tenten_chat.reducer import Transcript, append_message, find_message, reduce
from tenten_chat.session.reconciler import SessionReconciler
from tenten_chat.session.store import SessionStore
from tenten_chat.stream.normalizer import (
    GENERIC_ACKNOWLEDGEMENT,
    TYPING_DELAY,
    extract_buffered,
    select_normalizer,
    synthesize_typing,
)
from tenten_chat.stream.parser import ChunkParser, aiter_chunks
from tenten_chat.transport.invoker import CancelToken, TransportInvoker
from tenten_chat.types import (
    CanonicalUpdate,
    ChatEvent,
    EventType,
    Message,
    PendingAttachment,
    ProviderFamily,
    Reasoning,
    StreamEnd,
    StreamError,
)

_logger = logging.getLogger(__name__)


@dataclass
class ExchangeHandle:
    """One in-flight request/response cycle."""

    user_message_id: str
    message_id: str
    config: ApiConfig
    question: str
    attachments: tuple[PendingAttachment, ...] = ()
    token: CancelToken = field(default_factory=CancelToken)
    generation: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None
    request_payload: dict[str, Any] = field(default_factory=dict)
    error: ExchangeError | None = None
    notification: str | None = None
    dropped_chunks: int = 0
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def elapsed(self) -> float:
        """Seconds spent waiting; frozen once the exchange is terminal."""
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def done(self) -> bool:
        return self.finished_at is not None

    def cancel(self, reason: str = "cancelled by user") -> None:
        self.token.cancel(reason)

    async def wait(self) -> None:
        if self.task is not None:
            await asyncio.shield(self.task)


class ChatSession:
    """Transcript owner and exchange driver.

    Parameters
    ----------
    invoker:
        Transport used for every exchange.  Created on demand if omitted.
    store:
        Persistence collaborator (optional).  Its failures never abort
        an exchange.
    event_bus:
        Receives ``message.updated`` and lifecycle events for renderers.
    typing_delay:
        Pause between synthesized words for buffered responses; ``0``
        disables it.
    """

    def __init__(
        self,
        invoker: TransportInvoker | None = None,
        store: SessionStore | None = None,
        event_bus: EventBus | None = None,
        typing_delay: float = TYPING_DELAY,
    ) -> None:
        self._invoker = invoker or TransportInvoker()
        self._store = store
        self._event_bus = event_bus or EventBus()
        self._typing_delay = typing_delay
        self._transcript: Transcript = ()
        self._generation = 0
        self._inflight: dict[str, ExchangeHandle] = {}
        self._reconciler = SessionReconciler(
            store, provisional_id=provisional_session_id(),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    @property
    def session_id(self) -> str | None:
        return self._reconciler.session_id

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def inflight(self) -> list[ExchangeHandle]:
        return list(self._inflight.values())

    def submit(
        self,
        text: str,
        config: ApiConfig,
        attachments: Sequence[PendingAttachment] = (),
    ) -> ExchangeHandle:
        """Start one exchange.  Must be called from a running event loop."""
        question = text.strip()
        if not question and not attachments:
            raise ValueError("cannot submit an empty message")

        attachments = tuple(attachments)
        user_msg = Message(role="user", content=question, attachments=attachments)
        ai_msg = Message(role="assistant", is_streaming=True)
        self._transcript = append_message(self._transcript, user_msg)
        self._transcript = append_message(self._transcript, ai_msg)

        handle = ExchangeHandle(
            user_message_id=user_msg.id,
            message_id=ai_msg.id,
            config=self._bind_session(config),
            question=question,
            attachments=attachments,
            generation=self._generation,
        )
        self._inflight[ai_msg.id] = handle
        handle.task = asyncio.get_running_loop().create_task(self._run(handle))
        return handle

    async def ask(
        self,
        text: str,
        config: ApiConfig,
        attachments: Sequence[PendingAttachment] = (),
    ) -> Message:
        """Submit and wait for the terminal assistant message."""
        handle = self.submit(text, config, attachments)
        await handle.wait()
        message = find_message(self._transcript, handle.message_id)
        if message is None:
            raise RuntimeError("exchange target vanished (chat was reset)")
        return message

    def cancel(self, handle: ExchangeHandle, reason: str = "cancelled by user") -> None:
        handle.cancel(reason)

    def new_chat(self) -> None:
        """Abandon in-flight exchanges and reset the transcript."""
        for handle in list(self._inflight.values()):
            handle.cancel("new chat started")
        self._generation += 1
        self._transcript = ()
        self._reconciler.reset(provisional_id=provisional_session_id())

    def load_session(self, session_id: str) -> Transcript:
        """Reset to a stored session and rebuild its transcript."""
        self.new_chat()
        if self._store is None:
            return self._transcript
        try:
            records = self._store.load_messages(session_id)
        except Exception:
            _logger.warning("Failed to load session %s", session_id, exc_info=True)
            return self._transcript

        self._reconciler = SessionReconciler(self._store, session_id=session_id)
        for rec in records:
            self._transcript = append_message(
                self._transcript,
                Message(role="user", content=rec.question, timestamp=rec.created_at),
            )
            self._transcript = append_message(
                self._transcript,
                Message(role="assistant", content=rec.final_text, timestamp=rec.created_at),
            )
        return self._transcript

    async def close(self) -> None:
        handles = list(self._inflight.values())
        for handle in handles:
            handle.cancel("session closed")
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._invoker.close()

    # ------------------------------------------------------------------
    # Exchange loop
    # ------------------------------------------------------------------

    async def _run(self, handle: ExchangeHandle) -> None:
        config = handle.config
        family = config.provider_family
        normalize = select_normalizer(family)
        handle.request_payload = build_payload(
            config,
            handle.question,
            handle.user_message_id,
            handle.attachments,
            provisional_id=self._reconciler.provisional_id,
        )

        await self._emit(EventType.EXCHANGE_STARTED, {
            "message_id": handle.message_id,
            "mode": config.mode,
            "attachments": len(handle.attachments),
        })

        response_record: Any = None
        try:
            async with self._invoker.invoke(
                config,
                handle.request_payload,
                handle.token,
                stream=True if family is ProviderFamily.EVENT_TAGGED else None,
            ) as resp:
                if resp.stream is not None:
                    response_record = await self._consume_stream(
                        handle, resp.stream, normalize,
                        tag_events=family is ProviderFamily.EVENT_TAGGED,
                    )
                else:
                    response_record = resp.body
                    await self._consume_buffered(handle, resp.body or "")
        except (NetworkError, TransportError, RequestTimeoutError) as e:
            await self._fail(handle, e)
        except asyncio.CancelledError:
            await self._fail(handle, RequestTimeoutError("task cancelled", cancelled=True))
            raise
        except Exception as e:
            _logger.exception("Exchange %s crashed", handle.message_id)
            await self._fail(handle, ExchangeError(f"{type(e).__name__}: {e}"))
        else:
            await self._complete(handle, response_record)
        finally:
            handle.finished_at = time.monotonic()
            self._inflight.pop(handle.message_id, None)

    async def _consume_stream(
        self, handle, stream, normalize, tag_events: bool = False,
    ) -> list[Any]:
        parser = ChunkParser(tag_events=tag_events)
        chunks: list[Any] = []
        async with aclosing(aiter_chunks(stream, parser)) as raw_chunks:
            async for raw in raw_chunks:
                chunks.append(raw)
                ended = False
                for update in normalize(raw):
                    if isinstance(update, StreamEnd):
                        ended = True
                        break
                    await self._apply(handle, update)
                if ended:
                    break

        handle.dropped_chunks = parser.dropped
        if parser.dropped:
            await self._emit(EventType.CHUNK_DROPPED, {
                "message_id": handle.message_id,
                "count": parser.dropped,
            })
        return chunks

    async def _consume_buffered(self, handle: ExchangeHandle, body: str) -> None:
        result = extract_buffered(body)
        if result.reasoning:
            await self._apply(handle, Reasoning(text=result.reasoning))
        async for delta in synthesize_typing(result.text, self._typing_delay):
            if handle.token.cancelled:
                raise RequestTimeoutError(handle.token.reason, cancelled=True)
            await self._apply(handle, delta)

    async def _complete(self, handle: ExchangeHandle, response_record: Any) -> None:
        message = find_message(self._transcript, handle.message_id)
        if message is None:
            _logger.debug("Exchange %s finished after reset", handle.message_id)
            return

        text = clean_response(message.content)
        if not text and handle.config.provider_family is ProviderFamily.FREE_FORM:
            text = GENERIC_ACKNOWLEDGEMENT
        reasoning = clean_response(message.reasoning) if message.reasoning else None
        await self._apply(handle, StreamEnd(text=text, reasoning=reasoning))

        if self._is_current(handle):
            if self._reconciler.session_id is None and self._store is not None:
                self._reconciler.bind_provisional()
            self._reconciler.record_exchange(
                handle.question, handle.request_payload, response_record, text,
            )
        await self._emit(EventType.EXCHANGE_DONE, {
            "message_id": handle.message_id,
            "elapsed": handle.elapsed,
            "length": len(text),
        })

    async def _fail(self, handle: ExchangeHandle, error: ExchangeError) -> None:
        handle.error = error
        handle.notification = notification_for(error)
        cancelled = isinstance(error, RequestTimeoutError) and error.cancelled
        if cancelled:
            _logger.info("Exchange %s cancelled: %s", handle.message_id, error)
        else:
            _logger.warning("Exchange %s failed: %s", handle.message_id, error)

        explanation = explain_error(error, has_images=bool(handle.attachments))
        await self._apply(handle, StreamError(explanation=explanation, annotate=not cancelled))
        await self._emit(
            EventType.EXCHANGE_CANCELLED if cancelled else EventType.EXCHANGE_ERROR,
            {
                "message_id": handle.message_id,
                "error": str(error),
                "notification": handle.notification,
            },
        )

    async def _apply(self, handle: ExchangeHandle, update: CanonicalUpdate) -> None:
        self._transcript = reduce(self._transcript, update, handle.message_id)

        if self._is_current(handle) and self._reconciler.observe(update):
            await self._emit(EventType.SESSION_BOUND, {
                "session_id": self._reconciler.session_id,
            })

        message = find_message(self._transcript, handle.message_id)
        if message is not None:
            await self._emit(EventType.MESSAGE_UPDATED, {
                "message_id": handle.message_id,
                "message": message,
            })

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_current(self, handle: ExchangeHandle) -> bool:
        return handle.generation == self._generation

    def _bind_session(self, config: ApiConfig) -> ApiConfig:
        if config.session_id is None and self._reconciler.session_id is not None:
            return config.with_session(self._reconciler.session_id)
        return config

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        await self._event_bus.emit(ChatEvent(type=event_type, data=data))
