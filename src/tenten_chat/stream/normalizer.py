"""Response Normalizer: decoded chunks and buffered bodies -> Canonical Updates.

Each provider family has its own pure ``parse_chunk(raw)`` function; the
family is chosen once per exchange from configuration and never
re-inferred from chunk shape.

Shape probing for the free-form family and for buffered bodies is an
ordered precedence list.  The first matching rule wins, so supporting a
new provider shape is a list insertion.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Sequence

from tenten_chat.errors import ParseError
from tenten_chat.types import (
    CanonicalUpdate,
    DeltaMode,
    MessageIdEvent,
    ProviderFamily,
    Reasoning,
    SessionEvent,
    StatusEvent,
    StreamEnd,
    TextDelta,
    UsageEvent,
)

_logger = logging.getLogger(__name__)

GENERIC_ACKNOWLEDGEMENT = (
    "I received your message and processed it through the n8n workflow."
)
TYPING_DELAY = 0.05


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

def _dig(value: Any, *path: str | int) -> Any:
    """Follow *path* through nested dicts/lists, returning None on a miss."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or len(value) <= key:
                return None
            value = value[key]
        else:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
    return value


def _unwrap(value: Any) -> Any:
    """First element of an array wrapper, or the value itself."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _as_text(value: Any) -> str | None:
    """A string, or the text carried by an object wrapper."""
    value = _unwrap(value)
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for key in ("content", "text", "output", "message"):
            inner = value.get(key)
            if isinstance(inner, str) and inner:
                return inner
    return None


def _non_empty_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


# ---------------------------------------------------------------------------
# Event-tagged family
# ---------------------------------------------------------------------------

def _event_payload(chunk: dict[str, Any]) -> Any:
    return chunk.get("data", {})


def _on_session(data: Any) -> list[CanonicalUpdate]:
    if isinstance(data, dict) and data.get("id") is not None:
        return [SessionEvent(id=data["id"], title=data.get("title"))]
    if isinstance(data, (str, int)):
        return [SessionEvent(id=data)]
    return []


def _on_message_id(data: Any) -> list[CanonicalUpdate]:
    msg_id = data.get("id") if isinstance(data, dict) else data
    if msg_id is None or isinstance(msg_id, (dict, list)):
        return []
    return [MessageIdEvent(id=msg_id)]


def _on_status(data: Any) -> list[CanonicalUpdate]:
    state = data
    if isinstance(data, dict):
        state = data.get("state", data.get("status"))
    if isinstance(state, str) and state:
        return [StatusEvent(state=state)]
    return []


def _on_usage(data: Any) -> list[CanonicalUpdate]:
    amount = data
    if isinstance(data, dict):
        for key in ("amount", "used", "tokens", "total"):
            if key in data:
                amount = data[key]
                break
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return []
    return [UsageEvent(amount=amount)]


def _on_content(data: Any) -> list[CanonicalUpdate]:
    updates: list[CanonicalUpdate] = []
    if isinstance(data, str):
        delta = data
    elif isinstance(data, dict):
        delta = data.get("delta", data.get("content"))
        reasoning = _non_empty_str(data.get("reasoning"))
        if reasoning:
            updates.append(Reasoning(text=reasoning))
    else:
        delta = None
    if isinstance(delta, str) and delta:
        updates.insert(0, TextDelta(text=delta, mode=DeltaMode.APPEND))
    return updates


def _on_end(data: Any) -> list[CanonicalUpdate]:
    return [StreamEnd()]


_EVENT_HANDLERS: dict[str, Callable[[Any], list[CanonicalUpdate]]] = {
    "session": _on_session,
    "message_id": _on_message_id,
    "status": _on_status,
    "token": _on_usage,
    "usage": _on_usage,
    "message": _on_content,
    "content": _on_content,
    "end": _on_end,
}


def parse_event_chunk(raw: Any) -> list[CanonicalUpdate]:
    """Map one event-tagged chunk to updates.  Unknown kinds are ignored."""
    if not isinstance(raw, dict):
        return []
    kind = raw.get("event", raw.get("type"))
    handler = _EVENT_HANDLERS.get(kind) if isinstance(kind, str) else None
    if handler is None:
        _logger.debug("Ignoring event kind %r", kind)
        return []
    return handler(_event_payload(raw))


# ---------------------------------------------------------------------------
# Free-form family
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContentRule:
    """One entry of the free-form precedence list."""

    name: str
    extract: Callable[[dict[str, Any]], str | None]
    mode: DeltaMode


FREE_FORM_RULES: Sequence[ContentRule] = (
    # Providers resend cumulative text under ``output``
    ContentRule("output", lambda c: _non_empty_str(_unwrap(c.get("output"))), DeltaMode.REPLACE),
    ContentRule("content", lambda c: _non_empty_str(c.get("content")), DeltaMode.APPEND),
    ContentRule("delta.content", lambda c: _non_empty_str(_dig(c, "delta", "content")), DeltaMode.APPEND),
    ContentRule(
        "choices[0].delta.content",
        lambda c: _non_empty_str(_dig(c, "choices", 0, "delta", "content")),
        DeltaMode.APPEND,
    ),
    ContentRule("text", lambda c: _non_empty_str(c.get("text")), DeltaMode.APPEND),
)


def parse_free_form_chunk(raw: Any) -> list[CanonicalUpdate]:
    """Probe *raw* against ``FREE_FORM_RULES``; first match wins."""
    chunk = _unwrap(raw)
    if not isinstance(chunk, dict):
        return []

    updates: list[CanonicalUpdate] = []
    for rule in FREE_FORM_RULES:
        text = rule.extract(chunk)
        if text is not None:
            updates.append(TextDelta(text=text, mode=rule.mode))
            break

    reasoning = _non_empty_str(chunk.get("reasoning"))
    if reasoning:
        updates.append(Reasoning(text=reasoning))
    return updates


ChunkNormalizer = Callable[[Any], list[CanonicalUpdate]]


def select_normalizer(family: ProviderFamily) -> ChunkNormalizer:
    if family is ProviderFamily.EVENT_TAGGED:
        return parse_event_chunk
    return parse_free_form_chunk


# ---------------------------------------------------------------------------
# Buffered (non-streaming) bodies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BufferedResult:
    text: str
    reasoning: str | None = None
    rule: str | None = None  # None when the generic acknowledgement was used


# (name, extractor) in precedence order
BUFFERED_RULES: Sequence[tuple[str, Callable[[dict[str, Any]], str | None]]] = (
    (
        "ai_response.content_blocks",
        lambda d: _non_empty_str(_dig(d, "ai_response", "content_blocks", 0, "data", "content")),
    ),
    ("output", lambda d: _as_text(d.get("output"))),
    ("response", lambda d: _as_text(d.get("response"))),
    ("message", lambda d: _as_text(d.get("message"))),
    ("ai_response", lambda d: _as_text(d.get("ai_response"))),
)


def _buffered_reasoning(data: dict[str, Any]) -> str | None:
    found = _non_empty_str(data.get("reasoning"))
    if found:
        return found
    for key in ("ai_response", "response", "message", "output"):
        found = _non_empty_str(_dig(_unwrap(data.get(key)), "reasoning"))
        if found:
            return found
    return None


def _decode_body(body: str) -> dict[str, Any]:
    if not body or not body.strip():
        raise ParseError("empty response body")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ParseError(f"response body is not JSON: {e}") from e
    data = _unwrap(data)
    if not isinstance(data, dict):
        raise ParseError(f"unexpected response type: {type(data).__name__}")
    return data


def extract_buffered(body: str) -> BufferedResult:
    """Extract final text from a complete response body.

    Never raises: uninterpretable bodies yield the generic acknowledgement.
    """
    try:
        data = _decode_body(body)
    except ParseError as e:
        _logger.warning("Failed to parse response body: %s", e)
        return BufferedResult(text=GENERIC_ACKNOWLEDGEMENT)

    reasoning = _buffered_reasoning(data)
    for name, extract in BUFFERED_RULES:
        text = extract(data)
        if text is not None:
            return BufferedResult(text=text, reasoning=reasoning, rule=name)

    _logger.info("No known response shape matched; keys=%s", sorted(data)[:10])
    return BufferedResult(text=GENERIC_ACKNOWLEDGEMENT, reasoning=reasoning)


_WORD_RE = re.compile(r"\S+\s*")


def split_words(text: str) -> list[str]:
    """Split on whitespace, keeping separators so the pieces rejoin exactly."""
    words = _WORD_RE.findall(text)
    leading = text[: len(text) - len(text.lstrip())]
    if words and leading:
        words[0] = leading + words[0]
    return words


async def synthesize_typing(
    text: str,
    delay: float = TYPING_DELAY,
) -> AsyncIterator[TextDelta]:
    """Client-side typing effect for buffered responses.

    Yields one append delta per word.  ``delay=0`` disables the pause.
    """
    words = split_words(text)
    for idx, word in enumerate(words):
        yield TextDelta(text=word, mode=DeltaMode.APPEND)
        if delay > 0 and idx < len(words) - 1:
            await asyncio.sleep(delay)
