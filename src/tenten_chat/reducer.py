"""Transcript Reducer: pure state transitions over an ordered message log.

``reduce(transcript, update, target_id) -> transcript'``.  The transcript
is a tuple of frozen ``Message`` objects; every transition returns a new
tuple and never mutates its input.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from tenten_chat.types import (
    CanonicalUpdate,
    DeltaMode,
    Message,
    MessageIdEvent,
    Reasoning,
    SessionEvent,
    StatusEvent,
    StreamEnd,
    StreamError,
    TextDelta,
    UsageEvent,
)

Transcript = tuple[Message, ...]


def _apply(message: Message, update: CanonicalUpdate) -> Message:
    if isinstance(update, TextDelta):
        if update.mode is DeltaMode.REPLACE:
            return replace(message, content=update.text)
        return replace(message, content=message.content + update.text)

    if isinstance(update, Reasoning):
        return replace(message, reasoning=update.text)

    if isinstance(update, SessionEvent):
        info = dict(message.session_info or {})
        info["id"] = update.id
        if update.title is not None:
            info["title"] = update.title
        return replace(message, session_info=info)

    if isinstance(update, MessageIdEvent):
        return replace(message, message_info={"id": update.id})

    if isinstance(update, StatusEvent):
        return replace(message, status_state=update.state)

    if isinstance(update, UsageEvent):
        return replace(message, used_resource_units=update.amount)

    if isinstance(update, StreamEnd):
        content = message.content if update.text is None else update.text
        reasoning = message.reasoning if update.reasoning is None else update.reasoning
        return replace(
            message,
            content=content,
            reasoning=reasoning,
            status_state=None,
            is_streaming=False,
        )

    if isinstance(update, StreamError):
        if not message.content.strip():
            content = update.explanation
        elif update.annotate:
            content = f"{message.content}\n\n{update.explanation}"
        else:
            content = message.content
        return replace(
            message,
            content=content,
            status_state=None,
            is_streaming=False,
            is_error=True,
        )

    return message


def reduce(
    transcript: Transcript,
    update: CanonicalUpdate,
    target_id: str,
) -> Transcript:
    """Apply *update* to the message with *target_id*.

    Unknown targets (e.g. after a reset) and terminal messages are left
    untouched; the transcript is returned unchanged.
    """
    for idx, message in enumerate(transcript):
        if message.id != target_id:
            continue
        if not message.is_streaming:
            return transcript
        updated = _apply(message, update)
        return transcript[:idx] + (updated,) + transcript[idx + 1:]
    return transcript


def reduce_all(
    transcript: Transcript,
    updates: Iterable[CanonicalUpdate],
    target_id: str,
) -> Transcript:
    for update in updates:
        transcript = reduce(transcript, update, target_id)
    return transcript


def append_message(transcript: Transcript, message: Message) -> Transcript:
    """Append *message*; ids already present are rejected."""
    if any(m.id == message.id for m in transcript):
        raise ValueError(f"duplicate message id: {message.id}")
    return transcript + (message,)


def find_message(transcript: Transcript, message_id: str) -> Message | None:
    for message in transcript:
        if message.id == message_id:
            return message
    return None


def streaming_messages(transcript: Transcript) -> list[Message]:
    return [m for m in transcript if m.is_streaming]
