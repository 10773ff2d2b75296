"""Shared data types for TenTen Chat."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Union


# ---------------------------------------------------------------------------
# Provider family
# ---------------------------------------------------------------------------

class ProviderFamily(enum.Enum):
    """Wire-protocol dialect spoken by a backend configuration."""

    FREE_FORM = "free_form"        # n8n workflow webhook
    EVENT_TAGGED = "event_tagged"  # streaming message service


# ---------------------------------------------------------------------------
# Transcript types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PendingAttachment:
    """An uploaded-but-unsent image reference."""

    id: str
    url: str
    name: str
    size: int


@dataclass(frozen=True)
class Message:
    """A transcript entry.

    Instances are never mutated in place; the reducer returns copies.
    """

    role: str  # user, assistant
    content: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)
    is_streaming: bool = False
    attachments: tuple[PendingAttachment, ...] = ()
    reasoning: str | None = None
    session_info: dict[str, Any] | None = None
    message_info: dict[str, Any] | None = None
    used_resource_units: float | None = None
    status_state: str | None = None
    is_error: bool = False

    @property
    def is_terminal(self) -> bool:
        return not self.is_streaming

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "attachments": [a.url for a in self.attachments],
            "reasoning": self.reasoning,
        }


# ---------------------------------------------------------------------------
# Canonical updates
# ---------------------------------------------------------------------------

class DeltaMode(enum.Enum):
    APPEND = "append"
    REPLACE = "replace"


@dataclass(frozen=True)
class TextDelta:
    """Incremental text: appended to, or replacing, the message content."""

    text: str
    mode: DeltaMode = DeltaMode.APPEND


@dataclass(frozen=True)
class Reasoning:
    text: str


@dataclass(frozen=True)
class SessionEvent:
    """Server-issued session identifier, optionally with a title."""

    id: Any
    title: str | None = None


@dataclass(frozen=True)
class MessageIdEvent:
    id: Any


@dataclass(frozen=True)
class StatusEvent:
    state: str


@dataclass(frozen=True)
class UsageEvent:
    amount: float


@dataclass(frozen=True)
class StreamEnd:
    """Terminal marker.  ``text``/``reasoning`` carry cleaned final values."""

    text: str | None = None
    reasoning: str | None = None


@dataclass(frozen=True)
class StreamError:
    """Terminal failure.

    With ``annotate`` the explanation is appended below any partial text;
    without it partial text is kept as-is and the explanation only
    replaces an empty message.
    """

    explanation: str
    annotate: bool = True


CanonicalUpdate = Union[
    TextDelta,
    Reasoning,
    SessionEvent,
    MessageIdEvent,
    StatusEvent,
    UsageEvent,
    StreamEnd,
    StreamError,
]


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Events published while an exchange runs."""

    EXCHANGE_STARTED = "exchange.started"
    EXCHANGE_DONE = "exchange.done"
    EXCHANGE_ERROR = "exchange.error"
    EXCHANGE_CANCELLED = "exchange.cancelled"

    MESSAGE_UPDATED = "message.updated"
    CHUNK_DROPPED = "chunk.dropped"
    SESSION_BOUND = "session.bound"


@dataclass
class ChatEvent:
    """Event emitted by the chat core via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
