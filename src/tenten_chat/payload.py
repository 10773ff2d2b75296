"""Request body builders for both provider families."""

from __future__ import annotations

import time
from typing import Any, Sequence

from tenten_chat.config import ApiConfig, label_for_thread
from tenten_chat.types import PendingAttachment, ProviderFamily


def provisional_session_id(now: float | None = None) -> str:
    """Six-digit id derived from the clock, used until the server issues one."""
    ms = int((now if now is not None else time.time()) * 1000)
    return str(ms)[-6:]


def build_workflow_payload(
    config: ApiConfig,
    question: str,
    message_id: str,
    attachments: Sequence[PendingAttachment] = (),
    provisional_id: str | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """Flat JSON body for the n8n workflow webhook."""
    ts = now if now is not None else time.time()
    program = (
        config.program_name
        or label_for_thread(config.thread_id, config.environment)
        or "General"
    )
    payload: dict[str, Any] = {
        "auth_user_id": config.identity.auth_user_id,
        "user_name": config.identity.user_name,
        "session_id": config.session_id or provisional_id or provisional_session_id(ts),
        "live_class_id": config.identity.live_class_id,
        "date": int(ts * 1000),
        "question": question,
        "messageId": message_id,
        "program_name": program,
    }
    if attachments:
        payload["attachments"] = [{"file_url": a.url} for a in attachments]
    return payload


def build_event_payload(
    config: ApiConfig,
    question: str,
    attachments: Sequence[PendingAttachment] = (),
) -> dict[str, Any]:
    """Nested JSON body for the streaming message service."""
    body: dict[str, Any] = {"text": question}
    if attachments:
        body["attachments"] = [{"url": a.url, "type": "image"} for a in attachments]

    payload: dict[str, Any] = {
        "body": body,
        "session_id": config.session_id,
    }
    if config.routing == "content":
        payload["content_type"] = config.content_type
        payload["content_id"] = config.content_id
        payload["segment_id"] = config.segment_id
    elif config.routing == "exam":
        payload["exam_id"] = config.exam_id
        payload["question_id"] = config.question_id
    else:
        payload["thread_id"] = config.thread_id
    return payload


def build_payload(
    config: ApiConfig,
    question: str,
    message_id: str,
    attachments: Sequence[PendingAttachment] = (),
    provisional_id: str | None = None,
) -> dict[str, Any]:
    if config.provider_family is ProviderFamily.EVENT_TAGGED:
        return build_event_payload(config, question, attachments)
    return build_workflow_payload(
        config, question, message_id, attachments, provisional_id=provisional_id,
    )
