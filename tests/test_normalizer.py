"""Tests for the response normalizer (both families and buffered bodies)."""

from __future__ import annotations

import json

import pytest

from tenten_chat.stream.normalizer import (
    GENERIC_ACKNOWLEDGEMENT,
    extract_buffered,
    parse_event_chunk,
    parse_free_form_chunk,
    select_normalizer,
    split_words,
    synthesize_typing,
)
from tenten_chat.types import (
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


class TestEventTagged:
    def test_session(self):
        assert parse_event_chunk({"event": "session", "data": {"id": 42}}) == [
            SessionEvent(id=42),
        ]

    def test_session_with_title(self):
        updates = parse_event_chunk({"event": "session", "data": {"id": 7, "title": "Optics"}})
        assert updates == [SessionEvent(id=7, title="Optics")]

    def test_message_delta_always_appends(self):
        updates = parse_event_chunk({"event": "message", "data": {"delta": "Hello"}})
        assert updates == [TextDelta("Hello", DeltaMode.APPEND)]

    def test_message_id(self):
        assert parse_event_chunk({"event": "message_id", "data": {"id": "m-1"}}) == [
            MessageIdEvent(id="m-1"),
        ]

    def test_status(self):
        assert parse_event_chunk({"event": "status", "data": {"state": "thinking"}}) == [
            StatusEvent(state="thinking"),
        ]

    def test_token_usage(self):
        assert parse_event_chunk({"event": "token", "data": {"amount": 3.5}}) == [
            UsageEvent(amount=3.5),
        ]

    def test_end(self):
        assert parse_event_chunk({"event": "end"}) == [StreamEnd()]

    def test_unknown_kind_ignored(self):
        assert parse_event_chunk({"event": "heartbeat", "data": {}}) == []

    def test_non_dict_ignored(self):
        assert parse_event_chunk([1, 2]) == []
        assert parse_event_chunk("text") == []

    def test_output_field_not_sniffed(self):
        """A free-form shape means nothing to the event family."""
        assert parse_event_chunk({"output": "Hello"}) == []


class TestFreeForm:
    def test_output_replaces(self):
        assert parse_free_form_chunk({"output": "Hello"}) == [
            TextDelta("Hello", DeltaMode.REPLACE),
        ]

    def test_output_in_array_wrapper(self):
        assert parse_free_form_chunk({"output": ["Hi", "ignored"]}) == [
            TextDelta("Hi", DeltaMode.REPLACE),
        ]
        assert parse_free_form_chunk([{"output": "Hi"}]) == [
            TextDelta("Hi", DeltaMode.REPLACE),
        ]

    def test_content_appends(self):
        assert parse_free_form_chunk({"content": "a"}) == [TextDelta("a")]

    def test_delta_content(self):
        assert parse_free_form_chunk({"delta": {"content": "b"}}) == [TextDelta("b")]

    def test_openai_choices(self):
        chunk = {"choices": [{"delta": {"content": "c"}}]}
        assert parse_free_form_chunk(chunk) == [TextDelta("c")]

    def test_text(self):
        assert parse_free_form_chunk({"text": "d"}) == [TextDelta("d")]

    def test_first_match_wins(self):
        chunk = {"output": "full", "content": "part", "text": "t"}
        assert parse_free_form_chunk(chunk) == [TextDelta("full", DeltaMode.REPLACE)]

    def test_content_beats_text(self):
        assert parse_free_form_chunk({"text": "t", "content": "c"}) == [TextDelta("c")]

    def test_reasoning_alongside_content(self):
        updates = parse_free_form_chunk({"content": "x", "reasoning": "because"})
        assert updates == [TextDelta("x"), Reasoning("because")]

    def test_reasoning_only(self):
        assert parse_free_form_chunk({"reasoning": "hmm"}) == [Reasoning("hmm")]

    def test_no_match(self):
        assert parse_free_form_chunk({"type": "begin"}) == []


class TestSelect:
    def test_family_selection(self):
        assert select_normalizer(ProviderFamily.EVENT_TAGGED) is parse_event_chunk
        assert select_normalizer(ProviderFamily.FREE_FORM) is parse_free_form_chunk


class TestBuffered:
    def test_content_blocks_path(self):
        body = json.dumps([
            {"ai_response": {"content_blocks": [{"data": {"content": "Nested"}}]}},
        ])
        result = extract_buffered(body)
        assert result.text == "Nested"
        assert result.rule == "ai_response.content_blocks"

    def test_output(self):
        assert extract_buffered('{"output": "Out"}').text == "Out"

    def test_response(self):
        assert extract_buffered('{"response": "42 Answer is 42."}').text == "42 Answer is 42."

    def test_message_object(self):
        assert extract_buffered('{"message": {"content": "Obj"}}').text == "Obj"

    def test_ai_response_string(self):
        result = extract_buffered('{"ai_response": "Plain"}')
        assert result.text == "Plain"
        assert result.rule == "ai_response"

    def test_output_beats_response(self):
        assert extract_buffered('{"response": "r", "output": "o"}').text == "o"

    def test_reasoning_extracted(self):
        result = extract_buffered('{"output": "A", "reasoning": "R"}')
        assert result.reasoning == "R"

    def test_unknown_shape(self):
        result = extract_buffered('{"foo": "bar"}')
        assert result.text == GENERIC_ACKNOWLEDGEMENT
        assert result.rule is None

    @pytest.mark.parametrize("body", ["", "   ", "not json", "[]", "42", "null"])
    def test_uninterpretable_bodies(self, body):
        assert extract_buffered(body).text == GENERIC_ACKNOWLEDGEMENT


class TestTyping:
    def test_split_words_rejoins(self):
        text = "  Line one\n\nline  two "
        assert "".join(split_words(text)) == text

    @pytest.mark.asyncio
    async def test_one_append_per_word(self):
        deltas = [d async for d in synthesize_typing("Answer is 42.", delay=0)]
        assert [d.text for d in deltas] == ["Answer ", "is ", "42."]
        assert all(d.mode is DeltaMode.APPEND for d in deltas)

    @pytest.mark.asyncio
    async def test_empty_text(self):
        assert [d async for d in synthesize_typing("", delay=0)] == []
