"""Stream decoding: chunk parsing and response normalization."""

from tenten_chat.stream.normalizer import (
    GENERIC_ACKNOWLEDGEMENT,
    extract_buffered,
    parse_event_chunk,
    parse_free_form_chunk,
    select_normalizer,
    synthesize_typing,
)
from tenten_chat.stream.parser import ChunkParser, aiter_chunks

__all__ = [
    "GENERIC_ACKNOWLEDGEMENT",
    "ChunkParser",
    "aiter_chunks",
    "extract_buffered",
    "parse_event_chunk",
    "parse_free_form_chunk",
    "select_normalizer",
    "synthesize_typing",
]
