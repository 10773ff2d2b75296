"""TenTen Chat: message exchange core for TenTen AI backends."""

from tenten_chat.cleaner import clean_response
from tenten_chat.config import ApiConfig, ChatConfig, load_config, reset_config, save_config
from tenten_chat.errors import (
    ExchangeError,
    NetworkError,
    RequestTimeoutError,
    TransportError,
)
from tenten_chat.exchange import ChatSession, ExchangeHandle
from tenten_chat.reducer import reduce
from tenten_chat.types import Message, PendingAttachment, ProviderFamily

__version__ = "0.3.0"

__all__ = [
    "ApiConfig",
    "ChatConfig",
    "ChatSession",
    "ExchangeError",
    "ExchangeHandle",
    "Message",
    "NetworkError",
    "PendingAttachment",
    "ProviderFamily",
    "RequestTimeoutError",
    "TransportError",
    "clean_response",
    "load_config",
    "reduce",
    "reset_config",
    "save_config",
]
