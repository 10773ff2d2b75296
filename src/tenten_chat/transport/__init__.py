"""HTTP transport for chat exchanges."""

from tenten_chat.transport.invoker import CancelToken, TransportInvoker, TransportResponse

__all__ = ["CancelToken", "TransportInvoker", "TransportResponse"]
