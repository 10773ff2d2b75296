"""Exchange error taxonomy.

Only ``NetworkError``, ``TransportError`` and ``RequestTimeoutError`` ever
reach the user.  ``ParseError`` stays inside the normalizer and
``PersistenceError`` is logged and swallowed by its callers.
"""

from __future__ import annotations


class ExchangeError(Exception):
    """Base class for all chat exchange failures."""


class NetworkError(ExchangeError):
    """The connection was never established or dropped mid-flight."""


class TransportError(ExchangeError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP error! status: {status_code}")


class RequestTimeoutError(ExchangeError, TimeoutError):
    """The request exceeded its time bound or was cancelled."""

    def __init__(self, message: str = "request timed out", cancelled: bool = False) -> None:
        self.cancelled = cancelled
        super().__init__(message)


class ParseError(ExchangeError):
    """A response payload could not be interpreted."""


class PersistenceError(ExchangeError):
    """The session store rejected an operation."""


class UploadError(ExchangeError):
    """An attachment failed validation or upload."""


# ---------------------------------------------------------------------------
# User-facing explanations
# ---------------------------------------------------------------------------

def explain_error(error: BaseException, has_images: bool = False) -> str:
    """Return the human-readable string that finalizes a failed message."""
    if isinstance(error, RequestTimeoutError):
        if error.cancelled:
            return "The request was cancelled before a response arrived."
        if has_images:
            return (
                "The request timed out. Image analysis can take a long time; "
                "please try again with fewer or smaller images."
            )
        return "The request timed out. Please try again."
    if isinstance(error, TransportError):
        return (
            f"The server returned an error (status {error.status_code}). "
            "Please check your API configuration and try again."
        )
    if isinstance(error, NetworkError):
        if has_images:
            return (
                "Could not reach the server while sending images. The upload may "
                "be too large, or the endpoint may be blocked as mixed content "
                "(an http endpoint from an https page)."
            )
        return (
            "Sorry, I encountered an error while processing your request. "
            "Please check your webhook URL and try again."
        )
    return "Sorry, something went wrong while processing your request."


def notification_for(error: BaseException) -> str:
    """Short toast text for a terminal failure."""
    if isinstance(error, RequestTimeoutError):
        return "Request timed out"
    if isinstance(error, TransportError):
        return f"Server error ({error.status_code})"
    return "Failed to connect. Please check your configuration."
