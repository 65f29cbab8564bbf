"""Error taxonomy for the chat service.

Every failure surfaced to a caller is a :class:`ChatServiceError`.  The
``retryable`` flag tells the caller whether trying the same request again
can reasonably succeed.
"""


class ChatServiceError(Exception):
    """Base error for everything the service raises.

    Args:
        message: Human readable description.
        status_code: HTTP status of the failed request, if any.
        retryable: Whether the same request may succeed on retry.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


class ConfigurationError(ChatServiceError):
    """Missing API key, base URL, model or tool executor."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class TransportError(ChatServiceError):
    """The endpoint answered with a non-2xx status or could not be reached."""

    @classmethod
    def from_status(cls, status_code: int, body: str) -> "TransportError":
        return cls(
            f"Request failed: {status_code} - {body}",
            status_code=status_code,
            retryable=status_code == 429 or status_code >= 500,
        )


class StreamReadError(ChatServiceError):
    """Reading the streamed response body failed part way."""


class ResponseFormatError(ChatServiceError):
    """The endpoint responded without the fields we expect."""


class ChatTimeoutError(ChatServiceError):
    """The whole tool loop ran past its configured deadline."""


class ChatCancelledError(ChatServiceError):
    """The caller cancelled the request before it produced an answer."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message, retryable=False)
