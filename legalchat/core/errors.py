"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (LLM provider, quota store)
is misconfigured or unreachable so the API can return 503 with a user-facing message.
Tool failures never surface here: the executor turns them into result text.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. LLM provider) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class EmptyResponseError(Exception):
    """Raised by the blocking agent call when no response content was generated."""


class MessageStreamConflictError(Exception):
    """Raised when a second writer tries to stream into a message that is already streaming."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message {message_id!r} already has an active writer")


class QuotaStoreError(ServiceUnavailableError):
    """Raised when the quota counting store cannot be read or updated."""


class StreamError(Exception):
    """Raised into the stream error handler when the server reports a failed turn."""
