"""
Error types for the chat streaming client.

Failures inside a streaming exchange are raised internally with these types
and then resolved by the controller into a terminal session state:
- Non-success HTTP status and missing bodies (transport failures)
- Server-reported errors carried in an event frame
- Invalid configuration
"""

from __future__ import annotations


class ChatStreamError(Exception):
    """Base chat streaming error with transport context."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ResponseStatusError(ChatStreamError):
    """The chat endpoint answered with a non-success status."""

    def __init__(self, status_code: int, detail: str | None = None):
        super().__init__(
            f"Request failed: {status_code}",
            status_code=status_code,
            detail=detail,
        )


class MissingBodyError(ChatStreamError):
    """The chat endpoint answered without a readable body."""

    def __init__(self, status_code: int | None = None):
        super().__init__(
            "Response has no readable body", status_code=status_code
        )


class ServerReportedError(ChatStreamError):
    """An error frame was received from the backend."""

    def __init__(self, message: str):
        super().__init__(message, detail=message)


class ConfigurationError(ValueError):
    """Configuration value missing or invalid."""
    pass
