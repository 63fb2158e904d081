"""
Streaming chat client for the Vertex trading dashboard assistant.

This package provides:
- Incremental decoding of the assistant's event stream
- A controller that streams replies into a conversation with cancellation
- Gemini-style request payloads built from the visible history
- YAML/.env configuration and bearer token stores
"""

from __future__ import annotations

from .chat_service import ChatStreamController
from .config import Configuration
from .conversation import Conversation, Turn, build_request_payload
from .credentials import (
    CredentialStore,
    EnvCredentialStore,
    FileCredentialStore,
    StaticCredentialStore,
)
from .exceptions import (
    ChatStreamError,
    ConfigurationError,
    MissingBodyError,
    ResponseStatusError,
    ServerReportedError,
)
from .streaming import FrameDecoder, SessionStatus, StreamSession, StreamUpdate

__all__ = [
    # Exceptions
    "ChatStreamError",
    # Controller
    "ChatStreamController",
    "Configuration",
    "ConfigurationError",
    "Conversation",
    "CredentialStore",
    "EnvCredentialStore",
    "FileCredentialStore",
    # Streaming
    "FrameDecoder",
    "MissingBodyError",
    "ResponseStatusError",
    "ServerReportedError",
    "SessionStatus",
    "StaticCredentialStore",
    "StreamSession",
    "StreamUpdate",
    "Turn",
    "build_request_payload",
]
