"""
Event stream decoding for the chat endpoint.

This package contains:
- Line framing with partial-chunk buffering
- Frame payload parsing
- Stream session state
"""

from __future__ import annotations

from .decoder import FrameDecoder, aiter_frames
from .models import (
    DONE_SENTINEL,
    EVENT_PREFIX,
    CancellationToken,
    DecoderStats,
    Frame,
    FrameKind,
    FramePayload,
    SessionStatus,
    StreamObserver,
    StreamSession,
    StreamUpdate,
)

__all__ = [
    "DONE_SENTINEL",
    "EVENT_PREFIX",
    "CancellationToken",
    "DecoderStats",
    "Frame",
    "FrameDecoder",
    "FrameKind",
    "FramePayload",
    "SessionStatus",
    "StreamObserver",
    "StreamSession",
    "StreamUpdate",
    "aiter_frames",
]
