"""
Streaming-specific dataclasses for the chat event stream.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict

from ..conversation import Turn

# Wire constants
EVENT_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class FrameKind(Enum):
    """Shapes a decoded frame payload can take."""
    DELTA = "delta"
    ERROR = "error"
    DONE = "done"
    MALFORMED = "malformed"


class SessionStatus(Enum):
    """Lifecycle of one streaming exchange."""
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED
        )


class FramePayload(BaseModel):
    """JSON object carried by a `data: ` line."""
    model_config = ConfigDict(extra="ignore")

    chunk: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class Frame:
    """One decoded protocol unit."""
    kind: FrameKind
    payload: str
    text: str = ""


@dataclass
class DecoderStats:
    """Counters kept by the frame decoder for diagnostics."""
    bytes_received: int = 0
    lines: int = 0
    ignored_lines: int = 0
    frames: int = 0
    deltas: int = 0
    errors: int = 0
    malformed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "bytes_received": self.bytes_received,
            "lines": self.lines,
            "ignored_lines": self.ignored_lines,
            "frames": self.frames,
            "deltas": self.deltas,
            "errors": self.errors,
            "malformed": self.malformed,
        }


class CancellationToken:
    """Cooperative cancellation flag shared by a session and its read loop."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass(frozen=True)
class StreamUpdate:
    """Notification handed to the render sink."""
    kind: str  # "delta" or "status"
    status: SessionStatus
    content: str
    delta: str | None = None


StreamObserver = Callable[[StreamUpdate], None]


@dataclass
class StreamSession:
    """
    State for one send-and-receive exchange.

    The session owns the in-progress assistant turn and is the only writer of
    its content while the status is ACTIVE.
    """
    turn: Turn
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: SessionStatus = SessionStatus.IDLE
    token: CancellationToken = field(default_factory=CancellationToken)
    delta_count: int = 0
    error_detail: str | None = None
    stats: dict[str, int] = field(default_factory=dict)
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def content(self) -> str:
        return self.turn.content

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def duration(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at

    def activate(self) -> None:
        if self.status is not SessionStatus.IDLE:
            raise RuntimeError(f"Cannot activate session in state {self.status.value}")
        self.status = SessionStatus.ACTIVE
        self.started_at = time.monotonic()

    def apply_delta(self, text: str) -> None:
        self.turn.content += text
        self.delta_count += 1

    def finish(self, status: SessionStatus, content: str | None = None) -> bool:
        """
        Move an active session to a terminal state.

        Returns False when the session already left ACTIVE, so the first
        terminal transition wins.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        if self.status is not SessionStatus.ACTIVE:
            return False
        if content is not None:
            self.turn.content = content
        self.status = status
        self.finished_at = time.monotonic()
        return True
