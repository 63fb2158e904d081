# vertex_chat/conversation.py
"""
Conversation turns and the outbound request payload.

The caller owns the history; the streaming controller only appends the user
turn and the in-progress assistant turn for each send, and translates a
snapshot of the history into the backend's wire vocabulary.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]
WireRole = Literal["user", "model"]

WELCOME_TURN_ID = "welcome"


class Turn(BaseModel):
    """One message in the conversation."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_welcome(self) -> bool:
        return self.id == WELCOME_TURN_ID


class TextPart(BaseModel):
    text: str


class WireMessage(BaseModel):
    """A turn in the backend's role vocabulary."""
    role: WireRole
    parts: list[TextPart]

    @classmethod
    def from_turn(cls, turn: Turn) -> WireMessage:
        role: WireRole = "user" if turn.role == "user" else "model"
        return cls(role=role, parts=[TextPart(text=turn.content)])


class ChatRequest(BaseModel):
    """Body of the streaming chat request."""
    messages: list[WireMessage]


def build_request_payload(turns: Iterable[Turn]) -> dict[str, Any]:
    """
    Translate visible history into the request body.

    Order is preserved and only the welcome turn is left out.
    """
    messages = [WireMessage.from_turn(t) for t in turns if not t.is_welcome]
    return ChatRequest(messages=messages).model_dump()


def make_welcome_turn(text: str) -> Turn:
    return Turn(id=WELCOME_TURN_ID, role="assistant", content=text)


class Conversation:
    """In-memory history provider for one chat surface."""

    def __init__(self, turns: Iterable[Turn] | None = None):
        self._turns: list[Turn] = list(turns or [])

    @classmethod
    def with_welcome(cls, text: str) -> Conversation:
        return cls([make_welcome_turn(text)])

    @property
    def turns(self) -> list[Turn]:
        """Snapshot of the history in order."""
        return list(self._turns)

    def append(self, turn: Turn) -> Turn:
        self._turns.append(turn)
        return turn

    def get(self, turn_id: str) -> Turn | None:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    def clear(self, keep_welcome: bool = True) -> None:
        self._turns = [t for t in self._turns if keep_welcome and t.is_welcome]

    def __len__(self) -> int:
        return len(self._turns)
