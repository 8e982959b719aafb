"""Memory domain data models."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field

from chatgate.chat.schemas import Message


class Conversation(BaseModel):
    """A bounded, ordered message window for one conversation id."""

    id: str = Field(
        description="Opaque conversation identifier.",
    )
    messages: list[Message] = Field(
        default_factory=list,
        description="Retained messages, oldest first.",
    )
    max_window: int = Field(
        default=20,
        ge=1,
        description="Upper bound on len(messages) after every mutation.",
    )

    def append(self, new_messages: list[Message]) -> int:
        """Append in order, then evict from the front; return evicted count."""
        self.messages.extend(new_messages)
        excess = len(self.messages) - self.max_window
        if excess <= 0:
            return 0
        del self.messages[:excess]
        return excess
