"""Chat domain: messages and the request/response shapes that flow through advisors."""

from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import ChatResult
from chatgate.chat.schemas import Message
from chatgate.chat.schemas import ModelOptions
from chatgate.chat.schemas import ReplyMessage
from chatgate.chat.schemas import Role
from chatgate.chat.schemas import TokenUsage
from chatgate.chat.schemas import ToolCall
from chatgate.chat.schemas import ToolSpec
from chatgate.chat.schemas import ToolTurn

__all__ = [
    "ChatChunk",
    "ChatRequest",
    "ChatResponse",
    "ChatResult",
    "Message",
    "ModelOptions",
    "ReplyMessage",
    "Role",
    "TokenUsage",
    "ToolCall",
    "ToolSpec",
    "ToolTurn",
]
