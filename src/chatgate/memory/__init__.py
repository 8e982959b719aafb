"""Memory domain: bounded conversation windows and their stores."""

from __future__ import annotations

from redis.asyncio import Redis  # type: ignore[import-untyped]

from chatgate.config import MemoryConfig
from chatgate.memory.conversation import ConversationMemory
from chatgate.memory.conversation import ConversationWindow
from chatgate.memory.conversation import KeyedLock
from chatgate.memory.schemas import Conversation
from chatgate.memory.store import ConversationStore
from chatgate.memory.store import InMemoryConversationStore
from chatgate.memory.store import RedisConversationStore

__all__ = [
    "Conversation",
    "ConversationMemory",
    "ConversationStore",
    "ConversationWindow",
    "InMemoryConversationStore",
    "KeyedLock",
    "RedisConversationStore",
    "build_conversation_store",
]


def build_conversation_store(config: MemoryConfig) -> ConversationStore:
    """Create the store selected by ``config.backend``."""
    backend = config.backend.strip().lower()
    if backend == "memory":
        return InMemoryConversationStore()
    if backend == "redis":
        return RedisConversationStore(Redis.from_url(config.redis_url), ttl=config.ttl)
    raise ValueError(
        f"Unsupported memory_config.backend '{config.backend}'. "
        "Supported backends: memory, redis."
    )
